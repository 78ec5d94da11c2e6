"""Database initialization script to create sample bins and credentials."""
from database import SessionLocal, engine
from models import Base, Bin, BinMode, User, UserRole

# Create tables
Base.metadata.create_all(bind=engine)

db = SessionLocal()

try:
    users = [
        User(rfid_uid="04A1B2C3D4E5F6", name="Admin User", email="admin@smartbin.local", role=UserRole.ADMIN),
        User(rfid_uid="A1B2C3D4", name="John Doe", email="john@example.com", role=UserRole.USER),
        User(rfid_uid="E5F6A7B8", name="Jane Smith", email="jane@example.com", role=UserRole.USER),
    ]
    for user in users:
        if not db.query(User).filter(User.rfid_uid == user.rfid_uid).first():
            db.add(user)
            print(f"Created credential: {user.name} ({user.rfid_uid})")

    bins = [
        Bin(bin_id="BIN_01", name="Main Entrance Bin", location="Building A - Floor 1",
            capacity_cm=200, mode=BinMode.AUTO, threshold_cm=50),
        Bin(bin_id="BIN_02", name="Cafeteria Bin", location="Building B - Cafeteria",
            capacity_cm=180, mode=BinMode.AUTH, threshold_cm=50),
    ]
    for bin_row in bins:
        if not db.query(Bin).filter(Bin.bin_id == bin_row.bin_id).first():
            db.add(bin_row)
            print(f"Created bin: {bin_row.bin_id} ({bin_row.name})")

    db.commit()
    print("\nDatabase initialized successfully!")

except Exception as e:
    db.rollback()
    print(f"Error initializing database: {e}")
    raise
finally:
    db.close()
