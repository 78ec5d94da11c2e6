#!/usr/bin/env python3
"""
SmartBin device simulator.

- Runs the real device agent (lid state machine, telemetry, presence) against
  the MQTT broker with simulated ultrasonic sensors, servo and RFID reader
- The bin slowly fills; it is emptied automatically when nearly full
- Interactive menu on stdin to scan cards, trigger proximity or fill the bin

Usage:
    python scripts/bin_simulator.py [BIN_ID]

Broker and timings come from SMARTBIN_DEVICE_* environment variables, e.g.
    SMARTBIN_DEVICE_MQTT_BROKER_HOST=localhost SMARTBIN_DEVICE_MQTT_BROKER_PORT=1884
"""

import logging
import os
import random
import sys
import threading
import time

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from device.actuator import LidActuator
from device.agent import DeviceAgent
from device.config import DeviceSettings
from device.sensors import DistanceSensor
from device.simulated import SimulatedEcho, SimulatedLed, SimulatedRfidReader, SimulatedServo


# Cards seeded by init_db.py, plus one that is not
RFID_CARDS = [
    ("04A1B2C3D4E5F6", "Admin User (authorized)"),
    ("A1B2C3D4", "John Doe (authorized)"),
    ("E5F6A7B8", "Jane Smith (authorized)"),
    ("DEADBEEF", "Unknown (unauthorized)"),
]

# Nothing in front of the lid
IDLE_PROXIMITY_CM = 150.0
# Someone standing at the bin
NEAR_PROXIMITY_CM = 20.0


def fill_slowly(level_echo: SimulatedEcho, capacity_cm: float, stop: threading.Event, interval: float):
    """Contents creep towards the sensor; empty the bin when nearly full."""
    while not stop.wait(interval):
        distance = max(10.0, level_echo.distance_cm - random.random() * 2)
        if distance < 20:
            print("\n[SIM] Bin emptied! Resetting level...\n")
            distance = capacity_cm * 0.9
        level_echo.distance_cm = round(distance, 1)


def trigger_proximity(proximity_echo: SimulatedEcho, hold_seconds: float = 1.0):
    proximity_echo.distance_cm = NEAR_PROXIMITY_CM
    timer = threading.Timer(hold_seconds, lambda: setattr(proximity_echo, "distance_cm", IDLE_PROXIMITY_CM))
    timer.daemon = True
    timer.start()


def print_menu():
    print("\n" + "=" * 50)
    print("Interactive Test Menu")
    print("=" * 50)
    print("  1 - Scan Admin RFID (authorized)")
    print("  2 - Scan User RFID (authorized)")
    print("  3 - Scan Unknown RFID (unauthorized)")
    print("  4 - Trigger Proximity (AUTO mode)")
    print("  5 - Simulate bin full (80%+)")
    print("  6 - Empty bin (reset to 10%)")
    print("  q - Quit")
    print("=" * 50)


def read_menu(agent: DeviceAgent, reader: SimulatedRfidReader, level_echo: SimulatedEcho,
              proximity_echo: SimulatedEcho, capacity_cm: float):
    card_keys = {"1": 0, "2": 1, "3": 3}
    for line in sys.stdin:
        command = line.strip()
        if command in card_keys:
            uid, name = RFID_CARDS[card_keys[command]]
            print(f"[SIM] Scanning {name}: {uid}")
            reader.present(uid)
        elif command == "4":
            print("[SIM] Someone approaches the bin")
            trigger_proximity(proximity_echo)
        elif command == "5":
            print("[SIM] Setting bin to 85% full")
            level_echo.distance_cm = capacity_cm * 0.15
        elif command == "6":
            print("[SIM] Emptying bin to 10%")
            level_echo.distance_cm = capacity_cm * 0.9
        elif command.lower() == "q":
            print("[SIM] Shutting down...")
            agent.stop()
            return
        elif command:
            print("Invalid command. Try 1-6 or q to quit.")


def main():
    overrides = {"bin_id": sys.argv[1]} if len(sys.argv) > 1 else {}
    config = DeviceSettings(**overrides)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    print(f"SmartBin simulator starting for bin: {config.bin_id}")
    print(f"Broker: {config.mqtt_broker_host}:{config.mqtt_broker_port}")
    print(f"Telemetry interval: {config.telemetry_interval_seconds} seconds\n")

    level_echo = SimulatedEcho(distance_cm=config.capacity_cm * 0.75)
    proximity_echo = SimulatedEcho(distance_cm=IDLE_PROXIMITY_CM)
    reader = SimulatedRfidReader()
    led = SimulatedLed()

    agent = DeviceAgent(
        level_sensor=DistanceSensor(level_echo, config.echo_timeout_us, min_cm=0, max_cm=config.max_range_cm, name="level"),
        proximity_sensor=DistanceSensor(proximity_echo, config.echo_timeout_us, max_cm=config.max_range_cm, name="proximity"),
        actuator=LidActuator(
            SimulatedServo(),
            open_angle=config.lid_open_angle,
            closed_angle=config.lid_closed_angle,
            settle_seconds=config.settle_seconds,
        ),
        rfid_reader=reader,
        indicator=led.set,
        config=config,
    )

    stop = threading.Event()
    threading.Thread(
        target=fill_slowly,
        args=(level_echo, config.capacity_cm, stop, config.telemetry_interval_seconds),
        daemon=True,
    ).start()

    print_menu()
    threading.Thread(
        target=read_menu,
        args=(agent, reader, level_echo, proximity_echo, config.capacity_cm),
        daemon=True,
    ).start()

    try:
        agent.run()
    except KeyboardInterrupt:
        print("SmartBin simulator interrupted, shutting down...")
        agent.stop()
    finally:
        stop.set()
        # Give paho a moment to flush the offline status
        time.sleep(0.5)


if __name__ == "__main__":
    main()
