"""Configuration settings for the bin device agent."""
from pydantic_settings import BaseSettings
from typing import Optional


class DeviceSettings(BaseSettings):
    """Device settings loaded from ``SMARTBIN_DEVICE_*`` environment variables."""

    bin_id: str = "BIN_01"

    # MQTT
    mqtt_broker_host: str = "mqtt-broker"
    mqtt_broker_port: int = 1883
    mqtt_broker_username: Optional[str] = None
    mqtt_broker_password: Optional[str] = None
    mqtt_namespace: str = "smartbin"
    mqtt_keepalive: int = 60
    reconnect_delay_seconds: float = 5.0
    config_wait_seconds: float = 3.0       # Retained config reconciliation on (re)connect
    inbound_queue_size: int = 100

    # Loop timing
    loop_delay_seconds: float = 0.01
    telemetry_interval_seconds: float = 10.0
    debounce_seconds: float = 2.0
    auto_close_seconds: float = 5.0

    # Hardware
    settle_seconds: float = 0.5            # Servo travel time before detaching
    lid_open_angle: int = 90
    lid_closed_angle: int = 0
    echo_timeout_us: int = 30000
    max_range_cm: float = 400.0

    # Defaults until the retained config arrives
    capacity_cm: float = 200.0
    mode: str = "AUTO"
    threshold_cm: float = 50.0

    log_level: str = "INFO"

    class Config:
        env_prefix = "SMARTBIN_DEVICE_"
        env_file = ".env"
        case_sensitive = False


device_settings = DeviceSettings()
