"""Health check endpoint."""
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter

from dispatcher import dispatcher
from metrics import metrics
from mqtt_client import mqtt_bridge

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> Dict[str, Any]:
    """Service health with broker and dispatcher state."""
    summary = metrics.get_summary()
    return {
        "success": True,
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": summary["uptime_seconds"],
        "mqtt_connected": mqtt_bridge.is_connected,
        "dispatcher_running": dispatcher.is_running,
        "metrics": summary,
    }
