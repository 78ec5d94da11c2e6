"""Event log endpoints."""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from store import BinStore, get_store

router = APIRouter(tags=["logs"])


@router.get("/logs")
def list_logs(
    bin_id: Optional[str] = Query(None, alias="bin", description="Filter by bin identifier"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    store: BinStore = Depends(get_store),
) -> Dict[str, Any]:
    """Event logs, newest first, with optional bin filter."""
    logs = store.get_logs(bin_id, limit, offset)
    return {
        "success": True,
        "data": logs,
        "pagination": {
            "limit": limit,
            "offset": offset,
            "count": len(logs),
        },
    }
