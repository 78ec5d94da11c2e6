"""Bin management endpoints: status, configuration and manual lid commands."""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from admin_auth import AdminTokenPayload, get_current_operator
from config_distributor import ConfigDistributor, get_config_distributor
from error_handler import ConfigRejectedError, UnknownBinError
from store import BinStore, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bins", tags=["bins"])


class BinConfigUpdate(BaseModel):
    """Partial configuration update. Unknown keys are ignored."""
    mode: Optional[str] = None
    threshold_cm: Optional[int] = None
    capacity_cm: Optional[int] = None
    name: Optional[str] = None
    location: Optional[str] = None


class BinCommand(BaseModel):
    action: str


@router.get("")
def list_bins(store: BinStore = Depends(get_store)) -> Dict[str, Any]:
    """Get all bins with current status."""
    bins: List[Dict[str, Any]] = [b.to_dict() for b in store.list_bins()]
    return {"success": True, "data": bins}


@router.get("/{bin_id}")
def get_bin(bin_id: str, store: BinStore = Depends(get_store)) -> Dict[str, Any]:
    """Get specific bin details."""
    record = store.get_bin(bin_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bin not found")
    return {"success": True, "data": record.to_dict()}


@router.put("/{bin_id}/config")
def update_bin_config(
    bin_id: str,
    update: BinConfigUpdate,
    operator: AdminTokenPayload = Depends(get_current_operator),
    distributor: ConfigDistributor = Depends(get_config_distributor),
) -> Dict[str, Any]:
    """Update bin configuration and push it to the device as a retained message."""
    try:
        updated = distributor.apply(bin_id, update.model_dump(exclude_none=True))
    except UnknownBinError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bin not found")
    except ConfigRejectedError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(f"{operator.sub} updated config of {bin_id}")
    return {"success": True, "message": "Configuration updated", "data": updated.to_dict()}


@router.post("/{bin_id}/command")
def send_command(
    bin_id: str,
    command: BinCommand,
    operator: AdminTokenPayload = Depends(get_current_operator),
    distributor: ConfigDistributor = Depends(get_config_distributor),
) -> Dict[str, Any]:
    """Send an open/close command to a bin."""
    try:
        distributor.send_command(bin_id, command.action, operator.sub)
    except UnknownBinError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bin not found")
    except ConfigRejectedError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {"success": True, "message": f'Command "{command.action}" sent to {bin_id}'}
