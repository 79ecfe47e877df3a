"""Runtime config for operators (config file master over env; pushed overrides on top)."""
import logging

from fastapi import APIRouter, Body, Depends, HTTPException, status

from digipay.api.deps import get_current_admin
from digipay.config_store import ConfigUpdateError
from digipay.domain.users.models import User
from digipay.settings import SECRET_FIELDS, get_config_store

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/config")
async def get_config(admin: User = Depends(get_current_admin)):
    """Current settings (secrets masked) and the overrides in force."""
    store = get_config_store()
    overrides = {k: ("***" if k in SECRET_FIELDS else v) for k, v in store.overrides().items()}
    return {"settings": store.snapshot(SECRET_FIELDS), "overrides": overrides}


@router.post("/config", status_code=status.HTTP_200_OK)
async def update_config(
    body: dict = Body(..., embed=False),
    admin: User = Depends(get_current_admin),
):
    """
    Push config overrides at runtime (e.g. swap_rate, trade_expiry_auto_cancel).
    Unknown keys and invalid values are rejected and the previous config stays.
    """
    try:
        changed = get_config_store().update(body)
    except ConfigUpdateError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Config update failed: {e}",
        )
    logger.info(f"🛡️ [ADMIN] {admin.id} pushed config overrides: {changed}")
    return {"ok": True, "changed": changed}


@router.post("/config/reload", status_code=status.HTTP_200_OK)
async def reload_config(admin: User = Depends(get_current_admin)):
    """Re-read the config file and reapply saved overrides."""
    try:
        get_config_store().reload_from_file()
    except ConfigUpdateError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Config reload failed: {e}",
        )
    logger.info(f"🛡️ [ADMIN] {admin.id} reloaded config from file")
    return {"ok": True, "message": "Config reloaded from file"}


@router.post("/config/clear-overrides", status_code=status.HTTP_200_OK)
async def clear_config_overrides(admin: User = Depends(get_current_admin)):
    """Drop pushed overrides and reset to config file + env."""
    get_config_store().clear_overrides()
    logger.info(f"🛡️ [ADMIN] {admin.id} cleared config overrides")
    return {"ok": True, "message": "Overrides cleared"}
