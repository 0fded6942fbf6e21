# config/reset_config_route.py
import logging

from fastapi import APIRouter, Depends
from app.users.auth_dependencies import get_current_admin
from app.users.user_models.user_model import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

@router.post("/reset-all-configs")
async def reset_all_configs(
    admin: User = Depends(get_current_admin)
):
    """
    Reset all system configs to file defaults.
    Admin-only operation.
    """
    from config.appconfig import settings
    from config.prescriptionconfig import prescription_settings

    # Reload settings in place so injected references see the new values
    settings.__init__()
    prescription_settings.__init__()

    logger.info(f"♻️ Configs reset by {admin.email}")
    return {
        "message": "All configs reset to defaults",
        "reset_by": admin.email
    }
