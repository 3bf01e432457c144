"""
Admin authentication for the operator/dashboard API
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException, status

from . import config
from .webhook_security import constant_time_compare

logger = logging.getLogger(__name__)


async def require_admin(x_admin_token: Optional[str] = Header(None)) -> str:
    """Dependency guarding admin routes with the shared X-Admin-Token header"""
    if not constant_time_compare(x_admin_token, config.ADMIN_API_TOKEN):
        logger.warning("🚫 Rejected admin request with invalid token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")
    return "admin"
