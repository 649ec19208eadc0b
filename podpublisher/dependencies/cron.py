# podpublisher/dependencies/cron.py
import os
import secrets
from typing import Optional

import structlog
from fastapi import Header, HTTPException, status

logger = structlog.get_logger(__name__)


async def verify_cron_secret(x_cron_secret: Optional[str] = Header(None)) -> None:
    """
    Shared-secret check for the cron trigger endpoints. CRON_SECRET is read per
    request so rotating it does not need a restart.
    """
    expected = os.getenv("CRON_SECRET")
    if not expected:
        logger.error("cron_secret_not_configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="CRON_SECRET not configured")
    if not x_cron_secret or not secrets.compare_digest(x_cron_secret.encode(), expected.encode()):
        logger.warning("cron_secret_rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
