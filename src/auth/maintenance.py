# src/auth/maintenance.py

import asyncio
import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from src.auth import otp_service
from src.auth.token_manager import TokenManager
from src.common.config import settings

logger = logging.getLogger(__name__)


async def run_sweep(session_factory: sessionmaker, tokens: TokenManager) -> dict:
    """Expire overdue OTPs, purge old expired/used ones, prune the revocation set."""
    async with session_factory() as session:
        expired = await otp_service.expire_overdue(session)
        purged = await otp_service.purge_stale(session)
    pruned = tokens.prune_revocations()
    return {"expired": expired, "purged": purged, "pruned": pruned}


async def sweep_forever(
    session_factory: sessionmaker,
    tokens: TokenManager,
    interval_seconds: Optional[int] = None,
) -> None:
    interval = interval_seconds or settings.MAINTENANCE_INTERVAL_SECONDS
    while True:
        await asyncio.sleep(interval)
        try:
            result = await run_sweep(session_factory, tokens)
            if any(result.values()):
                logger.info("Maintenance sweep: %s", result)
        except Exception:
            logger.exception("Maintenance sweep failed")
