"""FastAPI dependencies for dependency injection."""

from __future__ import annotations

import hmac
from collections.abc import Generator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from revenue_engine.config import Settings, get_settings
from revenue_engine.database import init_db
from revenue_engine.engine_config import EngineConfig
from revenue_engine.providers import (
    CaptureFeedProvider,
    PayoutRailProvider,
    build_capture_feed,
    build_payout_rail,
)


def get_db_session() -> Generator[Session, None, None]:
    """Get database session dependency."""
    _, factory = init_db()
    session = factory()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_app_settings() -> Settings:
    return get_settings()


@lru_cache(maxsize=1)
def get_engine_config() -> EngineConfig:
    """Engine policies (defaults unless overridden at startup)."""
    return EngineConfig()


def _close(resource: object) -> None:
    close = getattr(resource, "close", None)
    if close is not None:
        close()


def get_payout_rail(
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> Generator[PayoutRailProvider, None, None]:
    """Payout rail for one request; HTTP clients are closed afterwards."""
    rail = build_payout_rail(settings)
    try:
        yield rail
    finally:
        _close(rail)


def get_capture_feed(
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> Generator[CaptureFeedProvider, None, None]:
    feed = build_capture_feed(settings)
    try:
        yield feed
    finally:
        _close(feed)


def get_admin_email(
    x_admin_email: Annotated[str | None, Header()] = None,
) -> str:
    """Admin identity asserted by the upstream auth layer."""
    if not x_admin_email or "@" not in x_admin_email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin authentication required",
        )
    return x_admin_email.strip().lower()


def verify_cron_caller(
    settings: Annotated[Settings, Depends(get_app_settings)],
    authorization: Annotated[str | None, Header()] = None,
    x_internal_api_key: Annotated[str | None, Header()] = None,
) -> str:
    """Accept `Authorization: Bearer <CRON_SECRET>` or a matching X-Internal-Api-Key.

    Returns the name of the credential that matched.
    """
    if settings.cron_secret and authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and hmac.compare_digest(token.strip(), settings.cron_secret):
            return "cron"
    if settings.internal_api_key and x_internal_api_key:
        if hmac.compare_digest(x_internal_api_key, settings.internal_api_key):
            return "internal"
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
    )


# Type aliases for cleaner dependency injection
DbSession = Annotated[Session, Depends(get_db_session)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
AdminEmail = Annotated[str, Depends(get_admin_email)]
EngineSettings = Annotated[EngineConfig, Depends(get_engine_config)]
PayoutRail = Annotated[PayoutRailProvider, Depends(get_payout_rail)]
CaptureFeed = Annotated[CaptureFeedProvider, Depends(get_capture_feed)]
