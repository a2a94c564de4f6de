"""API dependencies."""

import logging
import secrets

from fastapi import Depends, Header, HTTPException, Request

from questcycle.config import Environment, Settings
from questcycle.engine import QuestEngine

logger = logging.getLogger("questcycle.api")


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_engine(request: Request) -> QuestEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not started")
    return engine


async def verify_api_key(
    authorization: str | None = Header(None),
    x_api_key: str | None = Header(None, alias="X-API-Key"),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Verify the shared API key sent by the game server.

    Accepts ``Authorization: Bearer <key>`` or ``X-API-Key``. Fails closed:
    without a configured key every request is rejected unless insecure dev
    mode is explicitly enabled in development.
    """
    if settings.allow_insecure_dev and settings.env == Environment.DEVELOPMENT:
        return

    api_key = None
    if authorization and authorization.startswith("Bearer "):
        api_key = authorization[7:]
    elif x_api_key:
        api_key = x_api_key

    if not api_key:
        raise HTTPException(
            status_code=401,
            detail="Missing authorization. Use Authorization: Bearer <key> or X-API-Key header",
        )

    if not settings.api_key:
        logger.error("No QUESTCYCLE_API_KEY configured, rejecting request")
        raise HTTPException(
            status_code=503,
            detail="Server misconfigured: authentication not properly initialized",
        )

    if not secrets.compare_digest(api_key, settings.api_key):
        raise HTTPException(status_code=401, detail="Invalid API key")


def validate_auth_config(settings: Settings) -> None:
    """
    Refuse to start with an insecure configuration outside development.

    Raises:
        RuntimeError: If configuration is insecure for the current environment
    """
    if settings.allow_insecure_dev and settings.env != Environment.DEVELOPMENT:
        raise RuntimeError(
            f"SECURITY ERROR: allow_insecure_dev=true is only permitted in development. "
            f"Current environment: {settings.env.value}. "
            f"Set QUESTCYCLE_ALLOW_INSECURE_DEV=false for {settings.env.value}."
        )

    if settings.allow_insecure_dev:
        logger.warning(
            "Running in INSECURE DEV MODE: API authentication is disabled. "
            "Set QUESTCYCLE_ALLOW_INSECURE_DEV=false for any deployment."
        )
    elif settings.api_key:
        logger.info(f"Authentication enabled for {settings.env.value}")
    else:
        logger.warning(
            "No QUESTCYCLE_API_KEY configured; all API requests will be rejected"
        )
