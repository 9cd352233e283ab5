from __future__ import annotations

import logging
import os

from sqlalchemy import select

from .core import generate_api_key, hash_password
from ..config import settings
from ..database import db_session
from ..models import User

logger = logging.getLogger("sentinel.auth")

_DEFAULT_PASSWORD = "changeme"


def seed_admin() -> None:
    """
    Create a default superadmin account on first startup if no users exist.

    Defaults (local development only):
      SENTINEL_ADMIN_USERNAME = admin
      SENTINEL_ADMIN_PASSWORD = changeme
      SENTINEL_ADMIN_NAME     = Sentinel Admin
    """
    username = os.getenv("SENTINEL_ADMIN_USERNAME", "admin")
    password = os.getenv("SENTINEL_ADMIN_PASSWORD", _DEFAULT_PASSWORD)
    name     = os.getenv("SENTINEL_ADMIN_NAME", "Sentinel Admin")

    with db_session() as session:
        existing = session.execute(select(User).limit(1)).scalar_one_or_none()
        if existing:
            return  # Users already seeded

        if password == _DEFAULT_PASSWORD:
            logger.warning("Seeding admin with DEFAULT password; set SENTINEL_ADMIN_PASSWORD")
            if settings.environment != "development":
                logger.error(
                    "Refusing to seed default password in %s environment", settings.environment
                )
                return

        session.add(
            User(
                username=username,
                name=name,
                password_hash=hash_password(password),
                role="superadmin",
                api_key=generate_api_key(),
                is_active=True,
            )
        )
        logger.info("Default admin created: %s", username)
