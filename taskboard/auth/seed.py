from __future__ import annotations

import logging
import os

from fastapi import HTTPException
from sqlalchemy import select

from ..config import settings
from ..database import db_session
from ..models import Tenant
from ..api.routes_tenants import create_tenant_with_admin

logger = logging.getLogger("taskboard.seed")

_DEFAULT_PASSWORD = "changeme"


def seed_demo_tenant() -> None:
    """
    Create a demo tenant with one admin on first startup if no tenant exists.
    Credentials are read from environment variables so they can be
    overridden before deployment.

    Defaults (for local dev only, change before production):
      TASKBOARD_ADMIN_EMAIL    = admin@example.com
      TASKBOARD_ADMIN_PASSWORD = changeme
      TASKBOARD_TENANT_NAME    = Demo Organisation
    """
    if not settings.seed_demo_tenant:
        return

    email = os.getenv("TASKBOARD_ADMIN_EMAIL", "admin@example.com")
    password = os.getenv("TASKBOARD_ADMIN_PASSWORD", _DEFAULT_PASSWORD)
    tenant_name = os.getenv("TASKBOARD_TENANT_NAME", "Demo Organisation")

    with db_session() as session:
        if session.execute(select(Tenant.id).limit(1)).scalar_one_or_none():
            return  # Already seeded

    if password == _DEFAULT_PASSWORD:
        logger.warning("Seeding demo admin with DEFAULT password 'changeme'. "
                       "Set TASKBOARD_ADMIN_PASSWORD before deploying to production.")
        if settings.environment != "development":
            logger.error("Refusing to seed the default password in the %s environment.",
                         settings.environment)
            return

    try:
        create_tenant_with_admin(tenant_name, email, "Taskboard", "Admin", password)
    except HTTPException as exc:
        logger.warning("Demo tenant not seeded: %s", exc.detail)
        return
    logger.info("Demo tenant %r created with admin %s", tenant_name, email)
