"""
routes_tenants.py — Organisation signup and settings
====================================================
``POST /tenants`` creates a tenant together with its first admin and returns
tokens for that admin. ``/tenants/me`` reads and renames the caller's tenant.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select

from ..auth.core import Principal, hash_password
from ..auth.dependencies import require_admin, require_tenant
from ..auth.routes_auth import issue_tokens
from ..database import db_session
from ..models import Role, Tenant, User
from ..rate_limit import credential_limit, limiter
from ..schemas import AuthResponse, TenantCreate, TenantRead, TenantUpdate

logger = logging.getLogger("taskboard.tenants")

router = APIRouter(prefix="/tenants", tags=["tenants"])


def create_tenant_with_admin(
    tenant_name: str,
    admin_email: str,
    admin_name: str,
    admin_surname: str,
    admin_password: str,
) -> AuthResponse:
    """Create a tenant, its ``admin`` / ``member`` roles and its first admin.

    Everything happens in one transaction; the caller gets a token pair for
    the new admin.
    """
    with db_session() as session:
        existing = session.execute(
            select(User.id).where(User.email == admin_email)
        ).scalar_one_or_none()
        if existing:
            raise HTTPException(status_code=409, detail="A user with this email already exists.")

        tenant = Tenant(name=tenant_name)
        session.add(tenant)
        session.flush()

        admin_role = Role(tenant_id=tenant.id, name="admin")
        session.add_all([admin_role, Role(tenant_id=tenant.id, name="member")])
        session.flush()

        admin = User(
            email=admin_email,
            name=admin_name,
            surname=admin_surname,
            password_hash=hash_password(admin_password),
            tenant_id=tenant.id,
            role_id=admin_role.id,
        )
        session.add(admin)
        session.flush()
        session.refresh(admin)
        logger.info("Tenant %s created with admin %s", tenant.id, admin.id)
        return issue_tokens(session, admin, tenant.name)


@router.post("", response_model=AuthResponse, status_code=201)
@limiter.limit(credential_limit)
def create_tenant(request: Request, body: TenantCreate) -> AuthResponse:
    """Sign up a new organisation; returns tokens for its admin."""
    return create_tenant_with_admin(
        body.tenant_name,
        body.admin_email,
        body.admin_name,
        body.admin_surname,
        body.admin_password,
    )


@router.get("/me", response_model=TenantRead)
def get_my_tenant(principal: Principal = Depends(require_tenant)) -> TenantRead:
    with db_session() as session:
        tenant = session.get(Tenant, principal.tenant_id)
        return TenantRead.model_validate(tenant)


@router.put("/me", response_model=TenantRead)
def update_my_tenant(body: TenantUpdate, admin: Principal = Depends(require_admin)) -> TenantRead:
    with db_session() as session:
        tenant = session.get(Tenant, admin.tenant_id)
        if body.name is not None:
            tenant.name = body.name
        session.flush()
        session.refresh(tenant)
        return TenantRead.model_validate(tenant)
