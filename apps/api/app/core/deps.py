"""FastAPI dependencies for authentication, authorization, and database access."""

from typing import Generator
from uuid import UUID

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.security import decode_session_token
from app.db.session import SessionLocal


# Cookie and header names
COOKIE_NAME = "practice_session"
BEARER_PREFIX = "bearer "


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _read_token(request: Request) -> str | None:
    """Session token from the Authorization header, falling back to the cookie."""
    header = request.headers.get("Authorization", "")
    if header.lower().startswith(BEARER_PREFIX):
        return header[len(BEARER_PREFIX):].strip() or None
    return request.cookies.get(COOKIE_NAME)


def get_current_staff(
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Get authenticated staff member from the session token.

    Validates:
    - Token exists (bearer header or session cookie)
    - JWT is valid and not expired
    - Staff exists, is active and belongs to the token's tenant
    - Token version matches (for revocation support)

    Raises:
        HTTPException 401: Authentication failed
    """
    # Import here to avoid circular imports
    from app.db.models import Staff
    from app.schemas.auth import TokenPayload

    token = _read_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = TokenPayload(**decode_session_token(token))
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid session")

    staff = db.query(Staff).filter(Staff.id == payload.sub).first()
    if not staff:
        raise HTTPException(status_code=401, detail="User not found")

    if not staff.is_active:
        raise HTTPException(status_code=401, detail="Account disabled")

    if staff.tenant_id != payload.tenant_id:
        raise HTTPException(status_code=401, detail="Invalid session")

    # Token version check (revocation support)
    if staff.token_version != payload.token_version:
        raise HTTPException(status_code=401, detail="Session revoked")

    return staff


def get_current_session(
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Get full session context: staff_id, tenant_id, role.

    This is the PRIMARY auth dependency for most endpoints.

    Raises:
        HTTPException 401: Not authenticated
        HTTPException 403: Unknown role
    """
    from app.db.enums import Role
    from app.schemas.auth import UserSession

    staff = get_current_staff(request, db)

    # Validate role is a known enum value - return 403 not 500
    if not Role.has_value(staff.role):
        raise HTTPException(
            status_code=403,
            detail=f"Unknown role '{staff.role}'. Contact administrator."
        )

    return UserSession(
        staff_id=staff.id,
        tenant_id=staff.tenant_id,
        role=Role(staff.role),
        email=staff.email,
        display_name=staff.display_name,
        timezone=staff.timezone or (staff.tenant.timezone if staff.tenant else None),
    )


def require_roles(allowed_roles: list):
    """
    Dependency factory for role-based authorization.

    Usage:
        @router.post("/admin", dependencies=[Depends(require_roles([Role.BUSINESS_ADMIN]))])
    """
    def dependency(request: Request, db: Session = Depends(get_db)):
        session = get_current_session(request, db)
        if session.role not in allowed_roles:
            raise HTTPException(
                status_code=403,
                detail=f"Role '{session.role.value}' not authorized for this action"
            )
        return session
    return dependency


def resolve_tenant_scope(session, requested_tenant_id: UUID | None) -> UUID:
    """
    Tenant every query is scoped to.

    An explicit tenant must match the caller's own tenant.
    """
    if requested_tenant_id is not None and requested_tenant_id != session.tenant_id:
        raise HTTPException(status_code=403, detail="Access to this practice is not allowed")
    return session.tenant_id
