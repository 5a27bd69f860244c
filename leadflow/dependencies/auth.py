"""
Authentication dependencies for FastAPI.

The JWT is read from the Authorization header or, for the web frontend,
from the httpOnly access token cookie.
"""
import enum

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from leadflow.config import settings
from leadflow.services.jwt_service import JWTService


# Security scheme; auto_error off so the cookie can be tried next
security = HTTPBearer(auto_error=False)


class Role(str, enum.Enum):
    """User roles."""
    ADMIN = "Admin"
    AGENT = "Agent"
    READ_ONLY = "ReadOnly"

    @classmethod
    def normalize(cls, value: str | None) -> str:
        """Canonical role name; blank means ReadOnly, unknown values pass through trimmed."""
        if not value or not value.strip():
            return cls.READ_ONLY.value
        trimmed = value.strip()
        lowered = trimmed.lower()
        if lowered == "admin":
            return cls.ADMIN.value
        if lowered == "agent":
            return cls.AGENT.value
        if lowered in ("readonly", "read-only", "read_only"):
            return cls.READ_ONLY.value
        return trimmed


class TokenPayload(BaseModel):
    """JWT token payload model."""
    sub: str      # user_id
    email: str
    role: str

    @property
    def normalized_role(self) -> str:
        return Role.normalize(self.role)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security)
) -> TokenPayload:
    """
    Dependency that requires valid JWT token.
    
    Returns token payload if valid, raises 401 if missing or invalid.
    
    Usage:
        @app.get("/protected")
        async def protected_route(user: TokenPayload = Depends(get_current_user)):
            ...
    """
    token = credentials.credentials if credentials else request.cookies.get(settings.AUTH_COOKIE_NAME)
    
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    
    payload = JWTService().verify_token(token)
    
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    
    return TokenPayload(**payload)


def require_admin(current_user: TokenPayload = Depends(get_current_user)) -> TokenPayload:
    """
    Dependency that requires Admin role.
    
    Returns user if admin, raises 403 otherwise.
    """
    if current_user.normalized_role != Role.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    
    return current_user


def require_admin_or_agent(current_user: TokenPayload = Depends(get_current_user)) -> TokenPayload:
    """
    Dependency that requires Admin or Agent role.
    
    Returns user if allowed, raises 403 for read-only users.
    """
    if current_user.normalized_role not in (Role.ADMIN.value, Role.AGENT.value):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin or Agent access required"
        )
    
    return current_user
