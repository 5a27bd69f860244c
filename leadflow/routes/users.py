"""
User management API routes.

Admin only: list accounts, create them, change roles and reset passwords.
"""
from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.database import get_db
from leadflow.dependencies.auth import Role, TokenPayload, require_admin
from leadflow.models.user import User
from leadflow.routes.leads import iso
from leadflow.services.errors import ServiceError
from leadflow.services.user_service import UserService


router = APIRouter(prefix="/api/users", tags=["users"])


class CreateUserRequest(BaseModel):
    """Request model for creating a user."""
    email: str | None = None
    password: str | None = None
    role: str | None = None


class UpdateRoleRequest(BaseModel):
    role: str | None = None


class ResetPasswordRequest(BaseModel):
    password: str | None = None


def user_to_dict(user: User) -> dict:
    """Convert User model to response dict. The password hash is never returned."""
    return {
        "id": user.id,
        "email": user.email,
        "role": Role.normalize(user.role),
        "is_active": user.is_active,
        "last_login_at": iso(user.last_login_at),
        "created_at": iso(user.created_at),
    }


@router.get("", response_model=list[dict])
async def list_users(
    current_user: TokenPayload = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """List all users ordered by email."""
    users = await UserService(db).list_users()
    return [user_to_dict(user) for user in users]


@router.post("", response_model=dict)
async def create_user(
    request: CreateUserRequest,
    current_user: TokenPayload = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Create an active user.

    400 on a missing or invalid email, password or role; 409 if the email
    is already taken (case-insensitive).
    """
    try:
        user = await UserService(db).create_user(
            email=request.email,
            password=request.password,
            role=request.role,
            actor_email=current_user.email
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return user_to_dict(user)


@router.patch("/{user_id}/role", response_model=dict)
async def update_user_role(
    user_id: str,
    request: UpdateRoleRequest,
    current_user: TokenPayload = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Change a user's role."""
    try:
        user = await UserService(db).update_role(user_id, request.role, actor_email=current_user.email)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return user_to_dict(user)


@router.post("/{user_id}/reset-password", status_code=status.HTTP_204_NO_CONTENT)
async def reset_user_password(
    user_id: str,
    request: ResetPasswordRequest,
    current_user: TokenPayload = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Set a new password for a user."""
    try:
        await UserService(db).reset_password(user_id, request.password, actor_email=current_user.email)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return Response(status_code=status.HTTP_204_NO_CONTENT)
