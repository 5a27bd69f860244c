"""
User management service.

Admin-side account management: listing, creation, role changes and
password resets. Every change writes a SettingsActivity audit row in the
same transaction.
"""
import base64
import hashlib
import hmac
import json
import re
import secrets

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.dependencies.auth import Role
from leadflow.logging_config import get_logger
from leadflow.models.base import utcnow
from leadflow.models.setting import SettingsActivity
from leadflow.models.user import User
from leadflow.services.errors import ConflictError, NotFoundError, ValidationError

log = get_logger(component="users")

MIN_PASSWORD_LENGTH = 8
PASSWORD_HASH_ALGORITHM = "pbkdf2_sha256"
PASSWORD_HASH_ITERATIONS = 210_000

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+$")
VALID_ROLES = {role.value for role in Role}


def hash_password(password: str, iterations: int = PASSWORD_HASH_ITERATIONS) -> str:
    """
    Salted PBKDF2-SHA256 hash.

    Stored as 'pbkdf2_sha256$<iterations>$<salt>$<hash>' so the work factor
    can be raised without invalidating existing hashes.
    """
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, iterations)
    return "$".join([
        PASSWORD_HASH_ALGORITHM,
        str(iterations),
        base64.b64encode(salt).decode(),
        base64.b64encode(digest).decode(),
    ])


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored hash (constant-time compare)."""
    try:
        algorithm, iterations, salt, expected = password_hash.split("$")
        if algorithm != PASSWORD_HASH_ALGORITHM:
            return False
        digest = hashlib.pbkdf2_hmac("sha256", password.encode(), base64.b64decode(salt), int(iterations))
    except ValueError:
        return False
    return hmac.compare_digest(base64.b64encode(digest).decode(), expected)


def is_valid_email(email: str | None) -> bool:
    return bool(email and EMAIL_PATTERN.match(email.strip()))


def is_valid_password(password: str | None) -> bool:
    return bool(password and len(password.strip()) >= MIN_PASSWORD_LENGTH)


def is_valid_role(role: str | None) -> bool:
    if not role or not role.strip():
        return False
    return Role.normalize(role) in VALID_ROLES


class UserService:
    """Service for managing user accounts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_users(self) -> list[User]:
        """All users, ordered by email."""
        stmt = select(User).order_by(User.email)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_by_id(self, user_id: str) -> User | None:
        stmt = select(User).where(User.id == user_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup."""
        stmt = select(User).where(func.lower(User.email) == email.strip().lower())
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def create_user(
        self,
        email: str | None,
        password: str | None,
        role: str | None,
        actor_email: str | None = None
    ) -> User:
        """
        Create an active user.

        Args:
            email: Stored trimmed and lowercased
            password: At least 8 characters after trimming
            role: Admin, Agent or ReadOnly (any case, read-only/read_only accepted)
            actor_email: Email of the admin making the change, for the audit trail

        Raises:
            ValidationError: missing or invalid email, password or role
            ConflictError: a user with this email already exists
        """
        if not email or not email.strip() or not password or not password.strip():
            raise ValidationError("Email and password are required.")
        if not is_valid_email(email):
            raise ValidationError("Invalid email.")
        if not is_valid_password(password):
            raise ValidationError("Password too short.")
        if not is_valid_role(role):
            raise ValidationError("Invalid role.")

        normalized_email = email.strip().lower()
        if await self.get_by_email(normalized_email) is not None:
            raise ConflictError("Email already exists.")

        now = utcnow()
        normalized_role = Role.normalize(role)
        user = User(
            email=normalized_email,
            password_hash=hash_password(password),
            role=normalized_role,
            is_active=True,
            created_at=now,
            updated_at=now
        )
        self.db.add(user)
        self._audit("UserCreated", {
            "actorEmail": actor_email,
            "targetUserEmail": normalized_email,
            "role": normalized_role,
        }, now)
        await self.db.commit()

        log.info("user_created", target_email=normalized_email, role=normalized_role, actor_email=actor_email)
        return user

    async def update_role(self, user_id: str, role: str | None, actor_email: str | None = None) -> User:
        """
        Change a user's role.

        Raises:
            ValidationError: invalid role
            NotFoundError: no such user
        """
        if not is_valid_role(role):
            raise ValidationError("Invalid role.")

        user = await self.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")

        old_role = Role.normalize(user.role)
        new_role = Role.normalize(role)
        user.role = new_role
        self._audit("UserRoleChanged", {
            "actorEmail": actor_email,
            "targetUserEmail": user.email,
            "oldRole": old_role,
            "newRole": new_role,
        })
        await self.db.commit()

        log.info("user_role_changed", target_email=user.email, old_role=old_role, new_role=new_role)
        return user

    async def reset_password(self, user_id: str, password: str | None, actor_email: str | None = None) -> None:
        """
        Replace a user's password.

        Raises:
            ValidationError: missing or too short password
            NotFoundError: no such user
        """
        if not password or not password.strip():
            raise ValidationError("Password is required.")
        if not is_valid_password(password):
            raise ValidationError("Password too short.")

        user = await self.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")

        user.password_hash = hash_password(password)
        self._audit("UserPasswordReset", {
            "actorEmail": actor_email,
            "targetUserEmail": user.email,
        })
        await self.db.commit()

        log.info("user_password_reset", target_email=user.email, actor_email=actor_email)

    def _audit(self, activity_type: str, data: dict, created_at=None) -> None:
        self.db.add(SettingsActivity(
            type=activity_type,
            data_json=json.dumps(data),
            created_at=created_at or utcnow()
        ))
