"""
JWT token service for authentication.

Tokens carry the user's id, email and role and are validated against the
configured issuer and audience.
"""
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from leadflow.config import settings


class JWTService:
    """Service for creating and verifying JWT tokens."""
    
    def create_token(self, user_id: str, email: str, role: str, expires_in: timedelta | None = None) -> str:
        """
        Create a JWT token with user context.
        
        Args:
            user_id: User's unique ID
            email: User's email
            role: User role (Admin, Agent or ReadOnly)
            expires_in: Lifetime override; defaults to JWT_EXPIRATION_MINUTES
            
        Returns:
            Encoded JWT token string
        """
        lifetime = expires_in or timedelta(minutes=settings.JWT_EXPIRATION_MINUTES)
        expires = datetime.now(timezone.utc) + lifetime
        
        payload = {
            "sub": user_id,
            "email": email,
            "role": role,
            "iss": settings.JWT_ISSUER,
            "aud": settings.JWT_AUDIENCE,
            "exp": expires
        }
        
        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    
    def verify_token(self, token: str) -> dict | None:
        """
        Verify and decode a JWT token.
        
        Args:
            token: JWT token string
            
        Returns:
            Decoded payload dict or None if invalid
        """
        try:
            payload = jwt.decode(
                token, 
                settings.JWT_SECRET_KEY, 
                algorithms=[settings.JWT_ALGORITHM],
                audience=settings.JWT_AUDIENCE,
                issuer=settings.JWT_ISSUER
            )
            return payload
        except JWTError:
            return None
