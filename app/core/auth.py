"""
Authentication and authorization utilities.
Handles JWT token creation, validation, and account access checks.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from uuid import UUID

from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from app.config.settings import settings
from app.db.database import get_db
from app.db.models import User, UserRole

logger = logging.getLogger(__name__)

# Password and API key hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# JWT settings - using configuration from settings
SECRET_KEY = settings.jwt_secret_key
ALGORITHM = settings.jwt_algorithm
ACCESS_TOKEN_EXPIRE_MINUTES = settings.jwt_access_token_expire_minutes

# HTTP Bearer token scheme; missing credentials are reported in French below
security = HTTPBearer(auto_error=False)


class AuthError(HTTPException):
    """Custom authentication error."""
    def __init__(self, detail: str = "Non authentifié"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return pwd_context.hash(password)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Dict[str, Any]:
    """Verify and decode a JWT token."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise AuthError("Token invalide")


def generate_verification_token() -> str:
    """Random single-use token for email verification and password reset."""
    return secrets.token_hex(32)


def get_verification_token_expiry(hours: Optional[int] = None) -> datetime:
    """Expiry for a freshly issued verification token."""
    return datetime.utcnow() + timedelta(hours=hours or settings.verification_token_expire_hours)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Get the current authenticated user."""
    if credentials is None:
        raise AuthError("Non authentifié")

    payload = verify_token(credentials.credentials)
    user_id = payload.get("sub")
    if user_id is None:
        raise AuthError("Token invalide")

    try:
        user = db.query(User).filter(User.id == UUID(user_id)).first()
    except ValueError as e:
        logger.warning(f"Invalid UUID in token: {e}")
        raise AuthError("Token invalide")

    if user is None:
        raise AuthError("Utilisateur non trouvé")

    return user


def has_active_subscription(user: User) -> bool:
    """True when the Stripe subscription is active and not past its period end."""
    if user.subscription_status != "active":
        return False
    if user.subscription_current_period_end and user.subscription_current_period_end < datetime.utcnow():
        return False
    return True


async def require_verified(current_user: User = Depends(get_current_user)) -> User:
    """Require a verified email address."""
    if not current_user.is_verified:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Email non vérifié")
    return current_user


async def require_subscription(current_user: User = Depends(require_verified)) -> User:
    """Require a verified user with a running subscription."""
    if current_user.subscription_status != "active":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Abonnement requis")
    if not has_active_subscription(current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Abonnement expiré")
    return current_user


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """Require the platform admin role."""
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Accès refusé : droits administrateur requis"
        )
    return current_user
