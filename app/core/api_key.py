"""
API key generation and authentication for machine-to-machine endpoints.

Keys look like ``speedai_live_`` followed by 64 lowercase hex characters.
Only a bcrypt hash is stored; the plaintext is shown once at generation.
"""

import logging
import re
import secrets

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.core.auth import pwd_context
from app.db.database import get_db
from app.db.base_crud import get_users_with_api_keys
from app.db.models import User

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "speedai_live_"
API_KEY_PATTERN = re.compile(r"^speedai_live_[0-9a-f]{64}$")


class ApiKeyError(HTTPException):
    """API key authentication failure with a machine code and a French message."""
    def __init__(self, status_code: int, error: str, message: str):
        super().__init__(
            status_code=status_code,
            detail={"error": error, "message": message},
            headers={"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None,
        )


def generate_api_key() -> str:
    """Generate a new plaintext API key."""
    return f"{API_KEY_PREFIX}{secrets.token_hex(32)}"


def is_valid_api_key_format(api_key: str) -> bool:
    """Check the key shape without touching the database."""
    return bool(api_key) and API_KEY_PATTERN.match(api_key) is not None


def hash_api_key(api_key: str) -> str:
    """Hash an API key for storage."""
    return pwd_context.hash(api_key)


def verify_api_key(api_key: str, api_key_hash: str) -> bool:
    """Compare a plaintext key with a stored hash."""
    return pwd_context.verify(api_key, api_key_hash)


def find_user_by_api_key(db: Session, api_key: str):
    """Owner of the key, or None."""
    for user in get_users_with_api_keys(db):
        if verify_api_key(api_key, user.api_key_hash):
            return user
    return None


async def require_api_key(request: Request, db: Session = Depends(get_db)) -> User:
    """
    Authenticate a request by ``Authorization: Bearer <api key>``.

    Returns:
        User: Owner of the key (verified, with an active subscription)

    Raises:
        ApiKeyError: 401 or 403 with ``{"error", "message"}``
    """
    authorization = request.headers.get("Authorization")
    if not authorization:
        raise ApiKeyError(
            status.HTTP_401_UNAUTHORIZED,
            "Missing Authorization header",
            "Veuillez fournir une clé API dans le header Authorization: Bearer YOUR_API_KEY",
        )

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        raise ApiKeyError(
            status.HTTP_401_UNAUTHORIZED,
            "Invalid Authorization format",
            "Format attendu: Authorization: Bearer YOUR_API_KEY",
        )

    api_key = parts[1]
    if not is_valid_api_key_format(api_key):
        raise ApiKeyError(
            status.HTTP_401_UNAUTHORIZED,
            "Invalid API key format",
            "La clé API doit commencer par 'speedai_live_' et avoir 64 caractères hexadécimaux",
        )

    try:
        user = find_user_by_api_key(db, api_key)
    except Exception as e:
        logger.error(f"❌ API key lookup failed: {e}")
        raise ApiKeyError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Authentication error",
            "Erreur lors de l'authentification",
        )

    if user is None:
        raise ApiKeyError(status.HTTP_401_UNAUTHORIZED, "Invalid API key", "Clé API invalide ou révoquée")

    if not user.is_verified:
        raise ApiKeyError(
            status.HTTP_403_FORBIDDEN,
            "Email not verified",
            "Veuillez vérifier votre email avant d'utiliser l'API",
        )

    if user.subscription_status != "active":
        raise ApiKeyError(
            status.HTTP_403_FORBIDDEN,
            "No active subscription",
            "Un abonnement actif est requis pour utiliser l'API",
        )

    logger.info(f"API key authenticated for user {user.id}")
    return user
