"""
API routes for authentication.
Handles signup, login, email verification and password reset.
"""

import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, HTTPException, Depends, status
from sqlalchemy.orm import Session

from app.config.settings import settings
from app.core.auth import (
    verify_password, get_password_hash, create_access_token, get_current_user,
    generate_verification_token, get_verification_token_expiry, ACCESS_TOKEN_EXPIRE_MINUTES
)
from app.db.database import get_db
from app.db.base_crud import (
    create_user, get_user_by_email, get_user_by_verification_token, get_user_by_reset_token, update_user
)
from app.db.models import User, UserRole, AccountStatus
from app.models.auth_schemas import (
    SignupRequest, LoginRequest, LoginResponse, VerifyEmailRequest, EmailRequest, ResetPasswordRequest
)
from app.services.email_service import email_service
from app.services.stripe_service import stripe_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["authentication"])

MIN_PASSWORD_LENGTH = 8
FORGOT_PASSWORD_MESSAGE = "Si un compte existe avec cet email, un lien de réinitialisation a été envoyé"


def validate_new_password(password: str, confirmation: str) -> None:
    """Reject short or mismatched passwords with a 400."""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Le mot de passe doit contenir au moins 8 caractères"
        )
    if password != confirmation:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Les mots de passe ne correspondent pas"
        )


def _login_response(user: User) -> LoginResponse:
    access_token = create_access_token(
        data={"sub": str(user.id), "email": user.email},
        expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    return LoginResponse(
        access_token=access_token,
        token_type="bearer",
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=user.to_dict(),
    )


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(
    signup_data: SignupRequest,
    db: Session = Depends(get_db)
):
    """Create an account in trial and send the verification email."""
    try:
        validate_new_password(signup_data.password, signup_data.confirm_password)

        email = signup_data.email.strip().lower()
        if get_user_by_email(db, email):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Un compte existe déjà avec cet email"
            )

        now = datetime.utcnow()
        verification_token = generate_verification_token()
        user = create_user(db, {
            "email": email,
            "password_hash": get_password_hash(signup_data.password),
            "role": UserRole.USER,
            "is_verified": False,
            "verification_token": verification_token,
            "verification_token_expiry": get_verification_token_expiry(),
            "countdown_start": now,
            "countdown_end": now + timedelta(days=settings.trial_days),
            "account_status": AccountStatus.TRIAL,
        })

        if stripe_service.is_configured:
            try:
                customer_id = stripe_service.create_customer(user.email, str(user.id))
                user = update_user(db, user.id, {"stripe_customer_id": customer_id})
            except Exception as e:
                logger.error(f"Stripe customer creation failed for {user.email}: {e}")

        try:
            email_service.send_verification_email(user.email, verification_token)
        except Exception as e:
            logger.error(f"❌ Verification email to {user.email} failed: {e}")

        logger.info(f"✅ New account created: {user.id}")
        return {
            "message": "Compte créé avec succès. Veuillez vérifier votre email.",
            "user": user.to_dict(),
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Signup error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur lors de la création du compte"
        )


@router.post("/login", response_model=LoginResponse)
async def login(
    credentials: LoginRequest,
    db: Session = Depends(get_db)
):
    """Authenticate with email and password."""
    user = get_user_by_email(db, credentials.email)
    if not user or not verify_password(credentials.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Email ou mot de passe incorrect"
        )

    logger.info(f"User logged in: {user.id}")
    return _login_response(user)


@router.get("/me")
async def get_me(current_user: User = Depends(get_current_user)):
    """Current user profile."""
    return current_user.to_dict()


@router.post("/logout")
async def logout(current_user: User = Depends(get_current_user)):
    """Tokens are stateless; the client discards its token."""
    logger.info(f"User logged out: {current_user.id}")
    return {"message": "Déconnexion réussie"}


@router.post("/verify-email")
async def verify_email(
    request: VerifyEmailRequest,
    db: Session = Depends(get_db)
):
    """Confirm an email address with the emailed token."""
    user = get_user_by_verification_token(db, request.token)
    if not user:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Token invalide ou expiré")

    if user.verification_token_expiry and user.verification_token_expiry < datetime.utcnow():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Token expiré")

    update_user(db, user.id, {
        "is_verified": True,
        "verification_token": None,
        "verification_token_expiry": None,
    })
    logger.info(f"✅ Email verified for user {user.id}")
    return {"message": "Email vérifié avec succès"}


@router.post("/resend-verification")
async def resend_verification(
    request: EmailRequest,
    db: Session = Depends(get_db)
):
    """Issue a new verification token."""
    user = get_user_by_email(db, request.email)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Utilisateur non trouvé")
    if user.is_verified:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email déjà vérifié")

    token = generate_verification_token()
    update_user(db, user.id, {
        "verification_token": token,
        "verification_token_expiry": get_verification_token_expiry(),
    })

    try:
        email_service.send_verification_email(user.email, token)
    except Exception as e:
        logger.error(f"❌ Verification email to {user.email} failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur lors de l'envoi de l'email"
        )
    return {"message": "Email de vérification envoyé"}


@router.post("/forgot-password")
async def forgot_password(
    request: EmailRequest,
    db: Session = Depends(get_db)
):
    """Send a reset link; the answer never reveals whether the account exists."""
    user = get_user_by_email(db, request.email)
    if user:
        token = generate_verification_token()
        update_user(db, user.id, {
            "reset_password_token": token,
            "reset_password_token_expiry": get_verification_token_expiry(settings.reset_token_expire_hours),
        })
        try:
            email_service.send_password_reset_email(user.email, token)
        except Exception as e:
            logger.error(f"❌ Password reset email to {user.email} failed: {e}")

    return {"message": FORGOT_PASSWORD_MESSAGE}


@router.post("/reset-password")
async def reset_password(
    request: ResetPasswordRequest,
    db: Session = Depends(get_db)
):
    """Set a new password with a reset token."""
    validate_new_password(request.password, request.confirm_password)

    user = get_user_by_reset_token(db, request.token)
    if not user:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Token invalide ou expiré")
    if user.reset_password_token_expiry and user.reset_password_token_expiry < datetime.utcnow():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Token expiré")

    update_user(db, user.id, {
        "password_hash": get_password_hash(request.password),
        "reset_password_token": None,
        "reset_password_token_expiry": None,
    })
    logger.info(f"🔑 Password reset for user {user.id}")
    return {"message": "Mot de passe réinitialisé avec succès"}
