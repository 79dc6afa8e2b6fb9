"""
Tests for authentication, account management and admin routes.
"""

import re
import uuid
from datetime import datetime, timedelta

from app.core.auth import verify_password
from app.db.base_crud import get_user_by_email, update_user
from app.db.crud.notification_crud import create_notification
from app.db.models import AccountStatus, Call, Notification, NotificationType, User

SIGNUP = {"email": "Nouveau@Restaurant.fr", "password": "motdepasse123", "confirmPassword": "motdepasse123"}


def _token_from(html, path):
    match = re.search(rf"{path}\?token=([0-9a-f]+)", html)
    assert match, html
    return match.group(1)


# =============================================================================
# Signup and verification
# =============================================================================

def test_signup_creates_trial_account(client, db, sent_emails):
    response = client.post("/api/auth/signup", json=SIGNUP)

    assert response.status_code == 201
    user = get_user_by_email(db, "nouveau@restaurant.fr")
    assert user is not None
    assert user.is_verified is False
    assert user.account_status == AccountStatus.TRIAL
    assert user.countdown_end - user.countdown_start == timedelta(days=30)
    assert response.json()["user"]["email"] == "nouveau@restaurant.fr"
    assert "passwordHash" not in response.json()["user"]

    to_address, subject, _ = sent_emails[0]
    assert to_address == "nouveau@restaurant.fr"
    assert "Vérifiez" in subject


def test_signup_validation(client, user):
    short = client.post("/api/auth/signup", json={**SIGNUP, "password": "court", "confirmPassword": "court"})
    assert short.status_code == 400
    assert short.json()["detail"] == "Le mot de passe doit contenir au moins 8 caractères"

    mismatch = client.post("/api/auth/signup", json={**SIGNUP, "confirmPassword": "autrechose1"})
    assert mismatch.status_code == 400
    assert mismatch.json()["detail"] == "Les mots de passe ne correspondent pas"

    duplicate = client.post("/api/auth/signup", json={**SIGNUP, "email": user.email})
    assert duplicate.status_code == 400
    assert duplicate.json()["detail"] == "Un compte existe déjà avec cet email"


def test_verify_email(client, db, sent_emails):
    client.post("/api/auth/signup", json=SIGNUP)
    token = _token_from(sent_emails[0][2], "verify-email")

    response = client.post("/api/auth/verify-email", json={"token": token})

    assert response.status_code == 200
    user = get_user_by_email(db, "nouveau@restaurant.fr")
    assert user.is_verified is True
    assert user.verification_token is None

    again = client.post("/api/auth/verify-email", json={"token": token})
    assert again.status_code == 400


def test_verify_email_with_expired_token(client, db, make_user):
    user = make_user(is_verified=False, verification_token="abc123",
                     verification_token_expiry=datetime.utcnow() - timedelta(minutes=1))

    response = client.post("/api/auth/verify-email", json={"token": "abc123"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Token expiré"
    db.refresh(user)
    assert user.is_verified is False


# =============================================================================
# Login
# =============================================================================

def test_login(client, user):
    response = client.post("/api/auth/login", json={"email": "CLIENT@restaurant.fr", "password": "motdepasse123"})

    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["id"] == str(user.id)

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.json()["email"] == user.email


def test_login_with_wrong_password(client, user):
    response = client.post("/api/auth/login", json={"email": user.email, "password": "mauvais-mdp"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Email ou mot de passe incorrect"


def test_invalid_token(client):
    response = client.get("/api/auth/me", headers={"Authorization": "Bearer pas-un-jwt"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Token invalide"


# =============================================================================
# Password reset
# =============================================================================

def test_forgot_password_does_not_reveal_accounts(client, user, sent_emails):
    known = client.post("/api/auth/forgot-password", json={"email": user.email})
    unknown = client.post("/api/auth/forgot-password", json={"email": "inconnu@restaurant.fr"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
    assert len(sent_emails) == 1


def test_reset_password(client, db, user, sent_emails):
    client.post("/api/auth/forgot-password", json={"email": user.email})
    token = _token_from(sent_emails[0][2], "reset-password")

    response = client.post("/api/auth/reset-password", json={
        "token": token, "password": "nouveaumdp456", "confirmPassword": "nouveaumdp456"
    })

    assert response.status_code == 200
    db.refresh(user)
    assert verify_password("nouveaumdp456", user.password_hash)
    assert user.reset_password_token is None

    reused = client.post("/api/auth/reset-password", json={
        "token": token, "password": "encoreunmdp7", "confirmPassword": "encoreunmdp7"
    })
    assert reused.status_code == 400


# =============================================================================
# Account
# =============================================================================

def test_change_password_notifies(client, db, user, auth_headers):
    wrong = client.post("/api/account/change-password", headers=auth_headers, json={
        "currentPassword": "mauvais-mdp", "newPassword": "nouveaumdp456"
    })
    assert wrong.status_code == 400

    response = client.post("/api/account/change-password", headers=auth_headers, json={
        "currentPassword": "motdepasse123", "newPassword": "nouveaumdp456", "confirmPassword": "nouveaumdp456"
    })

    assert response.status_code == 200
    notification = db.query(Notification).filter(Notification.user_id == user.id).one()
    assert notification.type == NotificationType.PASSWORD_CHANGED


def test_change_email_rejects_taken_address(client, make_user, auth_headers):
    make_user(email="pris@restaurant.fr")
    response = client.post("/api/account/change-email", headers=auth_headers, json={
        "newEmail": "pris@restaurant.fr", "password": "motdepasse123"
    })
    assert response.status_code == 400
    assert response.json()["detail"] == "Cet email est déjà utilisé"


def test_delete_account_removes_tenant_data(client, db, user, auth_headers, make_call):
    make_call()
    create_notification(db, user.id, NotificationType.DAILY_SUMMARY, "Résumé", "2 appels")
    user_id = user.id

    response = client.post("/api/account/delete", headers=auth_headers, json={"password": "motdepasse123"})

    assert response.status_code == 200
    db.expire_all()
    assert db.query(User).filter(User.id == user_id).first() is None
    assert db.query(Call).filter(Call.user_id == user_id).count() == 0
    assert db.query(Notification).filter(Notification.user_id == user_id).count() == 0


# =============================================================================
# Admin
# =============================================================================

def test_admin_routes_require_admin(client, auth_headers):
    response = client.get("/api/admin/users", headers=auth_headers)
    assert response.status_code == 403


def test_admin_lists_users_with_stats(client, admin, user, headers_for, make_call):
    make_call()

    response = client.get("/api/admin/users", headers=headers_for(admin))

    assert response.status_code == 200
    rows = {row["email"]: row for row in response.json()}
    assert rows[user.email]["stats"]["totalCalls"] == 1
    assert rows[user.email]["stats"]["healthStatus"] == "green"
    assert rows[admin.email]["stats"]["healthStatus"] == "red"


def test_admin_suspend_and_assign_plan(client, db, admin, user, headers_for):
    headers = headers_for(admin)

    suspended = client.post(f"/api/admin/users/{user.id}/suspend", headers=headers)
    assert suspended.json()["user"]["accountStatus"] == "suspended"

    planned = client.post(f"/api/admin/users/{user.id}/assign-plan", headers=headers, json={"plan": "premium"})
    assert planned.json()["user"]["plan"] == "premium"

    activated = client.post(f"/api/admin/users/{user.id}/activate", headers=headers)
    assert activated.json()["user"]["accountStatus"] == "active"


def test_admin_delete_guards(client, admin, headers_for):
    headers = headers_for(admin)

    own = client.delete(f"/api/admin/users/{admin.id}", headers=headers)
    assert own.status_code == 400

    missing = client.delete(f"/api/admin/users/{uuid.uuid4()}", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Utilisateur non trouvé"


def test_suspended_flag_is_visible_in_profile(client, db, user, auth_headers):
    update_user(db, user.id, {"account_status": AccountStatus.SUSPENDED})
    assert client.get("/api/auth/me", headers=auth_headers).json()["accountStatus"] == "suspended"
