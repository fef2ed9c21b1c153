import hashlib
import json
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from learnhub.core.config import settings
from learnhub.core.rate_limit import client_ip, rate_limit
from learnhub.core.security import (
    create_access_token,
    create_mfa_token,
    decode_mfa_token,
    get_current_user,
    hash_password,
    verify_password,
)
from learnhub.core.security_audit_log import audit_log
from learnhub.db.session import get_db
from learnhub.models.account_token import AccountTokenPurpose
from learnhub.models.security_audit import SecurityAuditEvent
from learnhub.models.user import User, UserRole
from learnhub.services import account_tokens, mfa

router = APIRouter(prefix="/auth", tags=["auth"])

_GENERIC_CONFIRMATION_MESSAGE = "if the e-mail exists, a confirmation link will be sent"
_GENERIC_RESET_MESSAGE = "if the e-mail exists, a reset link will be sent"


class TokenResponse(BaseModel):
    access_token: str | None = None
    token_type: str = "bearer"
    expires_in: int | None = None
    requires_mfa: bool = False
    mfa_token: str | None = None
    email_confirmation_required: bool = False


class MeResponse(BaseModel):
    id: str
    name: str
    full_name: str | None
    role: str
    email: str | None = None
    email_confirmed: bool = True
    mfa_enabled: bool = False


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class RegisterRequest(BaseModel):
    name: str
    full_name: str | None = None
    email: str | None = None
    password: str


class MfaCodeRequest(BaseModel):
    code: str


class MfaVerifyRequest(BaseModel):
    mfa_token: str
    code: str


class EmailRequest(BaseModel):
    email: str


class TokenRequest(BaseModel):
    token: str


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str


def _device_hash(*, user_agent: str, pepper: str | None = None) -> str:
    ua = str(user_agent or "").strip()
    p = str(pepper or "").strip()
    raw = (ua + "|" + p).encode("utf-8", errors="ignore")
    return hashlib.sha256(raw).hexdigest()


def _try_parse_json(meta: str | None) -> dict | None:
    if not meta:
        return None
    try:
        obj = json.loads(str(meta))
    except ValueError:
        return None
    return obj if isinstance(obj, dict) else None


def _normalize_email(value: str | None) -> str | None:
    email = str(value or "").strip().lower()
    if not email:
        return None
    local, _, domain = email.partition("@")
    if not local or "." not in domain:
        raise HTTPException(status_code=400, detail="invalid e-mail")
    return email


def _check_password_length(password: str | None) -> None:
    if not password or len(password) < int(settings.password_min_length or 0):
        raise HTTPException(status_code=400, detail="password too short")


def _is_new_login_context(*, db: Session, user_id, ip: str | None, device_hash: str) -> bool:
    rows = db.scalars(
        select(SecurityAuditEvent)
        .where(SecurityAuditEvent.target_user_id == user_id)
        .where(SecurityAuditEvent.event_type == "auth_login_success")
        .order_by(SecurityAuditEvent.created_at.desc())
        .limit(50)
    ).all()
    if not rows:
        return False

    seen_devices = {str((_try_parse_json(e.meta) or {}).get("device_hash") or "") for e in rows}
    seen_ips = {str(e.ip) for e in rows if e.ip}
    return device_hash not in seen_devices or (bool(ip) and str(ip) not in seen_ips)


def _record_login(*, db: Session, request: Request, user: User) -> None:
    ip = client_ip(request)
    ua = str(request.headers.get("user-agent") or "").strip()
    dh = _device_hash(user_agent=ua, pepper=settings.jwt_secret_key)

    if _is_new_login_context(db=db, user_id=user.id, ip=ip, device_hash=dh):
        audit_log(
            db=db,
            request=request,
            event_type="auth_login_new_context",
            actor_user_id=user.id,
            target_user_id=user.id,
            meta={"ip": ip, "user_agent": ua, "device_hash": dh},
        )

    audit_log(
        db=db,
        request=request,
        event_type="auth_login_success",
        actor_user_id=user.id,
        target_user_id=user.id,
        meta={"ip": ip, "user_agent": ua, "device_hash": dh},
    )


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user_id=str(user.id), role=user.role.value),
        expires_in=int(settings.jwt_access_token_minutes) * 60,
    )


def _send_confirmation(db: Session, user: User) -> None:
    raw = account_tokens.issue_token(
        db,
        user_id=user.id,
        purpose=AccountTokenPurpose.email_confirmation,
        ttl=timedelta(hours=int(settings.email_confirmation_token_hours)),
    )
    db.commit()
    account_tokens.deliver(user=user, purpose=AccountTokenPurpose.email_confirmation, raw=raw)


@router.post("/register", response_model=TokenResponse)
def register(
    request: Request,
    payload: RegisterRequest,
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_register", limit=10, window_seconds=60),
):
    if not settings.allow_public_register:
        raise HTTPException(status_code=403, detail="registration disabled")

    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    _check_password_length(payload.password)
    email = _normalize_email(payload.email)
    if settings.require_email_confirmation and email is None:
        raise HTTPException(status_code=400, detail="e-mail is required")

    existing = db.scalar(select(User).where(User.name == name))
    if existing is None and email is not None:
        existing = db.scalar(select(User).where(User.email == email))
    if existing is not None:
        audit_log(db=db, request=request, event_type="auth_register_failed", meta={"reason": "user_exists", "username": name})
        db.commit()
        raise HTTPException(status_code=409, detail="user already exists")

    needs_confirmation = bool(settings.require_email_confirmation)
    user = User(
        name=name,
        full_name=payload.full_name,
        email=email,
        email_confirmed=not needs_confirmation,
        role=UserRole.employee,
        password_hash=hash_password(payload.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    audit_log(db=db, request=request, event_type="auth_register_success", actor_user_id=user.id, target_user_id=user.id)
    db.commit()

    if needs_confirmation:
        _send_confirmation(db, user)
        return TokenResponse(email_confirmation_required=True)
    return _token_response(user)


@router.post("/token", response_model=TokenResponse)
def token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_token", limit=20, window_seconds=60),
):
    user = db.scalar(select(User).where(User.name == form_data.username))
    if user is None or not verify_password(form_data.password, user.password_hash):
        audit_log(db=db, request=request, event_type="auth_login_failed", meta={"username": form_data.username})
        db.commit()
        raise HTTPException(status_code=401, detail="invalid credentials")

    if not user.email_confirmed:
        audit_log(
            db=db,
            request=request,
            event_type="auth_login_failed",
            target_user_id=user.id,
            meta={"username": form_data.username, "reason": "email_not_confirmed"},
        )
        db.commit()
        raise HTTPException(
            status_code=403,
            detail={"error_code": "email_not_confirmed", "error_message": "confirm your e-mail first"},
        )

    if user.mfa_enabled:
        audit_log(db=db, request=request, event_type="auth_login_mfa_required", actor_user_id=user.id, target_user_id=user.id)
        db.commit()
        return TokenResponse(requires_mfa=True, mfa_token=create_mfa_token(user_id=str(user.id)))

    _record_login(db=db, request=request, user=user)
    db.commit()

    return _token_response(user)


@router.post("/mfa/verify", response_model=TokenResponse)
def mfa_verify(
    request: Request,
    body: MfaVerifyRequest,
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_mfa_verify", limit=10, window_seconds=60),
):
    user_id = decode_mfa_token(body.mfa_token)
    user = db.scalar(select(User).where(User.id == user_id)) if user_id else None
    if user is None or not user.mfa_enabled or not user.mfa_secret:
        raise HTTPException(status_code=401, detail="invalid mfa session")

    if not mfa.verify_code(user.mfa_secret, body.code):
        audit_log(db=db, request=request, event_type="auth_mfa_failed", target_user_id=user.id)
        db.commit()
        raise HTTPException(status_code=401, detail="invalid mfa code")

    _record_login(db=db, request=request, user=user)
    db.commit()
    return _token_response(user)


@router.post("/mfa/setup")
def mfa_setup(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if user.mfa_enabled:
        raise HTTPException(status_code=409, detail="mfa already enabled")

    secret = mfa.new_secret()
    user.mfa_secret = secret
    db.add(user)
    audit_log(db=db, request=request, event_type="auth_mfa_setup", actor_user_id=user.id, target_user_id=user.id)
    db.commit()
    return {"secret": secret, "otpauth_uri": mfa.provisioning_uri(secret, account_name=user.email or user.name)}


@router.post("/mfa/enable")
def mfa_enable(
    request: Request,
    body: MfaCodeRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="auth_mfa_enable", limit=10, window_seconds=60),
):
    if not user.mfa_secret:
        raise HTTPException(status_code=400, detail="mfa not set up")
    if not mfa.verify_code(user.mfa_secret, body.code):
        raise HTTPException(status_code=401, detail="invalid mfa code")

    user.mfa_enabled = True
    db.add(user)
    audit_log(db=db, request=request, event_type="auth_mfa_enabled", actor_user_id=user.id, target_user_id=user.id)
    db.commit()
    return {"ok": True}


@router.post("/mfa/disable")
def mfa_disable(
    request: Request,
    body: MfaCodeRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="auth_mfa_disable", limit=10, window_seconds=60),
):
    if user.mfa_enabled and not mfa.verify_code(user.mfa_secret, body.code):
        raise HTTPException(status_code=401, detail="invalid mfa code")

    user.mfa_enabled = False
    user.mfa_secret = None
    db.add(user)
    audit_log(db=db, request=request, event_type="auth_mfa_disabled", actor_user_id=user.id, target_user_id=user.id)
    db.commit()
    return {"ok": True}


@router.get("/mfa/status")
def mfa_status(user: User = Depends(get_current_user)):
    return {"mfa_enabled": bool(user.mfa_enabled)}


@router.post("/confirm-email")
def confirm_email(
    request: Request,
    body: TokenRequest,
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_confirm_email", limit=20, window_seconds=60),
):
    user = account_tokens.consume_token(db, raw=body.token, purpose=AccountTokenPurpose.email_confirmation)
    if user is None:
        raise HTTPException(status_code=400, detail="invalid or expired token")

    user.email_confirmed = True
    db.add(user)
    audit_log(db=db, request=request, event_type="auth_email_confirmed", actor_user_id=user.id, target_user_id=user.id)
    db.commit()
    return {"ok": True}


@router.post("/resend-confirmation")
def resend_confirmation(
    body: EmailRequest,
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_resend_confirmation", limit=5, window_seconds=60),
):
    email = _normalize_email(body.email)
    user = db.scalar(select(User).where(User.email == email)) if email else None
    if user is None:
        return {"ok": True, "message": _GENERIC_CONFIRMATION_MESSAGE}
    if user.email_confirmed:
        raise HTTPException(status_code=400, detail="e-mail already confirmed")

    _send_confirmation(db, user)
    return {"ok": True, "message": _GENERIC_CONFIRMATION_MESSAGE}


@router.post("/forgot-password")
def forgot_password(
    request: Request,
    body: EmailRequest,
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_forgot_password", limit=5, window_seconds=60),
):
    email = _normalize_email(body.email)
    user = db.scalar(select(User).where(User.email == email)) if email else None
    if user is None:
        return {"ok": True, "message": _GENERIC_RESET_MESSAGE}

    raw = account_tokens.issue_token(
        db,
        user_id=user.id,
        purpose=AccountTokenPurpose.password_reset,
        ttl=timedelta(minutes=int(settings.password_reset_token_minutes)),
    )
    audit_log(db=db, request=request, event_type="auth_password_reset_requested", target_user_id=user.id)
    db.commit()
    account_tokens.deliver(user=user, purpose=AccountTokenPurpose.password_reset, raw=raw)
    return {"ok": True, "message": _GENERIC_RESET_MESSAGE}


@router.post("/reset-password")
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_reset_password", limit=10, window_seconds=60),
):
    _check_password_length(body.new_password)

    user = account_tokens.consume_token(db, raw=body.token, purpose=AccountTokenPurpose.password_reset)
    if user is None:
        raise HTTPException(status_code=400, detail="invalid or expired token")

    user.password_hash = hash_password(body.new_password)
    db.add(user)
    audit_log(db=db, request=request, event_type="auth_password_reset_success", actor_user_id=user.id, target_user_id=user.id)
    db.commit()
    return {"ok": True}


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return {
        "id": str(user.id),
        "name": user.name,
        "full_name": user.full_name,
        "role": user.role.value,
        "email": user.email,
        "email_confirmed": bool(user.email_confirmed),
        "mfa_enabled": bool(user.mfa_enabled),
    }


@router.post("/change-password")
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="auth_change_password", limit=10, window_seconds=60),
):
    if not body.current_password or not verify_password(body.current_password, user.password_hash):
        audit_log(db=db, request=request, event_type="auth_change_password_failed", actor_user_id=user.id, target_user_id=user.id)
        db.commit()
        raise HTTPException(status_code=401, detail="invalid credentials")

    _check_password_length(body.new_password)

    user.password_hash = hash_password(body.new_password)
    db.add(user)
    audit_log(db=db, request=request, event_type="auth_change_password_success", actor_user_id=user.id, target_user_id=user.id)
    db.commit()
    return {"ok": True}
