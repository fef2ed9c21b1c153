from __future__ import annotations

import pyotp

from learnhub.core.config import settings


def new_secret() -> str:
    return pyotp.random_base32()


def provisioning_uri(secret: str, *, account_name: str) -> str:
    return pyotp.TOTP(secret).provisioning_uri(name=account_name, issuer_name=settings.mfa_issuer_name)


def verify_code(secret: str | None, code: str | None) -> bool:
    code = "".join(str(code or "").split())
    if not secret or not code.isdigit():
        return False
    return bool(pyotp.TOTP(secret).verify(code, valid_window=max(0, int(settings.mfa_valid_window))))
