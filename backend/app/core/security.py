from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.settings import settings
from app.models.account import Account
from app.services.cache import TTLCache, make_hash_key
from app.services.credits import ledger

logger = logging.getLogger(__name__)

GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
GOOGLE_ISSUERS = ["accounts.google.com", "https://accounts.google.com"]
SESSION_ALGORITHM = "HS256"


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str
    role: str


@dataclass(frozen=True)
class GoogleIdentity:
    sub: str
    email: str
    name: str | None = None


def _normalize_email(value: str) -> str:
    return str(value or "").strip().lower()


def _is_admin_email(email: str) -> bool:
    normalized = _normalize_email(email)
    if not normalized:
        return False
    return normalized in (settings.admin_emails or set())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _decide_role(*, email_is_admin: bool, db_role: str | None) -> tuple[str, str]:
    dbr = str(db_role or "").strip().lower()
    if dbr == "admin":
        return ("admin", "db_account")
    if email_is_admin:
        return ("admin", "admin_emails")
    if dbr:
        return (dbr, "db_account")
    return ("user", "default")


_JWK_CLIENT: jwt.PyJWKClient | None = None


def _google_jwk_client() -> jwt.PyJWKClient:
    global _JWK_CLIENT
    if _JWK_CLIENT is None:
        _JWK_CLIENT = jwt.PyJWKClient(GOOGLE_JWKS_URL)
    return _JWK_CLIENT


def verify_google_id_token(token: str) -> GoogleIdentity:
    audiences = settings.google_audiences
    if not audiences:
        raise HTTPException(status_code=500, detail="GOOGLE_CLIENT_ID is not configured")
    try:
        signing_key = _google_jwk_client().get_signing_key_from_jwt(token).key
        claims = jwt.decode(
            token,
            signing_key,
            algorithms=["RS256"],
            audience=audiences,
            issuer=GOOGLE_ISSUERS,
            options={"require": ["exp", "sub"]},
        )
    except jwt.PyJWTError as e:
        logger.info("auth.google_id_token_rejected error=%s", e)
        raise HTTPException(status_code=401, detail="Invalid Google token")

    email = _normalize_email(claims.get("email") or "")
    if not email or not claims.get("email_verified", False):
        raise HTTPException(status_code=401, detail="Google account email is not verified")
    return GoogleIdentity(sub=str(claims["sub"]), email=email, name=(claims.get("name") or None))


_TOKENINFO_CACHE = TTLCache(max_items=5000, ttl_s=300)


def _fetch_tokeninfo(access_token: str, timeout_s: float = 8) -> dict[str, Any] | None:
    import requests

    try:
        resp = requests.get(GOOGLE_TOKENINFO_URL, params={"access_token": access_token}, timeout=timeout_s)
    except requests.RequestException as e:
        logger.warning("auth.tokeninfo_failed error=%s", e)
        raise HTTPException(status_code=503, detail="Google token verification unavailable")
    if resp.status_code != 200:
        return None
    data = resp.json()
    return data if isinstance(data, dict) else None


def verify_extension_access_token(access_token: str) -> GoogleIdentity:
    if not settings.google_extension_client_id:
        raise HTTPException(status_code=500, detail="GOOGLE_EXTENSION_CLIENT_ID is not configured")

    cache_key = make_hash_key("google_tokeninfo", access_token)
    info = _TOKENINFO_CACHE.get(cache_key)
    if info is None:
        info = _fetch_tokeninfo(access_token)
        if info is None:
            raise HTTPException(status_code=401, detail="Invalid Google access token")
        _TOKENINFO_CACHE.set(cache_key, info)

    audience = info.get("aud") or info.get("azp")
    if audience != settings.google_extension_client_id:
        raise HTTPException(status_code=401, detail="Google access token was issued to another client")
    email = _normalize_email(info.get("email") or "")
    if not email or str(info.get("email_verified", "")).lower() not in {"true", "1"}:
        raise HTTPException(status_code=401, detail="Google account email is not verified")
    sub = str(info.get("sub") or info.get("user_id") or "").strip()
    if not sub:
        raise HTTPException(status_code=401, detail="Invalid Google access token")
    return GoogleIdentity(sub=sub, email=email)


def upsert_account(db: Session, identity: GoogleIdentity, credit_service: Any) -> tuple[Account, bool]:
    acct, created = ledger.get_or_create_account(db, identity.sub, email=identity.email, display_name=identity.name)
    if created:
        credit_service.grant_signup_credits(db, acct.id)
        acct = ledger.get_account(db, acct.id)

    role, reason = _decide_role(email_is_admin=_is_admin_email(identity.email), db_role=acct.role)
    changed = False
    if (acct.role or "") != role:
        acct.role = role
        changed = True
    if identity.email and (acct.email or "") != identity.email:
        acct.email = identity.email
        changed = True
    if identity.name and not acct.display_name:
        acct.display_name = identity.name
        changed = True
    if changed:
        db.commit()
        db.refresh(acct)
    logger.info("auth.login user=%s created=%s role=%s reason=%s", acct.id, created, role, reason)
    return acct, created


def issue_session_token(acct: Account) -> str:
    now = _utcnow()
    claims = {
        "sub": acct.id,
        "email": acct.email or "",
        "role": acct.role or "user",
        "iat": now,
        "exp": now + timedelta(seconds=settings.session_ttl_s),
    }
    return jwt.encode(claims, settings.session_secret, algorithm=SESSION_ALGORITHM)


def decode_session_token(token: str) -> dict[str, Any]:
    try:
        return dict(
            jwt.decode(
                token,
                settings.session_secret,
                algorithms=[SESSION_ALGORITHM],
                options={"require": ["exp", "sub"]},
            )
        )
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid bearer token")


def _get_bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = auth.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return token


def get_current_user(request: Request, db: Session = Depends(get_db)) -> CurrentUser:
    claims = decode_session_token(_get_bearer_token(request))
    user_id = str(claims.get("sub") or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    acct = db.query(Account).filter(Account.id == user_id).first()
    if acct is None:
        raise HTTPException(status_code=401, detail="Account no longer exists")
    role, _reason = _decide_role(email_is_admin=_is_admin_email(acct.email or ""), db_role=acct.role)
    return CurrentUser(id=acct.id, email=acct.email or "", role=role)


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if (user.role or "").lower() != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
