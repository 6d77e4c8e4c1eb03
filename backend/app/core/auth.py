import secrets

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from app.core.settings import settings


security = HTTPBasic(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Basic"})


def require_webhook_basic_auth(credentials: HTTPBasicCredentials | None = Depends(security)) -> None:
    """Chargebee signs nothing; its webhooks authenticate with HTTP basic auth."""
    username = settings.chargebee_webhook_username
    password = settings.chargebee_webhook_password
    if username is None or password is None:
        if settings.is_production:
            raise RuntimeError("Chargebee webhook credentials are not set")
        return

    if credentials is None:
        raise _unauthorized("Authentication required")

    username_ok = secrets.compare_digest(credentials.username.encode("utf-8"), username.encode("utf-8"))
    password_ok = secrets.compare_digest(credentials.password.encode("utf-8"), password.encode("utf-8"))
    if not (username_ok and password_ok):
        raise _unauthorized("Invalid credentials")
