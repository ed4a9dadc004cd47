"""
Request authentication for the API.

User sessions are itsdangerous-signed, time-limited tokens carrying the user id,
read from the session cookie or an "Authorization: Bearer" header. Issuing them
belongs to the login flow; create_session_token exists for that flow and tests.

Admin routes use a static X-Admin-Key, the cron endpoint a bearer CRON_SECRET.
"""
import logging
import secrets

from fastapi import Depends, Header, HTTPException, Request, status
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.models.user import User

logger = logging.getLogger(__name__)

_serializer = URLSafeTimedSerializer(settings.session_secret, salt="user-session")


def create_session_token(user_id: str) -> str:
    return _serializer.dumps({"uid": user_id})


def read_session_token(token: str) -> str | None:
    """User id from a valid token, None if tampered with or expired."""
    try:
        data = _serializer.loads(token, max_age=settings.session_ttl)
    except (BadSignature, SignatureExpired):
        return None
    uid = data.get("uid") if isinstance(data, dict) else None
    return uid if isinstance(uid, str) else None


def _bearer(authorization: str | None) -> str | None:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


def _token_from_request(request: Request) -> str | None:
    return _bearer(request.headers.get("Authorization")) or request.cookies.get(settings.session_cookie_name)


def get_optional_user(request: Request, db: Session = Depends(get_db)) -> User | None:
    token = _token_from_request(request)
    if not token:
        return None
    user_id = read_session_token(token)
    if not user_id:
        return None
    return db.query(User).filter(User.id == user_id).one_or_none()


def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_admin(
    x_admin_key: str | None = Header(default=None),
    x_admin_user: str | None = Header(default=None),
) -> str:
    """
    Returns the acting admin's name for the activity log (X-Admin-User, or "admin").
    Admin routes stay closed while ADMIN_API_KEY is unset.
    """
    expected = settings.admin_api_key
    if not expected or not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized - Admin only")
    return (x_admin_user or "").strip() or "admin"


def verify_cron_secret(authorization: str | None = Header(default=None)) -> None:
    if not settings.cron_secret:
        logger.error("cron_secret_not_configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Server configuration error")
    token = _bearer(authorization)
    if not token or not secrets.compare_digest(token, settings.cron_secret):
        logger.warning("cron_unauthorized")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
