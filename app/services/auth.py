import logging
import secrets

from fastapi import Depends, Header, Request
from fastapi.security import HTTPBearer
from firebase_admin import auth as fb_auth

from app.core.config import settings
from app.core.errors import ApiError, STATUS_FORBIDDEN, unauthenticated
from app.services import gcp_clients

log = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


async def get_current_user(request: Request, cred = Depends(bearer)):
    """Verify the Firebase ID token and return its decoded claims (`uid`, `email`, ...)."""
    if not cred or not cred.credentials:
        raise unauthenticated("Missing token")
    try:
        decoded = fb_auth.verify_id_token(cred.credentials, app=gcp_clients.get_firebase_app())
    except fb_auth.ExpiredIdTokenError:
        raise unauthenticated("Token expired")
    except (fb_auth.InvalidIdTokenError, fb_auth.RevokedIdTokenError, ValueError) as e:
        log.debug("ID token rejected: %s", e)
        raise unauthenticated("Invalid token")
    uid = decoded.get("uid")
    if not uid:
        raise unauthenticated("Invalid token")
    request.state.uid = uid
    return decoded


def require_proxy_key(x_proxy_key: str | None = Header(default=None)):
    """Gate internal routes behind the shared `x-proxy-key` header."""
    expected = settings.proxy_key
    if not expected:
        log.error("PROXY_KEY not configured; rejecting internal call")
        raise ApiError(STATUS_FORBIDDEN, "forbidden", "Internal routes disabled")
    if not x_proxy_key or not secrets.compare_digest(x_proxy_key, expected):
        raise ApiError(STATUS_FORBIDDEN, "forbidden", "Bad proxy key")
    return True
