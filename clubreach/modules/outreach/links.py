import uuid
import logging
from dataclasses import dataclass
from datetime import timedelta
from urllib.parse import urlencode
from jose import jwt, JWTError
from clubreach.core.base import utcnow
from clubreach.core.config import settings

log = logging.getLogger(__name__)

TOKEN_TYPE = "outreach_response"

@dataclass(frozen=True)
class ResponseClaims:
    campaign_id: uuid.UUID
    recipient_id: uuid.UUID

def issue_response_token(campaign_id: uuid.UUID, recipient_id: uuid.UUID, ttl_days: int | None = None) -> str:
    expires = utcnow() + timedelta(days=ttl_days if ttl_days is not None else settings.RESPONSE_LINK_TTL_DAYS)
    claims = {"sub": str(recipient_id), "cid": str(campaign_id), "typ": TOKEN_TYPE, "exp": int(expires.timestamp())}
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

def verify_response_token(token: str) -> ResponseClaims | None:
    try:
        data = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError as e:
        log.info(f"Rejected response token: {e}")
        return None
    if data.get("typ") != TOKEN_TYPE:
        return None
    try:
        return ResponseClaims(campaign_id=uuid.UUID(data["cid"]), recipient_id=uuid.UUID(data["sub"]))
    except (KeyError, ValueError):
        return None

def build_response_link(campaign_id: uuid.UUID, recipient_id: uuid.UUID) -> str:
    token = issue_response_token(campaign_id, recipient_id)
    return f"{settings.APP_URL}{settings.API_PREFIX}/outreach/respond?{urlencode({'token': token})}"
