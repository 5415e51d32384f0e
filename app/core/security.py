import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from app.core.config import settings
from app.core.errors import AuthenticationFailure

http_bearer = HTTPBearer(auto_error=False)

@dataclass(frozen=True)
class VerifiedCredential:
    principal_id: uuid.UUID
    issued_at: datetime
    mfa_satisfied: bool = False

def decode_credential(token: str | None) -> VerifiedCredential:
    if not token:
        raise AuthenticationFailure("missing credential")
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG], audience=settings.REQUIRED_AUDIENCE)
    except JWTError as e:
        raise AuthenticationFailure(f"invalid credential: {e}")
    try:
        principal_id = uuid.UUID(str(payload.get("sub")))
        issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
    except (KeyError, TypeError, ValueError):
        raise AuthenticationFailure("credential is missing sub or iat")
    return VerifiedCredential(principal_id=principal_id, issued_at=issued_at, mfa_satisfied=bool(payload.get("mfa", False)))

def issue_token(principal_id: uuid.UUID, *, mfa: bool = False, issued_at: datetime | None = None) -> str:
    # Local/dev and tests only; real credentials come from the identity provider.
    iat = issued_at or datetime.now(timezone.utc)
    payload = {
        "sub": str(principal_id),
        "iat": int(iat.timestamp()),
        "exp": int((iat + timedelta(minutes=settings.TOKEN_EXPIRY_MINUTES)).timestamp()),
        "mfa": mfa,
    }
    if settings.REQUIRED_AUDIENCE:
        payload["aud"] = settings.REQUIRED_AUDIENCE
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

async def get_bearer_token(creds: HTTPAuthorizationCredentials | None = Depends(http_bearer)) -> str | None:
    return creds.credentials if creds else None

def client_ip(request: Request) -> str:
    ip = None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    ip = ip or request.headers.get("x-real-ip") or (request.client.host if request.client else None) or "Unknown"
    # IPv6 loopback variants -> 127.0.0.1
    if ip == "::1" or ip == "::ffff:127.0.0.1":
        return "127.0.0.1"
    if ip.startswith("::ffff:"):
        return ip[len("::ffff:"):]
    return ip
