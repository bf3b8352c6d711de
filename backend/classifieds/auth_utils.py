import hashlib
import secrets
import time
from uuid import UUID

from jose import JWTError, jwt

from .config import settings

ACCESS = "access"
REFRESH = "refresh"


def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.sha256(f"{salt}:{password}".encode("utf-8")).hexdigest()
    return f"{salt}${digest}"


def verify_password(password: str, stored_hash: str) -> bool:
    try:
        salt, expected = stored_hash.split("$", 1)
    except ValueError:
        return False
    digest = hashlib.sha256(f"{salt}:{password}".encode("utf-8")).hexdigest()
    return secrets.compare_digest(digest, expected)


def _secret(kind: str) -> str:
    return settings.jwt_refresh_secret if kind == REFRESH else settings.jwt_secret


def create_token(user_id: UUID, kind: str = ACCESS) -> str:
    ttl = settings.refresh_token_ttl_sec if kind == REFRESH else settings.access_token_ttl_sec
    exp = int(time.time()) + ttl
    return jwt.encode({"sub": str(user_id), "typ": kind, "exp": exp}, _secret(kind), algorithm=settings.jwt_alg)


def decode_token(token: str, kind: str = ACCESS) -> UUID | None:
    try:
        claims = jwt.decode(token, _secret(kind), algorithms=[settings.jwt_alg])
    except JWTError:
        return None
    if claims.get("typ") != kind:
        return None
    try:
        return UUID(str(claims.get("sub")))
    except ValueError:
        return None
