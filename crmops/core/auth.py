import logging
from dataclasses import dataclass, field

from jose import JWTError, jwt
from starlette.requests import Request

from crmops.core.config import get_settings


logger = logging.getLogger("crmops.auth")

ANONYMOUS_SUBJECT = "anonymous"
DEFAULT_ROLES = ("user",)


@dataclass
class AuthUser:
    sub: str
    roles: list[str] = field(default_factory=list)

    @property
    def is_anonymous(self) -> bool:
        return self.sub == ANONYMOUS_SUBJECT

    def has_role(self, role: str) -> bool:
        return role in self.roles


def anonymous_user() -> AuthUser:
    return AuthUser(sub=ANONYMOUS_SUBJECT, roles=["guest"])


def bearer_token(request: Request) -> str:
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def decode_token(token: str) -> AuthUser:
    """Resolve a bearer token to a user; tokens that fail verification are anonymous."""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        logger.warning("auth.invalid_token", extra={"error": str(exc)})
        return anonymous_user()

    roles = payload.get("roles")
    if not isinstance(roles, list):
        roles = list(DEFAULT_ROLES)
    return AuthUser(sub=str(payload.get("sub") or ANONYMOUS_SUBJECT), roles=[str(role) for role in roles])


async def get_current_user(request: Request) -> AuthUser:
    token = bearer_token(request)
    if not token:
        return anonymous_user()
    return decode_token(token)
