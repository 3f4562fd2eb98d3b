from dataclasses import dataclass

from jose import JWTError, jwt
from starlette.requests import Request

from works_api.core.config import get_settings


ANONYMOUS_OPERATOR = "anonymous"


@dataclass
class AuthUser:
    sub: str
    roles: list[str]


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.removeprefix("Bearer ") if auth_header.startswith("Bearer ") else ""

    if not token:
        return AuthUser(sub=ANONYMOUS_OPERATOR, roles=["guest"])

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        # TODO: Reject invalid tokens once the CRM identity provider issues operator tokens.
        return AuthUser(sub=ANONYMOUS_OPERATOR, roles=["guest"])

    roles = payload.get("roles", ["operator"])
    if not isinstance(roles, list):
        roles = ["operator"]
    subject = str(payload.get("sub", ANONYMOUS_OPERATOR))
    request.state.operator_id = subject
    return AuthUser(sub=subject, roles=[str(role) for role in roles])
