"""Bearer-token authentication for operator endpoints.

Operators call the conversation API with an access token issued by the
dashboard's identity provider. The token names the tenant, the operator
(``user_id``) and the operator's roles; nothing about the caller is taken
from plain request headers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, TypedDict, cast
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request, status
from jwt import ExpiredSignatureError, InvalidTokenError

from .tenant_context import get_current_tenant_id, set_tenant_context

__all__ = [
    "OperatorIdentity",
    "OperatorTokenConfigurationError",
    "OperatorTokenPayload",
    "OperatorTokenValidationError",
    "decode_operator_token",
    "get_token_payload",
    "require_role",
]

_ROLE_LEVELS = {"viewer": 0, "operator": 1, "admin": 2}


class OperatorTokenConfigurationError(RuntimeError):
    """Raised when token validation is not configured."""


class OperatorTokenValidationError(ValueError):
    """Raised when the provided token cannot be validated."""


class _OperatorTokenRequiredClaims(TypedDict):
    tenant_id: str
    user_id: str


class OperatorTokenPayload(_OperatorTokenRequiredClaims, total=False):
    """Decoded JWT payload of an operator access token."""

    aud: str | list[str]
    email: str
    exp: int
    iat: int
    iss: str
    name: str
    roles: list[str]
    type: str


@dataclass(frozen=True)
class OperatorIdentity:
    tenant_id: UUID
    operator_id: str
    role: str


def _get_env(name: str, *, required: bool = True, default: str | None = None) -> str:
    value = os.getenv(name, default)
    if required and (value is None or not value.strip()):
        raise OperatorTokenConfigurationError(
            f"Environment variable '{name}' must be set for operator token validation.",
        )
    if value is None:
        return ""
    return value.strip()


def decode_operator_token(token: str) -> OperatorTokenPayload:
    """Decode and validate an operator access token.

    Signature, expiry, audience and issuer are checked against
    ``TENANT_TOKEN_SECRET``, ``TENANT_TOKEN_AUDIENCE``, ``TENANT_TOKEN_ISSUER``
    and ``TENANT_TOKEN_ALGORITHM`` (default ``HS256``).

    Raises:
        OperatorTokenConfigurationError: If mandatory environment configuration is missing.
        OperatorTokenValidationError: If signature, claims or expiry are invalid.
    """

    secret_key = _get_env("TENANT_TOKEN_SECRET")
    audience = _get_env("TENANT_TOKEN_AUDIENCE")
    issuer = _get_env("TENANT_TOKEN_ISSUER")
    algorithm = _get_env("TENANT_TOKEN_ALGORITHM", required=False, default="HS256")

    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[algorithm],
            audience=audience,
            issuer=issuer,
            options={"require": ["exp", "aud", "iss"]},
        )
    except ExpiredSignatureError as exc:
        raise OperatorTokenValidationError("Operator token has expired.") from exc
    except InvalidTokenError as exc:
        raise OperatorTokenValidationError("Operator token is invalid.") from exc

    if not payload.get("tenant_id") or not payload.get("user_id"):
        raise OperatorTokenValidationError(
            "Operator token payload must include 'tenant_id' and 'user_id'.",
        )
    try:
        UUID(str(payload["tenant_id"]))
    except ValueError as exc:
        raise OperatorTokenValidationError("Operator token tenant is not a UUID.") from exc
    type_claim = payload.get("type")
    if type_claim and type_claim != "access":
        raise OperatorTokenValidationError("Operator token must be an access token.")

    return cast(OperatorTokenPayload, payload)


async def get_token_payload(request: Request) -> OperatorTokenPayload:
    """Extract and validate the bearer token from the ``Authorization`` header."""

    authorization = request.headers.get("Authorization")
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header.",
        )

    scheme, _, credentials = authorization.partition(" ")
    if not credentials or scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header must use Bearer scheme.",
        )

    try:
        return decode_operator_token(credentials)
    except OperatorTokenConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    except OperatorTokenValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


def _highest_role(roles: list[str]) -> str | None:
    ranked = sorted({role for role in roles if role in _ROLE_LEVELS}, key=_ROLE_LEVELS.get)
    return ranked[-1] if ranked else None


def require_role(min_role: str) -> Callable[..., OperatorIdentity]:
    """Create a dependency ensuring the caller has at least ``min_role`` privileges.

    The token's tenant and operator become the request's tenant context, so
    repositories and log records see the authenticated identity. A tenant
    header that names a different tenant is rejected.
    """

    if min_role not in _ROLE_LEVELS:
        raise ValueError(f"Unknown role: {min_role}")

    async def dependency(
        payload: OperatorTokenPayload = Depends(get_token_payload),
    ) -> OperatorIdentity:
        roles = payload.get("roles") or []
        if isinstance(roles, str):
            roles = [roles]
        highest = _highest_role(list(roles))
        if highest is None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="No roles assigned to user.",
            )
        if _ROLE_LEVELS[highest] < _ROLE_LEVELS[min_role]:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role.",
            )

        tenant_id = UUID(str(payload["tenant_id"]))
        header_tenant = get_current_tenant_id()
        if header_tenant is not None and header_tenant != str(tenant_id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Token tenant mismatch.",
            )

        operator_id = str(payload["user_id"])
        set_tenant_context(str(tenant_id), operator_id)
        return OperatorIdentity(tenant_id=tenant_id, operator_id=operator_id, role=highest)

    return dependency
