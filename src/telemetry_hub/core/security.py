from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Mapping
from uuid import uuid4

from fastapi import Depends, HTTPException, Request, Response, status

from telemetry_hub.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"


class UserRole(str, Enum):
    VIEWER = "viewer"
    OPERATOR = "operator"
    ADMIN = "admin"


@dataclass
class AuthContext:
    role: UserRole
    request_id: str = field(default_factory=lambda: uuid4().hex)
    authenticated: bool = True


def _digest(value: str) -> bytes:
    return hashlib.sha256(value.encode("utf-8")).digest()


@dataclass(frozen=True)
class ApiKeyRing:
    """Configured keys held as digests; lookups compare every entry in constant time."""

    entries: tuple[tuple[bytes, UserRole], ...] = ()

    @classmethod
    def from_config(cls, raw: str) -> "ApiKeyRing":
        entries: list[tuple[bytes, UserRole]] = []
        for pair in (p.strip() for p in raw.split(",")):
            key, sep, role = pair.partition(":")
            if not sep or not key.strip():
                continue
            try:
                entries.append((_digest(key.strip()), UserRole(role.strip().lower())))
            except ValueError:
                logger.warning("Ignoring API key with unknown role %r", role.strip())
        return cls(tuple(entries))

    def __len__(self) -> int:
        return len(self.entries)

    def resolve(self, candidate: str) -> UserRole | None:
        probe = _digest(candidate)
        matched: UserRole | None = None
        for digest, role in self.entries:
            if hmac.compare_digest(probe, digest) and matched is None:
                matched = role
        return matched


def extract_api_key(headers: Mapping[str, str], header_name: str) -> str | None:
    """Key from the configured header, else from `Authorization: Bearer <key>`."""
    direct = headers.get(header_name, "").strip()
    if direct:
        return direct
    scheme, _, token = headers.get("Authorization", "").strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip() or " " in token.strip():
        return None
    return token.strip()


def get_auth_context(
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
) -> AuthContext:
    if not settings.auth_enabled:
        ctx = AuthContext(role=UserRole.ADMIN, authenticated=False)
        response.headers[REQUEST_ID_HEADER] = ctx.request_id
        return ctx

    api_key = extract_api_key(request.headers, settings.auth_header_name)
    if api_key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing API key. Provide {settings.auth_header_name} or Authorization: Bearer <key>.",
        )

    ring = ApiKeyRing.from_config(settings.auth_api_keys)
    if not ring:
        logger.error("Auth is enabled but no API keys are configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication is not properly configured.",
        )

    role = ring.resolve(api_key)
    if role is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key.")
    ctx = AuthContext(role=role)
    response.headers[REQUEST_ID_HEADER] = ctx.request_id
    return ctx


def require_roles(*roles: UserRole) -> Callable[..., AuthContext]:
    allowed = set(roles) | {UserRole.ADMIN}

    def _dep(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if ctx.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{ctx.role.value}' is not allowed for this operation.",
            )
        return ctx

    return _dep
