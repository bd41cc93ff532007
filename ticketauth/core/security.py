"""Verified identity handling and the registration password policy.

Access tokens are issued and signed by the external identity provider. This
module only adapts a verified token into a `VerifiedIdentity`; role claims are
normalised by a pure function so they can be tested without a directory.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any
from uuid import UUID

import jwt
from jwt import PyJWKClient
from jwt import exceptions as jwt_exceptions

from ticketauth.core.config import get_settings
from ticketauth.core.structured_logging import log_json

logger = logging.getLogger(__name__)

# Roles every directory user carries implicitly; they carry no business meaning.
_INTERNAL_ROLE_NAMES = frozenset({"offline_access", "uma_authorization"})
_INTERNAL_ROLE_PREFIXES = ("default-roles-", "realm-")


class PasswordValidationError(ValueError):
    """Raised when password validation fails."""


class TokenValidationError(Exception):
    """Raised when a bearer token is present but cannot be turned into an identity."""


@dataclass(frozen=True)
class VerifiedIdentity:
    """The caller as vouched for by the identity provider."""

    subject_id: UUID
    email: str | None = None
    username: str | None = None
    display_name: str | None = None
    roles: frozenset[str] = field(default_factory=frozenset)

    def has_role(self, role: str) -> bool:
        return role.upper() in self.roles

    def has_any_role(self, *roles: str) -> bool:
        return any(self.has_role(role) for role in roles)


def validate_password(password: str) -> None:
    """Validate a registration password.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character

    Raises:
        PasswordValidationError: If the password does not meet requirements
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r"[A-Z]", password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r"[a-z]", password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[^A-Za-z0-9]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def is_internal_role(role: str) -> bool:
    """True for directory bookkeeping roles such as `default-roles-<realm>`."""
    lowered = role.lower()
    return lowered in _INTERNAL_ROLE_NAMES or lowered.startswith(_INTERNAL_ROLE_PREFIXES)


def _roles_from(container: Any) -> list[str]:
    if not isinstance(container, Mapping):
        return []
    roles = container.get("roles")
    if not isinstance(roles, list):
        return []
    return [r for r in roles if isinstance(r, str) and r.strip()]


def extract_roles(claims: Mapping[str, Any], client_id: str | None = None) -> frozenset[str]:
    """Flatten realm and client role claims into one upper-cased role set.

    Reads `realm_access.roles` and, when `client_id` is given,
    `resource_access[client_id].roles`. Missing or ill-typed claims yield no
    roles rather than an error.
    """
    collected = _roles_from(claims.get("realm_access"))

    if client_id:
        resource_access = claims.get("resource_access")
        if isinstance(resource_access, Mapping):
            collected.extend(_roles_from(resource_access.get(client_id)))

    return frozenset(
        role.strip().upper() for role in collected if not is_internal_role(role.strip())
    )


def identity_from_claims(
    claims: Mapping[str, Any], client_id: str | None = None
) -> VerifiedIdentity:
    subject = claims.get("sub")
    if not subject:
        raise TokenValidationError("Token has no subject")
    try:
        subject_id = UUID(str(subject))
    except ValueError as exc:
        raise TokenValidationError("Token subject is not a valid identifier") from exc

    display_name = claims.get("name")
    if not display_name:
        parts = [claims.get("given_name"), claims.get("family_name")]
        display_name = " ".join(p for p in parts if p) or None

    return VerifiedIdentity(
        subject_id=subject_id,
        email=claims.get("email"),
        username=claims.get("preferred_username"),
        display_name=display_name,
        roles=extract_roles(claims, client_id),
    )


@lru_cache
def _jwks_client(url: str) -> PyJWKClient:
    return PyJWKClient(url)


def decode_token(token: str) -> dict | None:
    """Verify a bearer token and return its claims, or None if it is not valid."""
    settings = get_settings()
    options = {"verify_aud": settings.token_audience is not None}

    try:
        if settings.token_jwks_url:
            key = _jwks_client(settings.token_jwks_url).get_signing_key_from_jwt(token).key
        elif settings.token_secret:
            key = settings.token_secret
        else:
            log_json(logger, logging.ERROR, "token_key_not_configured")
            return None

        return jwt.decode(
            token,
            key,
            algorithms=settings.token_algorithms,
            audience=settings.token_audience,
            issuer=settings.token_issuer,
            options=options,
        )
    except jwt_exceptions.PyJWTError as exc:
        log_json(
            logger,
            logging.INFO,
            "token_rejected",
            exception=exc.__class__.__name__,
        )
        return None
