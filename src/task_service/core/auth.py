"""Bearer token validation.

Tokens are opaque and issued by an external OAuth authorization server. Two
validators share one interface:

- ``IntrospectionTokenValidator`` asks the issuer (RFC 7662 introspection).
- ``StaticTokenValidator`` checks a configured token table, for development
  and tests.
"""

import hashlib
import hmac
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from task_service.config import Settings, StaticToken
from task_service.core.errors import Forbidden, Internal, Unauthenticated
from task_service.utils.logging import get_logger
from task_service.utils.metrics import get_metrics

logger = get_logger(__name__)
metrics = get_metrics()


class Scope:
    """Scopes understood by the API."""

    TASKS_READ = "tasks:read"
    TASKS_WRITE = "tasks:write"
    PROJECTS_READ = "projects:read"
    PROJECTS_WRITE = "projects:write"
    USERS_READ = "users:read"
    USERS_WRITE = "users:write"
    WEBHOOKS_MANAGE = "webhooks:manage"


@dataclass(frozen=True)
class Principal:
    """An authenticated caller."""

    subject: str
    scopes: frozenset[str] = field(default_factory=frozenset)
    user_id: int | None = None

    def require(self, scope: str) -> None:
        """Raise Forbidden unless the principal holds ``scope``."""
        if scope not in self.scopes:
            metrics.auth_failures_total.labels(reason="insufficient_scope").inc()
            raise Forbidden(scope, list(self.scopes))


def parse_bearer(authorization: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header.

    Raises:
        Unauthenticated: If the header is missing or not a bearer credential
    """
    if not authorization:
        metrics.auth_failures_total.labels(reason="missing").inc()
        raise Unauthenticated("Missing bearer token")
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        metrics.auth_failures_total.labels(reason="malformed").inc()
        raise Unauthenticated("Authorization header must use the Bearer scheme")
    return token


class TokenValidator(ABC):
    """Resolves a bearer token to a Principal."""

    @abstractmethod
    async def validate(self, token: str) -> Principal:
        """Validate a token.

        Raises:
            Unauthenticated: If the token is unknown, inactive or expired
            Internal: If the issuer cannot be reached
        """

    async def close(self) -> None:
        """Release any held resources."""


class StaticTokenValidator(TokenValidator):
    """Validates tokens against a fixed table using constant-time comparison."""

    def __init__(self, tokens: dict[str, StaticToken]) -> None:
        self._tokens = dict(tokens)

    async def validate(self, token: str) -> Principal:
        entry: StaticToken | None = None
        for candidate, value in self._tokens.items():
            if hmac.compare_digest(candidate.encode("utf-8"), token.encode("utf-8")):
                entry = value
                break

        if entry is None:
            metrics.auth_failures_total.labels(reason="invalid").inc()
            raise Unauthenticated("Invalid bearer token")

        return Principal(subject=entry.subject, scopes=frozenset(entry.scopes), user_id=entry.user_id)


class IntrospectionTokenValidator(TokenValidator):
    """Validates tokens through the issuer's RFC 7662 introspection endpoint.

    Active results are cached for ``cache_seconds`` (never beyond the token's
    own expiry) so a burst of requests does not hammer the issuer.
    """

    def __init__(
        self,
        url: str,
        client_id: str | None = None,
        client_secret: Any = None,
        timeout: float = 5.0,
        cache_seconds: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize introspection validator.

        Args:
            url: Introspection endpoint
            client_id: Client id for HTTP basic auth against the issuer
            client_secret: Client secret (str or SecretStr)
            timeout: Request timeout in seconds
            cache_seconds: Result cache lifetime (0 disables caching)
            transport: Optional httpx transport (tests)
            clock: Source of Unix time (tests)
        """
        # Extract secret value if SecretStr
        secret = client_secret.get_secret_value() if hasattr(client_secret, "get_secret_value") else client_secret
        auth = httpx.BasicAuth(client_id, secret or "") if client_id else None

        self.url = url
        self.cache_seconds = cache_seconds
        self._cache: dict[str, tuple[Principal, float]] = {}
        self._clock = clock
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            auth=auth,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @staticmethod
    def _cache_key(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    @property
    def cached(self) -> int:
        return len(self._cache)

    def _remember(self, key: str, principal: Principal, expires: float, now: float) -> None:
        # Drop expired results so tokens seen once do not accumulate
        self._cache = {k: v for k, v in self._cache.items() if v[1] > now}
        self._cache[key] = (principal, expires)

    async def validate(self, token: str) -> Principal:
        now = self._clock()
        key = self._cache_key(token)

        cached = self._cache.get(key)
        if cached and cached[1] > now:
            return cached[0]

        try:
            response = await self._client.post(self.url, data={"token": token, "token_type_hint": "access_token"})
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("token_introspection_failed", url=self.url, error=str(e))
            raise Internal() from e

        if not body.get("active"):
            self._cache.pop(key, None)
            metrics.auth_failures_total.labels(reason="inactive").inc()
            raise Unauthenticated("Token is invalid or expired")

        exp = body.get("exp")
        if exp is not None and float(exp) <= now:
            metrics.auth_failures_total.labels(reason="expired").inc()
            raise Unauthenticated("Token is invalid or expired")

        user_id = body.get("user_id")
        principal = Principal(
            subject=str(body.get("sub") or body.get("client_id") or "unknown"),
            scopes=frozenset((body.get("scope") or "").split()),
            user_id=int(user_id) if user_id is not None else None,
        )

        if self.cache_seconds > 0:
            expires = now + self.cache_seconds
            if exp is not None:
                expires = min(expires, float(exp))
            self._remember(key, principal, expires, now)

        return principal

    async def close(self) -> None:
        await self._client.aclose()


def build_validator(settings: Settings) -> TokenValidator:
    """Create the validator selected by ``settings.auth_mode``."""
    if settings.auth_mode == "introspection":
        if not settings.introspection_url:
            raise ValueError("introspection_url is required when auth_mode is 'introspection'")
        logger.info("token_validator_configured", mode="introspection", url=settings.introspection_url)
        return IntrospectionTokenValidator(
            url=settings.introspection_url,
            client_id=settings.introspection_client_id,
            client_secret=settings.introspection_client_secret,
            timeout=settings.introspection_timeout_seconds,
            cache_seconds=settings.introspection_cache_seconds,
        )

    logger.info("token_validator_configured", mode="static", entries=len(settings.static_tokens))
    return StaticTokenValidator(settings.static_tokens)
