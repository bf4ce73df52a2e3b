"""Request dependencies shared by the API routes."""

from collections.abc import Awaitable, Callable

from fastapi import Header, Request

from task_service.core.auth import Principal, parse_bearer
from task_service.core.context import ServiceContext


def get_context(request: Request) -> ServiceContext:
    return request.app.state.context


def require_scope(scope: str) -> Callable[..., Awaitable[Principal]]:
    """Dependency that authenticates the caller, checks ``scope`` and counts the request.

    Validation happens before rate limiting, so unauthenticated and forbidden
    requests never consume a token's budget. The resulting quota state is
    left on ``request.state.rate_limit`` for the response headers.
    """

    async def dependency(request: Request, authorization: str | None = Header(default=None)) -> Principal:
        context = get_context(request)
        token = parse_bearer(authorization)
        principal = await context.validator.validate(token)
        principal.require(scope)
        request.state.rate_limit = context.rate_limiter.hit(token)
        return principal

    return dependency
