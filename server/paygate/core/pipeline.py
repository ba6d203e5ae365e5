"""Admission pipeline: rate limiting plus authentication, in a configured order.

``authenticate_then_limit`` (default) only spends a device's rate budget on
requests that carry a valid signature, so nobody can exhaust another
device's budget by claiming its device_id. The price is an HMAC computation
for every request, including the ones that end up rate limited.

``limit_then_authenticate`` checks the budget of the *claimed* device_id
first. It is cheaper under flood but lets an unauthenticated caller burn a
real device's budget.
"""

from __future__ import annotations

import enum
from typing import Any, Mapping, TYPE_CHECKING

import structlog

from paygate.core.errors import AuthError, RateLimited

if TYPE_CHECKING:
    from paygate.core.authenticator import RequestAuthenticator
    from paygate.core.models import AuthenticatedContext
    from paygate.core.ratelimit import SlidingWindowRateLimiter
    from paygate.core.stats import ServerStats

log = structlog.get_logger()


class PipelineOrder(str, enum.Enum):
    AUTHENTICATE_THEN_LIMIT = "authenticate_then_limit"
    LIMIT_THEN_AUTHENTICATE = "limit_then_authenticate"


class AuthPipeline:
    """Runs both gates and returns the authenticated context."""

    def __init__(
        self,
        authenticator: RequestAuthenticator,
        limiter: SlidingWindowRateLimiter,
        order: PipelineOrder | str = PipelineOrder.AUTHENTICATE_THEN_LIMIT,
        stats: ServerStats | None = None,
    ) -> None:
        self._authenticator = authenticator
        self._limiter = limiter
        self.order = PipelineOrder(order)
        self._stats = stats

    def _limit(self, device_id: str) -> None:
        decision = self._limiter.check(device_id)
        if not decision.admitted:
            log.info("rate_limited", device=device_id[:8],
                     retry_after=decision.retry_after, order=self.order.value)
            raise RateLimited(decision.retry_after)

    async def admit(
        self,
        body: Mapping[str, Any],
        timestamp_header: str | None = None,
    ) -> AuthenticatedContext:
        try:
            if self.order is PipelineOrder.LIMIT_THEN_AUTHENTICATE:
                claimed = body.get("device_id")
                if isinstance(claimed, str) and claimed:
                    self._limit(claimed)
                ctx = await self._authenticator.authenticate(body, timestamp_header)
            else:
                ctx = await self._authenticator.authenticate(body, timestamp_header)
                self._limit(ctx.device.device_id)
        except AuthError as exc:
            if self._stats is not None:
                self._stats.record_auth_rejected(exc.code)
            raise

        if self._stats is not None:
            self._stats.record_auth_accepted(ctx.device.device_id)
        return ctx
