from __future__ import annotations

from tally.commons.exceptions import (
    BaseServiceException,
    BaseServiceRateLimitedException,
)

INVALID_ACTION = "Invalid action"
RATE_LIMITED = "Rate limit exceeded. Please try again later."


class CounterServiceException(BaseServiceException):
    pass


class CounterRateLimitedException(BaseServiceRateLimitedException):
    pass
