"""
Common/base exceptions.

These are intended to be subclassed by feature-level exceptions in
`<feature>/exceptions.py`. The HTTP status each base maps to lives in
`tally.api.exceptions`.
"""


class BaseServiceException(Exception):
    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(self.message)


class BaseServiceUnauthorizedException(BaseServiceException):
    pass


class BaseServiceNotFoundException(BaseServiceException):
    pass


class BaseServiceConflictException(BaseServiceException):
    pass


class BaseServiceUnProcessableException(BaseServiceException):
    pass


class BaseServiceRateLimitedException(BaseServiceException):
    def __init__(self, message: str, retry_after: int, details: str | None = None):
        self.retry_after = retry_after
        super().__init__(message, details)


class BaseCoreException(Exception):
    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(self.message)
