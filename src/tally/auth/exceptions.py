from __future__ import annotations

from tally.commons.exceptions import (
    BaseServiceConflictException,
    BaseServiceException,
    BaseServiceUnauthorizedException,
)

INVALID_CREDENTIALS = "Invalid credentials"
UNAUTHORIZED = "Unauthorized"
USERNAME_TAKEN = "Username already exists"
CREDENTIALS_REQUIRED = "Username and password are required"


class AuthServiceException(BaseServiceException):
    pass


class AuthUnauthorizedException(BaseServiceUnauthorizedException):
    pass


class AuthConflictException(BaseServiceConflictException):
    pass
