# reptileguard/errors.py
from __future__ import annotations


class ReptileGuardError(RuntimeError):
    """Base class for errors raised by the report core."""

    status_code = 500


class ValidationError(ReptileGuardError):
    """Missing or invalid required field. Permanent for the given input."""

    status_code = 400


class NotFoundError(ReptileGuardError):
    """Referenced report/profile does not exist. Do not retry."""

    status_code = 404


class AuthorizationError(ReptileGuardError):
    status_code = 403


class StoreUnavailable(ReptileGuardError):
    """Transient DynamoDB/network failure. The caller may retry."""

    status_code = 503


class ClassificationError(ReptileGuardError):
    status_code = 502
