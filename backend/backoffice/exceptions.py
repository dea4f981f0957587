"""Errors raised by the ledger and stock services.

Services raise these before mutating anything when a precondition fails.
Views translate them into HTTP responses through
:func:`backoffice.views.utils.service_exception_handler`.
"""


class BackOfficeError(Exception):
    """Base class for service level failures."""


class NotFoundError(BackOfficeError):
    """A referenced account, document or stock count does not exist."""


class InvalidStateError(BackOfficeError):
    """The target is not in a lifecycle state that allows the operation."""


class ConsistencyError(BackOfficeError):
    """A ledger invariant does not hold for the stored data."""

    def __init__(self, message, findings=None):
        super().__init__(message)
        self.findings = list(findings or [])
