"""
Failures raised by the billing engine and service.

The HTTP layer turns each class into one status code; nothing here knows
about HTTP.
"""


class BillingError(Exception):
    """Base class for every expected bill-generation failure."""


class NotFoundError(BillingError):
    """Booking, catalog entry or bill does not exist."""


class ForbiddenError(BillingError):
    """Caller is not the vendor assigned to the booking."""


class InvalidInputError(BillingError):
    """Request data could not be accepted."""


class LineItemValidationError(InvalidInputError):
    """A line item carried a malformed price, quantity, GST rate or name."""


class BillFrozenError(BillingError):
    """The bill has been paid and can no longer change."""


class PersistenceError(BillingError):
    """The bill store could not complete the write."""


class BillInvariantError(BillingError):
    """A computed bill failed its own consistency checks."""
