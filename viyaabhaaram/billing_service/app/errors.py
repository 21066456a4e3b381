class BillingError(Exception):
    """Base class for everything the billing core raises on purpose."""


class ValidationError(BillingError):
    """Input rejected locally; no remote call was made."""


class DuplicateAccountError(BillingError):
    """Registration with an email or mobile number that already exists."""


class AuthFailure(BillingError):
    """Credential mismatch, or an operation attempted without an active session."""


class RemoteCallFailure(BillingError):
    """A store read or write failed, or returned a record that does not validate."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class StockExceeded(BillingError):
    """A cart line cannot grow past the stock known for its item."""

    def __init__(self, item, requested):
        super().__init__(f"Stock Limit Reached for {item.name} ({item.stock} in stock)")
        self.item = item
        self.requested = requested
