from typing import Optional


class BillingError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class BillingConfigError(BillingError):
    status_code = 500


class UserNotFoundError(BillingError):
    status_code = 404

    def __init__(self, message: str = "User not found"):
        super().__init__(message)


class ServerNotFoundError(BillingError):
    status_code = 404

    def __init__(self, message: str = "Server not found"):
        super().__init__(message)


class ServerStateError(BillingError):
    status_code = 400


class QuotaExceededError(BillingError):
    status_code = 400


class InsufficientBalanceError(BillingError):
    status_code = 402

    def __init__(self, message: str, required: Optional[int] = None, available: Optional[int] = None):
        self.required = required
        self.available = available
        super().__init__(message)


class PanelError(BillingError):
    """The panel did not confirm an action; local state was left as it was."""

    status_code = 502
