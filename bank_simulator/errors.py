"""
Error Taxonomy

Every failure raised by the simulator derives from BankingError so callers
(the REST layer, the day loop) can catch the whole family in one place.
"""


class BankingError(Exception):
    """Base exception for all simulator errors"""


class ValidationError(BankingError, ValueError):
    """Raised for non-positive amounts, missing fields or malformed input"""


class InactiveAccountError(BankingError):
    """Raised when a mutation targets an account that is not ACTIVE"""

    def __init__(self, iban: str, status: str):
        self.iban = iban
        self.status = status
        super().__init__(f"Account {iban} is not active (status: {status})")


class InsufficientFundsError(BankingError):
    """Raised when a debit exceeds the available balance"""

    def __init__(self, iban: str, requested, available):
        self.iban = iban
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient funds in {iban}: requested {requested}, available {available}"
        )


class BackwardsTimeError(BankingError):
    """Raised when a simulation target date lies before the current date"""


class ServiceUnavailableError(BankingError):
    """Raised when the external transfer gateway cannot be reached"""


class EntityNotFoundError(BankingError):
    """Raised when a referenced account, bill, order or customer does not exist"""


class InvalidStateError(BankingError):
    """Raised when an entity is in the wrong lifecycle state for the operation"""
