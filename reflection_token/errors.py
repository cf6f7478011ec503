"""
Error taxonomy for the reflection token.

Every failure is raised synchronously at the point of detection and is never
retried internally.
"""


class TokenError(Exception):
    """Base class for all token failures."""
    pass


class ValidationError(TokenError):
    """Raised when an operation is rejected before any state changes."""
    pass


class ZeroAddress(ValidationError):
    """Sender, recipient, owner or spender is the null account."""
    pass


class InsufficientBalance(ValidationError):
    """A debit would take a balance below zero."""
    pass


class InsufficientAllowance(ValidationError):
    """A spender tried to move more than it was approved for."""
    pass


class TxLimitExceeded(ValidationError):
    """A non-privileged transfer is above max_tx_amount."""
    pass


class NotOwner(ValidationError):
    """A privileged operation was called by someone other than the owner."""
    pass


class InvalidAmount(ValidationError):
    """An amount is out of range for a conversion or operation."""
    pass


class LiquidityConversionFailed(TokenError):
    """
    An external swap/add-liquidity call failed during a conversion.

    Ledger state committed before the failure is kept. When raised from a
    transfer, the transfer itself has already completed and its fee split is
    available as ``split``.
    """

    def __init__(self, message: str, split=None):
        super().__init__(message)
        self.split = split
