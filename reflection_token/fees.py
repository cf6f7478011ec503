"""
Fee engine: splits a transfer amount into tax, liquidity and net legs.

The split is a pure computation. All three legs are converted to shares at a
single rate sampled by the caller, so a transfer never observes its own
effect on the rate.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass

from reflection_token.errors import ValidationError

logger = logging.getLogger(__name__)

PERCENT_DENOMINATOR = 100


@dataclass(frozen=True)
class FeeSplit:
    """Token and share amounts for one transfer."""
    amount: int
    tax_amount: int
    liquidity_amount: int
    net_amount: int
    rate: int

    @property
    def share_amount(self) -> int:
        return self.amount * self.rate

    @property
    def tax_shares(self) -> int:
        return self.tax_amount * self.rate

    @property
    def liquidity_shares(self) -> int:
        return self.liquidity_amount * self.rate

    @property
    def net_shares(self) -> int:
        # Derived by subtraction so the legs always sum to share_amount
        return self.share_amount - self.tax_shares - self.liquidity_shares

    @property
    def is_fee_free(self) -> bool:
        return self.tax_amount == 0 and self.liquidity_amount == 0


class FeeEngine:
    """
    Holds the tax and liquidity percentages and computes fee splits.

    Fee exemption combines with OR: if either party is exempt, neither fee is
    charged for the whole transfer. Integer division truncates toward zero and
    the remainder is not redistributed anywhere (it stays with the recipient).
    """

    def __init__(self, tax_fee_percent: int = 5, liquidity_fee_percent: int = 5):
        self._validate(tax_fee_percent, liquidity_fee_percent)
        self.tax_fee_percent = tax_fee_percent
        self.liquidity_fee_percent = liquidity_fee_percent

    @staticmethod
    def _validate(tax_fee_percent: int, liquidity_fee_percent: int):
        for name, value in (('tax', tax_fee_percent), ('liquidity', liquidity_fee_percent)):
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValidationError(f"{name} fee percent must be an integer")
            if value < 0 or value > PERCENT_DENOMINATOR:
                raise ValidationError(f"{name} fee percent must be between 0 and 100, got {value}")
        if tax_fee_percent + liquidity_fee_percent > PERCENT_DENOMINATOR:
            raise ValidationError(
                f"Combined fees cannot exceed 100% "
                f"(tax={tax_fee_percent}, liquidity={liquidity_fee_percent})"
            )

    def set_tax_fee_percent(self, percent: int):
        self._validate(percent, self.liquidity_fee_percent)
        self.tax_fee_percent = percent

    def set_liquidity_fee_percent(self, percent: int):
        self._validate(self.tax_fee_percent, percent)
        self.liquidity_fee_percent = percent

    def tax_for(self, amount: int) -> int:
        return amount * self.tax_fee_percent // PERCENT_DENOMINATOR

    def liquidity_for(self, amount: int) -> int:
        return amount * self.liquidity_fee_percent // PERCENT_DENOMINATOR

    def compute_fee_split(self, amount: int, sender_exempt: bool,
                          recipient_exempt: bool, rate: int) -> FeeSplit:
        """
        Split ``amount`` into tax, liquidity and net legs at ``rate``.

        Args:
            amount: Token amount being transferred
            sender_exempt: Sender is excluded from fees
            recipient_exempt: Recipient is excluded from fees
            rate: Shares per token, sampled once for this transfer

        Returns:
            FeeSplit with token amounts; share amounts are derived properties
        """
        if amount < 0:
            raise ValidationError("Amount cannot be negative")

        if sender_exempt or recipient_exempt:
            return FeeSplit(amount=amount, tax_amount=0, liquidity_amount=0,
                            net_amount=amount, rate=rate)

        tax_amount = self.tax_for(amount)
        liquidity_amount = self.liquidity_for(amount)
        return FeeSplit(
            amount=amount,
            tax_amount=tax_amount,
            liquidity_amount=liquidity_amount,
            net_amount=amount - tax_amount - liquidity_amount,
            rate=rate,
        )

    @contextmanager
    def suspended(self):
        """
        Zero both fees for the duration of the block.

        Prior values are restored on every exit path, including exceptions.
        """
        previous = (self.tax_fee_percent, self.liquidity_fee_percent)
        self.tax_fee_percent = 0
        self.liquidity_fee_percent = 0
        try:
            yield self
        finally:
            self.tax_fee_percent, self.liquidity_fee_percent = previous
            logger.debug(f"Fees restored to tax={previous[0]}% liquidity={previous[1]}%")

    def to_dict(self) -> dict:
        return {
            'tax_fee_percent': self.tax_fee_percent,
            'liquidity_fee_percent': self.liquidity_fee_percent,
        }

    def __repr__(self) -> str:
        return (
            f"FeeEngine(tax={self.tax_fee_percent}%, "
            f"liquidity={self.liquidity_fee_percent}%)"
        )
