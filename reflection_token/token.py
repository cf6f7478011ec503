"""
Reflection token with automatic liquidity accumulation.

Every fee-paying transfer splits into three legs:
- tax: retired from the share pool, which raises every participating
  holder's balance (reflection)
- liquidity: credited to the token contract's own account, converted into
  pool liquidity in batches by the LiquidityController
- net: delivered to the recipient

Transfers run in a fixed order:
1. Reject the zero address
2. Reject amounts above the sender's balance
3. Reject amounts above max_tx_amount unless the sender is the owner
4. Run a pending liquidity conversion (never for transfers out of the pair)
5. Split fees at one sampled rate and apply all legs
6. Emit Transfer(sender, recipient, net_amount)

Steps 1-3 fail with no state change. A failed conversion in step 4 does not
stop the transfer; it is raised after the transfer completes (or logged,
depending on LiquidityConfig.raise_conversion_failures).
"""
import logging
import time
import msgpack

from reflection_token.config import Config
from reflection_token.crypto import contract_address
from reflection_token.errors import (
    InsufficientAllowance,
    InsufficientBalance,
    InvalidAmount,
    LiquidityConversionFailed,
    NotOwner,
    TxLimitExceeded,
    ValidationError,
    ZeroAddress,
)
from reflection_token.events import (
    Approval,
    EventLog,
    MinTokensBeforeSwapUpdated,
    SwapAndLiquifyEnabledUpdated,
    Transfer,
)
from reflection_token.fees import FeeEngine, FeeSplit
from reflection_token.ledger import RateLedger, ZERO_ADDRESS
from reflection_token.liquidity import LiquidityController
from reflection_token.monitoring import Monitor

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Smallest units per whole token at the default 6 decimals
TOKEN_UNIT = 1_000_000

PERCENT_DENOMINATOR = 100
BPS_DENOMINATOR = 10_000


class ReflectionToken:
    def __init__(self, owner: bytes, config: Config = None, router=None,
                 reference_token=None, address: bytes = None, events: EventLog = None,
                 monitor=None, ledger: RateLedger = None):
        """
        Deploy the token and allocate the whole supply to ``owner``.

        Args:
            owner: Privileged account; receives the genesis supply
            config: Token, fee and liquidity configuration
            router: External exchange router; enables swap and liquify
            reference_token: Counter-asset token for the pool pair
            address: Contract address (derived from owner if omitted)
            events: Event log shared with collaborators
            monitor: Optional Monitor for metrics
            ledger: Restored ledger state; skips the genesis allocation
        """
        if owner == ZERO_ADDRESS:
            raise ZeroAddress("Owner cannot be the zero address")

        self.config = config or Config.default()
        self.name = self.config.token.name
        self.symbol = self.config.token.symbol
        self.decimals = self.config.token.decimals
        self.owner = owner
        self.address = address or contract_address(owner, 0)
        self.events = events if events is not None else EventLog(self.config.monitoring.max_events)
        self.liquidity = None

        fee_config = self.config.fees
        self.fees = FeeEngine(fee_config.tax_fee_percent, fee_config.liquidity_fee_percent)

        if ledger is None:
            self.ledger = RateLedger(self.config.token.total_supply_units, self.fees)
            self.ledger.mint_genesis(owner)
            self.ledger.set_excluded_from_fee(owner, True)
            self.ledger.set_excluded_from_fee(self.address, True)
        else:
            ledger.fees = self.fees
            self.ledger = ledger

        self._check_percent(fee_config.max_tx_percent)
        self.max_tx_amount = self.total_supply * fee_config.max_tx_percent // PERCENT_DENOMINATOR

        liquidity_config = self.config.liquidity
        self.swap_and_liquify_enabled = liquidity_config.swap_and_liquify_enabled
        self.min_tokens_before_swap = (
            self.total_supply * liquidity_config.min_tokens_before_swap_bps // BPS_DENOMINATOR
        )
        self.raise_conversion_failures = liquidity_config.raise_conversion_failures

        monitoring = self.config.monitoring
        if monitor is None and monitoring.enabled:
            monitor = Monitor(self, monitoring.host, monitoring.port)
        self.monitor = monitor

        if ledger is None:
            self.events.emit(Transfer(ZERO_ADDRESS, owner, self.total_supply))
            logger.info(f"{self.symbol} deployed at {self.address.hex()} with supply {self.total_supply}")

        if router is not None:
            self.attach_router(router, reference_token)

    def attach_router(self, router, reference_token, pair_address: bytes = None):
        """Wire the exchange pair into the liquidity controller. Genesis only."""
        if self.liquidity is not None:
            raise ValidationError("Router already attached")
        if reference_token is None:
            raise ValidationError("A reference token is required to create the pair")

        if hasattr(router, 'register_token'):
            router.register_token(self)
            router.register_token(reference_token)

        self.liquidity = LiquidityController(
            self,
            router,
            reference_token,
            pair_address=pair_address,
            deadline_seconds=self.config.liquidity.deadline_seconds,
            clock=getattr(router, 'clock', time.time),
        )
        logger.info(f"Pair {self.liquidity.pair_address.hex()} wired into liquidity controller")

    # ==========================================================================
    # TOKEN SURFACE
    # ==========================================================================

    @property
    def total_supply(self) -> int:
        return self.ledger.total_supply

    @property
    def total_fees(self) -> int:
        """Token-equivalent tax fees applied so far."""
        return self.ledger.total_fees

    @property
    def pair_address(self) -> bytes | None:
        return self.liquidity.pair_address if self.liquidity else None

    def balance_of(self, account: bytes) -> int:
        return self.ledger.balance_of(account)

    def allowance(self, owner: bytes, spender: bytes) -> int:
        account = self.ledger.accounts.get(owner)
        if account is None:
            return 0
        return account.allowances.get(spender, 0)

    def approve(self, owner: bytes, spender: bytes, amount: int) -> bool:
        self._approve(owner, spender, amount)
        return True

    def increase_allowance(self, owner: bytes, spender: bytes, added_value: int) -> bool:
        if added_value < 0:
            raise InvalidAmount("Added value cannot be negative")
        self._approve(owner, spender, self.allowance(owner, spender) + added_value)
        return True

    def decrease_allowance(self, owner: bytes, spender: bytes, subtracted_value: int) -> bool:
        if subtracted_value < 0:
            raise InvalidAmount("Subtracted value cannot be negative")
        current = self.allowance(owner, spender)
        if subtracted_value > current:
            raise InsufficientAllowance("Decreased allowance below zero")
        self._approve(owner, spender, current - subtracted_value)
        return True

    def transfer(self, sender: bytes, recipient: bytes, amount: int) -> bool:
        _, conversion_error = self._transfer(sender, recipient, amount)
        self._surface(conversion_error)
        return True

    def transfer_from(self, spender: bytes, sender: bytes, recipient: bytes, amount: int) -> bool:
        if self.allowance(sender, spender) < amount:
            raise InsufficientAllowance("Transfer amount exceeds allowance")

        _, conversion_error = self._transfer(sender, recipient, amount)
        self._approve(sender, spender, self.allowance(sender, spender) - amount)
        self._surface(conversion_error)
        return True

    def _approve(self, owner: bytes, spender: bytes, amount: int):
        if owner == ZERO_ADDRESS:
            raise ZeroAddress("Approve from the zero address")
        if spender == ZERO_ADDRESS:
            raise ZeroAddress("Approve to the zero address")
        if amount < 0:
            raise InvalidAmount("Allowance cannot be negative")
        self.ledger.account(owner).allowances[spender] = amount
        self.events.emit(Approval(owner, spender, amount))

    # ==========================================================================
    # REFLECTION SURFACE
    # ==========================================================================

    def reflection_from_token(self, amount: int, deduct_transfer_fee: bool = False) -> int:
        return self.ledger.share_amount_for(amount, deduct_transfer_fee)

    def token_from_reflection(self, share_amount: int) -> int:
        return self.ledger.token_amount_for(share_amount)

    def is_excluded_from_reward(self, account: bytes) -> bool:
        return self.ledger.is_excluded_from_reward(account)

    def is_excluded_from_fee(self, account: bytes) -> bool:
        return self.ledger.is_excluded_from_fee(account)

    # ==========================================================================
    # TRANSFER ORCHESTRATION
    # ==========================================================================

    def _is_limit_exempt(self, sender: bytes) -> bool:
        if sender == self.owner:
            return True
        # The contract's own transfers during a conversion
        return sender == self.address and self.liquidity is not None and self.liquidity.converting

    def _validate_transfer(self, sender: bytes, recipient: bytes, amount: int):
        if sender == ZERO_ADDRESS:
            raise ZeroAddress("Transfer from the zero address")
        if recipient == ZERO_ADDRESS:
            raise ZeroAddress("Transfer to the zero address")
        if not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount("Transfer amount must be greater than zero")

        balance = self.balance_of(sender)
        if amount > balance:
            raise InsufficientBalance(f"Transfer amount exceeds balance: {balance} < {amount}")

        if amount > self.max_tx_amount and not self._is_limit_exempt(sender):
            raise TxLimitExceeded("Transfer amount exceeds the maxTxAmount.")

    def _transfer(self, sender: bytes, recipient: bytes, amount: int) -> tuple[FeeSplit, LiquidityConversionFailed | None]:
        started = time.monotonic()

        try:
            self._validate_transfer(sender, recipient, amount)
        except ValidationError as e:
            logger.warning(f"Transfer rejected: {e}")
            self._record_transfer('rejected', started)
            raise

        conversion_error = None
        if self.liquidity is not None and self.liquidity.should_convert(sender):
            try:
                self.liquidity.swap_and_liquify()
                self._record_conversion('ok')
            except LiquidityConversionFailed as e:
                self._record_conversion('failed')
                conversion_error = e

        split = self._apply_transfer(sender, recipient, amount, started)
        self.events.emit(Transfer(sender, recipient, split.net_amount))
        self._record_transfer('ok', started)

        if conversion_error is not None:
            conversion_error.split = split
        return split, conversion_error

    def _apply_transfer(self, sender: bytes, recipient: bytes, amount: int, started: float) -> FeeSplit:
        """Split fees at one sampled rate and apply every leg atomically."""
        ledger = self.ledger
        rate = ledger.current_rate()
        split = self.fees.compute_fee_split(
            amount,
            ledger.is_excluded_from_fee(sender),
            ledger.is_excluded_from_fee(recipient),
            rate,
        )

        checkpoint = ledger.checkpoint(sender, recipient, self.address)
        try:
            ledger.debit(sender, split.amount, split.share_amount)
            ledger.credit(recipient, split.net_amount, split.net_shares)
            if split.liquidity_amount:
                ledger.credit_liquidity_share(self.address, split.liquidity_amount, split.liquidity_shares)
            if split.tax_amount:
                ledger.apply_tax_share(split.tax_amount, split.tax_shares)
        except ValidationError as e:
            logger.warning(f"Transfer failed, rolling back: {e}")
            ledger.restore(checkpoint)
            self._record_transfer('failed', started)
            raise

        logger.debug(
            f"Transfer {sender.hex()[:8]} -> {recipient.hex()[:8]}: amount={split.amount} "
            f"net={split.net_amount} tax={split.tax_amount} liquidity={split.liquidity_amount}"
        )
        return split

    def _surface(self, conversion_error: LiquidityConversionFailed | None):
        if conversion_error is None:
            return
        if self.raise_conversion_failures:
            raise conversion_error
        logger.warning(f"Transfer completed but liquidity conversion failed: {conversion_error}")

    def _record_transfer(self, status: str, started: float):
        if self.monitor is not None:
            self.monitor.record_transfer(status, time.monotonic() - started)
            self.monitor.update()

    def _record_conversion(self, status: str):
        if self.monitor is not None:
            self.monitor.record_conversion(status)

    # ==========================================================================
    # PRIVILEGED OPERATIONS
    # ==========================================================================

    def _only_owner(self, caller: bytes):
        if caller != self.owner:
            logger.warning(f"Privileged call rejected for {caller.hex()[:8]}")
            raise NotOwner("Ownable: caller is not the owner")

    @staticmethod
    def _check_percent(percent: int):
        if not isinstance(percent, int) or percent < 0 or percent > PERCENT_DENOMINATOR:
            raise ValidationError(f"Percent must be between 0 and 100, got {percent}")

    def set_tax_fee_percent(self, caller: bytes, percent: int):
        self._only_owner(caller)
        self.fees.set_tax_fee_percent(percent)
        logger.info(f"Tax fee set to {percent}%")

    def set_liquidity_fee_percent(self, caller: bytes, percent: int):
        self._only_owner(caller)
        self.fees.set_liquidity_fee_percent(percent)
        logger.info(f"Liquidity fee set to {percent}%")

    def set_max_tx_percent(self, caller: bytes, percent: int):
        """Set max_tx_amount from a percent of the current supply (not recomputed later)."""
        self._only_owner(caller)
        self._check_percent(percent)
        self.max_tx_amount = self.total_supply * percent // PERCENT_DENOMINATOR
        logger.info(f"Max transaction amount set to {self.max_tx_amount} ({percent}%)")

    def set_min_tokens_before_swap(self, caller: bytes, min_tokens: int):
        self._only_owner(caller)
        if min_tokens < 0 or min_tokens > self.total_supply:
            raise InvalidAmount(f"Minimum must be between 0 and total supply, got {min_tokens}")
        self.min_tokens_before_swap = min_tokens
        self.events.emit(MinTokensBeforeSwapUpdated(min_tokens))
        logger.info(f"Minimum tokens before swap set to {min_tokens}")

    def set_swap_and_liquify_enabled(self, caller: bytes, enabled: bool):
        self._only_owner(caller)
        self.swap_and_liquify_enabled = bool(enabled)
        self.events.emit(SwapAndLiquifyEnabledUpdated(self.swap_and_liquify_enabled))
        logger.info(f"Swap and liquify {'enabled' if enabled else 'disabled'}")

    def exclude_from_fee(self, caller: bytes, account: bytes):
        self._only_owner(caller)
        self.ledger.set_excluded_from_fee(account, True)

    def include_in_fee(self, caller: bytes, account: bytes):
        self._only_owner(caller)
        self.ledger.set_excluded_from_fee(account, False)

    def exclude_from_reward(self, caller: bytes, account: bytes):
        self._only_owner(caller)
        self.ledger.set_excluded_from_reward(account, True)

    def include_in_reward(self, caller: bytes, account: bytes):
        self._only_owner(caller)
        self.ledger.set_excluded_from_reward(account, False)

    def redistribute(self, caller: bytes, amount: int):
        """
        Retire ``amount`` of the caller's tokens from the share pool.

        No one is credited directly; every other participating holder's
        balance rises in proportion and the caller's falls by exactly
        ``amount``. Total supply is unchanged.
        """
        self._only_owner(caller)
        ledger = self.ledger
        if ledger.is_excluded_from_reward(caller):
            raise ValidationError("Excluded addresses cannot call this function")
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")
        balance = self.balance_of(caller)
        if amount > balance:
            raise InsufficientBalance(f"Redistribute amount exceeds balance: {balance} < {amount}")

        share_amount = ledger.shares_to_retire(caller, amount)
        if ledger.current_rate(ledger.total_shares - share_amount) == 0:
            raise ValidationError("No other holders to redistribute to")

        checkpoint = ledger.checkpoint(caller)
        try:
            ledger.debit(caller, amount, share_amount)
            ledger.apply_tax_share(amount, share_amount)
        except ValidationError:
            ledger.restore(checkpoint)
            raise
        logger.info(f"Redistributed {amount} tokens to holders")

    # ==========================================================================
    # STATE & STATS
    # ==========================================================================

    def get_stats(self) -> dict:
        """Get current token statistics."""
        return {
            'total_supply': str(self.total_supply),
            'total_fees': str(self.total_fees),
            'rate': str(self.ledger.current_rate()),
            'tax_fee_percent': self.fees.tax_fee_percent,
            'liquidity_fee_percent': self.fees.liquidity_fee_percent,
            'max_tx_amount': str(self.max_tx_amount),
            'min_tokens_before_swap': str(self.min_tokens_before_swap),
            'swap_and_liquify_enabled': self.swap_and_liquify_enabled,
            'contract_balance': str(self.balance_of(self.address)),
            'excluded_from_reward': len(self.ledger.excluded),
        }

    def to_dict(self) -> dict:
        """
        Convert to dict for storage.
        """
        return {
            'config': self.config.to_dict(),
            'owner': self.owner.hex(),
            'address': self.address.hex(),
            'fees': self.fees.to_dict(),
            'max_tx_amount': str(self.max_tx_amount),
            'min_tokens_before_swap': str(self.min_tokens_before_swap),
            'swap_and_liquify_enabled': self.swap_and_liquify_enabled,
            'pair_address': self.pair_address.hex() if self.pair_address else None,
            'ledger': self.ledger.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict, router=None, reference_token=None,
                  events: EventLog = None) -> 'ReflectionToken':
        token = cls(
            bytes.fromhex(data['owner']),
            config=Config.from_dict(data['config']),
            address=bytes.fromhex(data['address']),
            events=events,
            ledger=RateLedger.from_dict(data['ledger']),
        )
        # Stored percents were validated when set
        token.fees.tax_fee_percent = data['fees']['tax_fee_percent']
        token.fees.liquidity_fee_percent = data['fees']['liquidity_fee_percent']
        token.max_tx_amount = int(data['max_tx_amount'])
        token.min_tokens_before_swap = int(data['min_tokens_before_swap'])
        token.swap_and_liquify_enabled = data['swap_and_liquify_enabled']

        if router is not None:
            pair_address = bytes.fromhex(data['pair_address']) if data['pair_address'] else None
            token.attach_router(router, reference_token, pair_address=pair_address)
        return token

    def export_state(self) -> bytes:
        return msgpack.packb(self.to_dict(), use_bin_type=True)

    @classmethod
    def import_state(cls, encoded: bytes, router=None, reference_token=None,
                     events: EventLog = None) -> 'ReflectionToken':
        return cls.from_dict(msgpack.unpackb(encoded, raw=False), router, reference_token, events)

    def __repr__(self) -> str:
        return (
            f"ReflectionToken("
            f"symbol={self.symbol}, "
            f"supply={self.total_supply}, "
            f"fees={self.total_fees}, "
            f"rate={self.ledger.current_rate()})"
        )
