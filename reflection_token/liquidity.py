"""
Swap-and-liquify controller.

Converts tokens accumulated in the token contract's own account into pool
liquidity: half is swapped for the reference asset, then both are added to
the pair and the pool shares are sent to the owner.

The router is an external collaborator with this duck-typed surface:

    router.address
    router.create_pair(token_a, token_b) -> pair_address
    router.swap_exact_tokens_for_tokens(caller, amount_in, path, to, deadline,
                                        amount_out_min=0) -> amount_out
    router.add_liquidity(caller, token_a, token_b, amount_a, amount_b,
                         min_a, min_b, to, deadline) -> (a, b, liquidity)
"""
import logging
import time
from contextlib import contextmanager
from enum import Enum
from typing import Callable

from reflection_token.errors import LiquidityConversionFailed, TokenError
from reflection_token.events import SwapAndLiquify

logger = logging.getLogger(__name__)


class LiquidityState(str, Enum):
    IDLE = "IDLE"
    CONVERTING = "CONVERTING"


class ReentrancyLock:
    """
    Scoped re-entrancy guard.

    Acquired with ``with lock.hold():`` and released on every exit path.
    A nested acquisition is refused rather than silently allowed.
    """

    def __init__(self):
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    @contextmanager
    def hold(self):
        if self._held:
            raise TokenError("Re-entrant swap and liquify")
        self._held = True
        try:
            yield
        finally:
            self._held = False


class LiquidityController:
    """
    Converts the contract's token balance into liquidity for one pair.

    State lives on the token (threshold and enabled flag are fee
    configuration); this class owns the lock and the conversion steps.
    """

    def __init__(self, token, router, reference_token, pair_address: bytes = None,
                 deadline_seconds: int = 300, clock: Callable[[], float] = time.time):
        """
        Args:
            token: The ReflectionToken whose contract balance is converted
            router: External exchange router
            reference_token: Counter-asset token object
            pair_address: Existing pair; created through the router if omitted
            deadline_seconds: Deadline window passed to router calls
            clock: Time source for deadlines
        """
        self.token = token
        self.router = router
        self.reference_token = reference_token
        self.deadline_seconds = deadline_seconds
        self.clock = clock
        self.lock = ReentrancyLock()
        self.pair_address = pair_address or router.create_pair(token.address, reference_token.address)
        self.conversions = 0

    @property
    def state(self) -> LiquidityState:
        return LiquidityState.CONVERTING if self.lock.held else LiquidityState.IDLE

    @property
    def converting(self) -> bool:
        return self.lock.held

    def _deadline(self) -> float:
        return self.clock() + self.deadline_seconds

    def should_convert(self, sender: bytes) -> bool:
        """Whether a transfer from ``sender`` must run a conversion first."""
        token = self.token
        if not token.swap_and_liquify_enabled or self.lock.held:
            return False
        # Never convert while servicing a purchase from the pool
        if sender == self.pair_address:
            return False
        return token.balance_of(token.address) >= max(token.min_tokens_before_swap, 1)

    def swap_and_liquify(self) -> SwapAndLiquify:
        """
        Run one conversion of the contract's current balance.

        Raises:
            LiquidityConversionFailed: A router call failed. Legs that
                completed before the failure stay committed.
        """
        token = self.token
        contract = token.address

        with self.lock.hold(), token.fees.suspended():
            contract_balance = token.balance_of(contract)
            half = contract_balance // 2
            other_half = contract_balance - half

            initial_reference = self.reference_token.balance_of(contract)

            try:
                self._swap_tokens_for_reference(half)
            except Exception as e:
                logger.warning(f"Swap and liquify failed during swap: {e}")
                raise LiquidityConversionFailed(f"Swap failed: {e}") from e

            received = self.reference_token.balance_of(contract) - initial_reference

            try:
                self._add_liquidity(other_half, received)
            except Exception as e:
                logger.warning(f"Swap and liquify failed during add liquidity: {e}")
                raise LiquidityConversionFailed(f"Add liquidity failed: {e}") from e

        self.conversions += 1
        event = SwapAndLiquify(
            tokens_swapped=half,
            reference_received=received,
            tokens_into_liquidity=other_half,
        )
        token.events.emit(event)
        logger.info(
            f"Swap and liquify: swapped {half}, received {received}, "
            f"added {other_half} as liquidity"
        )
        return event

    def _swap_tokens_for_reference(self, token_amount: int):
        token = self.token
        token._approve(token.address, self.router.address, token_amount)
        self.router.swap_exact_tokens_for_tokens(
            token.address,
            token_amount,
            [token.address, self.reference_token.address],
            token.address,
            self._deadline(),
            amount_out_min=0,
        )

    def _add_liquidity(self, token_amount: int, reference_amount: int):
        token = self.token
        token._approve(token.address, self.router.address, token_amount)
        self.reference_token.approve(token.address, self.router.address, reference_amount)
        self.router.add_liquidity(
            token.address,
            token.address,
            self.reference_token.address,
            token_amount,
            reference_amount,
            0,
            0,
            token.owner,
            self._deadline(),
        )
