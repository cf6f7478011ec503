"""
In-process stand-ins for the external exchange and the reference token.

The token under study only *calls* an exchange router; these classes give it
something to call in simulations, the genesis tool and the test suite:

- StableToken: plain fixed-balance token used as the pool's counter-asset
- InProcessRouter: factory + router for constant-product pairs
"""
import logging
import time
from typing import Callable

from reflection_token.amm_state import PairState
from reflection_token.crypto import compute_pair_address, contract_address, sort_tokens
from reflection_token.errors import (
    InsufficientAllowance,
    InsufficientBalance,
    InvalidAmount,
    NotOwner,
    ZeroAddress,
)
from reflection_token.events import Approval, EventLog, Transfer
from reflection_token.ledger import ZERO_ADDRESS

logger = logging.getLogger(__name__)


class RouterError(Exception):
    """Raised when the router rejects a call."""
    pass


class StableToken:
    """Reference stable-value token with ordinary balances."""

    def __init__(self, owner: bytes, name: str = "Binance USD", symbol: str = "BUSD",
                 decimals: int = 18, address: bytes = None, events: EventLog = None):
        self.owner = owner
        self.name = name
        self.symbol = symbol
        self.decimals = decimals
        self.address = address or contract_address(owner, 1)
        self.events = events if events is not None else EventLog()
        self.total_supply = 0
        self.balances: dict[bytes, int] = {}
        self.allowances: dict[tuple[bytes, bytes], int] = {}

    def mint(self, caller: bytes, to: bytes, amount: int):
        if caller != self.owner:
            raise NotOwner("Ownable: caller is not the owner")
        if to == ZERO_ADDRESS:
            raise ZeroAddress("Mint to the zero address")
        self.total_supply += amount
        self.balances[to] = self.balances.get(to, 0) + amount
        self.events.emit(Transfer(ZERO_ADDRESS, to, amount))

    def balance_of(self, address: bytes) -> int:
        return self.balances.get(address, 0)

    def allowance(self, owner: bytes, spender: bytes) -> int:
        return self.allowances.get((owner, spender), 0)

    def approve(self, owner: bytes, spender: bytes, amount: int) -> bool:
        if owner == ZERO_ADDRESS or spender == ZERO_ADDRESS:
            raise ZeroAddress("Approve from or to the zero address")
        if amount < 0:
            raise InvalidAmount("Allowance cannot be negative")
        self.allowances[(owner, spender)] = amount
        self.events.emit(Approval(owner, spender, amount))
        return True

    def increase_allowance(self, owner: bytes, spender: bytes, added_value: int) -> bool:
        return self.approve(owner, spender, self.allowance(owner, spender) + added_value)

    def decrease_allowance(self, owner: bytes, spender: bytes, subtracted_value: int) -> bool:
        current = self.allowance(owner, spender)
        if subtracted_value > current:
            raise InsufficientAllowance("Decreased allowance below zero")
        return self.approve(owner, spender, current - subtracted_value)

    def transfer(self, sender: bytes, recipient: bytes, amount: int) -> bool:
        if sender == ZERO_ADDRESS or recipient == ZERO_ADDRESS:
            raise ZeroAddress("Transfer from or to the zero address")
        if amount < 0:
            raise InvalidAmount("Transfer amount cannot be negative")
        balance = self.balance_of(sender)
        if balance < amount:
            raise InsufficientBalance(f"Transfer amount exceeds balance: {balance} < {amount}")
        self.balances[sender] = balance - amount
        self.balances[recipient] = self.balance_of(recipient) + amount
        self.events.emit(Transfer(sender, recipient, amount))
        return True

    def transfer_from(self, spender: bytes, sender: bytes, recipient: bytes, amount: int) -> bool:
        current = self.allowance(sender, spender)
        if current < amount:
            raise InsufficientAllowance("Transfer amount exceeds allowance")
        self.transfer(sender, recipient, amount)
        self.allowances[(sender, spender)] = current - amount
        return True


class InProcessRouter:
    """
    Factory and router for constant-product pairs.

    Tokens must be registered before they can be traded. Input tokens are
    pulled with ``transfer_from``, so callers approve the router first.
    """

    def __init__(self, deployer: bytes, clock: Callable[[], float] = time.time):
        self.address = contract_address(deployer, 2)
        self.factory_address = contract_address(deployer, 3)
        self.clock = clock
        self.tokens: dict[bytes, object] = {}
        self.pairs: dict[bytes, PairState] = {}

    def register_token(self, token):
        self.tokens[token.address] = token

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    def get_pair(self, token_a: bytes, token_b: bytes) -> bytes | None:
        address = compute_pair_address(self.factory_address, token_a, token_b)
        return address if address in self.pairs else None

    def create_pair(self, token_a: bytes, token_b: bytes) -> bytes:
        sort_tokens(token_a, token_b)
        address = compute_pair_address(self.factory_address, token_a, token_b)
        if address in self.pairs:
            raise RouterError("PAIR_EXISTS")
        self.pairs[address] = PairState(address, token_a, token_b)
        logger.info(f"Created pair {address.hex()[:8]} for {token_a.hex()[:8]}/{token_b.hex()[:8]}")
        return address

    def pair_state(self, pair_address: bytes) -> PairState:
        return self.pairs[pair_address]

    def reserves(self, token_a: bytes, token_b: bytes) -> tuple[int, int]:
        """Reserves ordered as (token_a, token_b)."""
        pair_address = self.get_pair(token_a, token_b)
        if pair_address is None:
            return 0, 0
        return self.pairs[pair_address].reserves_for(token_a)

    # ------------------------------------------------------------------
    # Router
    # ------------------------------------------------------------------

    def _ensure(self, deadline: float):
        if deadline < self.clock():
            raise RouterError("EXPIRED")

    def _token(self, address: bytes):
        token = self.tokens.get(address)
        if token is None:
            raise RouterError(f"Unknown token {address.hex()[:8]}")
        return token

    def _sync(self, pair: PairState):
        pair.reserve0 = self._token(pair.token0).balance_of(pair.address)
        pair.reserve1 = self._token(pair.token1).balance_of(pair.address)

    def swap_exact_tokens_for_tokens(self, caller: bytes, amount_in: int, path: list,
                                     to: bytes, deadline: float, amount_out_min: int = 0) -> int:
        """
        Swap an exact input along a two-token path.

        Supports tokens that take a fee on transfer: the input is measured
        as what actually arrived at the pair, and the output as what actually
        arrived at ``to``.

        Returns:
            Amount of output token received by ``to``
        """
        self._ensure(deadline)
        if len(path) != 2:
            raise RouterError("INVALID_PATH")

        pair_address = self.get_pair(path[0], path[1])
        if pair_address is None:
            raise RouterError("PAIR_NOT_FOUND")
        pair = self.pairs[pair_address]
        token_in = self._token(path[0])
        token_out = self._token(path[1])

        # Nothing is pulled from the caller for a swap that cannot be priced
        reserve_in, reserve_out = pair.reserves_for(path[0])
        if amount_in <= 0:
            raise RouterError("INSUFFICIENT_INPUT_AMOUNT")
        if reserve_in <= 0 or reserve_out <= 0:
            raise RouterError("INSUFFICIENT_LIQUIDITY")

        token_in.transfer_from(self.address, caller, pair_address, amount_in)

        actual_in = token_in.balance_of(pair_address) - reserve_in
        try:
            amount_out = pair.get_amount_out(actual_in, reserve_in, reserve_out)
        except ValueError as e:
            raise RouterError(str(e)) from e

        balance_before = token_out.balance_of(to)
        token_out.transfer(pair_address, to, amount_out)
        self._sync(pair)

        received = token_out.balance_of(to) - balance_before
        if received < amount_out_min:
            raise RouterError(f"INSUFFICIENT_OUTPUT_AMOUNT: got {received}, expected {amount_out_min}")

        logger.info(
            f"Swap: {actual_in} {path[0].hex()[:8]} -> {received} {path[1].hex()[:8]}"
        )
        return received

    def add_liquidity(self, caller: bytes, token_a: bytes, token_b: bytes,
                      amount_a_desired: int, amount_b_desired: int,
                      amount_a_min: int, amount_b_min: int,
                      to: bytes, deadline: float) -> tuple[int, int, int]:
        """
        Deposit both tokens at the current ratio and mint pool shares to ``to``.

        Returns:
            (amount_a, amount_b, liquidity)
        """
        self._ensure(deadline)
        pair_address = self.get_pair(token_a, token_b) or self.create_pair(token_a, token_b)
        pair = self.pairs[pair_address]
        reserve_a, reserve_b = pair.reserves_for(token_a)

        if reserve_a == 0 and reserve_b == 0:
            amount_a, amount_b = amount_a_desired, amount_b_desired
        else:
            amount_b_optimal = pair.quote(amount_a_desired, reserve_a, reserve_b)
            if amount_b_optimal <= amount_b_desired:
                if amount_b_optimal < amount_b_min:
                    raise RouterError("INSUFFICIENT_B_AMOUNT")
                amount_a, amount_b = amount_a_desired, amount_b_optimal
            else:
                amount_a_optimal = pair.quote(amount_b_desired, reserve_b, reserve_a)
                if amount_a_optimal < amount_a_min:
                    raise RouterError("INSUFFICIENT_A_AMOUNT")
                amount_a, amount_b = amount_a_optimal, amount_b_desired

        self._token(token_a).transfer_from(self.address, caller, pair_address, amount_a)
        self._token(token_b).transfer_from(self.address, caller, pair_address, amount_b)

        balance0 = self._token(pair.token0).balance_of(pair_address)
        balance1 = self._token(pair.token1).balance_of(pair_address)
        try:
            liquidity = pair.mint(balance0 - pair.reserve0, balance1 - pair.reserve1, to)
        except ValueError as e:
            raise RouterError(str(e)) from e
        self._sync(pair)

        logger.info(f"Added liquidity: {amount_a}/{amount_b}, minted {liquidity} to {to.hex()[:8]}")
        return amount_a, amount_b, liquidity
