"""
Constant-product pair state: x * y = k.

Used by the in-process router that stands in for the external exchange.
"""
import math
from decimal import Decimal

from reflection_token.crypto import sort_tokens
from reflection_token.ledger import ZERO_ADDRESS

MINIMUM_LIQUIDITY = 1000


class PairState:
    """
    Reserves and pool-share (LP) balances for one token pair.

    Uniswap V2 style: reserves are synced to actual balances after every
    operation, so tokens that deliver less than requested on transfer are
    handled by measuring what arrived.
    """

    # Fee configuration (30 basis points = 0.30%)
    FEE_NUMERATOR = 997
    FEE_DENOMINATOR = 1000

    def __init__(self, address: bytes, token_a: bytes, token_b: bytes, data: dict = None):
        self.address = address
        self.token0, self.token1 = sort_tokens(token_a, token_b)

        if data is None:
            data = {
                'reserve0': 0,
                'reserve1': 0,
                'lp_token_supply': 0,
                'lp_balances': {},
            }

        self.reserve0 = int(data['reserve0'])
        self.reserve1 = int(data['reserve1'])
        self.lp_token_supply = int(data['lp_token_supply'])
        self.lp_balances = {bytes.fromhex(k): int(v) for k, v in data['lp_balances'].items()}

    def to_dict(self) -> dict:
        return {
            'reserve0': str(self.reserve0),
            'reserve1': str(self.reserve1),
            'lp_token_supply': str(self.lp_token_supply),
            'lp_balances': {k.hex(): str(v) for k, v in self.lp_balances.items()},
        }

    def reserves_for(self, token_in: bytes) -> tuple[int, int]:
        """(reserve_in, reserve_out) ordered for a swap starting at ``token_in``."""
        if token_in == self.token0:
            return self.reserve0, self.reserve1
        if token_in == self.token1:
            return self.reserve1, self.reserve0
        raise ValueError("Token not in pair")

    def price_of(self, token: bytes) -> Decimal:
        """Price of one unit of ``token`` in units of the other token."""
        reserve_in, reserve_out = self.reserves_for(token)
        if reserve_in == 0:
            return Decimal('0')
        return Decimal(reserve_out) / Decimal(reserve_in)

    def get_amount_out(self, amount_in: int, reserve_in: int, reserve_out: int) -> int:
        """
        Output for an exact input, fee included.

        Formula: Δy = (y * Δx * 0.997) / (x + Δx * 0.997)
        """
        if amount_in <= 0:
            raise ValueError("INSUFFICIENT_INPUT_AMOUNT")
        if reserve_in <= 0 or reserve_out <= 0:
            raise ValueError("INSUFFICIENT_LIQUIDITY")

        input_with_fee = amount_in * self.FEE_NUMERATOR
        numerator = input_with_fee * reserve_out
        denominator = reserve_in * self.FEE_DENOMINATOR + input_with_fee
        return numerator // denominator

    @staticmethod
    def quote(amount_a: int, reserve_a: int, reserve_b: int) -> int:
        """Amount of B matching ``amount_a`` at the current reserve ratio."""
        if amount_a <= 0:
            raise ValueError("INSUFFICIENT_AMOUNT")
        if reserve_a <= 0 or reserve_b <= 0:
            raise ValueError("INSUFFICIENT_LIQUIDITY")
        return amount_a * reserve_b // reserve_a

    def mint(self, amount0: int, amount1: int, to: bytes) -> int:
        """Mint pool shares for deposited amounts."""
        if self.lp_token_supply == 0:
            # Geometric mean for initial liquidity, minimum locked forever
            liquidity = math.isqrt(amount0 * amount1) - MINIMUM_LIQUIDITY
            if liquidity <= 0:
                raise ValueError("INSUFFICIENT_LIQUIDITY_MINTED")
            self.lp_balances[ZERO_ADDRESS] = MINIMUM_LIQUIDITY
            self.lp_token_supply = MINIMUM_LIQUIDITY
        else:
            liquidity = min(
                amount0 * self.lp_token_supply // self.reserve0,
                amount1 * self.lp_token_supply // self.reserve1,
            )
            if liquidity <= 0:
                raise ValueError("INSUFFICIENT_LIQUIDITY_MINTED")

        self.lp_balances[to] = self.lp_balances.get(to, 0) + liquidity
        self.lp_token_supply += liquidity
        return liquidity

    def lp_balance_of(self, address: bytes) -> int:
        return self.lp_balances.get(address, 0)

    @property
    def k(self) -> int:
        return self.reserve0 * self.reserve1

    def __repr__(self) -> str:
        return (
            f"PairState("
            f"reserve0={self.reserve0}, "
            f"reserve1={self.reserve1}, "
            f"lp_supply={self.lp_token_supply})"
        )
