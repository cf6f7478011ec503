"""
Test the constant-product pair, the in-process router and the reference token.
"""
import pytest
from decimal import Decimal
from reflection_token.amm_state import MINIMUM_LIQUIDITY, PairState
from reflection_token.crypto import compute_pair_address, contract_address, new_address, sort_tokens
from reflection_token.errors import InsufficientAllowance, InsufficientBalance, NotOwner
from reflection_token.ledger import ZERO_ADDRESS
from reflection_token.router import InProcessRouter, RouterError, StableToken

UNIT = 10 ** 18
NOW = 1_700_000_000.0


@pytest.fixture
def owner():
    return new_address()


@pytest.fixture
def tokens(owner):
    """Two plain tokens with balances for the owner."""
    token_a = StableToken(owner, name="Token A", symbol="TKA", address=contract_address(owner, 10))
    token_b = StableToken(owner, name="Token B", symbol="TKB", address=contract_address(owner, 11))
    token_a.mint(owner, owner, 1_000_000 * UNIT)
    token_b.mint(owner, owner, 1_000_000 * UNIT)
    return token_a, token_b


@pytest.fixture
def router(owner, tokens):
    router = InProcessRouter(owner, clock=lambda: NOW)
    for token in tokens:
        router.register_token(token)
        token.approve(owner, router.address, 1_000_000 * UNIT)
    return router


@pytest.fixture
def seeded(owner, tokens, router):
    """10k : 20k pool."""
    token_a, token_b = tokens
    router.add_liquidity(
        owner, token_a.address, token_b.address,
        10_000 * UNIT, 20_000 * UNIT, 0, 0, owner, NOW + 60,
    )
    return router


class TestPairState:
    def test_tokens_sorted(self):
        pair = PairState(b'\x09' * 20, b'\x02' * 20, b'\x01' * 20)
        assert pair.token0 == b'\x01' * 20
        assert pair.token1 == b'\x02' * 20
        assert pair.reserves_for(b'\x02' * 20) == (0, 0)

    def test_get_amount_out(self):
        pair = PairState(b'\x09' * 20, b'\x01' * 20, b'\x02' * 20)
        # 1000 * 997 * 10000 // (10000 * 1000 + 1000 * 997)
        assert pair.get_amount_out(1_000, 10_000, 10_000) == 906

    def test_get_amount_out_validation(self):
        pair = PairState(b'\x09' * 20, b'\x01' * 20, b'\x02' * 20)
        with pytest.raises(ValueError, match="INSUFFICIENT_INPUT_AMOUNT"):
            pair.get_amount_out(0, 10_000, 10_000)
        with pytest.raises(ValueError, match="INSUFFICIENT_LIQUIDITY"):
            pair.get_amount_out(100, 0, 10_000)

    def test_quote(self):
        assert PairState.quote(100, 1_000, 2_000) == 200
        with pytest.raises(ValueError):
            PairState.quote(0, 1_000, 2_000)

    def test_first_mint_locks_minimum(self):
        pair = PairState(b'\x09' * 20, b'\x01' * 20, b'\x02' * 20)
        to = b'\x05' * 20

        liquidity = pair.mint(4_000, 1_000, to)

        assert liquidity == 2_000 - MINIMUM_LIQUIDITY
        assert pair.lp_balance_of(ZERO_ADDRESS) == MINIMUM_LIQUIDITY
        assert pair.lp_balance_of(to) == liquidity
        assert pair.lp_token_supply == 2_000

    def test_tiny_first_mint_rejected(self):
        pair = PairState(b'\x09' * 20, b'\x01' * 20, b'\x02' * 20)
        with pytest.raises(ValueError, match="INSUFFICIENT_LIQUIDITY_MINTED"):
            pair.mint(10, 10, b'\x05' * 20)

    def test_price_and_storage(self):
        pair = PairState(b'\x09' * 20, b'\x01' * 20, b'\x02' * 20, {
            'reserve0': '2000',
            'reserve1': '1000',
            'lp_token_supply': '1414',
            'lp_balances': {},
        })
        assert pair.price_of(b'\x01' * 20) == Decimal('0.5')
        assert pair.k == 2_000_000
        assert pair.to_dict()['reserve0'] == '2000'


class TestAddresses:
    def test_contract_address_deterministic(self, owner):
        assert contract_address(owner, 0) == contract_address(owner, 0)
        assert contract_address(owner, 0) != contract_address(owner, 1)
        assert len(contract_address(owner, 0)) == 20

    def test_pair_address_symmetric(self):
        factory, a, b = b'\x0f' * 20, b'\x01' * 20, b'\x02' * 20
        assert compute_pair_address(factory, a, b) == compute_pair_address(factory, b, a)

    def test_identical_tokens_rejected(self):
        with pytest.raises(ValueError):
            sort_tokens(b'\x01' * 20, b'\x01' * 20)


class TestStableToken:
    def test_mint_only_owner(self, owner):
        token = StableToken(owner)
        with pytest.raises(NotOwner):
            token.mint(new_address(), owner, 1)

    def test_transfer_and_allowance(self, owner, tokens):
        token_a, _ = tokens
        alice, bob = new_address(), new_address()
        token_a.transfer(owner, alice, 100)

        token_a.approve(alice, bob, 60)
        token_a.transfer_from(bob, alice, bob, 40)

        assert token_a.balance_of(alice) == 60
        assert token_a.balance_of(bob) == 40
        assert token_a.allowance(alice, bob) == 20

        with pytest.raises(InsufficientAllowance):
            token_a.transfer_from(bob, alice, bob, 21)
        with pytest.raises(InsufficientBalance):
            token_a.transfer(alice, bob, 61)


class TestRouter:
    def test_create_pair_once(self, tokens, router):
        token_a, token_b = tokens
        address = router.create_pair(token_a.address, token_b.address)

        assert router.get_pair(token_b.address, token_a.address) == address
        with pytest.raises(RouterError, match="PAIR_EXISTS"):
            router.create_pair(token_b.address, token_a.address)

    def test_add_liquidity_seeds_pool(self, owner, tokens, seeded):
        token_a, token_b = tokens
        assert seeded.reserves(token_a.address, token_b.address) == (10_000 * UNIT, 20_000 * UNIT)

        pair = seeded.pair_state(seeded.get_pair(token_a.address, token_b.address))
        assert pair.lp_balance_of(owner) > 0
        assert token_a.balance_of(owner) == 990_000 * UNIT

    def test_add_liquidity_uses_current_ratio(self, owner, tokens, seeded):
        token_a, token_b = tokens
        amount_a, amount_b, liquidity = seeded.add_liquidity(
            owner, token_a.address, token_b.address,
            1_000 * UNIT, 5_000 * UNIT, 0, 0, owner, NOW + 60,
        )
        assert amount_a == 1_000 * UNIT
        assert amount_b == 2_000 * UNIT
        assert liquidity > 0

    def test_add_liquidity_minimums(self, owner, tokens, seeded):
        token_a, token_b = tokens
        with pytest.raises(RouterError, match="INSUFFICIENT_B_AMOUNT"):
            seeded.add_liquidity(
                owner, token_a.address, token_b.address,
                1_000 * UNIT, 5_000 * UNIT, 0, 3_000 * UNIT, owner, NOW + 60,
            )

    def test_swap(self, owner, tokens, seeded):
        token_a, token_b = tokens
        before = token_b.balance_of(owner)
        k_before = seeded.pair_state(seeded.get_pair(token_a.address, token_b.address)).k

        received = seeded.swap_exact_tokens_for_tokens(
            owner, 100 * UNIT, [token_a.address, token_b.address], owner, NOW + 60,
        )

        assert received == PairState(b'', token_a.address, token_b.address).get_amount_out(
            100 * UNIT, 10_000 * UNIT, 20_000 * UNIT)
        assert token_b.balance_of(owner) - before == received
        assert seeded.reserves(token_a.address, token_b.address) == (
            10_100 * UNIT, 20_000 * UNIT - received)
        assert seeded.pair_state(seeded.get_pair(token_a.address, token_b.address)).k >= k_before

    def test_swap_minimum_output(self, owner, tokens, seeded):
        token_a, token_b = tokens
        with pytest.raises(RouterError, match="INSUFFICIENT_OUTPUT_AMOUNT"):
            seeded.swap_exact_tokens_for_tokens(
                owner, 100 * UNIT, [token_a.address, token_b.address], owner, NOW + 60,
                amount_out_min=200 * UNIT,
            )

    def test_expired_deadline(self, owner, tokens, seeded):
        token_a, token_b = tokens
        with pytest.raises(RouterError, match="EXPIRED"):
            seeded.swap_exact_tokens_for_tokens(
                owner, 100 * UNIT, [token_a.address, token_b.address], owner, NOW - 1,
            )

    def test_swap_without_pair(self, owner, tokens, router):
        token_a, token_b = tokens
        with pytest.raises(RouterError, match="PAIR_NOT_FOUND"):
            router.swap_exact_tokens_for_tokens(
                owner, 100 * UNIT, [token_a.address, token_b.address], owner, NOW + 60,
            )

    def test_swap_without_liquidity(self, owner, tokens, router):
        """A swap against an empty pair fails before any input is pulled."""
        token_a, token_b = tokens
        pair_address = router.create_pair(token_a.address, token_b.address)
        balance_before = token_a.balance_of(owner)
        allowance_before = token_a.allowance(owner, router.address)

        with pytest.raises(RouterError, match="INSUFFICIENT_LIQUIDITY"):
            router.swap_exact_tokens_for_tokens(
                owner, 100 * UNIT, [token_a.address, token_b.address], owner, NOW + 60,
            )

        assert token_a.balance_of(owner) == balance_before
        assert token_a.balance_of(pair_address) == 0
        assert token_a.allowance(owner, router.address) == allowance_before

    def test_swap_zero_input(self, owner, tokens, seeded):
        token_a, token_b = tokens
        with pytest.raises(RouterError, match="INSUFFICIENT_INPUT_AMOUNT"):
            seeded.swap_exact_tokens_for_tokens(
                owner, 0, [token_a.address, token_b.address], owner, NOW + 60,
            )

    def test_unknown_token(self, owner, tokens, router):
        token_a, _ = tokens
        stranger = new_address()
        router.create_pair(token_a.address, stranger)
        with pytest.raises(RouterError, match="Unknown token"):
            router.swap_exact_tokens_for_tokens(
                owner, 1, [token_a.address, stranger], owner, NOW + 60,
            )
