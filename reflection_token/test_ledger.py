"""
Test the share-based rate ledger.
"""
import unittest
from reflection_token.errors import InsufficientBalance, InvalidAmount, ValidationError
from reflection_token.fees import FeeEngine
from reflection_token.ledger import MAX_UINT256, Account, Excluded, RateLedger

TOTAL_SUPPLY = 1_000_000 * 10 ** 6

OWNER = b'\x01' * 20
ALICE = b'\x02' * 20
BOB = b'\x03' * 20
CAROL = b'\x04' * 20


class TestRateLedger(unittest.TestCase):
    def setUp(self):
        """Ledger with the whole supply held by OWNER."""
        self.ledger = RateLedger(TOTAL_SUPPLY, FeeEngine())
        self.ledger.mint_genesis(OWNER)

    def send(self, sender, recipient, amount):
        """Fee-free move at the current rate."""
        self.ledger.move(sender, recipient, amount, amount * self.ledger.current_rate())

    def tax(self, amount):
        self.ledger.apply_tax_share(amount, amount * self.ledger.current_rate())

    def test_genesis(self):
        """Test the initial share pool and allocation."""
        ledger = self.ledger
        self.assertEqual(ledger.total_shares, MAX_UINT256 - (MAX_UINT256 % TOTAL_SUPPLY))
        self.assertEqual(ledger.total_shares % TOTAL_SUPPLY, 0)
        self.assertEqual(ledger.balance_of(OWNER), TOTAL_SUPPLY)
        self.assertEqual(ledger.current_rate(), ledger.total_shares // TOTAL_SUPPLY)
        self.assertEqual(ledger.total_fees, 0)

    def test_genesis_only_once(self):
        with self.assertRaises(ValidationError):
            self.ledger.mint_genesis(ALICE)

    def test_invalid_supply(self):
        with self.assertRaises(InvalidAmount):
            RateLedger(0)

    def test_unknown_account_is_empty(self):
        self.assertEqual(self.ledger.balance_of(ALICE), 0)
        self.assertFalse(self.ledger.is_excluded_from_reward(ALICE))
        self.assertFalse(self.ledger.is_excluded_from_fee(ALICE))
        self.assertNotIn(ALICE, self.ledger.accounts)

    def test_fee_free_move_is_exact(self):
        self.send(OWNER, ALICE, 123_456)
        self.assertEqual(self.ledger.balance_of(ALICE), 123_456)
        self.assertEqual(self.ledger.balance_of(OWNER), TOTAL_SUPPLY - 123_456)

    def test_tax_share_reflects_to_holders(self):
        """Retiring shares raises every participating balance."""
        self.send(OWNER, ALICE, TOTAL_SUPPLY // 2)
        rate_before = self.ledger.current_rate()

        self.ledger.debit(OWNER, 10_000, 10_000 * rate_before)
        self.ledger.apply_tax_share(10_000, 10_000 * rate_before)

        self.assertLess(self.ledger.current_rate(), rate_before)
        self.assertGreater(self.ledger.balance_of(ALICE), TOTAL_SUPPLY // 2)
        self.assertEqual(self.ledger.total_fees, 10_000)

    def test_conservation(self):
        """Sum of balances stays within rounding of the total supply."""
        for holder, amount in ((ALICE, 250_000_000), (BOB, 125_000_000), (CAROL, 1)):
            self.send(OWNER, holder, amount)
        self.ledger.debit(ALICE, 5_000_000, 5_000_000 * self.ledger.current_rate())
        self.tax(5_000_000)

        total = sum(self.ledger.balance_of(a) for a in self.ledger.accounts)
        self.assertLessEqual(total, TOTAL_SUPPLY)
        self.assertGreaterEqual(total, TOTAL_SUPPLY - len(self.ledger.accounts))

    def test_round_trip_conversion(self):
        shares = self.ledger.share_amount_for(777_777)
        self.assertEqual(self.ledger.token_amount_for(shares), 777_777)

    def test_share_amount_with_fee_deduction(self):
        rate = self.ledger.current_rate()
        self.assertEqual(self.ledger.share_amount_for(10_000, True), 9_000 * rate)

    def test_conversion_bounds(self):
        with self.assertRaises(InvalidAmount):
            self.ledger.share_amount_for(TOTAL_SUPPLY + 1)
        with self.assertRaises(InvalidAmount):
            self.ledger.share_amount_for(-1)
        with self.assertRaises(InvalidAmount):
            self.ledger.token_amount_for(self.ledger.total_shares + 1)

    def test_debit_insufficient(self):
        self.send(OWNER, ALICE, 100)
        with self.assertRaises(InsufficientBalance):
            self.ledger.debit(ALICE, 101, 101 * self.ledger.current_rate())

    def test_rate_for_hypothetical_pool(self):
        ledger = self.ledger
        self.assertEqual(ledger.current_rate(ledger.total_shares), ledger.current_rate())
        self.assertEqual(ledger.current_rate(ledger.total_shares // 2), ledger.current_rate() // 2)

    def test_shares_to_retire(self):
        """Retiring the computed shares lowers the balance by exactly the amount."""
        self.send(OWNER, ALICE, TOTAL_SUPPLY // 4)
        owner_before = self.ledger.balance_of(OWNER)

        shares = self.ledger.shares_to_retire(OWNER, 1_000_000)
        self.ledger.debit(OWNER, 1_000_000, shares)
        self.ledger.apply_tax_share(1_000_000, shares)

        self.assertEqual(self.ledger.balance_of(OWNER), owner_before - 1_000_000)
        self.assertGreater(self.ledger.balance_of(ALICE), TOTAL_SUPPLY // 4)

    def test_shares_to_retire_validation(self):
        self.send(OWNER, ALICE, 100)
        with self.assertRaises(InsufficientBalance):
            self.ledger.shares_to_retire(ALICE, 101)
        self.ledger.set_excluded_from_reward(ALICE, True)
        with self.assertRaises(ValidationError):
            self.ledger.shares_to_retire(ALICE, 1)


class TestRewardExclusion(unittest.TestCase):
    def setUp(self):
        self.ledger = RateLedger(TOTAL_SUPPLY, FeeEngine())
        self.ledger.mint_genesis(OWNER)
        rate = self.ledger.current_rate()
        self.ledger.move(OWNER, ALICE, 100_000_000, 100_000_000 * rate)
        self.ledger.move(OWNER, BOB, 100_000_000, 100_000_000 * rate)

    def tax(self, sender, amount):
        rate = self.ledger.current_rate()
        self.ledger.debit(sender, amount, amount * rate)
        self.ledger.apply_tax_share(amount, amount * rate)

    def test_exclusion_preserves_balance(self):
        before = self.ledger.balance_of(ALICE)
        self.ledger.set_excluded_from_reward(ALICE, True)

        self.assertTrue(self.ledger.is_excluded_from_reward(ALICE))
        self.assertIsInstance(self.ledger.accounts[ALICE].holding, Excluded)
        self.assertEqual(self.ledger.balance_of(ALICE), before)
        self.assertEqual(self.ledger.excluded, [ALICE])

    def test_excluded_balance_ignores_tax(self):
        self.ledger.set_excluded_from_reward(ALICE, True)
        bob_before = self.ledger.balance_of(BOB)

        self.tax(OWNER, 50_000_000)

        self.assertEqual(self.ledger.balance_of(ALICE), 100_000_000)
        self.assertGreater(self.ledger.balance_of(BOB), bob_before)

    def test_inclusion_preserves_balance_and_rate(self):
        self.ledger.set_excluded_from_reward(ALICE, True)
        self.tax(OWNER, 50_000_000)

        rate_before = self.ledger.current_rate()
        self.ledger.set_excluded_from_reward(ALICE, False)

        self.assertFalse(self.ledger.is_excluded_from_reward(ALICE))
        self.assertEqual(self.ledger.balance_of(ALICE), 100_000_000)
        self.assertEqual(self.ledger.current_rate(), rate_before)
        self.assertEqual(self.ledger.excluded, [])

    def test_inclusion_tops_up_clamped_shares(self):
        """Re-inclusion may grow the share pool, and only by the re-basing difference."""
        ledger = self.ledger
        ledger.set_excluded_from_reward(ALICE, True)
        # Shares clamped to zero by an earlier excluded debit
        ledger.accounts[ALICE].holding.shares = 0
        rate = ledger.current_rate()
        total_shares = ledger.total_shares

        ledger.set_excluded_from_reward(ALICE, False)

        self.assertEqual(ledger.total_shares, total_shares + 100_000_000 * rate)
        self.assertEqual(ledger.balance_of(ALICE), 100_000_000)
        self.assertEqual(ledger.current_rate(), rate)

    def test_inclusion_after_tax_shrinks_pool(self):
        self.ledger.set_excluded_from_reward(ALICE, True)
        self.tax(OWNER, 50_000_000)
        total_shares = self.ledger.total_shares

        self.ledger.set_excluded_from_reward(ALICE, False)

        self.assertLessEqual(self.ledger.total_shares, total_shares)

    def test_toggle_noop_rejected(self):
        with self.assertRaises(ValidationError):
            self.ledger.set_excluded_from_reward(ALICE, False)
        self.ledger.set_excluded_from_reward(ALICE, True)
        with self.assertRaises(ValidationError):
            self.ledger.set_excluded_from_reward(ALICE, True)

    def test_excluded_debit_checks_tokens(self):
        self.ledger.set_excluded_from_reward(ALICE, True)
        with self.assertRaises(InsufficientBalance):
            self.ledger.debit(ALICE, 100_000_001, 0)

    def test_credit_to_excluded_tracks_tokens(self):
        self.ledger.set_excluded_from_reward(CAROL, True)
        rate = self.ledger.current_rate()
        self.ledger.move(BOB, CAROL, 1_000, 1_000 * rate)
        self.assertEqual(self.ledger.balance_of(CAROL), 1_000)

    def test_degenerate_supply_falls_back_to_totals(self):
        """An excluded holding larger than the pool is ignored by the rate."""
        ledger = self.ledger
        ledger.accounts[CAROL] = Account(holding=Excluded(shares=ledger.total_shares + 1, tokens=1))
        ledger.excluded.append(CAROL)

        self.assertEqual(ledger.current_supply(), (ledger.total_shares, TOTAL_SUPPLY))


class TestCheckpoint(unittest.TestCase):
    def test_restore_undoes_changes(self):
        ledger = RateLedger(TOTAL_SUPPLY)
        ledger.mint_genesis(OWNER)
        checkpoint = ledger.checkpoint(OWNER, ALICE)

        rate = ledger.current_rate()
        ledger.move(OWNER, ALICE, 1_000, 1_000 * rate)
        ledger.apply_tax_share(10, 10 * rate)
        ledger.restore(checkpoint)

        self.assertEqual(ledger.balance_of(OWNER), TOTAL_SUPPLY)
        self.assertNotIn(ALICE, ledger.accounts)
        self.assertEqual(ledger.total_fees, 0)
        self.assertEqual(ledger.current_rate(), rate)


if __name__ == '__main__':
    unittest.main()
