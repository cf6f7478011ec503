"""
Rate ledger: the share-based balance representation behind the token.

Every account holds shares. A participating account's token balance is its
share count divided by the current rate, so retiring shares from the pool
(tax) raises every participant's balance at once. Accounts excluded from
reward additionally carry an explicit token balance that is authoritative for
them and immune to the rate.

Rate computation:
    rate = effective_shares // effective_tokens
where both effective supplies have the excluded accounts' holdings removed.
If removing an excluded holding would leave a degenerate supply, the
unmodified totals are used instead.
"""
import logging
from dataclasses import dataclass, field

from reflection_token.errors import InsufficientBalance, InvalidAmount, ValidationError

logger = logging.getLogger(__name__)

MAX_UINT256 = 2 ** 256 - 1
ZERO_ADDRESS = b'\x00' * 20


@dataclass
class Participating:
    """Balance derived from shares at the current rate."""
    shares: int = 0


@dataclass
class Excluded:
    """
    Fixed token balance.

    Shares are still tracked so the rate computation can remove them from
    the effective share supply.
    """
    shares: int = 0
    tokens: int = 0


@dataclass
class Account:
    holding: Participating | Excluded = field(default_factory=Participating)
    fee_exempt: bool = False
    allowances: dict = field(default_factory=dict)

    @property
    def excluded_from_reward(self) -> bool:
        return isinstance(self.holding, Excluded)

    def to_dict(self) -> dict:
        holding = self.holding
        return {
            'kind': 'excluded' if isinstance(holding, Excluded) else 'participating',
            'shares': str(holding.shares),
            'tokens': str(holding.tokens) if isinstance(holding, Excluded) else '0',
            'fee_exempt': self.fee_exempt,
            'allowances': {spender.hex(): str(amount) for spender, amount in self.allowances.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Account':
        if data['kind'] == 'excluded':
            holding = Excluded(shares=int(data['shares']), tokens=int(data['tokens']))
        else:
            holding = Participating(shares=int(data['shares']))
        return cls(
            holding=holding,
            fee_exempt=bool(data['fee_exempt']),
            allowances={bytes.fromhex(s): int(a) for s, a in data.get('allowances', {}).items()},
        )


class RateLedger:
    """
    Single owned ledger state: supplies, accounts and the exclusion list.

    Accounts are created lazily on first touch and never removed.
    """

    def __init__(self, total_supply: int, fees=None):
        """
        Args:
            total_supply: Fixed token supply in smallest units
            fees: FeeEngine used to preview post-fee share amounts
        """
        if total_supply <= 0:
            raise InvalidAmount("Total supply must be positive")

        self.total_supply = total_supply
        self.total_shares = MAX_UINT256 - (MAX_UINT256 % total_supply)
        self.total_fees = 0
        self.fees = fees
        self.accounts: dict[bytes, Account] = {}
        self.excluded: list[bytes] = []

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def account(self, address: bytes) -> Account:
        """Get an account, creating it on first touch."""
        account = self.accounts.get(address)
        if account is None:
            account = Account()
            self.accounts[address] = account
        return account

    def mint_genesis(self, owner: bytes):
        """Assign the entire share pool to ``owner``. Only valid on a fresh ledger."""
        if any(acc.holding.shares for acc in self.accounts.values()):
            raise ValidationError("Genesis allocation already made")
        self.account(owner).holding = Participating(shares=self.total_shares)

    def is_excluded_from_reward(self, address: bytes) -> bool:
        account = self.accounts.get(address)
        return account is not None and account.excluded_from_reward

    def is_excluded_from_fee(self, address: bytes) -> bool:
        account = self.accounts.get(address)
        return account is not None and account.fee_exempt

    def set_excluded_from_fee(self, address: bytes, exempt: bool):
        self.account(address).fee_exempt = exempt

    # ------------------------------------------------------------------
    # Rate
    # ------------------------------------------------------------------

    def current_supply(self, total_shares: int = None) -> tuple[int, int]:
        """
        Effective (shares, tokens) held by participating accounts.

        ``total_shares`` evaluates a hypothetical share pool instead of the
        current one.
        """
        if total_shares is None:
            total_shares = self.total_shares
        share_supply = total_shares
        token_supply = self.total_supply
        for address in self.excluded:
            holding = self.accounts[address].holding
            if holding.shares > share_supply or holding.tokens > token_supply:
                return total_shares, self.total_supply
            share_supply -= holding.shares
            token_supply -= holding.tokens

        if token_supply <= 0 or share_supply < total_shares // self.total_supply:
            return total_shares, self.total_supply
        return share_supply, token_supply

    def current_rate(self, total_shares: int = None) -> int:
        """Shares per token at this instant."""
        share_supply, token_supply = self.current_supply(total_shares)
        return share_supply // token_supply

    # ------------------------------------------------------------------
    # Conversions
    # ------------------------------------------------------------------

    def balance_of(self, address: bytes) -> int:
        account = self.accounts.get(address)
        if account is None:
            return 0
        holding = account.holding
        if isinstance(holding, Excluded):
            return holding.tokens
        return holding.shares // self.current_rate()

    def share_amount_for(self, token_amount: int, apply_transfer_fee_deduction: bool = False) -> int:
        """
        Convert tokens to shares at the current rate.

        With ``apply_transfer_fee_deduction`` the result is what a recipient
        of a fee-paying transfer of ``token_amount`` would be credited.
        """
        if token_amount < 0 or token_amount > self.total_supply:
            raise InvalidAmount("Amount must be less than supply")

        rate = self.current_rate()
        if not apply_transfer_fee_deduction or self.fees is None:
            return token_amount * rate

        split = self.fees.compute_fee_split(token_amount, False, False, rate)
        return split.net_shares

    def token_amount_for(self, share_amount: int) -> int:
        """Convert shares to tokens at the current rate."""
        if share_amount < 0 or share_amount > self.total_shares:
            raise InvalidAmount("Amount must be less than total reflections")
        return share_amount // self.current_rate()

    # ------------------------------------------------------------------
    # Exclusion from reward
    # ------------------------------------------------------------------

    def set_excluded_from_reward(self, address: bytes, excluded: bool):
        """
        Toggle reward participation without changing the visible balance.

        Exclusion snapshots the current token balance. Inclusion re-bases the
        share balance on the snapshot at the current rate and adjusts the
        share pool by the difference, which leaves the rate unchanged.
        """
        account = self.account(address)

        if excluded:
            if account.excluded_from_reward:
                raise ValidationError("Account is already excluded")
            before = self.balance_of(address)
            account.holding = Excluded(shares=account.holding.shares, tokens=before)
            self.excluded.append(address)
            logger.info(f"Excluded {address.hex()[:8]} from reward with {before} tokens")
            return

        if not account.excluded_from_reward:
            raise ValidationError("Account is already included")
        tokens = account.holding.tokens
        stale_shares = account.holding.shares
        rate = self.current_rate()
        rebased_shares = tokens * rate

        self.excluded.remove(address)
        account.holding = Participating(shares=rebased_shares)
        # The only place the share pool can grow: stale shares below the
        # snapshot (e.g. clamped by an excluded debit) are topped back up
        self.total_shares += rebased_shares - stale_shares

        if rebased_shares > stale_shares:
            logger.info(
                f"Share pool grew by {rebased_shares - stale_shares} re-basing "
                f"{address.hex()[:8]} on inclusion"
            )
        logger.info(f"Included {address.hex()[:8]} in reward with {tokens} tokens")

    def shares_to_retire(self, address: bytes, token_amount: int) -> int:
        """
        Shares to retire from a participating account so that its balance
        falls by exactly ``token_amount``.

        Retiring shares lowers the rate, which hands part of the retired
        value back to the account itself. The answer is the largest share
        count that still leaves ``balance - token_amount``, found by
        bisection over the account's shares.
        """
        holding = self.account(address).holding
        if isinstance(holding, Excluded):
            raise ValidationError("Excluded accounts hold no retirable shares")

        shares = holding.shares
        target = shares // self.current_rate() - token_amount
        if target < 0:
            raise InsufficientBalance(f"Insufficient balance to retire {token_amount}")

        def balance_after(retired: int) -> int:
            rate = self.current_rate(self.total_shares - retired)
            return (shares - retired) // rate if rate else 0

        low, high = 0, shares
        while low < high:
            mid = (low + high + 1) // 2
            if balance_after(mid) >= target:
                low = mid
            else:
                high = mid - 1
        return low

    # ------------------------------------------------------------------
    # Mutation primitives
    # ------------------------------------------------------------------

    def debit(self, address: bytes, token_amount: int, share_amount: int):
        """Remove ``share_amount`` (and ``token_amount`` if excluded) from an account."""
        account = self.account(address)
        holding = account.holding

        if isinstance(holding, Excluded):
            if holding.tokens < token_amount:
                raise InsufficientBalance(
                    f"Insufficient balance: {holding.tokens} < {token_amount}"
                )
            holding.tokens -= token_amount
            # Shares of an excluded account were credited at older rates and
            # only feed the rate computation
            holding.shares = max(0, holding.shares - share_amount)
            return

        if holding.shares < share_amount:
            raise InsufficientBalance(
                f"Insufficient balance: {holding.shares // self.current_rate()} < {token_amount}"
            )
        holding.shares -= share_amount

    def credit(self, address: bytes, token_amount: int, share_amount: int):
        holding = self.account(address).holding
        holding.shares += share_amount
        if isinstance(holding, Excluded):
            holding.tokens += token_amount

    def move(self, sender: bytes, recipient: bytes, token_amount: int, share_amount: int):
        self.debit(sender, token_amount, share_amount)
        self.credit(recipient, token_amount, share_amount)

    def apply_tax_share(self, token_amount: int, share_amount: int):
        """Retire shares from the pool without crediting anyone."""
        if share_amount > self.total_shares:
            raise InvalidAmount("Cannot retire more shares than exist")
        self.total_shares -= share_amount
        self.total_fees += token_amount

    def credit_liquidity_share(self, contract: bytes, token_amount: int, share_amount: int):
        """Credit the contract's own account with the liquidity leg."""
        self.credit(contract, token_amount, share_amount)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def checkpoint(self, *addresses: bytes) -> dict:
        """Capture totals and the given accounts for ``restore``."""
        return {
            'total_shares': self.total_shares,
            'total_fees': self.total_fees,
            'excluded': list(self.excluded),
            'accounts': {
                address: (self.accounts[address].to_dict() if address in self.accounts else None)
                for address in addresses
            },
        }

    def restore(self, checkpoint: dict):
        self.total_shares = checkpoint['total_shares']
        self.total_fees = checkpoint['total_fees']
        self.excluded = list(checkpoint['excluded'])
        for address, data in checkpoint['accounts'].items():
            if data is None:
                self.accounts.pop(address, None)
            else:
                self.accounts[address] = Account.from_dict(data)

    def to_dict(self) -> dict:
        """Convert to dict for storage. Large integers are carried as strings."""
        return {
            'total_supply': str(self.total_supply),
            'total_shares': str(self.total_shares),
            'total_fees': str(self.total_fees),
            'excluded': [address.hex() for address in self.excluded],
            'accounts': {address.hex(): acc.to_dict() for address, acc in self.accounts.items()},
        }

    @classmethod
    def from_dict(cls, data: dict, fees=None) -> 'RateLedger':
        ledger = cls(int(data['total_supply']), fees)
        ledger.total_shares = int(data['total_shares'])
        ledger.total_fees = int(data['total_fees'])
        ledger.accounts = {
            bytes.fromhex(address): Account.from_dict(acc)
            for address, acc in data['accounts'].items()
        }
        ledger.excluded = [bytes.fromhex(address) for address in data['excluded']]
        return ledger

    def __repr__(self) -> str:
        return (
            f"RateLedger(supply={self.total_supply}, "
            f"rate={self.current_rate()}, "
            f"excluded={len(self.excluded)}, "
            f"fees={self.total_fees})"
        )
