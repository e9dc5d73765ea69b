"""
currency.py - In-memory Fungible Asset Ledger

CurrencyLedger is a single-currency balance book that satisfies the
FungibleAssetLedger and Checkpointable protocols. The loan ledger uses it as
its loan currency in tests, demos and simulations; any other object with the
same methods can take its place.

Key responsibilities:
    - Tracks balances per registered wallet (Decimal, exact at decimal_places)
    - Issues currency from SYSTEM_WALLET (mint) and redeems it back (burn)
    - Allowances: approve() lets a spender pull funds with transfer_from()
    - Always validates and always logs: every applied transfer is recorded
    - transfer()/transfer_from() report rejection by returning False
"""

from __future__ import annotations
from collections import defaultdict
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Any, Dict, List, Optional, Set, Tuple
import copy

from .core import (
    Transfer, Identity, AmountLike,
    SYSTEM_WALLET, DEFAULT_CURRENCY_DECIMALS,
    LoanBookError,
    to_amount, format_amount,
)


class CurrencyLedger:
    """
    Single-currency ledger with allowances and a full transfer log.

    Wallets are registered implicitly on first credit, or explicitly with
    register_wallet(). Querying an unknown wallet returns a zero balance.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own instance.

    Example:
        usd = CurrencyLedger("USD", "US Dollar", verbose=False)
        usd.mint("alice", Decimal("1000"))
        usd.transfer("alice", "bob", Decimal("100"))     # True
        usd.transfer("bob", "alice", Decimal("5000"))    # False, rejected
    """

    def __init__(
        self,
        symbol: str,
        name: Optional[str] = None,
        decimal_places: int = DEFAULT_CURRENCY_DECIMALS,
        verbose: bool = True,
        test_mode: bool = False,
    ):
        """
        Create a currency ledger.

        Args:
            symbol: Currency code (e.g., "USD")
            name: Human-readable name (defaults to the symbol)
            decimal_places: Precision of balances and transfers
            verbose: Print every applied and rejected transfer (default: True)
            test_mode: Allow set_balance() calls (default: False)
        """
        if not symbol or not symbol.strip():
            raise ValueError("symbol cannot be empty")
        if decimal_places < 0:
            raise ValueError(f"decimal_places cannot be negative, got {decimal_places}")
        self.symbol = symbol
        self.name = name or symbol
        self.decimal_places = decimal_places
        self.verbose = verbose
        self._test_mode = test_mode
        self.balances: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        self.allowances: Dict[Tuple[str, str], Decimal] = {}
        self.registered_wallets: Set[str] = {SYSTEM_WALLET}
        self.transfer_log: List[Transfer] = []

    # ========================================================================
    # FungibleAssetLedger PROTOCOL (read side)
    # ========================================================================

    def balance_of(self, identity: Identity) -> Decimal:
        """Balance held by identity (Decimal("0") if it never held any)."""
        return self.balances.get(identity, Decimal("0"))

    def allowance(self, owner: Identity, spender: Identity) -> Decimal:
        """Amount spender may still pull from owner via transfer_from()."""
        return self.allowances.get((owner, spender), Decimal("0"))

    def list_wallets(self) -> Set[str]:
        return self.registered_wallets.copy()

    def total_supply(self) -> Decimal:
        """
        Sum of all non-system balances.

        Wallets are sorted before summation to ensure deterministic
        accumulation order.
        """
        return sum(
            (self.balances.get(w, Decimal("0")) for w in sorted(self.registered_wallets) if w != SYSTEM_WALLET),
            Decimal("0"),
        )

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Check that issuance and holdings agree.

        Every unit held by a wallet was issued by SYSTEM_WALLET, so the system
        balance must be exactly the negated total supply.

        Returns:
            Dict with 'valid', 'total_supply', 'system_balance'
        """
        supply = self.total_supply()
        system_balance = self.balance_of(SYSTEM_WALLET)
        return {
            'valid': supply + system_balance == 0,
            'total_supply': supply,
            'system_balance': system_balance,
        }

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def register_wallet(self, wallet_id: Identity) -> Identity:
        """
        Register a wallet explicitly.

        Raises:
            ValueError: If wallet is empty or already registered
        """
        if not wallet_id or not wallet_id.strip():
            raise ValueError("wallet_id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        return wallet_id

    def set_balance(self, wallet_id: Identity, quantity: AmountLike) -> None:
        """
        Set a wallet's balance directly.

        WARNING: This bypasses issuance accounting and is only available in
        test mode. Use mint() and transfer() otherwise.

        Raises:
            LoanBookError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LoanBookError(
                "set_balance() is disabled in production mode. "
                "Use mint() and transfer() to modify balances. "
                "Set test_mode=True when creating CurrencyLedger for testing."
            )
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = self.round(to_amount(quantity, allow_zero=True, field_name="quantity"))

    # ========================================================================
    # TRANSFERS (Mutating)
    # ========================================================================

    def round(self, value: Decimal) -> Decimal:
        quantizer = Decimal(10) ** -self.decimal_places
        return value.quantize(quantizer, rounding=ROUND_HALF_EVEN)

    def exact(self, amount: AmountLike) -> Decimal:
        """
        Validate a transfer amount without rounding it.

        Amounts finer than decimal_places are refused rather than rounded, so
        the quantity moved is always the quantity the caller asked for.

        Raises:
            ValueError: If the amount is invalid or not exact at decimal_places
        """
        quantity = to_amount(amount)
        if self.round(quantity) != quantity:
            raise ValueError(
                f"amount {quantity} is not exact at {self.decimal_places} decimal places"
            )
        return quantity

    def mint(self, to: Identity, amount: AmountLike) -> bool:
        """Issue new currency from SYSTEM_WALLET to a wallet."""
        return self._apply(SYSTEM_WALLET, to, amount, "mint")

    def burn(self, source: Identity, amount: AmountLike) -> bool:
        """Redeem currency from a wallet back to SYSTEM_WALLET."""
        return self._apply(source, SYSTEM_WALLET, amount, "burn")

    def approve(self, owner: Identity, spender: Identity, amount: AmountLike) -> bool:
        """
        Set (overwrite) the allowance owner grants to spender.

        An amount of zero revokes the allowance.
        """
        if not owner or not spender:
            raise ValueError("owner and spender cannot be empty")
        if owner == spender:
            raise ValueError("owner and spender must be different")
        quantity = self.round(to_amount(amount, allow_zero=True))
        if quantity == 0:
            self.allowances.pop((owner, spender), None)
        else:
            self.allowances[(owner, spender)] = quantity
        if self.verbose:
            print(f"✓ APPROVED: {owner} → {spender} {format_amount(quantity)} {self.symbol}")
        return True

    def transfer(self, sender: Identity, to: Identity, amount: AmountLike) -> bool:
        """Move amount from sender to to. Returns False if rejected."""
        if sender == SYSTEM_WALLET:
            return self._reject("transfer", "system wallet cannot transfer, use mint()")
        return self._apply(sender, to, amount, "transfer")

    def transfer_from(
        self,
        spender: Identity,
        source: Identity,
        to: Identity,
        amount: AmountLike,
    ) -> bool:
        """
        Move amount from source to to, spending spender's allowance.

        Returns False (and changes nothing) if the allowance or the source
        balance is insufficient.
        """
        if source == SYSTEM_WALLET:
            return self._reject("transfer_from", "system wallet cannot be pulled from")
        try:
            quantity = self.exact(amount)
        except ValueError as e:
            return self._reject("transfer_from", str(e))
        allowed = self.allowance(source, spender)
        if allowed < quantity:
            return self._reject(
                "transfer_from",
                f"allowance {source}→{spender} {format_amount(allowed)} < {format_amount(quantity)}",
            )
        if not self._apply(source, to, quantity, "transfer_from", spender=spender):
            return False
        remaining = allowed - quantity
        if remaining == 0:
            del self.allowances[(source, spender)]
        else:
            self.allowances[(source, spender)] = remaining
        return True

    def _apply(
        self,
        source: Identity,
        dest: Identity,
        amount: AmountLike,
        memo: str,
        spender: Optional[Identity] = None,
    ) -> bool:
        """
        Validate and apply a single transfer.

        Checks performed:
        1. Amount is a positive, finite Decimal exact at decimal_places
        2. Source and dest are distinct, non-empty identities
        3. Source balance covers the amount (SYSTEM_WALLET is exempt)
        """
        try:
            quantity = self.exact(amount)
            record = Transfer(quantity=quantity, source=source, dest=dest, memo=memo, spender=spender)
        except ValueError as e:
            return self._reject(memo, str(e))

        if source != SYSTEM_WALLET:
            available = self.balance_of(source)
            if available < quantity:
                return self._reject(
                    memo,
                    f"{source} {self.symbol}: {format_amount(available)} < {format_amount(quantity)}",
                )

        self.registered_wallets.add(source)
        self.registered_wallets.add(dest)
        self.balances[source] = self.round(self.balances[source] - quantity)
        self.balances[dest] = self.round(self.balances[dest] + quantity)
        self.transfer_log.append(record)

        if self.verbose:
            print(f"✓ APPLIED {memo}: {format_amount(quantity)} {self.symbol} {source} → {dest}")
        return True

    def _reject(self, memo: str, reason: str) -> bool:
        if self.verbose:
            print(f"✗ REJECTED {memo}: {reason}")
        return False

    # ========================================================================
    # Checkpointable PROTOCOL
    # ========================================================================

    def checkpoint(self) -> Dict[str, Any]:
        """Capture the complete ledger state for a later restore()."""
        return {
            'balances': dict(self.balances),
            'allowances': dict(self.allowances),
            'registered_wallets': self.registered_wallets.copy(),
            'log_length': len(self.transfer_log),
        }

    def restore(self, token: Dict[str, Any]) -> None:
        """
        Return to the state captured by checkpoint().

        The transfer log is truncated back to its checkpointed length, so
        transfers of a rolled-back operation leave no trace.
        """
        self.balances = defaultdict(lambda: Decimal("0"), token['balances'])
        self.allowances = dict(token['allowances'])
        self.registered_wallets = set(token['registered_wallets'])
        del self.transfer_log[token['log_length']:]

    def clone(self) -> CurrencyLedger:
        """Create an independent deep copy of this ledger."""
        cloned = CurrencyLedger.__new__(CurrencyLedger)
        cloned.symbol = self.symbol
        cloned.name = self.name
        cloned.decimal_places = self.decimal_places
        cloned.verbose = self.verbose
        cloned._test_mode = self._test_mode
        cloned.balances = defaultdict(lambda: Decimal("0"), self.balances)
        cloned.allowances = dict(self.allowances)
        cloned.registered_wallets = self.registered_wallets.copy()
        cloned.transfer_log = copy.copy(self.transfer_log)
        return cloned

    def __repr__(self) -> str:
        return (f"CurrencyLedger({self.symbol}, {len(self.registered_wallets)} wallets, "
                f"{len(self.transfer_log)} transfers)")
