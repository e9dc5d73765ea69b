"""
Core types and pure functions for the collateralized-lending ledger.

This module provides the foundational data structures and protocols:
1. Protocols: FungibleAssetLedger, UniqueAssetRegistry, Checkpointable
2. Immutable data structures: Transfer, Loan, NoLoan, CollateralConfig
3. Exceptions: LoanBookError and the domain-specific error taxonomy
4. Type aliases: Identity, ItemId, LoanRecord
5. Amount helpers: to_amount, format_amount

Nothing in this module mutates ledger state. The stateful classes live in
currency.py, registry.py and loan_ledger.py.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN, getcontext
from typing import (
    Any, Dict, Optional, Protocol, Union, runtime_checkable
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Amounts are Decimal everywhere. The global context is configured once at
# import time so that every module computes with the same precision.
#
# PRECONDITION: No other code should modify the global Decimal context.
# If thread-local contexts are needed, use decimal.localcontext().
#
_LOANBOOK_DECIMAL_CONTEXT = getcontext()
_LOANBOOK_DECIMAL_CONTEXT.prec = 50
_LOANBOOK_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for currency issuance and redemption.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Wallet identity under which a LoanLedger holds liquidity and collateral.
DEFAULT_CORE_ADDRESS = "loanbook"

# Default decimal precision for the loan currency.
DEFAULT_CURRENCY_DECIMALS = 2

# Starting point of every logical clock.
EPOCH = datetime(1970, 1, 1)


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Identity of a principal (borrower, owner, contract wallet).
Identity = str

# Identity of a single item inside a collection.
ItemId = Union[int, str]

# Anything to_amount() accepts.
AmountLike = Union[Decimal, int, str]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LoanBookError(Exception):
    """Base exception for all loanbook errors."""
    pass


class AccessDenied(LoanBookError):
    """Raised when a non-privileged caller invokes a privileged operation."""
    pass


class CollateralNotApproved(LoanBookError):
    """Raised when a loan is requested against a collateral class that is not approved."""
    pass


class NotApproved(LoanBookError):
    """Raised when a valuation is set on a collateral class that is not approved."""
    pass


class NotAssetOwner(LoanBookError):
    """Raised when the borrower does not own the collateral item."""
    pass


class InsufficientLiquidity(LoanBookError):
    """Raised when the core's currency balance does not strictly exceed the requested amount."""
    pass


class ValuationExceeded(LoanBookError):
    """Raised when the requested amount is above the valuation of the collateral class."""
    pass


class LoanAlreadyActive(LoanBookError):
    """Raised when a borrower with an active loan requests another one."""
    pass


class LoanNotFound(LoanBookError):
    """Raised when repaying for a borrower that has no active loan."""
    pass


class NotBorrower(LoanBookError):
    """Raised when someone other than the borrower tries to repay a loan."""
    pass


class InsufficientRepaymentFunds(LoanBookError):
    """Raised when the borrower's currency balance does not cover the principal."""
    pass


class TransferFailed(LoanBookError):
    """Raised when a collaborator reports a failed currency or custody transfer."""
    pass


class Reentrant(LoanBookError):
    """Raised when a state-mutating entry point is called while another one is executing."""
    pass


class RegistryError(LoanBookError):
    """Base exception for CollectionRegistry failures."""
    pass


class ItemNotFound(RegistryError):
    """Raised when querying an item that was never minted."""
    pass


class ItemAlreadyMinted(RegistryError):
    """Raised when minting an item id that already exists."""
    pass


class NotCustodian(RegistryError):
    """Raised when a custody transfer names a source that does not hold the item."""
    pass


# ============================================================================
# AMOUNT HELPERS
# ============================================================================

def to_amount(value: AmountLike, *, allow_zero: bool = False, field_name: str = "amount") -> Decimal:
    """
    Convert a user-supplied amount to a finite Decimal.

    Floats are rejected: binary floating point cannot represent most currency
    amounts exactly. Use Decimal("0.1") or "0.1" instead of 0.1.

    Args:
        value: Decimal, int or numeric string
        allow_zero: Accept zero (valuations may be zero, loan amounts may not)
        field_name: Name used in error messages

    Returns:
        The value as a Decimal

    Raises:
        ValueError: If the value is a float, not numeric, not finite,
                    negative, or zero when allow_zero is False
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"{field_name} must be Decimal, int or str, got {type(value).__name__}")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, str)):
        try:
            amount = Decimal(value)
        except InvalidOperation:
            raise ValueError(f"{field_name} is not a number: {value!r}") from None
    else:
        raise ValueError(f"{field_name} must be Decimal, int or str, got {type(value).__name__}")

    if amount.is_nan() or amount.is_infinite():
        raise ValueError(f"{field_name} must be finite, got {amount}")
    if amount < 0:
        raise ValueError(f"{field_name} cannot be negative, got {amount}")
    if amount == 0 and not allow_zero:
        raise ValueError(f"{field_name} must be positive, got {amount}")
    return amount


def format_amount(amount: Decimal) -> str:
    """
    Render a Decimal without exponent or trailing zeros.

    Decimal("300.00") and Decimal("3E+2") both become "300".
    """
    normalized = amount.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _require_identity(identity: Identity, field_name: str) -> None:
    if not isinstance(identity, str) or not identity.strip():
        raise ValueError(f"{field_name} cannot be empty")


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class FungibleAssetLedger(Protocol):
    """
    Loan currency collaborator.

    The sender of a transfer is explicit. A contract environment would take it
    from the calling context; here the caller passes its own identity.
    Transfers report failure by returning False rather than raising.
    """

    def balance_of(self, identity: Identity) -> Decimal:
        """Return the currency balance held by identity (0 if unknown)."""
        ...

    def transfer(self, sender: Identity, to: Identity, amount: Decimal) -> bool:
        """Move amount from sender to to. Returns True on success."""
        ...

    def transfer_from(
        self, spender: Identity, source: Identity, to: Identity, amount: Decimal
    ) -> bool:
        """Move amount from source to to using spender's allowance. Returns True on success."""
        ...


@runtime_checkable
class UniqueAssetRegistry(Protocol):
    """
    Collateral collaborator: one collection of uniquely identified items.

    collection_id is the identity of the collateral class.
    """

    collection_id: str

    def owner_of(self, item_id: ItemId) -> Identity:
        """Return the current custodian of item_id."""
        ...

    def transfer_custody(self, source: Identity, dest: Identity, item_id: ItemId) -> None:
        """Move item_id from source to dest. Raises if source is not the custodian."""
        ...


@runtime_checkable
class Checkpointable(Protocol):
    """
    Optional collaborator capability used to make a loan operation atomic.

    checkpoint() captures the collaborator's full state; restore() puts it back.
    Collaborators that do not implement this must be atomic per call on their own.
    """

    def checkpoint(self) -> Any:
        ...

    def restore(self, token: Any) -> None:
        ...


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Transfer:
    """
    A single movement of currency between two wallets.

    Attributes:
        quantity: The amount moved (positive, finite).
        source: Wallet debited.
        dest: Wallet credited.
        memo: Why the transfer happened ("transfer", "transfer_from", "mint").
        spender: Identity that spent an allowance (transfer_from only).

    Validated in __post_init__; immutable once created.
    """
    quantity: Decimal
    source: Identity
    dest: Identity
    memo: str
    spender: Optional[Identity] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Transfer source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Transfer dest cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Transfer quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Transfer quantity must be finite, got {self.quantity}")
        if self.quantity <= 0:
            raise ValueError(f"Transfer quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Transfer({format_amount(self.quantity)}: {self.source}→{self.dest}, {self.memo})"


class NoLoan:
    """
    The "no active loan" variant of a borrower's loan slot.

    There is exactly one instance, NO_LOAN. It is falsy so that
    `if ledger.get_loan(b):` reads naturally, but existence checks in the
    core always go through is_active.
    """
    __slots__ = ()
    _instance: Optional['NoLoan'] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def is_active(self) -> bool:
        return False

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_LOAN"

    def __reduce__(self):
        return (NoLoan, ())


NO_LOAN = NoLoan()


@dataclass(frozen=True, slots=True)
class Loan:
    """
    One borrowing relationship: collateral in, principal out.

    Attributes:
        borrower: Identity that opened the loan and owes the principal.
        collateral_class: collection_id of the collateral's registry.
        collateral_id: Item id within that collection.
        principal: Currency amount disbursed, owed back in full.
        opened_at: Logical time the loan was opened.
        closed: True once repaid (only closed copies in the history carry it).
        closed_at: Logical time of repayment.
    """
    borrower: Identity
    collateral_class: str
    collateral_id: ItemId
    principal: Decimal
    opened_at: datetime
    closed: bool = False
    closed_at: Optional[datetime] = None

    def __post_init__(self):
        _require_identity(self.borrower, "Loan borrower")
        _require_identity(self.collateral_class, "Loan collateral_class")
        if not isinstance(self.principal, Decimal) or self.principal <= 0:
            raise ValueError(f"Loan principal must be a positive Decimal, got {self.principal!r}")
        if self.closed and self.closed_at is None:
            raise ValueError("Closed loan requires closed_at")

    @property
    def is_active(self) -> bool:
        return not self.closed

    def close(self, closed_at: datetime) -> 'Loan':
        """Return the closed copy of this loan."""
        return replace(self, closed=True, closed_at=closed_at)

    def as_dict(self) -> Dict[str, Any]:
        return {
            'borrower': self.borrower,
            'collateral_class': self.collateral_class,
            'collateral_id': self.collateral_id,
            'principal': self.principal,
            'opened_at': self.opened_at,
            'closed': self.closed,
            'closed_at': self.closed_at,
        }

    def __repr__(self) -> str:
        status = f"closed {self.closed_at}" if self.closed else f"opened {self.opened_at}"
        return (
            f"Loan({self.borrower}: {format_amount(self.principal)} against "
            f"{self.collateral_class}#{self.collateral_id}, {status})"
        )


# The contents of a borrower's loan slot.
LoanRecord = Union[NoLoan, Loan]


@dataclass(frozen=True, slots=True)
class CollateralConfig:
    """
    Configuration of one collateral class.

    Attributes:
        collection_id: Identity of the collateral class.
        registry: The UniqueAssetRegistry holding the class's items.
        approved: Whether new loans may be opened against the class.
        valuation: Maximum loanable amount against any single item.
    """
    collection_id: str
    registry: UniqueAssetRegistry = field(repr=False, compare=False)
    approved: bool = False
    valuation: Decimal = Decimal("0")
