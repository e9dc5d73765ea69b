"""
loanbook - Collateralized Lending Ledger

A loan ledger where a borrower deposits one unique item as collateral and
receives a loan in a fungible currency, released again on full repayment.

Usage:
    from decimal import Decimal
    from loanbook import LoanLedger, CurrencyLedger, CollectionRegistry

    usd = CurrencyLedger("USD", "US Dollar")
    punks = CollectionRegistry("punks")
    book = LoanLedger("admin", usd)

    # Configure the collateral class (owner only)
    book.set_approved("admin", punks, True)
    book.set_valuation("admin", "punks", Decimal("300"))

    # Fund the ledger and the borrower's collateral
    usd.mint(book.address, Decimal("1000"))
    punks.mint("alice", 7)

    # Borrow against item #7, then repay
    book.open_loan("alice", "punks", 7, Decimal("300"))
    usd.approve("alice", book.address, Decimal("300"))
    book.repay_loan("alice")
"""

# Core types
from .core import (
    Transfer,
    Loan,
    NoLoan,
    NO_LOAN,
    LoanRecord,
    CollateralConfig,
    FungibleAssetLedger,
    UniqueAssetRegistry,
    Checkpointable,
    Identity,
    ItemId,
    LoanBookError,
    AccessDenied,
    CollateralNotApproved,
    NotApproved,
    NotAssetOwner,
    InsufficientLiquidity,
    ValuationExceeded,
    LoanAlreadyActive,
    LoanNotFound,
    NotBorrower,
    InsufficientRepaymentFunds,
    TransferFailed,
    Reentrant,
    RegistryError,
    ItemNotFound,
    ItemAlreadyMinted,
    NotCustodian,
    to_amount,
    format_amount,
    SYSTEM_WALLET,
    DEFAULT_CORE_ADDRESS,
    DEFAULT_CURRENCY_DECIMALS,
    EPOCH,
)

# Notifications
from .notifications import (
    Notification,
    NotificationLog,
    LoanCreated,
    LoanRepaid,
    ValuationUpdated,
    ApprovalUpdated,
    OwnershipTransferred,
)

# Access control
from .access import AccessControl

# Collaborators
from .currency import CurrencyLedger
from .registry import CollectionRegistry

# Loan ledger
from .loan_ledger import LoanLedger, non_reentrant


__all__ = [
    # Core
    'Transfer', 'Loan', 'NoLoan', 'NO_LOAN', 'LoanRecord', 'CollateralConfig',
    'FungibleAssetLedger', 'UniqueAssetRegistry', 'Checkpointable',
    'Identity', 'ItemId',
    'to_amount', 'format_amount',
    'SYSTEM_WALLET', 'DEFAULT_CORE_ADDRESS', 'DEFAULT_CURRENCY_DECIMALS', 'EPOCH',
    # Exceptions
    'LoanBookError', 'AccessDenied', 'CollateralNotApproved', 'NotApproved',
    'NotAssetOwner', 'InsufficientLiquidity', 'ValuationExceeded',
    'LoanAlreadyActive', 'LoanNotFound', 'NotBorrower',
    'InsufficientRepaymentFunds', 'TransferFailed', 'Reentrant',
    'RegistryError', 'ItemNotFound', 'ItemAlreadyMinted', 'NotCustodian',
    # Notifications
    'Notification', 'NotificationLog', 'LoanCreated', 'LoanRepaid',
    'ValuationUpdated', 'ApprovalUpdated', 'OwnershipTransferred',
    # Access
    'AccessControl',
    # Collaborators
    'CurrencyLedger', 'CollectionRegistry',
    # Loan ledger
    'LoanLedger', 'non_reentrant',
]

__version__ = '1.0.0'
