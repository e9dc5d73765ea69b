"""
conftest.py - Shared pytest fixtures for loanbook tests

Provides common fixtures used across unit and functional tests:
- Collaborators (currency ledger, collection registries)
- Loan ledgers (bare, configured, with an open loan)
"""

import pytest
from decimal import Decimal

from loanbook import (
    LoanLedger,
    CurrencyLedger,
    CollectionRegistry,
)

from tests.fakes import START, OWNER


# =============================================================================
# COLLABORATOR FIXTURES
# =============================================================================

@pytest.fixture
def usd():
    """Empty USD currency ledger."""
    return CurrencyLedger("USD", "US Dollar", verbose=False)


@pytest.fixture
def punks():
    """Empty registry for the "punks" collection."""
    return CollectionRegistry("punks", verbose=False)


@pytest.fixture
def kitties():
    """Empty registry for a second collection, "kitties"."""
    return CollectionRegistry("kitties", verbose=False)


# =============================================================================
# LOAN LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def book(usd):
    """Unconfigured loan ledger owned by "admin"."""
    return LoanLedger(OWNER, usd, initial_time=START, verbose=False)


@pytest.fixture
def configured_book(book, usd, punks):
    """
    Loan ledger ready for lending:
    - "punks" approved with valuation 300
    - ledger holds 1000 USD
    - bob owns punks #7 and #9, carol owns #11
    """
    book.set_approved(OWNER, punks, True)
    book.set_valuation(OWNER, punks, Decimal("300"))
    usd.mint(book.address, Decimal("1000"))
    punks.mint("bob", 7)
    punks.mint("bob", 9)
    punks.mint("carol", 11)
    return book


@pytest.fixture
def bob_borrowed(configured_book, usd):
    """Configured ledger where bob has borrowed 300 against #7 and approved repayment."""
    configured_book.open_loan("bob", "punks", 7, Decimal("300"))
    usd.approve("bob", configured_book.address, Decimal("300"))
    return configured_book

