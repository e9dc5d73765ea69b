"""
test_loan_scenarios.py - End-to-end loan lifecycle scenarios

Walks complete flows through the public API, from configuring a collateral
class to releasing the collateral, checking balances, custody, history and
the notification stream along the way.
"""

import pytest
from datetime import datetime
from decimal import Decimal

from loanbook import (
    LoanLedger, CurrencyLedger, CollectionRegistry,
    NO_LOAN, LoanAlreadyActive, LoanNotFound, CollateralNotApproved,
    ApprovalUpdated, ValuationUpdated, LoanCreated, LoanRepaid,
)


class TestReferenceScenario:
    """
    Class "punks" approved with valuation 300, bob owns #7 and #9, the
    ledger holds 1000. Borrow, try a second loan, repay.
    """

    def test_full_scenario(self):
        usd = CurrencyLedger("USD", "US Dollar", verbose=False)
        punks = CollectionRegistry("punks", verbose=False)
        book = LoanLedger("admin", usd, initial_time=datetime(2025, 1, 1), verbose=False)

        book.set_approved("admin", punks, True)
        book.set_valuation("admin", "punks", Decimal("300"))
        usd.mint(book.address, Decimal("1000"))
        punks.mint("bob", 7)
        punks.mint("bob", 9)

        # Borrow the full valuation against #7
        loan = book.open_loan("bob", "punks", 7, Decimal("300"))
        assert loan.principal == Decimal("300")
        assert punks.owner_of(7) == book.address
        assert usd.balance_of("bob") == Decimal("300")
        assert usd.balance_of(book.address) == Decimal("700")

        # A second loan against #9 is refused
        with pytest.raises(LoanAlreadyActive):
            book.open_loan("bob", "punks", 9, Decimal("50"))
        assert punks.owner_of(9) == "bob"
        assert usd.balance_of("bob") == Decimal("300")

        # Repay in full
        book.advance_time(datetime(2025, 6, 30))
        usd.approve("bob", book.address, Decimal("300"))
        closed = book.repay_loan("bob")

        assert punks.owner_of(7) == "bob"
        assert usd.balance_of("bob") == Decimal("0")
        assert usd.balance_of(book.address) == Decimal("1000")
        assert book.get_loan("bob") is NO_LOAN
        assert closed.closed_at == datetime(2025, 6, 30)

        kinds = [type(n) for n in book.notifications]
        assert kinds == [ApprovalUpdated, ValuationUpdated, LoanCreated, LoanRepaid]
        assert usd.verify_conservation()['valid']
        assert book.verify_custody() == {'valid': True, 'checked': 0, 'discrepancies': []}

    def test_repay_without_loan(self, configured_book):
        with pytest.raises(LoanNotFound):
            configured_book.repay_loan("bob")


class TestRevocationScenarios:

    def test_revocation_blocks_new_loans_not_repayment(self, configured_book, usd, punks):
        configured_book.open_loan("bob", "punks", 7, Decimal("200"))
        configured_book.set_approved("admin", punks, False)

        with pytest.raises(CollateralNotApproved):
            configured_book.open_loan("carol", "punks", 11, Decimal("10"))

        usd.approve("bob", configured_book.address, Decimal("200"))
        configured_book.repay_loan("bob")
        assert punks.owner_of(7) == "bob"

    def test_valuation_cut_does_not_touch_open_loans(self, configured_book, punks):
        loan = configured_book.open_loan("bob", "punks", 7, Decimal("300"))
        configured_book.set_valuation("admin", punks, Decimal("50"))
        assert configured_book.get_loan("bob") == loan
        assert configured_book.get_loan("bob").principal == Decimal("300")


class TestVerboseWalkthrough:

    def test_prints_every_step(self, capsys):
        usd = CurrencyLedger("USD", verbose=False)
        punks = CollectionRegistry("punks", verbose=False)
        book = LoanLedger("admin", usd, verbose=True)
        book.set_approved("admin", punks, True)
        book.set_valuation("admin", punks, Decimal("300"))
        usd.mint(book.address, Decimal("1000"))
        punks.mint("bob", 7)
        book.open_loan("bob", "punks", 7, Decimal("300"))
        usd.approve("bob", book.address, Decimal("300"))
        book.repay_loan("bob")

        out = capsys.readouterr().out
        assert "✓ APPROVED: collateral class punks" in out
        assert "✓ VALUATION: punks = 300" in out
        assert "✓ LOAN OPENED: bob ← 300 against punks#7" in out
        assert "✓ LOAN REPAID: bob → 300, released punks#7" in out

    def test_quiet_ledger_prints_nothing(self, capsys, configured_book):
        configured_book.open_loan("bob", "punks", 7, Decimal("300"))
        assert capsys.readouterr().out == ""
