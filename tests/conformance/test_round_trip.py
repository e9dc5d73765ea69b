"""
Round-Trip Conformance Tests

INVARIANT: open_loan followed by repay_loan returns every party to where it
started:

    owner_of(item)          = borrower
    balance(borrower)       = unchanged
    balance(ledger)         = unchanged
    get_loan(borrower)      = NO_LOAN

and leaves exactly one closed entry in the loan history. The recorded
principal is always the amount the borrower received.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import timedelta
from decimal import Decimal

from loanbook import NO_LOAN, LoanCreated, LoanRepaid, TransferFailed

from tests.fakes import make_book, snapshot, START


amounts = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("300"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


class TestRoundTrip:

    @given(amounts, amounts, st.integers(min_value=0, max_value=3650))
    @settings(max_examples=100)
    def test_borrow_then_repay_restores_positions(self, amount, savings, days):
        """
        PROPERTY: A full round trip is invisible in balances and custody.
        """
        book, usd, punks = make_book(liquidity=Decimal("1000"), valuation=Decimal("300"))
        punks.mint("bob", 7)
        usd.mint("bob", savings)
        bob_before = usd.balance_of("bob")
        ledger_before = book.available_liquidity()

        book.open_loan("bob", "punks", 7, amount)
        book.advance_time(START + timedelta(days=days))
        usd.approve("bob", book.address, amount)
        closed = book.repay_loan("bob")

        assert punks.owner_of(7) == "bob"
        assert usd.balance_of("bob") == bob_before
        assert book.available_liquidity() == ledger_before
        assert book.get_loan("bob") is NO_LOAN
        assert book.loan_history() == [closed]
        assert closed.closed_at - closed.opened_at == timedelta(days=days)

    @given(st.lists(amounts, min_size=1, max_size=10))
    @settings(max_examples=50)
    def test_repeated_round_trips(self, principals):
        """
        PROPERTY: Any number of sequential round trips leaves the ledger
        funded as before, with one history entry and one notification pair
        per trip.
        """
        book, usd, punks = make_book(liquidity=Decimal("1000"), valuation=Decimal("300"))
        punks.mint("bob", 7)

        for amount in principals:
            book.open_loan("bob", "punks", 7, amount)
            usd.approve("bob", book.address, amount)
            book.repay_loan("bob")

        assert book.available_liquidity() == Decimal("1000")
        assert [loan.principal for loan in book.loan_history()] == principals
        kinds = [n.kind for n in book.notifications.entries((LoanCreated, LoanRepaid))]
        assert kinds == ["LoanCreated", "LoanRepaid"] * len(principals)


fine_amounts = st.decimals(
    min_value=Decimal("0.001"),
    max_value=Decimal("300"),
    places=3,
    allow_nan=False,
    allow_infinity=False,
)


class TestPrincipalMatchesDisbursement:

    @given(fine_amounts)
    @settings(max_examples=100)
    def test_principal_is_amount_received(self, amount):
        """
        PROPERTY: Requests finer than the currency's precision are refused
        as a whole; accepted loans pay out exactly the recorded principal and
        can be repaid with exactly what was received.
        """
        book, usd, punks = make_book(liquidity=Decimal("1000"), valuation=Decimal("300"))
        punks.mint("bob", 7)
        before = snapshot(book, usd, punks)

        if usd.round(amount) != amount:
            with pytest.raises(TransferFailed):
                book.open_loan("bob", "punks", 7, amount)
            assert snapshot(book, usd, punks) == before
            return

        loan = book.open_loan("bob", "punks", 7, amount)
        assert usd.balance_of("bob") == loan.principal == amount

        usd.approve("bob", book.address, usd.balance_of("bob"))
        book.repay_loan("bob")
        assert punks.owner_of(7) == "bob"
        assert usd.balance_of("bob") == Decimal("0")
        assert book.available_liquidity() == Decimal("1000")
