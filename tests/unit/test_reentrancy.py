"""
test_reentrancy.py - Unit tests for the non-reentrant guard

Collection receiver hooks run in the middle of a custody transfer, which is
where a hostile collateral class gets control back during open_loan() and
repay_loan(). These tests drive nested calls through those hooks.
"""

import pytest
from decimal import Decimal

from loanbook import (
    LoanLedger, Loan, NO_LOAN, Reentrant,
)

from tests.fakes import snapshot


class TestNestedCallsRejected:

    def test_nested_open_loan_caught_by_hook(self, configured_book, usd, punks):
        """The nested call fails; the outer call still completes."""
        errors = []

        def reenter(source, dest, item_id):
            try:
                configured_book.open_loan("carol", "punks", 11, Decimal("10"))
            except Reentrant as e:
                errors.append(e)

        punks.add_receiver_hook(reenter)
        configured_book.open_loan("bob", "punks", 7, Decimal("300"))

        assert len(errors) == 1
        assert "open_loan" in str(errors[0])
        assert configured_book.has_active_loan("bob")
        assert not configured_book.has_active_loan("carol")
        assert punks.owner_of(11) == "carol"

    def test_nested_open_loan_propagating_rolls_back(self, configured_book, usd, punks):
        """If the hook lets Reentrant escape, the outer call fails atomically."""
        def reenter(source, dest, item_id):
            configured_book.open_loan("carol", "punks", 11, Decimal("10"))

        before = snapshot(configured_book, usd, punks)
        punks.add_receiver_hook(reenter)
        with pytest.raises(Reentrant):
            configured_book.open_loan("bob", "punks", 7, Decimal("300"))

        assert snapshot(configured_book, usd, punks) == before
        assert configured_book.get_loan("bob") is NO_LOAN

    def test_nested_repay_during_release(self, bob_borrowed, usd, punks):
        def reenter(source, dest, item_id):
            bob_borrowed.repay_loan("bob")

        before = snapshot(bob_borrowed, usd, punks)
        punks.add_receiver_hook(reenter)
        with pytest.raises(Reentrant):
            bob_borrowed.repay_loan("bob")
        assert snapshot(bob_borrowed, usd, punks) == before

    def test_nested_configuration_rejected(self, configured_book, punks):
        def reenter(source, dest, item_id):
            configured_book.set_valuation("admin", "punks", Decimal("1000000"))

        punks.add_receiver_hook(reenter)
        with pytest.raises(Reentrant):
            configured_book.open_loan("bob", "punks", 7, Decimal("300"))
        assert configured_book.valuation_of("punks") == Decimal("300")

    def test_nested_ownership_transfer_rejected(self, configured_book, punks):
        def reenter(source, dest, item_id):
            configured_book.transfer_ownership("admin", "mallory")

        punks.add_receiver_hook(reenter)
        with pytest.raises(Reentrant):
            configured_book.open_loan("bob", "punks", 7, Decimal("300"))
        assert configured_book.owner == "admin"


class TestGuardRelease:
    """The guard is released on every exit path."""

    def test_released_after_success(self, configured_book):
        configured_book.open_loan("bob", "punks", 7, Decimal("10"))
        configured_book.open_loan("carol", "punks", 11, Decimal("10"))
        assert len(configured_book.active_loans()) == 2

    def test_released_after_failure(self, configured_book, punks):
        remove = punks.add_receiver_hook(
            lambda s, d, i: configured_book.open_loan("carol", "punks", 11, Decimal("10"))
        )
        with pytest.raises(Reentrant):
            configured_book.open_loan("bob", "punks", 7, Decimal("300"))
        remove()
        loan = configured_book.open_loan("bob", "punks", 7, Decimal("300"))
        assert isinstance(loan, Loan)

    def test_released_after_validation_error(self, configured_book):
        with pytest.raises(ValueError):
            configured_book.open_loan("bob", "punks", 7, Decimal("-5"))
        configured_book.open_loan("bob", "punks", 7, Decimal("5"))


class TestStateBeforeEffect:
    """The loan table is updated before collaborators get control."""

    def test_record_visible_during_collateral_intake(self, configured_book, punks):
        seen = []
        punks.add_receiver_hook(lambda s, d, i: seen.append(configured_book.get_loan("bob")))
        configured_book.open_loan("bob", "punks", 7, Decimal("300"))
        assert isinstance(seen[0], Loan)
        assert seen[0].principal == Decimal("300")

    def test_record_gone_during_collateral_release(self, bob_borrowed, punks):
        seen = []
        punks.add_receiver_hook(lambda s, d, i: seen.append(bob_borrowed.get_loan("bob")))
        bob_borrowed.repay_loan("bob")
        assert seen == [NO_LOAN]

    def test_queries_allowed_while_guarded(self, configured_book, punks):
        seen = []
        punks.add_receiver_hook(
            lambda s, d, i: seen.append(configured_book.verify_custody()['valid'])
        )
        configured_book.open_loan("bob", "punks", 7, Decimal("300"))
        assert seen == [True]


class TestDecorator:

    def test_wrapped_methods_keep_their_names(self):
        for name in ("open_loan", "repay_loan", "set_approved", "set_valuation", "transfer_ownership"):
            assert getattr(LoanLedger, name).__name__ == name
