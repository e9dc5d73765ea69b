"""
test_access_control.py - Unit tests for the privileged-owner gate

Tests:
- AccessControl: owner checks, ownership transfer, checkpoint/restore
- LoanLedger.transfer_ownership: gating and notification
"""

import pytest
from decimal import Decimal

from loanbook import AccessControl, AccessDenied, OwnershipTransferred


class TestAccessControl:

    def test_owner_passes(self):
        access = AccessControl("admin")
        access.require_owner("admin", "set_valuation")
        assert access.is_owner("admin")

    def test_non_owner_denied(self):
        access = AccessControl("admin")
        with pytest.raises(AccessDenied, match="set_valuation: caller 'mallory' is not the owner"):
            access.require_owner("mallory", "set_valuation")
        assert not access.is_owner(None)

    def test_empty_owner_rejected(self):
        with pytest.raises(ValueError, match="owner cannot be empty"):
            AccessControl("")

    def test_transfer_ownership(self):
        access = AccessControl("admin")
        previous = access.transfer_ownership("admin", "treasury")
        assert previous == "admin"
        assert access.owner == "treasury"
        assert not access.is_owner("admin")

    def test_transfer_ownership_requires_owner(self):
        access = AccessControl("admin")
        with pytest.raises(AccessDenied):
            access.transfer_ownership("mallory", "mallory")
        assert access.owner == "admin"

    def test_transfer_to_empty_rejected(self):
        access = AccessControl("admin")
        with pytest.raises(ValueError, match="new_owner cannot be empty"):
            access.transfer_ownership("admin", " ")
        assert access.owner == "admin"

    def test_checkpoint_restore(self):
        access = AccessControl("admin")
        token = access.checkpoint()
        access.transfer_ownership("admin", "treasury")
        access.restore(token)
        assert access.owner == "admin"


class TestLedgerOwnership:
    """Ownership transfer through the loan ledger."""

    def test_transfer_emits_notification(self, book):
        book.transfer_ownership("admin", "treasury")
        assert book.owner == "treasury"
        last = book.notifications.last()
        assert isinstance(last, OwnershipTransferred)
        assert (last.previous_owner, last.new_owner) == ("admin", "treasury")

    def test_new_owner_configures_old_owner_cannot(self, book, punks):
        book.transfer_ownership("admin", "treasury")
        with pytest.raises(AccessDenied):
            book.set_approved("admin", punks, True)
        book.set_approved("treasury", punks, True)
        assert book.is_approved("punks")

    def test_rejected_transfer_changes_nothing(self, book):
        with pytest.raises(AccessDenied):
            book.transfer_ownership("mallory", "mallory")
        assert book.owner == "admin"
        assert len(book.notifications) == 0

    def test_non_owner_cannot_configure(self, book, punks):
        with pytest.raises(AccessDenied):
            book.set_approved("bob", punks, True)
        with pytest.raises(AccessDenied):
            book.set_valuation("bob", punks, Decimal("1"))
        assert book.collateral_config(punks) is None
