"""
notifications.py - Append-only notification log

The loan ledger emits a notification for every committed change:

    LoanCreated          {borrower, collateral_class, collateral_id, amount}
    LoanRepaid           {borrower, collateral_class, collateral_id, amount}
    ValuationUpdated     {collateral_class, new_value}
    ApprovalUpdated      {collateral_class, approved}
    OwnershipTransferred {previous_owner, new_owner}

Notifications are facts: frozen, sequenced, timestamped. The log only grows;
entries are never edited or removed. Listeners registered with subscribe()
see each notification once, after the operation that produced it committed.
A listener that raises does not stop delivery to the others.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterator, List, Optional, Tuple, Type

from .core import Identity, ItemId, format_amount


# =============================================================================
# NOTIFICATION RECORDS
# =============================================================================

@dataclass(frozen=True, slots=True)
class Notification:
    """Common header: position in the log and logical time of emission."""
    sequence: int
    timestamp: datetime

    @property
    def kind(self) -> str:
        return type(self).__name__


@dataclass(frozen=True, slots=True)
class LoanCreated(Notification):
    borrower: Identity
    collateral_class: str
    collateral_id: ItemId
    amount: Decimal

    def __repr__(self) -> str:
        return (f"LoanCreated(#{self.sequence} {self.borrower} <- {format_amount(self.amount)} "
                f"against {self.collateral_class}#{self.collateral_id})")


@dataclass(frozen=True, slots=True)
class LoanRepaid(Notification):
    borrower: Identity
    collateral_class: str
    collateral_id: ItemId
    amount: Decimal

    def __repr__(self) -> str:
        return (f"LoanRepaid(#{self.sequence} {self.borrower} -> {format_amount(self.amount)} "
                f"releasing {self.collateral_class}#{self.collateral_id})")


@dataclass(frozen=True, slots=True)
class ValuationUpdated(Notification):
    collateral_class: str
    new_value: Decimal


@dataclass(frozen=True, slots=True)
class ApprovalUpdated(Notification):
    collateral_class: str
    approved: bool


@dataclass(frozen=True, slots=True)
class OwnershipTransferred(Notification):
    previous_owner: Identity
    new_owner: Identity


Listener = Callable[[Notification], None]


# =============================================================================
# LOG
# =============================================================================

class NotificationLog:
    """
    Append-only, observable sequence of notifications.

    The log assigns sequence numbers itself; producers call emit() with the
    notification class and its payload fields.

    Example:
        log = NotificationLog()
        log.subscribe(print)
        log.emit(ValuationUpdated, datetime(2025, 1, 1),
                 collateral_class="punks", new_value=Decimal("300"))
    """

    def __init__(self):
        self._entries: List[Notification] = []
        self._listeners: List[Listener] = []
        self.listener_errors: List[Tuple[Notification, Exception]] = []

    def emit(self, kind: Type[Notification], timestamp: datetime, **payload) -> Notification:
        """
        Create, append and publish a notification.

        Every listener is called even if an earlier one raises. The change a
        notification reports has already happened, so a listener failure is
        recorded in listener_errors instead of reaching the producer.
        """
        notification = kind(sequence=len(self._entries), timestamp=timestamp, **payload)
        self._entries.append(notification)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as exc:
                self.listener_errors.append((notification, exc))
        return notification

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener for future notifications.

        Returns:
            A function that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def entries(self, kind: Optional[Type[Notification]] = None) -> Tuple[Notification, ...]:
        """Return all notifications, optionally only those of one kind."""
        if kind is None:
            return tuple(self._entries)
        return tuple(n for n in self._entries if isinstance(n, kind))

    def last(self) -> Optional[Notification]:
        return self._entries[-1] if self._entries else None

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Notification]:
        return iter(tuple(self._entries))

    def __repr__(self) -> str:
        return f"NotificationLog({len(self._entries)} entries, {len(self._listeners)} listeners)"
