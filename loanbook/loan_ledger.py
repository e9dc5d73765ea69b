"""
loan_ledger.py - Collateralized Loan Ledger

The LoanLedger is the state machine for collateral-backed loans:

    open_loan:   borrower's item  -> core custody
                 core's currency  -> borrower      (principal)
    repay_loan:  borrower's currency -> core       (principal)
                 core custody        -> borrower's item

It owns three tables: active loans (one slot per borrower), collateral class
configuration (approval flag + valuation), and the closed-loan history.
Currency and items never belong to it; they live in the FungibleAssetLedger
and UniqueAssetRegistry collaborators and are referenced by identity.

Execution discipline for every state-mutating operation:
    1. Non-reentrant: a nested call into any mutating entry point raises
       Reentrant before touching state.
    2. State before effect: the loan table is written before the external
       transfers are requested.
    3. All or nothing: core state and every Checkpointable collaborator are
       checkpointed on entry and restored if anything raises. Effects already
       applied to other collaborators are reversed by compensating transfers.
       Notifications are published only after the operation committed.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from functools import wraps
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Type, Union

from .access import AccessControl
from .core import (
    # Types
    Loan, LoanRecord, NO_LOAN, CollateralConfig,
    FungibleAssetLedger, UniqueAssetRegistry, Checkpointable,
    Identity, ItemId, AmountLike,
    # Constants
    DEFAULT_CORE_ADDRESS, EPOCH, SYSTEM_WALLET,
    # Exceptions
    LoanBookError, RegistryError,
    CollateralNotApproved, NotApproved, NotAssetOwner,
    InsufficientLiquidity, ValuationExceeded,
    LoanAlreadyActive, LoanNotFound, NotBorrower,
    InsufficientRepaymentFunds, TransferFailed, Reentrant,
    # Helpers
    to_amount, format_amount, _require_identity,
)
from .notifications import (
    Notification, NotificationLog,
    LoanCreated, LoanRepaid, ValuationUpdated, ApprovalUpdated, OwnershipTransferred,
)


CollateralClassLike = Union[str, UniqueAssetRegistry]


def non_reentrant(method):
    """
    Guard a LoanLedger entry point with the instance's reentrancy flag.

    The flag is taken before the method runs and released on every exit
    path. A call made while the flag is held raises Reentrant immediately.
    """
    @wraps(method)
    def wrapper(self: 'LoanLedger', *args, **kwargs):
        if self._entered:
            raise Reentrant(f"{method.__name__}: another operation is already executing")
        self._entered = True
        try:
            return method(self, *args, **kwargs)
        finally:
            self._entered = False
    return wrapper


class LoanLedger:
    """
    Ledger of collateralized loans, one active loan per borrower.

    Thread Safety:
        Not thread-safe. Operations run to completion one at a time.

    Example:
        usd = CurrencyLedger("USD", verbose=False)
        punks = CollectionRegistry("punks", verbose=False)
        book = LoanLedger("admin", usd, verbose=False)

        book.set_approved("admin", punks, True)
        book.set_valuation("admin", "punks", Decimal("300"))
        usd.mint(book.address, Decimal("1000"))
        punks.mint("alice", 7)

        book.open_loan("alice", "punks", 7, Decimal("300"))
        usd.approve("alice", book.address, Decimal("300"))
        book.repay_loan("alice")
    """

    def __init__(
        self,
        owner: Identity,
        currency: FungibleAssetLedger,
        *,
        address: Identity = DEFAULT_CORE_ADDRESS,
        name: str = "loanbook",
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        """
        Create a loan ledger.

        Args:
            owner: The privileged principal allowed to configure collateral
            currency: Fungible asset ledger of the loan currency
            address: Wallet identity the ledger holds liquidity and collateral under
            name: Ledger identifier used in output
            initial_time: Starting logical time (default: 1970-01-01)
            verbose: Print every applied and rejected operation (default: True)
        """
        _require_identity(address, "address")
        if not isinstance(currency, FungibleAssetLedger):
            raise ValueError(f"currency does not implement FungibleAssetLedger: {currency!r}")
        self.name = name
        self.address = address
        self.currency = currency
        self.access = AccessControl(owner)
        self.notifications = NotificationLog()
        self.verbose = verbose
        self._current_time: datetime = initial_time or EPOCH
        self._loans: Dict[Identity, Loan] = {}
        self._history: List[Loan] = []
        self._collateral: Dict[str, CollateralConfig] = {}
        self._entered = False
        self._pending: List[Tuple[Type[Notification], Dict[str, Any]]] = []
        self._compensations: List[Callable[[], None]] = []

    # ========================================================================
    # QUERIES (read-only)
    # ========================================================================

    @property
    def owner(self) -> Identity:
        """Identity currently holding the configuration role."""
        return self.access.owner

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_loan(self, borrower: Identity) -> LoanRecord:
        """Return the borrower's active loan, or NO_LOAN."""
        return self._loans.get(borrower, NO_LOAN)

    def has_active_loan(self, borrower: Identity) -> bool:
        """True if borrower currently owes a loan."""
        return self.get_loan(borrower).is_active

    def active_loans(self) -> List[Loan]:
        """All active loans, sorted by borrower."""
        return [self._loans[b] for b in sorted(self._loans)]

    def loan_history(self, borrower: Optional[Identity] = None) -> List[Loan]:
        """Closed loans in repayment order, optionally for one borrower."""
        if borrower is None:
            return list(self._history)
        return [loan for loan in self._history if loan.borrower == borrower]

    def outstanding_principal(self) -> Decimal:
        """Total principal owed back on active loans."""
        return sum((self._loans[b].principal for b in sorted(self._loans)), Decimal("0"))

    def available_liquidity(self) -> Decimal:
        """Currency the ledger currently holds."""
        return self.currency.balance_of(self.address)

    def collateral_config(self, collateral_class: CollateralClassLike) -> Optional[CollateralConfig]:
        """Configuration of a collateral class, or None if it was never configured."""
        return self._collateral.get(self._class_id(collateral_class))

    def is_approved(self, collateral_class: CollateralClassLike) -> bool:
        """True if new loans may currently be opened against the class."""
        config = self.collateral_config(collateral_class)
        return config is not None and config.approved

    def valuation_of(self, collateral_class: CollateralClassLike) -> Decimal:
        """Maximum loanable amount per item of the class (0 if never set)."""
        config = self.collateral_config(collateral_class)
        return config.valuation if config is not None else Decimal("0")

    def verify_custody(self) -> Dict[str, Any]:
        """
        Verify that every active loan is backed by collateral in core custody.

        Checks, for each active loan:
        - The table slot is keyed by the loan's own borrower
        - The collateral item is held by this ledger's address
        - No other active loan claims the same item

        Returns:
            Dict with keys:
            - 'valid': bool - True if no discrepancy was found
            - 'checked': int - Number of active loans checked
            - 'discrepancies': List[Dict] - One entry per problem found

        Example:
            result = book.verify_custody()
            assert result['valid'], result['discrepancies']
        """
        discrepancies: List[Dict[str, Any]] = []
        claimed: Dict[Tuple[str, ItemId], Identity] = {}

        for key in sorted(self._loans):
            loan = self._loans[key]
            if key != loan.borrower or not loan.is_active:
                discrepancies.append({'borrower': key, 'error': 'slot holds a foreign or closed loan'})
            item = (loan.collateral_class, loan.collateral_id)
            if item in claimed:
                discrepancies.append({
                    'borrower': key,
                    'error': f'collateral also claimed by {claimed[item]}',
                })
            claimed[item] = key

            config = self._collateral.get(loan.collateral_class)
            if config is None:
                discrepancies.append({'borrower': key, 'error': 'collateral class not configured'})
                continue
            try:
                custodian = config.registry.owner_of(loan.collateral_id)
            except RegistryError as e:
                discrepancies.append({'borrower': key, 'error': str(e)})
                continue
            if custodian != self.address:
                discrepancies.append({
                    'borrower': key,
                    'error': f'collateral held by {custodian!r}, expected {self.address!r}',
                })

        return {
            'valid': not discrepancies,
            'checked': len(self._loans),
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the logical clock. Time can only move forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # COLLATERAL CONFIGURATION (privileged, Mutating)
    # ========================================================================

    @non_reentrant
    def set_approved(
        self,
        caller: Identity,
        collateral_class: CollateralClassLike,
        approved: bool,
    ) -> CollateralConfig:
        """
        Approve or revoke a collateral class for new loans.

        Pass the registry itself the first time a class is configured; later
        calls may use its collection id. Revoking keeps the valuation and does
        not affect loans already open against the class.

        Raises:
            AccessDenied: If caller is not the owner
            ValueError: If approved is not a bool, the class is unknown by id,
                        or a different registry claims an existing collection id
        """
        with self._unit_of_work("set_approved"):
            self.access.require_owner(caller, "set_approved")
            if not isinstance(approved, bool):
                raise ValueError(f"approved must be bool, got {type(approved).__name__}")

            class_id = self._class_id(collateral_class)
            existing = self._collateral.get(class_id)
            if isinstance(collateral_class, str):
                if existing is None:
                    raise ValueError(
                        f"Unknown collateral class {class_id!r}; pass its registry to configure it"
                    )
                registry = existing.registry
            else:
                if not isinstance(collateral_class, UniqueAssetRegistry):
                    raise ValueError(
                        f"collateral class does not implement UniqueAssetRegistry: {collateral_class!r}"
                    )
                registry = collateral_class
                if existing is not None and existing.registry is not registry:
                    raise ValueError(
                        f"Collateral class {class_id!r} is already bound to a different registry"
                    )

            if existing is None:
                config = CollateralConfig(collection_id=class_id, registry=registry, approved=approved)
            else:
                config = replace(existing, approved=approved)
            self._collateral[class_id] = config
            self._notify(ApprovalUpdated, collateral_class=class_id, approved=approved)

        if self.verbose:
            print(f"✓ {'APPROVED' if approved else 'REVOKED'}: collateral class {class_id}")
        return config

    @non_reentrant
    def set_valuation(
        self,
        caller: Identity,
        collateral_class: CollateralClassLike,
        value: AmountLike,
    ) -> CollateralConfig:
        """
        Overwrite the valuation of an approved collateral class.

        The new value is not bounded by the previous one. Zero is allowed and
        makes the class unborrowable without revoking it.

        Raises:
            AccessDenied: If caller is not the owner
            NotApproved: If the class is not currently approved
            ValueError: If value is negative or not a number
        """
        with self._unit_of_work("set_valuation"):
            self.access.require_owner(caller, "set_valuation")
            class_id = self._class_id(collateral_class)
            existing = self._collateral.get(class_id)
            if existing is None or not existing.approved:
                raise NotApproved(f"Collateral class {class_id!r} is not approved")
            valuation = to_amount(value, allow_zero=True, field_name="valuation")

            config = replace(existing, valuation=valuation)
            self._collateral[class_id] = config
            self._notify(ValuationUpdated, collateral_class=class_id, new_value=valuation)

        if self.verbose:
            print(f"✓ VALUATION: {class_id} = {format_amount(valuation)}")
        return config

    @non_reentrant
    def transfer_ownership(self, caller: Identity, new_owner: Identity) -> None:
        """
        Hand the privileged configuration role to new_owner.

        Raises:
            AccessDenied: If caller is not the owner
            ValueError: If new_owner is empty
        """
        with self._unit_of_work("transfer_ownership"):
            previous = self.access.transfer_ownership(caller, new_owner)
            self._notify(OwnershipTransferred, previous_owner=previous, new_owner=new_owner)

        if self.verbose:
            print(f"✓ OWNERSHIP: {previous} → {new_owner}")

    # ========================================================================
    # LOAN LIFECYCLE (Mutating)
    # ========================================================================

    @non_reentrant
    def open_loan(
        self,
        borrower: Identity,
        collateral_class: CollateralClassLike,
        collateral_id: ItemId,
        requested_amount: AmountLike,
    ) -> Loan:
        """
        Open a loan of requested_amount against one collateral item.

        Checks, in order (after the borrower is found not to be the ledger
        itself or SYSTEM_WALLET, which raises NotAssetOwner):
        1. The collateral class is approved             (CollateralNotApproved)
        2. The borrower has no active loan              (LoanAlreadyActive)
        3. The borrower holds the item                  (NotAssetOwner)
        4. Ledger liquidity strictly exceeds the amount (InsufficientLiquidity)
        5. The amount is within the class valuation     (ValuationExceeded)

        Then records the loan, takes custody of the item and pays out the
        principal. Any failure leaves every table and balance as it was.

        Returns:
            The recorded Loan

        Raises:
            TransferFailed: If the custody transfer or the payout fails
            Reentrant: If called while another operation is executing
        """
        with self._unit_of_work("open_loan"):
            _require_identity(borrower, "borrower")
            if borrower in (self.address, SYSTEM_WALLET):
                raise NotAssetOwner(f"{borrower} cannot borrow from {self.address}")
            amount = to_amount(requested_amount, field_name="requested_amount")
            class_id = self._class_id(collateral_class)

            config = self._collateral.get(class_id)
            if config is None or not config.approved:
                raise CollateralNotApproved(f"Collateral class {class_id!r} is not approved")

            existing = self.get_loan(borrower)
            if existing.is_active:
                raise LoanAlreadyActive(f"{borrower} already has an active loan: {existing!r}")

            registry = config.registry
            try:
                holder = registry.owner_of(collateral_id)
            except RegistryError as e:
                raise NotAssetOwner(f"{borrower} does not own {class_id}#{collateral_id}: {e}") from e
            if holder != borrower:
                raise NotAssetOwner(f"{borrower} does not own {class_id}#{collateral_id}")

            available = self.currency.balance_of(self.address)
            if not available > amount:
                raise InsufficientLiquidity(
                    f"Liquidity {format_amount(available)} must exceed {format_amount(amount)}"
                )

            if amount > config.valuation:
                raise ValuationExceeded(
                    f"{format_amount(amount)} exceeds valuation {format_amount(config.valuation)} of {class_id}"
                )

            loan = Loan(
                borrower=borrower,
                collateral_class=class_id,
                collateral_id=collateral_id,
                principal=amount,
                opened_at=self._current_time,
            )
            self._loans[borrower] = loan

            self._move_collateral(registry, borrower, self.address, collateral_id)
            if not isinstance(registry, Checkpointable):
                self._compensate(
                    lambda: self._move_collateral(registry, self.address, borrower, collateral_id)
                )
            if not self.currency.transfer(self.address, borrower, amount):
                raise TransferFailed(f"Payout of {format_amount(amount)} to {borrower} failed")

            self._notify(
                LoanCreated,
                borrower=borrower,
                collateral_class=class_id,
                collateral_id=collateral_id,
                amount=amount,
            )

        if self.verbose:
            print(f"✓ LOAN OPENED: {borrower} ← {format_amount(amount)} against {class_id}#{collateral_id}")
        return loan

    @non_reentrant
    def repay_loan(self, borrower: Identity, payer: Optional[Identity] = None) -> Loan:
        """
        Repay the borrower's loan in full and release the collateral.

        The principal is pulled with transfer_from(), so the borrower must
        have approved at least the principal to this ledger's address.

        Args:
            borrower: Identity whose loan is repaid
            payer: Identity submitting the repayment (defaults to borrower)

        Returns:
            The closed Loan (also appended to loan_history())

        Raises:
            LoanNotFound: If borrower has no active loan
            NotBorrower: If payer is someone other than the borrower
            InsufficientRepaymentFunds: If the borrower's balance is below the principal
            TransferFailed: If the currency pull or the collateral release fails
        """
        with self._unit_of_work("repay_loan"):
            loan = self.get_loan(borrower)
            if not loan.is_active:
                raise LoanNotFound(f"{borrower} has no active loan")
            if payer is not None and payer != borrower:
                raise NotBorrower(f"{payer} cannot repay the loan of {borrower}")

            balance = self.currency.balance_of(borrower)
            if balance < loan.principal:
                raise InsufficientRepaymentFunds(
                    f"{borrower} holds {format_amount(balance)}, owes {format_amount(loan.principal)}"
                )

            del self._loans[borrower]
            closed = loan.close(self._current_time)
            self._history.append(closed)

            if not self.currency.transfer_from(self.address, borrower, self.address, loan.principal):
                raise TransferFailed(
                    f"Repayment pull of {format_amount(loan.principal)} from {borrower} failed"
                )
            if not isinstance(self.currency, Checkpointable):
                self._compensate(lambda: self._refund(borrower, loan.principal))
            registry = self._collateral[loan.collateral_class].registry
            self._move_collateral(registry, self.address, borrower, loan.collateral_id)

            self._notify(
                LoanRepaid,
                borrower=borrower,
                collateral_class=loan.collateral_class,
                collateral_id=loan.collateral_id,
                amount=loan.principal,
            )

        if self.verbose:
            print(f"✓ LOAN REPAID: {borrower} → {format_amount(loan.principal)}, "
                  f"released {loan.collateral_class}#{loan.collateral_id}")
        return closed

    # ========================================================================
    # INTERNALS
    # ========================================================================

    @staticmethod
    def _class_id(collateral_class: CollateralClassLike) -> str:
        if isinstance(collateral_class, str):
            return collateral_class
        class_id = getattr(collateral_class, 'collection_id', None)
        if not isinstance(class_id, str) or not class_id:
            raise ValueError(f"Cannot determine collateral class of {collateral_class!r}")
        return class_id

    def _move_collateral(
        self,
        registry: UniqueAssetRegistry,
        source: Identity,
        dest: Identity,
        item_id: ItemId,
    ) -> None:
        try:
            registry.transfer_custody(source, dest, item_id)
        except RegistryError as e:
            raise TransferFailed(
                f"Custody transfer of {registry.collection_id}#{item_id} {source} → {dest} failed: {e}"
            ) from e

    def _refund(self, borrower: Identity, amount: Decimal) -> None:
        if not self.currency.transfer(self.address, borrower, amount):
            raise TransferFailed(f"Refund of {format_amount(amount)} to {borrower} failed")

    def _compensate(self, undo: Callable[[], None]) -> None:
        """
        Register the inverse of an effect applied to a collaborator that
        cannot be checkpointed. Runs only if the operation fails.
        """
        self._compensations.append(undo)

    def _notify(self, kind: Type[Notification], **payload) -> None:
        """Queue a notification; it is published when the operation commits."""
        self._pending.append((kind, payload))

    def _participants(self) -> List[Any]:
        """Everything an operation may change and can be restored: self, access, collaborators."""
        candidates: List[Any] = [self, self.access, self.currency]
        candidates.extend(config.registry for config in self._collateral.values())
        participants: List[Any] = []
        seen = set()
        for candidate in candidates:
            if id(candidate) in seen or not isinstance(candidate, Checkpointable):
                continue
            seen.add(id(candidate))
            participants.append(candidate)
        return participants

    def checkpoint(self) -> Dict[str, Any]:
        return {
            'loans': dict(self._loans),
            'history_length': len(self._history),
            'collateral': dict(self._collateral),
        }

    def restore(self, token: Dict[str, Any]) -> None:
        self._loans = dict(token['loans'])
        del self._history[token['history_length']:]
        self._collateral = dict(token['collateral'])

    @contextmanager
    def _unit_of_work(self, action: str) -> Iterator[None]:
        """
        Run the body as one atomic operation.

        On any exception every participant is restored (in reverse order of
        checkpointing) and queued notifications are dropped. Collaborators
        that are not Checkpointable are then undone with the compensations
        registered during the body, newest first, and the exception is
        re-raised unchanged. On success queued notifications are published;
        a failing listener cannot undo a committed operation.
        """
        checkpoints = [(p, p.checkpoint()) for p in self._participants()]
        own_state = self.checkpoint()
        self._pending = []
        self._compensations = []
        try:
            yield
        except Exception as exc:
            # Core state only changes once every check passed.
            effects_started = self.checkpoint() != own_state
            for participant, token in reversed(checkpoints):
                participant.restore(token)
            compensations, self._compensations = self._compensations, []
            self._pending = []
            if self.verbose:
                label = type(exc).__name__ if isinstance(exc, LoanBookError) else "error"
                if effects_started:
                    print(f"↺ ROLLED BACK {action} [{label}]: {exc}")
                else:
                    print(f"✗ REJECTED {action} [{label}]: {exc}")
            for undo in reversed(compensations):
                undo()
            raise
        self._compensations = []
        pending, self._pending = self._pending, []
        failed_before = len(self.notifications.listener_errors)
        for kind, payload in pending:
            self.notifications.emit(kind, self._current_time, **payload)
        if self.verbose:
            for notification, error in self.notifications.listener_errors[failed_before:]:
                print(f"⚠ LISTENER FAILED on {notification.kind} #{notification.sequence}: {error!r}")

    def __repr__(self) -> str:
        return (f"LoanLedger({self.name}, owner={self.owner!r}, "
                f"{len(self._loans)} active, {len(self._history)} closed)")
