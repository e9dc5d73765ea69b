"""
registry.py - In-memory Unique Asset Registry

A CollectionRegistry is one collection of uniquely identified items (the
collateral class). It satisfies the UniqueAssetRegistry and Checkpointable
protocols.

=== CUSTODY MODEL ===

Every minted item has exactly one custodian. transfer_custody(source, dest, id)
succeeds only if source is the current custodian; afterwards dest is.

=== RECEIVER HOOKS ===

Hooks registered with add_receiver_hook() run after every custody transfer,
with (source, dest, item_id). They stand in for the callback a collection
makes into the receiving party, which is also how a hostile collection can
call back into whoever initiated the transfer. Exceptions raised by a hook
propagate to the caller of transfer_custody().
"""

from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional

from .core import (
    Identity, ItemId,
    ItemNotFound, ItemAlreadyMinted, NotCustodian,
    SYSTEM_WALLET,
    _require_identity,
)


ReceiverHook = Callable[[Identity, Identity, ItemId], None]


class CollectionRegistry:
    """
    Ownership book for the items of one collection.

    Example:
        punks = CollectionRegistry("punks", verbose=False)
        punks.mint("alice", 7)
        punks.owner_of(7)                          # "alice"
        punks.transfer_custody("alice", "bob", 7)
        punks.items_of("bob")                      # [7]
    """

    def __init__(self, collection_id: str, name: Optional[str] = None, verbose: bool = True):
        _require_identity(collection_id, "collection_id")
        self.collection_id = collection_id
        self.name = name or collection_id
        self.verbose = verbose
        self.owners: Dict[ItemId, Identity] = {}
        self.custody_log: List[tuple] = []
        self._hooks: List[ReceiverHook] = []

    # ========================================================================
    # UniqueAssetRegistry PROTOCOL
    # ========================================================================

    def owner_of(self, item_id: ItemId) -> Identity:
        """
        Return the custodian of item_id.

        Raises:
            ItemNotFound: If the item was never minted (or was burned)
        """
        try:
            return self.owners[item_id]
        except KeyError:
            raise ItemNotFound(f"{self.collection_id}#{item_id} does not exist") from None

    def transfer_custody(self, source: Identity, dest: Identity, item_id: ItemId) -> None:
        """
        Move item_id from source to dest, then run receiver hooks.

        Raises:
            ItemNotFound: If the item does not exist
            NotCustodian: If source does not hold the item
            ValueError: If dest is empty or equal to source
        """
        _require_identity(dest, "dest")
        current = self.owner_of(item_id)
        if current != source:
            raise NotCustodian(
                f"{self.collection_id}#{item_id}: {source!r} is not the custodian ({current!r} is)"
            )
        if source == dest:
            raise ValueError("Source and dest must be different")

        self.owners[item_id] = dest
        self.custody_log.append((source, dest, item_id))
        if self.verbose:
            print(f"✓ CUSTODY {self.collection_id}#{item_id}: {source} → {dest}")

        for hook in list(self._hooks):
            hook(source, dest, item_id)

    # ========================================================================
    # COLLECTION MANAGEMENT
    # ========================================================================

    def mint(self, to: Identity, item_id: ItemId) -> ItemId:
        """
        Create item_id in the custody of to.

        Raises:
            ItemAlreadyMinted: If the id is taken
        """
        _require_identity(to, "to")
        if item_id in self.owners:
            raise ItemAlreadyMinted(f"{self.collection_id}#{item_id} already minted")
        self.owners[item_id] = to
        self.custody_log.append((SYSTEM_WALLET, to, item_id))
        if self.verbose:
            print(f"✓ MINTED {self.collection_id}#{item_id} → {to}")
        return item_id

    def exists(self, item_id: ItemId) -> bool:
        return item_id in self.owners

    def items_of(self, owner: Identity) -> List[ItemId]:
        """Items held by owner, sorted by id."""
        return sorted(
            (i for i, o in self.owners.items() if o == owner),
            key=lambda i: (isinstance(i, str), i),
        )

    def add_receiver_hook(self, hook: ReceiverHook) -> Callable[[], None]:
        """
        Run hook(source, dest, item_id) after every custody transfer.

        Returns:
            A function that removes the hook again.
        """
        self._hooks.append(hook)

        def remove() -> None:
            if hook in self._hooks:
                self._hooks.remove(hook)

        return remove

    # ========================================================================
    # Checkpointable PROTOCOL
    # ========================================================================

    def checkpoint(self) -> Dict[str, Any]:
        return {
            'owners': dict(self.owners),
            'log_length': len(self.custody_log),
        }

    def restore(self, token: Dict[str, Any]) -> None:
        self.owners = dict(token['owners'])
        del self.custody_log[token['log_length']:]

    def __repr__(self) -> str:
        return f"CollectionRegistry({self.collection_id}, {len(self.owners)} items)"
