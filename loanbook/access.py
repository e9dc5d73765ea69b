"""
access.py - Single-principal access control

Configuration of the loan ledger (approving collateral classes and setting
their valuations) is reserved for one privileged identity, the owner.
Ownership moves only through transfer_ownership(), which only the current
owner may call.
"""

from __future__ import annotations
from typing import Optional

from .core import AccessDenied, Identity, _require_identity


class AccessControl:
    """
    Gate for privileged operations.

    Example:
        access = AccessControl("admin")
        access.require_owner("admin", "set_valuation")   # ok
        access.require_owner("mallory", "set_valuation") # raises AccessDenied
    """

    def __init__(self, owner: Identity):
        _require_identity(owner, "owner")
        self._owner = owner

    @property
    def owner(self) -> Identity:
        return self._owner

    def is_owner(self, identity: Optional[Identity]) -> bool:
        return identity is not None and identity == self._owner

    def require_owner(self, caller: Identity, action: str) -> None:
        """
        Raise AccessDenied unless caller is the owner.

        Args:
            caller: Identity attempting the action
            action: Name of the privileged operation (for the error message)
        """
        if not self.is_owner(caller):
            raise AccessDenied(f"{action}: caller {caller!r} is not the owner")

    def transfer_ownership(self, caller: Identity, new_owner: Identity) -> Identity:
        """
        Hand the privileged role to new_owner.

        Returns:
            The previous owner

        Raises:
            AccessDenied: If caller is not the current owner
            ValueError: If new_owner is empty
        """
        self.require_owner(caller, "transfer_ownership")
        _require_identity(new_owner, "new_owner")
        previous = self._owner
        self._owner = new_owner
        return previous

    def checkpoint(self) -> Identity:
        return self._owner

    def restore(self, token: Identity) -> None:
        self._owner = token

    def __repr__(self) -> str:
        return f"AccessControl(owner={self._owner!r})"
