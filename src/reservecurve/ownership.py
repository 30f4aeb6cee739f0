"""Ownership directory: owner capability per token and protocol settings.

Each token instance has exactly one owner account. The owner may toggle
whether the owner share of trading fees is paid out, and may hand the
capability to another account. The protocol admin sets the treasury that
receives the remainder share of every fee; with no treasury that share is
redirected into the reserve.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from reservecurve.errors import NotAuthorized, NotOwner, UnknownToken

log = logging.getLogger(__name__)


class OwnershipDirectory:
    """Capability records {token_id -> owner} plus admin and treasury.

    Usage:
        directory = OwnershipDirectory(admin="admin", treasury="treasury")
        directory.register("tok-1", owner="alice")
        directory.require_owner("tok-1", "alice")
    """

    def __init__(self, admin: str, treasury: Optional[str] = None) -> None:
        if not admin.strip():
            raise ValueError("Protocol admin must not be blank")
        self._admin = admin.strip()
        self._treasury = treasury
        self._owners: Dict[str, str] = {}

    @property
    def admin(self) -> str:
        return self._admin

    @property
    def treasury(self) -> Optional[str]:
        return self._treasury

    def register(self, token_id: str, owner: str) -> None:
        if token_id in self._owners:
            raise ValueError(f"Token already registered: {token_id}")
        if not owner.strip():
            raise ValueError("Owner must not be blank")
        self._owners[token_id] = owner.strip()

    def owner_of(self, token_id: str) -> str:
        owner = self._owners.get(token_id)
        if owner is None:
            raise UnknownToken(f"Unknown token: {token_id}")
        return owner

    def require_owner(self, token_id: str, caller: str) -> None:
        if self.owner_of(token_id) != caller:
            raise NotOwner(f"{caller} does not hold the owner capability for {token_id}")

    def transfer_ownership(self, token_id: str, caller: str, new_owner: str) -> str:
        """Hand the owner capability to another account. Returns the previous owner."""
        self.require_owner(token_id, caller)
        if not new_owner.strip():
            raise ValueError("New owner must not be blank")
        previous = self._owners[token_id]
        self._owners[token_id] = new_owner.strip()
        log.info("Ownership of %s moved %s -> %s", token_id, previous, new_owner)
        return previous

    def set_treasury(self, caller: str, treasury: Optional[str]) -> Optional[str]:
        """Set (or clear, with None) the protocol treasury. Admin only."""
        if caller != self._admin:
            raise NotAuthorized(f"{caller} is not the protocol admin")
        previous = self._treasury
        self._treasury = treasury.strip() if treasury else None
        log.info("Treasury changed %s -> %s", previous, self._treasury)
        return previous
