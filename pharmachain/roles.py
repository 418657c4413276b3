"""
PharmaChain Role Registry

Capability grants per identity. The registry answers "does identity X hold
capability Y" for every other component and is administered by ADMIN
holders only.

    ┌───────────────┐   grant/revoke (ADMIN)   ┌────────────────────────┐
    │  admin        │ ───────────────────────► │  RoleRegistry          │
    └───────────────┘                          │  identity -> frozenset │
                                               └───────────┬────────────┘
                               has(identity, capability)   │
            ProductRegistry, SupplyChainController, ◄──────┘
            VerificationService

Granting a held capability and revoking an absent one are silent no-ops.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, List, Union

from pharmachain.errors import InvalidInput, Unauthorized
from pharmachain.events import ROLES_STREAM, RoleGranted, RoleRevoked
from pharmachain.hardening import Validators
from pharmachain.identity import is_well_formed, normalize_identity
from pharmachain.ledger import Ledger, UndoJournal
from pharmachain.observability import Layer, get_logger

logger = get_logger("roles", Layer.ROLES)


class Capability(Enum):
    """Capabilities an identity can hold."""
    MANUFACTURER = "manufacturer"
    DISTRIBUTOR = "distributor"
    RETAILER = "retailer"
    REGULATOR = "regulator"
    CONTROLLER = "controller"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: Union["Capability", str]) -> "Capability":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            if key.endswith("_ROLE"):
                key = key[: -len("_ROLE")]
            if key in cls.__members__:
                return cls[key]
        raise ValueError(f"Unknown capability: {value!r}")


class RoleRegistry:
    """
    Identity -> capability set store.

    The identity that deploys the registry holds ADMIN from construction.
    """

    STORE_NAME = "roles"

    def __init__(self, ledger: Ledger, admin: str):
        self.ledger = ledger
        admin = normalize_identity(admin)
        self.address = ledger.allocate_address(admin, "RoleRegistry")
        self._grants: Dict[str, FrozenSet[Capability]] = {admin: frozenset({Capability.ADMIN})}
        self._journal = UndoJournal(self._grants)
        ledger.register_store(self.STORE_NAME, self)

    # ------------------------------------------------------------------
    # Journaled
    # ------------------------------------------------------------------

    def rollback(self) -> None:
        self._journal.rollback()

    def commit(self) -> None:
        self._journal.clear()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def grant(self, caller: str, identity: str, capability: Union[Capability, str]) -> bool:
        """Add ``capability`` to ``identity``. Returns False if it was already held."""
        capability = self._capability(capability)
        with self.ledger.transaction(caller) as ctx:
            self._require_admin(ctx.caller, "grant")
            account = self._account(identity)
            held = self._grants.get(account, frozenset())
            if capability in held:
                return False
            self._journal.record(account)
            self._grants[account] = held | {capability}
            ctx.emit(ROLES_STREAM, RoleGranted(account=account, capability=capability.value))
            logger.info("Capability granted", account=account, capability=capability.value)
            return True

    def revoke(self, caller: str, identity: str, capability: Union[Capability, str]) -> bool:
        """Remove ``capability`` from ``identity``. Returns False if it was not held."""
        capability = self._capability(capability)
        with self.ledger.transaction(caller) as ctx:
            self._require_admin(ctx.caller, "revoke")
            account = self._account(identity)
            held = self._grants.get(account, frozenset())
            if capability not in held:
                return False
            remaining = held - {capability}
            self._journal.record(account)
            if remaining:
                self._grants[account] = remaining
            else:
                del self._grants[account]
            ctx.emit(ROLES_STREAM, RoleRevoked(account=account, capability=capability.value))
            logger.info("Capability revoked", account=account, capability=capability.value)
            return True

    def grant_manufacturer(self, caller: str, identity: str) -> bool:
        return self.grant(caller, identity, Capability.MANUFACTURER)

    def grant_distributor(self, caller: str, identity: str) -> bool:
        return self.grant(caller, identity, Capability.DISTRIBUTOR)

    def grant_retailer(self, caller: str, identity: str) -> bool:
        return self.grant(caller, identity, Capability.RETAILER)

    def grant_regulator(self, caller: str, identity: str) -> bool:
        return self.grant(caller, identity, Capability.REGULATOR)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has(self, identity: str, capability: Union[Capability, str]) -> bool:
        """Pure membership query; malformed identities hold nothing."""
        if not is_well_formed(identity):
            return False
        try:
            capability = Capability.parse(capability)
        except ValueError:
            return False
        with self.ledger.read():
            return capability in self._grants.get(normalize_identity(identity), frozenset())

    def capabilities_of(self, identity: str) -> FrozenSet[Capability]:
        if not is_well_formed(identity):
            return frozenset()
        with self.ledger.read():
            return self._grants.get(normalize_identity(identity), frozenset())

    def members(self, capability: Union[Capability, str]) -> List[str]:
        capability = Capability.parse(capability)
        with self.ledger.read():
            return sorted(a for a, caps in self._grants.items() if capability in caps)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_admin(self, caller: str, operation: str) -> None:
        if not self.has(caller, Capability.ADMIN):
            exc = Unauthorized("Caller is not a role administrator", actor=caller)
            logger.rejected(operation, exc, actor=caller)
            raise exc

    @staticmethod
    def _capability(value: Union[Capability, str]) -> Capability:
        try:
            return Capability.parse(value)
        except ValueError as exc:
            raise InvalidInput("capability", str(exc), value) from None

    @staticmethod
    def _account(identity: str) -> str:
        result = Validators.validate_identity(identity, "identity")
        result.raise_if_invalid()
        return result.sanitized_value
