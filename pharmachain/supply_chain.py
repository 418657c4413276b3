"""
PharmaChain Supply-Chain Controller

Business entry points for moving a product through its custody chain.
Authorization is by ownership: only the current owner may scan or hand over a
product. The controller holds CONTROLLER on the role registry and forwards
each accepted call to the product registry under its own address.

    caller ──► SupplyChainController ──► ProductRegistry
               (ownership / policy)       (CONTROLLER gate, storage)
"""

from __future__ import annotations

from typing import Any, Optional, Union

from pharmachain.config import PharmaChainConfig, get_config
from pharmachain.errors import InvalidInput, NotFound, PharmaChainError, Unauthorized
from pharmachain.ledger import Ledger
from pharmachain.observability import Layer, get_logger, timed_operation
from pharmachain.registry import ProductRegistry, ProductStatus
from pharmachain.roles import Capability, RoleRegistry

logger = get_logger("supply_chain", Layer.SUPPLY_CHAIN)

OWNER_SCAN_REASON = "Only the owner can scan/update status"
OWNER_TRANSFER_REASON = "Only the owner can transfer ownership"


class SupplyChainController:
    """Orchestrates registration, status scans and custody transfers."""

    def __init__(
        self,
        ledger: Ledger,
        roles: RoleRegistry,
        registry: ProductRegistry,
        deployer: str,
        config: Optional[PharmaChainConfig] = None,
    ):
        self.ledger = ledger
        self.roles = roles
        self.registry = registry
        self.config = config or get_config()
        self.address = ledger.allocate_address(deployer, "SupplyChainController")

    @timed_operation(logger, "register_product")
    def register_product(
        self,
        caller: str,
        name: str,
        batch_number: str,
        expiry_date: Any,
        certificate_ref: str,
    ) -> int:
        """Create a product with the caller as manufacturer and first owner."""
        with self.ledger.transaction(caller) as ctx:
            try:
                if (
                    self.config.policy.require_manufacturer_role.get()
                    and not self.roles.has(ctx.caller, Capability.MANUFACTURER)
                ):
                    raise Unauthorized("Caller is not a manufacturer", actor=ctx.caller)
                return self.registry.create(
                    self.address,
                    name,
                    batch_number,
                    expiry_date,
                    ctx.caller,
                    certificate_ref,
                )
            except PharmaChainError as exc:
                logger.rejected("register_product", exc, actor=ctx.caller)
                raise

    @timed_operation(logger, "scan_product")
    def scan_product(
        self,
        caller: str,
        product_id: int,
        new_status: Union[ProductStatus, int, str],
    ) -> ProductStatus:
        """Record a status scan by the current owner and return the new status."""
        with self.ledger.transaction(caller) as ctx:
            try:
                product = self.registry.get(product_id)
                if not product.is_valid:
                    raise NotFound(product_id)
                if product.current_owner != ctx.caller:
                    raise Unauthorized(OWNER_SCAN_REASON, actor=ctx.caller)

                try:
                    status = ProductStatus.parse(new_status)
                except ValueError as e:
                    raise InvalidInput("new_status", str(e), new_status) from None

                policy = self.config.policy
                if policy.lock_after_delivery.get() and product.status == ProductStatus.DELIVERED:
                    raise InvalidInput("new_status", "Product has already been delivered", new_status)
                if policy.enforce_forward_progression.get() and status <= product.status:
                    raise InvalidInput(
                        "new_status",
                        f"Cannot move from {product.status.name} to {status.name}",
                        new_status,
                    )

                self.registry.set_status(self.address, product_id, status)
                return status
            except PharmaChainError as exc:
                logger.rejected("scan_product", exc, actor=ctx.caller, product_id=product_id)
                raise

    @timed_operation(logger, "transfer_ownership")
    def transfer_ownership(self, caller: str, product_id: int, new_owner: str) -> None:
        """Hand custody to ``new_owner``; the caller loses all authority over the product."""
        with self.ledger.transaction(caller) as ctx:
            try:
                owner = self.registry.get_owner(product_id)
                if owner is None:
                    raise NotFound(product_id)
                if owner != ctx.caller:
                    raise Unauthorized(OWNER_TRANSFER_REASON, actor=ctx.caller)
                self.registry.set_owner(self.address, product_id, new_owner)
            except PharmaChainError as exc:
                logger.rejected("transfer_ownership", exc, actor=ctx.caller, product_id=product_id)
                raise
