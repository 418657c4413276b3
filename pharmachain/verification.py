"""
PharmaChain Verification Service

Regulator attestation. Any identity holding REGULATOR may mark a product
verified, regardless of its status or owner. Verification is one-way and
repeating it is a no-op.
"""

from __future__ import annotations

from pharmachain.errors import PharmaChainError, Unauthorized
from pharmachain.ledger import Ledger
from pharmachain.observability import Layer, get_logger, timed_operation
from pharmachain.registry import ProductRegistry
from pharmachain.roles import Capability, RoleRegistry

logger = get_logger("verification", Layer.VERIFICATION)

NOT_REGULATOR_REASON = "Caller is not a regulator"


class VerificationService:
    """Forwards regulator attestations to the product registry."""

    def __init__(
        self,
        ledger: Ledger,
        roles: RoleRegistry,
        registry: ProductRegistry,
        deployer: str,
    ):
        self.ledger = ledger
        self.roles = roles
        self.registry = registry
        self.address = ledger.allocate_address(deployer, "VerificationService")

    @timed_operation(logger, "verify_product")
    def verify_product(self, caller: str, product_id: int) -> bool:
        """Mark ``product_id`` verified. Returns False if it already was."""
        with self.ledger.transaction(caller) as ctx:
            try:
                if not self.roles.has(ctx.caller, Capability.REGULATOR):
                    raise Unauthorized(NOT_REGULATOR_REASON, actor=ctx.caller)
                return self.registry.set_verified(self.address, product_id)
            except PharmaChainError as exc:
                logger.rejected("verify_product", exc, actor=ctx.caller, product_id=product_id)
                raise
