"""
PharmaChain network bootstrap.

Deploys the four components on a fresh ledger and wires their permissions:

    admin ──deploys──► RoleRegistry        (admin holds ADMIN)
          ──deploys──► ProductRegistry
          ──deploys──► SupplyChainController ─┐
          ──deploys──► VerificationService  ──┴─ granted CONTROLLER
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pharmachain.config import PharmaChainConfig, get_config
from pharmachain.identity import normalize_identity
from pharmachain.ledger import Ledger
from pharmachain.observability import Layer, get_logger
from pharmachain.registry import ProductRegistry
from pharmachain.roles import Capability, RoleRegistry
from pharmachain.supply_chain import SupplyChainController
from pharmachain.verification import VerificationService

logger = get_logger("network", Layer.LEDGER)


@dataclass
class PharmaNetwork:
    """A deployed set of components sharing one ledger."""
    admin: str
    ledger: Ledger
    roles: RoleRegistry
    registry: ProductRegistry
    supply_chain: SupplyChainController
    verification: VerificationService
    config: PharmaChainConfig

    def addresses(self) -> Dict[str, str]:
        return {
            "roles": self.roles.address,
            "registry": self.registry.address,
            "supply_chain": self.supply_chain.address,
            "verification": self.verification.address,
        }


def deploy_network(
    admin: str,
    config: Optional[PharmaChainConfig] = None,
    clock: Optional[Any] = None,
) -> PharmaNetwork:
    """Deploy and wire a complete network administered by ``admin``."""
    admin = normalize_identity(admin)
    config = config or get_config()
    ledger = Ledger(clock=clock)

    roles = RoleRegistry(ledger, admin)
    registry = ProductRegistry(ledger, roles, admin, config)
    supply_chain = SupplyChainController(ledger, roles, registry, admin, config)
    verification = VerificationService(ledger, roles, registry, admin)

    roles.grant(admin, supply_chain.address, Capability.CONTROLLER)
    roles.grant(admin, verification.address, Capability.CONTROLLER)

    network = PharmaNetwork(
        admin=admin,
        ledger=ledger,
        roles=roles,
        registry=registry,
        supply_chain=supply_chain,
        verification=verification,
        config=config,
    )
    logger.info("Network deployed", admin=admin, **network.addresses())
    return network
