"""
PharmaChain: pharmaceutical custody ledger

Tracks a pharmaceutical batch through its custody chain. Every mutation is
gated by role or ownership based authorization, and an independent regulator
can attest verification.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                          PHARMACHAIN NETWORK                             │
    │                                                                          │
    │  ENTRY POINTS                                                            │
    │    supply_chain.py   register, scan and transfer (ownership checks)     │
    │    verification.py   regulator attestation (REGULATOR check)            │
    │                                                                          │
    │  STATE                                                                   │
    │    registry.py       canonical product store (CONTROLLER gated)         │
    │    roles.py          identity -> capability grants (ADMIN gated)        │
    │                                                                          │
    │  SUBSTRATE                                                               │
    │    ledger.py         serial atomic transactions with full revert        │
    │    events.py         hash-chained audit log and event bus               │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Design Principles
─────────────────

    Fail Closed: a call that is not explicitly authorized is rejected and its
    whole transaction is reverted.

    Single Source of Truth: every read goes through the product registry.

    Auditability: every committed mutation leaves a chained event that any
    holder of an exported trail can verify offline.
"""

__version__ = "0.3.0"


def __getattr__(name):
    """Lazy import PharmaChain modules on first access."""

    if name in ("deploy_network", "PharmaNetwork"):
        from pharmachain import network
        return getattr(network, name)

    if name in ("Capability", "RoleRegistry"):
        from pharmachain import roles
        return getattr(roles, name)

    if name in ("Product", "ProductStatus", "ProductRegistry"):
        from pharmachain import registry
        return getattr(registry, name)

    if name == "SupplyChainController":
        from pharmachain import supply_chain
        return supply_chain.SupplyChainController

    if name == "VerificationService":
        from pharmachain import verification
        return verification.VerificationService

    if name in ("Ledger", "ManualClock", "SystemClock"):
        from pharmachain import ledger
        return getattr(ledger, name)

    if name in ("PharmaChainError", "Unauthorized", "NotFound", "InvalidInput",
                "InvariantViolation"):
        from pharmachain import errors
        return getattr(errors, name)

    if name in ("generate_identity", "normalize_identity", "ZERO_IDENTITY"):
        from pharmachain import identity
        return getattr(identity, name)

    raise AttributeError(f"module 'pharmachain' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Bootstrap
    "deploy_network",
    "PharmaNetwork",
    # Components
    "Capability",
    "RoleRegistry",
    "Product",
    "ProductStatus",
    "ProductRegistry",
    "SupplyChainController",
    "VerificationService",
    # Substrate
    "Ledger",
    "ManualClock",
    "SystemClock",
    # Errors
    "PharmaChainError",
    "Unauthorized",
    "NotFound",
    "InvalidInput",
    "InvariantViolation",
    # Identities
    "generate_identity",
    "normalize_identity",
    "ZERO_IDENTITY",
]
