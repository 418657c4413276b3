"""
PharmaChain Error Taxonomy

Every rejected call aborts its transaction and surfaces a human readable
reason string to the caller:

    PharmaChainError
    ├── Unauthorized         caller lacks the role or ownership relationship
    ├── NotFound             product id was never created
    ├── InvalidInput         malformed arguments (field + message)
    └── InvariantViolation   structural invariant of a store was broken

Idempotent no-ops (re-granting a held capability, re-verifying a verified
product) are not errors and never raise.
"""

from __future__ import annotations

from typing import Any, List, Optional


class PharmaChainError(Exception):
    """Base exception for all ledger rejections."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class Unauthorized(PharmaChainError):
    """Caller lacks the required capability or ownership."""

    def __init__(self, reason: str, actor: Optional[str] = None):
        self.actor = actor
        super().__init__(reason)


class NotFound(PharmaChainError):
    """Operation references a product id that was never created."""

    def __init__(self, product_id: Any):
        self.product_id = product_id
        super().__init__(f"Product {product_id} does not exist")


class InvalidInput(PharmaChainError):
    """Malformed argument."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


class InvalidInputs(InvalidInput):
    """Several malformed arguments reported together."""

    def __init__(self, errors: List[InvalidInput]):
        self.errors = errors
        first = errors[0]
        super().__init__(first.field, first.message, first.value)
        self.reason = "Validation failed: " + "; ".join(f"{e.field}: {e.message}" for e in errors)
        self.args = (self.reason,)


class InvariantViolation(PharmaChainError):
    """Store invariant violated."""
    pass
