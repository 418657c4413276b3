"""
PharmaChain Validation and Hardening Module

Input validation and small thread-safety primitives shared by the ledger
components:

1. Input validation with sanitization (text fields, identities, timestamps)
2. Thread-safe counters for sequential id assignment
3. Invariant checks on stored records

Security Model:
    - All inputs are untrusted until validated
    - All state mutations are atomic or reverted
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional

from pharmachain import identity as ids
from pharmachain.errors import InvalidInput, InvalidInputs, InvariantViolation


# =============================================================================
# VALIDATION RESULT
# =============================================================================

@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[InvalidInput] = field(default_factory=list)
    sanitized_value: Any = None

    def raise_if_invalid(self) -> None:
        """Raise InvalidInput (or InvalidInputs for several) if validation failed."""
        if self.is_valid:
            return
        if len(self.errors) == 1:
            raise self.errors[0]
        raise InvalidInputs(self.errors)

    @classmethod
    def success(cls, sanitized_value: Any = None) -> 'ValidationResult':
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, errors: List[InvalidInput]) -> 'ValidationResult':
        return cls(is_valid=False, errors=errors)


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Collection of input validators."""

    MAX_STRING_LENGTH = 4096
    CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")

    @classmethod
    def validate_string(
        cls,
        value: Any,
        field_name: str,
        min_length: int = 1,
        max_length: Optional[int] = None,
    ) -> ValidationResult:
        """Validate a text value.

        Leading/trailing whitespace is stripped before the length checks, so a
        whitespace-only value counts as empty.
        """
        max_length = max_length or cls.MAX_STRING_LENGTH
        errors = []

        if not isinstance(value, str):
            errors.append(InvalidInput(field_name, f"Expected string, got {type(value).__name__}", value))
            return ValidationResult.failure(errors)

        sanitized = value.strip()

        if len(sanitized) < min_length:
            if min_length == 1:
                errors.append(InvalidInput(field_name, "must not be empty", value))
            else:
                errors.append(InvalidInput(field_name, f"Too short (min {min_length} chars)", value))

        if len(sanitized) > max_length:
            errors.append(InvalidInput(field_name, f"Too long (max {max_length} chars)", value))

        if cls.CONTROL_CHARS.search(sanitized):
            errors.append(InvalidInput(field_name, "Contains control characters", value))

        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(sanitized)

    @classmethod
    def validate_identity(
        cls,
        value: Any,
        field_name: str = "identity",
        allow_null: bool = False,
    ) -> ValidationResult:
        """Validate a did:key or 0x address, rejecting the null identity by default."""
        if not ids.is_well_formed(value):
            return ValidationResult.failure([
                InvalidInput(field_name, "Malformed identity", value)
            ])
        if not allow_null and ids.is_null(value):
            return ValidationResult.failure([
                InvalidInput(field_name, "Null identity is not allowed", value)
            ])
        return ValidationResult.success(ids.normalize_identity(value))

    @classmethod
    def validate_timestamp(
        cls,
        value: Any,
        field_name: str = "timestamp",
        after: Optional[int] = None,
    ) -> ValidationResult:
        """Validate a unix timestamp in seconds.

        Accepts ints and timezone-aware (or naive, assumed UTC) datetimes.
        When ``after`` is given the value must be strictly greater than it.
        """
        if isinstance(value, bool):
            return ValidationResult.failure([
                InvalidInput(field_name, "Expected timestamp, got bool", value)
            ])
        if isinstance(value, datetime):
            dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
            seconds = int(dt.timestamp())
        elif isinstance(value, int):
            seconds = value
        else:
            return ValidationResult.failure([
                InvalidInput(field_name, f"Expected int or datetime, got {type(value).__name__}", value)
            ])

        if seconds < 0:
            return ValidationResult.failure([
                InvalidInput(field_name, "Timestamp cannot be negative", value)
            ])

        if after is not None and seconds <= after:
            return ValidationResult.failure([
                InvalidInput(field_name, "must be after the manufacturing date", value)
            ])

        return ValidationResult.success(seconds)


def collect(*results: ValidationResult) -> List[Any]:
    """Raise every failure together, or return the sanitized values in order."""
    errors: List[InvalidInput] = []
    for r in results:
        errors.extend(r.errors)
    if errors:
        ValidationResult.failure(errors).raise_if_invalid()
    return [r.sanitized_value for r in results]


# =============================================================================
# THREAD SAFETY
# =============================================================================

class AtomicCounter:
    """Thread-safe counter."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, delta: int = 1) -> int:
        """Atomically increment and return new value."""
        with self._lock:
            self._value += delta
            return self._value

    def get(self) -> int:
        """Get current value."""
        with self._lock:
            return self._value

    def reset(self, value: int = 0) -> None:
        """Atomically reset the counter to the given value."""
        with self._lock:
            self._value = value


# =============================================================================
# STORE INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces store invariants."""

    @staticmethod
    def check_monotonic_increase(field_name: str, old_value: int, new_value: int) -> None:
        """Ensure value strictly increases."""
        if new_value <= old_value:
            raise InvariantViolation(
                f"{field_name} must be strictly increasing: "
                f"cannot go from {old_value} to {new_value}"
            )

    @staticmethod
    def check_owner_present(product_id: int, owner: Optional[str]) -> None:
        """A valid record always has a well-formed, non-null owner."""
        if owner is None or ids.is_null(owner) or not ids.is_well_formed(owner):
            raise InvariantViolation(f"Product {product_id} would have no owner")

    @staticmethod
    def check_one_way(field_name: str, old_value: bool, new_value: bool) -> None:
        """A flag that was set can never be cleared."""
        if old_value and not new_value:
            raise InvariantViolation(f"{field_name} cannot be reset once set")
