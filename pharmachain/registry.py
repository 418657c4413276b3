"""
PharmaChain Product Registry

Canonical store of product records. Only CONTROLLER holders may mutate it;
every read path in the system goes through it.

Product Lifecycle:

    ORIGINATED ──► SHIPPED ──► RECEIVED ──► DELIVERED
         0            1            2             3

The registry writes whatever status it is told to. Ordering policy belongs to
the supply-chain controller.

Records are frozen dataclasses; each mutation replaces the stored record, so a
record handed to a caller never changes underneath them.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from enum import IntEnum
from typing import Any, Dict, List, Optional, Union

from pharmachain.config import PharmaChainConfig, get_config
from pharmachain.errors import InvalidInput, NotFound, Unauthorized
from pharmachain.events import (
    Event,
    ProductCreated,
    ProductOwnershipTransferred,
    ProductStatusChanged,
    ProductVerified,
    product_stream,
)
from pharmachain.hardening import AtomicCounter, InvariantChecker, Validators, collect
from pharmachain.identity import ZERO_IDENTITY
from pharmachain.ledger import Ledger, UndoJournal
from pharmachain.observability import Layer, get_logger
from pharmachain.roles import Capability, RoleRegistry

logger = get_logger("registry", Layer.REGISTRY)


# =============================================================================
# STATUS
# =============================================================================

class ProductStatus(IntEnum):
    """Custody lifecycle status."""
    ORIGINATED = 0
    SHIPPED = 1
    RECEIVED = 2
    DELIVERED = 3

    @classmethod
    def parse(cls, value: Union["ProductStatus", int, str]) -> "ProductStatus":
        """Accept a member, its integer code, or its name (aliases included)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Invalid status: {value!r}")
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise ValueError(f"Invalid status code: {value}") from None
        if isinstance(value, str):
            key = value.strip().upper().replace("-", "_").replace(" ", "_")
            key = STATUS_ALIASES.get(key, key)
            if key in cls.__members__:
                return cls[key]
        raise ValueError(f"Invalid status: {value!r}")


STATUS_ALIASES = {
    "CREATED": "ORIGINATED",
    "MANUFACTURED": "ORIGINATED",
    "IN_TRANSIT": "SHIPPED",
    "STORED": "RECEIVED",
    "IN_STORAGE": "RECEIVED",
}


# =============================================================================
# PRODUCT RECORD
# =============================================================================

@dataclass(frozen=True)
class Product:
    """A product record as stored by the registry."""
    product_id: int
    name: str
    batch_number: str
    manufacturing_date: int
    expiry_date: int
    manufacturer: str
    current_owner: str
    status: ProductStatus
    certificate_ref: str
    is_verified: bool
    is_valid: bool

    @classmethod
    def missing(cls) -> "Product":
        """The record returned for ids that were never created."""
        return cls(
            product_id=0,
            name="",
            batch_number="",
            manufacturing_date=0,
            expiry_date=0,
            manufacturer=ZERO_IDENTITY,
            current_owner=ZERO_IDENTITY,
            status=ProductStatus.ORIGINATED,
            certificate_ref="",
            is_verified=False,
            is_valid=False,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.name
        return data


# =============================================================================
# REGISTRY
# =============================================================================

class ProductRegistry:
    """
    Single-owner product store keyed by product id.

    Ids are assigned densely from 1. A create that fails rolls back with its
    transaction, so no id is ever skipped or reused.
    """

    STORE_NAME = "products"

    def __init__(
        self,
        ledger: Ledger,
        roles: RoleRegistry,
        deployer: str,
        config: Optional[PharmaChainConfig] = None,
    ):
        self.ledger = ledger
        self.roles = roles
        self.config = config or get_config()
        self.address = ledger.allocate_address(deployer, "ProductRegistry")
        self._products: Dict[int, Product] = {}
        self._next_id = AtomicCounter()
        self._journal = UndoJournal(self._products)
        self._saved_next_id: Optional[int] = None
        ledger.register_store(self.STORE_NAME, self)

    def rollback(self) -> None:
        self._journal.rollback()
        if self._saved_next_id is not None:
            self._next_id.reset(self._saved_next_id)
        self._saved_next_id = None

    def commit(self) -> None:
        self._journal.clear()
        self._saved_next_id = None

    def _put(self, product: Product) -> None:
        self._journal.record(product.product_id)
        self._products[product.product_id] = product

    # ------------------------------------------------------------------
    # Mutations (CONTROLLER only)
    # ------------------------------------------------------------------

    def create(
        self,
        caller: str,
        name: str,
        batch_number: str,
        expiry_date: Any,
        manufacturer: str,
        certificate_ref: str,
    ) -> int:
        """Store a new product owned by its manufacturer and return its id."""
        with self.ledger.transaction(caller) as ctx:
            self._require_controller(ctx.caller, "create")

            limits = self.config.validation
            name, batch_number, certificate_ref, expiry, manufacturer = collect(
                Validators.validate_string(name, "name", max_length=limits.max_text_length.get()),
                Validators.validate_string(
                    batch_number, "batch_number", max_length=limits.max_text_length.get()
                ),
                Validators.validate_string(
                    certificate_ref,
                    "certificate_ref",
                    min_length=0,
                    max_length=limits.max_certificate_ref_length.get(),
                ),
                Validators.validate_timestamp(expiry_date, "expiry_date", after=ctx.timestamp),
                Validators.validate_identity(manufacturer, "manufacturer"),
            )

            previous = self._next_id.get()
            if self._saved_next_id is None:
                self._saved_next_id = previous
            product_id = self._next_id.increment()
            InvariantChecker.check_monotonic_increase("product_id", previous, product_id)
            InvariantChecker.check_owner_present(product_id, manufacturer)

            self._put(Product(
                product_id=product_id,
                name=name,
                batch_number=batch_number,
                manufacturing_date=ctx.timestamp,
                expiry_date=expiry,
                manufacturer=manufacturer,
                current_owner=manufacturer,
                status=ProductStatus.ORIGINATED,
                certificate_ref=certificate_ref,
                is_verified=False,
                is_valid=True,
            ))
            ctx.emit(product_stream(product_id), ProductCreated(
                product_id=product_id,
                name=name,
                batch_number=batch_number,
                expiry_date=expiry,
                manufacturer=manufacturer,
                certificate_ref=certificate_ref,
            ))
            logger.info("Product created", product_id=product_id, batch_number=batch_number)
            return product_id

    def set_status(self, caller: str, product_id: int, new_status: Union[ProductStatus, int, str]) -> None:
        """Overwrite the status of an existing product."""
        with self.ledger.transaction(caller) as ctx:
            self._require_controller(ctx.caller, "set_status")
            product = self._require_product(product_id)
            status = self._parse_status(new_status)
            self._put(replace(product, status=status))
            ctx.emit(product_stream(product_id), ProductStatusChanged(
                product_id=product_id,
                old_status=int(product.status),
                new_status=int(status),
            ))
            logger.info(
                "Product status changed",
                product_id=product_id,
                old_status=product.status.name,
                new_status=status.name,
            )

    def set_owner(self, caller: str, product_id: int, new_owner: str) -> None:
        with self.ledger.transaction(caller) as ctx:
            self._require_controller(ctx.caller, "set_owner")
            product = self._require_product(product_id)
            result = Validators.validate_identity(new_owner, "new_owner")
            result.raise_if_invalid()
            owner = result.sanitized_value
            InvariantChecker.check_owner_present(product_id, owner)
            self._put(replace(product, current_owner=owner))
            ctx.emit(product_stream(product_id), ProductOwnershipTransferred(
                product_id=product_id,
                previous_owner=product.current_owner,
                new_owner=owner,
            ))
            logger.info("Product ownership transferred", product_id=product_id, new_owner=owner)

    def set_verified(self, caller: str, product_id: int) -> bool:
        """Mark a product verified. Returns False if it already was."""
        with self.ledger.transaction(caller) as ctx:
            self._require_controller(ctx.caller, "set_verified")
            product = self._require_product(product_id)
            if product.is_verified:
                return False
            InvariantChecker.check_one_way("is_verified", product.is_verified, True)
            self._put(replace(product, is_verified=True))
            ctx.emit(product_stream(product_id), ProductVerified(product_id=product_id))
            logger.info("Product verified", product_id=product_id)
            return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, product_id: int) -> Product:
        with self.ledger.read():
            return self._products.get(product_id) or Product.missing()

    def get_owner(self, product_id: int) -> Optional[str]:
        with self.ledger.read():
            product = self._products.get(product_id)
            return product.current_owner if product else None

    def exists(self, product_id: int) -> bool:
        with self.ledger.read():
            return product_id in self._products

    @property
    def product_count(self) -> int:
        return self._next_id.get()

    def history(self, product_id: int) -> List[Event]:
        """Committed events for one product, oldest first."""
        return self.ledger.log.read_stream(product_stream(product_id))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_controller(self, caller: str, operation: str) -> None:
        if not self.roles.has(caller, Capability.CONTROLLER):
            exc = Unauthorized("Caller is not a controller", actor=caller)
            logger.rejected(operation, exc, actor=caller)
            raise exc

    def _require_product(self, product_id: Any) -> Product:
        known = isinstance(product_id, int) and not isinstance(product_id, bool)
        product = self._products.get(product_id) if known else None
        if product is None or not product.is_valid:
            raise NotFound(product_id)
        return product

    @staticmethod
    def _parse_status(value: Any) -> ProductStatus:
        try:
            return ProductStatus.parse(value)
        except ValueError as exc:
            raise InvalidInput("new_status", str(exc), value) from None
