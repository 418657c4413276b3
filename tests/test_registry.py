"""
Product registry tests: CONTROLLER gating, id assignment, validation and
record immutability.
"""

import dataclasses
from datetime import datetime, timezone

import pytest

from pharmachain.errors import InvalidInput, InvalidInputs, NotFound, Unauthorized
from pharmachain.events import (
    ProductCreated,
    ProductOwnershipTransferred,
    ProductStatusChanged,
    ProductVerified,
)
from pharmachain.identity import ZERO_IDENTITY, address_from_seed
from pharmachain.registry import Product, ProductStatus
from pharmachain.roles import Capability


@pytest.fixture
def controller(network, admin):
    identity = address_from_seed("controller")
    network.roles.grant(admin, identity, Capability.CONTROLLER)
    return identity


@pytest.fixture
def registry(network):
    return network.registry


def _create(registry, controller, manufacturer, expiry, name="Aspirin", batch="BATCH-001"):
    return registry.create(controller, name, batch, expiry, manufacturer, "cert://1")


class TestProductStatus:
    """Status parsing and aliases."""

    def test_codes(self):
        assert [s.value for s in ProductStatus] == [0, 1, 2, 3]
        assert ProductStatus.parse(2) is ProductStatus.RECEIVED

    def test_names_and_aliases(self):
        assert ProductStatus.parse("shipped") is ProductStatus.SHIPPED
        assert ProductStatus.parse("In Transit") is ProductStatus.SHIPPED
        assert ProductStatus.parse("IN_STORAGE") is ProductStatus.RECEIVED
        assert ProductStatus.parse("stored") is ProductStatus.RECEIVED

    def test_invalid(self):
        for bad in (4, -1, "LOST", True, None, 1.0):
            with pytest.raises(ValueError):
                ProductStatus.parse(bad)


class TestCreate:
    """Product creation."""

    def test_initial_record(self, registry, controller, manufacturer, expiry, clock):
        product_id = _create(registry, controller, manufacturer, expiry)
        product = registry.get(product_id)

        assert product_id == 1
        assert product.product_id == 1
        assert product.name == "Aspirin"
        assert product.batch_number == "BATCH-001"
        assert product.manufacturing_date == clock.now()
        assert product.expiry_date == expiry
        assert product.manufacturer == manufacturer
        assert product.current_owner == manufacturer
        assert product.status == ProductStatus.ORIGINATED
        assert product.certificate_ref == "cert://1"
        assert product.is_verified is False
        assert product.is_valid is True

    def test_ids_are_sequential(self, registry, controller, manufacturer, expiry):
        ids = [_create(registry, controller, manufacturer, expiry, batch=f"B-{i}") for i in range(3)]
        assert ids == [1, 2, 3]
        assert registry.product_count == 3

    def test_failed_create_does_not_consume_an_id(self, registry, controller, manufacturer, expiry):
        assert _create(registry, controller, manufacturer, expiry) == 1
        with pytest.raises(InvalidInput):
            _create(registry, controller, manufacturer, expiry, name="")
        assert _create(registry, controller, manufacturer, expiry) == 2
        assert not registry.exists(3)

    def test_requires_controller(self, registry, manufacturer, expiry):
        with pytest.raises(Unauthorized):
            _create(registry, manufacturer, manufacturer, expiry)
        assert registry.product_count == 0

    def test_expiry_must_be_after_creation(self, registry, controller, manufacturer, clock):
        with pytest.raises(InvalidInput) as exc_info:
            _create(registry, controller, manufacturer, clock.now())
        assert exc_info.value.field == "expiry_date"
        with pytest.raises(InvalidInput):
            _create(registry, controller, manufacturer, clock.now() - 1)

    def test_expiry_accepts_datetime(self, registry, controller, manufacturer, clock):
        when = datetime.fromtimestamp(clock.now() + 86400, tz=timezone.utc)
        product_id = _create(registry, controller, manufacturer, when)
        assert registry.get(product_id).expiry_date == clock.now() + 86400

    def test_empty_batch_rejected(self, registry, controller, manufacturer, expiry):
        with pytest.raises(InvalidInput) as exc_info:
            _create(registry, controller, manufacturer, expiry, batch="   ")
        assert exc_info.value.field == "batch_number"

    def test_null_manufacturer_rejected(self, registry, controller, expiry):
        with pytest.raises(InvalidInput):
            _create(registry, controller, ZERO_IDENTITY, expiry)

    def test_several_errors_reported_together(self, registry, controller, manufacturer, clock):
        with pytest.raises(InvalidInputs) as exc_info:
            registry.create(controller, "", "", clock.now(), manufacturer, "")
        fields = [e.field for e in exc_info.value.errors]
        assert fields == ["name", "batch_number", "expiry_date"]

    def test_text_length_limit_from_config(self, registry, controller, manufacturer, expiry, config):
        config.validation.max_text_length.set(8)
        with pytest.raises(InvalidInput):
            _create(registry, controller, manufacturer, expiry, name="Acetylsalicylic acid")

    def test_malformed_length_env_uses_configured_limit(
        self, monkeypatch, registry, controller, manufacturer, expiry, config
    ):
        monkeypatch.setenv("PHARMACHAIN_MAX_TEXT_LENGTH", "abc")
        assert _create(registry, controller, manufacturer, expiry) == 1
        config.validation.max_text_length.set(8)
        with pytest.raises(InvalidInput):
            _create(registry, controller, manufacturer, expiry, name="Acetylsalicylic acid")
        assert registry.product_count == 1

    def test_names_are_stripped(self, registry, controller, manufacturer, expiry):
        product_id = _create(registry, controller, manufacturer, expiry, name="  Aspirin ")
        assert registry.get(product_id).name == "Aspirin"

    def test_emits_created_event(self, registry, controller, manufacturer, expiry, clock):
        product_id = _create(registry, controller, manufacturer, expiry)
        (event,) = registry.history(product_id)
        assert isinstance(event, ProductCreated)
        assert event.product_id == product_id
        assert event.actor == controller
        assert event.timestamp == clock.now()


class TestMutations:
    """set_status, set_owner and set_verified."""

    def test_set_status_unconditional(self, registry, controller, manufacturer, expiry):
        product_id = _create(registry, controller, manufacturer, expiry)
        registry.set_status(controller, product_id, ProductStatus.DELIVERED)
        registry.set_status(controller, product_id, ProductStatus.SHIPPED)
        assert registry.get(product_id).status == ProductStatus.SHIPPED

    def test_set_status_unknown_product(self, registry, controller):
        with pytest.raises(NotFound) as exc_info:
            registry.set_status(controller, 42, ProductStatus.SHIPPED)
        assert exc_info.value.reason == "Product 42 does not exist"

    def test_set_status_invalid_value(self, registry, controller, manufacturer, expiry):
        product_id = _create(registry, controller, manufacturer, expiry)
        with pytest.raises(InvalidInput):
            registry.set_status(controller, product_id, 9)

    def test_set_owner(self, registry, controller, manufacturer, distributor, expiry):
        product_id = _create(registry, controller, manufacturer, expiry)
        registry.set_owner(controller, product_id, distributor)
        assert registry.get_owner(product_id) == distributor
        assert registry.get(product_id).manufacturer == manufacturer

    def test_set_owner_rejects_null(self, registry, controller, manufacturer, expiry):
        product_id = _create(registry, controller, manufacturer, expiry)
        with pytest.raises(InvalidInput):
            registry.set_owner(controller, product_id, ZERO_IDENTITY)
        with pytest.raises(InvalidInput):
            registry.set_owner(controller, product_id, "0x1234")
        assert registry.get_owner(product_id) == manufacturer

    def test_set_verified_is_idempotent(self, registry, controller, manufacturer, expiry):
        product_id = _create(registry, controller, manufacturer, expiry)
        assert registry.set_verified(controller, product_id) is True
        assert registry.set_verified(controller, product_id) is False
        assert registry.get(product_id).is_verified is True
        verified = [e for e in registry.history(product_id) if isinstance(e, ProductVerified)]
        assert len(verified) == 1

    def test_mutations_require_controller(self, registry, controller, manufacturer, distributor, expiry):
        product_id = _create(registry, controller, manufacturer, expiry)
        with pytest.raises(Unauthorized):
            registry.set_status(manufacturer, product_id, ProductStatus.SHIPPED)
        with pytest.raises(Unauthorized):
            registry.set_owner(manufacturer, product_id, distributor)
        with pytest.raises(Unauthorized):
            registry.set_verified(manufacturer, product_id)
        product = registry.get(product_id)
        assert product.status == ProductStatus.ORIGINATED
        assert product.current_owner == manufacturer
        assert product.is_verified is False

    def test_controller_revocation_takes_effect_immediately(
        self, network, registry, controller, admin, manufacturer, expiry
    ):
        product_id = _create(registry, controller, manufacturer, expiry)
        network.roles.revoke(admin, controller, Capability.CONTROLLER)
        with pytest.raises(Unauthorized):
            registry.set_status(controller, product_id, ProductStatus.SHIPPED)

    def test_history_order(self, registry, controller, manufacturer, distributor, expiry):
        product_id = _create(registry, controller, manufacturer, expiry)
        registry.set_status(controller, product_id, ProductStatus.SHIPPED)
        registry.set_owner(controller, product_id, distributor)
        registry.set_verified(controller, product_id)
        assert [type(e) for e in registry.history(product_id)] == [
            ProductCreated,
            ProductStatusChanged,
            ProductOwnershipTransferred,
            ProductVerified,
        ]
        changed = registry.history(product_id)[1]
        assert (changed.old_status, changed.new_status) == (0, 1)


class TestReads:
    """Reads of known and unknown products."""

    def test_unknown_product(self, registry):
        product = registry.get(7)
        assert product == Product.missing()
        assert product.is_valid is False
        assert product.product_id == 0
        assert registry.get_owner(7) is None
        assert registry.exists(7) is False

    def test_zero_is_never_a_product(self, registry, controller, manufacturer, expiry):
        _create(registry, controller, manufacturer, expiry)
        assert registry.get(0).is_valid is False
        assert registry.get_owner(0) is None

    def test_records_are_immutable(self, registry, controller, manufacturer, hacker, expiry):
        product_id = _create(registry, controller, manufacturer, expiry)
        product = registry.get(product_id)
        with pytest.raises(dataclasses.FrozenInstanceError):
            product.current_owner = hacker
        assert registry.get_owner(product_id) == manufacturer

    def test_returned_record_is_a_snapshot(self, registry, controller, manufacturer, expiry):
        product_id = _create(registry, controller, manufacturer, expiry)
        before = registry.get(product_id)
        registry.set_status(controller, product_id, ProductStatus.SHIPPED)
        assert before.status == ProductStatus.ORIGINATED
        assert registry.get(product_id).status == ProductStatus.SHIPPED

    def test_to_dict(self, registry, controller, manufacturer, expiry):
        product_id = _create(registry, controller, manufacturer, expiry)
        data = registry.get(product_id).to_dict()
        assert data["status"] == "ORIGINATED"
        assert data["batch_number"] == "BATCH-001"
