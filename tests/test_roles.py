"""
Role registry tests: ADMIN-gated grants, idempotency and role events.
"""

import pytest

from pharmachain.errors import InvalidInput, Unauthorized
from pharmachain.events import ROLES_STREAM, RoleGranted, RoleRevoked
from pharmachain.identity import ZERO_IDENTITY, address_from_seed, generate_identity
from pharmachain.ledger import Ledger, ManualClock
from pharmachain.roles import Capability, RoleRegistry


@pytest.fixture
def ledger():
    return Ledger(clock=ManualClock())


@pytest.fixture
def roles(ledger, admin):
    return RoleRegistry(ledger, admin)


class TestCapability:
    """Capability parsing."""

    def test_parse_member_and_names(self):
        assert Capability.parse(Capability.REGULATOR) is Capability.REGULATOR
        assert Capability.parse("regulator") is Capability.REGULATOR
        assert Capability.parse("MANUFACTURER_ROLE") is Capability.MANUFACTURER

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            Capability.parse("janitor")


class TestRoleRegistry:
    """Grant, revoke and query."""

    def test_deployer_holds_admin(self, roles, admin):
        assert roles.has(admin, Capability.ADMIN)
        assert roles.members(Capability.ADMIN) == [admin]

    def test_grant_and_has(self, roles, admin, manufacturer):
        assert not roles.has(manufacturer, Capability.MANUFACTURER)
        assert roles.grant(admin, manufacturer, Capability.MANUFACTURER) is True
        assert roles.has(manufacturer, Capability.MANUFACTURER)
        assert not roles.has(manufacturer, Capability.REGULATOR)

    def test_identity_holds_several_capabilities(self, roles, admin, distributor):
        roles.grant_distributor(admin, distributor)
        roles.grant_retailer(admin, distributor)
        assert roles.capabilities_of(distributor) == frozenset(
            {Capability.DISTRIBUTOR, Capability.RETAILER}
        )

    def test_grant_is_idempotent(self, roles, ledger, admin, regulator):
        assert roles.grant_regulator(admin, regulator) is True
        events_before = ledger.log.total_events
        assert roles.grant_regulator(admin, regulator) is False
        assert roles.has(regulator, Capability.REGULATOR)
        assert ledger.log.total_events == events_before

    def test_non_admin_cannot_grant(self, roles, hacker):
        with pytest.raises(Unauthorized) as exc_info:
            roles.grant(hacker, hacker, Capability.REGULATOR)
        assert exc_info.value.actor == hacker
        assert not roles.has(hacker, Capability.REGULATOR)

    def test_non_admin_cannot_revoke(self, roles, admin, hacker, regulator):
        roles.grant_regulator(admin, regulator)
        with pytest.raises(Unauthorized):
            roles.revoke(hacker, regulator, Capability.REGULATOR)
        assert roles.has(regulator, Capability.REGULATOR)

    def test_revoke(self, roles, admin, regulator):
        roles.grant_regulator(admin, regulator)
        assert roles.revoke(admin, regulator, Capability.REGULATOR) is True
        assert not roles.has(regulator, Capability.REGULATOR)
        assert roles.revoke(admin, regulator, Capability.REGULATOR) is False
        assert roles.capabilities_of(regulator) == frozenset()

    def test_grant_to_null_identity_rejected(self, roles, admin):
        with pytest.raises(InvalidInput):
            roles.grant(admin, ZERO_IDENTITY, Capability.RETAILER)

    def test_grant_to_malformed_identity_rejected(self, roles, admin):
        with pytest.raises(InvalidInput):
            roles.grant(admin, "not-an-identity", Capability.RETAILER)

    def test_unknown_capability_rejected(self, roles, admin, regulator):
        with pytest.raises(InvalidInput) as exc_info:
            roles.grant(admin, regulator, "janitor")
        assert exc_info.value.field == "capability"

    def test_has_never_fails(self, roles):
        assert roles.has("garbage", Capability.ADMIN) is False
        assert roles.has(None, Capability.ADMIN) is False
        assert roles.has(address_from_seed("x"), "no-such-capability") is False

    def test_addresses_compare_case_insensitively(self, roles, admin, manufacturer):
        roles.grant_manufacturer(admin, manufacturer.upper().replace("0X", "0x"))
        assert roles.has(manufacturer, Capability.MANUFACTURER)

    def test_did_key_identities(self, roles, admin):
        _, did = generate_identity()
        roles.grant_manufacturer(admin, did)
        assert roles.has(did, Capability.MANUFACTURER)

    def test_admin_can_grant_admin(self, roles, admin, distributor, regulator):
        roles.grant(admin, distributor, Capability.ADMIN)
        roles.grant_regulator(distributor, regulator)
        assert roles.has(regulator, Capability.REGULATOR)


class TestRoleEvents:
    """Role changes are recorded on the roles stream."""

    def test_grant_and_revoke_emit_events(self, roles, ledger, admin, regulator):
        roles.grant_regulator(admin, regulator)
        roles.revoke(admin, regulator, "regulator")

        events = ledger.log.read_stream(ROLES_STREAM)
        assert [type(e) for e in events] == [RoleGranted, RoleRevoked]
        assert events[0].account == regulator
        assert events[0].capability == "regulator"
        assert events[0].actor == admin
        assert events[0].operation == "grant"
        assert events[1].operation == "revoke"

    def test_rejected_grant_leaves_no_event(self, roles, ledger, hacker):
        with pytest.raises(Unauthorized):
            roles.grant_regulator(hacker, hacker)
        assert ledger.log.total_events == 0
