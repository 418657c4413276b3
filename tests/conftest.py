import logging
import os
import pathlib
import sys

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import pharmachain`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from pharmachain.config import ConfigManager, PharmaChainConfig  # noqa: E402
from pharmachain.identity import address_from_seed  # noqa: E402
from pharmachain.ledger import ManualClock  # noqa: E402
from pharmachain.observability import ROOT_LOGGER_NAME  # noqa: E402
from pharmachain.network import deploy_network  # noqa: E402

GENESIS_TIME = 1_700_000_000
ONE_YEAR = 365 * 24 * 3600


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "scenario: end-to-end custody scenarios",
    )


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch):
    """Each test starts from default configuration with no PHARMACHAIN_* overrides."""
    for name in list(os.environ):
        if name.startswith("PHARMACHAIN_"):
            monkeypatch.delenv(name, raising=False)
    ConfigManager.reset()
    yield
    ConfigManager.reset()


@pytest.fixture(autouse=True)
def _detached_logging():
    """Drop handlers installed by configure_logging so no test writes to a stale stream."""
    yield
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        if getattr(handler, "_pharmachain", False):
            root.removeHandler(handler)
    root.setLevel(logging.NOTSET)

@pytest.fixture
def clock():
    return ManualClock(GENESIS_TIME)


@pytest.fixture
def config():
    return PharmaChainConfig()


@pytest.fixture
def admin():
    return address_from_seed("admin")


@pytest.fixture
def manufacturer():
    return address_from_seed("manufacturer")


@pytest.fixture
def distributor():
    return address_from_seed("distributor")


@pytest.fixture
def retailer():
    return address_from_seed("retailer")


@pytest.fixture
def regulator():
    return address_from_seed("regulator")


@pytest.fixture
def hacker():
    return address_from_seed("hacker")


@pytest.fixture
def expiry(clock):
    return clock.now() + ONE_YEAR


@pytest.fixture
def network(admin, manufacturer, distributor, retailer, regulator, config, clock):
    """A deployed network with one identity per supply-chain role."""
    net = deploy_network(admin, config=config, clock=clock)
    net.roles.grant_manufacturer(admin, manufacturer)
    net.roles.grant_distributor(admin, distributor)
    net.roles.grant_retailer(admin, retailer)
    net.roles.grant_regulator(admin, regulator)
    return net


@pytest.fixture
def aspirin(network, manufacturer, expiry):
    """Id of an "Aspirin" / "BATCH-001" product registered by the manufacturer."""
    return network.supply_chain.register_product(
        manufacturer, "Aspirin", "BATCH-001", expiry, "ipfs://QmAspirinCertificate"
    )
