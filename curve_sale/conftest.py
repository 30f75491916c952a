"""
Shared fixtures for the sale engine tests.
"""
import pytest

from curve_sale.access import PermissionAuthority, Role
from curve_sale.config import TOKEN_UNIT, SaleConfig
from curve_sale.crypto import address_from_label
from curve_sale.engine import SaleEngine
from curve_sale.ledger import NativeBank, TokenLedger
from curve_sale.venue import ConstantProductVenue

START_TIME = 1_700_000_000


class FakeClock:
    """Deterministic clock injected into engines, locks and timelocks."""

    def __init__(self, now: int = START_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def authority():
    return PermissionAuthority()


@pytest.fixture
def bank():
    return NativeBank()


@pytest.fixture
def venue(bank):
    return ConstantProductVenue(bank)


@pytest.fixture
def alice(bank):
    address = address_from_label("alice")
    bank.deposit(address, 1000 * TOKEN_UNIT)
    return address


@pytest.fixture
def bob(bank):
    address = address_from_label("bob")
    bank.deposit(address, 1000 * TOKEN_UNIT)
    return address


@pytest.fixture
def carol(bank):
    address = address_from_label("carol")
    bank.deposit(address, 1000 * TOKEN_UNIT)
    return address


@pytest.fixture
def sale_config():
    return SaleConfig()


@pytest.fixture
def make_engine(bank, venue, authority, clock):
    """Build an engine for a given config, sharing the test bank and venue."""
    def _make(config: SaleConfig = None, venue_override=None, monitor=None):
        config = config or SaleConfig()
        sale_address = address_from_label(f"sale:{id(config)}")
        token = TokenLedger("Beared Mint", "BMT", config.total_supply_cap, minter=sale_address)
        return SaleEngine(config, token, bank,
                          venue_override if venue_override is not None else venue,
                          authority.checker, clock=clock, monitor=monitor)
    return _make


@pytest.fixture
def engine(make_engine, sale_config):
    return make_engine(sale_config)


@pytest.fixture
def admin_cap(authority, engine):
    return authority.issue(address_from_label("admin"), Role.ADMIN, engine.address)


@pytest.fixture
def pauser_cap(authority, engine):
    return authority.issue(address_from_label("pauser"), Role.PAUSER, engine.address)


@pytest.fixture
def emergency_cap(authority, engine):
    return authority.issue(address_from_label("guardian"), Role.EMERGENCY, engine.address)
