"""
Factory and registry for sales sharing one bank and venue.
"""
import logging
from dataclasses import dataclass
from typing import Callable

from curve_sale.access import Capability, PermissionAuthority, Role
from curve_sale.config import SaleConfig
from curve_sale.crypto import address_from_label, is_valid_address, is_zero_address
from curve_sale.engine import SaleEngine
from curve_sale.errors import InvalidAddress, InvalidParameter
from curve_sale.ledger import NativeBank, TokenLedger

logger = logging.getLogger(__name__)


@dataclass
class SaleDeployment:
    engine: SaleEngine
    token: TokenLedger
    admin_capability: Capability


class SaleFactory:
    def __init__(self, authority: PermissionAuthority, bank: NativeBank, venue,
                 clock: Callable[[], int] = None, monitor=None):
        self.authority = authority
        self.bank = bank
        self.venue = venue
        self.clock = clock
        self.monitor = monitor
        self.sales: dict[str, SaleDeployment] = {}
        self._symbols: set[str] = set()

    def create_sale(self, admin: str, name: str, symbol: str,
                    config: SaleConfig = None) -> SaleDeployment:
        """
        Deploy a token and its sale engine and grant ``admin`` the ADMIN role
        on the new sale.
        """
        if not is_valid_address(admin) or is_zero_address(admin):
            raise InvalidAddress(f"Invalid admin address: {admin!r}")
        if not name or not symbol:
            raise InvalidParameter("Name and symbol are required")
        if symbol in self._symbols:
            raise InvalidParameter(f"A sale for {symbol} already exists")

        config = config or SaleConfig()
        sale_address = address_from_label(f"sale:{symbol}:{admin}:{len(self.sales)}")
        token = TokenLedger(name, symbol, config.total_supply_cap, minter=sale_address)
        engine = SaleEngine(config, token, self.bank, self.venue, self.authority.checker,
                            clock=self.clock, monitor=self.monitor)
        capability = self.authority.issue(admin, Role.ADMIN, engine.address)

        deployment = SaleDeployment(engine, token, capability)
        self.sales[engine.address] = deployment
        self._symbols.add(symbol)

        logger.info(f"Sale {engine.address} created for {name} ({symbol}) by {admin}")
        return deployment

    def is_valid_sale(self, address: str) -> bool:
        return address in self.sales

    def get_sale(self, address: str) -> SaleEngine:
        deployment = self.sales.get(address)
        if deployment is None:
            raise InvalidAddress(f"No sale at {address}")
        return deployment.engine

    def all_sales(self) -> list[str]:
        return list(self.sales)
