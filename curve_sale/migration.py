"""
One-way migration of a sale into the liquidity venue.

TRADING -> MIGRATING -> MIGRATED. The transition runs inside the buy that
crossed the migration threshold; if the venue call fails the whole buy is
rolled back and the sale stays in TRADING.
"""
import logging
from enum import Enum
from typing import Optional

from curve_sale.config import WAD, SaleConfig
from curve_sale.errors import AlreadyMigrated, MigrationFailed, NotMigrated
from curve_sale.external import call_external
from curve_sale.ledger import NativeBank, TokenLedger
from curve_sale.reserve_state import ReserveState
from curve_sale.venue import ConstantProductVenue, LiquidityReceipt

logger = logging.getLogger(__name__)


class MigrationPhase(str, Enum):
    TRADING = "TRADING"
    MIGRATING = "MIGRATING"
    MIGRATED = "MIGRATED"


class MigrationState:
    """The migrated flag goes false -> true exactly once."""

    def __init__(self, data: dict = None):
        data = data or {}
        self.phase = MigrationPhase(data.get('phase', MigrationPhase.TRADING.value))
        self.venue_pair_address: Optional[str] = data.get('venue_pair_address')
        self.migrated_at: Optional[int] = data.get('migrated_at')
        self.venue_tokens = int(data.get('venue_tokens', 0))
        self.venue_currency = int(data.get('venue_currency', 0))
        self.burned_tokens = int(data.get('burned_tokens', 0))
        self.liquidity = int(data.get('liquidity', 0))

    @property
    def migrated(self) -> bool:
        return self.phase != MigrationPhase.TRADING

    def pair_address(self) -> str:
        if self.phase != MigrationPhase.MIGRATED:
            raise NotMigrated("Sale has not migrated")
        return self.venue_pair_address

    def begin(self):
        if self.migrated:
            raise AlreadyMigrated("Migration already started")
        self.phase = MigrationPhase.MIGRATING

    def complete(self, receipt: LiquidityReceipt, burned: int, now: int):
        self.phase = MigrationPhase.MIGRATED
        self.venue_pair_address = receipt.pair_address
        self.migrated_at = now
        self.venue_tokens = receipt.token_used
        self.venue_currency = receipt.currency_used
        self.burned_tokens = burned
        self.liquidity = receipt.liquidity

    def to_dict(self) -> dict:
        return {
            'phase': self.phase.value,
            'venue_pair_address': self.venue_pair_address,
            'migrated_at': self.migrated_at,
            'venue_tokens': str(self.venue_tokens),
            'venue_currency': str(self.venue_currency),
            'burned_tokens': str(self.burned_tokens),
            'liquidity': str(self.liquidity),
        }


def should_migrate(state: MigrationState, issued_supply: int, config: SaleConfig) -> bool:
    return not state.migrated and issued_supply >= config.migration_threshold


def migrate(state: MigrationState, *, sale_address: str, token: TokenLedger,
            bank: NativeBank, venue: ConstantProductVenue, reserves: ReserveState,
            config: SaleConfig, pending_withdrawals: int, now: int) -> LiquidityReceipt:
    """
    Move unsold supply and collected currency into the venue.

    Mutates the token ledger and bank; the caller must checkpoint them and
    restore on MigrationFailed.
    """
    state.begin()

    available = (bank.balance_of(sale_address) - config.migration_fee
                 - pending_withdrawals)
    if available <= 0:
        raise MigrationFailed(
            "No currency available for migration after fee and pending withdrawals"
        )

    price = reserves.currency_reserve * WAD // reserves.token_reserve
    if price == 0:
        raise MigrationFailed("Curve price rounds to zero")

    issued = token.total_supply
    headroom = config.total_supply_cap - issued
    venue_tokens = min(available * WAD // price, headroom)
    if venue_tokens <= 0:
        raise MigrationFailed(f"No token headroom for migration (issued {issued})")

    burn_amount = config.total_supply_cap - (issued + venue_tokens)

    token.mint(sale_address, sale_address, venue_tokens + burn_amount)
    if burn_amount:
        token.burn(sale_address, sale_address, burn_amount)
    token.approve(sale_address, venue.address, venue_tokens)

    result = call_external(
        venue.add_liquidity, sale_address, token, venue_tokens, available,
        min_token=venue_tokens, min_currency=available,
        deadline=now + config.migration_deadline, now=now,
    )
    if not result.ok:
        raise MigrationFailed(f"Venue rejected liquidity: {result.reason}")

    receipt = result.value
    state.complete(receipt, burn_amount, now)
    logger.info(
        f"Migrated to {receipt.pair_address}: {receipt.token_used} tokens, "
        f"{receipt.currency_used} currency, {burn_amount} burned"
    )
    return receipt
