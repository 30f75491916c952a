"""
Trade admission guards.

The engine runs these in a fixed order before it touches reserve state:
lifecycle, bounds, capacity, reserve buffer, price impact, rate limit and
active users. Every guard raises on rejection; none of them return a flag.
"""
import logging

from curve_sale.accounts import Account
from curve_sale.config import BPS, SaleConfig
from curve_sale.errors import (
    AlreadyMigrated,
    AmountExceedsLimit,
    AmountTooLow,
    ExceededRateLimit,
    ExceedsPriceImpact,
    ExceedsTotalSupply,
    InsufficientReserve,
    MaxUsersReached,
    TradingPaused,
)
from curve_sale.pricing import price_impact
from curve_sale.reserve_state import ReserveState

logger = logging.getLogger(__name__)


# ==============================================================================
# RATE LIMITER
# ==============================================================================

class RateLimiter:
    """
    Per-address action quota over a fixed window.

    The window is measured from the previous action, which is always
    re-stamped. Bursts straddling a window boundary are allowed.
    """

    def __init__(self, window: int, quota: int):
        self.window = window
        self.quota = quota

    def check_and_record(self, account: Account, now: int) -> None:
        """Check if the account may act now and record the action."""
        elapsed = now - account.last_action_time

        if elapsed >= self.window:
            account.action_count = 1
        else:
            if account.action_count >= self.quota:
                raise ExceededRateLimit(
                    f"Rate limit exceeded: {account.action_count}/{self.quota} "
                    f"actions in the last {self.window}s"
                )
            account.action_count += 1

        account.last_action_time = now


# ==============================================================================
# ACTIVE USERS
# ==============================================================================

class ActiveUserRegistry:
    """Counts distinct participants up to a cap. Never decremented."""

    def __init__(self, cap: int, count: int = 0):
        self.cap = cap
        self.count = count

    def check_and_join(self, account: Account) -> bool:
        """Admit the account. Returns True when it joined just now."""
        if account.is_active:
            return False
        if self.count >= self.cap:
            raise MaxUsersReached(f"Max users reached: {self.count}/{self.cap}")
        account.is_active = True
        self.count += 1
        return True


# ==============================================================================
# GUARD LAYER
# ==============================================================================

class GuardLayer:
    """Composes the individual guards against the live configuration."""

    def __init__(self, config: SaleConfig, rate_limiter: RateLimiter = None,
                 active_users: ActiveUserRegistry = None):
        self.config = config
        self.rate_limiter = rate_limiter or RateLimiter(
            config.rate_limit_window, config.rate_limit_quota
        )
        self.active_users = active_users or ActiveUserRegistry(config.max_active_users)

    def check_lifecycle(self, migrated: bool, paused: bool, emergency: bool = False) -> None:
        if migrated:
            raise AlreadyMigrated("Sale has migrated; curve trading is closed")
        if paused:
            raise TradingPaused("Trading is paused")
        if emergency:
            raise TradingPaused("Trading is halted while emergency mode is enabled")

    def check_bounds(self, amount_in: int) -> None:
        if amount_in < self.config.min_trade:
            raise AmountTooLow(
                f"Amount too low: {amount_in} < {self.config.min_trade}"
            )
        if amount_in > self.config.max_trade:
            raise AmountExceedsLimit(
                f"Amount exceeds limit: {amount_in} > {self.config.max_trade}"
            )

    def check_capacity(self, current_supply: int, tokens_out: int) -> None:
        projected = current_supply + tokens_out
        if projected > self.config.total_supply_cap:
            raise ExceedsTotalSupply(
                f"Projected supply {projected} exceeds cap {self.config.total_supply_cap}"
            )

    def check_reserve_buffer(self, reserves: ReserveState, tokens_out: int) -> None:
        if self.config.dynamic_reserve_buffer:
            base = reserves.token_reserve
        else:
            base = self.config.initial_token_reserve
        floor = base * self.config.reserve_buffer_bps // BPS

        remaining = reserves.token_reserve - tokens_out
        if remaining < floor:
            raise InsufficientReserve(
                f"Trade would leave {remaining} tokens, below buffer {floor}"
            )

    def check_price_impact(self, trade_size: int, reserve: int) -> int:
        impact = price_impact(trade_size, reserve)
        if impact > self.config.price_impact_limit:
            raise ExceedsPriceImpact(
                f"Price impact {impact}% exceeds {self.config.price_impact_limit}% limit"
            )
        return impact

    def check_participant(self, account: Account, now: int) -> bool:
        """Rate limit then active-user admission. Mutates the account record."""
        self.rate_limiter.check_and_record(account, now)
        joined = self.active_users.check_and_join(account)
        if joined:
            logger.debug(
                f"New participant admitted ({self.active_users.count}/{self.active_users.cap})"
            )
        return joined
