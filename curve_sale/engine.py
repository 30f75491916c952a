"""
Bonding-curve sale engine.

Issues tokens against native currency along a reserve curve, queues sell
proceeds for withdrawal and migrates unsold supply plus collected currency
into a liquidity venue once issuance crosses the migration threshold.

Key Principles:
1. Every mutating call is all-or-nothing: engine and collaborator state are
   checkpointed on entry and restored if anything raises
2. Mutating calls are non-reentrant
3. Sellers are never paid inline; proceeds are pulled with ``withdraw``
4. Migration happens at most once and freezes the curve
"""
import dataclasses
import logging
import time
from contextlib import contextmanager
from typing import Callable, Optional

import msgpack

from curve_sale.access import Capability, PauseSwitch, PermissionChecker, Role
from curve_sale.accounts import Account, AccountBook
from curve_sale.config import (
    MAX_CURVE_FACTOR,
    MAX_PRICE_IMPACT_LIMIT,
    MIN_CURVE_FACTOR,
    ConfigChange,
    SaleConfig,
)
from curve_sale.crypto import is_valid_address, is_zero_address
from curve_sale.errors import (
    AlreadyMigrated,
    EmergencyModeRequired,
    InsufficientBalance,
    InsufficientFunds,
    InvalidAddress,
    InvalidAmount,
    InvalidParameter,
    ReentrantCall,
    TransferFailed,
)
from curve_sale import events
from curve_sale.events import EventLog
from curve_sale.external import Transactional, call_external
from curve_sale.growth import GrowthMetrics, GrowthTracker
from curve_sale.guards import ActiveUserRegistry, GuardLayer
from curve_sale.ledger import NativeBank, TokenLedger
from curve_sale.migration import MigrationState, migrate, should_migrate
from curve_sale.pricing import PricingContext, make_curve, price_impact
from curve_sale.reserve_state import ReserveState
from curve_sale.withdrawals import WithdrawalQueue

logger = logging.getLogger(__name__)

SIDE_BUY = "buy"
SIDE_SELL = "sell"


def _require_caller(address: str):
    if not is_valid_address(address) or is_zero_address(address):
        raise InvalidAddress(f"Invalid caller address: {address!r}")


class SaleEngine:
    """
    One token sale.

    The engine's own address is the token's minter and holds the collected
    currency in the bank.
    """

    def __init__(self, config: SaleConfig, token: TokenLedger, bank: NativeBank,
                 venue, checker: PermissionChecker,
                 clock: Callable[[], int] = None, monitor=None):
        config = dataclasses.replace(config)
        config.validate()
        if token.max_supply != config.total_supply_cap:
            raise InvalidParameter(
                f"Token max supply {token.max_supply} does not match cap "
                f"{config.total_supply_cap}"
            )

        self.config = config
        self.token = token
        self.bank = bank
        self.venue = venue
        self.checker = checker
        self.address = token.minter
        self.clock = clock or (lambda: int(time.time()))
        self.monitor = monitor

        self.curve = make_curve(config.curve)
        self.reserve_state = ReserveState.initial(
            config.initial_token_reserve, config.initial_currency_reserve
        )
        self.accounts = AccountBook()
        self.guards = GuardLayer(config, active_users=ActiveUserRegistry(config.max_active_users))
        self.growth = GrowthTracker()
        self.migration = MigrationState()
        self.pause_switch = PauseSwitch(checker, self.address)
        self.emergency_mode = False
        self.config_audit_log: list[ConfigChange] = []
        self.events = EventLog()
        self.withdrawals = WithdrawalQueue(self.accounts)

        self._entered = False

        logger.info(
            f"Sale {self.address} for {token.symbol} created "
            f"({config.curve} curve, cap {config.total_supply_cap})"
        )

    # ==================== Transaction Scope ====================

    @contextmanager
    def _non_reentrant(self):
        if self._entered:
            raise ReentrantCall("Reentrant call")
        self._entered = True
        try:
            yield
        finally:
            self._entered = False

    @contextmanager
    def _atomic(self):
        """Checkpoint engine and collaborators; restore all on any exception."""
        participants = [self, self.token, self.bank]
        if isinstance(self.venue, Transactional):
            participants.append(self.venue)
        checkpoints = [(p, p.snapshot()) for p in participants]

        try:
            yield
        except Exception as e:
            for participant, blob in reversed(checkpoints):
                participant.restore(blob)
            self.events.rollback()
            logger.warning(f"Sale call rolled back: {type(e).__name__}: {e}")
            raise

        self.events.commit()

    def snapshot(self) -> bytes:
        return msgpack.packb(self.export_state(), use_bin_type=True)

    def restore(self, blob: bytes) -> None:
        data = msgpack.unpackb(blob, raw=False)
        self.reserve_state = ReserveState(data['reserves'])
        self.accounts.load(data['accounts'])
        self.withdrawals.total_pending = int(data['total_pending'])
        self.migration = MigrationState(data['migration'])
        self.growth.metrics = GrowthMetrics.from_dict(data['growth'])
        self.guards.active_users.count = data['active_users']
        self.pause_switch.paused = data['paused']
        self.emergency_mode = data['emergency_mode']
        self.config.price_impact_limit = data['price_impact_limit']
        self.config.curve_factor = data['curve_factor']
        del self.config_audit_log[data['audit_log_length']:]

    def export_state(self) -> dict:
        """Serializable view of all engine-owned state."""
        return {
            'reserves': self.reserve_state.to_dict(),
            'accounts': self.accounts.to_dict(),
            'total_pending': str(self.withdrawals.total_pending),
            'migration': self.migration.to_dict(),
            'growth': self.growth.metrics.to_dict(),
            'active_users': self.guards.active_users.count,
            'paused': self.pause_switch.paused,
            'emergency_mode': self.emergency_mode,
            'price_impact_limit': self.config.price_impact_limit,
            'curve_factor': self.config.curve_factor,
            'audit_log_length': len(self.config_audit_log),
        }

    def _record(self, side: str, status: str, started: float):
        if self.monitor is None:
            return
        self.monitor.record_trade(side, status, time.perf_counter() - started)
        if status == "success":
            self.monitor.update(self)

    # ==================== Quotes ====================

    def _pricing_context(self) -> PricingContext:
        return PricingContext(
            engagement_score=self.growth.metrics.engagement_score,
            active_users=self.guards.active_users.count,
            curve_factor=self.config.curve_factor,
        )

    def _require_trading_open(self):
        if self.migration.migrated:
            raise AlreadyMigrated("Sale has migrated; curve trading is closed")

    def purchase_return(self, amount_in: int) -> int:
        """Tokens a buy of ``amount_in`` would issue right now."""
        self._require_trading_open()
        return self.curve.purchase_return(self.reserve_state, amount_in, self._pricing_context())

    def sale_return(self, token_amount: int) -> int:
        """Currency a sell of ``token_amount`` would credit right now."""
        self._require_trading_open()
        return self.curve.sale_return(self.reserve_state, token_amount, self._pricing_context())

    def price_impact(self, trade_size: int, current_reserve: Optional[int] = None) -> int:
        """Integer percentage impact; defaults to the currency reserve."""
        self._require_trading_open()
        if current_reserve is None:
            current_reserve = self.reserve_state.currency_reserve
        return price_impact(trade_size, current_reserve)

    # ==================== Trading ====================

    def buy(self, caller: str, amount_in: int) -> dict:
        """
        Buy tokens with ``amount_in`` currency taken from the caller's bank
        balance.

        Runs lifecycle, bounds, capacity, reserve buffer, price impact, rate
        limit and active user guards in that order, then issues the tokens.
        May trigger migration within the same call.

        Returns:
            Dict with trade details
        """
        started = time.perf_counter()
        try:
            with self._non_reentrant(), self._atomic():
                result = self._buy(caller, amount_in)
        except Exception:
            self._record(SIDE_BUY, "failed", started)
            raise
        self._record(SIDE_BUY, "success", started)
        return result

    def _buy(self, caller: str, amount_in: int) -> dict:
        _require_caller(caller)
        now = self.clock()
        guards = self.guards
        reserves = self.reserve_state

        guards.check_lifecycle(self.migration.migrated, self.pause_switch.paused,
                               self.emergency_mode)
        guards.check_bounds(amount_in)

        tokens_out = self.curve.purchase_return(reserves, amount_in, self._pricing_context())

        guards.check_capacity(self.token.total_supply, tokens_out)
        guards.check_reserve_buffer(reserves, tokens_out)
        impact = guards.check_price_impact(amount_in, reserves.currency_reserve)

        first_trade = caller not in self.accounts
        account = self.accounts.get_or_create(caller)
        guards.check_participant(account, now)

        balance = self.bank.balance_of(caller)
        if balance < amount_in:
            raise InsufficientFunds(f"Insufficient funds: {balance} < {amount_in}")
        if not self.bank.transfer(caller, self.address, amount_in):
            raise TransferFailed(f"Payment of {amount_in} from {caller} failed")

        reserves.apply_buy(amount_in, tokens_out)
        self.token.mint(self.address, caller, tokens_out)
        self.growth.record_trade(account, first_trade, now)

        self.events.emit(events.TRADE_EXECUTED, now, trader=caller, side=SIDE_BUY,
                         amount_in=amount_in, amount_out=tokens_out, price_impact=impact)
        self._emit_reserves(now)

        logger.info(f"Buy: {caller} paid {amount_in} for {tokens_out} tokens (impact {impact}%)")

        result = {
            'side': SIDE_BUY,
            'trader': caller,
            'amount_in': amount_in,
            'tokens_out': tokens_out,
            'price_impact': impact,
            'migrated': False,
        }

        if should_migrate(self.migration, self.token.total_supply, self.config):
            receipt = migrate(
                self.migration,
                sale_address=self.address,
                token=self.token,
                bank=self.bank,
                venue=self.venue,
                reserves=reserves,
                config=self.config,
                pending_withdrawals=self.withdrawals.total_pending,
                now=now,
            )
            self.events.emit(events.MIGRATION_COMPLETED, now,
                             pair=receipt.pair_address,
                             token_amount=receipt.token_used,
                             currency_amount=receipt.currency_used,
                             burned=self.migration.burned_tokens)
            result['migrated'] = True
            result['venue_pair'] = receipt.pair_address

        return result

    def sell(self, caller: str, token_amount: int) -> dict:
        """
        Sell tokens back to the curve. The currency is credited to the
        caller's pending withdrawal, not paid out.
        """
        started = time.perf_counter()
        try:
            with self._non_reentrant(), self._atomic():
                result = self._sell(caller, token_amount)
        except Exception:
            self._record(SIDE_SELL, "failed", started)
            raise
        self._record(SIDE_SELL, "success", started)
        return result

    def _sell(self, caller: str, token_amount: int) -> dict:
        _require_caller(caller)
        now = self.clock()
        reserves = self.reserve_state

        self.guards.check_lifecycle(self.migration.migrated, self.pause_switch.paused,
                                    self.emergency_mode)
        if token_amount <= 0:
            raise InvalidAmount("Sale amount must be positive")

        balance = self.token.balance_of(caller)
        if balance < token_amount:
            raise InsufficientBalance(f"Insufficient balance: {balance} < {token_amount}")

        currency_out = self.curve.sale_return(reserves, token_amount, self._pricing_context())
        impact = self.guards.check_price_impact(token_amount, reserves.token_reserve)

        first_trade = caller not in self.accounts
        account = self.accounts.get_or_create(caller)
        self.guards.check_participant(account, now)

        self.token.burn(self.address, caller, token_amount)
        reserves.apply_sell(token_amount, currency_out)
        pending = self.withdrawals.credit(caller, currency_out)
        self.growth.record_trade(account, first_trade, now)

        self.events.emit(events.TRADE_EXECUTED, now, trader=caller, side=SIDE_SELL,
                         amount_in=token_amount, amount_out=currency_out, price_impact=impact)
        self._emit_reserves(now)
        self.events.emit(events.WITHDRAWAL_QUEUED, now, account=caller,
                         amount=currency_out, pending=pending)

        logger.info(f"Sell: {caller} sold {token_amount} tokens for {currency_out} (queued)")

        return {
            'side': SIDE_SELL,
            'trader': caller,
            'token_amount': token_amount,
            'currency_out': currency_out,
            'price_impact': impact,
            'pending_withdrawal': pending,
        }

    def withdraw(self, caller: str) -> int:
        """
        Pay out the caller's full pending credit. Allowed while paused and
        after migration.
        """
        with self._non_reentrant(), self._atomic():
            _require_caller(caller)
            amount = self.withdrawals.pay(caller, self.bank, self.address)
            self.events.emit(events.WITHDRAWAL_PAID, self.clock(), account=caller, amount=amount)
            logger.info(f"Withdrawal: {amount} paid to {caller}")
            return amount

    def _emit_reserves(self, now: int):
        self.events.emit(events.RESERVES_UPDATED, now,
                         token_reserve=self.reserve_state.token_reserve,
                         currency_reserve=self.reserve_state.currency_reserve)

    # ==================== Administration ====================

    def pause(self, capability: Capability):
        with self._non_reentrant(), self._atomic():
            self.pause_switch.pause(capability)

    def unpause(self, capability: Capability):
        with self._non_reentrant(), self._atomic():
            self.pause_switch.unpause(capability)

    @property
    def paused(self) -> bool:
        return self.pause_switch.paused

    def set_emergency_mode(self, capability: Capability, enabled: bool):
        with self._non_reentrant(), self._atomic():
            holder = self.checker.require(capability, Role.EMERGENCY, self.address)
            self.emergency_mode = bool(enabled)
            self.events.emit(events.EMERGENCY_MODE_CHANGED, self.clock(),
                             enabled=self.emergency_mode, changed_by=holder)
            logger.warning(f"Emergency mode {'enabled' if enabled else 'disabled'} by {holder}")

    def emergency_withdraw(self, capability: Capability) -> int:
        """
        Sweep the engine's currency to the capability holder, keeping what is
        owed to sellers. Requires emergency mode.
        """
        with self._non_reentrant(), self._atomic():
            holder = self.checker.require(capability, Role.EMERGENCY, self.address)
            if not self.emergency_mode:
                raise EmergencyModeRequired("Emergency mode is not enabled")

            amount = self.bank.balance_of(self.address) - self.withdrawals.total_pending
            if amount <= 0:
                raise InsufficientFunds("Nothing to withdraw beyond pending payments")

            result = call_external(self.bank.transfer, self.address, holder, amount)
            if not result.ok or result.value is False:
                raise TransferFailed(f"Emergency withdrawal of {amount} to {holder} failed")

            self.events.emit(events.EMERGENCY_WITHDRAWAL, self.clock(), to=holder, amount=amount)
            logger.warning(f"Emergency withdrawal: {amount} sent to {holder}")
            return amount

    def update_ai_parameters(self, capability: Capability, new_impact_limit: int,
                             curve_factor: int):
        """Tune the price impact limit and curve factor. Every change is audited."""
        with self._non_reentrant(), self._atomic():
            holder = self.checker.require(capability, Role.ADMIN, self.address)
            if not 0 < new_impact_limit <= MAX_PRICE_IMPACT_LIMIT:
                raise InvalidParameter(
                    f"Price impact limit must be in (0, {MAX_PRICE_IMPACT_LIMIT}]"
                )
            if not MIN_CURVE_FACTOR <= curve_factor <= MAX_CURVE_FACTOR:
                raise InvalidParameter(
                    f"Curve factor must be in [{MIN_CURVE_FACTOR}, {MAX_CURVE_FACTOR}]"
                )

            now = self.clock()
            for name, value in (('price_impact_limit', new_impact_limit),
                                ('curve_factor', curve_factor)):
                old = getattr(self.config, name)
                if old == value:
                    continue
                setattr(self.config, name, value)
                self.config_audit_log.append(
                    ConfigChange(name, old, value, holder, timestamp=now)
                )

            self.events.emit(events.PARAMETERS_UPDATED, now,
                             price_impact_limit=new_impact_limit,
                             curve_factor=curve_factor, changed_by=holder)
            logger.info(
                f"Parameters updated by {holder}: impact limit {new_impact_limit}%, "
                f"curve factor {curve_factor}"
            )

    def update_social_impact_score(self, capability: Capability, score: int):
        with self._non_reentrant(), self._atomic():
            holder = self.checker.require(capability, Role.ADMIN, self.address)
            old = self.growth.set_social_impact_score(score)
            self.events.emit(events.SOCIAL_IMPACT_UPDATED, self.clock(),
                             old_score=old, new_score=score, changed_by=holder)

    # ==================== View Functions ====================

    def get_growth_metrics(self) -> GrowthMetrics:
        return GrowthMetrics.from_dict(self.growth.metrics.to_dict())

    def reserves(self) -> ReserveState:
        return ReserveState(self.reserve_state.to_dict())

    def account(self, address: str) -> Optional[Account]:
        account = self.accounts.get(address)
        return Account.from_dict(account.to_dict()) if account else None

    def pending_withdrawal(self, address: str) -> int:
        return self.withdrawals.pending(address)

    @property
    def migrated(self) -> bool:
        return self.migration.migrated

    def venue_pair(self) -> str:
        """Venue pair address. Raises NotMigrated before migration."""
        return self.migration.pair_address()

    def get_stats(self) -> dict:
        metrics = self.growth.metrics
        return {
            'token_reserve': self.reserve_state.token_reserve,
            'currency_reserve': self.reserve_state.currency_reserve,
            'total_collected': self.reserve_state.total_collected,
            'issued_supply': self.token.total_supply,
            'pending_withdrawals': self.withdrawals.total_pending,
            'migrated': self.migration.migrated,
            'phase': self.migration.phase.value,
            'paused': self.pause_switch.paused,
            'emergency_mode': self.emergency_mode,
            'unique_holders': metrics.unique_holders,
            'total_transactions': metrics.total_transactions,
            'active_users': self.guards.active_users.count,
        }
