"""
Test Suite: sale engine trading, withdrawals and administration
"""
import pytest

from curve_sale import events
from curve_sale.config import TOKEN_UNIT, SaleConfig
from curve_sale.crypto import ZERO_ADDRESS, address_from_label
from curve_sale.errors import (
    AlreadyMigrated,
    AmountExceedsLimit,
    AmountTooLow,
    EmergencyModeRequired,
    ExceededRateLimit,
    ExceedsPriceImpact,
    ExceedsTotalSupply,
    InsufficientBalance,
    InsufficientFunds,
    InsufficientReserve,
    InvalidAddress,
    InvalidAmount,
    InvalidParameter,
    MaxUsersReached,
    NoPendingPayments,
    NotMigrated,
    TradingPaused,
    TransferFailed,
    Unauthorized,
)
from curve_sale.growth import ONE_DAY

TENTH = TOKEN_UNIT // 10


def state_of(engine):
    return (engine.export_state(), engine.token.to_dict(), dict(engine.bank.balances))


class TestBuy:
    def test_launch_buy(self, engine, alice):
        result = engine.buy(alice, TENTH)

        assert result['tokens_out'] == 15_500_000 * TOKEN_UNIT
        assert engine.token.balance_of(alice) == result['tokens_out']
        assert engine.bank.balance_of(engine.address) == TENTH
        assert engine.bank.balance_of(alice) == 1000 * TOKEN_UNIT - TENTH

    def test_reserve_deltas_exact(self, engine, alice):
        before = engine.reserves()

        result = engine.buy(alice, TENTH)

        after = engine.reserves()
        assert after.token_reserve == before.token_reserve - result['tokens_out']
        assert after.currency_reserve == before.currency_reserve + TENTH
        assert after.total_collected == TENTH

    def test_quote_matches_execution(self, engine, alice, bob):
        engine.buy(alice, TENTH)
        quote = engine.purchase_return(TENTH)

        assert engine.buy(bob, TENTH)['tokens_out'] == quote

    def test_events_emitted(self, engine, alice):
        engine.buy(alice, TENTH)

        names = [e.name for e in engine.events.events]
        assert names == [events.TRADE_EXECUTED, events.RESERVES_UPDATED]
        trade = engine.events.events[0]
        assert trade.data['trader'] == alice
        assert trade.data['side'] == 'buy'

    def test_bounds(self, engine, alice):
        with pytest.raises(AmountTooLow):
            engine.buy(alice, TOKEN_UNIT // 1000 - 1)
        with pytest.raises(AmountExceedsLimit):
            engine.buy(alice, 10 * TOKEN_UNIT + 1)

    def test_capacity(self, engine, alice):
        # 10 currency at launch prices would issue 1.55 billion tokens
        with pytest.raises(ExceedsTotalSupply):
            engine.buy(alice, 10 * TOKEN_UNIT)
        assert engine.token.total_supply == 0

    def test_reserve_buffer(self, make_engine, alice):
        engine = make_engine(SaleConfig(
            initial_token_reserve=1_000_000 * TOKEN_UNIT,
            total_supply_cap=10_000_000 * TOKEN_UNIT,
            migration_threshold=9_000_000 * TOKEN_UNIT,
            max_trade=100 * TOKEN_UNIT,
            price_impact_limit=20,
        ))
        with pytest.raises(InsufficientReserve):
            engine.buy(alice, 96 * TOKEN_UNIT)

    def test_price_impact(self, make_engine, alice):
        engine = make_engine(SaleConfig(
            initial_token_reserve=10_000_000 * TOKEN_UNIT,
            max_trade=20 * TOKEN_UNIT,
        ))
        engine.buy(alice, 10 * TOKEN_UNIT)
        with pytest.raises(ExceedsPriceImpact):
            engine.buy(alice, 13 * TOKEN_UNIT)

    def test_insufficient_currency(self, engine):
        poor = address_from_label("poor")
        with pytest.raises(InsufficientFunds):
            engine.buy(poor, TENTH)
        assert engine.account(poor) is None

    def test_zero_address_rejected(self, engine):
        with pytest.raises(InvalidAddress):
            engine.buy(ZERO_ADDRESS, TENTH)

    def test_cap_never_exceeded(self, engine, alice, bob, clock):
        for i in range(20):
            buyer = alice if i % 2 else bob
            try:
                engine.buy(buyer, TOKEN_UNIT)
            except (AlreadyMigrated, ExceedsTotalSupply, ExceededRateLimit):
                pass
            clock.advance(3600)
            assert engine.token.total_supply <= engine.config.total_supply_cap


class TestRateLimit:
    def test_sixth_action_in_window_rejected(self, engine, alice, clock):
        for _ in range(5):
            engine.buy(alice, TENTH)

        with pytest.raises(ExceededRateLimit):
            engine.buy(alice, TENTH)

        clock.advance(3600)
        engine.buy(alice, TENTH)
        assert engine.account(alice).action_count == 1

    def test_rejected_buy_leaves_no_trace(self, engine, alice):
        for _ in range(5):
            engine.buy(alice, TENTH)
        before = state_of(engine)
        event_count = len(engine.events.events)

        with pytest.raises(ExceededRateLimit):
            engine.buy(alice, TENTH)

        assert state_of(engine) == before
        assert len(engine.events.events) == event_count


class TestActiveUsers:
    def test_cap(self, make_engine, alice, bob, carol):
        engine = make_engine(SaleConfig(max_active_users=2))
        engine.buy(alice, TENTH)
        engine.buy(bob, TENTH)

        with pytest.raises(MaxUsersReached):
            engine.buy(carol, TENTH)

        engine.buy(alice, TENTH)
        assert engine.get_stats()['active_users'] == 2


class TestSell:
    def test_sell_queues_withdrawal(self, engine, alice):
        engine.buy(alice, TENTH)
        token_amount = 1_000_000 * TOKEN_UNIT
        quote = engine.sale_return(token_amount)
        reserves_before = engine.reserves()

        result = engine.sell(alice, token_amount)

        assert result['currency_out'] == quote
        assert engine.pending_withdrawal(alice) == quote
        assert engine.token.balance_of(alice) == 14_500_000 * TOKEN_UNIT
        reserves_after = engine.reserves()
        assert reserves_after.token_reserve == reserves_before.token_reserve + token_amount
        assert reserves_after.currency_reserve == reserves_before.currency_reserve - quote
        assert engine.events.named(events.WITHDRAWAL_QUEUED)[0].data['amount'] == quote

    def test_oversell_rejected_without_mutation(self, engine, alice):
        engine.buy(alice, TENTH)
        before = state_of(engine)
        balance = engine.token.balance_of(alice)

        with pytest.raises(InsufficientBalance):
            engine.sell(alice, balance + 1)

        assert state_of(engine) == before

    def test_zero_sell(self, engine, alice):
        with pytest.raises(InvalidAmount):
            engine.sell(alice, 0)

    def test_sell_while_paused(self, engine, alice, pauser_cap):
        engine.buy(alice, TENTH)
        engine.pause(pauser_cap)
        with pytest.raises(TradingPaused):
            engine.sell(alice, TOKEN_UNIT)


class TestWithdraw:
    def test_withdraw_pays_pending_once(self, engine, alice):
        engine.buy(alice, TENTH)
        engine.sell(alice, 1_000_000 * TOKEN_UNIT)
        pending = engine.pending_withdrawal(alice)
        balance_before = engine.bank.balance_of(alice)

        assert engine.withdraw(alice) == pending
        assert engine.pending_withdrawal(alice) == 0
        assert engine.bank.balance_of(alice) == balance_before + pending
        with pytest.raises(NoPendingPayments):
            engine.withdraw(alice)

    def test_underfunded_withdraw(self, engine, alice):
        """The virtual currency reserve can owe more than was deposited."""
        tokens = engine.buy(alice, TENTH)['tokens_out']
        engine.sell(alice, tokens)
        pending = engine.pending_withdrawal(alice)
        assert pending > TENTH

        with pytest.raises(InsufficientFunds):
            engine.withdraw(alice)
        assert engine.pending_withdrawal(alice) == pending

    def test_allowed_while_paused(self, engine, alice, pauser_cap):
        engine.buy(alice, TENTH)
        engine.sell(alice, 1_000_000 * TOKEN_UNIT)
        engine.pause(pauser_cap)

        assert engine.withdraw(alice) > 0

    def test_reentrant_withdraw_fails_transfer(self, engine, alice):
        engine.buy(alice, TENTH)
        engine.sell(alice, 1_000_000 * TOKEN_UNIT)
        pending = engine.pending_withdrawal(alice)
        engine.bank.register_receive_hook(alice, lambda sender, amount: engine.withdraw(alice))

        with pytest.raises(TransferFailed):
            engine.withdraw(alice)

        assert engine.pending_withdrawal(alice) == pending
        assert not engine.events.named(events.WITHDRAWAL_PAID)
        assert engine.get_stats()['pending_withdrawals'] == pending

    def test_pending_cleared_during_transfer(self, engine, alice):
        engine.buy(alice, TENTH)
        engine.sell(alice, 1_000_000 * TOKEN_UNIT)
        seen = []
        engine.bank.register_receive_hook(
            alice, lambda sender, amount: seen.append(engine.pending_withdrawal(alice))
        )

        engine.withdraw(alice)

        assert seen == [0]


class TestGrowth:
    def test_metrics_follow_trades(self, engine, alice, bob, clock):
        engine.buy(alice, TENTH)
        engine.buy(alice, TENTH)
        engine.buy(bob, TENTH)
        clock.advance(ONE_DAY)
        engine.buy(bob, TENTH)

        metrics = engine.get_growth_metrics()
        assert metrics.unique_holders == 2
        assert metrics.total_transactions == 4
        assert metrics.engagement_score == 1
        assert metrics.last_update == clock.now

    def test_failed_trade_not_counted(self, engine, alice):
        with pytest.raises(AmountTooLow):
            engine.buy(alice, 1)
        assert engine.get_growth_metrics().total_transactions == 0


class TestAdministration:
    def test_pause_blocks_buys(self, engine, alice, pauser_cap):
        engine.pause(pauser_cap)
        with pytest.raises(TradingPaused):
            engine.buy(alice, TENTH)

        engine.unpause(pauser_cap)
        engine.buy(alice, TENTH)

    def test_pause_requires_capability(self, engine, emergency_cap):
        with pytest.raises(Unauthorized):
            engine.pause(emergency_cap)
        assert not engine.paused

    def test_update_ai_parameters(self, engine, admin_cap):
        engine.update_ai_parameters(admin_cap, 15, 150)

        assert engine.config.price_impact_limit == 15
        assert engine.config.curve_factor == 150
        changes = [(c.parameter, c.old_value, c.new_value) for c in engine.config_audit_log]
        assert changes == [('price_impact_limit', 10, 15), ('curve_factor', 100, 150)]
        assert engine.events.named(events.PARAMETERS_UPDATED)

    @pytest.mark.parametrize("limit,factor", [(21, 100), (0, 100), (10, 49), (10, 201)])
    def test_update_ai_parameters_bounds(self, engine, admin_cap, limit, factor):
        with pytest.raises(InvalidParameter):
            engine.update_ai_parameters(admin_cap, limit, factor)
        assert engine.config.price_impact_limit == 10
        assert engine.config.curve_factor == 100
        assert engine.config_audit_log == []

    def test_update_ai_parameters_requires_admin(self, engine, pauser_cap):
        with pytest.raises(Unauthorized):
            engine.update_ai_parameters(pauser_cap, 15, 150)

    def test_curve_factor_changes_quotes(self, engine, admin_cap):
        before = engine.purchase_return(TENTH)
        engine.update_ai_parameters(admin_cap, 10, 200)
        assert engine.purchase_return(TENTH) == before * 2

    def test_social_impact_score(self, engine, admin_cap):
        engine.update_social_impact_score(admin_cap, 42)
        assert engine.get_growth_metrics().social_impact_score == 42
        with pytest.raises(InvalidParameter):
            engine.update_social_impact_score(admin_cap, 101)
        assert engine.get_growth_metrics().social_impact_score == 42


class TestEmergency:
    def test_requires_emergency_mode(self, engine, emergency_cap):
        with pytest.raises(EmergencyModeRequired):
            engine.emergency_withdraw(emergency_cap)

    def test_sweeps_all_but_pending(self, engine, alice, emergency_cap):
        engine.buy(alice, TOKEN_UNIT)
        engine.sell(alice, 1_000_000 * TOKEN_UNIT)
        pending = engine.pending_withdrawal(alice)
        engine.set_emergency_mode(emergency_cap, True)

        swept = engine.emergency_withdraw(emergency_cap)

        assert swept == TOKEN_UNIT - pending
        assert engine.bank.balance_of(emergency_cap.holder) == swept
        assert engine.withdraw(alice) == pending
        assert engine.events.named(events.EMERGENCY_MODE_CHANGED)[0].data['enabled'] is True

    def test_emergency_mode_halts_trading(self, engine, alice, emergency_cap):
        engine.buy(alice, TOKEN_UNIT // 10)
        engine.set_emergency_mode(emergency_cap, True)

        with pytest.raises(TradingPaused):
            engine.buy(alice, TOKEN_UNIT // 10)
        with pytest.raises(TradingPaused):
            engine.sell(alice, TOKEN_UNIT)

        engine.set_emergency_mode(emergency_cap, False)
        engine.sell(alice, TOKEN_UNIT)
        assert engine.withdraw(alice) > 0

    def test_nothing_to_sweep(self, engine, emergency_cap):
        engine.set_emergency_mode(emergency_cap, True)
        with pytest.raises(InsufficientFunds):
            engine.emergency_withdraw(emergency_cap)

    def test_requires_emergency_role(self, engine, pauser_cap):
        with pytest.raises(Unauthorized):
            engine.set_emergency_mode(pauser_cap, True)
        assert not engine.emergency_mode


def test_venue_pair_before_migration(engine):
    with pytest.raises(NotMigrated):
        engine.venue_pair()


def test_export_state_snapshot_roundtrip(engine, alice):
    blob = engine.snapshot()
    engine.buy(alice, TENTH)

    engine.restore(blob)

    assert engine.reserves().token_reserve == engine.config.initial_token_reserve
    assert engine.account(alice) is None
    assert engine.get_growth_metrics().total_transactions == 0
