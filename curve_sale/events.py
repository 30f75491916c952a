"""
Engine events.

Events are staged while a call runs and only published once it commits, so a
rolled-back call leaves no events behind.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)

TRADE_EXECUTED = "TradeExecuted"
RESERVES_UPDATED = "ReservesUpdated"
WITHDRAWAL_QUEUED = "WithdrawalQueued"
WITHDRAWAL_PAID = "WithdrawalPaid"
MIGRATION_COMPLETED = "MigrationCompleted"
EMERGENCY_MODE_CHANGED = "EmergencyModeChanged"
EMERGENCY_WITHDRAWAL = "EmergencyWithdrawal"
PARAMETERS_UPDATED = "ParametersUpdated"
SOCIAL_IMPACT_UPDATED = "SocialImpactUpdated"


@dataclass(frozen=True)
class SaleEvent:
    name: str
    data: dict = field(default_factory=dict)
    timestamp: int = 0


class EventLog:
    def __init__(self):
        self.events: list[SaleEvent] = []
        self._staged: list[SaleEvent] = []
        self._subscribers: list[Callable[[SaleEvent], None]] = []

    def subscribe(self, callback: Callable[[SaleEvent], None]):
        self._subscribers.append(callback)

    def emit(self, name: str, timestamp: int = 0, **data):
        self._staged.append(SaleEvent(name, data, timestamp))

    def commit(self):
        staged, self._staged = self._staged, []
        for event in staged:
            self.events.append(event)
            for callback in self._subscribers:
                try:
                    callback(event)
                except Exception as e:
                    logger.error(f"Event subscriber failed on {event.name}: {e}")

    def rollback(self):
        if self._staged:
            logger.debug(f"Discarding {len(self._staged)} staged events")
        self._staged = []

    def named(self, name: str) -> list[SaleEvent]:
        return [e for e in self.events if e.name == name]
