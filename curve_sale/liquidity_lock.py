"""
Time-locked custody of tokens, typically venue liquidity after migration.
"""
import logging
import time
from dataclasses import dataclass, asdict
from typing import Callable

from curve_sale.crypto import address_from_label
from curve_sale.errors import (
    InvalidAmount,
    InvalidParameter,
    LockReleased,
    StillLocked,
    Unauthorized,
    UnknownLock,
)
from curve_sale.ledger import TokenLedger

logger = logging.getLogger(__name__)


@dataclass
class LockPosition:
    owner: str
    token: str
    amount: int
    unlock_time: int
    released: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data['amount'] = str(self.amount)
        return data


class LiquidityLock:
    def __init__(self, clock: Callable[[], int] = None, address: str = None):
        self.clock = clock or (lambda: int(time.time()))
        self.address = address or address_from_label("liquidity-lock")
        self.positions: dict[int, LockPosition] = {}
        self._next_lock_id = 0

    def lock_liquidity(self, owner: str, token: TokenLedger, amount: int,
                       duration: int) -> int:
        """
        Pull ``amount`` of ``token`` from ``owner`` (using the allowance owner
        granted this lock) and hold it for ``duration`` seconds.

        Returns:
            The lock id
        """
        if amount <= 0:
            raise InvalidAmount("Lock amount must be positive")
        if duration <= 0:
            raise InvalidParameter("Lock duration must be positive")

        token.transfer_from(self.address, owner, self.address, amount)

        lock_id = self._next_lock_id
        self._next_lock_id += 1
        unlock_time = self.clock() + duration
        self.positions[lock_id] = LockPosition(owner, token.address, amount, unlock_time)

        logger.info(f"Locked {amount} {token.symbol} for {owner} until {unlock_time} (lock {lock_id})")
        return lock_id

    def unlock_liquidity(self, caller: str, token: TokenLedger, lock_id: int) -> int:
        position = self.positions.get(lock_id)
        if position is None or position.token != token.address:
            raise UnknownLock(f"Lock {lock_id} not found for {token.symbol}")
        if position.owner != caller:
            raise Unauthorized(f"{caller} does not own lock {lock_id}")
        if position.released:
            raise LockReleased(f"Lock {lock_id} was already released")

        now = self.clock()
        if now < position.unlock_time:
            raise StillLocked(
                f"Lock {lock_id} is still locked for {position.unlock_time - now}s"
            )

        token.transfer(self.address, caller, position.amount)
        position.released = True
        logger.info(f"Unlocked {position.amount} {token.symbol} for {caller} (lock {lock_id})")
        return position.amount

    def locked_positions(self, owner: str = None) -> list[LockPosition]:
        return [p for p in self.positions.values()
                if not p.released and (owner is None or p.owner == owner)]

    def total_locked(self, token_address: str) -> int:
        return sum(p.amount for p in self.positions.values()
                   if p.token == token_address and not p.released)
