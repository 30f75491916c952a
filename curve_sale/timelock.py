"""
Delayed execution of privileged sale calls.

An admin queues a call with an execution time at least ``delay`` seconds in
the future. Once that time has passed (and before the grace period runs out)
anyone holding the admin capability can execute it; the timelock then invokes
the target with the capability it was granted for that target.
"""
import logging
import time
from typing import Callable

import msgpack

from curve_sale.access import Capability, PermissionChecker, Role
from curve_sale.crypto import address_from_label, generate_hash
from curve_sale.errors import InvalidParameter, TimelockError, Unauthorized

logger = logging.getLogger(__name__)

ONE_DAY = 86400
MIN_DELAY = 2 * ONE_DAY
MAX_DELAY = 30 * ONE_DAY
GRACE_PERIOD = 14 * ONE_DAY


class Timelock:
    def __init__(self, checker: PermissionChecker, delay: int = MIN_DELAY,
                 clock: Callable[[], int] = None, address: str = None):
        if not MIN_DELAY <= delay <= MAX_DELAY:
            raise InvalidParameter(f"Delay must be in [{MIN_DELAY}, {MAX_DELAY}] seconds")
        self.checker = checker
        self.delay = delay
        self.clock = clock or (lambda: int(time.time()))
        self.address = address or address_from_label("timelock")
        self.queued: dict[bytes, dict] = {}
        self._target_capabilities: dict[str, Capability] = {}

    def assign_capability(self, capability: Capability):
        """Hand the timelock a capability it will present to one target."""
        if capability.holder != self.address:
            raise Unauthorized(f"Capability is held by {capability.holder}, not the timelock")
        self._target_capabilities[capability.scope] = capability

    @staticmethod
    def transaction_id(target_address: str, method: str, args: tuple, eta: int) -> bytes:
        payload = msgpack.packb(
            [target_address, method, [str(a) for a in args], eta], use_bin_type=True
        )
        return generate_hash(payload)

    def queue_transaction(self, capability: Capability, target, method: str,
                          args: tuple, eta: int) -> bytes:
        self.checker.require(capability, Role.ADMIN, self.address)
        now = self.clock()
        if eta < now + self.delay:
            raise TimelockError(
                f"Estimated execution time must satisfy delay ({eta} < {now + self.delay})"
            )

        tx_id = self.transaction_id(target.address, method, args, eta)
        self.queued[tx_id] = {'target': target.address, 'method': method, 'eta': eta}
        logger.info(f"Queued {method} on {target.address} for {eta} ({tx_id.hex()[:8]})")
        return tx_id

    def cancel_transaction(self, capability: Capability, target, method: str,
                           args: tuple, eta: int):
        self.checker.require(capability, Role.ADMIN, self.address)
        tx_id = self.transaction_id(target.address, method, args, eta)
        if self.queued.pop(tx_id, None) is None:
            raise TimelockError("Transaction hasn't been queued")
        logger.info(f"Cancelled {method} on {target.address} ({tx_id.hex()[:8]})")

    def execute_transaction(self, capability: Capability, target, method: str,
                            args: tuple, eta: int):
        """
        Run a queued call.

        Raises:
            TimelockError: not queued, executed before ``eta`` or after the
                grace period
        """
        self.checker.require(capability, Role.ADMIN, self.address)
        tx_id = self.transaction_id(target.address, method, args, eta)
        if tx_id not in self.queued:
            raise TimelockError("Transaction hasn't been queued")

        now = self.clock()
        if now < eta:
            raise TimelockError("Transaction hasn't surpassed time lock delay")
        if now > eta + GRACE_PERIOD:
            raise TimelockError("Transaction is stale")

        target_capability = self._target_capabilities.get(target.address)
        if target_capability is None:
            raise Unauthorized(f"Timelock holds no capability for {target.address}")

        entry = self.queued.pop(tx_id)
        try:
            result = getattr(target, method)(target_capability, *args)
        except Exception:
            self.queued[tx_id] = entry
            raise

        logger.info(f"Executed {method} on {target.address} ({tx_id.hex()[:8]})")
        return result
