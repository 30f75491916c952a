"""
In-memory fungible token ledger and native currency bank.

These are the reference collaborators the sale engine mints, burns and pays
through. Both can be checkpointed and restored, so a failed engine call leaves
no trace in them.
"""
import logging
from typing import Callable, Optional

import msgpack

from curve_sale.crypto import address_from_label, is_valid_address, is_zero_address
from curve_sale.errors import (
    ExceedsTotalSupply,
    InsufficientAllowance,
    InsufficientBalance,
    InvalidAddress,
    InvalidAmount,
    Unauthorized,
)

logger = logging.getLogger(__name__)


def _require_address(address: str, role: str):
    if not is_valid_address(address) or is_zero_address(address):
        raise InvalidAddress(f"Invalid {role} address: {address!r}")


def _require_amount(amount: int):
    if not isinstance(amount, int) or amount < 0:
        raise InvalidAmount(f"Invalid amount: {amount!r}")


def _pack_amounts(amounts: dict) -> dict:
    return {k: str(v) for k, v in amounts.items()}


def _unpack_amounts(data: dict) -> dict:
    return {k: int(v) for k, v in data.items()}


class TokenLedger:
    """
    Capped fungible token.

    Only the minter may mint; burning is open to the minter and to the holder
    itself. ``total_supply`` never exceeds ``max_supply``.
    """

    def __init__(self, name: str, symbol: str, max_supply: int,
                 minter: str, decimals: int = 18, address: str = None):
        _require_address(minter, "minter")
        self.name = name
        self.symbol = symbol
        self.decimals = decimals
        self.max_supply = max_supply
        self.minter = minter
        self.address = address or address_from_label(f"token:{symbol}:{minter}")

        self.balances: dict[str, int] = {}
        self.allowances: dict[str, dict[str, int]] = {}
        self.total_minted = 0
        self.total_burned = 0

    # ==================== View Functions ====================

    @property
    def total_supply(self) -> int:
        return self.total_minted - self.total_burned

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get(owner, {}).get(spender, 0)

    # ==================== State-Changing Functions ====================

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """
        Transfer tokens from sender to recipient.

        Raises:
            InsufficientBalance: If the sender holds less than ``amount``
        """
        _require_address(recipient, "recipient")
        _require_amount(amount)

        sender_balance = self.balance_of(sender)
        if sender_balance < amount:
            raise InsufficientBalance(
                f"Transfer amount exceeds balance ({amount} > {sender_balance})"
            )

        self.balances[sender] = sender_balance - amount
        self.balances[recipient] = self.balance_of(recipient) + amount
        return True

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        _require_address(spender, "spender")
        _require_amount(amount)
        self.allowances.setdefault(owner, {})[spender] = amount
        return True

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> bool:
        """Transfer tokens using an allowance granted by ``owner`` to ``spender``."""
        current_allowance = self.allowance(owner, spender)
        if current_allowance < amount:
            raise InsufficientAllowance(
                f"Insufficient allowance ({current_allowance} < {amount})"
            )

        self.transfer(owner, recipient, amount)
        self.allowances[owner][spender] = current_allowance - amount
        return True

    def mint(self, caller: str, to: str, amount: int) -> bool:
        """
        Mint new tokens (minter only).

        Raises:
            Unauthorized: If ``caller`` is not the minter
            ExceedsTotalSupply: If the mint would exceed ``max_supply``
        """
        if caller != self.minter:
            raise Unauthorized(f"{caller} is not the minter of {self.symbol}")
        _require_address(to, "recipient")
        _require_amount(amount)

        if self.total_supply + amount > self.max_supply:
            raise ExceedsTotalSupply(
                f"Mint would exceed max supply "
                f"({self.total_supply + amount} > {self.max_supply})"
            )

        self.total_minted += amount
        self.balances[to] = self.balance_of(to) + amount
        logger.debug(f"Minted {amount} {self.symbol} to {to}")
        return True

    def burn(self, caller: str, holder: str, amount: int) -> bool:
        """Burn tokens from ``holder``. Callable by the holder or the minter."""
        if caller not in (holder, self.minter):
            raise Unauthorized(f"{caller} may not burn tokens of {holder}")
        _require_amount(amount)

        balance = self.balance_of(holder)
        if balance < amount:
            raise InsufficientBalance(
                f"Burn amount exceeds balance ({amount} > {balance})"
            )

        self.balances[holder] = balance - amount
        self.total_burned += amount
        logger.debug(f"Burned {amount} {self.symbol} from {holder}")
        return True

    # ==================== Checkpointing ====================

    def to_dict(self) -> dict:
        return {
            'balances': _pack_amounts(self.balances),
            'allowances': {owner: _pack_amounts(spenders)
                           for owner, spenders in self.allowances.items()},
            'total_minted': str(self.total_minted),
            'total_burned': str(self.total_burned),
        }

    def snapshot(self) -> bytes:
        return msgpack.packb(self.to_dict(), use_bin_type=True)

    def restore(self, blob: bytes) -> None:
        data = msgpack.unpackb(blob, raw=False)
        self.balances = _unpack_amounts(data['balances'])
        self.allowances = {owner: _unpack_amounts(spenders)
                           for owner, spenders in data['allowances'].items()}
        self.total_minted = int(data['total_minted'])
        self.total_burned = int(data['total_burned'])


ReceiveHook = Callable[[str, int], Optional[bool]]


class NativeBank:
    """
    Native currency balances.

    ``transfer`` reports failure through its return value instead of raising.
    A recipient may register a receive hook which runs after the credit; if
    the hook raises or returns False the transfer is undone and reported as
    failed.
    """

    def __init__(self):
        self.balances: dict[str, int] = {}
        self.receive_hooks: dict[str, ReceiveHook] = {}

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def deposit(self, account: str, amount: int):
        """Credit currency from outside the system (genesis, faucets)."""
        _require_address(account, "account")
        _require_amount(amount)
        self.balances[account] = self.balance_of(account) + amount

    def register_receive_hook(self, account: str, hook: ReceiveHook):
        self.receive_hooks[account] = hook

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """Move currency. Returns False instead of raising on failure."""
        if not is_valid_address(recipient) or is_zero_address(recipient) or amount < 0:
            logger.warning(f"Rejected currency transfer to {recipient!r} of {amount!r}")
            return False

        sender_balance = self.balance_of(sender)
        if sender_balance < amount:
            logger.warning(
                f"Currency transfer from {sender} failed: balance {sender_balance} < {amount}"
            )
            return False

        self.balances[sender] = sender_balance - amount
        self.balances[recipient] = self.balance_of(recipient) + amount

        hook = self.receive_hooks.get(recipient)
        if hook is None:
            return True

        try:
            accepted = hook(sender, amount)
        except Exception as e:
            logger.warning(f"Receive hook of {recipient} raised: {e}")
            accepted = False

        if accepted is False:
            self.balances[recipient] -= amount
            self.balances[sender] += amount
            return False
        return True

    def snapshot(self) -> bytes:
        return msgpack.packb({'balances': _pack_amounts(self.balances)}, use_bin_type=True)

    def restore(self, blob: bytes) -> None:
        self.balances = _unpack_amounts(msgpack.unpackb(blob, raw=False)['balances'])
