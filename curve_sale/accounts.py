"""
Per-address account records kept by the sale engine.
"""
from dataclasses import dataclass
from typing import Optional


@dataclass
class Account:
    """Rate-limit, withdrawal and activity bookkeeping for one address."""
    last_action_time: int = 0
    action_count: int = 0
    pending_withdrawal: int = 0
    is_active: bool = False
    last_activity_time: int = 0

    def to_dict(self) -> dict:
        return {
            'last_action_time': self.last_action_time,
            'action_count': self.action_count,
            'pending_withdrawal': str(self.pending_withdrawal),
            'is_active': self.is_active,
            'last_activity_time': self.last_activity_time,
        }

    @staticmethod
    def from_dict(data: dict) -> 'Account':
        return Account(
            last_action_time=data.get('last_action_time', 0),
            action_count=data.get('action_count', 0),
            pending_withdrawal=int(data.get('pending_withdrawal', 0)),
            is_active=data.get('is_active', False),
            last_activity_time=data.get('last_activity_time', 0),
        )


class AccountBook:
    """Accounts keyed by address, created lazily on first use."""

    def __init__(self):
        self._accounts: dict[str, Account] = {}

    def get_or_create(self, address: str) -> Account:
        if address not in self._accounts:
            self._accounts[address] = Account()
        return self._accounts[address]

    def get(self, address: str) -> Optional[Account]:
        return self._accounts.get(address)

    def __contains__(self, address: str) -> bool:
        return address in self._accounts

    def __len__(self) -> int:
        return len(self._accounts)

    def items(self):
        return self._accounts.items()

    def to_dict(self) -> dict:
        return {addr: account.to_dict() for addr, account in self._accounts.items()}

    def load(self, data: dict):
        """Replace all records in place, keeping references to the book valid."""
        self._accounts = {addr: Account.from_dict(d) for addr, d in data.items()}

    @staticmethod
    def from_dict(data: dict) -> 'AccountBook':
        book = AccountBook()
        book.load(data)
        return book
