"""
Pull-payment queue for sell proceeds.

Sells never push currency to the seller. They credit a pending balance that
the seller later claims with ``withdraw``.
"""
import logging

from curve_sale.accounts import AccountBook
from curve_sale.errors import InsufficientFunds, NoPendingPayments, TransferFailed
from curve_sale.external import call_external
from curve_sale.ledger import NativeBank

logger = logging.getLogger(__name__)


class WithdrawalQueue:
    def __init__(self, accounts: AccountBook):
        self.accounts = accounts
        # Currency owed to all sellers, reserved out of the engine balance
        self.total_pending = sum(a.pending_withdrawal for _, a in accounts.items())

    def pending(self, address: str) -> int:
        account = self.accounts.get(address)
        return account.pending_withdrawal if account else 0

    def credit(self, address: str, amount: int) -> int:
        account = self.accounts.get_or_create(address)
        account.pending_withdrawal += amount
        self.total_pending += amount
        logger.debug(f"Queued {amount} for {address} (pending {account.pending_withdrawal})")
        return account.pending_withdrawal

    def pay(self, address: str, bank: NativeBank, payer: str) -> int:
        """
        Pay out the full pending credit of ``address`` from ``payer``.

        The credit is zeroed before the transfer is attempted. If the
        transfer fails, TransferFailed is raised and the caller's checkpoint
        restores the credit.

        Raises:
            NoPendingPayments: nothing is owed
            InsufficientFunds: the payer balance cannot cover the credit
            TransferFailed: the bank refused the transfer
        """
        amount = self.pending(address)
        if amount == 0:
            raise NoPendingPayments(f"No pending payments for {address}")

        available = bank.balance_of(payer)
        if available < amount:
            raise InsufficientFunds(f"Insufficient funds: {available} < {amount}")

        self.accounts.get_or_create(address).pending_withdrawal = 0
        self.total_pending -= amount

        result = call_external(bank.transfer, payer, address, amount)
        if not result.ok or result.value is False:
            raise TransferFailed(
                f"Withdrawal of {amount} to {address} failed"
                + (f": {result.reason}" if not result.ok else "")
            )
        return amount
