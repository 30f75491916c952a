"""
Constant-product liquidity venue that migrated sales deposit into.
Implements constant product formula: x * y = k
"""
import logging
import math
from dataclasses import dataclass

import msgpack

from curve_sale.crypto import address_from_bytes, address_from_label
from curve_sale.errors import (
    InvalidAmount,
    TransferFailed,
    ValidationError,
)
from curve_sale.ledger import NativeBank, TokenLedger

logger = logging.getLogger(__name__)

# LP units locked forever on the first deposit into a pair
MIN_LIQUIDITY = 1000


@dataclass(frozen=True)
class LiquidityReceipt:
    """What a successful ``add_liquidity`` actually deposited."""
    token_used: int
    currency_used: int
    liquidity: int
    pair_address: str


class LiquidityPoolState:
    """
    One token/currency pair held at a constant product ratio.
    """

    def __init__(self, data: dict = None):
        if data is None:
            data = {
                'token_reserve': 0,
                'currency_reserve': 0,
                'lp_token_supply': 0,
                'lp_balances': {},
            }

        self.token_reserve = int(data['token_reserve'])
        self.currency_reserve = int(data['currency_reserve'])
        self.lp_token_supply = int(data['lp_token_supply'])
        self.lp_balances = {k: int(v) for k, v in data.get('lp_balances', {}).items()}

    def to_dict(self) -> dict:
        return {
            'token_reserve': str(self.token_reserve),
            'currency_reserve': str(self.currency_reserve),
            'lp_token_supply': str(self.lp_token_supply),
            'lp_balances': {k: str(v) for k, v in self.lp_balances.items()},
        }

    def quote_currency(self, token_amount: int) -> int:
        """Currency matching ``token_amount`` at the current pool ratio."""
        if self.token_reserve == 0:
            return token_amount
        return (token_amount * self.currency_reserve) // self.token_reserve

    def quote_tokens(self, currency_amount: int) -> int:
        """Tokens matching ``currency_amount`` at the current pool ratio."""
        if self.currency_reserve == 0:
            return currency_amount
        return (currency_amount * self.token_reserve) // self.currency_reserve

    def liquidity_for(self, token_amount: int, currency_amount: int) -> int:
        """LP units minted for a deposit. Mutates the supply on first deposit."""
        if self.lp_token_supply == 0:
            # Use geometric mean for initial liquidity
            liquidity = math.isqrt(token_amount * currency_amount)
            if liquidity <= MIN_LIQUIDITY:
                raise ValidationError("Initial liquidity too small")
            # Burn minimum liquidity (lock forever)
            self.lp_token_supply = MIN_LIQUIDITY
            return liquidity - MIN_LIQUIDITY

        from_token = (token_amount * self.lp_token_supply) // self.token_reserve
        from_currency = (currency_amount * self.lp_token_supply) // self.currency_reserve
        liquidity = min(from_token, from_currency)
        if liquidity == 0:
            raise ValidationError("Liquidity addition too small")
        return liquidity

    def __repr__(self) -> str:
        return (
            f"LiquidityPoolState("
            f"token_reserve={self.token_reserve}, "
            f"currency_reserve={self.currency_reserve}, "
            f"lp_supply={self.lp_token_supply})"
        )


class ConstantProductVenue:
    """
    Pairs of (token, native currency) pools.

    Each pair has its own address, which holds the deposited tokens on the
    token ledger and the deposited currency in the bank.
    """

    def __init__(self, bank: NativeBank, address: str = None):
        self.bank = bank
        self.address = address or address_from_label("venue:constant-product")
        self.pools: dict[str, LiquidityPoolState] = {}

    def pair_address(self, token_address: str) -> str:
        return address_from_bytes(b"pair:" + bytes.fromhex(token_address[2:]))

    def get_pool(self, token_address: str) -> LiquidityPoolState:
        return self.pools.get(token_address) or LiquidityPoolState()

    def add_liquidity(self, provider: str, token: TokenLedger, token_desired: int,
                      currency_desired: int, min_token: int, min_currency: int,
                      deadline: int, now: int) -> LiquidityReceipt:
        """
        Deposit tokens and currency into the pair for ``token``.

        Tokens are pulled with the allowance ``provider`` granted the venue;
        currency is moved from ``provider`` through the bank.

        Raises:
            ValidationError: expired deadline, slippage bounds or a deposit
                too small to mint liquidity
            TransferFailed: the currency transfer was refused
        """
        if now > deadline:
            raise ValidationError(f"Deadline {deadline} expired at {now}")
        if token_desired <= 0 or currency_desired <= 0:
            raise InvalidAmount("Cannot add zero liquidity")

        pool = self.get_pool(token.address)
        token_used, currency_used = self._optimal_amounts(
            pool, token_desired, currency_desired, min_token, min_currency
        )

        pair = self.pair_address(token.address)
        token.transfer_from(self.address, provider, pair, token_used)
        if not self.bank.transfer(provider, pair, currency_used):
            raise TransferFailed(f"Currency transfer of {currency_used} to {pair} failed")

        liquidity = pool.liquidity_for(token_used, currency_used)
        pool.lp_balances[provider] = pool.lp_balances.get(provider, 0) + liquidity
        pool.lp_token_supply += liquidity
        pool.token_reserve += token_used
        pool.currency_reserve += currency_used
        self.pools[token.address] = pool

        logger.info(
            f"Liquidity added to {pair}: {token_used} tokens, {currency_used} currency, "
            f"{liquidity} LP to {provider}"
        )
        return LiquidityReceipt(token_used, currency_used, liquidity, pair)

    def _optimal_amounts(self, pool: LiquidityPoolState, token_desired: int,
                         currency_desired: int, min_token: int, min_currency: int):
        if pool.token_reserve == 0 and pool.currency_reserve == 0:
            return token_desired, currency_desired

        currency_optimal = pool.quote_currency(token_desired)
        if currency_optimal <= currency_desired:
            if currency_optimal < min_currency:
                raise ValidationError("Insufficient currency amount")
            return token_desired, currency_optimal

        token_optimal = pool.quote_tokens(currency_desired)
        if token_optimal < min_token:
            raise ValidationError("Insufficient token amount")
        return token_optimal, currency_desired

    def snapshot(self) -> bytes:
        return msgpack.packb(
            {token: pool.to_dict() for token, pool in self.pools.items()},
            use_bin_type=True,
        )

    def restore(self, blob: bytes) -> None:
        data = msgpack.unpackb(blob, raw=False)
        self.pools = {token: LiquidityPoolState(d) for token, d in data.items()}
