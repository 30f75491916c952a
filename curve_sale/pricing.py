"""
Bonding-curve pricing.

Two curve families are supported and selected per sale through
``SaleConfig.curve``:

- linear: constant-ratio pricing adjusted by engagement growth and
  active-user damping, with a minimum-rate floor
- logarithmic: issuance grows with the squared log2 distance travelled along
  the currency reserve

All functions are pure: they read a ``ReserveState`` and never mutate it, so
quotes match the mutating path exactly.
"""
from dataclasses import dataclass

from curve_sale.config import CURVE_LINEAR, CURVE_LOGARITHMIC, WAD
from curve_sale.curve_math import log2_wad, mul_div
from curve_sale.errors import InvalidAmount, InvalidParameter
from curve_sale.reserve_state import ReserveState

# Minimum issuance rate: smallest token units per smallest currency unit
MIN_TOKENS_PER_CURRENCY = 100

# A non-empty sale never quotes below one smallest currency unit
MIN_SALE_RETURN = 1

PERCENT_SQUARED = 10_000


@dataclass(frozen=True)
class PricingContext:
    """Activity inputs to the linear curve."""
    engagement_score: int = 0
    active_users: int = 0
    curve_factor: int = 100


class PricingCurve:
    """Shared quote contract. Subclasses supply the raw formulas."""

    name = ""

    def purchase_return(self, reserves: ReserveState, amount_in: int,
                        context: PricingContext = PricingContext()) -> int:
        """
        Tokens issued for ``amount_in`` currency.

        Raises:
            InvalidAmount: zero input, empty token reserve, or a quote that is
                zero or would exhaust the token reserve
        """
        if amount_in <= 0:
            raise InvalidAmount("Purchase amount must be positive")
        if reserves.token_reserve == 0:
            raise InvalidAmount("Token reserve is empty")

        tokens_out = self._tokens_out(reserves, amount_in, context)

        if tokens_out <= 0:
            raise InvalidAmount("Purchase amount too small to issue tokens")
        if tokens_out >= reserves.token_reserve:
            raise InvalidAmount(
                f"Quote {tokens_out} would exhaust token reserve {reserves.token_reserve}"
            )
        return tokens_out

    def sale_return(self, reserves: ReserveState, token_amount: int,
                    context: PricingContext = PricingContext()) -> int:
        """Currency owed for ``token_amount`` tokens, capped at the currency reserve."""
        if token_amount <= 0:
            raise InvalidAmount("Sale amount must be positive")
        if reserves.token_reserve == 0:
            raise InvalidAmount("Token reserve is empty")

        currency_out = min(
            self._currency_out(reserves, token_amount, context),
            reserves.currency_reserve,
        )
        if currency_out <= 0:
            raise InvalidAmount("Sale returns no currency")
        return currency_out

    def _tokens_out(self, reserves, amount_in, context) -> int:
        raise NotImplementedError

    def _currency_out(self, reserves, token_amount, context) -> int:
        raise NotImplementedError


class LinearCurve(PricingCurve):
    name = CURVE_LINEAR

    def _tokens_out(self, reserves, amount_in, context):
        if reserves.currency_reserve == 0:
            raise InvalidAmount("Currency reserve is empty")

        base = mul_div(amount_in, reserves.token_reserve, reserves.currency_reserve)

        growth_multiplier = 100 + context.engagement_score // 10
        damping = max(0, 100 - context.active_users * 2)
        tokens_out = base * growth_multiplier * damping // PERCENT_SQUARED
        tokens_out = tokens_out * context.curve_factor // 100

        return max(tokens_out, amount_in * MIN_TOKENS_PER_CURRENCY)

    def _currency_out(self, reserves, token_amount, context):
        raw = mul_div(token_amount, reserves.currency_reserve, reserves.token_reserve)
        return max(raw, MIN_SALE_RETURN)


class LogarithmicCurve(PricingCurve):
    name = CURVE_LOGARITHMIC

    def _tokens_out(self, reserves, amount_in, context):
        if reserves.currency_reserve == 0:
            raise InvalidAmount("Currency reserve is empty")

        distance = (log2_wad(reserves.currency_reserve + amount_in)
                    - log2_wad(reserves.currency_reserve))
        return reserves.token_reserve * distance * distance // (WAD * WAD)

    def _currency_out(self, reserves, token_amount, context):
        distance = (log2_wad(reserves.token_reserve + token_amount)
                    - log2_wad(reserves.token_reserve))
        return reserves.currency_reserve * distance // WAD


_CURVES = {
    CURVE_LINEAR: LinearCurve,
    CURVE_LOGARITHMIC: LogarithmicCurve,
}


def make_curve(kind: str) -> PricingCurve:
    try:
        return _CURVES[kind]()
    except KeyError:
        raise InvalidParameter(f"Unknown curve: {kind}") from None


def price_impact(trade_size: int, current_reserve: int) -> int:
    """
    Estimated price impact of a trade, as an integer percentage.

    Multiplies before dividing so that reserves larger than 100 units still
    report a non-zero impact.
    """
    if current_reserve <= 0:
        raise InvalidAmount("Reserve must be positive")
    if trade_size < 0:
        raise InvalidAmount("Trade size cannot be negative")
    return trade_size * 100 // current_reserve
