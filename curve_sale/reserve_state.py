"""
Virtual reserve state used for curve pricing.
"""

from curve_sale.errors import InvalidParameter


class ReserveState:
    """
    Token-side and currency-side virtual reserves plus collected funds.

    Mutated only by accepted trades. Once the sale migrates the engine stops
    touching it, so it stays frozen at its final values.
    """

    def __init__(self, data: dict = None):
        """
        Initialize reserve state.

        Args:
            data: Dict with reserves and collected funds (ints or int strings)
        """
        if data is None:
            data = {
                'token_reserve': 0,
                'currency_reserve': 0,
                'total_collected': 0,
            }

        self.token_reserve = int(data['token_reserve'])
        self.currency_reserve = int(data['currency_reserve'])
        self.total_collected = int(data.get('total_collected', 0))
        self.total_currency_in = int(data.get('total_currency_in', 0))
        self.total_currency_out = int(data.get('total_currency_out', 0))
        self._validate()

    @classmethod
    def initial(cls, token_reserve: int, currency_reserve: int) -> 'ReserveState':
        return cls({
            'token_reserve': token_reserve,
            'currency_reserve': currency_reserve,
        })

    def to_dict(self) -> dict:
        """
        Convert to dict for storage. Amounts exceed 64 bits, so they are
        stored as strings.
        """
        return {
            'token_reserve': str(self.token_reserve),
            'currency_reserve': str(self.currency_reserve),
            'total_collected': str(self.total_collected),
            'total_currency_in': str(self.total_currency_in),
            'total_currency_out': str(self.total_currency_out),
        }

    def apply_buy(self, amount_in: int, tokens_out: int):
        """Currency enters, tokens leave the curve."""
        self.token_reserve -= tokens_out
        self.currency_reserve += amount_in
        self.total_currency_in += amount_in
        self.total_collected = self.total_currency_in - self.total_currency_out

    def apply_sell(self, token_amount: int, currency_out: int):
        """Tokens return to the curve, currency is owed to the seller."""
        self.token_reserve += token_amount
        self.currency_reserve -= currency_out
        self.total_currency_out += currency_out
        self.total_collected = self.total_currency_in - self.total_currency_out

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"ReserveState("
            f"token_reserve={self.token_reserve}, "
            f"currency_reserve={self.currency_reserve}, "
            f"total_collected={self.total_collected})"
        )

    def _validate(self):
        """Ensure state consistency."""
        if self.token_reserve < 0 or self.currency_reserve < 0:
            raise InvalidParameter("Reserves cannot be negative")

        if self.total_currency_in < 0 or self.total_currency_out < 0:
            raise InvalidParameter("Currency flows cannot be negative")

        expected = self.total_currency_in - self.total_currency_out
        if self.total_collected != expected and (self.total_currency_in or self.total_currency_out):
            raise InvalidParameter(
                f"Collected funds {self.total_collected} do not match net flow {expected}"
            )
