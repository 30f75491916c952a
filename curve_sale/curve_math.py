"""
Fixed-point helpers for the reserve curves.

Values are plain ints; "WAD" values carry 18 decimals.
"""
from curve_sale.config import WAD
from curve_sale.errors import InvalidAmount

# Fractional refinement passes in log2_wad. Each pass yields one binary digit.
LOG2_ITERATIONS = 5


def log2_wad(x: int) -> int:
    """
    Base-2 logarithm of a positive integer, returned at WAD scale.

    The integral part comes from the bit length. The fractional part is
    refined by repeated squaring of the normalised mantissa, one bit per
    iteration, so the result is exact only to 1/32.
    """
    if x <= 0:
        raise InvalidAmount("log2 of a non-positive value")

    n = x.bit_length() - 1
    result = n * WAD

    # Mantissa in [WAD, 2 * WAD)
    y = (x * WAD) >> n
    for i in range(1, LOG2_ITERATIONS + 1):
        y = y * y // WAD
        if y >= 2 * WAD:
            result += WAD >> i
            y //= 2
    return result


def mul_div(a: int, b: int, denominator: int) -> int:
    """floor(a * b / denominator)."""
    if denominator == 0:
        raise InvalidAmount("Division by zero")
    return a * b // denominator
