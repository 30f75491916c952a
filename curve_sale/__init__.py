"""
curve_sale: bonding-curve token sale with one-way migration to a liquidity venue.
"""
from curve_sale.engine import SaleEngine
from curve_sale.factory import SaleFactory

__all__ = ["SaleEngine", "SaleFactory"]
