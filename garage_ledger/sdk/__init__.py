"""
SDK for Garage Ledger.

Provides programmatic access to the stock and debt ledgers.
"""

from .shop_ledger import ShopLedger, StockReport, VehicleDebt

__all__ = ["ShopLedger", "StockReport", "VehicleDebt"]
