"""
Core modules for Garage Ledger.

This package contains the pure computation: stock reconstruction,
debt reconciliation, reporting and the shared money/period helpers.
"""
