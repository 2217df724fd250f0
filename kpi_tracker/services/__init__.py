"""
KPI Tracker
Business logic layer — parsers, validation, reconciliation, import ledger.

Services flush; blueprints (or the import pipeline's stores) commit.
"""
