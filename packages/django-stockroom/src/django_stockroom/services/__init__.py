"""Stockroom services.

Every state change of the stock ledger and of orders goes through these
functions; views and management commands are thin wrappers around them.
"""
