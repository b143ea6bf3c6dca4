"""Ledger balance synchronization engine: keeps cached account balances consistent with their transactions."""
