"""Test suite for the balance sync engine."""
