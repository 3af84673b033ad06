"""Test suite for the ledger driver transaction core."""
