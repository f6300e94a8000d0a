"""Dealer location parsing and ward matching."""
