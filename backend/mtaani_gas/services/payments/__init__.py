"""Simulated payments and stored payment methods."""
