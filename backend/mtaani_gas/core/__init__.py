"""Shared configuration, logging and security utilities."""
