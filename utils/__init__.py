"""Shared helpers: time, errors and logging setup."""
