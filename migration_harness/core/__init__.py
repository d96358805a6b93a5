"""Logging, errors, privilege guard and cleanup."""
