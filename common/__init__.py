"""Shared helpers: logging, auth, secrets, datetime parsing and audit."""
