"""Shared utilities for LifeTales."""

from lifetales.utils.logging import LogContext, RedactingFilter, get_logger, setup_logging

__all__ = ["LogContext", "RedactingFilter", "get_logger", "setup_logging"]
