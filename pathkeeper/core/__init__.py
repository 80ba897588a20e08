"""Shared error and result types."""

from .errors import DomainError, DomainException, http_status_for
from .result import Result

__all__ = ["DomainError", "DomainException", "Result", "http_status_for"]
