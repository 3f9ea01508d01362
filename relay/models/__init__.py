"""Database models for the client core."""

from .models import PendingOperation
from .models import StoredCredentials

__all__ = [
    "PendingOperation",
    "StoredCredentials",
]
