"""Root of the datastory exception hierarchy."""

from __future__ import annotations


class DatastoryError(Exception):
    """Base exception for datastory failures."""
    pass
