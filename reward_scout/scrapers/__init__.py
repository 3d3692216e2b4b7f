"""Carrier site adapters."""

from .base import BrowserSession, SiteAdapter
from .virgin import VirginAtlanticAdapter, VirginAtlanticSession

__all__ = ["BrowserSession", "SiteAdapter", "VirginAtlanticAdapter", "VirginAtlanticSession"]
