"""API routes"""

from deduper.api import submit, webhook

__all__ = ["submit", "webhook"]
