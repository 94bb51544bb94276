"""Services"""

from deduper.services.github_client import GitHubClient
from deduper.services.reconciler import ReconciliationEngine

__all__ = ["GitHubClient", "ReconciliationEngine"]
