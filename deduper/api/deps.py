"""Request dependencies"""

from fastapi import Request

from deduper.security import WebhookAuthenticator
from deduper.services.reconciler import ReconciliationEngine


def get_engine(request: Request) -> ReconciliationEngine:
    """Reconciliation engine created at startup"""
    return request.app.state.engine


def get_authenticator(request: Request) -> WebhookAuthenticator:
    """Webhook authenticator created at startup"""
    return request.app.state.webhook_authenticator
