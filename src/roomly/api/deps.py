"""Request-scoped access to process-wide collaborators.

create_app() builds the settings, gateway adapter and notifier once and
stores them on app.state; routes receive them through these dependencies,
which tests replace with app.dependency_overrides.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from roomly.config import Settings
from roomly.domain.errors import InvalidIdentityDocumentError, ReconciliationError
from roomly.gateway.adapter import GatewayAdapter
from roomly.services.notifier import Notifier


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_gateway(request: Request) -> GatewayAdapter:
    return request.app.state.gateway


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def http_error(exc: ReconciliationError) -> HTTPException:
    """Translate a domain error into the response the caller can act on."""
    detail: dict = {"code": exc.code, "message": exc.message}
    if isinstance(exc, InvalidIdentityDocumentError):
        detail["problems"] = exc.problems
    return HTTPException(status_code=exc.status_code, detail=detail)
