"""
swguilds.services.errors — Service-layer exceptions
=====================================================

Services raise these (or plain ``ValueError`` for bad input) and the API
layer maps them to HTTP status codes in
:func:`swguilds.api.deps.service_errors`.
"""

from __future__ import annotations


class NotFoundError(LookupError):
    """The requested row does not exist (or is not visible to the caller)."""


class ForbiddenError(PermissionError):
    """The caller is authenticated but not allowed to do this."""


class WebhookError(RuntimeError):
    """A Discord webhook call failed."""


class UpstreamError(RuntimeError):
    """A call to SwarFarm failed or returned nothing usable."""
