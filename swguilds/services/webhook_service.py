"""
swguilds.services.webhook_service — Discord webhook delivery
==============================================================

Every Discord notification (approvals, absences, news, reminders) is a
single ``POST {"content": ...}`` to an incoming-webhook URL.  There is no
retry: a failed delivery is logged and, for user-triggered sends,
reported back as an error.
"""

from __future__ import annotations

import logging

import httpx

from swguilds.services.errors import WebhookError

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 10


async def post_webhook(url: str, content: str, *, client: httpx.AsyncClient | None = None) -> None:
    """Send *content* to a Discord webhook.

    Raises
    ------
    WebhookError
        On a transport error or a non-2xx response.
    """
    try:
        if client is not None:
            resp = await client.post(url, json={"content": content})
        else:
            async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_SECONDS) as own_client:
                resp = await own_client.post(url, json={"content": content})
    except httpx.HTTPError as exc:
        raise WebhookError(f"Webhook request failed: {exc}") from exc

    if resp.status_code >= 300:
        raise WebhookError(f"Webhook returned {resp.status_code}: {resp.text[:200]}")


async def send_quietly(url: str | None, content: str) -> bool:
    """Fire-and-forget variant for background tasks.

    Returns ``True`` when delivered; failures are only logged.
    """
    if not url:
        return False
    try:
        await post_webhook(url, content)
    except WebhookError:
        logger.warning("Discord webhook delivery failed", exc_info=True)
        return False
    return True
