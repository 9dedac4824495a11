import logging

import httpx
from fastapi.encoders import jsonable_encoder

from storefront.config import settings
from storefront.events import Event

logger = logging.getLogger(__name__)


def configured_urls() -> list[str]:
    if not settings.WEBHOOK_URLS:
        return []
    return [u.strip() for u in settings.WEBHOOK_URLS.split(",") if u.strip()]


def build_payload(event: Event) -> dict:
    return {
        "event": event.name,
        "occurred_at": event.occurred_at.isoformat(),
        "data": jsonable_encoder(event),
    }


class WebhookNotifier:
    """Posts every domain event to the configured webhook URLs."""

    def __init__(self, urls: list[str] | None = None, timeout: float | None = None, transport=None):
        self.urls = configured_urls() if urls is None else urls
        self.timeout = timeout or settings.WEBHOOK_TIMEOUT
        self._transport = transport

    def __call__(self, event: Event) -> list[dict]:
        return self.send(event)

    def send(self, event: Event) -> list[dict]:
        if not self.urls:
            return []

        payload = build_payload(event)
        results = []

        with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
            for url in self.urls:
                try:
                    resp = client.post(url, json=payload)
                    results.append({"url": url, "status": resp.status_code, "success": resp.is_success})
                    if not resp.is_success:
                        logger.warning("Webhook %s answered %d for %s", url, resp.status_code, event.name)
                except httpx.HTTPError as e:
                    logger.error("Webhook failed for %s: %s", url, e)
                    results.append({"url": url, "status": 0, "success": False, "error": str(e)})

        return results
