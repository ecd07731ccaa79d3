from __future__ import annotations

import logging

import httpx

from shelfmark.client.store import API_PREFIX
from shelfmark.client.types import PagePreview, PreviewFailure, ProbeOutcome

logger = logging.getLogger(__name__)

VERIFICATION_FAILED = "Verification failed"
PREVIEW_FAILED = "Failed to fetch preview"


class RemoteProber:
    """Asks the server whether a URL answers; never raises."""

    def __init__(self, http: httpx.AsyncClient):
        self.http = http

    async def probe(self, url: str) -> ProbeOutcome:
        try:
            response = await self.http.post(
                f"{API_PREFIX}/verify-url", json={"url": url}
            )
            payload = response.json()
            return ProbeOutcome(
                reachable=bool(payload["reachable"]),
                message=payload.get("message") or "",
                ambiguous=bool(payload.get("warning")),
            )
        except Exception as exc:
            logger.warning("Reachability probe for %s failed: %s", url, exc)
            return ProbeOutcome(
                reachable=False, message=VERIFICATION_FAILED, ambiguous=True
            )


class RemotePreviewFetcher:
    def __init__(self, http: httpx.AsyncClient):
        self.http = http

    async def fetch(self, url: str) -> PagePreview | PreviewFailure:
        try:
            response = await self.http.post(
                f"{API_PREFIX}/fetch-preview", json={"url": url}
            )
            payload = response.json()
        except Exception as exc:
            logger.warning("Preview fetch for %s failed: %s", url, exc)
            return PreviewFailure(message=PREVIEW_FAILED)

        if not response.is_success or not isinstance(payload, dict):
            message = PREVIEW_FAILED
            if isinstance(payload, dict):
                message = payload.get("error") or PREVIEW_FAILED
            return PreviewFailure(message=message, status_code=response.status_code)

        return PagePreview(
            title=payload.get("title") or "",
            description=payload.get("description") or "",
            image=payload.get("image") or "",
            favicon=payload.get("favicon") or "",
        )
