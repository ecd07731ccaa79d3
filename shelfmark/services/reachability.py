from __future__ import annotations

from dataclasses import dataclass

import httpx

from shelfmark.services.urls import is_local_host

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; ShelfmarkBot/1.0)",
}

MESSAGE_LOCAL = "Local URL - skipped verification"
MESSAGE_REACHABLE = "URL is reachable"
MESSAGE_TIMEOUT = "Timeout - URL took too long to respond"
MESSAGE_UNVERIFIABLE = "Could not verify URL (CORS, DNS, or network error)"
WARNING_UNVERIFIABLE = "URL may be valid but unreachable from server"


@dataclass
class ProbeResult:
    reachable: bool
    message: str
    status: int | None = None
    warning: str | None = None

    @property
    def ambiguous(self) -> bool:
        return self.warning is not None

    def as_dict(self) -> dict:
        payload: dict = {"reachable": self.reachable, "message": self.message}
        if self.status is not None:
            payload["status"] = self.status
        if self.warning:
            payload["warning"] = self.warning
        return payload


def probe_url(url: str, timeout: float = 3.0) -> ProbeResult:
    """Check whether ``url`` answers a HEAD request with a 2xx/3xx status.

    Loopback and private-network hosts cannot be checked from the server and
    are reported reachable without a request. Every failure is returned as a
    result; nothing is raised.
    """
    if is_local_host(url):
        return ProbeResult(reachable=True, message=MESSAGE_LOCAL)

    try:
        with httpx.Client(
            follow_redirects=True, timeout=timeout, headers=DEFAULT_HEADERS
        ) as client:
            response = client.head(url)
    except httpx.TimeoutException:
        return ProbeResult(reachable=False, message=MESSAGE_TIMEOUT)
    except Exception:
        return ProbeResult(
            reachable=False,
            message=MESSAGE_UNVERIFIABLE,
            warning=WARNING_UNVERIFIABLE,
        )

    status = response.status_code
    reachable = 200 <= status < 400
    return ProbeResult(
        reachable=reachable,
        message=MESSAGE_REACHABLE if reachable else f"Server returned {status}",
        status=status,
    )
