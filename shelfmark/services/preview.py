from __future__ import annotations

import warnings
from dataclasses import asdict, dataclass
from urllib.parse import quote, urljoin

import httpx
from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning

from shelfmark.services.reachability import DEFAULT_HEADERS
from shelfmark.services.urls import origin_of

_TITLE_META = (("property", "og:title"), ("name", "twitter:title"))
_DESCRIPTION_META = (
    ("property", "og:description"),
    ("name", "twitter:description"),
    ("name", "description"),
)
_IMAGE_META = (("property", "og:image"), ("name", "twitter:image"))
_FAVICON_RELS = ("icon", "shortcut icon", "apple-touch-icon")


class PreviewError(Exception):
    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class PagePreview:
    title: str = ""
    description: str = ""
    image: str = ""
    favicon: str = ""

    def as_dict(self) -> dict:
        return asdict(self)


def fetch_preview(
    url: str, timeout: float = 5.0, fallback_image_url: str = ""
) -> PagePreview:
    try:
        with httpx.Client(
            follow_redirects=True, timeout=timeout, headers=DEFAULT_HEADERS
        ) as client:
            response = client.get(url)
    except httpx.TimeoutException as exc:
        raise PreviewError("Timeout - page took too long to load", 408) from exc
    except httpx.HTTPError as exc:
        raise PreviewError("Failed to fetch preview data", 500) from exc

    if not response.is_success:
        raise PreviewError(f"Failed to fetch: {response.status_code}", 400)

    preview = extract_preview(response.text, url)
    if not preview.image and fallback_image_url:
        preview.image = fallback_image_url.format(url=quote(url, safe=""))
    return preview


def extract_preview(html: str, url: str) -> PagePreview:
    """Pull social-card metadata out of ``html``.

    Each field walks its fallback chain and stops at the first non-empty
    value. Image and favicon references that are not absolute are resolved
    against the origin of ``url``.
    """
    soup = _build_soup(html)

    title = _first_meta(soup, _TITLE_META)
    if not title and soup.title:
        title = soup.title.get_text(strip=True)

    preview = PagePreview(
        title=title,
        description=_first_meta(soup, _DESCRIPTION_META),
        image=_first_meta(soup, _IMAGE_META),
        favicon=_first_icon(soup),
    )

    origin = origin_of(url)
    preview.image = _resolve(preview.image, origin)
    preview.favicon = _resolve(preview.favicon, origin)
    return preview


def _build_soup(html: str) -> BeautifulSoup:
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
        return BeautifulSoup(html, "lxml")


def _first_meta(soup: BeautifulSoup, candidates) -> str:
    for attr, value in candidates:
        tag = soup.find("meta", attrs={attr: value})
        content = (tag.get("content") or "").strip() if tag else ""
        if content:
            return content
    return ""


def _first_icon(soup: BeautifulSoup) -> str:
    links = soup.find_all("link", href=True)
    for rel in _FAVICON_RELS:
        for tag in links:
            rel_value = tag.get("rel") or []
            if isinstance(rel_value, str):
                rel_value = rel_value.split()
            if " ".join(rel_value).lower() != rel:
                continue
            href = tag["href"].strip()
            if href:
                return href
    return ""


def _resolve(value: str, origin: str) -> str:
    if not value or value.startswith("http"):
        return value
    return urljoin(origin + "/", value)
