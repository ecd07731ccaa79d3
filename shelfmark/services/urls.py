import re
from urllib.parse import urlparse

ALLOWED_SCHEMES = {"http", "https"}
LOCAL_HOSTS = {"localhost", "127.0.0.1"}
LOCAL_NETWORK_PREFIX = "192.168."
HOST_LABEL = re.compile(r"^[a-z0-9_-]+$")

INVALID_URL_MESSAGE = "Invalid URL format"
INVALID_URL_FIELD_MESSAGE = "Invalid URL format (must start with http:// or https://)"


def _ascii_hostname(hostname: str) -> str | None:
    try:
        encoded = hostname.encode("idna").decode("ascii")
    except UnicodeError:
        return None
    labels = encoded.split(".")
    if not all(HOST_LABEL.match(label) for label in labels):
        return None
    return encoded


def is_well_formed(candidate: str) -> bool:
    if not candidate or not candidate.strip():
        return False
    try:
        parsed = urlparse(candidate.strip())
        hostname = parsed.hostname
        # Raises for ports that are not numbers or fall outside 0-65535.
        parsed.port
    except ValueError:
        return False

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        return False
    if not hostname or "." not in hostname:
        return False
    hostname = _ascii_hostname(hostname)
    if hostname is None:
        return False
    return len(hostname.rsplit(".", 1)[-1]) >= 2


def is_local_host(url: str) -> bool:
    try:
        hostname = (urlparse(url).hostname or "").lower()
    except ValueError:
        return False
    return hostname in LOCAL_HOSTS or hostname.startswith(LOCAL_NETWORK_PREFIX)


def origin_of(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"
