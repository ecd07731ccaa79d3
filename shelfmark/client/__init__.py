from shelfmark.client.coordinator import ViewStateCoordinator
from shelfmark.client.enrichment import RemotePreviewFetcher, RemoteProber
from shelfmark.client.feed import ChangeFeedListener, LongPollChangeTransport
from shelfmark.client.preferences import PreferenceStore
from shelfmark.client.store import BookmarkStoreProxy, StoreError, open_client
from shelfmark.config import ClientConfig


def build_view(http, preferences: PreferenceStore, confirm=None, config=ClientConfig):
    """Wire a coordinator to the remote store, prober, fetcher and feed."""
    return ViewStateCoordinator(
        store=BookmarkStoreProxy(http),
        prober=RemoteProber(http),
        previewer=RemotePreviewFetcher(http),
        preferences=preferences,
        transport=LongPollChangeTransport(
            http, wait=config.CHANGE_FEED_WAIT, reconnect_delay=config.RECONNECT_DELAY
        ),
        confirm=confirm,
    )


__all__ = [
    "BookmarkStoreProxy",
    "ChangeFeedListener",
    "LongPollChangeTransport",
    "PreferenceStore",
    "RemotePreviewFetcher",
    "RemoteProber",
    "StoreError",
    "ViewStateCoordinator",
    "build_view",
    "open_client",
]
