from __future__ import annotations


class ListingFinderError(Exception):
    """Base class for errors raised by the listing finder."""


class PageFetchError(ListingFinderError):
    """A listing page could not be downloaded after all attempts."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason
