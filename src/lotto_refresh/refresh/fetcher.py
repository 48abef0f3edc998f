"""Sources the refresh pipeline downloads raw draw archives from."""
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

import requests
import structlog

from lotto_refresh.config.settings import Settings
from lotto_refresh.refresh.errors import FetchTimeoutError
from lotto_refresh.refresh.validator import looks_like_html

logger = structlog.get_logger()

REQUEST_HEADERS = {
    "Accept": "text/csv,text/plain,*/*",
    "Cache-Control": "no-cache",
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
}


class Fetcher(Protocol):
    """Anything that can produce the raw archive text."""

    source: str

    def fetch(self, timeout: float) -> str:
        ...


class HttpFetcher:
    """Downloads the archive over HTTP with requests."""

    def __init__(self, url: str, session: Optional[requests.Session] = None):
        """
        Initialize the HTTP fetcher.

        Args:
            url: Archive URL
            session: Optional session, mainly for connection reuse in tests
        """
        self.url = url
        self.source = url
        self.session = session or requests.Session()

    def fetch(self, timeout: float) -> str:
        """
        Download the archive text.

        Args:
            timeout: Seconds allowed for the whole request

        Returns:
            Response body as text

        Raises:
            FetchTimeoutError: If the request exceeds ``timeout``
            requests.HTTPError: On a non-2xx status
        """
        try:
            response = self.session.get(self.url, headers=REQUEST_HEADERS, timeout=timeout)
        except requests.Timeout as e:
            raise FetchTimeoutError(self.source, timeout) from e

        response.raise_for_status()
        logger.debug(
            "http_response_received",
            url=self.url,
            status=response.status_code,
            size=len(response.text)
        )
        return response.text


class FileFetcher:
    """Reads an archive that was downloaded or uploaded by hand."""

    def __init__(self, path: str):
        self.path = Path(path)
        self.source = str(self.path)

    def fetch(self, timeout: float) -> str:
        return self.path.read_text(encoding="utf-8-sig")


class ChainFetcher:
    """
    Tries several fetchers in order and returns the first usable answer.

    Answers that are empty or look like an HTML page are skipped. A timeout is
    re-raised immediately so the retry loop can classify it.
    """

    def __init__(self, fetchers: Sequence[Fetcher]):
        if not fetchers:
            raise ValueError("ChainFetcher needs at least one fetcher")
        self.fetchers: List[Fetcher] = list(fetchers)
        self.source = " -> ".join(f.source for f in self.fetchers)

    def fetch(self, timeout: float) -> str:
        last_error: Optional[Exception] = None

        for fetcher in self.fetchers:
            try:
                content = fetcher.fetch(timeout)
            except FetchTimeoutError:
                raise
            except (requests.RequestException, OSError) as e:
                logger.warning("fetch_source_failed", source=fetcher.source, error=str(e))
                last_error = e
                continue

            if not content or not content.strip():
                logger.warning("fetch_source_empty", source=fetcher.source)
                continue
            if looks_like_html(content):
                logger.warning("fetch_source_returned_html", source=fetcher.source)
                continue

            logger.info("fetch_source_succeeded", source=fetcher.source, size=len(content))
            return content

        if last_error is not None:
            raise last_error
        return ""


def build_fetcher(settings: Settings) -> Fetcher:
    """
    Fetcher for the configured sources.

    A configured ``local_data_path`` is tried before the remote archive.
    """
    remote = HttpFetcher(settings.data_source_url)
    if settings.local_data_path:
        return ChainFetcher([FileFetcher(settings.local_data_path), remote])
    return remote
