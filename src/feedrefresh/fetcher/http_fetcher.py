"""Default ``FeedFetcher``: download a feed over HTTP and count its new items.

Article ingestion itself lives outside this service; this fetcher parses
just enough of RSS 2.0, RSS 1.0 (RDF) and Atom documents to find the items
published since the previous fetch, and keeps the feed's fetch bookkeeping
(``last_fetched_at``, ``last_error``) current.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime
import logging

import httpx
from lxml import etree

from ..db import FeedDatabase
from ..exceptions import DatabaseOperationError, FeedFetchError, FeedNotFoundError

logger = logging.getLogger(__name__)

USER_AGENT = "feedrefresh/0.1 (+https://github.com/feedrefresh/feedrefresh)"

_ITEM_TAGS = ("{*}item", "{*}entry")
_DATE_TAGS = ("published", "pubDate", "date", "updated")

# Feed documents are untrusted input.
_PARSER = etree.XMLParser(
    resolve_entities=False,
    no_network=True,
    huge_tree=False,
    remove_comments=True,
    remove_pis=True,
)


@dataclass(frozen=True)
class FeedItem:
    """One item of a parsed feed.

    Attributes:
        guid: The item's id, guid, or link, if any.
        published: Publication (or last update) time, if the item has one.
    """

    guid: str | None
    published: datetime | None


def _parse_date(raw: str) -> datetime | None:
    raw = raw.strip()
    if not raw:
        return None
    try:
        parsed = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _child_text(element: etree._Element, names: tuple[str, ...]) -> str | None:  # type: ignore[reportPrivateUsage]
    found: dict[str, str] = {}
    for child in element.iterchildren():
        if not isinstance(child.tag, str):
            continue
        name = etree.QName(child).localname
        if name in names and name not in found:
            text = child.text or child.get("href")
            if text:
                found[name] = text
    for name in names:
        if name in found:
            return found[name]
    return None


def parse_feed_items(content: bytes) -> list[FeedItem]:
    """Parse the items out of an RSS or Atom document.

    Args:
        content: The raw document.

    Returns:
        The items in document order.

    Raises:
        ValueError: If the document is not well-formed XML or not a feed.
    """
    try:
        root = etree.fromstring(content, parser=_PARSER)
    except etree.XMLSyntaxError as e:
        raise ValueError(f"Feed is not well-formed XML: {e}") from e
    if root is None:
        raise ValueError("Feed document is empty")

    root_name = etree.QName(root).localname
    if root_name not in ("rss", "feed", "RDF"):
        raise ValueError(f"Unrecognized feed root element <{root_name}>")

    items: list[FeedItem] = []
    for element in root.iter(*_ITEM_TAGS):
        raw_date = _child_text(element, _DATE_TAGS)
        items.append(
            FeedItem(
                guid=_child_text(element, ("id", "guid", "link")),
                published=_parse_date(raw_date) if raw_date else None,
            )
        )
    return items


def count_new_items(items: list[FeedItem], since: datetime | None) -> int:
    """Count the items published after ``since``.

    On a first fetch (``since`` is None) every item is new. Undated items
    are only counted on a first fetch.
    """
    if since is None:
        return len(items)
    return sum(
        1 for item in items if item.published is not None and item.published > since
    )


def _utc_now() -> datetime:
    return datetime.now(UTC)


class HttpFeedFetcher:
    """Fetch feeds over HTTP and record the result on the feed.

    Attributes:
        _feed_db: Feed store holding the fetch bookkeeping.
        _timeout: Total time allowed for one HTTP request.
        _client: Shared client; a short-lived client is used per fetch when None.
        _clock: Source of the fetch timestamp.
    """

    def __init__(
        self,
        feed_db: FeedDatabase,
        timeout: timedelta = timedelta(seconds=30),
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._feed_db = feed_db
        self._timeout = timeout
        self._client = client
        self._clock = clock
        logger.debug(
            "HttpFeedFetcher initialized.",
            extra={"timeout_seconds": timeout.total_seconds()},
        )

    async def _download(self, feed_id: str, feed_url: str) -> bytes:
        headers = {"User-Agent": USER_AGENT}
        timeout = httpx.Timeout(self._timeout.total_seconds())
        try:
            if self._client is not None:
                response = await self._client.get(
                    feed_url, headers=headers, timeout=timeout, follow_redirects=True
                )
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.get(
                        feed_url, headers=headers, follow_redirects=True
                    )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FeedFetchError(
                f"Feed request returned HTTP {e.response.status_code}.",
                feed_id=feed_id,
                url=feed_url,
            ) from e
        except httpx.HTTPError as e:
            raise FeedFetchError(
                "HTTP request for feed failed.", feed_id=feed_id, url=feed_url
            ) from e
        return response.content

    async def _record_failure(self, feed_id: str, error: FeedFetchError) -> None:
        cause = error.__cause__
        message = f"{error} {cause}" if cause else str(error)
        try:
            await self._feed_db.mark_fetch_failure(feed_id, message)
        except DatabaseOperationError:
            logger.warning(
                "Could not record fetch failure on feed.",
                exc_info=True,
                extra={"feed_id": feed_id},
            )

    async def fetch_articles(self, feed_id: str, feed_url: str) -> int:
        """Fetch ``feed_url`` and count the items published since the last fetch.

        Args:
            feed_id: The feed identifier.
            feed_url: The feed source URL.

        Returns:
            The number of new items.

        Raises:
            FeedFetchError: If the feed is unknown, cannot be downloaded or
                parsed, or the fetch cannot be recorded.
        """
        log_params = {"feed_id": feed_id, "feed_url": feed_url}
        fetched_at = self._clock()
        try:
            feed = await self._feed_db.get_feed_by_id(feed_id)
        except (FeedNotFoundError, DatabaseOperationError) as e:
            raise FeedFetchError(
                "Cannot load feed for fetching.", feed_id=feed_id, url=feed_url
            ) from e

        try:
            content = await self._download(feed_id, feed_url)
            try:
                items = parse_feed_items(content)
            except ValueError as e:
                raise FeedFetchError(
                    "Feed could not be parsed.", feed_id=feed_id, url=feed_url
                ) from e
        except FeedFetchError as e:
            await self._record_failure(feed_id, e)
            raise

        new_items = count_new_items(items, feed.last_fetched_at)
        try:
            await self._feed_db.mark_fetch_success(feed_id, fetched_at=fetched_at)
        except DatabaseOperationError as e:
            raise FeedFetchError(
                "Failed to record successful fetch.", feed_id=feed_id, url=feed_url
            ) from e

        logger.debug(
            "Feed fetched.",
            extra={**log_params, "item_count": len(items), "new_item_count": new_items},
        )
        return new_items
