"""
Registry of scan targets.

Two kinds of entries share one table with a globally unique ``url`` column:

- ``page`` entries are rendered and scanned for text lookups
- ``api-endpoint`` entries are never scanned; they return a JSON array of
  further page URLs, which are imported as ``page`` entries
"""
import asyncio
import logging
from typing import Iterable, List, Optional, Union

import httpx
import jsonschema
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from src.database import SessionFactory
from src.models import TranslationUrl, UrlKind

logger = logging.getLogger(__name__)

URL_LIST_SCHEMA = {"type": "array"}


class EndpointFetchError(Exception):
    """Raised when an API endpoint cannot be fetched or does not return a JSON array."""


class EndpointFetcher:
    """Fetches the URL list returned by an API endpoint."""

    def __init__(self, timeout: float = 20.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    async def fetch(self, endpoint_url: str) -> List[str]:
        """
        GET ``endpoint_url`` and return its non-empty string items, trimmed.

        Raises:
            EndpointFetchError: on network errors, non-2xx responses, or a
                payload that is not a JSON array.
        """
        try:
            async with httpx.AsyncClient(
                    timeout=self.timeout,
                    transport=self._transport,
                    headers={'Accept': 'application/json'}
            ) as client:
                response = await client.get(endpoint_url)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as status_exc:
            raise EndpointFetchError(
                f"Endpoint '{endpoint_url}' returned HTTP {status_exc.response.status_code}"
            ) from status_exc
        except httpx.HTTPError as http_exc:
            raise EndpointFetchError(f"Could not fetch endpoint '{endpoint_url}': {http_exc}") from http_exc
        except ValueError as json_exc:
            raise EndpointFetchError(f"Endpoint '{endpoint_url}' did not return JSON: {json_exc}") from json_exc

        try:
            jsonschema.validate(instance=payload, schema=URL_LIST_SCHEMA)
        except jsonschema.ValidationError as schema_exc:
            raise EndpointFetchError(
                f"Endpoint '{endpoint_url}' must return a JSON array of URLs: {schema_exc.message}"
            ) from schema_exc

        urls = []
        for item in payload:
            if isinstance(item, str) and item.strip():
                urls.append(item.strip())
            else:
                logger.debug(f"Ignoring non-URL item from '{endpoint_url}': {item!r}")
        return urls


class UrlRegistry:
    """Deduplicated store of page URLs and API endpoints."""

    def __init__(self, session_factory: SessionFactory, fetcher: Optional[EndpointFetcher] = None):
        self._Session = session_factory
        self.fetcher = fetcher or EndpointFetcher()

    def add(self, url: str, kind: Union[UrlKind, str] = UrlKind.PAGE) -> bool:
        """
        Register a URL.

        Returns:
            False when the trimmed URL is empty or already registered under
            any kind, True when a new entry was created.
        """
        url = (url or '').strip()
        if not url:
            return False

        session = self._Session()
        try:
            session.add(TranslationUrl(url=url, active=True, kind=UrlKind(kind).value))
            session.commit()
            return True
        except IntegrityError:
            session.rollback()
            return False
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def add_bulk(self, urls: Iterable[str]) -> int:
        added = sum(1 for url in urls if self.add(url, UrlKind.PAGE))
        logger.info(f"Bulk added {added} URL(s).")
        return added

    def _select(self, kind: Optional[UrlKind] = None, active_only: bool = False):
        query = select(TranslationUrl)
        if kind is not None:
            query = query.where(TranslationUrl.kind == UrlKind(kind).value)
        if active_only:
            query = query.where(TranslationUrl.active.is_(True))
        return query.order_by(TranslationUrl.id)

    def list_entries(self, kind: Optional[Union[UrlKind, str]] = None) -> List[TranslationUrl]:
        session = self._Session()
        try:
            return list(session.scalars(self._select(kind)))
        finally:
            session.close()

    def list_scannable(self) -> List[str]:
        """Active page URLs, in insertion order."""
        session = self._Session()
        try:
            return [entry.url for entry in session.scalars(self._select(UrlKind.PAGE, active_only=True))]
        finally:
            session.close()

    def list_active_endpoints(self) -> List[str]:
        session = self._Session()
        try:
            return [entry.url for entry in session.scalars(self._select(UrlKind.API_ENDPOINT, active_only=True))]
        finally:
            session.close()

    def count(self, kind: Optional[Union[UrlKind, str]] = None, active_only: bool = False) -> int:
        session = self._Session()
        try:
            query = select(func.count()).select_from(TranslationUrl)
            if kind is not None:
                query = query.where(TranslationUrl.kind == UrlKind(kind).value)
            if active_only:
                query = query.where(TranslationUrl.active.is_(True))
            return session.scalar(query) or 0
        finally:
            session.close()

    def get(self, url_id: int) -> Optional[TranslationUrl]:
        session = self._Session()
        try:
            return session.get(TranslationUrl, url_id)
        finally:
            session.close()

    def toggle_active(self, url_id: int) -> Optional[bool]:
        """Flip the ``active`` flag; returns the new value, or None if the entry does not exist."""
        session = self._Session()
        try:
            entry = session.get(TranslationUrl, url_id)
            if entry is None:
                return None
            entry.active = not entry.active
            session.commit()
            return entry.active
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _delete(self, *criteria) -> int:
        session = self._Session()
        try:
            result = session.execute(delete(TranslationUrl).where(*criteria))
            session.commit()
            return result.rowcount or 0
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def remove(self, url_id: int) -> bool:
        return self._delete(TranslationUrl.id == url_id) > 0

    def clear_by_kind(self, kind: Union[UrlKind, str]) -> int:
        return self._delete(TranslationUrl.kind == UrlKind(kind).value)

    def clear_all(self) -> int:
        return self._delete(TranslationUrl.id.isnot(None))

    async def _import_urls(self, endpoint_url: str) -> int:
        try:
            urls = await self.fetcher.fetch(endpoint_url)
        except EndpointFetchError as exc:
            logger.error(f"Failed to collect URLs from '{endpoint_url}': {exc}")
            return 0
        added = await asyncio.to_thread(self.add_bulk, urls)
        logger.info(f"Collected {added} new URL(s) from '{endpoint_url}'.")
        return added

    async def import_from_endpoint(self, endpoint_url: str) -> int:
        """
        Register ``endpoint_url`` as an API endpoint and import the pages it lists.

        Fetch failures are logged and count as zero additions.

        Returns:
            The number of new page URLs added.
        """
        endpoint_url = (endpoint_url or '').strip()
        if not endpoint_url:
            return 0
        await asyncio.to_thread(self.add, endpoint_url, UrlKind.API_ENDPOINT)
        return await self._import_urls(endpoint_url)

    async def import_from_endpoints(self, endpoint_urls: Iterable[str]) -> int:
        total_added = 0
        for endpoint_url in endpoint_urls:
            total_added += await self.import_from_endpoint(endpoint_url)
        return total_added

    async def refresh_all(self) -> int:
        """Re-fetch every active API endpoint; already-known pages are skipped."""
        endpoints = await asyncio.to_thread(self.list_active_endpoints)
        total_added = 0
        for endpoint_url in endpoints:
            total_added += await self._import_urls(endpoint_url)
        logger.info(f"Refreshed {len(endpoints)} API endpoint(s), added {total_added} new URL(s).")
        return total_added
