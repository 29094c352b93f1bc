from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from typing import Any

import httpx
from loguru import logger

from app.core.config import Settings, settings as default_settings
from app.core.errors import UpstreamUnavailable


def _extract_events(payload: Any, *keys: str) -> list[dict[str, Any]]:
    if isinstance(payload, list):
        raw_events = payload
    elif isinstance(payload, dict):
        raw_events = next(
            (payload[key] for key in keys if isinstance(payload.get(key), list)), []
        )
    else:
        raw_events = []
    return [event for event in raw_events if isinstance(event, dict)]


class _ExchangeClient:
    """Shared async transport for the public exchange listing endpoints."""

    source = "exchange"

    def __init__(
        self,
        *,
        base_url: str,
        timeout: float,
        user_agent: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self.client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Accept": "application/json", "User-Agent": user_agent},
            transport=transport,
        )

    async def _get_json(
        self, path: str, params: dict[str, Any], *, timeout: float | None = None
    ) -> Any:
        logger.debug("{} GET {} params={}", self.source, path, params)
        try:
            response = await self.client.get(
                path, params=params, timeout=timeout if timeout is not None else self.timeout
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise UpstreamUnavailable(
                self.source, f"HTTP {exc.response.status_code} from {path}"
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(self.source, f"{type(exc).__name__} on {path}") from exc
        except ValueError as exc:
            raise UpstreamUnavailable(self.source, f"invalid JSON from {path}") from exc

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


class PolymarketClient(_ExchangeClient):
    """Thin wrapper around the Polymarket Gamma events endpoints."""

    source = "polymarket"

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        page_size: int | None = None,
        max_events: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or default_settings
        super().__init__(
            base_url=str(settings.polymarket_base_url),
            timeout=settings.polymarket_timeout_seconds,
            user_agent=settings.user_agent,
            transport=transport,
        )
        self.events_path = settings.polymarket_events_path
        self.page_size = page_size or settings.polymarket_page_size
        self.max_events = max_events or settings.polymarket_max_events
        self.listing_budget = settings.listing_budget_seconds
        self.slug_timeout = settings.election_slug_timeout_seconds

    def _build_params(self, *, offset: int, limit: int) -> dict[str, Any]:
        return {
            "limit": limit,
            "offset": offset,
            "active": "true",
            "closed": "false",
            "order": "volume",
            "ascending": "false",
        }

    async def fetch_page(
        self, *, offset: int, limit: int, timeout: float | None = None
    ) -> list[dict[str, Any]]:
        payload = await self._get_json(
            self.events_path, self._build_params(offset=offset, limit=limit), timeout=timeout
        )
        return _extract_events(payload, "data", "events")

    async def fetch_raw(self) -> list[dict[str, Any]]:
        """Return up to ``max_events`` raw events ordered by volume.

        A failure on the first page raises :class:`UpstreamUnavailable`; a
        failure on a later page, or running out of ``listing_budget``, keeps
        what was already collected.
        """

        events: list[dict[str, Any]] = []
        offset = 0
        deadline = time.monotonic() + self.listing_budget
        while len(events) < self.max_events:
            remaining = deadline - time.monotonic()
            if offset and remaining <= 0:
                logger.warning("Polymarket listing budget spent; keeping {} events", len(events))
                break
            limit = min(self.page_size, self.max_events - len(events))
            try:
                page = await self.fetch_page(
                    offset=offset, limit=limit, timeout=min(self.timeout, remaining)
                )
            except UpstreamUnavailable as exc:
                if offset == 0:
                    logger.error("Polymarket fetch failed: {}", exc)
                    raise
                logger.warning(
                    "Polymarket page at offset {} failed ({}); keeping {} events",
                    offset,
                    exc,
                    len(events),
                )
                break
            events.extend(page)
            if len(page) < limit:
                break
            offset += limit
        logger.info("Polymarket returned {} events", len(events))
        return events

    async def fetch_event_by_slug(self, slug: str) -> dict[str, Any] | None:
        """Fetch one event by slug; any failure yields ``None``."""

        try:
            payload = await self._get_json(
                self.events_path, {"slug": slug}, timeout=self.slug_timeout
            )
        except UpstreamUnavailable as exc:
            logger.debug("Polymarket slug {} unavailable: {}", slug, exc)
            return None
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            payload = [payload["data"]]
        elif isinstance(payload, dict):
            payload = [payload]
        events = _extract_events(payload, "data", "events")
        return next((event for event in events if event.get("slug") or event.get("id")), None)

    async def fetch_events_by_slugs(
        self, slugs: Iterable[str], *, concurrency: int = 5
    ) -> list[dict[str, Any]]:
        semaphore = asyncio.Semaphore(concurrency)

        async def _fetch(slug: str) -> dict[str, Any] | None:
            async with semaphore:
                return await self.fetch_event_by_slug(slug)

        results = await asyncio.gather(*(_fetch(slug) for slug in slugs))
        events = [event for event in results if event is not None]
        logger.info("Polymarket slug lookup resolved {} events", len(events))
        return events


class KalshiClient(_ExchangeClient):
    """Thin wrapper around the Kalshi public events endpoint."""

    source = "kalshi"

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        page_size: int | None = None,
        max_pages: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or default_settings
        super().__init__(
            base_url=str(settings.kalshi_base_url),
            timeout=settings.kalshi_timeout_seconds,
            user_agent=settings.user_agent,
            transport=transport,
        )
        self.events_path = settings.kalshi_events_path
        self.page_size = page_size or settings.kalshi_page_size
        self.max_pages = max_pages or settings.kalshi_max_pages
        self.listing_budget = settings.listing_budget_seconds

    def _build_params(self, *, cursor: str | None) -> dict[str, Any]:
        params: dict[str, Any] = {
            "limit": self.page_size,
            "status": "open",
            "with_nested_markets": "true",
        }
        if cursor:
            params["cursor"] = cursor
        return params

    async def fetch_raw(self) -> list[dict[str, Any]]:
        """Follow the Kalshi cursor for at most ``max_pages`` pages within ``listing_budget``."""

        events: list[dict[str, Any]] = []
        cursor: str | None = None
        deadline = time.monotonic() + self.listing_budget
        for page_number in range(self.max_pages):
            remaining = deadline - time.monotonic()
            if page_number and remaining <= 0:
                logger.warning("Kalshi listing budget spent; keeping {} events", len(events))
                break
            try:
                payload = await self._get_json(
                    self.events_path,
                    self._build_params(cursor=cursor),
                    timeout=min(self.timeout, remaining),
                )
            except UpstreamUnavailable as exc:
                if page_number == 0:
                    logger.error("Kalshi fetch failed: {}", exc)
                    raise
                logger.warning(
                    "Kalshi page {} failed ({}); keeping {} events", page_number, exc, len(events)
                )
                break
            page = _extract_events(payload, "events")
            events.extend(page)
            cursor = payload.get("cursor") if isinstance(payload, dict) else None
            if not cursor or not page:
                break
        logger.info("Kalshi returned {} events", len(events))
        return events
