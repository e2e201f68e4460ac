"""Relay query client.

Queries a set of relays over websockets with the REQ/EVENT/EOSE exchange and
merges the results. Every query is bounded by a timeout: hitting it closes the
connections and returns whatever events were collected so far. Only a query
where no relay could be reached at all is reported as a failure.
"""

import asyncio
import json
import uuid
from typing import Any, Protocol

import websockets
from websockets.exceptions import WebSocketException

from shiftmarket.exceptions import QueryFailure
from shiftmarket.utils.config import Settings, get_settings
from shiftmarket.utils.logging import get_logger, log_duration

logger = get_logger(__name__)


class EventQueryClient(Protocol):
    """Protocol for anything that can run a filtered event query."""

    async def query(
        self, filters: list[dict[str, Any]], *, timeout: float
    ) -> list[dict[str, Any]]:
        """Return events matching any of the filters, bounded by `timeout` seconds."""
        ...


class RelayPool:
    """Queries several relays concurrently and de-duplicates events by id."""

    def __init__(self, relay_urls: list[str], open_timeout: float = 5.0):
        # Preserve order while deduplicating.
        self.relay_urls = list(dict.fromkeys(url for url in relay_urls if url))
        self.open_timeout = open_timeout

    async def query(
        self, filters: list[dict[str, Any]], *, timeout: float
    ) -> list[dict[str, Any]]:
        """Run the filters against every relay.

        Raises:
            QueryFailure: If no relay could be queried at all
        """
        if not self.relay_urls:
            raise QueryFailure("No relays configured")

        events: dict[str, dict[str, Any]] = {}
        with log_duration("relay_query", logger, relays=len(self.relay_urls)) as extra:
            results = await asyncio.gather(
                *(self._query_relay(url, filters, timeout, events) for url in self.relay_urls)
            )
            if not any(results):
                raise QueryFailure("All relays failed", relays=self.relay_urls)

            extra.update(reachable=sum(results), events=len(events))
        return list(events.values())

    async def _query_relay(
        self,
        url: str,
        filters: list[dict[str, Any]],
        timeout: float,
        sink: dict[str, dict[str, Any]],
    ) -> bool:
        """Collect events from one relay into `sink`. Returns False on connection failure."""
        subscription_id = uuid.uuid4().hex[:16]
        try:
            async with asyncio.timeout(timeout):
                async with websockets.connect(url, open_timeout=self.open_timeout) as ws:
                    await ws.send(json.dumps(["REQ", subscription_id, *filters]))
                    async for raw in ws:
                        if self._handle_message(raw, subscription_id, sink):
                            await ws.send(json.dumps(["CLOSE", subscription_id]))
                            break
        except TimeoutError:
            # Partial results already collected in sink are kept
            logger.debug("relay_query_timed_out", relay=url, timeout=timeout)
        except (OSError, WebSocketException) as e:
            logger.warning("relay_query_failed", relay=url, error=str(e))
            return False
        return True

    @staticmethod
    def _handle_message(
        raw: str | bytes, subscription_id: str, sink: dict[str, dict[str, Any]]
    ) -> bool:
        """Process one relay message. Returns True once the stored events are exhausted."""
        try:
            message = json.loads(raw)
        except ValueError:
            return False

        if not isinstance(message, list) or len(message) < 2 or message[1] != subscription_id:
            return False

        kind = message[0]
        if kind == "EVENT" and len(message) >= 3 and isinstance(message[2], dict):
            event = message[2]
            event_id = event.get("id")
            if isinstance(event_id, str):
                sink.setdefault(event_id, event)
        elif kind in ("EOSE", "CLOSED"):
            return True
        return False


def create_relay_pool(settings: Settings | None = None) -> RelayPool:
    """Factory function to create a relay pool from settings."""
    settings = settings or get_settings()
    return RelayPool(relay_urls=settings.relay_urls)
