"""
Valuation oracle clients.

A price feed answers ``get_price(feed_id)`` with a ``PriceQuote`` (integer
mantissa, base-10 exponent, confidence, publish time) or ``None`` when it has
no data. ``check_quote`` applies the vault's acceptance rules: age, sign,
confidence band and clock skew. There is no retry or caching here; a failed
lookup fails the calling operation and retry policy belongs to the caller.

Clients:
    HermesOracleClient  - Pyth Hermes REST API (``/v2/updates/price/latest``)
    StaticPriceFeed     - in-process feed for simulations and tests
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

import requests

from vault.errors import InvalidPrice, PriceStale, PriceUnavailable

LOG = logging.getLogger("vault.oracle")

# Sentinel feed id for the base asset: valued 1:1, never looked up.
NO_PRICE_FEED = "0x" + "00" * 32

DEFAULT_HERMES_URL = "https://hermes.pyth.network"


@dataclass(frozen=True)
class PriceQuote:
    """Price = ``price * 10**expo`` base-currency units per whole asset."""
    price: int
    expo: int
    publish_time: int
    conf: int = 0


@runtime_checkable
class ValuationOracleClient(Protocol):
    def get_price(self, feed_id: str) -> Optional[PriceQuote]:
        ...


def normalize_feed_id(feed_id: Optional[str]) -> str:
    """Lower-case hex with ``0x`` prefix; empty/None maps to the no-oracle sentinel."""
    if not feed_id:
        return NO_PRICE_FEED
    text = str(feed_id).strip().lower()
    if not text.startswith("0x"):
        text = "0x" + text
    try:
        if int(text, 16) == 0:
            return NO_PRICE_FEED
    except ValueError:
        raise ValueError(f"price feed id must be hex: {feed_id!r}") from None
    return text


def check_quote(
    quote: Optional[PriceQuote],
    *,
    feed_id: str,
    now: float,
    max_age_seconds: float,
    max_confidence_bps: int = 0,
    max_future_skew_seconds: float = 60.0,
) -> PriceQuote:
    """Return ``quote`` when usable, otherwise raise the matching oracle error."""
    if quote is None:
        raise PriceUnavailable(f"no price data for feed {feed_id}", feed_id=feed_id)
    if quote.price <= 0:
        raise InvalidPrice(f"non-positive price {quote.price} for feed {feed_id}", feed_id=feed_id)
    if quote.conf < 0:
        raise InvalidPrice(f"negative confidence {quote.conf} for feed {feed_id}", feed_id=feed_id)
    if max_confidence_bps > 0 and quote.conf * 10_000 > quote.price * max_confidence_bps:
        raise InvalidPrice(
            f"confidence {quote.conf} exceeds {max_confidence_bps}bps of price {quote.price}",
            feed_id=feed_id,
        )
    age = now - quote.publish_time
    if age < -max_future_skew_seconds:
        raise InvalidPrice(f"publish time {quote.publish_time} is in the future", feed_id=feed_id)
    if age > max_age_seconds:
        raise PriceStale(
            f"quote for {feed_id} is {int(age)}s old (max {int(max_age_seconds)}s)",
            feed_id=feed_id,
            age=age,
        )
    return quote


class StaticPriceFeed:
    """Price feed backed by a dict; quotes default to the injected clock's now."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._quotes: Dict[str, PriceQuote] = {}
        self.lookups = 0

    def set_price(
        self,
        feed_id: str,
        price: int,
        expo: int,
        conf: int = 0,
        publish_time: Optional[int] = None,
    ) -> PriceQuote:
        quote = PriceQuote(
            price=int(price),
            expo=int(expo),
            conf=int(conf),
            publish_time=int(self._clock()) if publish_time is None else int(publish_time),
        )
        self._quotes[normalize_feed_id(feed_id)] = quote
        return quote

    def clear(self, feed_id: str) -> None:
        self._quotes.pop(normalize_feed_id(feed_id), None)

    def get_price(self, feed_id: str) -> Optional[PriceQuote]:
        self.lookups += 1
        return self._quotes.get(normalize_feed_id(feed_id))


class HermesOracleClient:
    """Reads the latest parsed price update for a feed from a Pyth Hermes endpoint."""

    def __init__(
        self,
        base_url: str = DEFAULT_HERMES_URL,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def get_price(self, feed_id: str) -> Optional[PriceQuote]:
        url = f"{self.base_url}/v2/updates/price/latest"
        params = {"ids[]": normalize_feed_id(feed_id), "parsed": "true"}
        try:
            resp = self._session.get(url, params=params, timeout=self.timeout)
            if getattr(resp, "status_code", 200) == 404:
                return None
            resp.raise_for_status()
            payload = resp.json()
        except requests.RequestException as exc:
            LOG.warning("[oracle] hermes request failed feed=%s err=%s", feed_id, exc)
            raise PriceUnavailable(f"oracle request failed: {exc}", feed_id=feed_id) from exc
        except ValueError as exc:
            LOG.warning("[oracle] hermes returned non-json feed=%s err=%s", feed_id, exc)
            raise PriceUnavailable("oracle returned malformed payload", feed_id=feed_id) from exc
        return _parse_hermes_payload(payload, feed_id)


def _parse_hermes_payload(payload: Any, feed_id: str) -> Optional[PriceQuote]:
    if not isinstance(payload, dict):
        LOG.warning("[oracle] hermes payload not an object feed=%s type=%s", feed_id, type(payload).__name__)
        raise PriceUnavailable("oracle returned malformed payload", feed_id=feed_id)
    parsed = payload.get("parsed") or []
    if not isinstance(parsed, list):
        raise PriceUnavailable("oracle returned malformed payload", feed_id=feed_id)
    wanted = normalize_feed_id(feed_id)[2:]
    for entry in parsed:
        if not isinstance(entry, dict):
            continue
        entry_id = str(entry.get("id") or "").lower().removeprefix("0x")
        if entry_id and entry_id != wanted:
            continue
        price_obj = entry.get("price") or {}
        if not isinstance(price_obj, dict):
            raise PriceUnavailable("oracle returned malformed price entry", feed_id=feed_id)
        try:
            return PriceQuote(
                price=int(price_obj["price"]),
                expo=int(price_obj["expo"]),
                conf=int(price_obj.get("conf") or 0),
                publish_time=int(price_obj["publish_time"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            LOG.warning("[oracle] malformed price entry feed=%s err=%s", feed_id, exc)
            raise PriceUnavailable("oracle returned malformed price entry", feed_id=feed_id) from exc
    return None


__all__ = [
    "NO_PRICE_FEED",
    "DEFAULT_HERMES_URL",
    "PriceQuote",
    "ValuationOracleClient",
    "normalize_feed_id",
    "check_quote",
    "StaticPriceFeed",
    "HermesOracleClient",
]
