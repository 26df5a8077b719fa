"""Exception taxonomy shared by fetchers, adapters and the cart."""

from __future__ import annotations


class CartReplayError(Exception):
    """Base class for every failure surfaced by cart replay."""


class NetworkError(CartReplayError):
    """Transport-level failure (DNS, connect, read). Never retried automatically."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"Network failure for {url}: {message}")
        self.url = url


class ServerPredicateError(CartReplayError):
    """The server answered but rejected the query it was given."""

    def __init__(self, url: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"Query rejected by {url}: {message}")
        self.url = url
        self.status_code = status_code


class QueryError(CartReplayError):
    """A fetch failed for good: the rejection could not be relaxed away."""


class RateLimitExhausted(CartReplayError):
    """The adapter's daily request quota is spent."""

    def __init__(self, daily_max: int) -> None:
        super().__init__(f"Daily request limit reached ({daily_max} requests)")
        self.daily_max = daily_max


class CapacityExceeded(CartReplayError):
    """The cart is full; the append was rejected and nothing changed."""

    def __init__(self, capacity: int) -> None:
        super().__init__(f"Cart is full (max {capacity} items)")
        self.capacity = capacity


class AdapterNotImplemented(CartReplayError):
    """No query adapter exists yet for this data source."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"{kind} export not yet implemented")
        self.kind = kind


__all__ = [
    "AdapterNotImplemented",
    "CapacityExceeded",
    "CartReplayError",
    "NetworkError",
    "QueryError",
    "RateLimitExhausted",
    "ServerPredicateError",
]
