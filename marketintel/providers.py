"""External collaborator interfaces and the provider gateway.

The engines never talk to market data, catalog, interaction or embedding
backends directly. They call through ``ProviderGateway``, which bounds every
call with a deadline and falls back to the last-known-good value when a
provider is too slow.

In-memory implementations of each interface are provided for local use and
tests.
"""

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from marketintel.config import ProviderConfig
from marketintel.exceptions import UpstreamTimeoutError
from marketintel.metrics import MetricsService
from marketintel.models import ItemFeatures, UserInteraction

# Configure module logger
logger = logging.getLogger(__name__)

_MISSING = object()


class MarketDataProvider(ABC):
    """Competitor prices, demand history and external market factors."""

    @abstractmethod
    def get_competitor_prices(self, product_id: str) -> List[float]:
        """Current prices of competing items."""

    @abstractmethod
    def get_historical_demand(self, product_id: str) -> pd.Series:
        """Units demanded per period, indexed by timestamp."""

    @abstractmethod
    def get_external_factors(self, product_id: str) -> float:
        """Multiplicative external market factor (1.0 is neutral)."""

    def get_price_history(self, product_id: str) -> pd.Series:
        """Listed price per period, indexed by timestamp.

        Providers without price history return an empty series, which makes
        the elasticity estimate fall back to its default.
        """
        return pd.Series(dtype=float)


class CatalogProvider(ABC):
    """Item features owned by the catalog."""

    @abstractmethod
    def get_item_features(self, item_id: str) -> Optional[ItemFeatures]:
        """Features for one item, or None if the item is unknown."""

    @abstractmethod
    def list_item_ids(self) -> List[str]:
        """Identifiers of every recommendable item."""

    def get_items_features(self, item_ids: List[str]) -> Dict[str, ItemFeatures]:
        """Features for many items in one call; unknown items are left out.

        Backends with a bulk endpoint should override this.
        """
        features = {}
        for item_id in item_ids:
            item = self.get_item_features(item_id)
            if item is not None:
                features[item_id] = item
        return features


class InteractionStore(ABC):
    """Per-user/per-item interaction events and their aggregated matrix."""

    @abstractmethod
    def append_interaction(self, event: UserInteraction) -> float:
        """Append an event; returns the updated interaction strength."""

    @abstractmethod
    def get_user_history(self, user_id: str) -> List[str]:
        """Items the user has interacted with, in first-seen order."""

    @abstractmethod
    def get_matrix_snapshot(self) -> Dict[str, Dict[str, float]]:
        """Consistent copy of the sparse user -> item -> strength matrix."""


class EmbeddingProvider(ABC):
    """Per-item feature vectors computed outside this package."""

    @abstractmethod
    def get_embedding(self, item_id: str) -> Optional[np.ndarray]:
        """Embedding vector for the item, or None if none exists."""

    def get_embeddings(self, item_ids: List[str]) -> Dict[str, np.ndarray]:
        """Embeddings for many items in one call; items without one are left out."""
        embeddings = {}
        for item_id in item_ids:
            vector = self.get_embedding(item_id)
            if vector is not None:
                embeddings[item_id] = vector
        return embeddings


class InMemoryMarketData(MarketDataProvider):
    """Market data held in dictionaries."""

    def __init__(
        self,
        competitor_prices: Optional[Mapping[str, Iterable[float]]] = None,
        demand_history: Optional[Mapping[str, pd.Series]] = None,
        price_history: Optional[Mapping[str, pd.Series]] = None,
        external_factors: Optional[Mapping[str, float]] = None,
    ):
        self.competitor_prices = {
            pid: list(prices) for pid, prices in (competitor_prices or {}).items()
        }
        self.demand_history = dict(demand_history or {})
        self.price_history = dict(price_history or {})
        self.external_factors = dict(external_factors or {})

    def get_competitor_prices(self, product_id: str) -> List[float]:
        return list(self.competitor_prices.get(product_id, []))

    def get_historical_demand(self, product_id: str) -> pd.Series:
        return self.demand_history.get(product_id, pd.Series(dtype=float))

    def get_external_factors(self, product_id: str) -> float:
        return self.external_factors.get(product_id, 1.0)

    def get_price_history(self, product_id: str) -> pd.Series:
        return self.price_history.get(product_id, pd.Series(dtype=float))


class InMemoryCatalog(CatalogProvider):
    """Catalog backed by a dictionary of ``ItemFeatures``."""

    def __init__(self, items: Iterable[ItemFeatures] = ()):
        self._items: Dict[str, ItemFeatures] = {}
        self._lock = threading.Lock()
        for item in items:
            self._items[item.item_id] = item

    def upsert(self, item: ItemFeatures) -> None:
        """Insert or replace an item's features."""
        with self._lock:
            self._items[item.item_id] = item

    def get_item_features(self, item_id: str) -> Optional[ItemFeatures]:
        with self._lock:
            return self._items.get(item_id)

    def list_item_ids(self) -> List[str]:
        with self._lock:
            return list(self._items)

    def get_items_features(self, item_ids: List[str]) -> Dict[str, ItemFeatures]:
        with self._lock:
            return {i: self._items[i] for i in item_ids if i in self._items}


class InMemoryEmbeddingProvider(EmbeddingProvider):
    """Embeddings held in a dictionary of vectors."""

    def __init__(self, embeddings: Optional[Mapping[str, Iterable[float]]] = None):
        self._embeddings = {
            item_id: np.asarray(vector, dtype=float)
            for item_id, vector in (embeddings or {}).items()
        }

    def get_embedding(self, item_id: str) -> Optional[np.ndarray]:
        return self._embeddings.get(item_id)


def provider_family(provider: str) -> str:
    """Backend a provider label belongs to, e.g. ``catalog`` for ``catalog.get_item_features``."""
    return provider.split(".", 1)[0]


class ProviderGateway:
    """Deadline-bound provider calls with last-known-good fallback.

    Every call runs on a worker thread and is awaited for at most
    ``ProviderConfig.timeout_seconds``. On timeout the future is cancelled,
    the timeout is logged and counted, and the most recent successful value
    for the same (provider, key) pair is returned instead. When nothing was
    ever cached the caller-supplied default is returned. Exceptions raised by
    the provider itself propagate.

    Each provider family (the label before the first dot) gets its own worker
    pool. A call that outlives its deadline keeps its worker busy, so a hung
    backend can exhaust only its own pool and never delays calls to the
    others.
    """

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        metrics: Optional[MetricsService] = None,
    ):
        self.config = config or ProviderConfig()
        self.metrics = metrics or MetricsService()
        self._executors: Dict[str, ThreadPoolExecutor] = {}
        self._executors_lock = threading.Lock()
        self._cache: Dict[Tuple[str, str], Any] = {}
        self._cache_lock = threading.Lock()

    def fetch(
        self,
        provider: str,
        key: str,
        fn: Callable[..., Any],
        *args: Any,
        default: Any = None,
    ) -> Any:
        """Call ``fn(*args)`` under the configured deadline.

        Args:
            provider: Provider/method label used for pooling, caching and logging.
            key: Cache key within the provider, usually the item or user id.
            fn: Provider method to call.
            *args: Positional arguments for ``fn``.
            default: Value returned on timeout when nothing is cached.

        Returns:
            The fresh value, the last-known-good value, or ``default``.
        """
        try:
            value = self._call_with_deadline(provider, key, fn, *args)
        except UpstreamTimeoutError as e:
            with self._cache_lock:
                cached = self._cache.get((provider, key), _MISSING)
            self._record_timeout(e, "cached" if cached is not _MISSING else "default")
            return default if cached is _MISSING else cached

        with self._cache_lock:
            self._cache[(provider, key)] = value
        return value

    def fetch_batch(
        self,
        provider: str,
        keys: List[str],
        fn: Callable[[List[str]], Mapping[str, Any]],
    ) -> Dict[str, Any]:
        """Call ``fn(keys)`` once under the deadline and cache each entry.

        The batch shares the per-key cache with ``fetch`` for the same
        provider label. On timeout only the keys with a last-known-good value
        are returned.
        """
        keys = list(keys)
        if not keys:
            return {}
        try:
            values = self._call_with_deadline(
                provider, f"batch[{len(keys)}]", fn, keys
            )
        except UpstreamTimeoutError as e:
            with self._cache_lock:
                cached = {
                    key: self._cache[(provider, key)]
                    for key in keys
                    if (provider, key) in self._cache
                }
            self._record_timeout(e, f"cached {len(cached)}/{len(keys)}")
            return {key: value for key, value in cached.items() if value is not None}

        with self._cache_lock:
            for key in keys:
                self._cache[(provider, key)] = values.get(key)
        return {key: values[key] for key in keys if values.get(key) is not None}

    def _record_timeout(self, error: UpstreamTimeoutError, fallback: str) -> None:
        self.metrics.increment("upstream_timeouts")
        logger.warning(
            "Provider call timed out, using fallback",
            extra={**error.details, "fallback": fallback},
        )

    def _executor(self, provider: str) -> ThreadPoolExecutor:
        family = provider_family(provider)
        with self._executors_lock:
            executor = self._executors.get(family)
            if executor is None:
                executor = ThreadPoolExecutor(
                    max_workers=self.config.max_workers,
                    thread_name_prefix=f"provider-{family}",
                )
                self._executors[family] = executor
            return executor

    def _call_with_deadline(
        self,
        provider: str,
        key: str,
        fn: Callable[..., Any],
        *args: Any,
    ) -> Any:
        timeout = self.config.timeout_seconds
        future = self._executor(provider).submit(fn, *args)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError:
            future.cancel()
            raise UpstreamTimeoutError(provider, key, timeout) from None

    def cached(self, provider: str, key: str, default: Any = None) -> Any:
        """Last-known-good value for (provider, key) without calling out."""
        with self._cache_lock:
            return self._cache.get((provider, key), default)

    def shutdown(self) -> None:
        """Stop accepting calls; in-flight provider calls are not awaited."""
        with self._executors_lock:
            executors = list(self._executors.values())
            self._executors.clear()
        for executor in executors:
            executor.shutdown(wait=False, cancel_futures=True)
