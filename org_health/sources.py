"""
Organization Health - Metric Source Adapter.

============================================================
MULTI-SOURCE METRIC COLLECTION
============================================================

Pulls raw per-category metric values for one organization from
external data collaborators.

- Each category is collected independently and concurrently
- Timeouts are per category, not per organization
- A failed / timed out category is marked ABSENT (never zero)
- One category's failure never prevents the others

============================================================
EXTENSIBILITY
============================================================

Data collaborators implement MetricSource:

```python
class ChurnSource(MetricSource):
    category = "engagement"

    async def collect(self, organization_id: str) -> Optional[float]:
        ...
```

and are registered on the adapter. New categories need a
configuration entry and a source, never a scoring change.

============================================================
"""

import asyncio
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Union
import logging

import aiohttp

from .config import ScoringConfig
from .exceptions import CategoryCollectionError, UnknownCategoryError


logger = logging.getLogger(__name__)


# =============================================================
# RESULT
# =============================================================


@dataclass(frozen=True)
class CollectionResult:
    """Outcome of collecting one category for one organization."""
    category: str
    raw_value: Optional[float] = None
    error: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def is_present(self) -> bool:
        return self.raw_value is not None

    @classmethod
    def absent(cls, category: str, error: str, duration_ms: float = 0.0) -> "CollectionResult":
        return cls(category=category, raw_value=None, error=error, duration_ms=duration_ms)


# =============================================================
# SOURCE INTERFACE
# =============================================================


class MetricSource(ABC):
    """
    Abstract data collaborator for one category.

    collect() returns the raw value, or None when the value is
    unavailable. Raising is equivalent to returning None.
    """

    category: str

    @property
    def name(self) -> str:
        return f"{type(self).__name__}({self.category})"

    @abstractmethod
    async def collect(self, organization_id: str) -> Optional[float]:
        """Collect the raw metric value for an organization."""


class StaticMetricSource(MetricSource):
    """
    Source backed by a fixed mapping of organization -> value.

    Values may be numbers, None (absent) or exceptions (raised on
    collect). An optional delay simulates network latency.
    """

    def __init__(
        self,
        category: str,
        values: Optional[Mapping[str, Union[float, None, Exception]]] = None,
        default: Union[float, None, Exception] = None,
        delay_seconds: float = 0.0,
    ) -> None:
        self.category = category
        self._values = dict(values or {})
        self._default = default
        self._delay_seconds = delay_seconds
        self.call_count = 0

    def set_value(self, organization_id: str, value: Union[float, None, Exception]) -> None:
        self._values[organization_id] = value

    async def collect(self, organization_id: str) -> Optional[float]:
        self.call_count += 1
        if self._delay_seconds:
            await asyncio.sleep(self._delay_seconds)
        value = self._values.get(organization_id, self._default)
        if isinstance(value, Exception):
            raise value
        return value


class CallableMetricSource(MetricSource):
    """Source wrapping an async callable `fn(organization_id)`."""

    def __init__(
        self,
        category: str,
        fn: Callable[[str], Awaitable[Optional[float]]],
    ) -> None:
        self.category = category
        self._fn = fn

    async def collect(self, organization_id: str) -> Optional[float]:
        return await self._fn(organization_id)


class HttpMetricSource(MetricSource):
    """
    Source that fetches a JSON document from a data collaborator.

    The URL template is formatted with `organization_id`; the value
    is read from `value_key` (dotted paths allowed). Non-2xx responses
    and missing keys are collection failures.
    """

    def __init__(
        self,
        category: str,
        url_template: str,
        value_key: str = "value",
        headers: Optional[Dict[str, str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.category = category
        self._url_template = url_template
        self._value_key = value_key
        self._headers = headers or {}
        self._session = session

    async def collect(self, organization_id: str) -> Optional[float]:
        url = self._url_template.format(organization_id=organization_id)
        if self._session is not None:
            return await self._fetch(self._session, url)
        async with aiohttp.ClientSession() as session:
            return await self._fetch(session, url)

    async def _fetch(self, session: aiohttp.ClientSession, url: str) -> Optional[float]:
        async with session.get(url, headers=self._headers) as response:
            if response.status >= 400:
                raise aiohttp.ClientResponseError(
                    response.request_info,
                    response.history,
                    status=response.status,
                    message=f"HTTP {response.status} from {url}",
                )
            payload = await response.json()
        return self._extract(payload)

    def _extract(self, payload: Any) -> Optional[float]:
        value = payload
        for part in self._value_key.split("."):
            if not isinstance(value, dict) or part not in value:
                raise KeyError(f"'{self._value_key}' missing from response")
            value = value[part]
        return value


# =============================================================
# ADAPTER
# =============================================================


class MetricSourceAdapter:
    """
    Collects every configured category for one organization.

    ============================================================
    USAGE
    ============================================================

    ```python
    adapter = MetricSourceAdapter(config)
    adapter.register(StaticMetricSource("adoption", {"org-1": 82}))

    results = await adapter.collect("org-1")
    results["adoption"].raw_value      # 82.0
    results["engagement"].is_present   # False (no source)
    ```

    ============================================================
    """

    def __init__(
        self,
        config: ScoringConfig,
        sources: Optional[Iterable[MetricSource]] = None,
    ) -> None:
        self._config = config
        self._sources: Dict[str, MetricSource] = {}
        for source in sources or ():
            self.register(source)

    def register(self, source: MetricSource) -> None:
        """
        Register the source for a category.

        Raises:
            UnknownCategoryError: If the category is not configured
        """
        if source.category not in self._config.categories:
            raise UnknownCategoryError(source.category, self._config.category_names)
        if source.category in self._sources:
            logger.info(f"Replacing metric source for {source.category}")
        self._sources[source.category] = source
        logger.debug(f"Registered metric source {source.name}")

    def get_source(self, category: str) -> Optional[MetricSource]:
        return self._sources.get(category)

    @property
    def categories(self) -> list:
        return self._config.category_names

    async def collect(self, organization_id: str) -> Dict[str, CollectionResult]:
        """
        Collect all configured categories concurrently.

        Never raises for collection problems; failed categories come
        back absent with an error description.
        """
        categories = self._config.category_names
        results = await asyncio.gather(
            *(self._collect_category(organization_id, c) for c in categories)
        )
        return {r.category: r for r in results}

    async def _collect_category(self, organization_id: str, category: str) -> CollectionResult:
        source = self._sources.get(category)
        if source is None:
            return CollectionResult.absent(category, "no source registered")

        start = time.perf_counter()
        try:
            raw = await asyncio.wait_for(
                source.collect(organization_id),
                timeout=self._config.category_timeout_seconds,
            )
            value = self._coerce(organization_id, category, raw)
        except asyncio.TimeoutError:
            error = CategoryCollectionError(
                organization_id,
                category,
                f"timed out after {self._config.category_timeout_seconds}s",
            )
            return self._absent(error, start)
        except CategoryCollectionError as e:
            return self._absent(e, start)
        except Exception as e:
            error = CategoryCollectionError(organization_id, category, f"{type(e).__name__}: {e}")
            return self._absent(error, start)

        return CollectionResult(
            category=category,
            raw_value=value,
            duration_ms=(time.perf_counter() - start) * 1000,
        )

    @staticmethod
    def _coerce(organization_id: str, category: str, raw: Any) -> float:
        if raw is None:
            raise CategoryCollectionError(organization_id, category, "no value returned")
        if isinstance(raw, bool) or not isinstance(raw, (int, float, Decimal)):
            raise CategoryCollectionError(organization_id, category, f"non-numeric value {raw!r}")
        value = float(raw)
        if not math.isfinite(value):
            raise CategoryCollectionError(organization_id, category, f"non-finite value {value}")
        return value

    @staticmethod
    def _absent(error: CategoryCollectionError, start: float) -> CollectionResult:
        logger.warning(str(error))
        return CollectionResult.absent(
            error.category,
            error.reason,
            duration_ms=(time.perf_counter() - start) * 1000,
        )
