"""Cache abstraction injected into the fulfillment and payment paths.

Services take a ``cache`` argument instead of reading module-level state,
so callers and tests decide where cached values live.

Usage:
    from django_stockroom.cache import get_default_cache

    cache = get_default_cache()
    cache.set("product:42:has_variants", True, ttl=60)
    cache.get("product:42:has_variants")
    cache.invalidate("product:42:has_variants")
"""

from typing import Any, Optional, Protocol

from django.core.cache import caches

from django_stockroom.conf import get_setting


class StockroomCache(Protocol):
    """Capability: get / set with TTL / atomic add / invalidate."""

    def get(self, key: str, default: Any = None) -> Any:
        ...

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ...

    def add(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        ...

    def invalidate(self, key: str) -> None:
        ...


class DjangoCache:
    """StockroomCache backed by a Django cache alias.

    Keys are namespaced with ``stockroom:`` to share the alias safely.
    """

    prefix = "stockroom:"

    def __init__(self, alias: Optional[str] = None, default_ttl: Optional[int] = None):
        self.alias = alias or get_setting("CACHE_ALIAS")
        self.default_ttl = default_ttl

    @property
    def backend(self):
        return caches[self.alias]

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str, default: Any = None) -> Any:
        return self.backend.get(self._key(key), default)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        timeout = ttl if ttl is not None else self.default_ttl
        self.backend.set(self._key(key), value, timeout)

    def add(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set only if absent. Returns True when the value was stored."""
        timeout = ttl if ttl is not None else self.default_ttl
        return self.backend.add(self._key(key), value, timeout)

    def invalidate(self, key: str) -> None:
        self.backend.delete(self._key(key))


def get_default_cache() -> DjangoCache:
    """Cache used when a service is called without one."""
    return DjangoCache()


def product_variants_key(product_id) -> str:
    return f"product:{product_id}:has_variants"


def status_check_key(order_id) -> str:
    return f"order:{order_id}:last_status_check"
