from __future__ import annotations

from .base import BaseScraper

# Global in-process registry: kind -> scraper class
_REGISTRY: dict[str, type[BaseScraper]] = {}


def register(cls: type[BaseScraper]) -> type[BaseScraper]:
    """
    Class decorator registering a scraper under cls.kind.
    Re-registering the same class is a no-op; a different class for a taken kind is rejected.
    """
    kind = getattr(cls, "kind", "") or ""
    if not isinstance(kind, str) or not kind.strip():
        raise ValueError(f"Cannot register scraper {cls!r}: missing/empty 'kind'.")
    if not getattr(cls, "name", ""):
        cls.name = kind
    key = kind.strip().lower()
    if key in _REGISTRY and _REGISTRY[key] is not cls:
        raise ValueError(f"Scraper kind {key!r} already registered to {_REGISTRY[key]!r}.")
    _REGISTRY[key] = cls
    return cls


def get(kind: str) -> type[BaseScraper]:
    """
    Look up a scraper class by kind (case-insensitive).
    Raises KeyError if not found.
    """
    key = (kind or "").strip().lower()
    if key not in _REGISTRY:
        raise KeyError(f"No scraper registered for kind {kind!r}.")
    return _REGISTRY[key]


def all_kinds() -> dict[str, type[BaseScraper]]:
    return dict(_REGISTRY)
