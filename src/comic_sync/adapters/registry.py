from __future__ import annotations

from typing import Callable, Dict, Iterable

from comic_sync.adapters.base import SourceAdapter
from comic_sync.http.client import HttpClient

AdapterFactory = Callable[[HttpClient], SourceAdapter]

_ADAPTERS: Dict[str, AdapterFactory] = {}


def register(key: str, factory: AdapterFactory) -> None:
    """Register a source adapter factory."""
    name = str(key or "").strip()
    if not name:
        raise ValueError("Adapter key cannot be empty")
    _ADAPTERS[name] = factory


def create(key: str, client: HttpClient) -> SourceAdapter:
    """Build a registered adapter around an HTTP client."""
    if key not in _ADAPTERS:
        known = ", ".join(sorted(_ADAPTERS.keys()))
        raise KeyError(f"Adapter not registered: {key}. Known adapters: {known}")
    return _ADAPTERS[key](client)


def registered_keys() -> Iterable[str]:
    """Get all registered adapter keys."""
    return sorted(_ADAPTERS.keys())
