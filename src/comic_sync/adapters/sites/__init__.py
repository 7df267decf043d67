from __future__ import annotations

from comic_sync.adapters.registry import register
from comic_sync.adapters.sites.de import DeAdapter
from comic_sync.adapters.sites.es import EsAdapter
from comic_sync.adapters.sites.fr import FrAdapter
from comic_sync.adapters.sites.ru import RuAdapter
from comic_sync.adapters.sites.zh_cn import ZhCnAdapter
from comic_sync.adapters.sites.zh_tw import ZhTwAdapter

SITE_ADAPTERS = {
    "zh_cn": ZhCnAdapter,
    "zh_tw": ZhTwAdapter,
    "fr": FrAdapter,
    "de": DeAdapter,
    "es": EsAdapter,
    "ru": RuAdapter,
}


def register_all() -> None:
    for key, adapter_cls in SITE_ADAPTERS.items():
        register(key, adapter_cls)
