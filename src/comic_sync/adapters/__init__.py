from comic_sync.adapters.sites import SITE_ADAPTERS, register_all

__all__ = ["SITE_ADAPTERS", "register_all"]
