from .access_settings import AccessSettings, get_settings

__all__ = ["AccessSettings", "get_settings"]
