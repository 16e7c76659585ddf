from picqer_api.config.base import AppSettings

settings = AppSettings.get_instance()

__all__ = ["AppSettings", "settings"]
