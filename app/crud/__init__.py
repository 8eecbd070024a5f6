from .config_store import config_store_crud

__all__ = ["config_store_crud"]
