from .config_entry import ConfigEntry
