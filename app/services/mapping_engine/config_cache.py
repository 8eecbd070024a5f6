"""
Configuration cache: persists the current mapping in a single durable slot.

The slot is keyed by a signature of the target schema; a saved configuration
is only restored for a target file with exactly the same headers, in the same
order.
"""

import json
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging_config import logger
from app.crud.config_store import config_store_crud
from app.services.mapping_engine.dataset import TargetSchema
from app.services.mapping_engine.mapping_store import MappingStore


def schema_signature(target_schema: TargetSchema) -> str:
    """Order-sensitive serialization of the target headers."""
    return json.dumps(list(target_schema), ensure_ascii=False)


class ConfigurationCache:
    """Reads and writes the mapping snapshot through the config store."""

    def __init__(self, db: Session, key: Optional[str] = None):
        self.db = db
        self.key = key or settings.CONFIG_CACHE_KEY
        self.crud = config_store_crud

    def save(self, target_schema: TargetSchema, store: MappingStore) -> None:
        """Overwrite the slot with the snapshot of ``store``."""
        payload = {
            "signature": schema_signature(target_schema),
            "targetHeaders": list(target_schema),
            "mapping": store.mapping(),
            "staticValues": store.literal_values(),
        }
        self.crud.set(self.db, self.key, json.dumps(payload, ensure_ascii=False))
        logger.debug(f"Saved mapping configuration for {len(target_schema)} target columns")

    def try_restore(self, target_schema: TargetSchema) -> Optional[MappingStore]:
        """
        Load the saved configuration if it was written for ``target_schema``.

        Args:
            target_schema: Freshly loaded target headers

        Returns:
            Restored MappingStore, or None on a miss (no entry, different
            schema, or an unreadable entry)
        """
        raw = self.crud.get(self.db, self.key)
        if raw is None:
            logger.info("No saved mapping configuration")
            return None

        try:
            saved = json.loads(raw)
            signature = saved["signature"]
            mapping = saved.get("mapping") or {}
            static_values = saved.get("staticValues") or {}
            if not isinstance(mapping, dict) or not isinstance(static_values, dict):
                raise TypeError("mapping and staticValues must be objects")
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable saved mapping configuration: {e}")
            return None

        if signature != schema_signature(target_schema):
            logger.info("Saved mapping configuration belongs to a different target schema")
            return None

        logger.info("Restored saved mapping configuration")
        return MappingStore.from_snapshot(target_schema, mapping, static_values)
