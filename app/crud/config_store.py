from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import Optional
from app.models.config_entry import ConfigEntry
from app.core.logging_config import logger


class ConfigStoreCRUD:
    """CRUD operations for the ConfigEntry key/value slots"""
    
    def get(self, db: Session, key: str) -> Optional[str]:
        """Get the raw stored value for a key, or None"""
        entry = db.get(ConfigEntry, key)
        return entry.value if entry else None
    
    def set(self, db: Session, key: str, value: str) -> ConfigEntry:
        """Create or overwrite the value stored under key"""
        existing = db.get(ConfigEntry, key)
        
        if existing:
            existing.value = value
            db.commit()
            db.refresh(existing)
            logger.debug(f"Updated config entry key={key}")
            return existing
        
        # If not exists, try to create with exception handling for race conditions
        try:
            entry = ConfigEntry(key=key, value=value)
            db.add(entry)
            db.commit()
            db.refresh(entry)
            logger.debug(f"Created config entry key={key}")
            return entry
        except IntegrityError:
            # Another request created the record between check and insert
            db.rollback()
            existing = db.get(ConfigEntry, key)
            if existing:
                existing.value = value
                db.commit()
                db.refresh(existing)
                logger.debug(f"Updated config entry (race) key={key}")
                return existing
            else:
                raise
    

config_store_crud = ConfigStoreCRUD()
