from sqlalchemy import Column, String, Text
from app.database import Base, TimestampMixin


class ConfigEntry(Base, TimestampMixin):
    """
    Durable key/value slot for serialized mapping configurations.

    The mapper keeps exactly one entry (see CONFIG_CACHE_KEY); the value is a
    JSON document written verbatim so a corrupted blob can be detected on read.
    """
    __tablename__ = "config_store"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
