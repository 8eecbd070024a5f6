from app.services.mapping_session import mapping_session_service
from .tabular_ingestion import tabular_ingestion_service

__all__ = ["mapping_session_service", "tabular_ingestion_service"]
