"""
Mapping sessions: an in-memory registry of workflows and the commands that
change them. Assignment changes and target loads are written to the
configuration cache.
"""

import asyncio
import uuid
from typing import Dict, List, Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging_config import logger
from app.services.mapping_engine import (
    ConfigurationCache,
    ExportFormat,
    ExportInProgressError,
    FilterEngine,
    FilterRule,
    MappingStore,
    SourceDataset,
    TargetSchema,
    generate_table,
    serialize_table,
    value_domain,
)
from app.services.mapping_engine.exporter import ensure_exportable
from app.utils.text_search import filter_options


class MappingSession:
    """
    State of one mapping workflow.

    Each command swaps one immutable state slice (store, filters, dataset)
    in a single assignment, so no partially applied change is ever visible.
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.target_schema: TargetSchema = ()
        self.dataset: Optional[SourceDataset] = None
        self.store: Optional[MappingStore] = None
        self.filters = FilterEngine()
        self.restored_from_cache = False
        self.is_exporting = False

    @property
    def source_rows(self):
        return self.dataset.rows if self.dataset else ()

    def filtered_row_count(self) -> int:
        return len(self.filters.select_rows(self.source_rows))

    def has_mappings(self) -> bool:
        return self.store is not None and self.store.has_any_assignment()


class MappingSessionService:
    """
    Service layer for mapping sessions.

    Keeps sessions in memory, applies user commands to them, and writes the
    configuration cache after every change to the assignments.
    """

    def __init__(self):
        self._sessions: Dict[str, MappingSession] = {}

    # ------------------------------------------------------------------
    # Session registry
    # ------------------------------------------------------------------
    def create_session(self) -> MappingSession:
        session = MappingSession(session_id=uuid.uuid4().hex)
        self._sessions[session.session_id] = session
        logger.info(f"Created mapping session {session.session_id}")
        return session

    def get_session(self, session_id: str) -> MappingSession:
        """
        Raises:
            HTTPException 404: If the session does not exist
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Unknown session_id: {session_id}"
            )
        return session

    def delete_session(self, session_id: str) -> None:
        self.get_session(session_id)
        del self._sessions[session_id]
        logger.info(f"Deleted mapping session {session_id}")

    def clear(self) -> None:
        self._sessions.clear()

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------
    def load_target(
        self,
        db: Session,
        session: MappingSession,
        target_schema: TargetSchema
    ) -> MappingSession:
        """
        Install a new target schema and restore its saved configuration.

        A saved configuration applies only when it was written for exactly
        these headers; otherwise the session starts from a blank mapping. Either
        way the slot is rewritten for the new target.
        """
        cache = ConfigurationCache(db)
        restored = cache.try_restore(target_schema)
        session.target_schema = target_schema
        session.store = restored if restored is not None else MappingStore.blank(target_schema)
        session.restored_from_cache = restored is not None
        # The single slot always follows the loaded target
        cache.save(target_schema, session.store)
        logger.info(
            f"Session {session.session_id}: target schema with {len(target_schema)} columns "
            f"({'restored' if restored is not None else 'blank'} mapping)"
        )
        return session

    def load_source(self, session: MappingSession, dataset: SourceDataset) -> MappingSession:
        # Filters reference source columns and do not survive a new dataset
        session.dataset = dataset
        session.filters = FilterEngine()
        logger.info(f"Session {session.session_id}: source dataset with {len(dataset)} rows")
        return session

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------
    def _require_store(self, session: MappingSession) -> MappingStore:
        if session.store is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Upload a target file before assigning fields."
            )
        return session.store

    def _commit_store(self, db: Session, session: MappingSession, store: MappingStore) -> MappingSession:
        if store is session.store:
            return session
        session.store = store
        ConfigurationCache(db).save(session.target_schema, store)
        return session

    def assign_from_source(
        self,
        db: Session,
        session: MappingSession,
        target_col: str,
        source_header: str
    ) -> MappingSession:
        store = self._require_store(session)
        return self._commit_store(db, session, store.assign_from_source(target_col, source_header))

    def assign_literal(
        self,
        db: Session,
        session: MappingSession,
        target_col: str,
        text: str
    ) -> MappingSession:
        store = self._require_store(session)
        return self._commit_store(db, session, store.assign_literal(target_col, text))

    def clear_assignment(self, db: Session, session: MappingSession, target_col: str) -> MappingSession:
        store = self._require_store(session)
        return self._commit_store(db, session, store.clear(target_col))

    def search_source_fields(self, session: MappingSession, query: Optional[str]) -> List[Tuple[str, bool]]:
        """Source headers matching query, each with its already-mapped flag."""
        headers = session.dataset.headers if session.dataset else ()
        mapped = session.store.mapped_source_headers() if session.store else set()
        return [(h, h in mapped) for h in filter_options(headers, query)]

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------
    def _require_rule(self, session: MappingSession, rule_id: int) -> FilterRule:
        rule = session.filters.get_rule(rule_id)
        if rule is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Filter rule {rule_id} not found"
            )
        return rule

    def add_filter(self, session: MappingSession) -> FilterRule:
        session.filters, rule_id = session.filters.add_rule()
        return session.filters.get_rule(rule_id)

    def remove_filter(self, session: MappingSession, rule_id: int) -> MappingSession:
        session.filters = session.filters.remove_rule(rule_id)
        return session

    def set_filter_column(self, session: MappingSession, rule_id: int, column: str) -> FilterRule:
        self._require_rule(session, rule_id)
        session.filters = session.filters.set_rule_column(rule_id, column)
        return session.filters.get_rule(rule_id)

    def set_filter_values(self, session: MappingSession, rule_id: int, values: List[str]) -> FilterRule:
        self._require_rule(session, rule_id)
        session.filters = session.filters.set_rule_values(rule_id, values)
        return session.filters.get_rule(rule_id)

    def filter_domain(self, session: MappingSession, column: str, query: Optional[str] = None) -> List[str]:
        return filter_options(value_domain(session.source_rows, column), query)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------
    async def export(self, session: MappingSession, fmt: ExportFormat) -> Tuple[bytes, str, str]:
        """
        Generate and serialize the mapped table.

        The state is captured when the request arrives; the work then runs
        after a fixed minimum delay. Only one export per session may be in
        flight.

        Raises:
            ExportInProgressError: If this session is already exporting
            ExportPreconditionError: If nothing is mapped
        """
        if session.is_exporting:
            raise ExportInProgressError("An export is already in progress for this session.")
        store = self._require_store(session)
        ensure_exportable(store)

        target_schema = session.target_schema
        filters = session.filters
        dataset = session.dataset or SourceDataset.empty()

        session.is_exporting = True
        try:
            await asyncio.sleep(settings.export_min_latency_seconds)
            table = generate_table(target_schema, store, filters, dataset)
            return serialize_table(table, fmt)
        finally:
            session.is_exporting = False


mapping_session_service = MappingSessionService()
