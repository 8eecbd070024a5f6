from fastapi import APIRouter, Depends, UploadFile, File, HTTPException, status, Response
from sqlalchemy.orm import Session
from typing import List, Optional

from app.database import get_db
from app.core.logging_config import logger
from app.schemas.mapping import (
    AssignmentResponse,
    FilterColumnRequest,
    FilterRuleResponse,
    FilterValuesRequest,
    LiteralAssignmentRequest,
    SessionCreatedResponse,
    SessionStateResponse,
    SourceAssignmentRequest,
    SourceFieldResponse,
    ValueDomainResponse,
)
from app.services.mapping_engine import (
    ExportFormat,
    ExportInProgressError,
    ExportPreconditionError,
    FilterRule,
)
from app.services.mapping_session import MappingSession, mapping_session_service
from app.services.tabular_ingestion import UploadTooLargeError, tabular_ingestion_service


router = APIRouter()

# Handlers that change a session are async: they run one at a time on the
# event loop, so concurrent requests cannot interleave a read-modify-write.


def _rule_response(rule: FilterRule) -> FilterRuleResponse:
    return FilterRuleResponse(
        id=rule.id,
        column=rule.column,
        values=list(rule.values),
        is_active=rule.is_active
    )


def _state_response(session: MappingSession) -> SessionStateResponse:
    assignments = []
    if session.store is not None:
        for target in session.store.columns:
            assignment = session.store.get(target)
            assignments.append(AssignmentResponse(
                target=target,
                kind=assignment.kind,
                source_header=assignment.source_header,
                literal_value=assignment.literal_value
            ))

    return SessionStateResponse(
        session_id=session.session_id,
        target_headers=list(session.target_schema),
        source_headers=list(session.dataset.headers) if session.dataset else [],
        total_rows=len(session.source_rows),
        filtered_rows=session.filtered_row_count(),
        assignments=assignments,
        filters=[_rule_response(rule) for rule in session.filters.rules],
        has_mappings=session.has_mappings(),
        is_exporting=session.is_exporting,
        restored_from_cache=session.restored_from_cache
    )


# ------------------------------------------------------------------------------
# Sessions
# ------------------------------------------------------------------------------
@router.post("/sessions", response_model=SessionCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_session():
    """Start a new mapping session."""
    session = mapping_session_service.create_session()
    return SessionCreatedResponse(session_id=session.session_id)


@router.get("/sessions/{session_id}", response_model=SessionStateResponse)
def get_session(session_id: str):
    """Current headers, assignments, filters and row counts of a session."""
    return _state_response(mapping_session_service.get_session(session_id))


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(session_id: str):
    mapping_session_service.delete_session(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ------------------------------------------------------------------------------
# Uploads
# ------------------------------------------------------------------------------
@router.post("/sessions/{session_id}/target", response_model=SessionStateResponse)
async def upload_target_file(
    session_id: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_db)
):
    """
    Upload the target file; its first row becomes the target schema.

    A saved mapping configuration is restored when it was made for exactly
    the same headers. A rejected file leaves the session untouched.
    """
    session = mapping_session_service.get_session(session_id)
    try:
        logger.info(f"Processing target upload for session={session_id}, file={file.filename}")
        content, filename = await tabular_ingestion_service.read_upload(file)
        target_schema = tabular_ingestion_service.parse_target_schema(content, filename)
        mapping_session_service.load_target(db, session, target_schema)
        return _state_response(session)

    except UploadTooLargeError as e:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=str(e)
        )
    except ValueError as e:
        logger.error(f"Target file parsing error: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"Unexpected error in target upload: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to process file: {str(e)}"
        )


@router.post("/sessions/{session_id}/source", response_model=SessionStateResponse)
async def upload_source_file(
    session_id: str,
    file: UploadFile = File(...)
):
    """
    Upload the source data file. Existing filters are discarded.
    """
    session = mapping_session_service.get_session(session_id)
    try:
        logger.info(f"Processing source upload for session={session_id}, file={file.filename}")
        content, filename = await tabular_ingestion_service.read_upload(file)
        dataset = tabular_ingestion_service.parse_source_dataset(content, filename)
        mapping_session_service.load_source(session, dataset)
        return _state_response(session)

    except UploadTooLargeError as e:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=str(e)
        )
    except ValueError as e:
        logger.error(f"Source file parsing error: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"Unexpected error in source upload: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to process file: {str(e)}"
        )


@router.get("/sessions/{session_id}/source/fields", response_model=List[SourceFieldResponse])
def search_source_fields(session_id: str, q: Optional[str] = None):
    """
    Source headers matching q (case- and accent-insensitive).

    Fields already mapped to a target column carry mapped=true.
    """
    session = mapping_session_service.get_session(session_id)
    return [
        SourceFieldResponse(header=header, mapped=mapped)
        for header, mapped in mapping_session_service.search_source_fields(session, q)
    ]


# ------------------------------------------------------------------------------
# Assignments
# ------------------------------------------------------------------------------
@router.put("/sessions/{session_id}/assignments/source", response_model=SessionStateResponse)
async def assign_source_field(
    session_id: str,
    request: SourceAssignmentRequest,
    db: Session = Depends(get_db)
):
    """
    Map a source field onto a target column.

    A source field already mapped to another column is not moved; the
    unchanged state is returned.
    """
    session = mapping_session_service.get_session(session_id)
    mapping_session_service.assign_from_source(db, session, request.target, request.source_header)
    return _state_response(session)


@router.put("/sessions/{session_id}/assignments/literal", response_model=SessionStateResponse)
async def assign_static_value(
    session_id: str,
    request: LiteralAssignmentRequest,
    db: Session = Depends(get_db)
):
    """
    Set a static value for a target column; a blank value clears the column.
    """
    session = mapping_session_service.get_session(session_id)
    mapping_session_service.assign_literal(db, session, request.target, request.value)
    return _state_response(session)


@router.delete("/sessions/{session_id}/assignments", response_model=SessionStateResponse)
async def clear_assignment(
    session_id: str,
    target: str,
    db: Session = Depends(get_db)
):
    session = mapping_session_service.get_session(session_id)
    mapping_session_service.clear_assignment(db, session, target)
    return _state_response(session)


# ------------------------------------------------------------------------------
# Filters
# ------------------------------------------------------------------------------
@router.post("/sessions/{session_id}/filters", response_model=FilterRuleResponse, status_code=status.HTTP_201_CREATED)
async def add_filter(session_id: str):
    """Append an empty filter rule."""
    session = mapping_session_service.get_session(session_id)
    return _rule_response(mapping_session_service.add_filter(session))


@router.delete("/sessions/{session_id}/filters/{rule_id}", response_model=SessionStateResponse)
async def remove_filter(session_id: str, rule_id: int):
    session = mapping_session_service.get_session(session_id)
    mapping_session_service.remove_filter(session, rule_id)
    return _state_response(session)


@router.put("/sessions/{session_id}/filters/{rule_id}/column", response_model=FilterRuleResponse)
async def set_filter_column(session_id: str, rule_id: int, request: FilterColumnRequest):
    """Choose the filtered column; previously selected values are cleared."""
    session = mapping_session_service.get_session(session_id)
    return _rule_response(mapping_session_service.set_filter_column(session, rule_id, request.column))


@router.put("/sessions/{session_id}/filters/{rule_id}/values", response_model=FilterRuleResponse)
async def set_filter_values(session_id: str, rule_id: int, request: FilterValuesRequest):
    session = mapping_session_service.get_session(session_id)
    return _rule_response(mapping_session_service.set_filter_values(session, rule_id, request.values))


@router.get("/sessions/{session_id}/filters/domain", response_model=ValueDomainResponse)
def get_filter_domain(session_id: str, column: str, q: Optional[str] = None):
    """
    Distinct values of a source column, sorted, optionally narrowed by q.
    """
    session = mapping_session_service.get_session(session_id)
    return ValueDomainResponse(
        column=column,
        values=mapping_session_service.filter_domain(session, column, q)
    )


# ------------------------------------------------------------------------------
# Export
# ------------------------------------------------------------------------------
@router.post("/sessions/{session_id}/export")
async def export_mapped_file(session_id: str, format: ExportFormat = ExportFormat.xlsx):
    """
    Generate the mapped file (XLSX or CSV) and return it as a download.
    """
    session = mapping_session_service.get_session(session_id)
    try:
        logger.info(f"Export requested for session={session_id}, format={format.value}")
        content, filename, media_type = await mapping_session_service.export(session, format)
        return Response(
            content=content,
            media_type=media_type,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'}
        )

    except ExportInProgressError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e)
        )
    except ExportPreconditionError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Export error: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Export failed: {str(e)}"
        )
