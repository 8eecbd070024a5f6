from pydantic import BaseModel
from typing import List, Optional
from app.services.mapping_engine import AssignmentKind


class SessionCreatedResponse(BaseModel):
    """Response from creating a mapping session"""
    session_id: str


class AssignmentResponse(BaseModel):
    """Assignment of one target column"""
    target: str
    kind: AssignmentKind
    source_header: Optional[str] = None
    literal_value: Optional[str] = None


class FilterRuleResponse(BaseModel):
    """A filter rule; inactive until both column and values are set"""
    id: int
    column: str
    values: List[str]
    is_active: bool


class SessionStateResponse(BaseModel):
    """Full state of a mapping session"""
    session_id: str
    target_headers: List[str]
    source_headers: List[str]
    total_rows: int
    filtered_rows: int
    assignments: List[AssignmentResponse]
    filters: List[FilterRuleResponse]
    has_mappings: bool
    is_exporting: bool
    restored_from_cache: bool


class SourceFieldResponse(BaseModel):
    """Source header with its already-mapped flag"""
    header: str
    mapped: bool


class ValueDomainResponse(BaseModel):
    """Selectable filter values for a source column"""
    column: str
    values: List[str]


class SourceAssignmentRequest(BaseModel):
    target: str
    source_header: str


class LiteralAssignmentRequest(BaseModel):
    target: str
    value: str


class FilterColumnRequest(BaseModel):
    column: str = ""


class FilterValuesRequest(BaseModel):
    values: List[str] = []
