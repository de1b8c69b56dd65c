"""
Request and response models for the HTTP surface.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_validator

from ..core.config import CATEGORIES, GENERAL_CATEGORY

VALID_SOURCES = ['manual', 'user', 'web', 'web_auto_learned', 'import', 'conversation']


class AnswerRequest(BaseModel):
    query: str
    user_id: Optional[str] = None
    previous_answer: Optional[str] = None
    include_debug: bool = False

    @field_validator('query')
    @classmethod
    def query_must_be_valid(cls, v):
        if not v.strip():
            raise ValueError('query cannot be empty')
        return v


class AnswerResponse(BaseModel):
    text: str
    confidence: float
    category: str
    blocked: bool
    learned: bool
    low_confidence: bool = False
    sources: List[str] = []
    debug: Optional[Dict[str, Any]] = None


class KnowledgeCreateRequest(BaseModel):
    text: str
    source: str = 'manual'
    category: Optional[str] = None
    title: Optional[str] = None

    @field_validator('text')
    @classmethod
    def text_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('text cannot be empty')
        return v

    @field_validator('source')
    @classmethod
    def source_must_be_valid(cls, v):
        if v not in VALID_SOURCES:
            raise ValueError(f'source must be one of: {VALID_SOURCES}')
        return v

    @field_validator('category')
    @classmethod
    def category_must_be_valid(cls, v):
        valid_categories = list(CATEGORIES) + [GENERAL_CATEGORY]
        if v is not None and v not in valid_categories:
            raise ValueError(f'category must be one of: {valid_categories}')
        return v


class KnowledgeUpdateRequest(BaseModel):
    text: str
    reason: str = ''

    @field_validator('text')
    @classmethod
    def text_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('text cannot be empty')
        return v


class KnowledgeResponse(BaseModel):
    id: str
    text: str
    metadata: Dict[str, Any]
    has_vector: bool


class DeleteResponse(BaseModel):
    success: bool
    id: str


class EvictRequest(BaseModel):
    max_age_days: Optional[int] = None

    @field_validator('max_age_days')
    @classmethod
    def age_must_be_positive(cls, v):
        if v is not None and v < 1:
            raise ValueError('max_age_days must be >= 1')
        return v


class EvictResponse(BaseModel):
    scanned: int
    deleted: List[str]
    retained: List[str]
    errors: List[str]


class StatsResponse(BaseModel):
    total: int
    by_category: Dict[str, int]
    by_source: Dict[str, int]
    verified_count: int
    outdated_count: int
    average_usage_count: float


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    record_count: int
    scheduler: Dict[str, Any]


class ErrorResponse(BaseModel):
    error_type: str
    message: str
