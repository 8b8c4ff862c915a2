"""
Pydantic schemas for the health score API.
"""
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# =======================
# COMMON
# =======================

class BaseResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

# =======================
# 1. ORGANIZATION HEALTH
# =======================

class CategoryMetricSchema(BaseModel):
    category: str
    raw_value: Optional[float] = None
    normalized_score: Optional[int] = None
    weight: float
    error: Optional[str] = None

class TrendSchema(BaseModel):
    lookback_days: int
    score_n_days_ago: Optional[int] = None
    direction: str  # up, down, flat
    delta: Optional[int] = None
    reference_computed_at: Optional[datetime] = None

class OrganizationHealthSchema(BaseModel):
    organization_id: str
    organization_name: Optional[str] = None
    computed_at: datetime
    snapshot_date: date
    composite_score: int
    risk_level: str  # healthy, at_risk, critical
    is_partial: bool
    categories: List[CategoryMetricSchema]
    recommendations: List[str]
    trend: TrendSchema
    long_term_trend: Optional[TrendSchema] = None

class OrganizationHealthResponse(BaseResponse):
    data: OrganizationHealthSchema

class OrganizationHealthListResponse(BaseResponse):
    count: int
    data: List[OrganizationHealthSchema]

# =======================
# 2. DISTRIBUTION
# =======================

class DistributionSchema(BaseModel):
    counts: Dict[str, int]
    total: int
    mean_score: Optional[float] = None
    partial_count: int = 0

class DistributionResponse(BaseResponse):
    data: DistributionSchema

# =======================
# 3. RECALCULATION RUNS
# =======================

class RecalculateRequest(BaseModel):
    organization_id: Optional[str] = None

class RecalculateResponse(BaseResponse):
    run_id: str

class OrganizationFailureSchema(BaseModel):
    organization_id: Optional[str] = None
    error_type: str
    message: str
    failed_categories: List[str] = []

class RunStatusSchema(BaseModel):
    run_id: str
    scope: str
    state: str
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    total: int
    succeeded: int
    partial: int
    failed: int
    skipped: int
    cancelled: bool
    failures: List[OrganizationFailureSchema]

class RunStatusResponse(BaseResponse):
    data: RunStatusSchema
