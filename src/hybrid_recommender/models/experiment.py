"""
A/B experiment models
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from hybrid_recommender.models.recommendation import Algorithm

SUPPORTED_METRICS = ('ctr', 'conversion_rate', 'engagement_rate')


class Variant(str, Enum):
    CONTROL = "control"
    TREATMENT = "treatment"


class ExperimentStatus(str, Enum):
    ACTIVE = "active"
    STOPPED = "stopped"


class ExperimentDecision(str, Enum):
    INCONCLUSIVE = "inconclusive"
    TREATMENT_WINS = "treatment_wins"
    CONTROL_WINS = "control_wins"


class SegmentFilters(BaseModel):
    min_interactions: Optional[int] = Field(default=None, ge=0)
    preferred_categories: List[str] = Field(default_factory=list)


class ExperimentConfig(BaseModel):
    """Validated input for creating an experiment"""
    name: str = Field(min_length=1)
    description: str = ""
    control_algorithm: Algorithm
    treatment_algorithm: Algorithm
    traffic_split: float = Field(default=0.5, gt=0.0, le=0.5)
    duration_days: int = Field(default=14, ge=1)
    target_metrics: List[str] = Field(default_factory=lambda: list(SUPPORTED_METRICS))
    segment_filters: SegmentFilters = Field(default_factory=SegmentFilters)
    min_sample_size: int = Field(default=30, ge=1)
    significance_level: float = Field(default=0.05, gt=0.0, lt=1.0)

    @field_validator('name')
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError('name must not be blank')
        return value

    @field_validator('target_metrics')
    @classmethod
    def known_metrics(cls, value: List[str]) -> List[str]:
        unknown = [m for m in value if m not in SUPPORTED_METRICS]
        if unknown:
            raise ValueError(f'unsupported target metrics: {unknown}')
        if not value:
            raise ValueError('at least one target metric is required')
        return value


@dataclass
class Experiment:
    experiment_id: str
    name: str
    control_algorithm: Algorithm
    treatment_algorithm: Algorithm
    traffic_split: float
    start_date: datetime
    end_date: datetime
    target_metrics: List[str] = field(default_factory=lambda: list(SUPPORTED_METRICS))
    segment_filters: SegmentFilters = field(default_factory=SegmentFilters)
    description: str = ""
    min_sample_size: int = 30
    significance_level: float = 0.05
    status: ExperimentStatus = ExperimentStatus.ACTIVE
    stopped_at: Optional[datetime] = None

    def is_running(self, now: datetime) -> bool:
        return (self.status == ExperimentStatus.ACTIVE
                and self.start_date <= now < self.end_date)

    def algorithm_for(self, variant: Variant) -> Algorithm:
        if variant == Variant.TREATMENT:
            return self.treatment_algorithm
        return self.control_algorithm


@dataclass(frozen=True)
class Assignment:
    """A user's variant for one experiment. Fixed for the experiment lifetime."""
    user_id: str
    experiment_id: str
    variant: Variant
    algorithm: Algorithm
    assigned_at: datetime


@dataclass
class VariantMetrics:
    variant: Variant
    sample_size: int = 0
    active_users: int = 0
    total_interactions: int = 0
    unique_items: int = 0
    impressions: int = 0
    views: int = 0
    clicks: int = 0
    conversions: int = 0
    ctr: float = 0.0
    conversion_rate: float = 0.0
    engagement_rate: float = 0.0
    interactions_per_user: float = 0.0

    def rate(self, metric: str) -> float:
        return getattr(self, metric)


@dataclass
class SignificanceResult:
    metric: str
    is_significant: bool
    p_value: Optional[float] = None
    z_score: Optional[float] = None
    effect: float = 0.0
    improvement: Optional[float] = None
    confidence_interval: Optional[tuple] = None
    reason: Optional[str] = None


@dataclass
class ExperimentResults:
    experiment_id: str
    control: VariantMetrics
    treatment: VariantMetrics
    significance: Dict[str, SignificanceResult]
    decision: ExperimentDecision
    analyzed_at: datetime = field(default_factory=datetime.now)
