"""
Recommendation request/response models for the recommendation engine
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ScorerKind(str, Enum):
    """Closed set of signal sources"""
    COLLABORATIVE = "collaborative"
    CONTENT_BASED = "content_based"
    TRENDING = "trending"
    POPULARITY = "popularity"
    NEURAL = "neural"


class HybridStrategy(str, Enum):
    WEIGHTED = "weighted"
    SWITCHING = "switching"
    CASCADE = "cascade"
    ADAPTIVE = "adaptive"


class Algorithm(str, Enum):
    """Algorithms a request or experiment variant can select"""
    COLLABORATIVE = "collaborative"
    CONTENT_BASED = "content_based"
    TRENDING = "trending"
    POPULARITY = "popularity"
    NEURAL = "neural"
    HYBRID_WEIGHTED = "hybrid_weighted"
    HYBRID_SWITCHING = "hybrid_switching"
    HYBRID_CASCADE = "hybrid_cascade"
    HYBRID_ADAPTIVE = "hybrid_adaptive"

    @classmethod
    def _missing_(cls, value):
        aliases = {
            'hybrid': cls.HYBRID_ADAPTIVE,
            'adaptive_hybrid': cls.HYBRID_ADAPTIVE,
            'content': cls.CONTENT_BASED,
        }
        if isinstance(value, str):
            return aliases.get(value.lower())
        return None

    @property
    def scorer_kind(self) -> Optional[ScorerKind]:
        if self.is_hybrid:
            return None
        return ScorerKind(self.value)

    @property
    def hybrid_strategy(self) -> Optional[HybridStrategy]:
        if not self.is_hybrid:
            return None
        return HybridStrategy(self.value[len('hybrid_'):])

    @property
    def is_hybrid(self) -> bool:
        return self.value.startswith('hybrid_')


@dataclass
class ScoredItem:
    """Output of a single scorer"""
    item_id: str
    score: float
    confidence: float
    source: ScorerKind
    explanation: str = ""
    components: Dict[str, float] = field(default_factory=dict)


@dataclass
class Recommendation:
    """Final ranked recommendation returned to callers"""
    item_id: str
    score: float
    confidence: float
    algorithm: str
    sources: List[str] = field(default_factory=list)
    explanation: str = ""
    components: Dict[str, float] = field(default_factory=dict)
    personalization_score: float = 0.0
    is_fallback: bool = False

    def __post_init__(self):
        self.confidence = max(0.0, min(1.0, self.confidence))

    @classmethod
    def from_scored(cls, scored: ScoredItem, algorithm: str) -> 'Recommendation':
        components = dict(scored.components) or {scored.source.value: scored.score}
        return cls(
            item_id=scored.item_id,
            score=scored.score,
            confidence=scored.confidence,
            algorithm=algorithm,
            sources=[scored.source.value],
            explanation=scored.explanation,
            components=components,
        )


class RecommendationOptions(BaseModel):
    """Per-call options for get_recommendations"""
    limit: int = Field(default=10, ge=1, le=100)
    algorithm: Optional[Algorithm] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    diversity_factor: float = Field(default=0.3, ge=0.0, le=1.0)
    exclude_interacted: bool = True
    exclude_items: List[str] = Field(default_factory=list)
    category: Optional[str] = None


@dataclass
class ExperimentInfo:
    experiment_id: str
    variant: str
    algorithm: str


@dataclass
class RecommendationResponse:
    """Recommendation response model"""
    user_id: str
    recommendations: List[Recommendation]
    algorithm_used: str
    experiment_info: Optional[ExperimentInfo] = None
    total_generated: int = 0
    is_fallback: bool = False
    generated_at: datetime = field(default_factory=datetime.now)
