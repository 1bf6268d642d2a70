"""
Derived user profile models
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Set

import numpy as np

from hybrid_recommender.models.item import FEATURE_VECTOR_SIZE


@dataclass
class UserProfile:
    """Preference profile rebuilt from a user's interaction history"""
    user_id: str
    category_weights: Dict[str, float] = field(default_factory=dict)
    cuisine_weights: Dict[str, float] = field(default_factory=dict)
    dietary_tag_weights: Dict[str, float] = field(default_factory=dict)
    time_preferences: Dict[str, float] = field(default_factory=dict)
    feature_vector: np.ndarray = field(default_factory=lambda: np.zeros(FEATURE_VECTOR_SIZE))
    avg_price: float = 0.0
    avg_spice_level: float = 0.0
    text_corpus: str = ""
    interacted_items: Set[str] = field(default_factory=set)
    interaction_count: int = 0

    @property
    def is_empty(self) -> bool:
        return self.interaction_count == 0


class UserSegment(str, Enum):
    NEW = "new_user"
    EXPLORER = "explorer"
    FOCUSED = "focused"
    ACTIVE = "active"
    CASUAL = "casual"


@dataclass
class UserActivity:
    """Behavioural summary used to pick hybrid weights"""
    user_id: str
    interaction_count: int = 0
    recent_count: int = 0
    unique_items: int = 0
    unique_categories: int = 0
    exploration_score: float = 0.0
    engagement_score: float = 0.0

    @property
    def has_content_data(self) -> bool:
        return self.interaction_count > 0
