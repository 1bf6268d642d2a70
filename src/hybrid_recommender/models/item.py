"""
Menu item and explicit user preference models
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

DIETARY_TAGS = ['vegan', 'vegetarian', 'gluten-free', 'keto', 'low-carb', 'high-protein']
VECTOR_CATEGORIES = ['appetizer', 'main-course', 'dessert', 'beverage', 'snack']


@dataclass
class Item:
    """Catalog item with the attributes the scorers read"""
    item_id: str
    name: str
    category: str
    price: float
    description: str = ""
    ingredients: List[str] = field(default_factory=list)
    cuisine_type: Optional[str] = None
    spice_level: float = 0.0
    dietary_tags: List[str] = field(default_factory=list)
    allergens: List[str] = field(default_factory=list)
    availability_score: float = 1.0
    popularity_score: float = 0.0
    trend_score: float = 0.0
    rating_average: float = 0.0
    rating_count: int = 0
    nutritional_info: Dict[str, float] = field(default_factory=dict)
    preparation_time: float = 0.0
    difficulty_level: float = 0.0
    is_promotional: bool = False
    features_vector: Optional[np.ndarray] = None

    def __post_init__(self):
        self.availability_score = max(0.0, min(1.0, self.availability_score))
        if self.features_vector is not None and len(self.features_vector) > 0:
            self.features_vector = np.asarray(self.features_vector, dtype=float)
            if self.features_vector.shape != (FEATURE_VECTOR_SIZE,):
                raise ValueError(
                    f"features_vector for {self.item_id} must have {FEATURE_VECTOR_SIZE} values, "
                    f"got shape {self.features_vector.shape}"
                )

    @property
    def is_available(self) -> bool:
        return self.availability_score > 0

    @property
    def text(self) -> str:
        """Free text used for TF-IDF similarity"""
        return " ".join([self.name, self.description, " ".join(self.ingredients)]).strip()

    def content_vector(self) -> np.ndarray:
        if self.features_vector is not None and len(self.features_vector) > 0:
            return np.asarray(self.features_vector, dtype=float)
        return build_feature_vector(self)

    def matches_preferences(self, preferences: 'UserPreferences') -> float:
        """
        Compatibility of this item with explicit preferences

        Returns:
            Score in [0, 1]
        """
        score = 0.0
        max_score = 0.0

        if self.cuisine_type and preferences.cuisine_preferences.get(self.cuisine_type):
            score += preferences.cuisine_preferences[self.cuisine_type] * 3
        max_score += 3

        spice_diff = abs(self.spice_level - preferences.spice_level)
        score += max(0.0, 2 - spice_diff)
        max_score += 2

        allergens = {a.lower() for a in self.allergens}
        tags = {t.lower() for t in self.dietary_tags}
        restricted = any(
            r.lower() in allergens or r.lower() not in tags
            for r in preferences.dietary_restrictions
        )
        if not restricted:
            score += 2
        max_score += 2

        if abs(preferences.price_sensitivity - price_bucket(self.price)) < 0.3:
            score += 1
        max_score += 1

        if self.category in preferences.favorite_categories:
            score += 2
        elif self.category in preferences.disliked_categories:
            score -= 1
        max_score += 2

        return max(0.0, min(1.0, score / max_score))


@dataclass
class UserPreferences:
    """Explicit, user-edited preferences"""
    user_id: str = ""
    cuisine_preferences: Dict[str, float] = field(default_factory=dict)
    dietary_restrictions: List[str] = field(default_factory=list)
    spice_level: float = 3.0
    price_sensitivity: float = 0.5
    favorite_categories: List[str] = field(default_factory=list)
    disliked_categories: List[str] = field(default_factory=list)
    budget_range: Tuple[float, float] = (0.0, 1000.0)


def price_bucket(price: float) -> float:
    if price < 200:
        return 0.2
    if price < 500:
        return 0.5
    if price < 800:
        return 0.7
    return 1.0


def build_feature_vector(item: Item) -> np.ndarray:
    """Numeric feature vector: scaled attributes, one-hot tags and categories, nutrition"""
    vector = [
        min(1.0, item.price / 1000),
        item.spice_level / 5,
        item.preparation_time / 120,
        item.difficulty_level / 5,
    ]
    tags = {t.lower() for t in item.dietary_tags}
    vector.extend(1.0 if tag in tags else 0.0 for tag in DIETARY_TAGS)
    vector.extend(1.0 if item.category == cat else 0.0 for cat in VECTOR_CATEGORIES)

    nutrition = item.nutritional_info or {}
    vector.append(min(1.0, nutrition.get('calories', 0) / 1000))
    vector.append(min(1.0, nutrition.get('protein', 0) / 100))
    vector.append(min(1.0, nutrition.get('carbs', 0) / 200))
    vector.append(min(1.0, nutrition.get('fat', 0) / 100))

    return np.array(vector, dtype=float)


FEATURE_VECTOR_SIZE = 4 + len(DIETARY_TAGS) + len(VECTOR_CATEGORIES) + 4
