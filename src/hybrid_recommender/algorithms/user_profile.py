"""
User profile construction from interaction history
"""
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

import numpy as np
import structlog

from hybrid_recommender.models.interaction import Interaction
from hybrid_recommender.models.item import FEATURE_VECTOR_SIZE
from hybrid_recommender.models.profile import UserActivity, UserProfile
from hybrid_recommender.services.data_store import ItemCatalog

logger = structlog.get_logger(__name__)


def time_slot(hour: int) -> str:
    """Map an hour of day to the slot used for time preferences"""
    if 6 <= hour < 11:
        return 'breakfast'
    if 11 <= hour < 16:
        return 'lunch'
    if 16 <= hour < 21:
        return 'dinner'
    return 'snack'


def _normalize(weights: Dict[str, float], total: float) -> Dict[str, float]:
    if total <= 0:
        return {}
    return {key: value / total for key, value in weights.items()}


class UserProfileBuilder:
    """Aggregates a user's interactions into preference profiles and activity stats"""

    def __init__(self, catalog: ItemCatalog, recent_window_days: int = 30):
        self.catalog = catalog
        self.recent_window_days = recent_window_days

    def build_profile(self, user_id: str, interactions: Iterable[Interaction]) -> UserProfile:
        """
        Build a content profile weighted by implicit rating

        Args:
            user_id: User identifier
            interactions: The user's interaction history

        Returns:
            UserProfile with category/cuisine/dietary/time weights normalised
            to sum to at most 1
        """
        interactions = list(interactions)
        profile = UserProfile(user_id=user_id, interaction_count=len(interactions))
        if not interactions:
            return profile

        items = {item.item_id: item for item in
                 self.catalog.get_items({i.item_id for i in interactions})}

        category_weights: Dict[str, float] = defaultdict(float)
        cuisine_weights: Dict[str, float] = defaultdict(float)
        dietary_weights: Dict[str, float] = defaultdict(float)
        time_weights: Dict[str, float] = defaultdict(float)
        feature_sum = np.zeros(FEATURE_VECTOR_SIZE)
        price_sum = 0.0
        spice_sum = 0.0
        total_weight = 0.0
        texts: List[str] = []

        for interaction in interactions:
            profile.interacted_items.add(interaction.item_id)
            item = items.get(interaction.item_id)
            if item is None:
                continue

            weight = interaction.implicit_rating
            total_weight += weight

            category_weights[item.category] += weight
            if item.cuisine_type:
                cuisine_weights[item.cuisine_type] += weight
            for tag in item.dietary_tags:
                dietary_weights[tag.lower()] += weight
            time_weights[time_slot(interaction.timestamp.hour)] += weight

            feature_sum += item.content_vector() * weight
            price_sum += item.price * weight
            spice_sum += item.spice_level * weight
            texts.append(item.text)

        if total_weight <= 0:
            return profile

        profile.category_weights = _normalize(category_weights, total_weight)
        profile.cuisine_weights = _normalize(cuisine_weights, total_weight)
        profile.time_preferences = _normalize(time_weights, total_weight)
        # items can carry several tags, so tag weights are scaled by whichever is larger
        profile.dietary_tag_weights = _normalize(
            dietary_weights, max(total_weight, sum(dietary_weights.values()))
        )
        profile.feature_vector = feature_sum / total_weight
        profile.avg_price = price_sum / total_weight
        profile.avg_spice_level = spice_sum / total_weight
        profile.text_corpus = " ".join(texts)

        logger.debug("User profile built", user_id=user_id,
                     interactions=len(interactions),
                     categories=len(profile.category_weights))
        return profile

    @staticmethod
    def rating_vector(interactions: Iterable[Interaction]) -> Dict[str, float]:
        """Average implicit rating per item, the input to user-user similarity"""
        totals: Dict[str, float] = defaultdict(float)
        counts: Dict[str, int] = defaultdict(int)
        for interaction in interactions:
            totals[interaction.item_id] += interaction.implicit_rating
            counts[interaction.item_id] += 1
        return {item_id: totals[item_id] / counts[item_id] for item_id in totals}

    def analyze_activity(self, user_id: str, interactions: Iterable[Interaction],
                         now: Optional[datetime] = None) -> UserActivity:
        interactions = list(interactions)
        now = now or datetime.now()
        recent_cutoff = now - timedelta(days=self.recent_window_days)

        item_ids = {i.item_id for i in interactions}
        categories = {item.category for item in self.catalog.get_items(item_ids)}
        recent = [i for i in interactions if i.timestamp >= recent_cutoff]

        return UserActivity(
            user_id=user_id,
            interaction_count=len(interactions),
            recent_count=len(recent),
            unique_items=len(item_ids),
            unique_categories=len(categories),
            exploration_score=len(categories) / max(1, len(item_ids)),
            engagement_score=len(recent) / max(1, len(interactions)),
        )
