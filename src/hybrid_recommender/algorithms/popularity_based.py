"""
Popularity-based Recommendation Engine
Ranks items by popularity, rating and trend for cold-start users and fallbacks
"""
from typing import Iterable, List, Optional

import structlog

from hybrid_recommender.models.item import Item
from hybrid_recommender.models.recommendation import ScoredItem, ScorerKind

logger = structlog.get_logger(__name__)


class PopularityRanker:
    """Non-personalised ranking shared by cold start and error fallback"""

    def __init__(self, popularity_weight: float = 0.6, rating_weight: float = 0.3,
                 trend_weight: float = 0.1, rank_decay: float = 0.05,
                 min_score: float = 0.1, confidence: float = 0.7):
        self.popularity_weight = popularity_weight
        self.rating_weight = rating_weight
        self.trend_weight = trend_weight
        self.rank_decay = rank_decay
        self.min_score = min_score
        self.confidence = confidence

    def combined_score(self, item: Item) -> float:
        return (item.popularity_score * self.popularity_weight +
                (item.rating_average / 5) * self.rating_weight +
                item.trend_score * self.trend_weight)

    def recommend(self, candidates: List[Item], exclude_ids: Iterable[str] = (),
                  limit: int = 10, category: Optional[str] = None) -> List[ScoredItem]:
        """
        Rank available items by combined popularity

        Args:
            candidates: Items to rank
            exclude_ids: Items never returned
            limit: Maximum results
            category: Optional category filter

        Returns:
            ScoredItems whose score decays with rank
        """
        excluded = set(exclude_ids)
        pool = [
            item for item in candidates
            if item.is_available and item.item_id not in excluded
            and (category is None or item.category == category)
        ]
        pool.sort(key=lambda item: (-self.combined_score(item), item.item_id))

        results = []
        for rank, item in enumerate(pool[:limit]):
            results.append(ScoredItem(
                item_id=item.item_id,
                score=max(self.min_score, 1 - rank * self.rank_decay),
                confidence=self.confidence,
                source=ScorerKind.POPULARITY,
                explanation="Popular choice among our customers",
                components={'popularity': self.combined_score(item)},
            ))

        logger.debug("Popularity ranking generated", candidates=len(pool), returned=len(results))
        return results
