"""
Collaborative Filtering
Implements user-user similarity (cosine, pearson, jaccard), neighbour search,
neighbour-weighted scoring and the batch similarity refresh
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

import numpy as np
import structlog
from sklearn.metrics.pairwise import cosine_similarity

from hybrid_recommender.algorithms.user_profile import UserProfileBuilder
from hybrid_recommender.models.item import Item
from hybrid_recommender.models.recommendation import ScoredItem, ScorerKind
from hybrid_recommender.services.batch_jobs import BatchJobGuard, JobRun, VersionedPublisher
from hybrid_recommender.services.cache import Cache, InMemoryCache
from hybrid_recommender.services.data_store import InteractionStore

logger = structlog.get_logger(__name__)

RatingVector = Dict[str, float]


class SimilarityMethod(str, Enum):
    COSINE = "cosine"
    PEARSON = "pearson"
    JACCARD = "jaccard"


@dataclass(frozen=True)
class SimilarityScore:
    id_a: str
    id_b: str
    method: str
    score: float


@dataclass(frozen=True)
class Neighbor:
    user_id: str
    similarity: float


@dataclass
class SimilarityMatrix:
    """Result of one batch refresh"""
    computed_at: datetime
    user_pairs: List[SimilarityScore] = field(default_factory=list)
    neighbors: Dict[str, Dict[str, List[Neighbor]]] = field(default_factory=dict)
    item_pairs: List[SimilarityScore] = field(default_factory=list)


class SimilarityEngine:
    """User-based collaborative filtering"""

    def __init__(self,
                 interaction_store: Optional[InteractionStore] = None,
                 cache: Optional[Cache] = None,
                 min_similarity: float = 0.1,
                 min_common_items: int = 3,
                 max_neighbors: int = 50,
                 min_score: float = 0.1,
                 neighbor_window_days: int = 90,
                 cache_ttl: int = 3600,
                 on_job_skipped: Optional[Callable[[str], None]] = None):
        self.interaction_store = interaction_store
        self.cache = cache or InMemoryCache()
        self.min_similarity = min_similarity
        self.min_common_items = min_common_items
        self.max_neighbors = max_neighbors
        self.min_score = min_score
        self.neighbor_window_days = neighbor_window_days
        self.cache_ttl = cache_ttl

        self.matrix_guard = BatchJobGuard('similarity_refresh', on_skip=on_job_skipped)
        self.matrix_publisher = VersionedPublisher(self.cache, 'similarity_matrix')
        self.logger = logger.bind(component="SimilarityEngine")

    def similarity(self, ratings_a: RatingVector, ratings_b: RatingVector,
                   method: SimilarityMethod = SimilarityMethod.COSINE) -> float:
        """
        Similarity of two users over the items both interacted with

        Args:
            ratings_a: item_id -> rating for the first user
            ratings_b: item_id -> rating for the second user
            method: cosine, pearson or jaccard

        Returns:
            Symmetric score in [-1, 1] (jaccard in [0, 1]); 0 when fewer than
            min_common_items items are shared
        """
        method = SimilarityMethod(method)
        # sorted so both argument orders sum in the same sequence
        common = sorted(set(ratings_a) & set(ratings_b))
        if len(common) < self.min_common_items or not common:
            return 0.0

        if method == SimilarityMethod.JACCARD:
            union = set(ratings_a) | set(ratings_b)
            return len(common) / len(union)

        vec_a = np.array([ratings_a[i] for i in common], dtype=float)
        vec_b = np.array([ratings_b[i] for i in common], dtype=float)

        if method == SimilarityMethod.PEARSON:
            vec_a = vec_a - vec_a.mean()
            vec_b = vec_b - vec_b.mean()
            denominator = np.sqrt(np.sum(vec_a ** 2) * np.sum(vec_b ** 2))
        else:
            denominator = np.linalg.norm(vec_a) * np.linalg.norm(vec_b)

        if denominator == 0:
            return 0.0
        score = float(np.dot(vec_a, vec_b) / denominator)
        return max(-1.0, min(1.0, score))

    def find_neighbors(self, target: RatingVector, candidate_pool: Dict[str, RatingVector],
                       method: SimilarityMethod = SimilarityMethod.COSINE,
                       min_similarity: Optional[float] = None,
                       max_neighbors: Optional[int] = None) -> List[Neighbor]:
        """Rank candidates by similarity to the target and keep the strongest"""
        threshold = self.min_similarity if min_similarity is None else min_similarity
        limit = self.max_neighbors if max_neighbors is None else max_neighbors

        neighbors = []
        for user_id, ratings in candidate_pool.items():
            score = self.similarity(target, ratings, method)
            if score >= threshold:
                neighbors.append(Neighbor(user_id=user_id, similarity=score))

        neighbors.sort(key=lambda n: (-n.similarity, n.user_id))
        return neighbors[:limit]

    def recommend(self, target: RatingVector, neighbors: List[Neighbor],
                  neighbor_ratings: Dict[str, RatingVector],
                  exclude_ids: Iterable[str] = (),
                  limit: Optional[int] = None,
                  method: SimilarityMethod = SimilarityMethod.COSINE) -> List[ScoredItem]:
        """
        Score items the target has not seen by similarity-weighted neighbour ratings

        Returns:
            ScoredItems with score = sum(sim * rating) / sum(sim) on the rating
            scale and confidence = min(1, supporting neighbours / 5)
        """
        excluded = set(exclude_ids) | set(target)
        weighted_sum: Dict[str, float] = defaultdict(float)
        similarity_sum: Dict[str, float] = defaultdict(float)
        support: Dict[str, int] = defaultdict(int)

        for neighbor in neighbors:
            for item_id, rating in neighbor_ratings.get(neighbor.user_id, {}).items():
                if item_id in excluded:
                    continue
                weighted_sum[item_id] += neighbor.similarity * rating
                similarity_sum[item_id] += neighbor.similarity
                support[item_id] += 1

        results = []
        method = SimilarityMethod(method)
        for item_id, total in weighted_sum.items():
            if similarity_sum[item_id] <= 0:
                continue
            score = total / similarity_sum[item_id]
            if score < self.min_score:
                continue
            count = support[item_id]
            results.append(ScoredItem(
                item_id=item_id,
                score=score,
                confidence=min(1.0, count / 5),
                source=ScorerKind.COLLABORATIVE,
                explanation=f"Recommended based on {count} similar users who liked this item",
                components={'collaborative': score, 'supporting_neighbors': float(count)},
            ))

        results.sort(key=lambda r: (-r.score, r.item_id))
        self.logger.debug("Collaborative scores computed", method=method.value,
                          neighbors=len(neighbors), items=len(results))
        return results[:limit] if limit else results

    def generate_recommendations(self, user_id: str,
                                 method: SimilarityMethod = SimilarityMethod.COSINE,
                                 limit: Optional[int] = 10,
                                 exclude_ids: Iterable[str] = (),
                                 now: Optional[datetime] = None) -> List[ScoredItem]:
        """Look up the user's neighbourhood from the interaction log and score items"""
        store = self._require_store()
        now = now or datetime.now()
        since = now - timedelta(days=self.neighbor_window_days)

        target = UserProfileBuilder.rating_vector(store.for_user(user_id))
        if not target:
            return []

        neighbors = self.neighbors_for(user_id, target, method, now)
        if not neighbors:
            self.logger.info("No similar users found", user_id=user_id, method=method.value)
            return []

        neighbor_ratings = {
            n.user_id: UserProfileBuilder.rating_vector(store.for_user(n.user_id, since=since))
            for n in neighbors
        }
        return self.recommend(target, neighbors, neighbor_ratings, exclude_ids, limit, method)

    def neighbors_for(self, user_id: str, target: RatingVector,
                      method: SimilarityMethod, now: datetime) -> List[Neighbor]:
        method = SimilarityMethod(method)
        cache_key = f"similar_users:{user_id}:{method.value}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        snapshot = self.matrix_publisher.current()
        if snapshot is not None and user_id in snapshot.payload.neighbors.get(method.value, {}):
            neighbors = snapshot.payload.neighbors[method.value][user_id]
        else:
            pool = self._rating_pool(now)
            pool.pop(user_id, None)
            neighbors = self.find_neighbors(target, pool, method)

        self.cache.set(cache_key, neighbors, self.cache_ttl)
        return neighbors

    def refresh_similarity_matrix(self, items: Optional[List[Item]] = None,
                                  now: Optional[datetime] = None) -> JobRun:
        """Recompute all user-user (and optionally item-item) similarities"""
        return self.matrix_guard.run(self._compute_similarity_matrix, items, now or datetime.now())

    def _compute_similarity_matrix(self, items: Optional[List[Item]], now: datetime) -> SimilarityMatrix:
        pool = self._rating_pool(now)
        users = sorted(pool)
        matrix = SimilarityMatrix(computed_at=now)
        neighbors: Dict[str, Dict[str, List[Neighbor]]] = {
            m.value: defaultdict(list) for m in SimilarityMethod
        }

        for idx, user_a in enumerate(users):
            for user_b in users[idx + 1:]:
                for method in SimilarityMethod:
                    score = self.similarity(pool[user_a], pool[user_b], method)
                    if score < self.min_similarity:
                        continue
                    matrix.user_pairs.append(SimilarityScore(user_a, user_b, method.value, score))
                    neighbors[method.value][user_a].append(Neighbor(user_b, score))
                    neighbors[method.value][user_b].append(Neighbor(user_a, score))

        for method_name, by_user in neighbors.items():
            matrix.neighbors[method_name] = {
                user_id: sorted(found, key=lambda n: (-n.similarity, n.user_id))[:self.max_neighbors]
                for user_id, found in by_user.items()
            }

        if items:
            matrix.item_pairs = self.item_similarities(items)

        self.matrix_publisher.publish(matrix, now)
        self.logger.info("Similarity matrix refreshed", users=len(users),
                         user_pairs=len(matrix.user_pairs), item_pairs=len(matrix.item_pairs))
        return matrix

    def item_similarities(self, items: List[Item]) -> List[SimilarityScore]:
        """Item-item content similarity above min_similarity"""
        if len(items) < 2:
            return []
        vectors = np.vstack([item.content_vector() for item in items])
        scores = cosine_similarity(vectors)

        pairs = []
        for i in range(len(items)):
            for j in range(i + 1, len(items)):
                score = float(scores[i, j])
                if score >= self.min_similarity:
                    pairs.append(SimilarityScore(items[i].item_id, items[j].item_id, 'content', score))
        return pairs

    def similar_items(self, item_id: str, limit: int = 10) -> List[SimilarityScore]:
        snapshot = self.matrix_publisher.current()
        if snapshot is None:
            return []
        matches = [p for p in snapshot.payload.item_pairs if item_id in (p.id_a, p.id_b)]
        matches.sort(key=lambda p: -p.score)
        return matches[:limit]

    def _rating_pool(self, now: datetime) -> Dict[str, RatingVector]:
        store = self._require_store()
        since = now - timedelta(days=self.neighbor_window_days)
        return {
            user_id: UserProfileBuilder.rating_vector(store.for_user(user_id, since=since))
            for user_id in store.active_users(since)
        }

    def _require_store(self) -> InteractionStore:
        if self.interaction_store is None:
            raise RuntimeError("SimilarityEngine needs an interaction store for this operation")
        return self.interaction_store
