"""
Hybrid Recommendation Combiner
Merges scorer outputs under weighted, switching, cascade and adaptive
strategies, then applies diversification, contextual boosts and the
business availability filter
"""
import math
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import structlog

from hybrid_recommender.algorithms.scorers import Scorer, ScoringContext, UserContext
from hybrid_recommender.algorithms.user_profile import time_slot
from hybrid_recommender.models.item import Item
from hybrid_recommender.models.profile import UserActivity, UserSegment
from hybrid_recommender.models.recommendation import (
    HybridStrategy, Recommendation, ScoredItem, ScorerKind
)
from hybrid_recommender.services.providers import (
    DemandProvider, StaticDemandProvider, StaticWeatherProvider, WeatherProvider, suits_weather
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class HybridWeights:
    collaborative: float
    content: float
    popularity: float

    def as_dict(self) -> Dict[ScorerKind, float]:
        return {
            ScorerKind.COLLABORATIVE: self.collaborative,
            ScorerKind.CONTENT_BASED: self.content,
            ScorerKind.POPULARITY: self.popularity,
        }


DEFAULT_ADAPTIVE_WEIGHTS: Dict[UserSegment, HybridWeights] = {
    UserSegment.NEW: HybridWeights(0.0, 0.7, 0.3),
    UserSegment.EXPLORER: HybridWeights(0.3, 0.6, 0.1),
    UserSegment.FOCUSED: HybridWeights(0.7, 0.2, 0.1),
    UserSegment.ACTIVE: HybridWeights(0.5, 0.4, 0.1),
    UserSegment.CASUAL: HybridWeights(0.2, 0.4, 0.4),
}
FIRST_VISIT_WEIGHTS = HybridWeights(0.1, 0.4, 0.5)

SUITABLE_CATEGORIES = {
    'breakfast': ('breakfast', 'beverage', 'snack'),
    'lunch': ('main-course', 'salad', 'soup', 'sandwich'),
    'dinner': ('main-course', 'appetizer', 'dessert'),
    'snack': ('snack', 'beverage', 'dessert'),
}

DEFAULT_CONTEXT_BOOSTS = {
    'time_of_day': 1.2,
    'weather': 1.15,
    'budget': 1.1,
    'promotion': 1.2,
}

SOURCE_LABELS = {
    ScorerKind.COLLABORATIVE.value: 'users with similar taste liked it',
    ScorerKind.CONTENT_BASED.value: 'it matches your food preferences',
    ScorerKind.TRENDING.value: "it's trending right now",
    ScorerKind.POPULARITY.value: "it's popular and highly rated",
    ScorerKind.NEURAL.value: 'it fits your order patterns',
}


class HybridCombiner:
    """Combines scorer outputs into one ranked list"""

    def __init__(self,
                 collaborative_weight: float = 0.6,
                 content_weight: float = 0.4,
                 popularity_weight: float = 0.1,
                 cold_start_threshold: int = 5,
                 switching_min_interactions: int = 20,
                 cascade_primary_share: float = 0.6,
                 exploration_high: float = 0.7,
                 exploration_low: float = 0.3,
                 engagement_threshold: float = 0.3,
                 availability_threshold: float = 0.5,
                 fetch_multiplier: int = 2,
                 adaptive_weights: Optional[Dict[UserSegment, HybridWeights]] = None,
                 context_boosts: Optional[Dict[str, float]] = None,
                 weather_provider: Optional[WeatherProvider] = None,
                 demand_provider: Optional[DemandProvider] = None):
        self.collaborative_weight = collaborative_weight
        self.content_weight = content_weight
        self.popularity_weight = popularity_weight
        self.cold_start_threshold = cold_start_threshold
        self.switching_min_interactions = switching_min_interactions
        self.cascade_primary_share = cascade_primary_share
        self.exploration_high = exploration_high
        self.exploration_low = exploration_low
        self.engagement_threshold = engagement_threshold
        self.availability_threshold = availability_threshold
        self.fetch_multiplier = fetch_multiplier
        self.adaptive_weights = dict(DEFAULT_ADAPTIVE_WEIGHTS)
        self.adaptive_weights.update(adaptive_weights or {})
        self.context_boosts = dict(DEFAULT_CONTEXT_BOOSTS)
        self.context_boosts.update(context_boosts or {})
        self.weather_provider = weather_provider or StaticWeatherProvider()
        self.demand_provider = demand_provider or StaticDemandProvider()

        self._strategies: Dict[HybridStrategy, Callable[..., List[Recommendation]]] = {
            HybridStrategy.WEIGHTED: self._weighted,
            HybridStrategy.SWITCHING: self._switching,
            HybridStrategy.CASCADE: self._cascade,
            HybridStrategy.ADAPTIVE: self._adaptive,
        }

    # user classification

    def has_collaborative_data(self, activity: UserActivity) -> bool:
        return activity.interaction_count >= self.cold_start_threshold

    def classify_user(self, activity: UserActivity) -> UserSegment:
        if activity.interaction_count < self.cold_start_threshold:
            return UserSegment.NEW
        if activity.exploration_score > self.exploration_high:
            return UserSegment.EXPLORER
        if activity.exploration_score < self.exploration_low:
            return UserSegment.FOCUSED
        if activity.engagement_score > self.engagement_threshold:
            return UserSegment.ACTIVE
        return UserSegment.CASUAL

    def weights_for(self, activity: UserActivity,
                    request_context: Optional[Dict[str, Any]] = None) -> HybridWeights:
        segment = self.classify_user(activity)
        if segment != UserSegment.NEW and (request_context or {}).get('is_first_visit'):
            return FIRST_VISIT_WEIGHTS
        return self.adaptive_weights[segment]

    # strategies

    def combine(self, strategy: HybridStrategy, user: UserContext, candidates: List[Item],
                context: ScoringContext, scorers: Mapping[ScorerKind, Scorer]) -> List[Recommendation]:
        """
        Run the selected strategy

        Scorers are only invoked when the strategy gives them a role, so a
        cold-start user never reaches the collaborative scorer.
        """
        strategy = HybridStrategy(strategy)
        recommendations = self._strategies[strategy](user, candidates, context, scorers)
        logger.debug("Hybrid strategy applied", strategy=strategy.value,
                     user_id=user.user_id, results=len(recommendations))
        return recommendations

    def _run(self, kind: ScorerKind, scorers: Mapping[ScorerKind, Scorer], user: UserContext,
             candidates: List[Item], context: ScoringContext,
             limit: Optional[int] = None) -> List[ScoredItem]:
        scorer = scorers.get(kind)
        if scorer is None:
            return []
        scoped = replace(context, limit=limit if limit is not None else context.limit)
        return scorer.score(user, candidates, scoped)

    def merge_weighted(self, collaborative: List[ScoredItem], content: List[ScoredItem],
                       collaborative_weight: Optional[float] = None,
                       content_weight: Optional[float] = None,
                       algorithm: str = 'hybrid_weighted') -> List[Recommendation]:
        """
        score = wc * collaborative + wt * content; an item seen by one source
        carries only that source's weighted part
        """
        wc = self.collaborative_weight if collaborative_weight is None else collaborative_weight
        wt = self.content_weight if content_weight is None else content_weight
        return self._merge([(collaborative, wc), (content, wt)], algorithm)

    def _merge(self, weighted_lists: List[Tuple[List[ScoredItem], float]],
               algorithm: str) -> List[Recommendation]:
        merged: Dict[str, Recommendation] = {}
        explanations: Dict[str, List[str]] = {}

        for scored_items, weight in weighted_lists:
            for scored in scored_items:
                rec = merged.get(scored.item_id)
                if rec is None:
                    rec = Recommendation(item_id=scored.item_id, score=0.0,
                                         confidence=0.0, algorithm=algorithm)
                    merged[scored.item_id] = rec
                    explanations[scored.item_id] = []
                rec.score += scored.score * weight
                rec.confidence = max(rec.confidence, scored.confidence)
                rec.components[scored.source.value] = scored.score
                if scored.source.value not in rec.sources:
                    rec.sources.append(scored.source.value)
                if scored.explanation:
                    explanations[scored.item_id].append(scored.explanation)

        for item_id, rec in merged.items():
            rec.explanation = explanations[item_id][0] if explanations[item_id] else ""
        return sorted(merged.values(), key=lambda r: -r.score)

    def _weighted(self, user: UserContext, candidates: List[Item], context: ScoringContext,
                  scorers: Mapping[ScorerKind, Scorer]) -> List[Recommendation]:
        fetch = context.limit * self.fetch_multiplier
        collaborative = []
        if self.has_collaborative_data(user.activity):
            collaborative = self._run(ScorerKind.COLLABORATIVE, scorers, user, candidates, context, fetch)
        content = self._run(ScorerKind.CONTENT_BASED, scorers, user, candidates, context, fetch)
        recommendations = self.merge_weighted(collaborative, content)

        if len(recommendations) < context.limit:
            seen = {r.item_id for r in recommendations}
            popular = self._run(ScorerKind.POPULARITY, scorers, user, candidates, context, fetch)
            filler = [p for p in popular if p.item_id not in seen]
            recommendations.extend(self._merge([(filler, self.popularity_weight)], 'hybrid_weighted'))
        return recommendations

    def _switching(self, user: UserContext, candidates: List[Item], context: ScoringContext,
                   scorers: Mapping[ScorerKind, Scorer]) -> List[Recommendation]:
        if not self.has_collaborative_data(user.activity):
            kind = ScorerKind.CONTENT_BASED
        elif user.activity.interaction_count < self.switching_min_interactions:
            kind = ScorerKind.POPULARITY
        else:
            kind = ScorerKind.COLLABORATIVE

        scored = self._run(kind, scorers, user, candidates, context)
        return [Recommendation.from_scored(s, 'hybrid_switching') for s in scored]

    def _cascade(self, user: UserContext, candidates: List[Item], context: ScoringContext,
                 scorers: Mapping[ScorerKind, Scorer]) -> List[Recommendation]:
        target = context.limit
        recommendations: List[Recommendation] = []
        seen = set()

        stages = [ScorerKind.CONTENT_BASED, ScorerKind.POPULARITY]
        if self.has_collaborative_data(user.activity):
            stages.insert(0, ScorerKind.COLLABORATIVE)

        for kind in stages:
            quota = target - len(recommendations)
            if quota <= 0:
                break
            if kind == ScorerKind.COLLABORATIVE:
                quota = min(quota, math.ceil(target * self.cascade_primary_share))
            # over-fetch by the number already taken so duplicates don't leave gaps
            scored = self._run(kind, scorers, user, candidates, context, limit=quota + len(seen))
            added = 0
            for s in scored:
                if added >= quota:
                    break
                if s.item_id in seen:
                    continue
                recommendations.append(Recommendation.from_scored(s, f'hybrid_cascade_{kind.value}'))
                seen.add(s.item_id)
                added += 1
        return recommendations

    def _adaptive(self, user: UserContext, candidates: List[Item], context: ScoringContext,
                  scorers: Mapping[ScorerKind, Scorer]) -> List[Recommendation]:
        weights = self.weights_for(user.activity, context.request_context)
        fetch = context.limit * self.fetch_multiplier
        weighted_lists = [
            (self._run(kind, scorers, user, candidates, context, fetch), weight)
            for kind, weight in weights.as_dict().items()
            if weight > 0
        ]
        logger.debug("Adaptive weights selected", user_id=user.user_id,
                     segment=self.classify_user(user.activity).value,
                     weights=weights)
        return self._merge(weighted_lists, 'hybrid_adaptive')

    # post-processing

    def post_process(self, recommendations: List[Recommendation], items: Dict[str, Item],
                     request_context: Optional[Dict[str, Any]] = None,
                     diversity_factor: float = 0.3,
                     limit: Optional[int] = None,
                     now: Optional[datetime] = None) -> List[Recommendation]:
        """
        Diversify, apply contextual boosts, drop items below the availability
        threshold and return a strictly decreasing ranking
        """
        request_context = request_context or {}
        ranked = sorted(recommendations, key=lambda r: -r.score)

        if diversity_factor > 0:
            ranked = self.diversify(ranked, items, diversity_factor)
        ranked = self.apply_context(ranked, items, request_context, now or datetime.now())
        ranked = self.business_filter(ranked, items)

        for rec in ranked:
            if len(rec.sources) > 1 or not rec.explanation:
                rec.explanation = self.hybrid_explanation(rec)
            rec.personalization_score = self.personalization_score(rec)

        ranked.sort(key=lambda r: -r.score)
        ranked = ranked[:limit] if limit else ranked
        return self.enforce_strict_order(ranked)

    def diversify(self, recommendations: List[Recommendation], items: Dict[str, Item],
                  diversity_factor: float) -> List[Recommendation]:
        """
        Walk the ranking; each newly seen category or cuisine multiplies the
        score by (1 + f), each repeat by (1 - f)
        """
        seen_categories = set()
        seen_cuisines = set()
        for rec in recommendations:
            item = items.get(rec.item_id)
            if item is None:
                continue
            multiplier = 1.0
            for value, seen in ((item.category, seen_categories), (item.cuisine_type, seen_cuisines)):
                if not value:
                    continue
                if value in seen:
                    multiplier *= 1 - diversity_factor
                else:
                    multiplier *= 1 + diversity_factor
                    seen.add(value)
            rec.score *= multiplier
            rec.components['diversity'] = multiplier
        return sorted(recommendations, key=lambda r: -r.score)

    def apply_context(self, recommendations: List[Recommendation], items: Dict[str, Item],
                      request_context: Dict[str, Any], now: datetime) -> List[Recommendation]:
        period = request_context.get('time_of_day') or time_slot(now.hour)
        suitable = SUITABLE_CATEGORIES.get(period, SUITABLE_CATEGORIES['snack'])
        weather = request_context.get('weather') or self.weather_provider.current_condition(
            request_context.get('location'))
        budget = request_context.get('budget')
        if isinstance(budget, dict):
            budget = (budget.get('min', 0.0), budget.get('max', math.inf))
        elif isinstance(budget, (int, float)):
            budget = (0.0, float(budget))
        promoted = set(request_context.get('promotional_items', []))
        boosts = self.context_boosts

        for rec in recommendations:
            item = items.get(rec.item_id)
            if item is None:
                continue
            factor = 1.0
            if item.category in suitable:
                factor *= boosts['time_of_day']
            if suits_weather(item, weather):
                factor *= boosts['weather']
            if budget and budget[0] <= item.price <= budget[1]:
                factor *= boosts['budget']
            if item.is_promotional or item.item_id in promoted:
                factor *= boosts['promotion']
            factor *= self.demand_provider.demand_factor(item.item_id)
            if factor != 1.0:
                rec.score *= factor
                rec.components['context'] = factor
        return recommendations

    def business_filter(self, recommendations: List[Recommendation],
                        items: Dict[str, Item]) -> List[Recommendation]:
        return [
            rec for rec in recommendations
            if rec.item_id in items
            and items[rec.item_id].availability_score > self.availability_threshold
        ]

    @staticmethod
    def hybrid_explanation(rec: Recommendation) -> str:
        reasons = [SOURCE_LABELS[s] for s in rec.sources if s in SOURCE_LABELS]
        if not reasons:
            return rec.explanation or "Recommended for you"
        explanation = "Recommended because " + " and ".join(reasons[:2])
        if rec.confidence > 0.8:
            explanation += " (high confidence)"
        elif rec.confidence > 0.6:
            explanation += " (medium confidence)"
        return explanation

    @staticmethod
    def personalization_score(rec: Recommendation) -> float:
        score = 0.5
        if len(rec.sources) > 1:
            score += 0.2
        if ScorerKind.COLLABORATIVE.value in rec.sources:
            score += 0.2
        if ScorerKind.CONTENT_BASED.value in rec.sources:
            score += 0.15
        score += rec.confidence * 0.15
        return min(1.0, score)

    @staticmethod
    def enforce_strict_order(ranked: List[Recommendation]) -> List[Recommendation]:
        # exact ties are nudged down by one ulp so rank order is unambiguous
        for previous, current in zip(ranked, ranked[1:]):
            if current.score >= previous.score:
                current.score = math.nextafter(previous.score, -math.inf)
        return ranked
