"""
Recommendation Orchestrator
Top-level entry point: resolves the algorithm for a request (explicit
override, experiment assignment, configured default), dispatches to scorers
or the hybrid combiner, post-processes and records experiment exposure.
Scorer failures fall back to popularity ranking.
"""
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import structlog

from hybrid_recommender import config
from hybrid_recommender.algorithms.collaborative_filtering import SimilarityEngine, SimilarityMethod
from hybrid_recommender.algorithms.content_based_filtering import ContentProfiler
from hybrid_recommender.algorithms.hybrid_combiner import HybridCombiner
from hybrid_recommender.algorithms.matrix_factorization import MatrixFactorizationSGD
from hybrid_recommender.algorithms.neural import NeuralRecommendationModel
from hybrid_recommender.algorithms.popularity_based import PopularityRanker
from hybrid_recommender.algorithms.scorers import (
    CollaborativeScorer, ContentBasedScorer, NeuralScorer, PopularityScorer, Scorer,
    ScoringContext, TrendingScorer, UserContext
)
from hybrid_recommender.algorithms.trending_seasonal import TrendAnalyzer
from hybrid_recommender.exceptions import InvalidInteractionError, RecommenderError
from hybrid_recommender.experiments.ab_testing import ExperimentManager
from hybrid_recommender.metrics import ServiceMetrics
from hybrid_recommender.models.experiment import Assignment, ExperimentConfig, ExperimentResults
from hybrid_recommender.models.interaction import Interaction, InteractionType, MAX_RATING
from hybrid_recommender.models.item import Item, UserPreferences
from hybrid_recommender.models.recommendation import (
    Algorithm, ExperimentInfo, Recommendation, RecommendationOptions,
    RecommendationResponse, ScoredItem, ScorerKind
)
from hybrid_recommender.services.cache import Cache, InMemoryCache, RedisCache
from hybrid_recommender.services.data_store import InteractionStore, ItemCatalog
from hybrid_recommender.services.providers import DemandProvider, WeatherProvider

logger = structlog.get_logger(__name__)

FALLBACK_ALGORITHM = "fallback_popularity"

PreferencesProvider = Callable[[str], Optional[UserPreferences]]


class RecommendationOrchestrator:
    """Serves recommendations and experiment operations"""

    def __init__(self,
                 catalog: ItemCatalog,
                 interaction_store: InteractionStore,
                 scorers: Dict[ScorerKind, Scorer],
                 combiner: HybridCombiner,
                 profiler: ContentProfiler,
                 popularity: PopularityRanker,
                 experiments: ExperimentManager,
                 default_algorithm: Union[Algorithm, str] = Algorithm.HYBRID_ADAPTIVE,
                 max_candidates: int = 200,
                 preferences_provider: Optional[PreferencesProvider] = None,
                 similarity_engine: Optional[SimilarityEngine] = None,
                 trend_analyzer: Optional[TrendAnalyzer] = None,
                 neural_model: Optional[NeuralRecommendationModel] = None,
                 factorization: Optional[MatrixFactorizationSGD] = None,
                 metrics: Optional[ServiceMetrics] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.catalog = catalog
        self.interaction_store = interaction_store
        self.scorers = dict(scorers)
        self.combiner = combiner
        self.profiler = profiler
        self.popularity = popularity
        self.experiments = experiments
        self.default_algorithm = Algorithm(default_algorithm)
        self.max_candidates = max_candidates
        self.preferences_provider = preferences_provider
        self.similarity_engine = similarity_engine
        self.trend_analyzer = trend_analyzer
        self.neural_model = neural_model
        self.factorization = factorization
        self.metrics = metrics or ServiceMetrics()
        self.clock = clock
        self.logger = logger.bind(component="RecommendationOrchestrator")

    # recommendations

    def resolve_algorithm(self, user_id: str,
                          override: Optional[Algorithm] = None) -> Tuple[Algorithm, Optional[Assignment]]:
        """Explicit override, then experiment assignment, then the default"""
        if override is not None:
            return Algorithm(override), None
        assignment = self.experiments.resolve_algorithm(user_id)
        if assignment is not None:
            return assignment.algorithm, assignment
        return self.default_algorithm, None

    def get_recommendations(self, user_id: str,
                            options: Optional[Union[RecommendationOptions, Dict[str, Any]]] = None
                            ) -> RecommendationResponse:
        """
        Generate ranked recommendations for a user

        Args:
            user_id: User identifier
            options: limit, algorithm, context, diversity_factor,
                exclude_interacted, exclude_items, category

        Returns:
            RecommendationResponse; never raises for scorer failures
        """
        if options is None:
            options = RecommendationOptions()
        elif isinstance(options, dict):
            options = RecommendationOptions(**options)

        started = time.perf_counter()
        now = self.clock()
        algorithm, assignment = self.resolve_algorithm(user_id, options.algorithm)

        candidates = self._candidates(options.category)
        items = {item.item_id: item for item in candidates}
        exclude_ids = set(options.exclude_items)
        is_fallback = False

        try:
            user = self._user_context(user_id, now)
            if options.exclude_interacted:
                exclude_ids |= user.profile.interacted_items
            context = ScoringContext(
                limit=options.limit,
                exclude_ids=exclude_ids,
                category=options.category,
                request_context=options.context,
                now=now,
            )
            effective = self._route_cold_start(algorithm, user)
            recommendations = self._dispatch(effective, user, candidates, context)
            recommendations = self.combiner.post_process(
                recommendations, items, options.context,
                diversity_factor=options.diversity_factor,
                limit=options.limit,
                now=now,
            )
            algorithm_used = effective.value
        except Exception:
            self.logger.exception("Recommendation generation failed, using popularity fallback",
                                  user_id=user_id, algorithm=algorithm.value)
            self.metrics.fallbacks.labels(algorithm=algorithm.value).inc()
            recommendations = self._fallback(candidates, items, exclude_ids, options.limit)
            algorithm_used = FALLBACK_ALGORITHM
            is_fallback = True

        experiment_info = None
        if assignment is not None:
            self.experiments.record_exposure(assignment, [r.item_id for r in recommendations])
            experiment_info = ExperimentInfo(
                experiment_id=assignment.experiment_id,
                variant=assignment.variant.value,
                algorithm=assignment.algorithm.value,
            )

        self.metrics.recommendations_served.labels(algorithm=algorithm_used).inc()
        self.metrics.request_latency.labels(algorithm=algorithm_used).observe(time.perf_counter() - started)
        self.logger.info("Recommendations generated", user_id=user_id,
                         algorithm=algorithm_used, count=len(recommendations),
                         experiment_id=experiment_info.experiment_id if experiment_info else None)

        return RecommendationResponse(
            user_id=user_id,
            recommendations=recommendations,
            algorithm_used=algorithm_used,
            experiment_info=experiment_info,
            total_generated=len(recommendations),
            is_fallback=is_fallback,
            generated_at=now,
        )

    def _candidates(self, category: Optional[str]) -> List[Item]:
        available = [
            item for item in self.catalog.available_items(category)
            if item.availability_score > self.combiner.availability_threshold
        ]
        available.sort(key=lambda item: (-self.popularity.combined_score(item), item.item_id))
        return available[:self.max_candidates]

    def _user_context(self, user_id: str, now: datetime) -> UserContext:
        interactions = self.interaction_store.for_user(user_id)
        preferences = self.preferences_provider(user_id) if self.preferences_provider else None
        return UserContext(
            user_id=user_id,
            profile=self.profiler.build_profile(user_id, interactions),
            activity=self.profiler.profile_builder.analyze_activity(user_id, interactions, now),
            interactions=interactions,
            preferences=preferences,
        )

    def _route_cold_start(self, algorithm: Algorithm, user: UserContext) -> Algorithm:
        if algorithm == Algorithm.COLLABORATIVE and not self.combiner.has_collaborative_data(user.activity):
            self.logger.info("Cold-start user routed to content/popularity blend",
                             user_id=user.user_id,
                             interactions=user.activity.interaction_count)
            return Algorithm.HYBRID_ADAPTIVE
        return algorithm

    def _dispatch(self, algorithm: Algorithm, user: UserContext, candidates: List[Item],
                  context: ScoringContext) -> List[Recommendation]:
        if algorithm.is_hybrid:
            return self.combiner.combine(algorithm.hybrid_strategy, user, candidates, context, self.scorers)

        scorer = self.scorers.get(algorithm.scorer_kind)
        if scorer is None:
            raise RecommenderError(f"no scorer registered for {algorithm.value}")
        scored = scorer.score(user, candidates, context)
        return [Recommendation.from_scored(s, algorithm.value) for s in scored]

    def _fallback(self, candidates: List[Item], items: Dict[str, Item],
                  exclude_ids: set, limit: int) -> List[Recommendation]:
        scored = self.popularity.recommend(candidates, exclude_ids=exclude_ids, limit=limit)
        recommendations = [Recommendation.from_scored(s, FALLBACK_ALGORITHM) for s in scored]
        for rec in recommendations:
            rec.is_fallback = True
        recommendations = self.combiner.business_filter(recommendations, items)
        return self.combiner.enforce_strict_order(recommendations)

    def get_trending(self, limit: int = 10, category: Optional[str] = None) -> List[ScoredItem]:
        """Items ranked by the latest trend snapshot"""
        if self.trend_analyzer is None:
            return []
        return self.trend_analyzer.get_trending(limit=limit, category=category)

    def get_seasonal(self, period: Optional[str] = None, limit: int = 10) -> List[ScoredItem]:
        """Seasonal favourites for a meal period, the current one by default"""
        if self.trend_analyzer is None:
            return []
        return self.trend_analyzer.get_seasonal(period=period, limit=limit, now=self.clock())

    # interactions

    def track_interaction(self, user_id: str, item_id: str,
                          interaction_type: Union[InteractionType, str],
                          value: Optional[float] = None,
                          context: Optional[Dict[str, Any]] = None,
                          duration_seconds: Optional[float] = None) -> Dict[str, Any]:
        """
        Append an interaction and attribute it to running experiments

        Raises:
            InvalidInteractionError: Unknown type or a rating outside [0, 5]
            ExperimentNotFoundError: context names an unknown experiment_id
        """
        context = dict(context or {})
        try:
            interaction_type = InteractionType(interaction_type)
        except ValueError as e:
            raise InvalidInteractionError(f"unknown interaction type: {interaction_type}") from e
        if interaction_type == InteractionType.RATE and (value is None or not 0 <= value <= MAX_RATING):
            raise InvalidInteractionError("rate interactions need a value between 0 and 5")
        if context.get('experiment_id'):
            self.experiments.get_experiment(context['experiment_id'])

        interaction = Interaction(
            user_id=user_id,
            item_id=item_id,
            interaction_type=interaction_type,
            timestamp=self.clock(),
            value=value,
            duration_seconds=duration_seconds,
            context=context,
        )
        self.interaction_store.append(interaction)
        self.profiler.invalidate_profile(user_id)
        experiments = self.experiments.track_interaction(interaction, context.get('experiment_id'))
        self.metrics.interactions_tracked.labels(interaction_type=interaction_type.value).inc()

        self.logger.info("Interaction tracked", user_id=user_id, item_id=item_id,
                         interaction_type=interaction_type.value, experiments=experiments)
        return {
            'status': 'recorded',
            'user_id': user_id,
            'item_id': item_id,
            'interaction_type': interaction_type.value,
            'implicit_rating': interaction.implicit_rating,
            'experiments': experiments,
        }

    # experiments

    def create_experiment(self, experiment_config: Union[ExperimentConfig, Dict[str, Any]]) -> str:
        return self.experiments.create_experiment(experiment_config)

    def get_experiment_results(self, experiment_id: str) -> ExperimentResults:
        return self.experiments.analyze(experiment_id)

    def stop_experiment(self, experiment_id: str) -> None:
        self.experiments.stop_experiment(experiment_id)

    def get_service_status(self) -> Dict[str, Any]:
        status = {
            'default_algorithm': self.default_algorithm.value,
            'scorers': sorted(kind.value for kind in self.scorers),
            'active_experiments': len(self.experiments.active_experiments()),
        }
        if self.trend_analyzer is not None:
            status['trends'] = self.trend_analyzer.status()
        if self.similarity_engine is not None:
            status['similarity'] = self.similarity_engine.matrix_guard.status()
        if self.neural_model is not None:
            status['neural_model'] = {
                'trained': self.neural_model.is_trained,
                'version': self.neural_model.model_version,
            }
        return status


def build_cache(redis_config: Optional[Dict[str, Any]] = None) -> Cache:
    redis_config = redis_config or config.REDIS_CONFIG
    if redis_config.get('enabled'):
        return RedisCache.from_config(redis_config)
    return InMemoryCache()


def build_recommendation_service(catalog: ItemCatalog,
                                 interaction_store: InteractionStore,
                                 cache: Optional[Cache] = None,
                                 weather_provider: Optional[WeatherProvider] = None,
                                 demand_provider: Optional[DemandProvider] = None,
                                 preferences_provider: Optional[PreferencesProvider] = None,
                                 metrics: Optional[ServiceMetrics] = None,
                                 clock: Callable[[], datetime] = datetime.now
                                 ) -> RecommendationOrchestrator:
    """Wire every component from the configuration module"""
    cache = cache or build_cache()
    metrics = metrics or ServiceMetrics()

    def on_skip(job: str) -> None:
        metrics.batch_jobs_skipped.labels(job=job).inc()

    cf = config.COLLABORATIVE_CONFIG
    similarity_engine = SimilarityEngine(
        interaction_store=interaction_store,
        cache=cache,
        min_similarity=cf['min_similarity'],
        min_common_items=cf['min_common_items'],
        max_neighbors=cf['max_neighbors'],
        min_score=cf['min_score'],
        neighbor_window_days=cf['neighbor_window_days'],
        cache_ttl=cf['cache_ttl'],
        on_job_skipped=on_skip,
    )
    factorization = MatrixFactorizationSGD(
        n_factors=cf['mf_factors'],
        iterations=cf['mf_iterations'],
        learning_rate=cf['mf_learning_rate'],
        regularization=cf['mf_regularization'],
    )

    cb = config.CONTENT_CONFIG
    profiler = ContentProfiler(
        catalog,
        cache=cache,
        min_score=cb['min_score'],
        include_text_similarity=cb['include_text_similarity'],
        text_weight=cb['text_weight'],
        score_weights=cb['score_weights'],
        profile_cache_ttl=cb['profile_cache_ttl'],
    )

    tr = config.TRENDING_CONFIG
    hy = config.HYBRID_CONFIG
    trend_analyzer = TrendAnalyzer(
        interaction_store, catalog,
        cache=cache,
        trending_window_days=tr['trending_window_days'],
        seasonal_history_days=tr['seasonal_history_days'],
        min_interactions=tr['min_interactions'],
        min_seasonal_interactions=tr['min_seasonal_interactions'],
        max_trending_items=tr['max_trending_items'],
        cache_ttl=tr['cache_ttl'],
        spike_window_hours=tr['spike_window_hours'],
        spike_baseline_days=tr['spike_baseline_days'],
        spike_multiplier=tr['spike_multiplier'],
        spike_min_interactions=tr['spike_min_interactions'],
        emerging_ttl=tr['emerging_ttl'],
        availability_threshold=hy['availability_threshold'],
        weights=tr['weights'],
        clock=clock,
        on_job_skipped=on_skip,
    )

    popularity = PopularityRanker()
    neural_model = NeuralRecommendationModel(catalog, on_job_skipped=on_skip)

    combiner = HybridCombiner(
        collaborative_weight=hy['collaborative_weight'],
        content_weight=hy['content_weight'],
        popularity_weight=hy['popularity_weight'],
        cold_start_threshold=hy['cold_start_threshold'],
        switching_min_interactions=hy['switching_min_interactions'],
        cascade_primary_share=hy['cascade_primary_share'],
        availability_threshold=hy['availability_threshold'],
        context_boosts=hy['context_boosts'],
        weather_provider=weather_provider,
        demand_provider=demand_provider,
    )

    ex = config.EXPERIMENT_CONFIG
    experiments = ExperimentManager(
        cache=cache,
        interaction_store=interaction_store,
        catalog=catalog,
        default_traffic_split=ex['default_traffic_split'],
        min_sample_size=ex['min_sample_size'],
        significance_level=ex['significance_level'],
        confidence_level=ex['confidence_level'],
        default_duration_days=ex['default_duration_days'],
        exposure_ttl=ex['exposure_ttl'],
        clock=clock,
    )

    scorers: Dict[ScorerKind, Scorer] = {
        ScorerKind.COLLABORATIVE: CollaborativeScorer(
            similarity_engine, SimilarityMethod(cf['default_method']), factorization),
        ScorerKind.CONTENT_BASED: ContentBasedScorer(profiler),
        ScorerKind.TRENDING: TrendingScorer(trend_analyzer),
        ScorerKind.POPULARITY: PopularityScorer(popularity),
        ScorerKind.NEURAL: NeuralScorer(neural_model),
    }

    svc = config.SERVICE_CONFIG
    return RecommendationOrchestrator(
        catalog=catalog,
        interaction_store=interaction_store,
        scorers=scorers,
        combiner=combiner,
        profiler=profiler,
        popularity=popularity,
        experiments=experiments,
        default_algorithm=Algorithm(svc['default_algorithm']),
        max_candidates=svc['max_candidates'],
        preferences_provider=preferences_provider,
        similarity_engine=similarity_engine,
        trend_analyzer=trend_analyzer,
        neural_model=neural_model,
        factorization=factorization,
        metrics=metrics,
        clock=clock,
    )
