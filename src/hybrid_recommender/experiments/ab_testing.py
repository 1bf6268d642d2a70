"""
A/B Testing Framework
Experiment lifecycle, deterministic variant assignment, exposure and
interaction tracking, and significance analysis
"""
import hashlib
import secrets
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import structlog
from pydantic import ValidationError

from hybrid_recommender.exceptions import (
    DuplicateExperimentError, ExperimentNotFoundError, ExperimentValidationError
)
from hybrid_recommender.experiments.statistics import two_proportion_z_test
from hybrid_recommender.models.experiment import (
    Assignment, Experiment, ExperimentConfig, ExperimentDecision, ExperimentResults,
    ExperimentStatus, SegmentFilters, SignificanceResult, Variant, VariantMetrics
)
from hybrid_recommender.models.interaction import Interaction, InteractionType
from hybrid_recommender.services.cache import Cache, InMemoryCache
from hybrid_recommender.services.data_store import (
    ExperimentRepository, InMemoryExperimentRepository, InteractionStore, ItemCatalog
)

logger = structlog.get_logger(__name__)

IMPRESSIONS_COUNTER = "recommendations_shown"
HASH_SPACE = 2 ** 32


def assign_variant(user_id: str, experiment_id: str, traffic_split: float) -> Optional[Variant]:
    """
    Deterministic bucket for a user in an experiment

    The first 32 bits of md5("user:experiment") map the pair into [0, 1):
    [0, split) is treatment, [split, 2 * split) is control, the rest is
    excluded.
    """
    digest = hashlib.md5(f"{user_id}:{experiment_id}".encode("utf-8")).hexdigest()
    bucket = int(digest[:8], 16) / HASH_SPACE
    if bucket < traffic_split:
        return Variant.TREATMENT
    if bucket < traffic_split * 2:
        return Variant.CONTROL
    return None


class ExperimentManager:
    """Runs algorithm experiments"""

    def __init__(self,
                 repository: Optional[ExperimentRepository] = None,
                 cache: Optional[Cache] = None,
                 interaction_store: Optional[InteractionStore] = None,
                 catalog: Optional[ItemCatalog] = None,
                 default_traffic_split: float = 0.5,
                 min_sample_size: int = 30,
                 significance_level: float = 0.05,
                 confidence_level: float = 0.95,
                 default_duration_days: int = 14,
                 exposure_ttl: int = 86400,
                 clock: Callable[[], datetime] = datetime.now):
        self.repository = repository or InMemoryExperimentRepository()
        self.cache = cache or InMemoryCache()
        self.interaction_store = interaction_store
        self.catalog = catalog
        self.default_traffic_split = default_traffic_split
        self.min_sample_size = min_sample_size
        self.significance_level = significance_level
        self.confidence_level = confidence_level
        self.default_duration_days = default_duration_days
        self.exposure_ttl = exposure_ttl
        self.clock = clock
        self._create_lock = threading.Lock()
        self.logger = logger.bind(component="ExperimentManager")

    # lifecycle

    def create_experiment(self, config: Union[ExperimentConfig, Dict[str, Any]]) -> str:
        """
        Validate and persist a new active experiment

        Raises:
            ExperimentValidationError: Required fields missing or malformed
            DuplicateExperimentError: An active experiment has the same name
        """
        if not isinstance(config, ExperimentConfig):
            payload = dict(config)
            payload.setdefault('traffic_split', self.default_traffic_split)
            payload.setdefault('duration_days', self.default_duration_days)
            payload.setdefault('min_sample_size', self.min_sample_size)
            payload.setdefault('significance_level', self.significance_level)
            try:
                config = ExperimentConfig(**payload)
            except ValidationError as e:
                raise ExperimentValidationError(str(e)) from e

        # name check and save must not interleave with another create
        with self._create_lock:
            now = self.clock()
            if any(exp.name == config.name and exp.is_running(now)
                   for exp in self.repository.list_experiments()):
                raise DuplicateExperimentError(f"an active experiment named '{config.name}' exists")

            experiment = Experiment(
                experiment_id=secrets.token_hex(8),
                name=config.name,
                description=config.description,
                control_algorithm=config.control_algorithm,
                treatment_algorithm=config.treatment_algorithm,
                traffic_split=config.traffic_split,
                start_date=now,
                end_date=now + timedelta(days=config.duration_days),
                target_metrics=list(config.target_metrics),
                segment_filters=config.segment_filters,
                min_sample_size=config.min_sample_size,
                significance_level=config.significance_level,
            )
            self.repository.save_experiment(experiment)
        self.logger.info("Experiment created", experiment_id=experiment.experiment_id,
                         name=experiment.name,
                         control=experiment.control_algorithm.value,
                         treatment=experiment.treatment_algorithm.value,
                         traffic_split=experiment.traffic_split)
        return experiment.experiment_id

    def get_experiment(self, experiment_id: str) -> Experiment:
        experiment = self.repository.get_experiment(experiment_id)
        if experiment is None:
            raise ExperimentNotFoundError(experiment_id)
        return experiment

    def active_experiments(self, now: Optional[datetime] = None) -> List[Experiment]:
        now = now or self.clock()
        running = [exp for exp in self.repository.list_experiments() if exp.is_running(now)]
        return sorted(running, key=lambda exp: exp.start_date)

    def stop_experiment(self, experiment_id: str) -> Experiment:
        experiment = self.get_experiment(experiment_id)
        experiment.status = ExperimentStatus.STOPPED
        experiment.stopped_at = self.clock()
        self.repository.save_experiment(experiment)
        self.logger.info("Experiment stopped", experiment_id=experiment_id)
        return experiment

    # assignment

    def user_matches_segment(self, user_id: str, filters: SegmentFilters) -> bool:
        if filters.min_interactions is None and not filters.preferred_categories:
            return True
        if self.interaction_store is None:
            return False

        history = self.interaction_store.for_user(user_id)
        if filters.min_interactions is not None and len(history) < filters.min_interactions:
            return False
        if filters.preferred_categories:
            if self.catalog is None:
                return False
            categories = {item.category for item in
                          self.catalog.get_items({i.item_id for i in history})}
            if not categories & set(filters.preferred_categories):
                return False
        return True

    def get_or_create_assignment(self, user_id: str, experiment: Experiment) -> Optional[Assignment]:
        """Lazily persist a user's variant; an existing assignment never changes"""
        cache_key = f"assignment:{experiment.experiment_id}:{user_id}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        existing = self.repository.get_assignment(user_id, experiment.experiment_id)
        if existing is None:
            if not self.user_matches_segment(user_id, experiment.segment_filters):
                return None
            variant = assign_variant(user_id, experiment.experiment_id, experiment.traffic_split)
            if variant is None:
                return None
            existing = self.repository.add_assignment(Assignment(
                user_id=user_id,
                experiment_id=experiment.experiment_id,
                variant=variant,
                algorithm=experiment.algorithm_for(variant),
                assigned_at=self.clock(),
            ))

        remaining = (experiment.end_date - self.clock()).total_seconds()
        self.cache.set(cache_key, existing, max(1, int(remaining)))
        return existing

    def resolve_algorithm(self, user_id: str) -> Optional[Assignment]:
        """First running experiment that admits the user, if any"""
        for experiment in self.active_experiments():
            assignment = self.get_or_create_assignment(user_id, experiment)
            if assignment is not None:
                return assignment
        return None

    # tracking

    def record_exposure(self, assignment: Assignment, item_ids: Iterable[str]) -> None:
        item_ids = list(item_ids)
        self.repository.increment(assignment.experiment_id, assignment.variant, IMPRESSIONS_COUNTER)
        key = f"exposure:{assignment.experiment_id}:{assignment.user_id}"
        shown = set(self.cache.get(key) or set())
        shown.update(item_ids)
        self.cache.set(key, shown, self.exposure_ttl)

    def track_interaction(self, interaction: Interaction,
                          experiment_id: Optional[str] = None) -> List[str]:
        """
        Attribute an interaction to experiments

        With an explicit experiment id the user's assignment there is used.
        Otherwise the interaction counts for every running experiment that
        recently showed the item to the user.

        Returns:
            Ids of experiments the interaction was recorded for
        """
        if experiment_id is not None:
            experiments = [self.get_experiment(experiment_id)]
        else:
            experiments = self.active_experiments()

        recorded = []
        for experiment in experiments:
            assignment = self.repository.get_assignment(interaction.user_id, experiment.experiment_id)
            if assignment is None:
                continue
            if experiment_id is None:
                shown = self.cache.get(f"exposure:{experiment.experiment_id}:{interaction.user_id}") or set()
                if interaction.item_id not in shown:
                    continue
            self.repository.add_interaction(experiment.experiment_id, assignment.variant, interaction)
            self.repository.increment(experiment.experiment_id, assignment.variant,
                                      interaction.interaction_type.value)
            recorded.append(experiment.experiment_id)
        return recorded

    # analysis

    def variant_metrics(self, experiment_id: str, variant: Variant) -> VariantMetrics:
        assignments = self.repository.assignments(experiment_id, variant)
        interactions = self.repository.interactions(experiment_id, variant)
        counters = self.repository.counters(experiment_id, variant)

        sample_size = len(assignments)
        impressions = counters.get(IMPRESSIONS_COUNTER, 0)
        clicks = sum(1 for i in interactions if i.interaction_type == InteractionType.CLICK)
        views = sum(1 for i in interactions if i.interaction_type == InteractionType.VIEW)
        conversions = sum(1 for i in interactions if i.interaction_type == InteractionType.ORDER)
        active_users = len({i.user_id for i in interactions})

        return VariantMetrics(
            variant=variant,
            sample_size=sample_size,
            active_users=active_users,
            total_interactions=len(interactions),
            unique_items=len({i.item_id for i in interactions}),
            impressions=impressions,
            views=views,
            clicks=clicks,
            conversions=conversions,
            ctr=min(1.0, clicks / impressions) if impressions else 0.0,
            conversion_rate=min(1.0, conversions / clicks) if clicks else 0.0,
            engagement_rate=min(1.0, active_users / sample_size) if sample_size else 0.0,
            interactions_per_user=len(interactions) / sample_size if sample_size else 0.0,
        )

    @staticmethod
    def decide(significance: Dict[str, SignificanceResult]) -> ExperimentDecision:
        significant = [r for r in significance.values() if r.is_significant]
        if not significant:
            return ExperimentDecision.INCONCLUSIVE
        positive = sum(1 for r in significant if r.effect > 0)
        if positive > len(significant) / 2:
            return ExperimentDecision.TREATMENT_WINS
        return ExperimentDecision.CONTROL_WINS

    def analyze(self, experiment_id: str) -> ExperimentResults:
        """Per-variant metrics, a z-test per target metric and the decision"""
        experiment = self.get_experiment(experiment_id)
        control = self.variant_metrics(experiment_id, Variant.CONTROL)
        treatment = self.variant_metrics(experiment_id, Variant.TREATMENT)

        significance = {
            metric: two_proportion_z_test(
                metric,
                control.rate(metric), control.sample_size,
                treatment.rate(metric), treatment.sample_size,
                min_sample_size=experiment.min_sample_size,
                alpha=experiment.significance_level,
                confidence_level=self.confidence_level,
            )
            for metric in experiment.target_metrics
        }
        decision = self.decide(significance)

        self.logger.info("Experiment analyzed", experiment_id=experiment_id,
                         control_size=control.sample_size,
                         treatment_size=treatment.sample_size,
                         decision=decision.value)
        return ExperimentResults(
            experiment_id=experiment_id,
            control=control,
            treatment=treatment,
            significance=significance,
            decision=decision,
            analyzed_at=self.clock(),
        )
