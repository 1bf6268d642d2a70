"""
Trending & Seasonal Analysis
Daily trend scores, weekly patterns, seasonal meal-period patterns and spike
detection over the interaction log
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

import pandas as pd
import structlog

from hybrid_recommender.models.recommendation import ScoredItem, ScorerKind
from hybrid_recommender.services.batch_jobs import BatchJobGuard, JobRun, VersionedPublisher
from hybrid_recommender.services.cache import Cache, InMemoryCache
from hybrid_recommender.services.data_store import InteractionStore, ItemCatalog

logger = structlog.get_logger(__name__)

DEFAULT_TREND_WEIGHTS = {
    'interactions': 0.3,
    'unique_users': 0.25,
    'momentum': 0.2,
    'purchases': 0.15,
    'rating': 0.1,
}

SEASON_MONTHS = {
    'winter': (12, 1, 2),
    'spring': (3, 4, 5),
    'summer': (6, 7, 8),
    'autumn': (9, 10, 11),
}

WEEKLY_WINDOW_DAYS = 28


def season_for(month: int) -> str:
    for season, months in SEASON_MONTHS.items():
        if month in months:
            return season
    raise ValueError(f"invalid month: {month}")


def meal_period(hour: int) -> str:
    """Meal period used for seasonal bucketing"""
    if 6 <= hour <= 10:
        return 'breakfast'
    if 11 <= hour <= 15:
        return 'lunch'
    if 18 <= hour <= 22:
        return 'dinner'
    return 'snack'


@dataclass
class TrendScore:
    item_id: str
    trending_score: float
    interactions: int
    unique_users: int
    purchases: int
    avg_rating: float
    momentum: float
    growth_rate: float
    trend_strength: float
    category: Optional[str] = None


@dataclass
class SeasonalItem:
    item_id: str
    meal_period: str
    season: str
    interactions: int
    avg_rating: float
    seasonal_score: float


@dataclass
class WeeklyPattern:
    item_id: str
    day_of_week: int
    total_interactions: int
    active_hours: int
    day_trend_score: float


@dataclass
class TrendSnapshot:
    computed_at: datetime
    season: str
    daily: List[TrendScore] = field(default_factory=list)
    seasonal: Dict[str, List[SeasonalItem]] = field(default_factory=dict)
    weekly: List[WeeklyPattern] = field(default_factory=list)


class TrendAnalyzer:
    """Batch trend analysis with a serialised recompute and cached read paths"""

    def __init__(self, interaction_store: InteractionStore, catalog: ItemCatalog,
                 cache: Optional[Cache] = None,
                 trending_window_days: int = 7,
                 seasonal_history_days: int = 365,
                 min_interactions: int = 10,
                 min_seasonal_interactions: int = 10,
                 max_trending_items: int = 100,
                 cache_ttl: int = 1800,
                 spike_window_hours: int = 2,
                 spike_baseline_days: int = 7,
                 spike_multiplier: float = 3.0,
                 spike_min_interactions: int = 5,
                 emerging_ttl: int = 3600,
                 availability_threshold: float = 0.5,
                 weights: Optional[Dict[str, float]] = None,
                 clock: Callable[[], datetime] = datetime.now,
                 on_job_skipped: Optional[Callable[[str], None]] = None):
        self.interaction_store = interaction_store
        self.catalog = catalog
        self.cache = cache or InMemoryCache()
        self.trending_window_days = trending_window_days
        self.seasonal_history_days = seasonal_history_days
        self.min_interactions = min_interactions
        self.min_seasonal_interactions = min_seasonal_interactions
        self.max_trending_items = max_trending_items
        self.spike_window_hours = spike_window_hours
        self.spike_baseline_days = spike_baseline_days
        self.spike_multiplier = spike_multiplier
        self.spike_min_interactions = spike_min_interactions
        self.emerging_ttl = emerging_ttl
        self.availability_threshold = availability_threshold
        self.weights = dict(DEFAULT_TREND_WEIGHTS)
        self.weights.update(weights or {})
        self.clock = clock

        self.guard = BatchJobGuard('trend_recompute', on_skip=on_job_skipped)
        self.publisher = VersionedPublisher(self.cache, 'trends:snapshot', ttl=cache_ttl)
        self.logger = logger.bind(component="TrendAnalyzer")

    def _available_ids(self) -> set:
        return {
            item.item_id for item in self.catalog.available_items()
            if item.availability_score > self.availability_threshold
        }

    def daily_trends(self, now: Optional[datetime] = None) -> List[TrendScore]:
        """
        Score items by recent activity over the trending window

        Returns:
            TrendScores sorted descending, normalised so the top item scores 1
        """
        now = now or self.clock()
        window = self.trending_window_days
        df = self.interaction_store.to_frame(now - timedelta(days=window), now)
        if df.empty:
            return []

        df = df.assign(
            age_days=(pd.Timestamp(now) - pd.to_datetime(df['timestamp'])).dt.days,
            is_purchase=df['interaction_type'].eq('order'),
            rate_value=df['value'].where(df['interaction_type'] == 'rate'),
        )
        df['recency'] = window - df['age_days']

        grouped = df.groupby('item_id')
        stats = pd.DataFrame({
            'interactions': grouped.size(),
            'unique_users': grouped['user_id'].nunique(),
            # equals sum(count_d * (window - age_d)) / sum(count_d)
            'momentum': grouped['recency'].mean(),
            'purchases': grouped['is_purchase'].sum(),
            'active_days': grouped['age_days'].nunique(),
            'avg_rating': grouped['rate_value'].mean().fillna(0.0),
        })

        stats = stats[stats['interactions'] >= self.min_interactions]
        stats = stats[stats.index.isin(self._available_ids())].copy()
        if stats.empty:
            return []

        w = self.weights
        stats['raw_score'] = (
            stats['interactions'] * w['interactions'] +
            stats['unique_users'] * w['unique_users'] +
            stats['momentum'] * w['momentum'] +
            stats['purchases'] * w['purchases'] +
            stats['avg_rating'] * w['rating']
        )
        max_score = stats['raw_score'].max()
        stats['trending_score'] = stats['raw_score'] / max_score if max_score > 0 else 0.0
        stats['growth_rate'] = (stats['momentum'] - 1) * 100
        stats['trend_strength'] = (
            (stats['active_days'] / window) * 0.4 +
            (stats['unique_users'] / stats['interactions']) * 0.3 +
            (stats['momentum'] / 5).clip(upper=1.0) * 0.3
        )

        stats = stats.sort_values(['trending_score', 'interactions'], ascending=False)
        stats = stats.head(self.max_trending_items)

        items = {item.item_id: item for item in self.catalog.get_items(stats.index)}
        return [
            TrendScore(
                item_id=item_id,
                trending_score=float(row['trending_score']),
                interactions=int(row['interactions']),
                unique_users=int(row['unique_users']),
                purchases=int(row['purchases']),
                avg_rating=float(row['avg_rating']),
                momentum=float(row['momentum']),
                growth_rate=float(row['growth_rate']),
                trend_strength=float(row['trend_strength']),
                category=items[item_id].category if item_id in items else None,
            )
            for item_id, row in stats.iterrows()
        ]

    def weekly_patterns(self, now: Optional[datetime] = None) -> List[WeeklyPattern]:
        """Activity per item and day of week over the last four weeks"""
        now = now or self.clock()
        df = self.interaction_store.to_frame(now - timedelta(days=WEEKLY_WINDOW_DAYS), now)
        if df.empty:
            return []

        timestamps = pd.to_datetime(df['timestamp'])
        df = df.assign(day_of_week=timestamps.dt.dayofweek, hour=timestamps.dt.hour)
        grouped = df.groupby(['item_id', 'day_of_week'])
        stats = pd.DataFrame({
            'total': grouped.size(),
            'active_hours': grouped['hour'].nunique(),
        })
        stats['day_trend_score'] = stats['total'] * stats['active_hours'] / 24
        stats = stats.sort_values('day_trend_score', ascending=False)

        return [
            WeeklyPattern(
                item_id=item_id,
                day_of_week=int(day),
                total_interactions=int(row['total']),
                active_hours=int(row['active_hours']),
                day_trend_score=float(row['day_trend_score']),
            )
            for (item_id, day), row in stats.iterrows()
        ]

    def seasonal_patterns(self, now: Optional[datetime] = None) -> Dict[str, List[SeasonalItem]]:
        """
        Popular items per meal period for the current season

        Looks back over the seasonal history, keeps only months belonging to
        the current season and ranks by interactions times a rating factor.
        """
        now = now or self.clock()
        season = season_for(now.month)
        df = self.interaction_store.to_frame(now - timedelta(days=self.seasonal_history_days), now)
        if df.empty:
            return {}

        timestamps = pd.to_datetime(df['timestamp'])
        df = df.assign(
            month=timestamps.dt.month,
            meal_period=timestamps.dt.hour.map(meal_period),
            rate_value=df['value'].where(df['interaction_type'] == 'rate'),
        )
        df = df[df['month'].isin(SEASON_MONTHS[season])]
        if df.empty:
            return {}

        grouped = df.groupby(['item_id', 'meal_period'])
        stats = pd.DataFrame({
            'interactions': grouped.size(),
            'avg_rating': grouped['rate_value'].mean().fillna(0.0),
        })
        stats = stats[stats['interactions'] >= self.min_seasonal_interactions]

        available = self._available_ids()
        stats = stats[stats.index.get_level_values('item_id').isin(available)].copy()
        if stats.empty:
            return {}

        rating_factor = (stats['avg_rating'] / 5).where(stats['avg_rating'] > 0, 0.5)
        stats['seasonal_score'] = stats['interactions'] * rating_factor
        stats = stats.sort_values('seasonal_score', ascending=False)

        patterns: Dict[str, List[SeasonalItem]] = {}
        for (item_id, period), row in stats.iterrows():
            patterns.setdefault(period, []).append(SeasonalItem(
                item_id=item_id,
                meal_period=period,
                season=season,
                interactions=int(row['interactions']),
                avg_rating=float(row['avg_rating']),
                seasonal_score=float(row['seasonal_score']),
            ))
        return patterns

    def detect_spikes(self, now: Optional[datetime] = None) -> List[str]:
        """
        Items whose count over the spike window exceeds the multiplier times
        their trailing hourly average

        The emerging set is cached with its own TTL.
        """
        now = now or self.clock()
        recent_start = now - timedelta(hours=self.spike_window_hours)
        df = self.interaction_store.to_frame(now - timedelta(days=self.spike_baseline_days), now)
        if df.empty:
            self.cache.set('trends:emerging', [], self.emerging_ttl)
            return []

        timestamps = pd.to_datetime(df['timestamp'])
        recent_mask = timestamps >= pd.Timestamp(recent_start)
        recent_counts = df[recent_mask].groupby('item_id').size()
        recent_counts = recent_counts[recent_counts >= self.spike_min_interactions]

        baseline = df[~recent_mask].assign(hour_bucket=timestamps[~recent_mask].dt.floor('h'))
        hourly_average = baseline.groupby(['item_id', 'hour_bucket']).size().groupby(level=0).mean()

        emerging = sorted(
            item_id for item_id, count in recent_counts.items()
            if count > self.spike_multiplier * float(hourly_average.get(item_id, 1.0))
        )
        self.cache.set('trends:emerging', emerging, self.emerging_ttl)
        if emerging:
            self.logger.info("Emerging trends detected", items=emerging)
        return emerging

    def emerging_items(self) -> List[str]:
        return self.cache.get('trends:emerging') or []

    def recompute(self, now: Optional[datetime] = None) -> JobRun:
        """Run the full analysis unless one is already in progress"""
        return self.guard.run(self._recompute, now or self.clock())

    def _recompute(self, now: datetime) -> TrendSnapshot:
        snapshot = TrendSnapshot(
            computed_at=now,
            season=season_for(now.month),
            daily=self.daily_trends(now),
            seasonal=self.seasonal_patterns(now),
            weekly=self.weekly_patterns(now),
        )
        self.publisher.publish(snapshot, now)
        self.logger.info("Trend analysis completed", trending=len(snapshot.daily),
                         seasonal_periods=len(snapshot.seasonal))
        return snapshot

    def current_snapshot(self) -> Optional[TrendSnapshot]:
        snapshot = self.publisher.current()
        if snapshot is None:
            run = self.recompute()
            if not run.ran:
                return None
            return run.result
        return snapshot.payload

    def get_trending(self, limit: int = 10, category: Optional[str] = None,
                     exclude_ids: Iterable[str] = ()) -> List[ScoredItem]:
        snapshot = self.current_snapshot()
        if snapshot is None:
            return []
        excluded = set(exclude_ids)
        emerging = set(self.emerging_items())

        results = []
        for trend in snapshot.daily:
            if trend.item_id in excluded or (category and trend.category != category):
                continue
            explanation = "Trending now"
            if trend.item_id in emerging:
                explanation = "Rising fast right now"
            results.append(ScoredItem(
                item_id=trend.item_id,
                score=trend.trending_score,
                confidence=0.8,
                source=ScorerKind.TRENDING,
                explanation=explanation,
                components={'trending': trend.trending_score,
                            'trend_strength': trend.trend_strength},
            ))
            if len(results) >= limit:
                break
        return results

    def get_seasonal(self, period: Optional[str] = None, limit: int = 10,
                     exclude_ids: Iterable[str] = (),
                     now: Optional[datetime] = None) -> List[ScoredItem]:
        snapshot = self.current_snapshot()
        if snapshot is None:
            return []
        period = period or meal_period((now or self.clock()).hour)
        entries = snapshot.seasonal.get(period, [])
        if not entries:
            return []

        excluded = set(exclude_ids)
        top_score = entries[0].seasonal_score or 1.0
        return [
            ScoredItem(
                item_id=entry.item_id,
                score=entry.seasonal_score / top_score,
                confidence=0.75,
                source=ScorerKind.TRENDING,
                explanation=f"Popular for {period} this {entry.season}",
                components={'seasonal': entry.seasonal_score},
            )
            for entry in entries if entry.item_id not in excluded
        ][:limit]

    def status(self) -> dict:
        snapshot = self.publisher.current()
        status = self.guard.status()
        status['snapshot_version'] = snapshot.version if snapshot else None
        status['emerging_items'] = len(self.emerging_items())
        return status
