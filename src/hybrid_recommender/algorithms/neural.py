"""
Neural recommendation model
A small multi-layer perceptron over user-profile and item features that
predicts the normalised implicit rating of a user-item pair
"""
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import joblib
import numpy as np
import structlog
from sklearn.neural_network import MLPRegressor

from hybrid_recommender.algorithms.user_profile import UserProfileBuilder
from hybrid_recommender.exceptions import ModelNotTrainedError
from hybrid_recommender.models.interaction import MAX_RATING, Interaction
from hybrid_recommender.models.item import Item
from hybrid_recommender.models.profile import UserProfile
from hybrid_recommender.services.batch_jobs import BatchJobGuard, JobRun
from hybrid_recommender.services.data_store import ItemCatalog

logger = structlog.get_logger(__name__)


class NeuralRecommendationModel:
    """MLP scorer trained on observed interactions plus sampled negatives"""

    def __init__(self, catalog: ItemCatalog,
                 hidden_layer_sizes: Tuple[int, ...] = (64, 32),
                 max_iter: int = 300,
                 min_training_samples: int = 20,
                 negative_ratio: float = 1.0,
                 random_state: Optional[int] = 42,
                 on_job_skipped: Optional[Callable[[str], None]] = None):
        self.catalog = catalog
        self.profile_builder = UserProfileBuilder(catalog)
        self.hidden_layer_sizes = hidden_layer_sizes
        self.max_iter = max_iter
        self.min_training_samples = min_training_samples
        self.negative_ratio = negative_ratio
        self.random_state = random_state

        self.model: Optional[MLPRegressor] = None
        self.is_trained = False
        self.model_version = "1.0.0"
        self.trained_at: Optional[datetime] = None
        self.guard = BatchJobGuard('neural_training', on_skip=on_job_skipped)

    @staticmethod
    def features(profile: UserProfile, item: Item) -> np.ndarray:
        affinity = [
            profile.category_weights.get(item.category, 0.0),
            profile.cuisine_weights.get(item.cuisine_type, 0.0) if item.cuisine_type else 0.0,
            abs(item.price - profile.avg_price) / max(profile.avg_price, 1.0),
            abs(item.spice_level - profile.avg_spice_level) / 5,
            item.popularity_score,
            item.rating_average / 5,
        ]
        return np.concatenate([profile.feature_vector, item.content_vector(), affinity])

    def train(self, interactions: Iterable[Interaction]) -> JobRun:
        """Retrain unless a training run is already in progress"""
        return self.guard.run(self._train, list(interactions))

    def _train(self, interactions: List[Interaction]) -> bool:
        by_user: Dict[str, List[Interaction]] = defaultdict(list)
        for interaction in interactions:
            by_user[interaction.user_id].append(interaction)

        all_items = self.catalog.available_items()
        rng = np.random.default_rng(self.random_state)
        rows: List[np.ndarray] = []
        targets: List[float] = []

        for user_id, history in by_user.items():
            profile = self.profile_builder.build_profile(user_id, history)
            ratings = UserProfileBuilder.rating_vector(history)
            items = {item.item_id: item for item in self.catalog.get_items(ratings)}

            for item_id, rating in ratings.items():
                if item_id in items:
                    rows.append(self.features(profile, items[item_id]))
                    targets.append(rating / MAX_RATING)

            unseen = [item for item in all_items if item.item_id not in ratings]
            n_negative = min(len(unseen), int(len(ratings) * self.negative_ratio))
            if n_negative:
                for idx in rng.choice(len(unseen), size=n_negative, replace=False):
                    rows.append(self.features(profile, unseen[idx]))
                    targets.append(0.0)

        if len(rows) < self.min_training_samples:
            logger.warning("Not enough samples to train neural model",
                           samples=len(rows), required=self.min_training_samples)
            return False

        model = MLPRegressor(
            hidden_layer_sizes=self.hidden_layer_sizes,
            max_iter=self.max_iter,
            random_state=self.random_state,
        )
        model.fit(np.vstack(rows), np.array(targets))

        self.model = model
        self.is_trained = True
        self.trained_at = datetime.now()
        logger.info("Neural model trained", samples=len(rows), users=len(by_user),
                    loss=float(model.loss_))
        return True

    def predict(self, profile: UserProfile, items: List[Item]) -> np.ndarray:
        if not self.is_trained or self.model is None:
            raise ModelNotTrainedError("neural model is not trained")
        if not items:
            return np.zeros(0)
        matrix = np.vstack([self.features(profile, item) for item in items])
        return np.clip(self.model.predict(matrix), 0.0, 1.0)

    def save_model(self, filepath: str):
        joblib.dump({
            'model': self.model,
            'model_version': self.model_version,
            'trained_at': self.trained_at,
        }, filepath)
        logger.info("Model saved successfully", filepath=filepath)

    def load_model(self, filepath: str):
        model_data = joblib.load(filepath)
        self.model = model_data['model']
        self.model_version = model_data['model_version']
        self.trained_at = model_data['trained_at']
        self.is_trained = self.model is not None
        logger.info("Model loaded successfully", filepath=filepath)
