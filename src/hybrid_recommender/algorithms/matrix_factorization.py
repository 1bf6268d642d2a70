"""
Matrix Factorization using stochastic gradient descent
Learns latent user and item factors from implicit ratings
"""
from typing import Dict, Iterable, List, Optional

import joblib
import numpy as np
import structlog

from hybrid_recommender.algorithms.user_profile import UserProfileBuilder
from hybrid_recommender.exceptions import ModelNotTrainedError
from hybrid_recommender.models.interaction import MAX_RATING, Interaction
from hybrid_recommender.models.recommendation import ScoredItem, ScorerKind

logger = structlog.get_logger(__name__)


class MatrixFactorizationSGD:
    """
    Latent factor model trained with SGD and L2 regularisation

    Training runs a fixed number of epochs. There is no convergence check, so
    the iteration count is the only stopping rule.
    """

    def __init__(self, n_factors: int = 50, iterations: int = 100,
                 learning_rate: float = 0.01, regularization: float = 0.01,
                 random_state: Optional[int] = None):
        self.n_factors = n_factors
        self.iterations = iterations
        self.learning_rate = learning_rate
        self.regularization = regularization
        self.random_state = random_state

        self.user_factors: Optional[np.ndarray] = None
        self.item_factors: Optional[np.ndarray] = None
        self.user_to_idx: Dict[str, int] = {}
        self.item_to_idx: Dict[str, int] = {}
        self.idx_to_item: Dict[int, str] = {}
        self.user_ratings: Dict[str, Dict[str, float]] = {}
        self.training_error: Optional[float] = None
        self.is_trained = False
        self.model_version = "1.0.0"

    def fit(self, interactions: Iterable[Interaction]) -> 'MatrixFactorizationSGD':
        """
        Train factors on the average implicit rating of each user-item pair

        Args:
            interactions: Interaction history across users
        """
        by_user: Dict[str, List[Interaction]] = {}
        for interaction in interactions:
            by_user.setdefault(interaction.user_id, []).append(interaction)

        self.user_ratings = {
            user_id: UserProfileBuilder.rating_vector(history)
            for user_id, history in by_user.items()
        }
        users = sorted(self.user_ratings)
        items = sorted({item_id for ratings in self.user_ratings.values() for item_id in ratings})
        if not users or not items:
            logger.warning("Cannot train matrix factorization without interactions")
            return self

        self.user_to_idx = {user: idx for idx, user in enumerate(users)}
        self.item_to_idx = {item: idx for idx, item in enumerate(items)}
        self.idx_to_item = {idx: item for item, idx in self.item_to_idx.items()}

        samples = [
            (self.user_to_idx[user], self.item_to_idx[item], rating)
            for user, ratings in self.user_ratings.items()
            for item, rating in ratings.items()
        ]

        rng = np.random.default_rng(self.random_state)
        self.user_factors = (rng.random((len(users), self.n_factors)) - 0.5) * 0.1
        self.item_factors = (rng.random((len(items), self.n_factors)) - 0.5) * 0.1

        logger.info("Training matrix factorization", n_users=len(users),
                    n_items=len(items), n_samples=len(samples), n_factors=self.n_factors)

        lr = self.learning_rate
        reg = self.regularization
        for _ in range(self.iterations):
            squared_error = 0.0
            for u, i, rating in samples:
                user_vec = self.user_factors[u].copy()
                item_vec = self.item_factors[i]
                error = rating - float(user_vec @ item_vec)
                squared_error += error ** 2
                self.user_factors[u] += lr * (error * item_vec - reg * user_vec)
                self.item_factors[i] += lr * (error * user_vec - reg * item_vec)
            self.training_error = float(np.sqrt(squared_error / len(samples)))

        self.is_trained = True
        logger.info("Matrix factorization trained", rmse=self.training_error)
        return self

    def predict(self, user_id: str, item_id: str) -> float:
        if not self.is_trained:
            raise ModelNotTrainedError("matrix factorization model is not trained")
        if user_id not in self.user_to_idx or item_id not in self.item_to_idx:
            return 0.0
        raw = float(self.user_factors[self.user_to_idx[user_id]] @
                    self.item_factors[self.item_to_idx[item_id]])
        return max(0.0, min(MAX_RATING, raw))

    def recommend(self, user_id: str, exclude_ids: Iterable[str] = (),
                  limit: int = 10) -> List[ScoredItem]:
        if not self.is_trained:
            raise ModelNotTrainedError("matrix factorization model is not trained")
        if user_id not in self.user_to_idx:
            return []

        excluded = set(exclude_ids) | set(self.user_ratings.get(user_id, {}))
        raw = self.item_factors @ self.user_factors[self.user_to_idx[user_id]]
        scores = np.clip(raw, 0.0, MAX_RATING)

        results = [
            ScoredItem(
                item_id=self.idx_to_item[idx],
                score=float(scores[idx]),
                confidence=0.8,
                source=ScorerKind.COLLABORATIVE,
                explanation="Recommended based on your taste profile",
                components={'matrix_factorization': float(scores[idx])},
            )
            for idx in np.argsort(-scores)
            if self.idx_to_item[idx] not in excluded and scores[idx] > 0
        ]
        return results[:limit]

    def save_model(self, filepath: str):
        model_data = {
            'user_factors': self.user_factors,
            'item_factors': self.item_factors,
            'user_to_idx': self.user_to_idx,
            'item_to_idx': self.item_to_idx,
            'user_ratings': self.user_ratings,
            'model_version': self.model_version,
            'training_params': {
                'n_factors': self.n_factors,
                'iterations': self.iterations,
                'learning_rate': self.learning_rate,
                'regularization': self.regularization,
            },
        }
        joblib.dump(model_data, filepath)
        logger.info("Model saved successfully", filepath=filepath)

    def load_model(self, filepath: str):
        model_data = joblib.load(filepath)

        self.user_factors = model_data['user_factors']
        self.item_factors = model_data['item_factors']
        self.user_to_idx = model_data['user_to_idx']
        self.item_to_idx = model_data['item_to_idx']
        self.idx_to_item = {idx: item for item, idx in self.item_to_idx.items()}
        self.user_ratings = model_data['user_ratings']
        self.model_version = model_data['model_version']

        params = model_data['training_params']
        self.n_factors = params['n_factors']
        self.iterations = params['iterations']
        self.learning_rate = params['learning_rate']
        self.regularization = params['regularization']

        self.is_trained = True
        logger.info("Model loaded successfully", filepath=filepath)
