"""
Recommendation Engine Configuration
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _get_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == 'true'


# Cache Configuration
REDIS_CONFIG = {
    'enabled': _get_bool('REDIS_ENABLED', 'false'),
    'host': os.getenv('REDIS_HOST', 'localhost'),
    'port': int(os.getenv('REDIS_PORT', '6379')),
    'db': int(os.getenv('REDIS_DB', '0')),
    'password': os.getenv('REDIS_PASSWORD') or None,
    'key_prefix': os.getenv('REDIS_KEY_PREFIX', 'recommender:'),
    'socket_timeout': 5,
}

# Collaborative Filtering
COLLABORATIVE_CONFIG = {
    'min_similarity': float(os.getenv('CF_MIN_SIMILARITY', '0.1')),
    'min_common_items': int(os.getenv('CF_MIN_COMMON_ITEMS', '3')),
    'max_neighbors': int(os.getenv('CF_MAX_NEIGHBORS', '50')),
    'min_score': float(os.getenv('CF_MIN_SCORE', '0.1')),
    'neighbor_window_days': int(os.getenv('CF_NEIGHBOR_WINDOW_DAYS', '90')),
    'cache_ttl': int(os.getenv('CF_CACHE_TTL', '3600')),  # 1 hour
    'default_method': os.getenv('CF_DEFAULT_METHOD', 'cosine'),
    # Matrix factorization (SGD)
    'mf_factors': int(os.getenv('MF_FACTORS', '50')),
    'mf_iterations': int(os.getenv('MF_ITERATIONS', '100')),
    'mf_learning_rate': float(os.getenv('MF_LEARNING_RATE', '0.01')),
    'mf_regularization': float(os.getenv('MF_REGULARIZATION', '0.01')),
}

# Content-Based Filtering
CONTENT_CONFIG = {
    'min_score': float(os.getenv('CONTENT_MIN_SCORE', '0.1')),
    'include_text_similarity': _get_bool('CONTENT_TEXT_SIMILARITY', 'true'),
    'text_weight': float(os.getenv('CONTENT_TEXT_WEIGHT', '0.3')),
    'score_weights': {
        'category': 3.0,
        'cuisine': 3.0,
        'features': 2.0,
        'price': 1.0,
        'spice': 1.0,
        'dietary': 2.0,
        'preferences': 2.0,
        'popularity': 1.0,
    },
    'profile_cache_ttl': int(os.getenv('PROFILE_CACHE_TTL', '1800')),
}

# Trending & Seasonal Analysis
TRENDING_CONFIG = {
    'trending_window_days': int(os.getenv('TRENDING_WINDOW_DAYS', '7')),
    'seasonal_history_days': int(os.getenv('SEASONAL_HISTORY_DAYS', '365')),
    'min_interactions': int(os.getenv('TRENDING_MIN_INTERACTIONS', '10')),
    'min_seasonal_interactions': int(os.getenv('SEASONAL_MIN_INTERACTIONS', '10')),
    'max_trending_items': int(os.getenv('TRENDING_MAX_ITEMS', '100')),
    'cache_ttl': int(os.getenv('TRENDING_CACHE_TTL', '1800')),  # 30 minutes
    'spike_window_hours': int(os.getenv('SPIKE_WINDOW_HOURS', '2')),
    'spike_baseline_days': int(os.getenv('SPIKE_BASELINE_DAYS', '7')),
    'spike_multiplier': float(os.getenv('SPIKE_MULTIPLIER', '3.0')),
    'spike_min_interactions': int(os.getenv('SPIKE_MIN_INTERACTIONS', '5')),
    'emerging_ttl': int(os.getenv('EMERGING_TTL', '3600')),
    'weights': {
        'interactions': 0.3,
        'unique_users': 0.25,
        'momentum': 0.2,
        'purchases': 0.15,
        'rating': 0.1,
    },
}

# Hybrid Combination
HYBRID_CONFIG = {
    'default_strategy': os.getenv('HYBRID_DEFAULT_STRATEGY', 'adaptive'),
    'collaborative_weight': float(os.getenv('HYBRID_COLLABORATIVE_WEIGHT', '0.6')),
    'content_weight': float(os.getenv('HYBRID_CONTENT_WEIGHT', '0.4')),
    'popularity_weight': float(os.getenv('HYBRID_POPULARITY_WEIGHT', '0.1')),
    'cold_start_threshold': int(os.getenv('COLD_START_THRESHOLD', '5')),
    'switching_min_interactions': int(os.getenv('SWITCHING_MIN_INTERACTIONS', '20')),
    'cascade_primary_share': float(os.getenv('CASCADE_PRIMARY_SHARE', '0.6')),
    'diversity_factor': float(os.getenv('DIVERSITY_FACTOR', '0.3')),
    'availability_threshold': float(os.getenv('AVAILABILITY_THRESHOLD', '0.5')),
    'context_boosts': {
        'time_of_day': 1.2,
        'weather': 1.15,
        'budget': 1.1,
        'promotion': 1.2,
    },
}

# A/B Testing
EXPERIMENT_CONFIG = {
    'default_traffic_split': float(os.getenv('EXPERIMENT_TRAFFIC_SPLIT', '0.5')),
    'min_sample_size': int(os.getenv('EXPERIMENT_MIN_SAMPLE_SIZE', '30')),
    'significance_level': float(os.getenv('EXPERIMENT_SIGNIFICANCE_LEVEL', '0.05')),
    'confidence_level': float(os.getenv('EXPERIMENT_CONFIDENCE_LEVEL', '0.95')),
    'default_duration_days': int(os.getenv('EXPERIMENT_DURATION_DAYS', '14')),
    'exposure_ttl': int(os.getenv('EXPERIMENT_EXPOSURE_TTL', '86400')),  # 24 hours
}

# Orchestrator
SERVICE_CONFIG = {
    'default_algorithm': os.getenv('DEFAULT_ALGORITHM', 'hybrid_adaptive'),
    'default_limit': int(os.getenv('DEFAULT_LIMIT', '10')),
    'max_limit': int(os.getenv('MAX_LIMIT', '100')),
    'max_candidates': int(os.getenv('MAX_CANDIDATES', '200')),
    'metrics_port': int(os.getenv('METRICS_PORT', '9100')),
    'log_level': os.getenv('LOG_LEVEL', 'INFO'),
    'log_json': _get_bool('LOG_JSON', 'true'),
}

# HTTP API
API_CONFIG = {
    'host': os.getenv('API_HOST', '0.0.0.0'),
    'port': int(os.getenv('PORT', '8001')),
    'cors_origins': [o.strip() for o in os.getenv('CORS_ORIGINS', '*').split(',') if o.strip()],
    'version': os.getenv('SERVICE_VERSION', '1.0.0'),
}

# Seed data loaded at startup
DATA_CONFIG = {
    'items_csv': os.getenv('ITEMS_CSV') or None,
    'interactions_csv': os.getenv('INTERACTIONS_CSV') or None,
}

# Batch Jobs
SCHEDULER_CONFIG = {
    'enabled': _get_bool('ENABLE_SCHEDULER', 'true'),
    'trend_interval_minutes': int(os.getenv('TREND_INTERVAL_MINUTES', '60')),
    'spike_interval_minutes': int(os.getenv('SPIKE_INTERVAL_MINUTES', '15')),
    'similarity_refresh_hour': int(os.getenv('SIMILARITY_REFRESH_HOUR', '2')),
    'training_hour': int(os.getenv('TRAINING_HOUR', '3')),
    'timezone': os.getenv('SCHEDULER_TIMEZONE', 'UTC'),
}
