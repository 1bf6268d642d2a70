"""
Weather and demand providers used by contextual adjustment. Real integrations
plug in behind these interfaces; the defaults are static stubs.
"""
from abc import ABC, abstractmethod
from typing import Dict, Optional

from hybrid_recommender.models.item import Item

HOT_WEATHER = "hot"
COLD_WEATHER = "cold"
RAINY_WEATHER = "rainy"

COLD_FOOD_CATEGORIES = {'beverage', 'dessert', 'salad'}
WARM_FOOD_CATEGORIES = {'soup', 'main-course'}


class WeatherProvider(ABC):

    @abstractmethod
    def current_condition(self, location: Optional[str] = None) -> Optional[str]:
        """Return a condition label such as 'hot', 'cold' or 'rainy'"""


class DemandProvider(ABC):

    @abstractmethod
    def demand_factor(self, item_id: str) -> float:
        """Multiplier applied to an item's score, 1.0 meaning neutral"""


class StaticWeatherProvider(WeatherProvider):
    def __init__(self, condition: Optional[str] = None):
        self.condition = condition

    def current_condition(self, location: Optional[str] = None) -> Optional[str]:
        return self.condition


class StaticDemandProvider(DemandProvider):
    def __init__(self, factors: Optional[Dict[str, float]] = None):
        self.factors = factors or {}

    def demand_factor(self, item_id: str) -> float:
        return self.factors.get(item_id, 1.0)


def weather_affinity(item: Item) -> str:
    """Classify an item by the weather it suits from its own characteristics"""
    if item.category in COLD_FOOD_CATEGORIES:
        return HOT_WEATHER
    if item.category in WARM_FOOD_CATEGORIES or item.spice_level >= 3:
        return COLD_WEATHER
    return "neutral"


def suits_weather(item: Item, condition: Optional[str]) -> bool:
    if not condition:
        return False
    affinity = weather_affinity(item)
    if condition == RAINY_WEATHER:
        return affinity == COLD_WEATHER
    return affinity == condition
