"""
Interaction models and implicit rating derivation
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class InteractionType(str, Enum):
    VIEW = "view"
    CLICK = "click"
    ADD_TO_CART = "add_to_cart"
    ORDER = "order"
    RATE = "rate"
    FAVORITE = "favorite"
    SHARE = "share"

    @classmethod
    def _missing_(cls, value):
        aliases = {
            'cart': cls.ADD_TO_CART,
        }
        if isinstance(value, str):
            return aliases.get(value.lower())
        return None


INTERACTION_WEIGHTS: Dict[InteractionType, float] = {
    InteractionType.VIEW: 1.0,
    InteractionType.CLICK: 2.0,
    InteractionType.ADD_TO_CART: 3.0,
    InteractionType.ORDER: 5.0,
    InteractionType.FAVORITE: 4.0,
    InteractionType.SHARE: 3.0,
}

MAX_RATING = 5.0
DURATION_BONUS_SECONDS = 30.0
MAX_DURATION_BONUS = 2.0


@dataclass(frozen=True)
class Interaction:
    """A single user event against an item. Never mutated once recorded."""
    user_id: str
    item_id: str
    interaction_type: InteractionType
    timestamp: datetime = field(default_factory=datetime.now)
    value: Optional[float] = None
    duration_seconds: Optional[float] = None
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def implicit_rating(self) -> float:
        return implicit_rating(self)


def implicit_rating(interaction: Interaction) -> float:
    """
    Map an interaction to a rating in [0, 5]

    Explicit ratings use their value. Dwell time on views and clicks adds up
    to two points.
    """
    if interaction.interaction_type == InteractionType.RATE:
        rating = float(interaction.value or 0.0)
    else:
        rating = INTERACTION_WEIGHTS.get(interaction.interaction_type, 1.0)

    if (interaction.interaction_type in (InteractionType.VIEW, InteractionType.CLICK)
            and interaction.duration_seconds):
        rating += min(MAX_DURATION_BONUS, interaction.duration_seconds / DURATION_BONUS_SECONDS)

    return max(0.0, min(MAX_RATING, rating))
