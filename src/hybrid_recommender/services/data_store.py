"""
Collaborator interfaces for the item catalog, the interaction log and
experiment persistence, with in-memory implementations
"""
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import fields
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
import structlog

from hybrid_recommender.models.experiment import Assignment, Experiment, Variant
from hybrid_recommender.models.interaction import Interaction, InteractionType
from hybrid_recommender.models.item import Item

logger = structlog.get_logger(__name__)

INTERACTION_COLUMNS = [
    'user_id', 'item_id', 'interaction_type', 'value', 'rating', 'timestamp'
]

REQUIRED_ITEM_COLUMNS = {'item_id', 'name', 'category', 'price'}
REQUIRED_INTERACTION_COLUMNS = {'user_id', 'item_id', 'interaction_type', 'timestamp'}
LIST_COLUMNS = ('ingredients', 'dietary_tags', 'allergens')
# nested fields are not representable in a flat file
ITEM_FRAME_FIELDS = {f.name for f in fields(Item)} - {'features_vector', 'nutritional_info'}


def _split_list(value: Any) -> List[str]:
    """Pipe-separated cell into a list of stripped strings"""
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    if not isinstance(value, str):
        return []
    return [part.strip() for part in value.split('|') if part.strip()]


def _records(frame: pd.DataFrame, required: set, source: str) -> List[Dict[str, Any]]:
    missing = required - set(frame.columns)
    if missing:
        raise ValueError(f"{source} frame is missing columns: {sorted(missing)}")
    frame = frame.astype(object).where(pd.notna(frame), None)
    return frame.to_dict('records')


class ItemCatalog(ABC):
    """Read access to menu items"""

    @abstractmethod
    def get_item(self, item_id: str) -> Optional[Item]:
        pass

    @abstractmethod
    def get_items(self, item_ids: Iterable[str]) -> List[Item]:
        pass

    @abstractmethod
    def available_items(self, category: Optional[str] = None) -> List[Item]:
        """Items with a non-zero availability score"""


class InteractionStore(ABC):
    """Append-only interaction log with time-range queries"""

    @abstractmethod
    def append(self, interaction: Interaction) -> None:
        pass

    @abstractmethod
    def for_user(self, user_id: str, since: Optional[datetime] = None) -> List[Interaction]:
        pass

    @abstractmethod
    def between(self, start: datetime, end: datetime) -> List[Interaction]:
        pass

    @abstractmethod
    def active_users(self, since: datetime) -> List[str]:
        pass

    def to_frame(self, start: datetime, end: datetime) -> pd.DataFrame:
        """Interactions in [start, end) as a DataFrame with derived ratings"""
        rows = [
            {
                'user_id': i.user_id,
                'item_id': i.item_id,
                'interaction_type': i.interaction_type.value,
                'value': i.value,
                'rating': i.implicit_rating,
                'timestamp': i.timestamp,
            }
            for i in self.between(start, end)
        ]
        if not rows:
            return pd.DataFrame(columns=INTERACTION_COLUMNS)
        frame = pd.DataFrame(rows, columns=INTERACTION_COLUMNS)
        frame['value'] = pd.to_numeric(frame['value'], errors='coerce')
        frame['timestamp'] = pd.to_datetime(frame['timestamp'])
        return frame


class ExperimentRepository(ABC):
    """Persistence for experiments, assignments and tagged interactions"""

    @abstractmethod
    def save_experiment(self, experiment: Experiment) -> None:
        pass

    @abstractmethod
    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        pass

    @abstractmethod
    def list_experiments(self) -> List[Experiment]:
        pass

    @abstractmethod
    def get_assignment(self, user_id: str, experiment_id: str) -> Optional[Assignment]:
        pass

    @abstractmethod
    def add_assignment(self, assignment: Assignment) -> Assignment:
        """Store an assignment unless one exists; return the stored one"""

    @abstractmethod
    def assignments(self, experiment_id: str, variant: Variant) -> List[Assignment]:
        pass

    @abstractmethod
    def increment(self, experiment_id: str, variant: Variant, counter: str, amount: int = 1) -> None:
        pass

    @abstractmethod
    def counters(self, experiment_id: str, variant: Variant) -> Dict[str, int]:
        pass

    @abstractmethod
    def add_interaction(self, experiment_id: str, variant: Variant, interaction: Interaction) -> None:
        pass

    @abstractmethod
    def interactions(self, experiment_id: str, variant: Variant) -> List[Interaction]:
        pass


class InMemoryItemCatalog(ItemCatalog):

    def __init__(self, items: Optional[Iterable[Item]] = None):
        self._items: Dict[str, Item] = {}
        for item in items or []:
            self.upsert(item)

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> 'InMemoryItemCatalog':
        """
        Build a catalog from a DataFrame with one row per item

        Columns named after Item fields are used, the rest ignored. List
        columns (ingredients, dietary_tags, allergens) are pipe-separated.
        """
        items = []
        for record in _records(frame, REQUIRED_ITEM_COLUMNS, 'item'):
            kwargs = {k: v for k, v in record.items() if k in ITEM_FRAME_FIELDS and v is not None}
            for column in LIST_COLUMNS:
                if column in kwargs:
                    kwargs[column] = _split_list(kwargs[column])
            kwargs['item_id'] = str(kwargs['item_id'])
            items.append(Item(**kwargs))
        logger.info("Item catalog loaded", items=len(items))
        return cls(items)

    @classmethod
    def from_csv(cls, path: str) -> 'InMemoryItemCatalog':
        return cls.from_frame(pd.read_csv(path))

    def upsert(self, item: Item) -> None:
        self._items[item.item_id] = item

    def get_item(self, item_id: str) -> Optional[Item]:
        return self._items.get(item_id)

    def get_items(self, item_ids: Iterable[str]) -> List[Item]:
        return [self._items[i] for i in item_ids if i in self._items]

    def available_items(self, category: Optional[str] = None) -> List[Item]:
        return [
            item for item in self._items.values()
            if item.is_available and (category is None or item.category == category)
        ]

    def __len__(self) -> int:
        return len(self._items)


class InMemoryInteractionStore(InteractionStore):

    def __init__(self, interactions: Optional[Iterable[Interaction]] = None):
        self._lock = threading.Lock()
        self._log: List[Interaction] = []
        self._by_user: Dict[str, List[Interaction]] = defaultdict(list)
        for interaction in interactions or []:
            self.append(interaction)

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> 'InMemoryInteractionStore':
        """Build a store from a DataFrame of logged interactions; malformed rows are dropped"""
        frame = frame.copy()
        if 'timestamp' in frame.columns:
            frame['timestamp'] = pd.to_datetime(frame['timestamp'])

        interactions = []
        skipped = 0
        for record in _records(frame, REQUIRED_INTERACTION_COLUMNS, 'interaction'):
            try:
                interaction_type = InteractionType(str(record['interaction_type']).lower())
            except ValueError:
                skipped += 1
                continue
            if record['timestamp'] is None:
                skipped += 1
                continue
            value = record.get('value')
            duration = record.get('duration_seconds')
            interactions.append(Interaction(
                user_id=str(record['user_id']),
                item_id=str(record['item_id']),
                interaction_type=interaction_type,
                timestamp=pd.Timestamp(record['timestamp']).to_pydatetime(),
                value=float(value) if value is not None else None,
                duration_seconds=float(duration) if duration is not None else None,
            ))

        if skipped:
            logger.warning("Skipped malformed interaction rows", skipped=skipped)
        logger.info("Interaction log loaded", interactions=len(interactions))
        return cls(interactions)

    @classmethod
    def from_csv(cls, path: str) -> 'InMemoryInteractionStore':
        return cls.from_frame(pd.read_csv(path))

    def append(self, interaction: Interaction) -> None:
        with self._lock:
            self._log.append(interaction)
            self._by_user[interaction.user_id].append(interaction)

    def for_user(self, user_id: str, since: Optional[datetime] = None) -> List[Interaction]:
        with self._lock:
            history = list(self._by_user.get(user_id, []))
        if since is not None:
            history = [i for i in history if i.timestamp >= since]
        return history

    def between(self, start: datetime, end: datetime) -> List[Interaction]:
        with self._lock:
            return [i for i in self._log if start <= i.timestamp < end]

    def active_users(self, since: datetime) -> List[str]:
        with self._lock:
            return sorted({i.user_id for i in self._log if i.timestamp >= since})

    def __len__(self) -> int:
        return len(self._log)


class InMemoryExperimentRepository(ExperimentRepository):

    def __init__(self):
        self._lock = threading.Lock()
        self._experiments: Dict[str, Experiment] = {}
        self._assignments: Dict[tuple, Assignment] = {}
        self._counters: Dict[tuple, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._interactions: Dict[tuple, List[Interaction]] = defaultdict(list)

    def save_experiment(self, experiment: Experiment) -> None:
        with self._lock:
            self._experiments[experiment.experiment_id] = experiment

    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        return self._experiments.get(experiment_id)

    def list_experiments(self) -> List[Experiment]:
        with self._lock:
            return list(self._experiments.values())

    def get_assignment(self, user_id: str, experiment_id: str) -> Optional[Assignment]:
        return self._assignments.get((user_id, experiment_id))

    def add_assignment(self, assignment: Assignment) -> Assignment:
        key = (assignment.user_id, assignment.experiment_id)
        with self._lock:
            return self._assignments.setdefault(key, assignment)

    def assignments(self, experiment_id: str, variant: Variant) -> List[Assignment]:
        with self._lock:
            return [
                a for a in self._assignments.values()
                if a.experiment_id == experiment_id and a.variant == variant
            ]

    def increment(self, experiment_id: str, variant: Variant, counter: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[(experiment_id, variant)][counter] += amount

    def counters(self, experiment_id: str, variant: Variant) -> Dict[str, int]:
        with self._lock:
            return dict(self._counters.get((experiment_id, variant), {}))

    def add_interaction(self, experiment_id: str, variant: Variant, interaction: Interaction) -> None:
        with self._lock:
            self._interactions[(experiment_id, variant)].append(interaction)

    def interactions(self, experiment_id: str, variant: Variant) -> List[Interaction]:
        with self._lock:
            return list(self._interactions.get((experiment_id, variant), []))
