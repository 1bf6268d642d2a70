"""
Unit tests for the in-memory catalog and interaction log
"""

import pandas as pd
import pytest
from datetime import datetime

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from hybrid_recommender.models.interaction import InteractionType
from hybrid_recommender.services.data_store import InMemoryInteractionStore, InMemoryItemCatalog


class TestInMemoryItemCatalog:

    def setup_method(self):
        self.frame = pd.DataFrame([
            {'item_id': 101, 'name': 'Chicken Biryani', 'category': 'main-course', 'price': 450.0,
             'dietary_tags': 'high-protein|spicy', 'spice_level': 4, 'availability_score': 1.0,
             'supplier': 'ignored'},
            {'item_id': 102, 'name': 'Kheer', 'category': 'dessert', 'price': 200.0,
             'dietary_tags': None, 'spice_level': None, 'availability_score': 0.0,
             'supplier': 'ignored'},
        ])

    def test_from_frame(self):
        catalog = InMemoryItemCatalog.from_frame(self.frame)
        biryani = catalog.get_item('101')

        assert len(catalog) == 2
        assert biryani.dietary_tags == ['high-protein', 'spicy']
        assert biryani.spice_level == 4
        assert catalog.get_item('102').dietary_tags == []

    def test_available_items(self):
        catalog = InMemoryItemCatalog.from_frame(self.frame)
        assert [i.item_id for i in catalog.available_items()] == ['101']
        assert catalog.available_items('dessert') == []

    def test_missing_columns(self):
        with pytest.raises(ValueError):
            InMemoryItemCatalog.from_frame(self.frame.drop(columns=['price']))

    def test_from_csv(self, tmp_path):
        path = tmp_path / 'items.csv'
        self.frame.to_csv(path, index=False)
        assert InMemoryItemCatalog.from_csv(str(path)).get_item('101').name == 'Chicken Biryani'


class TestInMemoryInteractionStore:

    def setup_method(self):
        self.frame = pd.DataFrame([
            {'user_id': 'u1', 'item_id': 101, 'interaction_type': 'ORDER', 'timestamp': '2024-06-01 12:00:00', 'value': None},
            {'user_id': 'u1', 'item_id': 102, 'interaction_type': 'rate', 'timestamp': '2024-06-02 12:00:00', 'value': 4.0},
            {'user_id': 'u2', 'item_id': 101, 'interaction_type': 'teleport', 'timestamp': '2024-06-02 13:00:00', 'value': None},
        ])

    def test_from_frame_drops_unknown_types(self):
        store = InMemoryInteractionStore.from_frame(self.frame)
        history = store.for_user('u1')

        assert len(store) == 2
        assert [i.interaction_type for i in history] == [InteractionType.ORDER, InteractionType.RATE]
        assert history[0].timestamp == datetime(2024, 6, 1, 12, 0)
        assert history[0].value is None
        assert history[1].implicit_rating == 4.0
        assert store.for_user('u2') == []

    def test_time_queries(self):
        store = InMemoryInteractionStore.from_frame(self.frame)

        assert len(store.between(datetime(2024, 6, 2), datetime(2024, 6, 3))) == 1
        assert store.active_users(datetime(2024, 6, 1)) == ['u1']
        assert len(store.for_user('u1', since=datetime(2024, 6, 2))) == 1

    def test_to_frame(self):
        store = InMemoryInteractionStore.from_frame(self.frame)
        frame = store.to_frame(datetime(2024, 6, 1), datetime(2024, 6, 3))

        assert list(frame['rating']) == [5.0, 4.0]
        assert store.to_frame(datetime(2025, 1, 1), datetime(2025, 1, 2)).empty
