"""
Unit tests for the two-proportion significance test
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from hybrid_recommender.experiments.statistics import two_proportion_z_test


class TestTwoProportionZTest:

    def test_large_difference_is_significant(self):
        result = two_proportion_z_test('ctr', 0.1, 1000, 0.9, 1000)

        assert result.is_significant
        assert result.p_value < 1e-4
        assert result.effect == pytest.approx(0.8)
        assert result.improvement == pytest.approx(800.0)
        low, high = result.confidence_interval
        assert 0 < low < 0.8 < high

    def test_identical_rates(self):
        result = two_proportion_z_test('ctr', 0.5, 500, 0.5, 500)

        assert not result.is_significant
        assert result.p_value == pytest.approx(1.0)
        assert result.z_score == pytest.approx(0.0)

    def test_negative_effect(self):
        result = two_proportion_z_test('conversion_rate', 0.3, 400, 0.2, 400)

        assert result.is_significant
        assert result.effect < 0
        assert result.confidence_interval[1] < 0

    def test_insufficient_sample(self):
        result = two_proportion_z_test('ctr', 0.1, 10, 0.9, 1000, min_sample_size=30)

        assert not result.is_significant
        assert result.p_value is None
        assert result.reason == "insufficient sample"

    def test_no_variation(self):
        result = two_proportion_z_test('ctr', 0.0, 100, 0.0, 100)

        assert not result.is_significant
        assert result.p_value == 1.0
        assert result.reason == "no variation"
        assert result.improvement is None

    def test_alpha_threshold(self):
        # z is about 2.2, so p sits between 0.01 and 0.05
        strict = two_proportion_z_test('ctr', 0.20, 500, 0.26, 500, alpha=0.01)
        loose = two_proportion_z_test('ctr', 0.20, 500, 0.26, 500, alpha=0.05)

        assert 0.01 < strict.p_value < 0.05
        assert not strict.is_significant
        assert loose.is_significant
