"""Tests for the weighted project rating engine."""
from __future__ import annotations

import math
from decimal import Decimal
from fractions import Fraction

import pytest

from bizops.rating import (
    RATING_METRICS,
    RUNWAY_KEY,
    RatingDataError,
    calculate_project_rating,
    default_ratings,
)


class TestKnownResults:
    def test_single_metric(self):
        result = calculate_project_rating({"revenuePotential": {"value": 4, "weight": 0.3}})
        assert result.weighted_score == 1.2
        assert result.total_possible == 1.5
        assert result.percentage == 80.0
        assert result.star_rating == pytest.approx(4.0)

    def test_two_metrics(self):
        result = calculate_project_rating({
            "revenuePotential": {"value": 5, "weight": 0.3},
            "insiderSupport": {"value": 2, "weight": 0.2},
        })
        # 1.5 + 0.4 over 1.5 + 1.0
        assert result.weighted_score == 1.9
        assert result.total_possible == 2.5
        assert result.percentage == 76.0

    def test_default_ratings_score_sixty_percent(self):
        result = calculate_project_rating(default_ratings())
        assert result.weighted_score == 3.0
        assert result.total_possible == 5.0
        assert result.percentage == 60.0
        assert set(result.breakdown) == set(RATING_METRICS)

    def test_default_ratings_shape(self):
        ratings = default_ratings()
        assert ratings[RUNWAY_KEY] == 12
        for key, (_, max_weight) in RATING_METRICS.items():
            assert ratings[key] == {"value": 3, "weight": max_weight}

    def test_max_weights_sum_to_one(self):
        assert sum(w for _, w in RATING_METRICS.values()) == pytest.approx(1.0)


class TestEdgeCases:
    def test_empty_mapping(self):
        result = calculate_project_rating({})
        assert (result.weighted_score, result.total_possible, result.percentage) == (0, 0, 0)
        assert result.breakdown == {}

    def test_all_zero_weights_gives_zero_percentage(self):
        ratings = {key: {"value": 5, "weight": 0} for key in RATING_METRICS}
        result = calculate_project_rating(ratings)
        assert result.percentage == 0
        assert result.total_possible == 0
        assert len(result.breakdown) == len(RATING_METRICS)

    def test_out_of_range_values_are_clamped(self):
        result = calculate_project_rating({"revenuePotential": {"value": 9, "weight": 3}})
        assert result.breakdown["revenuePotential"].score == 5
        assert result.breakdown["revenuePotential"].weight == 1
        assert result.percentage == 100.0

    def test_negative_values_are_clamped_to_zero(self):
        result = calculate_project_rating({"revenuePotential": {"value": -2, "weight": -0.5}})
        assert result.breakdown["revenuePotential"].score == 0
        assert result.breakdown["revenuePotential"].weight == 0
        assert result.percentage == 0

    @pytest.mark.parametrize("missing", [None, "high", True, math.nan, [3]])
    def test_missing_or_non_numeric_value_counts_as_zero(self, missing):
        result = calculate_project_rating({"insiderSupport": {"value": missing, "weight": 0.2}})
        assert result.breakdown["insiderSupport"].score == 0
        assert result.weighted_score == 0
        assert result.total_possible == 1.0

    def test_malformed_entries_are_skipped(self):
        result = calculate_project_rating({
            "revenuePotential": 4,
            "insiderSupport": {"value": 4},
            "clarityUs": {"weight": 0.05},
            "strategicFitEvolve": {"value": 4, "weight": 0.15},
        })
        assert list(result.breakdown) == ["strategicFitEvolve"]
        assert result.percentage == 80.0

    def test_runway_is_not_rated(self):
        result = calculate_project_rating({RUNWAY_KEY: {"value": 5, "weight": 1}})
        assert result.breakdown == {}
        assert result.percentage == 0

    def test_unknown_metric_keys_are_rated(self):
        result = calculate_project_rating({"customMetric": {"value": 5, "weight": 0.5}})
        assert "customMetric" in result.breakdown
        assert result.percentage == 100.0

    def test_rounding_is_half_up(self):
        # 0.125 rounds to 0.13, where round() would give 0.12
        result = calculate_project_rating({"revenuePotential": {"value": 1, "weight": 0.125}})
        assert result.weighted_score == 0.13
        assert result.percentage == 20.0

    def test_contribution_is_unrounded(self):
        result = calculate_project_rating({"revenuePotential": {"value": 3.333, "weight": 0.3}})
        assert result.breakdown["revenuePotential"].contribution == pytest.approx(0.9999)
        assert result.weighted_score == 1.0

    def test_percentage_never_exceeds_hundred(self):
        ratings = {key: {"value": 50, "weight": 50} for key in RATING_METRICS}
        result = calculate_project_rating(ratings)
        assert 0 <= result.percentage <= 100


class TestInvalidInput:
    @pytest.mark.parametrize("bad", [None, [], ["revenuePotential"], "ratings", 42])
    def test_non_mapping_raises(self, bad):
        with pytest.raises(RatingDataError, match="Invalid rating data provided"):
            calculate_project_rating(bad)

    def test_rating_data_error_is_type_error(self):
        with pytest.raises(TypeError):
            calculate_project_rating(None)


class TestResultShape:
    def test_deterministic(self):
        ratings = default_ratings()
        assert calculate_project_rating(ratings) == calculate_project_rating(ratings)

    def test_input_not_mutated(self):
        ratings = {"revenuePotential": {"value": 9, "weight": 0.3}}
        calculate_project_rating(ratings)
        assert ratings == {"revenuePotential": {"value": 9, "weight": 0.3}}

    def test_to_dict(self):
        data = calculate_project_rating({"revenuePotential": {"value": 4, "weight": 0.3}}).to_dict()
        assert data["percentage"] == 80.0
        assert data["star_rating"] == pytest.approx(4.0)
        assert data["breakdown"]["revenuePotential"] == {
            "score": 4.0, "weight": 0.3, "contribution": pytest.approx(1.2),
        }


class TestReferenceExamples:
    def test_nine_equal_weights_at_three(self):
        ratings = {key: {"value": 3, "weight": 1 / 9} for key in RATING_METRICS}
        result = calculate_project_rating(ratings)
        assert result.weighted_score == 3.0
        assert result.total_possible == 5.0
        assert result.percentage == 60.0

    def test_single_weighted_metric_among_zero_weights(self):
        ratings = {key: {"value": 3, "weight": 0} for key in RATING_METRICS}
        ratings["revenuePotential"] = {"value": 5, "weight": 0.3}
        result = calculate_project_rating(ratings)
        assert result.weighted_score == 1.5
        assert result.total_possible == 1.5
        assert result.percentage == 100.0

    def test_clamped_inputs_rate_like_their_bounds(self):
        over = calculate_project_rating({"revenuePotential": {"value": 7, "weight": 1.5}})
        bound = calculate_project_rating({"revenuePotential": {"value": 5, "weight": 1}})
        assert over == bound


class TestNumberCoercion:
    def test_huge_int_is_clamped(self):
        result = calculate_project_rating({"revenuePotential": {"value": 10**400, "weight": 0.3}})
        assert result.breakdown["revenuePotential"].score == 5
        assert result.percentage == 100.0

    def test_huge_negative_int_is_clamped(self):
        result = calculate_project_rating({"revenuePotential": {"value": -(10**400), "weight": 10**400}})
        assert result.breakdown["revenuePotential"].score == 0
        assert result.breakdown["revenuePotential"].weight == 1

    @pytest.mark.parametrize("value", [Decimal("4"), Fraction(4, 1)])
    def test_other_real_number_types(self, value):
        result = calculate_project_rating({"revenuePotential": {"value": value, "weight": Decimal("0.3")}})
        assert result.breakdown["revenuePotential"].score == 4.0
        assert result.percentage == 80.0

    def test_signalling_nan_decimal_counts_as_zero(self):
        result = calculate_project_rating({"revenuePotential": {"value": Decimal("sNaN"), "weight": 0.3}})
        assert result.breakdown["revenuePotential"].score == 0
