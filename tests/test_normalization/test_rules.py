"""Tests for the depth, time, temperature and date rules."""

from datetime import date

from divemetrics.normalization.rules import (
    DateOrder,
    extract_date,
    extract_depth,
    extract_dive_time,
    extract_temperature,
    infer_date_order,
    observed_date_orders,
)
from divemetrics.pipeline.models import ConfidenceTag


class TestDepthRule:
    def test_labeled_meters(self):
        match = extract_depth("MAX DEPTH 45.2m")
        assert match.value == 45.2
        assert match.confidence == ConfidenceTag.HIGH

    def test_feet_converted_to_meters(self):
        match = extract_depth("Max depth 328 ft")
        assert abs(match.value - 100.0) < 0.1

    def test_keyword_candidate_beats_bare_number(self):
        match = extract_depth("Surface 12m\nMax 30m")
        assert match.value == 30.0
        assert match.confidence == ConfidenceTag.HIGH

    def test_several_bare_depths_take_deepest_with_medium_confidence(self):
        match = extract_depth("18m 22m")
        assert match.value == 22.0
        assert match.confidence == ConfidenceTag.MEDIUM

    def test_decimal_comma(self):
        assert extract_depth("Depth 12,5 m").value == 12.5

    def test_unitless_number_is_not_a_depth(self):
        assert extract_depth("Max 45") is None

    def test_word_starting_with_m_is_not_a_unit(self):
        assert extract_depth("10 minutes") is None


class TestDiveTimeRule:
    def test_minutes_seconds(self):
        match = extract_dive_time("DIVE TIME 02:15")
        assert match.value == 135
        assert match.confidence == ConfidenceTag.HIGH

    def test_hours_minutes_seconds(self):
        assert extract_dive_time("1:02:03").value == 3723

    def test_prime_notation(self):
        assert extract_dive_time("Dive 2'53\"").value == 173

    def test_malformed_time_rejected(self):
        assert extract_dive_time("Time: 99:99") is None

    def test_first_well_formed_match_wins(self):
        match = extract_dive_time("Time 99:99 then 2:53 and 3:10")
        assert match.value == 173
        assert match.confidence == ConfidenceTag.MEDIUM


class TestTemperatureRule:
    def test_celsius(self):
        match = extract_temperature("TEMP 27°C")
        assert match.value == 27.0
        assert match.confidence == ConfidenceTag.HIGH

    def test_fahrenheit_converted(self):
        assert extract_temperature("Water 80°F").value == 26.7

    def test_spelled_out_unit(self):
        assert extract_temperature("24 celsius").value == 24.0

    def test_labeled_bare_degree_assumed_celsius(self):
        match = extract_temperature("Temp 19°")
        assert match.value == 19.0
        assert match.confidence == ConfidenceTag.MEDIUM

    def test_no_temperature(self):
        assert extract_temperature("Max 30m 45:00") is None


class TestDateRule:
    def test_us_date(self):
        match = extract_date("DATE 07/15/2023")
        assert match.value == date(2023, 7, 15)
        assert match.confidence == ConfidenceTag.HIGH

    def test_iso_date(self):
        assert extract_date("2023-07-15").value == date(2023, 7, 15)

    def test_dotted_date(self):
        assert extract_date("15.07.2023").value == date(2023, 7, 15)

    def test_ambiguous_date_defaults_to_month_first(self):
        match = extract_date("03/04/2023")
        assert match.value == date(2023, 3, 4)
        assert match.confidence == ConfidenceTag.MEDIUM

    def test_ambiguous_date_uses_preferred_order(self):
        match = extract_date("03/04/2023", DateOrder.DMY)
        assert match.value == date(2023, 4, 3)
        assert match.confidence == ConfidenceTag.MEDIUM

    def test_two_digit_year(self):
        assert extract_date("07/15/23").value == date(2023, 7, 15)

    def test_impossible_date_skipped(self):
        assert extract_date("2023-02-30") is None


class TestDateOrderInference:
    def test_observed_orders(self):
        assert observed_date_orders("25/12/2023 and 12/25/2023") == [DateOrder.DMY, DateOrder.MDY]

    def test_majority_wins(self):
        texts = ["Date 25/12/2023", "Date 03/04/2023", "Date 14.02.2023"]
        assert infer_date_order(texts) == DateOrder.DMY

    def test_tie_is_undecided(self):
        assert infer_date_order(["25/12/2023", "12/25/2023"]) is None

    def test_no_evidence(self):
        assert infer_date_order(["03/04/2023", ""]) is None
