"""Tests for the clinical finding normalizer."""

import pytest

from dak_cds.exceptions import UnknownModuleError, ValidationError
from dak_cds.models import ClinicalObservationSet, ModuleCode
from dak_cds.normalizer import coerce_value, normalize, resolve_key


class TestCoerceValue:
    """Generic coercion of raw input values."""

    def test_numeric_strings(self):
        assert coerce_value("120") == 120
        assert isinstance(coerce_value("120"), int)
        assert coerce_value("10.5") == 10.5
        assert coerce_value(" -3 ") == -3

    def test_yes_no_become_booleans(self):
        assert coerce_value("yes") is True
        assert coerce_value("No") is False

    def test_other_strings_preserved(self):
        assert coerce_value("positive") == "positive"

    def test_sequences_become_string_sets(self):
        assert coerce_value(["Fever", " Convulsing ", ""]) == frozenset({"Fever", "Convulsing"})

    def test_blank_is_none(self):
        assert coerce_value("") is None
        assert coerce_value("   ") is None
        assert coerce_value(None) is None


class TestResolveKey:
    """Field aliases and nested paths map to canonical keys."""

    def test_canonical_key(self):
        assert resolve_key("systolicBP") == "systolicBP"

    def test_snake_case_alias(self):
        assert resolve_key("systolic_bp") == "systolicBP"
        assert resolve_key("gestational_age") == "gestationalAgeWeeks"

    def test_nested_path(self):
        assert resolve_key("vitalSigns.bloodPressure.systolic") == "systolicBP"

    def test_leaf_fallback(self):
        assert resolve_key("labResults.cd4_count") == "cd4Count"

    def test_unknown(self):
        assert resolve_key("favouriteColour") is None


class TestNormalize:
    """normalize() builds an immutable, vocabulary-filtered observation set."""

    def test_form_shaped_input(self):
        obs = normalize(
            {
                "systolic_bp": "165",
                "diastolic": 112,
                "hb": "10.2",
                "danger_signs": ["Convulsing"],
                "maternal_concern": "yes",
            },
            "ANC",
        )

        assert isinstance(obs, ClinicalObservationSet)
        assert obs.module_code == "ANC"
        assert obs["systolicBP"] == 165
        assert obs["diastolicBP"] == 112
        assert obs["hemoglobin"] == 10.2
        assert obs["dangerSigns"] == frozenset({"Convulsing"})
        assert obs["maternalConcern"] is True

    def test_unknown_keys_dropped_not_rejected(self):
        obs = normalize({"systolicBP": 120, "shoeSize": 41, "notes": "fine"}, ModuleCode.ANC)

        assert dict(obs) == {"systolicBP": 120}
        assert set(obs.dropped_keys) == {"shoeSize", "notes"}

    def test_keys_outside_module_vocabulary_dropped(self):
        obs = normalize({"viralLoad": 5000, "systolicBP": 150}, "ANC")

        assert "viralLoad" not in obs
        assert obs["systolicBP"] == 150

    def test_value_of_wrong_type_dropped(self):
        obs = normalize({"systolicBP": "high", "hemoglobin": "11"}, "ANC")

        assert "systolicBP" not in obs
        assert obs["hemoglobin"] == 11
        assert "systolicBP" in obs.dropped_keys

    def test_blank_values_ignored_silently(self):
        obs = normalize({"systolicBP": "", "hemoglobin": None}, "ANC")

        assert len(obs) == 0
        assert obs.dropped_keys == ()

    def test_single_value_for_set_field(self):
        obs = normalize({"dangerSigns": "Fever"}, "ANC")

        assert obs["dangerSigns"] == frozenset({"Fever"})

    def test_text_field_keeps_text(self):
        obs = normalize({"hiv_status": "Positive"}, "PREP")

        assert obs["hivStatus"] == "Positive"

    def test_nested_integration_payload(self):
        obs = normalize(
            {"medicalTests": {"cd4Count": "180", "viralLoad": "25000"}, "patient": {"name": "x"}},
            "art",
        )

        assert obs.module_code == "ART"
        assert obs["cd4Count"] == 180
        assert obs["viralLoad"] == 25000
        assert "patient.name" in obs.dropped_keys

    def test_first_value_wins_for_duplicate_keys(self):
        obs = normalize({"systolicBP": 150, "sbp": 170}, "ANC")

        assert obs["systolicBP"] == 150

    def test_result_is_immutable(self):
        obs = normalize({"systolicBP": 150}, "ANC")

        with pytest.raises(TypeError):
            obs["systolicBP"] = 100

    def test_input_not_mutated(self):
        raw = {"systolic_bp": "150", "extra": 1}
        normalize(raw, "ANC")

        assert raw == {"systolic_bp": "150", "extra": 1}

    def test_unknown_module_raises(self):
        with pytest.raises(UnknownModuleError) as exc_info:
            normalize({"systolicBP": 120}, "DENTAL")

        assert isinstance(exc_info.value, ValidationError)
        assert exc_info.value.module_code == "DENTAL"
