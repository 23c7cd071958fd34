"""Tests for persona profiles."""

import pytest

from mimic.personas import (
    DEFAULT_PERSONA,
    PERSONAS,
    Difficulty,
    PersonaProfile,
    get_persona,
)


class TestProfiles:
    def test_all_difficulties_present(self):
        assert {p.difficulty for p in PERSONAS.values()} == set(Difficulty)

    def test_depth_grows_with_difficulty(self):
        assert (
            PERSONAS["easy"].search_depth
            < PERSONAS["normal"].search_depth
            < PERSONAS["master"].search_depth
        )

    def test_only_easy_deviates_randomly(self):
        assert PERSONAS["easy"].random_deviation > 0
        assert PERSONAS["normal"].random_deviation == 0
        assert PERSONAS["master"].random_deviation == 0

    @pytest.mark.parametrize("name", list(PERSONAS))
    def test_probabilities_in_range(self, name):
        profile = PERSONAS[name]
        assert 0.0 <= profile.book_adherence <= 1.0
        assert 0.0 <= profile.random_deviation <= 1.0
        assert profile.blunder_tolerance_cp >= 0

    def test_profiles_are_immutable(self):
        with pytest.raises(AttributeError):
            PERSONAS["easy"].search_depth = 30


class TestGetPersona:
    def test_lookup_by_name(self):
        assert get_persona("master").difficulty == Difficulty.MASTER

    def test_lookup_is_case_insensitive(self):
        assert get_persona("EASY") is PERSONAS["easy"]

    def test_unknown_name_falls_back(self):
        assert get_persona("grandmaster") is PERSONAS[DEFAULT_PERSONA]

    def test_returns_profile_instance(self):
        assert isinstance(get_persona("normal"), PersonaProfile)
