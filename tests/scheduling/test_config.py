"""Tests for configuration loading."""

import json

import pytest

from therapy_scheduler.exceptions import ConfigurationError
from therapy_scheduler.scheduling.config import (
    AlgorithmSettings,
    ConfigLoader,
    GeneticSettings,
    ObjectiveWeights,
    OptimizationConstraints,
)
from therapy_scheduler.scheduling.models import SessionType

ROOMS_CSV = """id,name,capacity,supported_session_types,equipment,active
R1,Speech room,1,speech;aba,mirror,true
GYM,Sensory gym,2,occupational;physical,swing;trampoline,true
OLD,Storage,1,speech,,false
"""

AVAILABILITY = [
    {
        "therapist_id": "T1",
        "date": "2025-09-01",
        "start_time": "09:00",
        "end_time": "17:00",
        "breaks": [{"start_time": "12:00", "end_time": "13:00"}],
        "specializations": ["speech"],
    },
    {
        "therapist_id": "T2",
        "date": "2025-09-01",
        "start_time": "10:00",
        "end_time": "14:00",
    },
]


def full_constraints() -> dict:
    return OptimizationConstraints().to_dict()


@pytest.fixture
def config_dir(tmp_path):
    (tmp_path / "rooms.csv").write_text(ROOMS_CSV, encoding="utf-8")
    (tmp_path / "availability.json").write_text(json.dumps(AVAILABILITY), encoding="utf-8")
    return tmp_path


class TestConfigLoader:
    def test_loads_rooms_and_availability(self, config_dir):
        config = ConfigLoader(config_dir)

        assert [r.id for r in config.rooms.get_all_rooms()] == ["R1", "GYM", "OLD"]
        assert [r.id for r in config.rooms.get_active_rooms()] == ["R1", "GYM"]
        assert [r.id for r in config.rooms.get_rooms_for_type(SessionType.PHYSICAL)] == ["GYM"]
        assert config.rooms.get_room("GYM").equipment == frozenset({"swing", "trampoline"})
        assert config.availability.get_therapist_ids() == ["T1", "T2"]
        assert len(config.availability.get_therapist_windows("T1")) == 1

    def test_defaults_without_json_files(self, config_dir):
        config = ConfigLoader(config_dir)
        assert config.constraints == OptimizationConstraints()
        assert config.algorithms == AlgorithmSettings()

    def test_constraints_file(self, config_dir):
        data = full_constraints()
        data["therapist"]["max_sessions_per_day"] = 6
        data["student"]["preferences"] = {
            "ST1": {
                "preferred_windows": [{"start_time": "09:00", "end_time": "12:00"}],
                "avoid_windows": [],
                "min_gap_minutes": 30,
            }
        }
        (config_dir / "constraints.json").write_text(json.dumps(data), encoding="utf-8")

        config = ConfigLoader(config_dir)

        assert config.constraints.therapist.max_sessions_per_day == 6
        assert config.constraints.student.min_gap_for("ST1") == 30
        assert config.constraints.student.min_gap_for("ST2") == 0

    def test_invalid_json(self, config_dir):
        (config_dir / "constraints.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            ConfigLoader(config_dir)

    def test_bad_room_row(self, config_dir):
        (config_dir / "rooms.csv").write_text(
            "id,capacity,supported_session_types\nR1,1,karate\n", encoding="utf-8"
        )
        with pytest.raises(ConfigurationError) as exc_info:
            ConfigLoader(config_dir)
        assert "line 2" in str(exc_info.value)

    def test_bad_availability_record(self, config_dir):
        record = dict(AVAILABILITY[0], start_time="18:00")
        (config_dir / "availability.json").write_text(json.dumps([record]), encoding="utf-8")
        with pytest.raises(ConfigurationError):
            ConfigLoader(config_dir)

    def test_missing_directory_gives_empty_config(self, tmp_path):
        config = ConfigLoader(tmp_path / "absent")
        assert config.rooms.get_all_rooms() == []
        assert config.availability.get_all() == []


class TestOptimizationConstraints:
    def test_unknown_key_is_rejected(self):
        data = full_constraints()
        data["therapist"]["max_session_per_day"] = 5
        with pytest.raises(ConfigurationError) as exc_info:
            OptimizationConstraints.from_dict(data)
        assert exc_info.value.key == "therapist.max_session_per_day"

    def test_missing_key_is_rejected(self):
        data = full_constraints()
        del data["facility"]["enforce_equipment"]
        with pytest.raises(ConfigurationError) as exc_info:
            OptimizationConstraints.from_dict(data)
        assert exc_info.value.key == "facility.enforce_equipment"

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ConfigurationError):
            ObjectiveWeights(0.5, 0.5, 0.5, 0.5)

    def test_negative_weight(self):
        with pytest.raises(ConfigurationError):
            ObjectiveWeights(-0.25, 0.75, 0.25, 0.25)

    def test_roundtrip(self):
        data = full_constraints()
        assert OptimizationConstraints.from_dict(data) == OptimizationConstraints()


class TestAlgorithmSettings:
    def test_rates_are_bounded(self):
        with pytest.raises(ConfigurationError):
            GeneticSettings(mutation_rate=1.5)

    def test_elite_count(self):
        assert GeneticSettings(population_size=50, elite_percentage=0.2).elite_count == 10

    def test_from_dict_roundtrip(self):
        settings = AlgorithmSettings()
        assert AlgorithmSettings.from_dict(settings.to_dict()) == settings
