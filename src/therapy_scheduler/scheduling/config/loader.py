"""Unified configuration loader."""

import json
import logging
from pathlib import Path

from ...exceptions import ConfigurationError
from .algorithms import AlgorithmSettings
from .availability import AvailabilityConfig
from .constraints import OptimizationConstraints
from .rooms import RoomConfig

logger = logging.getLogger(__name__)


class ConfigLoader:
    """Unified loader for all scheduling configuration files."""

    def __init__(self, config_dir: Path | None = None):
        """
        Initialize configuration loader.

        Args:
            config_dir: Path to directory containing configuration files.
                       Expected files:
                       - constraints.json (optional, defaults when absent)
                       - algorithms.json (optional, defaults when absent)
                       - rooms.csv
                       - availability.json
        """
        if config_dir is None:
            config_dir = Path("config")

        self.config_dir = Path(config_dir)

        self.rooms = RoomConfig(self._get_path("rooms.csv"))
        self.availability = AvailabilityConfig(self._get_path("availability.json"))
        self.constraints = self._load_json(
            "constraints.json", OptimizationConstraints.from_dict, OptimizationConstraints
        )
        self.algorithms = self._load_json(
            "algorithms.json", AlgorithmSettings.from_dict, AlgorithmSettings
        )

        logger.debug(
            f"Loaded config from {self.config_dir}: {len(self.rooms.rooms)} rooms, "
            f"{len(self.availability.windows)} availability windows"
        )

    def _get_path(self, filename: str) -> Path | None:
        """Get path to config file if it exists."""
        path = self.config_dir / filename
        return path if path.exists() else None

    def _load_json(self, filename, parse, default_factory):
        path = self._get_path(filename)
        if path is None:
            return default_factory()
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"not valid JSON: {e}", filename) from e
        return parse(data)
