"""
Configuration for capindex.
"""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple, cast

from capindex.core.exceptions import ConfigurationError, ThresholdConfigError
from capindex.core.logging import logger


CONFIG_FILE_NAME = ".capindex.yaml"

# (dotted key, kind, minimum, maximum)
NUMERIC_RULES: List[Tuple[str, type, float, Optional[float]]] = [
    ("index.max_entries_per_type", int, 1, None),
    ("similarity.threshold", float, 0.0, 1.0),
    ("similarity.min_token_length", int, 1, 32),
    ("similarity.batch_size", int, 1, None),
    ("similarity.pollution_entropy", float, 0.0, None),
    ("similarity.entropy_bands.low", float, 0.0, None),
    ("similarity.entropy_bands.moderate", float, 0.0, None),
    ("similarity.entropy_bands.high", float, 0.0, None),
    ("similarity.jaccard_thresholds.low", float, 0.0, 1.0),
    ("similarity.jaccard_thresholds.moderate", float, 0.0, 1.0),
    ("similarity.jaccard_thresholds.high", float, 0.0, 1.0),
    ("relationships.min_confidence", float, 0.0, 1.0),
    ("relationships.max_relationships_per_element", int, 1, None),
    ("relationships.verb_strength_factor", float, 0.0, 1.0),
    ("relationships.max_hops", int, 1, None),
    ("verbs.confidence_threshold", float, 0.0, 1.0),
    ("verbs.synonym_multiplier", float, 0.0, 1.0),
    ("verbs.tiers.explicit", float, 0.0, 1.0),
    ("verbs.tiers.name_based", float, 0.0, 1.0),
    ("verbs.tiers.description_based", float, 0.0, 1.0),
    ("verbs.max_results", int, 1, None),
    ("verbs.max_triggers_per_element", int, 1, None),
    ("query.expansion_depth", int, 0, 6),
    ("query.expansion_decay", float, 0.0, 1.0),
    ("cache.max_size", int, 1, None),
    ("gate.timeout_seconds", float, 0.0, None),
]

# Groups whose members must be non-decreasing
ORDERED_GROUPS: List[Tuple[str, ...]] = [
    (
        "similarity.jaccard_thresholds.low",
        "similarity.jaccard_thresholds.moderate",
        "similarity.jaccard_thresholds.high",
    ),
    (
        "similarity.entropy_bands.low",
        "similarity.entropy_bands.moderate",
        "similarity.entropy_bands.high",
    ),
]


def get_default_config() -> Dict[str, Any]:
    """Default configuration. Single source for every tunable value."""
    return {
        "version": "1.0",
        "index": {
            "path": ".capindex/capability-index.yaml",
            "max_entries_per_type": 10000,
        },
        "similarity": {
            "threshold": 0.5,
            "min_token_length": 2,
            "batch_size": 50,
            "pollution_entropy": 2.0,
            "entropy_bands": {"low": 3.0, "moderate": 4.5, "high": 6.0},
            "jaccard_thresholds": {"low": 0.2, "moderate": 0.4, "high": 0.6},
            "stop_words_extra": [],
        },
        "relationships": {
            "min_confidence": 0.5,
            "max_relationships_per_element": 20,
            "verb_strength_factor": 0.7,
            "max_hops": 6,
            "custom_patterns": [],
            "types": {},
        },
        "verbs": {
            "confidence_threshold": 0.3,
            "max_results": 10,
            "include_synonyms": True,
            "synonym_multiplier": 0.8,
            "tiers": {"explicit": 0.9, "name_based": 0.6, "description_based": 0.4},
            "max_triggers_per_element": 50,
            "custom_verbs": {},
            "custom_phrases": {},
            "custom_prefixes": [],
            "custom_suffixes": [],
            "excluded_nouns": [],
        },
        "query": {"expansion_depth": 1, "expansion_decay": 0.5},
        "cache": {"max_size": 500},
        "gate": {"timeout_seconds": 30.0},
        "logging": {"level": "INFO", "file": None, "debug_mode": False},
    }


def _get_nested(data: Dict[str, Any], dotted: str) -> Tuple[bool, Any]:
    current: Any = data
    for part in dotted.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return False, None
    return True, current


def _set_nested(data: Dict[str, Any], path: Tuple[str, ...], value: Any) -> None:
    """Set value at nested path."""
    current = data
    for key in path[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[path[-1]] = value


class ConfigValidator:
    """
    Validates numeric settings.

    An invalid value never aborts startup: it is replaced by its default and a
    ThresholdConfigError is recorded so callers can surface the warning.
    """

    def __init__(self, defaults: Optional[Dict[str, Any]] = None) -> None:
        self.defaults = defaults or get_default_config()

    def validate_config(self, config: Dict[str, Any]) -> List[ThresholdConfigError]:
        """
        Validate in place and return the recorded problems.

        Rules:
        - type must match (bools are not numbers, ints are accepted as floats)
        - value must fall inside [minimum, maximum]
        - threshold groups must be non-decreasing
        """
        problems: List[ThresholdConfigError] = []

        for key, kind, minimum, maximum in NUMERIC_RULES:
            present, value = _get_nested(config, key)
            if not present:
                continue
            reason = self._check_value(value, kind, minimum, maximum)
            if reason:
                problems.append(self._revert(config, key, value, reason))

        for group in ORDERED_GROUPS:
            values = [_get_nested(config, key)[1] for key in group]
            if all(isinstance(v, (int, float)) for v in values) and values != sorted(values):
                for key, value in zip(group, values):
                    problems.append(self._revert(config, key, value, "thresholds out of order"))

        return problems

    def _check_value(
        self, value: Any, kind: type, minimum: float, maximum: Optional[float]
    ) -> Optional[str]:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return f"expected {kind.__name__}"
        if kind is int and not isinstance(value, int):
            return "expected int"
        if value < minimum:
            return f"below minimum {minimum}"
        if maximum is not None and value > maximum:
            return f"above maximum {maximum}"
        return None

    def _revert(
        self, config: Dict[str, Any], key: str, value: Any, reason: str
    ) -> ThresholdConfigError:
        _, default = _get_nested(self.defaults, key)
        _set_nested(config, tuple(key.split(".")), default)
        error = ThresholdConfigError(
            f"Invalid value for '{key}': {reason}",
            context={"setting": key, "value": value, "default": default},
        )
        error.add_suggestion(f"Using default {default!r} for '{key}'")
        logger.warning(
            "Invalid numeric setting, using default",
            setting=key,
            value=repr(value),
            default=default,
            reason=reason,
        )
        return error


class Settings:
    """
    Main system configuration.

    Priority (lowest to highest):
    1. Defaults
    2. YAML file (explicit path, $CAPINDEX_CONFIG, or ./.capindex.yaml)
    3. Environment variables
    4. Programmatic overrides
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        overrides: Optional[Dict[str, Any]] = None,
        load_environment: bool = True,
    ) -> None:
        self._explicit_path = Path(config_path) if config_path else None
        self._load_environment = load_environment
        self.source: Optional[Path] = None
        self.config = self._load_config(overrides)
        self.validator = ConfigValidator()
        self.warnings: List[ThresholdConfigError] = self.validator.validate_config(self.config)
        logger.info(
            "Settings initialized",
            config_source=str(self.source) if self.source else "defaults",
            warnings=len(self.warnings),
        )

    def _find_config_file(self) -> Optional[Path]:
        """Find the configuration file.

        Search order:
        1. Path passed to the constructor
        2. $CAPINDEX_CONFIG
        3. ./.capindex.yaml
        """
        if self._explicit_path is not None:
            return self._explicit_path

        if self._load_environment:
            env_path = os.getenv("CAPINDEX_CONFIG")
            if env_path:
                return Path(env_path)

        local_config = Path.cwd() / CONFIG_FILE_NAME
        if local_config.exists():
            return local_config

        return None

    def _load_config(self, overrides: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        defaults = get_default_config()

        config_path = self._find_config_file()
        if config_path is not None:
            if not config_path.exists():
                raise ConfigurationError(
                    f"Configuration file not found: {config_path}",
                    context={"path": str(config_path)},
                )
            try:
                with open(config_path, encoding="utf-8") as f:
                    file_config = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                logger.error("Error reading configuration file", file=str(config_path), error=str(e))
                raise ConfigurationError(
                    f"Error reading configuration file: {e}",
                    context={"path": str(config_path)},
                    cause=e,
                ) from e

            if file_config is not None and not isinstance(file_config, dict):
                raise ConfigurationError(
                    "Configuration file must contain a mapping",
                    context={"path": str(config_path)},
                )
            if file_config:
                self._deep_merge(defaults, file_config)
                logger.debug("Config loaded", file=str(config_path), keys=list(file_config.keys()))
            self.source = config_path

        if self._load_environment:
            self._apply_env_overrides(defaults)

        if overrides:
            self._deep_merge(defaults, copy.deepcopy(overrides))

        return defaults

    def _apply_env_overrides(self, config: Dict[str, Any]) -> None:
        env_overrides = {
            "CAPINDEX_INDEX_PATH": (("index", "path"), str),
            "CAPINDEX_LOG_LEVEL": (("logging", "level"), str),
            "CAPINDEX_SIMILARITY_THRESHOLD": (("similarity", "threshold"), float),
        }

        for env_key, (path_tuple, cast_to) in env_overrides.items():
            env_value = os.getenv(env_key)
            if not env_value:
                continue
            value_to_set: Any = env_value
            try:
                value_to_set = cast_to(env_value)
            except ValueError:
                # Left as a string; the validator reverts it to the default
                pass
            _set_nested(config, path_tuple, value_to_set)

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> None:
        """Deep merge of dictionaries."""
        for key, value in update.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(cast(Dict[str, Any], base[key]), cast(Dict[str, Any], value))
            else:
                base[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value, supporting dotted paths ("verbs.tiers.explicit")."""
        present, value = _get_nested(self.config, key)
        return value if present else default

    def require(self, key: str) -> Any:
        """
        Get required value or raise exception.
        """
        present, value = _get_nested(self.config, key)
        if not present:
            logger.error("Required config missing", key=key)
            raise ConfigurationError(f"Missing required config: {key}")
        return value
