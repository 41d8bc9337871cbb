"""
Platform configuration.

The platform takes a plain dictionary (usually loaded from a JSON file with
``--config``). The ``scoring`` section is parsed into an ``EngineConfig``.
Example::

    {
        "database_type": "sqlite",
        "database_config": {"database_path": "carrymark.db"},
        "scoring": {
            "weights": {"assessment": 70, "assignment": 20, "attendance": 10},
            "grade_bands": [{"label": "A", "min": 80, "max": 100}, ...],
            "missing_component_policy": "exclude",
            "rounding": "half_up",
            "max_retries": 3,
            "retry_backoff": 0.01
        }
    }
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .core.entities import Weights
from .core.enums import MissingComponentPolicy, RoundingMode
from .core.exceptions import CarryMarkException, ConfigurationError
from .scoring.reducer import CompositeReducer, GradeScale, validate_weights


@dataclass
class EngineConfig:
    """Scoring policy for one engine instance."""
    weights: Weights = field(default_factory=Weights)
    grade_scale: GradeScale = field(default_factory=GradeScale.default)
    missing_component_policy: MissingComponentPolicy = MissingComponentPolicy.EXCLUDE
    rounding: RoundingMode = RoundingMode.HALF_UP
    max_retries: int = 3
    retry_backoff: float = 0.01

    def __post_init__(self):
        validate_weights(self.weights)
        if self.max_retries < 0:
            raise ConfigurationError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.retry_backoff < 0:
            raise ConfigurationError(f"retry_backoff must be >= 0, got {self.retry_backoff}")

    def build_reducer(self) -> CompositeReducer:
        return CompositeReducer(
            grade_scale=self.grade_scale,
            missing_policy=self.missing_component_policy,
            rounding=self.rounding,
        )

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'EngineConfig':
        data = data or {}
        kwargs: Dict[str, Any] = {}
        try:
            if 'weights' in data:
                kwargs['weights'] = Weights.from_dict(data['weights'])
            if 'grade_bands' in data:
                kwargs['grade_scale'] = GradeScale.from_list(data['grade_bands'])
            if 'missing_component_policy' in data:
                kwargs['missing_component_policy'] = MissingComponentPolicy(data['missing_component_policy'])
            if 'rounding' in data:
                kwargs['rounding'] = RoundingMode(data['rounding'])
            if 'max_retries' in data:
                kwargs['max_retries'] = int(data['max_retries'])
            if 'retry_backoff' in data:
                kwargs['retry_backoff'] = float(data['retry_backoff'])
        except ValueError as e:
            raise ConfigurationError(f"Invalid scoring configuration: {e}")
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'weights': self.weights.to_dict(),
            'grade_bands': self.grade_scale.to_list(),
            'missing_component_policy': self.missing_component_policy.value,
            'rounding': self.rounding.value,
            'max_retries': self.max_retries,
            'retry_backoff': self.retry_backoff,
        }


def load_config(path: str) -> Dict[str, Any]:
    """Load a JSON configuration file."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not load configuration from {path}: {e}")
    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration in {path} must be a JSON object")
    return config


def engine_config_from(config: Dict[str, Any]) -> EngineConfig:
    """Build the EngineConfig from a platform configuration dictionary."""
    try:
        return EngineConfig.from_dict(config.get('scoring'))
    except ConfigurationError:
        raise
    except CarryMarkException as e:
        raise ConfigurationError(f"Invalid scoring configuration: {e.message}")
