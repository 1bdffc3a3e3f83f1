"""
Configuration module for amrr-rate-control

Contains the Config dataclass that holds all tunable parameters
for the AMRR rate controller.

Config is immutable once constructed. Values are validated in
__post_init__ so an invalid instance can never reach the controller.
"""

import logging
from dataclasses import dataclass, asdict, fields
from typing import Dict, Any, Mapping

from .errors import ConfigError


# Type mapping for config fields (for option parsing)
CONFIG_FIELD_TYPES: Dict[str, type] = {
    'update_period': float,
    'success_ratio': float,
    'failure_ratio': float,
    'min_success_threshold': int,
    'max_success_threshold': int,
    'enough_samples': int,
    'strict_invariants': bool,
    'enable_prometheus': bool,
    'prometheus_port': int,
    'log_level': str,
}

# Range constraints for numeric fields, as (min, max, min_exclusive); max None is unbounded
CONFIG_FIELD_RANGES: Dict[str, tuple] = {
    'update_period': (0.0, None, True),
    'success_ratio': (0.0, 1.0, True),
    'failure_ratio': (0.0, 1.0, True),
    'min_success_threshold': (1, 1000, False),
    'max_success_threshold': (1, 1000, False),
    'enough_samples': (0, 100000, False),
    'prometheus_port': (1, 65535, False),
}

# Level names accepted by the components' _log helpers
LOG_LEVELS: Dict[str, int] = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warn': logging.WARNING,
    'error': logging.ERROR,
}


@dataclass(frozen=True)
class Config:
    """
    Configuration container for the AMRR rate controller.

    Defaults match the classic AMRR parameters.
    """

    # Interval between rate decisions for a peer (seconds)
    update_period: float = 1.0

    # Promote when (err + retr) < ok * success_ratio
    success_ratio: float = 0.1
    # Demote when (err + retr) > ok * failure_ratio
    failure_ratio: float = 1.0 / 3.0

    # Consecutive successful periods needed to promote
    min_success_threshold: int = 1
    max_success_threshold: int = 10

    # A period is classifiable once ok + err + retr exceeds this
    enough_samples: int = 10

    # Raise on bounds violations instead of clamping
    strict_invariants: bool = False

    # Prometheus Metrics
    enable_prometheus: bool = False
    prometheus_port: int = 9810

    log_level: str = 'info'

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise ConfigError for the first invalid field."""
        for key, field_type in CONFIG_FIELD_TYPES.items():
            value = getattr(self, key)
            if field_type is float:
                valid = isinstance(value, (int, float)) and not isinstance(value, bool)
            elif field_type is int:
                valid = isinstance(value, int) and not isinstance(value, bool)
            else:
                valid = isinstance(value, field_type)
            if not valid:
                raise ConfigError(
                    f"Invalid type for {key}: expected {field_type.__name__}, "
                    f"got {type(value).__name__}",
                    field=key
                )

        for key, (min_val, max_val, min_exclusive) in CONFIG_FIELD_RANGES.items():
            value = getattr(self, key)
            too_low = value <= min_val if min_exclusive else value < min_val
            too_high = max_val is not None and value > max_val
            if too_low or too_high:
                bracket = '(' if min_exclusive else '['
                upper = f"{max_val}]" if max_val is not None else "inf)"
                raise ConfigError(
                    f"Value {value} out of range {bracket}{min_val}, {upper} for {key}",
                    field=key
                )

        if self.min_success_threshold > self.max_success_threshold:
            raise ConfigError(
                f"min_success_threshold ({self.min_success_threshold}) must not exceed "
                f"max_success_threshold ({self.max_success_threshold})",
                field='min_success_threshold'
            )

        if self.log_level not in LOG_LEVELS:
            raise ConfigError(
                f"Unknown log_level '{self.log_level}' (expected one of {sorted(LOG_LEVELS)})",
                field='log_level'
            )

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> 'Config':
        """
        Build a Config from string-valued options (CLI flags, env, files).

        Unknown keys are ignored. Values that fail type conversion raise
        ConfigError rather than silently falling back to the default.
        """
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in options.items():
            if key not in known or value is None:
                continue
            kwargs[key] = _convert(key, value)
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _convert(key: str, value: Any) -> Any:
    """Convert a raw option value to the declared field type."""
    field_type = CONFIG_FIELD_TYPES.get(key, str)
    if not isinstance(value, str):
        if field_type == float and isinstance(value, int) and not isinstance(value, bool):
            return float(value)
        return value
    try:
        if field_type == bool:
            return value.lower() in ('true', '1', 'yes', 'on')
        elif field_type == int:
            return int(value)
        elif field_type == float:
            return float(value)
        return value
    except (ValueError, TypeError) as e:
        raise ConfigError(
            f"Invalid value for {key} (expected {field_type.__name__}): {e}",
            field=key
        ) from e
