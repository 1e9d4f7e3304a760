"""
Storage Metrics Collector - Configuration Management

Supports loading configuration from:
1. YAML config file (--config)
2. Environment variables (SMA_*)
3. Command-line arguments (highest priority)

Config file example:
```yaml
output: "./collections"
log_level: INFO

collection:
  subscriptions:
    - "xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx"
  time_range: 7d
  granularity: 1h
  metrics: [Transactions, Availability, UsedCapacity]
  continue_on_error: true
  max_retries: 3
  retry_delay: 2
  concurrency: 8
```
"""
import logging
import os
import re
import stat
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .constants import (
    DEFAULT_CONCURRENCY,
    DEFAULT_GRANULARITY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_METRICS,
    DEFAULT_OUTPUT_FORMATS,
    DEFAULT_RATE_BURST,
    DEFAULT_RATE_LIMIT,
    DEFAULT_RETRY_DELAY,
    DEFAULT_TIME_RANGE,
    DEFAULT_TOP_N,
    GRANULARITIES,
    OUTPUT_FORMATS,
    SUPPORTED_METRICS,
    TIME_RANGES,
)
from .errors import InvalidConfiguration

logger = logging.getLogger(__name__)

# Default config file locations (checked in order)
DEFAULT_CONFIG_PATHS = [
    './sma-config.yaml',
    './sma-config.yml',
    '~/.sma/config.yaml',
    '~/.sma/config.yml',
]

# Mapping from config keys to env vars
ENV_VAR_MAPPING = {
    'output': 'SMA_OUTPUT',
    'log_level': 'SMA_LOG_LEVEL',
    'collection.subscriptions': 'SMA_SUBSCRIPTIONS',
    'collection.time_range': 'SMA_TIME_RANGE',
    'collection.granularity': 'SMA_GRANULARITY',
    'collection.metrics': 'SMA_METRICS',
    'collection.continue_on_error': 'SMA_CONTINUE_ON_ERROR',
    'collection.max_retries': 'SMA_MAX_RETRIES',
    'collection.retry_delay': 'SMA_RETRY_DELAY',
    'collection.concurrency': 'SMA_CONCURRENCY',
    'collection.regions': 'SMA_REGIONS',
    'collection.rate_limit': 'SMA_RATE_LIMIT',
    'collection.top_n': 'SMA_TOP_N',
    'collection.deadline_seconds': 'SMA_DEADLINE',
    'formats': 'SMA_FORMATS',
}


@dataclass
class RunConfig:
    """Validated options for one collection run."""
    account_ids: List[str] = field(default_factory=list)
    time_range: str = DEFAULT_TIME_RANGE
    granularity: str = DEFAULT_GRANULARITY
    metrics: List[str] = field(default_factory=lambda: list(DEFAULT_METRICS))
    continue_on_error: bool = True
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    concurrency: int = DEFAULT_CONCURRENCY
    regions: List[str] = field(default_factory=list)
    top_n: int = DEFAULT_TOP_N
    rate_limit: float = DEFAULT_RATE_LIMIT
    rate_burst: int = DEFAULT_RATE_BURST
    deadline_seconds: Optional[float] = None
    output: str = '.'
    formats: List[str] = field(default_factory=lambda: list(DEFAULT_OUTPUT_FORMATS))
    include_resource_ids: bool = False
    export_partial: bool = True
    log_level: str = 'INFO'

    def validate(self) -> "RunConfig":
        """
        Check every option; raises InvalidConfiguration on the first bad one.
        """
        if self.time_range not in TIME_RANGES:
            raise InvalidConfiguration(
                f"Unknown time range '{self.time_range}'. Valid values: {', '.join(TIME_RANGES)}"
            )
        if self.granularity not in GRANULARITIES:
            raise InvalidConfiguration(
                f"Unknown granularity '{self.granularity}'. Valid values: {', '.join(GRANULARITIES)}"
            )
        if not self.metrics:
            raise InvalidConfiguration("At least one metric must be requested")
        unknown = [m for m in self.metrics if m not in SUPPORTED_METRICS]
        if unknown:
            raise InvalidConfiguration(
                f"Unknown metric(s): {', '.join(unknown)}. Valid values: {', '.join(SUPPORTED_METRICS)}"
            )
        if len(set(self.metrics)) != len(self.metrics):
            self.metrics = list(dict.fromkeys(self.metrics))
        if self.max_retries < 0:
            raise InvalidConfiguration("max_retries must be >= 0")
        if self.retry_delay < 0:
            raise InvalidConfiguration("retry_delay must be >= 0")
        if self.concurrency < 1:
            raise InvalidConfiguration("concurrency must be >= 1")
        if self.top_n < 1:
            raise InvalidConfiguration("top_n must be >= 1")
        if self.deadline_seconds is not None and self.deadline_seconds <= 0:
            raise InvalidConfiguration("deadline must be > 0 seconds")
        bad_formats = [f for f in self.formats if f not in OUTPUT_FORMATS]
        if bad_formats:
            raise InvalidConfiguration(
                f"Unknown output format(s): {', '.join(bad_formats)}. Valid values: {', '.join(OUTPUT_FORMATS)}"
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _substitute_env_vars(value: Any) -> Any:
    """Substitute ${ENV_VAR} patterns in string values."""
    if isinstance(value, str):
        # Pattern: ${VAR_NAME} or ${VAR_NAME:-default}
        pattern = r'\$\{([^}:]+)(?::-([^}]*))?\}'

        def replace(match):
            return os.environ.get(match.group(1), match.group(2) or '')

        return re.sub(pattern, replace, value)
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _get_nested(data: Dict, key_path: str, default: Any = None) -> Any:
    """Get a nested value from a dict using dot notation."""
    value: Any = data
    for key in key_path.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


def _set_nested(data: Dict, key_path: str, value: Any) -> None:
    """Set a nested value in a dict using dot notation."""
    keys = key_path.split('.')
    for key in keys[:-1]:
        data = data.setdefault(key, {})
    data[keys[-1]] = value


def _split_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [v.strip() for v in value.split(',') if v.strip()]
    if isinstance(value, (list, tuple)):
        result: List[str] = []
        for item in value:
            result.extend(_split_list(item) if isinstance(item, str) else [str(item)])
        return result
    return []


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('true', '1', 'yes', 'on')


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        raise InvalidConfiguration(f"Config file not found: {config_path}")

    file_mode = path.stat().st_mode
    if file_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning(f"Config file {config_path} has loose permissions. "
                       f"Consider: chmod 600 {config_path}")

    logger.info(f"Loading config from {path}")

    try:
        with open(path) as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise InvalidConfiguration(f"Invalid YAML in {config_path}: {e}", original_error=e) from e

    if not isinstance(config, dict):
        raise InvalidConfiguration(f"Config file {config_path} must contain a mapping")

    return _substitute_env_vars(config)


def find_default_config() -> Optional[str]:
    """Find a config file in default locations."""
    for path in DEFAULT_CONFIG_PATHS:
        expanded = Path(path).expanduser()
        if expanded.exists():
            return str(expanded)
    return None


def load_env_config() -> Dict[str, Any]:
    """Load configuration from environment variables."""
    config: Dict[str, Any] = {}
    for config_key, env_var in ENV_VAR_MAPPING.items():
        value = os.environ.get(env_var)
        if value is not None:
            _set_nested(config, config_key, value)
    return config


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Merge multiple config dicts. Later configs override earlier ones."""
    result: Dict[str, Any] = {}
    for config in configs:
        for key, value in config.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = merge_configs(result[key], value)
            elif value is not None:
                result[key] = value
    return result


def args_to_config(args) -> Dict[str, Any]:
    """Convert argparse args to config dict format."""
    config: Dict[str, Any] = {}

    arg_mapping = {
        'output': 'output',
        'log_level': 'log_level',
        'format': 'formats',
        'include_resource_ids': 'include_resource_ids',
        'export_partial': 'export_partial',
        'subscription': 'collection.subscriptions',
        'time_range': 'collection.time_range',
        'granularity': 'collection.granularity',
        'metrics': 'collection.metrics',
        'continue_on_error': 'collection.continue_on_error',
        'max_retries': 'collection.max_retries',
        'retry_delay': 'collection.retry_delay',
        'concurrency': 'collection.concurrency',
        'regions': 'collection.regions',
        'top': 'collection.top_n',
        'rate_limit': 'collection.rate_limit',
        'rate_burst': 'collection.rate_burst',
        'deadline': 'collection.deadline_seconds',
    }

    for arg_name, config_key in arg_mapping.items():
        value = getattr(args, arg_name, None)
        if value is not None:
            _set_nested(config, config_key, value)

    return config


def _number(config: Dict[str, Any], key: str, cast, default):
    value = _get_nested(config, key)
    if value is None or value == '':
        return default
    try:
        return cast(value)
    except (TypeError, ValueError) as e:
        raise InvalidConfiguration(f"Invalid value for {key}: {value!r}", original_error=e) from e


def build_run_config(config: Dict[str, Any]) -> RunConfig:
    """Turn a merged config dict into a validated RunConfig."""
    deadline = _number(config, 'collection.deadline_seconds', float, None)
    run_config = RunConfig(
        account_ids=_split_list(_get_nested(config, 'collection.subscriptions', [])),
        time_range=str(_get_nested(config, 'collection.time_range', DEFAULT_TIME_RANGE)),
        granularity=str(_get_nested(config, 'collection.granularity', DEFAULT_GRANULARITY)),
        metrics=_split_list(_get_nested(config, 'collection.metrics', list(DEFAULT_METRICS))),
        continue_on_error=_parse_bool(_get_nested(config, 'collection.continue_on_error', True)),
        max_retries=_number(config, 'collection.max_retries', int, DEFAULT_MAX_RETRIES),
        retry_delay=_number(config, 'collection.retry_delay', float, DEFAULT_RETRY_DELAY),
        concurrency=_number(config, 'collection.concurrency', int, DEFAULT_CONCURRENCY),
        regions=_split_list(_get_nested(config, 'collection.regions', [])),
        top_n=_number(config, 'collection.top_n', int, DEFAULT_TOP_N),
        rate_limit=_number(config, 'collection.rate_limit', float, DEFAULT_RATE_LIMIT),
        rate_burst=_number(config, 'collection.rate_burst', int, DEFAULT_RATE_BURST),
        deadline_seconds=deadline,
        output=str(config.get('output', '.')),
        formats=_split_list(config.get('formats', list(DEFAULT_OUTPUT_FORMATS))),
        include_resource_ids=_parse_bool(config.get('include_resource_ids', False)),
        export_partial=_parse_bool(config.get('export_partial', True)),
        log_level=str(config.get('log_level', 'INFO')),
    )
    return run_config.validate()


def load_config(args) -> RunConfig:
    """
    Load configuration from all sources, merge and validate them.

    Priority (highest to lowest):
    1. CLI arguments
    2. Config file (--config or default location)
    3. Environment variables

    Raises:
        InvalidConfiguration: If any option is unknown or out of range
    """
    configs = []

    env_config = load_env_config()
    if env_config:
        logger.debug("Loaded config from environment variables")
        configs.append(env_config)

    config_path = getattr(args, 'config', None)
    if config_path:
        configs.append(load_config_file(config_path))
    else:
        default_config = find_default_config()
        if default_config:
            logger.info(f"Found default config file: {default_config}")
            configs.append(load_config_file(default_config))

    configs.append(args_to_config(args))

    return build_run_config(merge_configs(*configs))


def generate_sample_config() -> str:
    """Generate a sample config file content."""
    return '''# Storage Metrics Collector Configuration
#
# Environment variable substitution supported:
#   ${VAR_NAME}           - required env var
#   ${VAR_NAME:-default}  - env var with default value

# Output directory or blob container URL for results
output: "./collections"

# Output formats: json, csv, console
formats: [json, csv, console]

# Logging level: DEBUG, INFO, WARNING, ERROR
log_level: INFO

# Hash subscription and resource ids in output files unless true
include_resource_ids: false

# Export results collected before a fatal error
export_partial: true

collection:
  # Subscriptions to scan (default: all Enabled subscriptions you can see)
  # subscriptions:
  #   - "xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx"

  # Query window: 1h, 6h, 12h, 1d, 7d, 30d
  time_range: 1d

  # Sampling interval: 1m, 5m, 15m, 1h, 1d
  granularity: 1h

  # Metrics to collect per storage account
  metrics:
    - Transactions
    - Availability
    - UsedCapacity
    - SuccessE2ELatency
    - SuccessServerLatency

  # Skip failed subscriptions/resources instead of aborting the run
  continue_on_error: true

  # Retries per metric fetch, and fixed delay (seconds) between attempts
  max_retries: 3
  retry_delay: 2

  # Parallel workers (Azure Monitor throttles aggressively, keep this small)
  concurrency: 8

  # Metric calls per second across all workers (0 disables)
  rate_limit: 10
  rate_burst: 20

  # Storage accounts ranked per metric in the summary
  top_n: 10

  # Filter to specific regions
  # regions:
  #   - eastus
  #   - westeurope

  # Stop the run after this many seconds, keeping completed results
  # deadline_seconds: 3600
'''
