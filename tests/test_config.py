"""
Tests for storage_metrics/config.py.

Covers:
- Defaults when nothing is configured
- Layering: environment < YAML file < CLI arguments
- ${VAR} substitution in YAML
- Validation of tokens, metrics and numeric ranges
"""
import os
import sys

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from storage_metrics.config import (
    ENV_VAR_MAPPING,
    RunConfig,
    generate_sample_config,
    load_config,
    load_config_file,
    merge_configs,
)
from storage_metrics.constants import DEFAULT_METRICS
from storage_metrics.errors import InvalidConfiguration
from storage_metrics_collect import build_parser

SUB_A = "11111111-1111-1111-1111-111111111111"
SUB_B = "22222222-2222-2222-2222-222222222222"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate from the caller's SMA_* variables and default config files."""
    for env_var in ENV_VAR_MAPPING.values():
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.setenv('HOME', str(tmp_path / 'home'))
    monkeypatch.chdir(tmp_path)


def parse(*argv):
    return build_parser().parse_args(list(argv))


def write_config(tmp_path, text, name='config.yaml'):
    path = tmp_path / name
    path.write_text(text)
    os.chmod(path, 0o600)
    return str(path)


# =============================================================================
# Defaults Tests
# =============================================================================

class TestDefaults:
    """Tests for the configuration defaults."""

    def test_no_sources(self):
        """Test defaults when no file, env or flag is given."""
        config = load_config(parse())

        assert config.account_ids == []
        assert config.time_range == '1d'
        assert config.granularity == '1h'
        assert config.metrics == DEFAULT_METRICS
        assert config.continue_on_error is True
        assert config.max_retries == 3
        assert config.retry_delay == 2.0
        assert config.concurrency == 8
        assert config.formats == ['json', 'csv', 'console']
        assert config.export_partial is True
        assert config.include_resource_ids is False

    def test_run_config_defaults_validate(self):
        """Test the dataclass defaults are a valid configuration."""
        assert RunConfig().validate() == RunConfig()


# =============================================================================
# Layering Tests
# =============================================================================

class TestLayering:
    """Tests for environment, file and CLI precedence."""

    def test_env_vars(self, monkeypatch):
        """Test SMA_* variables are read."""
        monkeypatch.setenv('SMA_TIME_RANGE', '7d')
        monkeypatch.setenv('SMA_SUBSCRIPTIONS', f"{SUB_A},{SUB_B}")
        monkeypatch.setenv('SMA_CONTINUE_ON_ERROR', 'false')
        monkeypatch.setenv('SMA_MAX_RETRIES', '5')

        config = load_config(parse())

        assert config.time_range == '7d'
        assert config.account_ids == [SUB_A, SUB_B]
        assert config.continue_on_error is False
        assert config.max_retries == 5

    def test_file_overrides_env(self, monkeypatch, tmp_path):
        """Test the config file wins over environment variables."""
        monkeypatch.setenv('SMA_TIME_RANGE', '7d')
        path = write_config(tmp_path, "collection:\n  time_range: 30d\n  granularity: 1d\n")

        config = load_config(parse('--config', path))

        assert config.time_range == '30d'
        assert config.granularity == '1d'

    def test_cli_overrides_file(self, tmp_path):
        """Test CLI flags win over the config file."""
        path = write_config(tmp_path, (
            "collection:\n"
            "  time_range: 30d\n"
            "  metrics: [Transactions, Availability]\n"
            "  concurrency: 4\n"
        ))

        config = load_config(parse('--config', path, '--time-range', '6h', '--concurrency', '2'))

        assert config.time_range == '6h'
        assert config.concurrency == 2
        assert config.metrics == ['Transactions', 'Availability']

    def test_default_config_file(self, tmp_path):
        """Test ./sma-config.yaml is picked up without --config."""
        write_config(tmp_path, "collection:\n  top_n: 3\n", name='sma-config.yaml')
        config = load_config(parse())
        assert config.top_n == 3

    def test_cli_flags(self):
        """Test list and boolean flags from the command line."""
        config = load_config(parse(
            '--subscription', SUB_A,
            '--subscription', SUB_B,
            '--metrics', 'Transactions, Egress',
            '--fail-fast',
            '--regions', 'eastus,westus2',
            '--format', 'json',
            '--no-partial-export',
            '--include-resource-ids',
            '--deadline', '600',
        ))

        assert config.account_ids == [SUB_A, SUB_B]
        assert config.metrics == ['Transactions', 'Egress']
        assert config.continue_on_error is False
        assert config.regions == ['eastus', 'westus2']
        assert config.formats == ['json']
        assert config.export_partial is False
        assert config.include_resource_ids is True
        assert config.deadline_seconds == 600.0

    def test_env_substitution(self, monkeypatch, tmp_path):
        """Test ${VAR} and ${VAR:-default} are expanded in the file."""
        monkeypatch.setenv('METRICS_OUT', '/data/metrics')
        path = write_config(tmp_path, (
            'output: "${METRICS_OUT}"\n'
            'log_level: "${UNSET_LEVEL:-DEBUG}"\n'
        ))

        config = load_config(parse('--config', path))

        assert config.output == '/data/metrics'
        assert config.log_level == 'DEBUG'

    def test_merge_nested(self):
        """Test nested sections merge key by key."""
        merged = merge_configs(
            {'collection': {'time_range': '1d', 'max_retries': 3}},
            {'collection': {'time_range': '7d', 'granularity': None}},
        )
        assert merged == {'collection': {'time_range': '7d', 'max_retries': 3}}


# =============================================================================
# Validation Tests
# =============================================================================

class TestValidation:
    """Tests for rejecting bad configuration."""

    def test_unknown_time_range(self, monkeypatch):
        """Test an unknown range token is rejected."""
        monkeypatch.setenv('SMA_TIME_RANGE', '2w')
        with pytest.raises(InvalidConfiguration):
            load_config(parse())

    def test_unknown_metric(self):
        """Test an unsupported metric name is rejected."""
        with pytest.raises(InvalidConfiguration) as exc_info:
            load_config(parse('--metrics', 'Transactions,BlobCount'))
        assert 'BlobCount' in str(exc_info.value)

    def test_duplicate_metrics_collapsed(self):
        """Test repeated metrics are requested once."""
        config = load_config(parse('--metrics', 'Transactions,Availability,Transactions'))
        assert config.metrics == ['Transactions', 'Availability']

    @pytest.mark.parametrize("field,value", [
        ('max_retries', -1),
        ('retry_delay', -0.5),
        ('concurrency', 0),
        ('top_n', 0),
        ('deadline_seconds', 0),
        ('metrics', []),
        ('formats', ['xml']),
        ('granularity', '2h'),
    ])
    def test_out_of_range(self, field, value):
        """Test out-of-range values are rejected."""
        config = RunConfig(**{field: value})
        with pytest.raises(InvalidConfiguration):
            config.validate()

    def test_non_numeric_value(self, monkeypatch):
        """Test a non-numeric env value is reported with its key."""
        monkeypatch.setenv('SMA_CONCURRENCY', 'lots')
        with pytest.raises(InvalidConfiguration) as exc_info:
            load_config(parse())
        assert 'collection.concurrency' in str(exc_info.value)

    def test_missing_config_file(self, tmp_path):
        """Test a missing --config file is an error."""
        with pytest.raises(InvalidConfiguration):
            load_config_file(str(tmp_path / 'missing.yaml'))

    def test_invalid_yaml(self, tmp_path):
        """Test malformed YAML is an error."""
        path = write_config(tmp_path, "collection: [unclosed\n")
        with pytest.raises(InvalidConfiguration):
            load_config_file(path)

    def test_non_mapping_yaml(self, tmp_path):
        """Test a YAML list at the top level is rejected."""
        path = write_config(tmp_path, "- a\n- b\n")
        with pytest.raises(InvalidConfiguration):
            load_config_file(path)


class TestSampleConfig:
    """Tests for generate_sample_config."""

    def test_sample_config_loads(self, tmp_path):
        """Test the generated sample is itself a valid configuration."""
        path = write_config(tmp_path, generate_sample_config())
        config = load_config(parse('--config', path))
        assert config.output == './collections'
        assert config.rate_limit == 10.0
