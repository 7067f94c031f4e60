"""
Tests for exporter configuration
"""
import pytest

from ecs_exporter.config import ExporterConfig, parse_custom_labels, parse_listen_address
from ecs_exporter.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep exporter settings from the developer's shell out of the tests"""
    for name in ('ECS_EXPORTER_ADDR', 'ECS_EXPORTER_IGNORE_EXPORTER_METRICS',
                 'ECS_EXPORTER_CUSTOM_LABELS', 'ECS_EXPORTER_TIMEOUT', 'LOG_LEVEL'):
        monkeypatch.delenv(name, raising=False)


class TestParseCustomLabels:
    """Test the --custom-labels format"""

    def test_empty(self):
        assert parse_custom_labels('') == ()
        assert parse_custom_labels(None) == ()

    def test_pairs_in_order(self):
        assert parse_custom_labels('team=platform,env=prod') == (('team', 'platform'), ('env', 'prod'))

    def test_value_may_contain_separator(self):
        assert parse_custom_labels('query=a=b') == (('query', 'a=b'),)

    def test_pairs_without_separator_are_ignored(self):
        assert parse_custom_labels('env=prod,garbage,,team=core') == (('env', 'prod'), ('team', 'core'))

    def test_repeated_key_keeps_last_value(self):
        assert parse_custom_labels('env=dev,team=core,env=prod') == (('env', 'prod'), ('team', 'core'))


class TestParseListenAddress:
    """Test host:port parsing"""

    @pytest.mark.parametrize("addr, expected", [
        (':9779', ('0.0.0.0', 9779)),
        ('127.0.0.1:8080', ('127.0.0.1', 8080)),
        ('[::1]:9779', ('::1', 9779)),
    ])
    def test_valid(self, addr, expected):
        assert parse_listen_address(addr) == expected

    @pytest.mark.parametrize("addr", ['9779', ':http', ':70000', 'localhost:'])
    def test_invalid(self, addr):
        with pytest.raises(ConfigurationError):
            parse_listen_address(addr)


class TestExporterConfig:
    """Test building the configuration from arguments and environment"""

    def test_defaults(self):
        config = ExporterConfig.from_args([])

        assert config.addr == ':9779'
        assert config.ignore_exporter_metrics is False
        assert config.custom_labels == ()
        assert config.timeout == 10.0
        assert config.log_level == 'INFO'
        assert config.listen_address == ('0.0.0.0', 9779)

    def test_arguments(self):
        config = ExporterConfig.from_args([
            '--addr', '127.0.0.1:9000',
            '--ignore-exporter-metrics',
            '--custom-labels', 'env=prod,team=core',
            '--timeout', '2.5',
            '--log-level', 'debug',
        ])

        assert config.listen_address == ('127.0.0.1', 9000)
        assert config.ignore_exporter_metrics is True
        assert config.custom_labels == (('env', 'prod'), ('team', 'core'))
        assert config.timeout == 2.5
        assert config.log_level == 'DEBUG'

    def test_environment(self, monkeypatch):
        monkeypatch.setenv('ECS_EXPORTER_ADDR', ':9100')
        monkeypatch.setenv('ECS_EXPORTER_IGNORE_EXPORTER_METRICS', 'true')
        monkeypatch.setenv('ECS_EXPORTER_CUSTOM_LABELS', 'env=staging')

        config = ExporterConfig.from_args([])

        assert config.addr == ':9100'
        assert config.ignore_exporter_metrics is True
        assert config.custom_labels == (('env', 'staging'),)

    def test_arguments_override_environment(self, monkeypatch):
        monkeypatch.setenv('ECS_EXPORTER_CUSTOM_LABELS', 'env=staging')

        config = ExporterConfig.from_args(['--custom-labels', 'env=prod'])

        assert config.custom_labels == (('env', 'prod'),)

    def test_invalid_address(self):
        with pytest.raises(ConfigurationError):
            ExporterConfig.from_args(['--addr', 'nowhere'])

    def test_invalid_timeout(self):
        with pytest.raises(ConfigurationError):
            ExporterConfig.from_args(['--timeout', '0'])
