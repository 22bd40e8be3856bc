"""Shared test fixtures and configuration."""

import pytest

from teg_service.config import ServiceConfig


def build_test_config(**kwargs):
    """Create a ServiceConfig with sensible defaults for testing.

    Args:
        **kwargs: Override any config parameters

    Returns:
        ServiceConfig instance with test defaults
    """
    defaults = {
        'gateway_url': 'https://192.168.91.1',
        'gateway_email': 'owner@example.com',
        'gateway_password': 'secret',
        'gateway_verify_tls': False,
        'request_timeout': 10.0,
        'poll_interval': 5.0,
        'exit_on_failure': False,
        'log_level': 'INFO',
        'influx_url': 'http://localhost:8086',
        'influx_token': 'test_token',
        'influx_username': None,
        'influx_password': None,
        'influx_org': 'test_org',
        'influx_bucket': 'test_bucket',
        'influx_database': None,
        'influx_retention_policy': None,
        'measurement_prefix': '',
        'influx_timeout': 10.0,
        'influx_verify_tls': False,
        'flush_interval': 30.0,
        'batch_size': 500,
    }
    defaults.update(kwargs)
    return ServiceConfig(**defaults)


@pytest.fixture
def test_config():
    """Default ServiceConfig for tests that only need a valid configuration."""
    return build_test_config()
