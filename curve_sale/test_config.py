"""
Configuration loading and validation.
"""
import json
import logging

import pytest

from curve_sale.config import (
    CURVE_LOGARITHMIC,
    TOKEN_UNIT,
    Config,
    ConfigChange,
    LoggingConfig,
    SaleConfig,
    configure_logging,
)
from curve_sale.errors import InvalidParameter


def test_defaults_validate():
    config = SaleConfig()
    config.validate()
    assert config.total_supply_cap == 1_000_000_000 * TOKEN_UNIT
    assert config.migration_threshold == 800_000_000 * TOKEN_UNIT
    assert config.rate_limit_quota == 5
    assert config.dynamic_reserve_buffer is True


def test_logarithmic_defaults():
    config = SaleConfig.for_curve(CURVE_LOGARITHMIC)
    assert config.curve == CURVE_LOGARITHMIC
    assert config.reserve_buffer_bps == 1000
    assert config.dynamic_reserve_buffer is False


@pytest.mark.parametrize("overrides", [
    {'migration_threshold': 1_000_000_000 * TOKEN_UNIT},
    {'min_trade': 11 * TOKEN_UNIT},
    {'price_impact_limit': 21},
    {'curve_factor': 201},
    {'curve': 'exponential'},
    {'rate_limit_quota': 0},
    {'initial_token_reserve': 0},
])
def test_invalid_configs(overrides):
    with pytest.raises(InvalidParameter):
        SaleConfig(**overrides).validate()


def test_file_roundtrip(tmp_path):
    path = str(tmp_path / "nested" / "config.json")
    config = Config.default()
    config.sale.max_active_users = 42
    config.monitoring.port = 9100

    config.to_file(path)
    loaded = Config.from_file(path)

    assert loaded.sale == config.sale
    assert loaded.monitoring.port == 9100
    assert loaded.to_dict() == config.to_dict()


def test_from_file_validates(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({'sale': {'price_impact_limit': 50}}))

    with pytest.raises(InvalidParameter):
        Config.from_file(str(path))


def test_configure_logging(monkeypatch):
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    configure_logging(LoggingConfig(level="debug"))

    assert calls[0]['level'] == logging.DEBUG


def test_config_change_to_dict():
    change = ConfigChange('curve_factor', 100, 150, '0xabc', timestamp=1)
    assert change.to_dict() == {
        'parameter': 'curve_factor',
        'old_value': 100,
        'new_value': 150,
        'changed_by': '0xabc',
        'timestamp': 1,
    }
