import logging

import pytest

from accumulator_primitives import CryptoPrimitives, GENERATOR, MODULUS
from coin_config import ClientConfig, configure_logging
from coin_errors import ConfigError


def test_defaults_use_chain_constants():
    config = ClientConfig()
    assert config.modulus == MODULUS
    assert config.generator == GENERATOR
    assert config.auto_refresh


def test_env_overrides_base_values():
    config = ClientConfig.from_env(
        {"COINACC_TIMEOUT_ROUNDS": "9", "COINACC_AUTO_REFRESH": "off", "UNRELATED": "x"},
        base={"timeout_rounds": 4, "history_limit": 32},
    )
    assert config.timeout_rounds == 9
    assert config.history_limit == 32
    assert config.auto_refresh is False


def test_yaml_file_is_read_and_env_wins(tmp_path):
    path = tmp_path / "client.yaml"
    path.write_text("modulus: 0x1d\ngenerator: 3\nsnapshot_limit: 2\nlog_level: debug\n")

    config = ClientConfig.from_yaml(path, environ={"COINACC_SNAPSHOT_LIMIT": "5"})

    assert config.modulus == 29
    assert config.generator == 3
    assert config.snapshot_limit == 5
    primitives = CryptoPrimitives.load(config)
    assert primitives.modulus == 29


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "client.yaml"
    path.write_text("")
    assert ClientConfig.from_yaml(path, environ={}) == ClientConfig()


@pytest.mark.parametrize("data", [
    {"timeout_rounds": 0},
    {"modulus": 10},
    {"generator": 1},
    {"history_limit": "lots"},
    {"auto_refresh": "maybe"},
    {"log_level": "chatty"},
    {"colour": "blue"},
])
def test_bad_values_raise_config_error(data):
    with pytest.raises(ConfigError):
        ClientConfig.from_mapping(data)


def test_unreadable_yaml_is_config_error(tmp_path):
    with pytest.raises(ConfigError):
        ClientConfig.from_yaml(tmp_path / "missing.yaml", environ={})

    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n")
    with pytest.raises(ConfigError):
        ClientConfig.from_yaml(path, environ={})


def test_configure_logging_sets_root_level():
    root = logging.getLogger()
    previous = root.level
    try:
        configure_logging(ClientConfig(log_level="warning"))
        assert root.level == logging.WARNING
    finally:
        root.setLevel(previous)
