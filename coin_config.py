"""
Client configuration.

Sources, in order of precedence:
    1. Environment variables (COINACC_*)
    2. YAML file passed to `ClientConfig.from_yaml`
    3. Chain-constant defaults
"""

import dataclasses
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from accumulator_primitives import GENERATOR, MODULUS
from coin_errors import ConfigError

ENV_PREFIX = "COINACC_"

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


@dataclass(frozen=True)
class ClientConfig:
    modulus: int = MODULUS
    generator: int = GENERATOR
    # Ledger rounds a submitted transaction may wait before it is TIMED_OUT
    timeout_rounds: int = 5
    # Deltas retained by the state tracker
    history_limit: int = 256
    # Witness snapshots kept per coin for reorg recovery
    snapshot_limit: int = 8
    auto_refresh: bool = True
    log_level: str = "INFO"

    def __post_init__(self):
        if self.modulus < 3 or self.modulus % 2 == 0:
            raise ConfigError("Modulus must be an odd integer greater than 2")
        if not 1 < self.generator < self.modulus:
            raise ConfigError("Generator must lie in (1, modulus)")
        if self.timeout_rounds < 1:
            raise ConfigError("timeout_rounds must be at least 1")
        if self.history_limit < 1 or self.snapshot_limit < 1:
            raise ConfigError("History limits must be positive")
        if logging.getLevelName(self.log_level.upper()) not in range(0, 51):
            raise ConfigError(f"Unknown log level: {self.log_level}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ClientConfig":
        fields = {f.name: f for f in dataclasses.fields(cls)}
        unknown = set(data) - set(fields)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {sorted(unknown)}")
        values = {}
        for key, raw in data.items():
            values[key] = _coerce(key, fields[key].type, raw)
        return cls(**values)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, base: Optional[Dict[str, Any]] = None) -> "ClientConfig":
        environ = os.environ if environ is None else environ
        data = dict(base or {})
        for f in dataclasses.fields(cls):
            name = ENV_PREFIX + f.name.upper()
            if name in environ:
                data[f.name] = environ[name]
        return cls.from_mapping(data)

    @classmethod
    def from_yaml(cls, path, environ: Optional[Mapping[str, str]] = None) -> "ClientConfig":
        try:
            data = yaml.safe_load(Path(path).read_text()) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return cls.from_env(environ, base=data)


def _coerce(key: str, kind, raw):
    kind = kind if isinstance(kind, str) else kind.__name__
    if kind == "bool":
        if isinstance(raw, bool):
            return raw
        lowered = str(raw).strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ConfigError(f"{key}: expected a boolean, got {raw!r}")
    if kind == "int":
        try:
            # base 0 accepts hex moduli
            return raw if isinstance(raw, int) else int(str(raw), 0)
        except ValueError:
            raise ConfigError(f"{key}: expected an integer, got {raw!r}") from None
    return str(raw)


def configure_logging(config: Optional[ClientConfig] = None):
    level = (config.log_level if config else "INFO").upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)
