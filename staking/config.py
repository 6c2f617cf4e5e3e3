"""
Configuration Management for BTC Staking

Handles hierarchical loading of global staking parameters (covenant
committee, staking time and value bounds, network) from defaults, profiles,
YAML/JSON files and environment variables, plus logging setup.
"""

import copy
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import yaml

from crypto.keys import KeyLike
from staking.exceptions import (
    ConfigurationError,
    EmptyKeySetError,
    InvalidLockTimeError,
    InvalidStakingAmountError,
    InvalidThresholdError,
)
from staking.keyset import (
    MAX_STAKING_AMOUNT,
    MAX_TIMELOCK_BLOCKS,
    MIN_TIMELOCK_BLOCKS,
    KeySet,
    LockParams,
    normalize_keys,
)
from staking.networks import NETWORKS, NetworkParams, get_network

__all__ = [
    "NETWORKS",
    "NetworkParams",
    "get_network",
    "StakingParams",
    "ConfigurationManager",
    "setup_logging",
]


# Configuration file locations in order of precedence (highest to lowest)
CONFIG_SEARCH_PATHS = [
    Path.cwd() / '.btcstaking.yml',
    Path.cwd() / '.btcstaking.json',
    Path.home() / '.btcstaking' / 'config.yml',
    Path.home() / '.btcstaking' / 'config.json',
]

# Environment variable prefix; "__" separates nesting levels,
# e.g. BTCSTAKING_STAKING__COVENANT_THRESHOLD -> staking.covenant_threshold
ENV_PREFIX = 'BTCSTAKING_'
ENV_NESTING_SEPARATOR = '__'

DEFAULT_CONFIG = {
    'network': 'mainnet',
    'staking': {
        'covenant_keys': [],
        'covenant_threshold': 1,
        'min_staking_time': MIN_TIMELOCK_BLOCKS,
        'max_staking_time': MAX_TIMELOCK_BLOCKS,
        'min_staking_value': 1,
        'max_staking_value': MAX_STAKING_AMOUNT,
    },
    'logging': {
        'level': 'WARNING',
    },
}

PROFILES = {
    'production': {
        'network': 'mainnet',
        'logging': {'level': 'WARNING'},
    },
    'testnet': {
        'network': 'signet',
        'logging': {'level': 'INFO'},
    },
    'development': {
        'network': 'regtest',
        'staking': {'min_staking_time': 1},
        'logging': {'level': 'DEBUG'},
    },
}

PACKAGE_LOGGERS = ('crypto', 'scripts', 'staking')


@dataclass(frozen=True)
class StakingParams:
    """Global parameters every staking request is checked against."""
    covenant_keys: Tuple[bytes, ...]
    covenant_threshold: int
    min_staking_time: int = MIN_TIMELOCK_BLOCKS
    max_staking_time: int = MAX_TIMELOCK_BLOCKS
    min_staking_value: int = 1
    max_staking_value: int = MAX_STAKING_AMOUNT
    network: NetworkParams = field(default_factory=lambda: get_network('mainnet'))

    def __post_init__(self):
        """Validate global parameters."""
        object.__setattr__(self, 'covenant_keys', normalize_keys(self.covenant_keys, "covenant"))
        object.__setattr__(self, 'network', get_network(self.network))

        if not self.covenant_keys:
            raise EmptyKeySetError("covenant")
        if not 1 <= self.covenant_threshold <= len(self.covenant_keys):
            raise InvalidThresholdError(self.covenant_threshold, len(self.covenant_keys), role="covenant")
        if not MIN_TIMELOCK_BLOCKS <= self.min_staking_time <= self.max_staking_time <= MAX_TIMELOCK_BLOCKS:
            raise ConfigurationError(
                f"Invalid staking time bounds [{self.min_staking_time}, {self.max_staking_time}]"
            )
        if not 0 < self.min_staking_value <= self.max_staking_value <= MAX_STAKING_AMOUNT:
            raise ConfigurationError(
                f"Invalid staking value bounds [{self.min_staking_value}, {self.max_staking_value}]"
            )

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> 'StakingParams':
        """Build parameters from a merged configuration dictionary."""
        staking = config.get('staking', {})
        try:
            return cls(
                covenant_keys=tuple(staking.get('covenant_keys', [])),
                covenant_threshold=int(staking.get('covenant_threshold', 1)),
                min_staking_time=int(staking.get('min_staking_time', MIN_TIMELOCK_BLOCKS)),
                max_staking_time=int(staking.get('max_staking_time', MAX_TIMELOCK_BLOCKS)),
                min_staking_value=int(staking.get('min_staking_value', 1)),
                max_staking_value=int(staking.get('max_staking_value', MAX_STAKING_AMOUNT)),
                network=get_network(config.get('network', 'mainnet')),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid staking parameters: {e}") from e

    def validate_lock_params(self, lock_params: LockParams) -> None:
        """
        Check a staking request against the global bounds.

        Raises:
            InvalidLockTimeError: If the timelock is outside [min, max] staking time
            InvalidStakingAmountError: If the amount is outside [min, max] staking value
            ConfigurationError: If the request targets another network
        """
        if not self.min_staking_time <= lock_params.timelock_blocks <= self.max_staking_time:
            raise InvalidLockTimeError(
                lock_params.timelock_blocks,
                f"Staking time {lock_params.timelock_blocks} outside allowed range "
                f"[{self.min_staking_time}, {self.max_staking_time}]"
            )
        if not self.min_staking_value <= lock_params.staking_amount <= self.max_staking_value:
            raise InvalidStakingAmountError(
                lock_params.staking_amount,
                f"Staking value {lock_params.staking_amount} outside allowed range "
                f"[{self.min_staking_value}, {self.max_staking_value}]"
            )
        if lock_params.network != self.network:
            raise ConfigurationError(
                f"Staking request for {lock_params.network.name}, parameters are for {self.network.name}"
            )

    def key_set(self, staker: KeyLike, validators: Sequence[KeyLike]) -> KeySet:
        """Build a KeySet using the configured covenant committee."""
        return KeySet.build(
            staker=staker,
            validators=validators,
            covenant=self.covenant_keys,
            covenant_threshold=self.covenant_threshold,
        )

    def lock_params(self, staking_amount: int, timelock_blocks: int) -> LockParams:
        """Build and bound-check lock parameters on the configured network."""
        lock = LockParams(staking_amount=staking_amount, timelock_blocks=timelock_blocks, network=self.network)
        self.validate_lock_params(lock)
        return lock


class ConfigurationManager:
    """Manages hierarchical configuration with environment variable support."""

    def __init__(
        self,
        config_file: Optional[str] = None,
        profile: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
        search_paths: Optional[Sequence[Path]] = None
    ):
        """
        Initialize configuration manager.

        Args:
            config_file: Explicit configuration file path
            profile: Configuration profile to apply (production, testnet, development)
            environ: Environment mapping (defaults to os.environ)
            search_paths: Files to look for when no config_file is given
        """
        self.logger = logging.getLogger(__name__)
        self.config_file = config_file
        self.profile = profile
        self.environ = os.environ if environ is None else environ
        self.search_paths = CONFIG_SEARCH_PATHS if search_paths is None else list(search_paths)
        self._config_cache: Optional[Dict[str, Any]] = None
        self._config_sources: List[str] = []

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from all sources in hierarchical order.

        Returns:
            Merged configuration dictionary
        """
        if self._config_cache is not None:
            return self._config_cache

        configs = [copy.deepcopy(DEFAULT_CONFIG)]
        self._config_sources = ["defaults"]

        if self.profile:
            if self.profile not in PROFILES:
                raise ConfigurationError(f"Unknown configuration profile: {self.profile}")
            configs.append(PROFILES[self.profile])
            self._config_sources.append(f"profile:{self.profile}")
            self.logger.debug(f"Applied profile: {self.profile}")

        if self.config_file:
            configs.append(self._load_config_file(Path(self.config_file)))
            self._config_sources.append(f"file:{self.config_file}")
        else:
            for config_path in self.search_paths:
                if config_path.exists():
                    configs.append(self._load_config_file(config_path))
                    self._config_sources.append(f"file:{config_path}")
                    self.logger.debug(f"Loaded config from {config_path}")
                    break  # Use first found config file

        env_config = self._load_environment_variables()
        if env_config:
            configs.append(env_config)
            self._config_sources.append("environment")

        self._config_cache = self._deep_merge(*configs)
        return self._config_cache

    def _load_config_file(self, path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML or JSON file."""
        try:
            with open(path, 'r') as f:
                if path.suffix in ['.yml', '.yaml']:
                    data = yaml.safe_load(f)
                elif path.suffix == '.json':
                    data = json.load(f)
                else:
                    raise ConfigurationError(f"Unknown config file format: {path}")
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to load config from {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        return data

    def _load_environment_variables(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        env_config: Dict[str, Any] = {}

        for key, value in self.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            parts = key[len(ENV_PREFIX):].lower().split(ENV_NESTING_SEPARATOR)
            current = env_config
            for part in parts[:-1]:
                current = current.setdefault(part, {})
            current[parts[-1]] = self._parse_env_value(value)

        return env_config

    def _parse_env_value(self, value: str) -> Union[str, int, float, bool, list, dict]:
        """Parse environment variable value to appropriate type."""
        # JSON first, for lists of keys and nested values
        try:
            return json.loads(value)
        except ValueError:
            pass

        if value.lower() in ['true', 'yes']:
            return True
        elif value.lower() in ['false', 'no']:
            return False

        return value

    def _deep_merge(self, *dicts: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple dictionaries."""
        result: Dict[str, Any] = {}

        for dictionary in dicts:
            for key, value in dictionary.items():
                if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                    result[key] = self._deep_merge(result[key], value)
                else:
                    result[key] = value

        return result

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path.

        Args:
            key_path: Dot-separated path (e.g., 'staking.covenant_threshold')
            default: Default value if key not found
        """
        current: Any = self.load()
        for key in key_path.split('.'):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

    def load_params(self) -> StakingParams:
        """Load and validate global staking parameters."""
        return StakingParams.from_dict(self.load())

    def get_sources(self) -> List[str]:
        """Get list of configuration sources that were loaded."""
        self.load()
        return self._config_sources

    def configure_logging(self, verbose: int = 0) -> None:
        """Apply the configured ``logging.level``, raised by ``verbose`` if higher."""
        setup_logging(verbose, self.get('logging.level'))

    def reset(self):
        """Reset configuration cache."""
        self._config_cache = None
        self._config_sources = []


def setup_logging(verbose: int = 0, level: Optional[str] = None) -> None:
    """
    Configure package logging based on verbosity level.

    0 -> WARNING, 1 -> INFO, 2 or more -> DEBUG. ``level`` is the configured
    ``logging.level`` name; the more verbose of the two wins. Handlers are
    attached to the package loggers only; calling this again replaces them.

    Raises:
        ConfigurationError: If ``level`` is not a standard logging level name
    """
    log_levels = {
        0: logging.WARNING,
        1: logging.INFO,
        2: logging.DEBUG
    }
    effective = log_levels.get(min(max(verbose, 0), 2), logging.DEBUG)

    if level is not None:
        configured = logging.getLevelName(str(level).upper())
        if not isinstance(configured, int):
            raise ConfigurationError(f"Unknown logging level: {level!r}")
        effective = min(effective, configured)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    for name in PACKAGE_LOGGERS:
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            if getattr(handler, '_btcstaking_handler', False):
                logger.removeHandler(handler)

        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        handler._btcstaking_handler = True
        logger.addHandler(handler)
        logger.setLevel(effective)
