"""
Configuration loader for Stable Radar.

This module provides Pydantic models for strong validation of settings
and a loader function that merges a YAML configuration file with
environment variables.

Design Principles:
- Strict Schema: All settings are defined in Pydantic models to ensure type
  safety and validate constraints (e.g., value ranges, colours, chain ids).
- Environment Overrides: Any setting can be overridden by an environment
  variable. The override mechanism follows a nested structure, e.g.,
  `hypersync.api_key` can be overridden by the environment variable
  `STABLE_RADAR_HYPERSYNC__API_KEY`.
- Built-in Chain Table: when the YAML omits `chains`, the default table from
  `stable_radar.onchain.registry` is used so a bare file still runs.
- Clear Errors: If validation fails, Pydantic raises a detailed `ValidationError`
  which is wrapped in a custom `ConfigError` for clear, actionable feedback.
"""

import os
import json
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_core import PydanticCustomError

# --- Custom Exceptions ---

class ConfigError(Exception):
    """Custom exception for configuration-related errors."""
    pass

# --- Pydantic Models for Configuration Sections ---

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")
_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


class ChainSettings(BaseModel):
    """One monitored chain: where to query, what contract, how to draw it."""
    chain_id: int = Field(gt=0)
    name: str = Field(..., min_length=1)
    color: str = "#00ff00"
    contract_address: str
    endpoint: str
    block_time_sec: float = Field(gt=0)
    explorer_url: str = ""
    token_decimals: int = Field(6, ge=0, le=36)
    enabled: bool = True

    @field_validator('color')
    def color_must_be_hex(cls, v):
        if not _HEX_COLOR.match(v):
            raise PydanticCustomError(
                "color_invalid",
                "Colour '{color}' must be a #rrggbb hex string",
                {"color": v},
            )
        return v

    @field_validator('contract_address')
    def contract_must_be_address(cls, v):
        if not _ADDRESS.match(v):
            raise PydanticCustomError(
                "address_invalid",
                "Contract address '{address}' is not a 20-byte hex address",
                {"address": v},
            )
        return v

    @field_validator('endpoint')
    def endpoint_strip_slash(cls, v):
        return v.rstrip('/')


class HypersyncSettings(BaseModel):
    """HTTP client settings for the HyperSync indexer."""
    api_key: Optional[str] = None
    api_key_env: str = "HYPERSYNC_API_KEY"
    height_path: str = "/height"
    query_path: str = "/query"
    request_timeout_sec: float = Field(10.0, gt=0)


class IngestSettings(BaseModel):
    """Height polling and incremental log ingestion."""
    height_poll_interval_ms: int = Field(500, gt=0)
    range_limit: int = Field(10_000, gt=0)
    start_margin_blocks: int = Field(10, ge=0)
    seen_ceiling: int = Field(10_000, gt=1)
    feed_capacity: int = Field(100, gt=0)


class RadarSettings(BaseModel):
    """Radar animation tunables."""
    min_period_sec: float = Field(2.0, gt=0)
    min_blip_size: float = Field(2.0, gt=0)
    max_blip_size: float = Field(15.0, gt=0)
    default_blip_size: float = Field(3.0, gt=0)
    size_log_span: float = Field(6.0, gt=0)
    radial_min: float = Field(0.3, ge=0, le=1)
    radial_max: float = Field(0.9, ge=0, le=1)
    displayed_ceiling: int = Field(1_000, gt=1)
    frame_interval_ms: int = Field(33, gt=0)
    canvas_size: int = Field(400, gt=40)
    rate_samples: int = Field(100, gt=0)
    warmup_sec: float = Field(5.0, ge=0)
    snapshot_dir: Optional[str] = None
    snapshot_every_sec: float = Field(5.0, gt=0)
    seed: Optional[int] = None

    @model_validator(mode='after')
    def ranges_ordered(self):
        if self.min_blip_size > self.max_blip_size:
            raise ValueError("min_blip_size must be <= max_blip_size")
        if self.radial_min > self.radial_max:
            raise ValueError("radial_min must be <= radial_max")
        return self


class RuntimeSettings(BaseModel):
    """Which chains run and how the consumer filters them."""
    networks: List[int] = Field(default_factory=list)
    threshold_usd: float = Field(0.0, ge=0)


class HttpSettings(BaseModel):
    """Optional aiohttp API exposing feeds, heights and metrics."""
    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = Field(8765, gt=0, lt=65536)


class LoggingSettings(BaseModel):
    level: Literal["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR"] = "INFO"
    json_log: bool = False


def _default_chains() -> Dict[str, ChainSettings]:
    from stable_radar.onchain.registry import DEFAULT_CHAINS
    return {key: ChainSettings(**cfg) for key, cfg in DEFAULT_CHAINS.items()}


class Settings(BaseModel):
    """The main settings object, composing all other settings models."""
    chains: Dict[str, ChainSettings] = Field(default_factory=_default_chains)
    hypersync: HypersyncSettings = HypersyncSettings()
    ingest: IngestSettings = IngestSettings()
    radar: RadarSettings = RadarSettings()
    runtime: RuntimeSettings = RuntimeSettings()
    http: HttpSettings = HttpSettings()
    logging: LoggingSettings = LoggingSettings()

    @model_validator(mode='after')
    def chain_ids_unique(self):
        seen: Dict[int, str] = {}
        for key, chain in self.chains.items():
            if chain.chain_id in seen:
                raise PydanticCustomError(
                    "chain_id_duplicate",
                    "Chain id {chain_id} used by both '{first}' and '{second}'",
                    {"chain_id": chain.chain_id, "first": seen[chain.chain_id], "second": key},
                )
            seen[chain.chain_id] = key
        unknown = [n for n in self.runtime.networks if n not in seen]
        if unknown:
            raise PydanticCustomError(
                "networks_unknown",
                "runtime.networks references unknown chain ids: {unknown}",
                {"unknown": unknown},
            )
        return self

# --- Helper Functions ---

def _load_config_from_yaml(path: Path) -> Dict[str, Any]:
    """Loads the YAML configuration file."""
    if not path.is_file():
        raise ConfigError(f"Configuration file not found at: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML file at {path}: {e}") from e

def _get_env_overrides(prefix: str = "STABLE_RADAR") -> Dict[str, Any]:
    """
    Parses environment variables and converts them into a nested dict.
    e.g., STABLE_RADAR_HYPERSYNC__API_KEY becomes
    {'hypersync': {'api_key': '...'}}
    """
    overrides: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(prefix + "_"):
            continue
        parts = key.removeprefix(prefix).strip("_").lower().split("__")

        # Secrets and addresses stay strings even when they look numeric
        if 'api_key' in parts or 'contract_address' in parts:
            parsed_value = value
        elif (value.startswith('[') and value.endswith(']')) or \
             (value.startswith('{') and value.endswith('}')) or \
             value.lower() in ['true', 'false', 'null'] or \
             value.replace('.', '', 1).isdigit():
            try:
                parsed_value = json.loads(value)
            except (json.JSONDecodeError, AttributeError):
                parsed_value = value
        else:
            parsed_value = value

        d = overrides
        for part in parts[:-1]:
            d = d.setdefault(part, {})
        d[parts[-1]] = parsed_value
    return overrides

def _merge_configs(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merges the override dict into the base dict.
    Overwrites values, dictionaries, and lists.
    """
    for key, value in overrides.items():
        if isinstance(value, dict) and key in base and isinstance(base[key], dict):
            base[key] = _merge_configs(base[key], value)
        else:
            base[key] = value
    return base

def _with_default_chains(config: Dict[str, Any]) -> Dict[str, Any]:
    """Seed the built-in chain table so partial env overrides merge into it."""
    if not config.get('chains'):
        from stable_radar.onchain.registry import DEFAULT_CHAINS
        config['chains'] = {key: dict(cfg) for key, cfg in DEFAULT_CHAINS.items()}
    return config

def _validate(config: Dict[str, Any]) -> "Settings":
    try:
        return Settings.model_validate(config)
    except ValidationError as e:
        error_details = e.errors()
        error_msg = f"Configuration validation failed with {len(error_details)} error(s):\n"
        for error in error_details:
            loc = " -> ".join(map(str, error['loc'])) if error['loc'] else "root"
            error_msg += f"  - Location: {loc}\n    Message: {error['msg']}\n"

        logger.error(error_msg)
        raise ConfigError("Failed to validate settings.") from e

# --- Public API ---

def default_settings() -> Settings:
    """Settings built from model defaults plus environment overrides (no file)."""
    return _validate(_merge_configs(_with_default_chains({}), _get_env_overrides()))

def load_settings(path: str = "settings.yaml") -> Settings:
    """
    Loads, validates, and returns the application settings.

    This is the main entry point for configuration. It performs the following steps:
    1. Loads the base configuration from the specified YAML file.
    2. Scans environment variables for overrides (prefixed with "STABLE_RADAR_").
    3. Merges the environment overrides into the base configuration.
    4. Validates the final configuration against the `Settings` Pydantic model.

    Args:
        path: The path to the YAML configuration file.

    Returns:
        A validated `Settings` object.

    Raises:
        ConfigError: If the file is not found, cannot be parsed, or if
                     validation fails.
    """
    logger.info(f"Loading settings from '{path}'...")

    yaml_config = _load_config_from_yaml(Path(path))
    if not yaml_config:
        raise ConfigError(f"YAML file '{path}' is empty or invalid.")
    if not isinstance(yaml_config, dict):
        raise ConfigError(f"YAML file '{path}' must contain a mapping at the top level.")

    env_overrides = _get_env_overrides()
    final_config = _merge_configs(_with_default_chains(yaml_config), env_overrides)

    settings = _validate(final_config)
    logger.success("Settings loaded and validated successfully.")
    return settings
