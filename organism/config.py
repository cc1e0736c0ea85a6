"""
UTXO Organism — Configuration System

All configuration is Pydantic-validated and loaded from:
1. config/default.yaml (defaults)
2. Environment variables (overrides)

Covenant code and ledger endpoints are explicit configuration passed to the
builder and ledger clients at call time. Nothing is held in module globals.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from organism.primitives.common import normalise_hex

# ─── Sub-configs ──────────────────────────────────────────────────


class LedgerConfig(BaseModel):
    base_url: str = "https://api.whatsonchain.com/v1/bsv"
    network: str = "main"  # "main" | "test"
    timeout_s: float = 10.0
    # Fixed delay before every request. Respects the public API rate limit.
    request_delay_s: float = 0.3

    @property
    def root_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.network}"


class CovenantConfig(BaseModel):
    # Compiled covenant code, hex. Ignored when artifact_path is set.
    code_hex: str = "0063c0de"
    # Compiled artifact JSON; its "hex" key holds the covenant code.
    artifact_path: str | None = None

    default_reward: int = 1_000
    default_fee: int = 3_000
    dust_floor: int = 546

    # Processing cost of the spawn / feed transitions themselves, paid from
    # the funder's separate outputs. A caller-side estimate, not enforced.
    spawn_fee: int = 3_000
    feed_fee: int = 3_000

    @model_validator(mode="after")
    def _check_amounts(self) -> CovenantConfig:
        for name in ("default_reward", "default_fee", "dust_floor", "spawn_fee", "feed_fee"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        return self


class LineageConfig(BaseModel):
    data_dir: str = "data/lineage"
    registry_dir: str = "data/organisms"
    max_concurrent_traces: int = 4


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"  # "console" | "json"


# ─── Root Configuration ──────────────────────────────────────────


class OrganismConfig(BaseSettings):
    """
    Root configuration. Loads from YAML, overridable by env vars.
    """

    model_config = SettingsConfigDict(
        env_prefix="ORGANISM_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    covenant: CovenantConfig = Field(default_factory=CovenantConfig)
    lineage: LineageConfig = Field(default_factory=LineageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> OrganismConfig:
    """
    Load configuration from YAML file, then apply environment variable overrides.
    """
    raw: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}

    if overrides:
        raw = _deep_merge(raw, overrides)

    if base_url := os.environ.get("ORGANISM_LEDGER__BASE_URL"):
        raw.setdefault("ledger", {})["base_url"] = base_url
    if network := os.environ.get("ORGANISM_LEDGER__NETWORK"):
        raw.setdefault("ledger", {})["network"] = network
    if delay := os.environ.get("ORGANISM_LEDGER__REQUEST_DELAY_S"):
        raw.setdefault("ledger", {})["request_delay_s"] = float(delay)
    if code_hex := os.environ.get("ORGANISM_COVENANT__CODE_HEX"):
        raw.setdefault("covenant", {})["code_hex"] = code_hex
    if artifact := os.environ.get("ORGANISM_COVENANT__ARTIFACT_PATH"):
        raw.setdefault("covenant", {})["artifact_path"] = artifact
    if data_dir := os.environ.get("ORGANISM_DATA_DIR"):
        lineage = raw.setdefault("lineage", {})
        lineage["data_dir"] = str(Path(data_dir) / "lineage")
        lineage["registry_dir"] = str(Path(data_dir) / "organisms")

    return OrganismConfig(**raw)


def load_covenant_code(config: CovenantConfig) -> bytes:
    """
    Resolve the covenant code bytes.

    A compiled artifact (JSON with a top-level "hex" key) takes precedence
    over the inline code_hex.
    """
    if config.artifact_path:
        path = Path(config.artifact_path)
        if not path.exists():
            raise FileNotFoundError(f"Covenant artifact not found: {path}")
        artifact = json.loads(path.read_text(encoding="utf-8"))
        code_hex = artifact.get("hex")
        if not code_hex:
            raise ValueError(f"Covenant artifact has no 'hex' field: {path}")
    else:
        code_hex = config.code_hex

    code = bytes.fromhex(normalise_hex(code_hex))
    if not code:
        raise ValueError("Covenant code is empty")
    return code
