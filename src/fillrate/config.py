from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_API_VERSION = "v57.0"
MAX_COMPOSITE_BATCH_SIZE = 5


class ConnectionConfig(BaseModel):
    instance_url: str | None = None
    access_token: str | None = None
    api_version: str = DEFAULT_API_VERSION
    timeout_seconds: float | None = Field(default=None, gt=0)


class BatchConfig(BaseModel):
    batch_size: int = Field(default=MAX_COMPOSITE_BATCH_SIZE, ge=1, le=MAX_COMPOSITE_BATCH_SIZE)


class SelectionConfig(BaseModel):
    entities: list[str] = Field(default_factory=list)
    fields: dict[str, list[str]] = Field(default_factory=dict)
    entity_filter: str | None = None


class ChartsConfig(BaseModel):
    page_size: int = Field(default=50, ge=1)
    plot_height: float = Field(default=180.0, gt=0)
    bar_width: float = Field(default=12.0, gt=0)
    group_gap: float = Field(default=18.0, ge=0)


class OutputsConfig(BaseModel):
    tables_format: Literal["csv", "parquet"] = "csv"
    figures_format: str = "png"


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    selection: SelectionConfig = Field(default_factory=SelectionConfig)
    charts: ChartsConfig = Field(default_factory=ChartsConfig)
    outputs: OutputsConfig = Field(default_factory=OutputsConfig)


DEFAULT_CONFIG_PATH = Path("configs/default.yaml")


def load_config(path: Path) -> AppConfig:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    config = AppConfig.model_validate(data)
    config.connection.instance_url = config.connection.instance_url or os.getenv(
        "FILLRATE_INSTANCE_URL"
    )
    config.connection.access_token = config.connection.access_token or os.getenv(
        "FILLRATE_ACCESS_TOKEN"
    )
    return config
