import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

from .models import HostConfig

logger = logging.getLogger(__name__)

CONFIG_FILE_PATH = Path(__file__).parent / ".." / "config.yaml"


class AggregatorSettings(BaseModel):
    """Settings for the aggregator process."""

    port: int = Field(default=8080, ge=1, le=65535)
    poll_interval_sec: float = Field(default=5.0, gt=0)  # Fixed tick period
    fetch_timeout_sec: float = Field(default=5.0, gt=0)  # Per-host request bound, independent of the tick


class CollectorSettings(BaseModel):
    """Settings for the per-host collector process."""

    port: int = Field(default=8081, ge=1, le=65535)
    smi_path: str = Field(default="nvidia-smi")
    node_name: str | None = Field(default=None)  # Falls back to the machine hostname
    enrich_processes: bool = Field(default=False)  # Owner lookup + top-N ranking
    top_processes: int = Field(default=2, ge=1)
    tool_timeout_sec: float | None = Field(default=None, gt=0)


class AppConfig(BaseModel):
    """Structure for validating the configuration file."""

    page_title: str = Field(default="GPU Monitor")
    nodes: list[HostConfig] = Field(default_factory=list)
    aggregator: AggregatorSettings = Field(default_factory=AggregatorSettings)
    collector: CollectorSettings = Field(default_factory=CollectorSettings)

    @field_validator("nodes")
    @classmethod
    def check_unique_names(cls, nodes: list[HostConfig]) -> list[HostConfig]:
        seen = set()
        for node in nodes:
            if node.name in seen:
                msg = f"Duplicate node name in configuration: {node.name}"
                raise ValueError(msg)
            seen.add(node.name)
        return nodes


def load_config(path: Path | str = CONFIG_FILE_PATH) -> AppConfig:
    """Load and validate the configuration file.

    The file is read with ``yaml.safe_load``, so plain JSON configs are accepted too.
    Raises FileNotFoundError, yaml.YAMLError or pydantic.ValidationError; the caller
    treats all of them as fatal.
    """
    config_path = Path(path)
    if not config_path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with config_path.open() as f:
        config_data = yaml.safe_load(f) or {}

    if not isinstance(config_data, dict):
        msg = f"Configuration root must be a mapping, got {type(config_data).__name__}"
        raise ValueError(msg)

    settings = AppConfig(**config_data)
    logger.info("Loaded configuration from %s with %d node(s).", config_path, len(settings.nodes))
    return settings
