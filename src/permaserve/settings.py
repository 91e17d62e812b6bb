"""Configuration helpers for PermaServe."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_DATA_ROOT = Path.home() / "permaserve-data"


class Settings(BaseModel):
    """Runtime configuration loaded from env vars with sensible defaults."""

    data_dir: Path = Field(default_factory=lambda: DEFAULT_DATA_ROOT)
    api_node: str = "https://api.uxnetwork.io"
    contract_account: str = "permastoreux"
    node_range_limit: int = 1024
    metadata_ttl: int = 3600
    max_name_length: int = 12
    request_timeout: float = 30.0
    max_concurrency: int = 16
    log_level: str = "INFO"

    @property
    def cache_dir(self) -> Path:
        return self.data_dir / "nodes"

    @property
    def pages_dir(self) -> Path:
        return self.data_dir / "pages"

    def item_cache_dir(self, item: str) -> Path:
        return self.cache_dir / item

    def descriptor_path(self, item: str) -> Path:
        return self.item_cache_dir(item) / "descriptor.json"

    def chunk_path(self, item: str, index: int) -> Path:
        return self.item_cache_dir(item) / f"{index}.bin"

    def journal_path(self, item: str) -> Path:
        return self.item_cache_dir(item) / "errors.log"

    def pages_path(self, item: str) -> Path:
        return self.pages_dir / item

    def ensure_directories(self) -> None:
        """Create data directories if they are missing."""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.pages_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def load(cls) -> "Settings":
        load_dotenv()
        data_dir = Path(os.environ.get("PERMASERVE_DATA_DIR", DEFAULT_DATA_ROOT))
        return cls(
            data_dir=data_dir,
            api_node=os.environ.get("PERMASERVE_API_NODE", "https://api.uxnetwork.io"),
            contract_account=os.environ.get("PERMASERVE_CONTRACT", "permastoreux"),
            node_range_limit=int(os.environ.get("PERMASERVE_NODE_RANGE_LIMIT", 1024)),
            metadata_ttl=int(os.environ.get("PERMASERVE_METADATA_TTL", 3600)),
            request_timeout=float(os.environ.get("PERMASERVE_REQUEST_TIMEOUT", 30.0)),
            max_concurrency=int(os.environ.get("PERMASERVE_MAX_CONCURRENCY", 16)),
            log_level=os.environ.get("PERMASERVE_LOG_LEVEL", "INFO"),
        )


def get_settings() -> Settings:
    """Convenience accessor for lazy modules."""
    settings = Settings.load()
    settings.ensure_directories()
    return settings


def configure_logging(level: str) -> None:
    """Drop structlog events below ``level``."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(numeric))
