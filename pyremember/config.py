"""
Configuration module for pyremember.

Configuration is read from environment variables (optionally via a .env file)
once at the process boundary and passed explicitly into the store factory and
MemoryClient. There is no module-level configuration instance.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

from pyremember.data.schemas.models import AccessPolicy, MergePolicy, UpdateRetentionPolicy
from pyremember.errors import InvalidArgumentError
from pyremember.utils.ids import MAX_NODE

SUPPORTED_PROVIDERS = ("duckdb", "lancedb")
IN_MEMORY_PATH = ":memory:"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class StoreConfig:
    """Vector store selection and location."""
    provider: str = field(
        default_factory=lambda: os.getenv("PYREMEMBER_STORE", "duckdb").lower()
    )
    # DuckDB: database file (or ":memory:"); LanceDB: database directory
    path: str = field(
        default_factory=lambda: os.getenv("PYREMEMBER_STORE_PATH", IN_MEMORY_PATH)
    )
    collection_name: str = field(
        default_factory=lambda: os.getenv("PYREMEMBER_COLLECTION", "memories")
    )
    embedding_dim: int = field(
        default_factory=lambda: int(os.getenv("PYREMEMBER_EMBEDDING_DIM", "384"))
    )
    scan_batch_size: int = field(
        default_factory=lambda: int(os.getenv("PYREMEMBER_SCAN_BATCH_SIZE", "512"))
    )
    node_id: int = field(
        default_factory=lambda: int(os.getenv("PYREMEMBER_NODE_ID", "1"))
    )

    def ensure_directories(self) -> None:
        """Ensure the on-disk location exists."""
        if self.path == IN_MEMORY_PATH:
            return
        if self.provider == "lancedb":
            Path(self.path).mkdir(parents=True, exist_ok=True)
        else:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)


@dataclass
class IntelligenceConfig:
    """Dedup and retention tuning."""
    dedup_enabled: bool = field(
        default_factory=lambda: _env_bool("PYREMEMBER_DEDUP_ENABLED", "true")
    )
    duplicate_threshold: float = field(
        default_factory=lambda: float(os.getenv("PYREMEMBER_DUPLICATE_THRESHOLD", "0.95"))
    )
    dedup_top_k: int = field(
        default_factory=lambda: int(os.getenv("PYREMEMBER_DEDUP_TOP_K", "5"))
    )
    # Per hour; 0.1/24 loses roughly 10% per day
    decay_rate: float = field(
        default_factory=lambda: float(os.getenv("PYREMEMBER_DECAY_RATE", str(0.1 / 24)))
    )
    reinforcement_factor: float = field(
        default_factory=lambda: float(os.getenv("PYREMEMBER_REINFORCEMENT_FACTOR", "0.3"))
    )
    working_threshold: float = field(
        default_factory=lambda: float(os.getenv("PYREMEMBER_WORKING_THRESHOLD", "0.3"))
    )
    short_term_threshold: float = field(
        default_factory=lambda: float(os.getenv("PYREMEMBER_SHORT_TERM_THRESHOLD", "0.6"))
    )
    long_term_threshold: float = field(
        default_factory=lambda: float(os.getenv("PYREMEMBER_LONG_TERM_THRESHOLD", "0.8"))
    )
    initial_retention: float = field(
        default_factory=lambda: float(os.getenv("PYREMEMBER_INITIAL_RETENTION", "1.0"))
    )
    merge_policy: MergePolicy = field(
        default_factory=lambda: MergePolicy(os.getenv("PYREMEMBER_MERGE_POLICY", "keep_existing"))
    )
    access_policy: AccessPolicy = field(
        default_factory=lambda: AccessPolicy(os.getenv("PYREMEMBER_ACCESS_POLICY", "explicit"))
    )
    update_retention_policy: UpdateRetentionPolicy = field(
        default_factory=lambda: UpdateRetentionPolicy(
            os.getenv("PYREMEMBER_UPDATE_RETENTION_POLICY", "preserve")
        )
    )
    rank_by_retention: bool = field(
        default_factory=lambda: _env_bool("PYREMEMBER_RANK_BY_RETENTION", "false")
    )


@dataclass
class SearchConfig:
    """Defaults applied when a ScopeFilter leaves limit unset."""
    default_limit: int = field(
        default_factory=lambda: int(os.getenv("PYREMEMBER_SEARCH_LIMIT", "10"))
    )
    default_get_all_limit: int = field(
        default_factory=lambda: int(os.getenv("PYREMEMBER_GET_ALL_LIMIT", "100"))
    )


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = field(
        default_factory=lambda: os.getenv("PYREMEMBER_LOG_LEVEL", "INFO").upper()
    )


@dataclass
class PyRememberConfig:
    """Main configuration class for pyremember."""
    store: StoreConfig = field(default_factory=StoreConfig)
    intelligence: IntelligenceConfig = field(default_factory=IntelligenceConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> "PyRememberConfig":
        """
        Check value ranges.

        Returns:
            self, so construction and validation can be chained

        Raises:
            InvalidArgumentError: On the first out-of-range value
        """
        def fail(detail: str) -> None:
            raise InvalidArgumentError("validate_config", detail)

        if self.store.provider not in SUPPORTED_PROVIDERS:
            fail(f"unknown store provider '{self.store.provider}' (expected one of {SUPPORTED_PROVIDERS})")
        if self.store.provider == "lancedb" and self.store.path == IN_MEMORY_PATH:
            fail("lancedb requires a directory path")
        if not self.store.collection_name:
            fail("collection_name must not be empty")
        if self.store.embedding_dim <= 0:
            fail(f"embedding_dim must be positive, got {self.store.embedding_dim}")
        if self.store.scan_batch_size <= 0:
            fail(f"scan_batch_size must be positive, got {self.store.scan_batch_size}")
        if not 0 <= self.store.node_id <= MAX_NODE:
            fail(f"node_id must be between 0 and {MAX_NODE}, got {self.store.node_id}")

        intel = self.intelligence
        if not 0.0 < intel.duplicate_threshold <= 1.0:
            fail(f"duplicate_threshold must be in (0, 1], got {intel.duplicate_threshold}")
        if intel.dedup_top_k <= 0:
            fail(f"dedup_top_k must be positive, got {intel.dedup_top_k}")
        if intel.decay_rate <= 0.0:
            fail(f"decay_rate must be positive, got {intel.decay_rate}")
        if not 0.0 < intel.reinforcement_factor <= 1.0:
            fail(f"reinforcement_factor must be in (0, 1], got {intel.reinforcement_factor}")
        if not 0.0 < intel.initial_retention <= 1.0:
            fail(f"initial_retention must be in (0, 1], got {intel.initial_retention}")
        if not intel.working_threshold <= intel.short_term_threshold <= intel.long_term_threshold:
            fail("tier thresholds must satisfy working <= short_term <= long_term")

        if self.search.default_limit <= 0 or self.search.default_get_all_limit <= 0:
            fail("search limits must be positive")
        return self


def load_config(env_file: Optional[Union[str, Path]] = None, override: bool = False) -> PyRememberConfig:
    """
    Build a configuration from the environment.

    Args:
        env_file: Optional .env file to load first (defaults to dotenv's search)
        override: Whether .env values override variables already set

    Returns:
        A validated PyRememberConfig
    """
    if env_file is not None:
        load_dotenv(env_file, override=override)
    else:
        load_dotenv(override=override)
    return PyRememberConfig().validate()
