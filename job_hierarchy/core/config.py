"""
Configuration for the hierarchy tracker.

Settings can be built directly, from a dict (e.g. a parsed config file),
or from environment variables:

    JOB_HIERARCHY_REDIS_URL=redis://cache:6379/2
    JOB_HIERARCHY_DEAD_MAX_WORKFLOWS=5000
"""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Mapping, Optional
import os

from .errors import ConfigurationError


ONE_DAY = 60 * 60 * 24
ONE_MONTH = ONE_DAY * 30


class DuplicateChildPolicy(Enum):
    """What `Job.add_child` does when the child is already listed."""
    ALLOW = "allow"    # append again
    IGNORE = "ignore"  # leave the children list alone
    ERROR = "error"    # raise DuplicateChildError


@dataclass
class HierarchyConfig:
    """
    Tracker settings.

    Attributes:
        redis_url: Redis connection URL
        prefix: Namespace for every key written by the tracker
        job_ttl: Sliding expiry (seconds) of job records and children lists
        page_size: Batch size used when iterating a workflow set
        dead_max_workflows: Max entries kept in the complete/failed sets
        dead_timeout_seconds: Max age (seconds) of complete/failed entries
        duplicate_child_policy: Behavior of add_child for a repeated child
    """
    redis_url: str = "redis://localhost:6379/0"
    prefix: str = "hierarchy"
    job_ttl: int = ONE_MONTH
    page_size: int = 100
    dead_max_workflows: int = 10000
    dead_timeout_seconds: float = ONE_DAY * 180
    duplicate_child_policy: DuplicateChildPolicy = DuplicateChildPolicy.ALLOW

    def __post_init__(self):
        if isinstance(self.duplicate_child_policy, str):
            try:
                self.duplicate_child_policy = DuplicateChildPolicy(
                    self.duplicate_child_policy.lower()
                )
            except ValueError:
                raise ConfigurationError(
                    f"duplicate_child_policy must be one of "
                    f"{[p.value for p in DuplicateChildPolicy]}, "
                    f"got {self.duplicate_child_policy!r}"
                )
        if not self.prefix:
            raise ConfigurationError("prefix must be a non-empty string")
        if self.job_ttl <= 0:
            raise ConfigurationError("job_ttl must be positive")
        if self.page_size <= 0:
            raise ConfigurationError("page_size must be positive")
        if self.dead_max_workflows < 1:
            raise ConfigurationError("dead_max_workflows must be at least 1")
        if self.dead_timeout_seconds <= 0:
            raise ConfigurationError("dead_timeout_seconds must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "redis_url": self.redis_url,
            "prefix": self.prefix,
            "job_ttl": self.job_ttl,
            "page_size": self.page_size,
            "dead_max_workflows": self.dead_max_workflows,
            "dead_timeout_seconds": self.dead_timeout_seconds,
            "duplicate_child_policy": self.duplicate_child_policy.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HierarchyConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**dict(data))

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        prefix: str = "JOB_HIERARCHY_",
    ) -> "HierarchyConfig":
        """Build settings from environment variables; unset ones keep defaults."""
        env = os.environ if env is None else env
        casts = {
            "redis_url": str,
            "prefix": str,
            "job_ttl": int,
            "page_size": int,
            "dead_max_workflows": int,
            "dead_timeout_seconds": float,
            "duplicate_child_policy": str,
        }
        values: Dict[str, Any] = {}
        for name, cast in casts.items():
            raw = env.get(prefix + name.upper())
            if raw is None or raw == "":
                continue
            try:
                values[name] = cast(raw)
            except ValueError:
                raise ConfigurationError(
                    f"{prefix + name.upper()} must be {cast.__name__}, got {raw!r}"
                )
        return cls(**values)
