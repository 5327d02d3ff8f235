"""Unit tests for HierarchyConfig."""

from __future__ import annotations

import pytest

from job_hierarchy.core.config import ONE_DAY, ONE_MONTH, DuplicateChildPolicy, HierarchyConfig
from job_hierarchy.core.errors import ConfigurationError


def test_defaults():
    config = HierarchyConfig()

    assert config.redis_url == "redis://localhost:6379/0"
    assert config.prefix == "hierarchy"
    assert config.job_ttl == ONE_MONTH
    assert config.page_size == 100
    assert config.dead_max_workflows == 10000
    assert config.dead_timeout_seconds == ONE_DAY * 180
    assert config.duplicate_child_policy is DuplicateChildPolicy.ALLOW


@pytest.mark.parametrize(
    "overrides",
    [
        {"prefix": ""},
        {"job_ttl": 0},
        {"page_size": -1},
        {"dead_max_workflows": 0},
        {"dead_timeout_seconds": 0},
        {"duplicate_child_policy": "sometimes"},
    ],
)
def test_invalid_values_rejected(overrides):
    with pytest.raises(ConfigurationError):
        HierarchyConfig(**overrides)


def test_configuration_error_is_value_error():
    with pytest.raises(ValueError):
        HierarchyConfig(page_size=0)


def test_policy_accepts_string():
    assert HierarchyConfig(duplicate_child_policy="IGNORE").duplicate_child_policy is (
        DuplicateChildPolicy.IGNORE
    )


def test_dict_round_trip():
    config = HierarchyConfig(prefix="app", duplicate_child_policy=DuplicateChildPolicy.ERROR)

    data = config.to_dict()

    assert data["duplicate_child_policy"] == "error"
    assert HierarchyConfig.from_dict(data) == config


def test_from_dict_rejects_unknown_keys():
    with pytest.raises(ConfigurationError, match="ttl"):
        HierarchyConfig.from_dict({"ttl": 5})


def test_from_env_reads_prefixed_variables():
    env = {
        "JOB_HIERARCHY_REDIS_URL": "redis://cache:6379/2",
        "JOB_HIERARCHY_DEAD_MAX_WORKFLOWS": "5000",
        "JOB_HIERARCHY_DEAD_TIMEOUT_SECONDS": "3600.5",
        "JOB_HIERARCHY_PAGE_SIZE": "",
        "UNRELATED": "x",
    }

    config = HierarchyConfig.from_env(env)

    assert config.redis_url == "redis://cache:6379/2"
    assert config.dead_max_workflows == 5000
    assert config.dead_timeout_seconds == 3600.5
    assert config.page_size == 100


def test_from_env_custom_prefix():
    config = HierarchyConfig.from_env({"TRACKER_PREFIX": "jobs"}, prefix="TRACKER_")
    assert config.prefix == "jobs"


def test_from_env_rejects_bad_numbers():
    with pytest.raises(ConfigurationError, match="JOB_HIERARCHY_JOB_TTL"):
        HierarchyConfig.from_env({"JOB_HIERARCHY_JOB_TTL": "forever"})
