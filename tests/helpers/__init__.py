"""Test helpers module for shared test utilities."""

from .factories import (
    FirstChoice,
    InMemoryRepos,
    build_rotation_service,
    create_in_memory_repositories,
    create_test_event,
    seed_group,
)

__all__ = [
    "FirstChoice",
    "InMemoryRepos",
    "build_rotation_service",
    "create_in_memory_repositories",
    "create_test_event",
    "seed_group",
]
