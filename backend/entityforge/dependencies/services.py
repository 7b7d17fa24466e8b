"""Per-process engine services exposed as FastAPI dependencies.

Tests override :func:`get_registry` / :func:`get_lifecycle` through
``app.dependency_overrides`` to inject recorders.
"""

from functools import lru_cache

from entityforge.services.definition_registry import DefinitionRegistry
from entityforge.services.record_lifecycle import LifecycleManager


@lru_cache(maxsize=1)
def get_registry() -> DefinitionRegistry:
    return DefinitionRegistry()


@lru_cache(maxsize=1)
def get_lifecycle() -> LifecycleManager:
    return LifecycleManager()
