"""
One-shot migration of local storage content into the remote backend.

Categories go first (tasks refer to them), then tasks, then settings.
A failing item is logged and skipped; the rest still migrate.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .repository import (
    DataRepository, LocalStorageRepository,
    TASKS_KEY, CATEGORIES_KEY, SETTINGS_KEY,
)
from .supabase import BackendError

logger = logging.getLogger(__name__)


@dataclass
class MigrationResult:
    tasks: int = 0
    categories: int = 0
    settings: int = 0
    failures: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "migrated": {
                "tasks": self.tasks,
                "categories": self.categories,
                "settings": self.settings,
            },
            "failures": self.failures,
        }


def migrate_from_local_storage(local: LocalStorageRepository,
                               remote: DataRepository) -> Optional[MigrationResult]:
    """
    Copy everything local storage holds into remote.

    Returns None when local storage has nothing to migrate.
    """
    if not local.has_data():
        logger.warning("Nothing to migrate: local storage is empty")
        return None

    storage = local.storage
    has_tasks = storage.get_item(TASKS_KEY) is not None
    has_categories = storage.get_item(CATEGORIES_KEY) is not None
    has_settings = storage.get_item(SETTINGS_KEY) is not None

    tasks = local.get_tasks() if has_tasks else []
    categories = local.get_categories() if has_categories else []
    logger.info(f"Migrating {len(tasks)} tasks, {len(categories)} categories")

    result = MigrationResult()

    for category in categories:
        try:
            remote.create_category(category)
            result.categories += 1
        except BackendError as e:
            logger.warning(f"Category '{category.name}' not migrated: {e.message}")
            result.failures.append(f"category:{category.id}")

    for task in tasks:
        try:
            remote.create_task(task)
            result.tasks += 1
        except BackendError as e:
            logger.warning(f"Task '{task.text}' not migrated: {e.message}")
            result.failures.append(f"task:{task.id}")

    if has_settings:
        try:
            remote.update_settings(local.get_settings())
            result.settings = 1
        except BackendError as e:
            logger.warning(f"Settings not migrated: {e.message}")
            result.failures.append("settings")

    logger.info(
        f"Migration finished: {result.tasks} tasks, {result.categories} categories, "
        f"{result.settings} settings, {len(result.failures)} failures"
    )
    return result
