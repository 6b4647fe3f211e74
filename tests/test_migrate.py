"""
Tests for the local storage → backend migration.
"""
from unittest.mock import MagicMock

from agenda.migrate import migrate_from_local_storage
from agenda.schema import Task, Category, Settings
from agenda.supabase import BackendError


def test_nothing_to_migrate(local_repo):
    remote = MagicMock()
    assert migrate_from_local_storage(local_repo, remote) is None
    remote.create_task.assert_not_called()


def test_migrates_categories_before_tasks(local_repo):
    local_repo.save_categories([Category(id="1", name="Trabalho")])
    local_repo.create_task(Task(id="a", text="A", category_id="1"))
    local_repo.create_task(Task(id="b", text="B"))
    local_repo.update_settings(Settings(dark_mode=True))

    remote = MagicMock()
    result = migrate_from_local_storage(local_repo, remote)

    assert result.success
    assert result.to_dict()["migrated"] == {"tasks": 2, "categories": 1, "settings": 1}
    order = [c[0] for c in remote.method_calls]
    assert order.index("create_category") < order.index("create_task")
    remote.update_settings.assert_called_once_with(Settings(dark_mode=True))


def test_failures_are_recorded_and_skipped(local_repo):
    local_repo.create_task(Task(id="a", text="A"))
    local_repo.create_task(Task(id="b", text="B"))

    remote = MagicMock()
    remote.create_task.side_effect = [BackendError("denied"), None]
    result = migrate_from_local_storage(local_repo, remote)

    assert not result.success
    assert result.tasks == 1
    assert result.failures == ["task:b"]
    # Categories were never stored locally, settings neither
    assert result.categories == 0
    remote.update_settings.assert_not_called()
