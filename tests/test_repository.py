"""
Tests for the persistence strategies.
"""
from unittest.mock import MagicMock

import pytest

from agenda.repository import (
    SupabaseRepository, TASKS_KEY, CATEGORIES_KEY, SETTINGS_KEY, row_to_task,
)
from agenda.schema import Task, Category, Settings
from agenda.supabase import BackendError, Session


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Local storage repository
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_local_defaults_when_empty(local_repo):
    assert local_repo.get_tasks() == []
    assert [c.id for c in local_repo.get_categories()] == ["1", "2", "3"]
    assert local_repo.get_settings() == Settings()
    assert not local_repo.has_data()


def test_local_create_prepends(local_repo):
    local_repo.create_task(Task(id="a", text="first", date="2024-06-01"))
    local_repo.create_task(Task(id="b", text="second", date="2024-06-01"))
    assert [t.id for t in local_repo.get_tasks()] == ["b", "a"]
    assert local_repo.storage.get_json(TASKS_KEY)[0]["text"] == "second"


def test_local_update_unknown_id_is_noop(local_repo):
    local_repo.create_task(Task(id="a", text="first"))
    assert local_repo.update_task("zzz", {"text": "x"}) is None
    assert local_repo.update_task("a", {"text": "renamed"}).text == "renamed"
    assert local_repo.get_tasks()[0].text == "renamed"


def test_local_delete_category_clears_task_reference(local_repo):
    local_repo.create_task(Task(id="a", text="t", category_id="2"))
    local_repo.delete_category("2")
    assert "2" not in [c.id for c in local_repo.get_categories()]
    assert local_repo.get_tasks()[0].category_id is None


def test_local_clear_all_restores_defaults(local_repo):
    local_repo.create_task(Task(id="a", text="t"))
    local_repo.create_category(Category(id="9", name="Casa"))
    local_repo.update_settings(Settings(dark_mode=True))

    categories = local_repo.clear_all()
    assert [c.id for c in categories] == ["1", "2", "3"]
    assert local_repo.storage.get_json(TASKS_KEY) == []
    assert len(local_repo.storage.get_json(CATEGORIES_KEY)) == 3
    assert local_repo.storage.get_json(SETTINGS_KEY) == Settings().to_dict()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Supabase repository
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.fixture
def client():
    mock = MagicMock()
    mock.get_session.return_value = Session(
        access_token="tok", user={"id": "user-1", "email": "ana@example.com"}
    )

    def select(table, columns="*", filters=None, order=None, ascending=True, limit=None):
        if table == "workspaces":
            return [{"id": "ws-1"}]
        if table == "workspace_members":
            return [{"id": "member-1"}]
        return []

    mock.select.side_effect = select
    return mock


@pytest.fixture
def remote(client):
    return SupabaseRepository(client)


def test_workspace_created_lazily(client):
    client.select.side_effect = lambda table, *a, **kw: []
    client.insert.side_effect = lambda table, row, returning=True: [{"id": f"{table}-new"}]

    repo = SupabaseRepository(client)
    assert repo.workspace_ids() == ("workspaces-new", "workspace_members-new")

    workspace_row = client.insert.call_args_list[0].args[1]
    assert workspace_row == {"name": "Meu Workspace", "type": "personal", "owner_id": "user-1"}
    member_row = client.insert.call_args_list[1].args[1]
    assert member_row["role"] == "owner"
    assert member_row["name"] == "ana"

    # Cached after the first resolution
    repo.workspace_ids()
    assert client.insert.call_count == 2


def test_update_sends_only_supplied_fields(remote, client):
    client.update.return_value = [{"id": "t1", "text": "x", "completed": True}]
    remote.update_task("t1", {"completed": True, "categoryId": "2"})

    table, values, filters = client.update.call_args.args
    assert table == "tasks"
    assert filters == {"id": "t1"}
    assert set(values) == {"completed", "category", "updated_at"}


def test_update_missing_row_raises(remote, client):
    client.update.return_value = []
    with pytest.raises(BackendError) as exc:
        remote.update_task("gone", {"text": "x"})
    assert exc.value.status == 404


def test_create_task_fills_workspace_and_member(remote, client):
    remote.create_task(Task(id="t1", text="Ler", is_permanent=True))
    table, row = client.insert.call_args.args
    assert table == "tasks"
    assert row["workspace_id"] == "ws-1"
    assert row["created_by_id"] == "member-1"
    assert row["assigned_to_id"] == "member-1"
    assert row["date"]


def test_get_categories_seeds_defaults(remote, client):
    categories = remote.get_categories()
    assert [c.name for c in categories] == ["Trabalho", "Pessoal", "Saúde"]
    assert not {c.id for c in categories} & {"1", "2", "3"}
    category_inserts = [c for c in client.insert.call_args_list if c.args[0] == "categories"]
    assert len(category_inserts) == 3


def test_get_categories_tolerates_concurrent_seed(remote, client):
    client.insert.side_effect = BackendError("duplicate key", status=409, code="23505")
    categories = remote.get_categories()
    # Re-selected after every insert collided
    assert categories == []
    assert [c.args[0] for c in client.select.call_args_list].count("categories") == 2


def test_get_settings_unwraps_values(remote, client):
    rows = [
        {"key": "darkMode", "value": {"value": True}},
        {"key": "showCompleted", "value": {"value": False}},
    ]
    client.select.side_effect = lambda table, *a, **kw: (
        rows if table == "settings" else [{"id": "ws-1"}]
    )
    settings = remote.get_settings()
    assert settings.dark_mode is True
    assert settings.show_completed is False
    assert settings.confirm_delete is True
    client.upsert.assert_not_called()


def test_get_settings_seeds_defaults(remote, client):
    settings = remote.get_settings()
    assert settings == Settings()
    table, rows = client.upsert.call_args.args
    assert table == "settings"
    assert {r["key"] for r in rows} == {"darkMode", "showCompleted", "confirmDelete"}
    assert client.upsert.call_args.kwargs["on_conflict"] == "workspace_id,key"


def test_delete_category_clears_tasks(remote, client):
    remote.delete_category("c9")
    client.delete.assert_called_once_with("categories", {"id": "c9"})
    client.update.assert_called_once_with("tasks", {"category": None}, {"category": "c9"})


def test_remote_clear_all(remote, client):
    categories = remote.clear_all()
    deleted = [c.args[0] for c in client.delete.call_args_list]
    assert deleted == ["tasks", "categories", "settings"]
    assert len(categories) == 3


def test_row_to_task_maps_columns():
    task = row_to_task({
        "id": "t1", "text": "Prova", "is_delivery": True, "delivery_date": "2024-06-10",
        "category": "2", "completed_dates": None,
    })
    assert task.category_id == "2"
    assert task.delivery_date == "2024-06-10"
    assert task.completed_dates == []
