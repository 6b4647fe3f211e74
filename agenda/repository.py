"""
Persistence strategies.

DataRepository is the one interface the planner talks to. Two
implementations exist and exactly one is active at a time:

  SupabaseRepository     - hosted tables, per-user workspace created lazily
  LocalStorageRepository - whole-collection JSON under agenda-* keys

The two stores are never merged or reconciled.
"""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .local_store import LocalStorage
from .schema import (
    Task, Category, Settings, SETTINGS_FIELDS,
    default_categories, default_settings,
)
from .supabase import SupabaseClient, BackendError

logger = logging.getLogger(__name__)

TASKS_KEY = "agenda-tasks"
CATEGORIES_KEY = "agenda-categories"
SETTINGS_KEY = "agenda-settings"

UNIQUE_VIOLATION = "23505"


class DataRepository(ABC):
    """CRUD contract shared by the remote and local strategies."""

    name = "abstract"

    # Tasks
    @abstractmethod
    def get_tasks(self) -> List[Task]: ...

    @abstractmethod
    def create_task(self, task: Task) -> Task: ...

    @abstractmethod
    def update_task(self, task_id: str, updates: Dict[str, Any]) -> Optional[Task]: ...

    @abstractmethod
    def delete_task(self, task_id: str) -> None: ...

    # Categories
    @abstractmethod
    def get_categories(self) -> List[Category]: ...

    @abstractmethod
    def create_category(self, category: Category) -> Category: ...

    @abstractmethod
    def delete_category(self, category_id: str) -> None: ...

    # Settings
    @abstractmethod
    def get_settings(self) -> Settings: ...

    @abstractmethod
    def update_settings(self, settings: Settings) -> Settings: ...

    # Bulk
    @abstractmethod
    def clear_all(self) -> List[Category]:
        """Drop everything and reseed. Returns the categories now stored."""


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Local storage
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class LocalStorageRepository(DataRepository):
    """
    Local-mode persistence.

    Every mutation rewrites the full collection under its key; there is
    no diffing and no partial write. Nothing here can fail for business
    reasons: unknown ids are ignored.
    """

    name = "local"

    def __init__(self, storage: LocalStorage):
        self.storage = storage

    def has_data(self) -> bool:
        return any(
            self.storage.get_item(key) is not None
            for key in (TASKS_KEY, CATEGORIES_KEY, SETTINGS_KEY)
        )

    # ── Whole-collection writers ──

    def save_tasks(self, tasks: List[Task]) -> None:
        self.storage.set_json(TASKS_KEY, [t.to_dict() for t in tasks])

    def save_categories(self, categories: List[Category]) -> None:
        self.storage.set_json(CATEGORIES_KEY, [c.to_dict() for c in categories])

    def save_settings(self, settings: Settings) -> None:
        self.storage.set_json(SETTINGS_KEY, settings.to_dict())

    # ── Tasks ──

    def get_tasks(self) -> List[Task]:
        raw = self.storage.get_json(TASKS_KEY, [])
        if not isinstance(raw, list):
            return []
        return [Task.from_dict(item) for item in raw if isinstance(item, dict)]

    def create_task(self, task: Task) -> Task:
        tasks = self.get_tasks()
        tasks.insert(0, task)
        self.save_tasks(tasks)
        return task

    def update_task(self, task_id: str, updates: Dict[str, Any]) -> Optional[Task]:
        tasks = self.get_tasks()
        updated = None
        for task in tasks:
            if task.id == task_id:
                task.apply(updates)
                updated = task
        self.save_tasks(tasks)
        return updated

    def delete_task(self, task_id: str) -> None:
        self.save_tasks([t for t in self.get_tasks() if t.id != task_id])

    # ── Categories ──

    def get_categories(self) -> List[Category]:
        raw = self.storage.get_json(CATEGORIES_KEY)
        if not isinstance(raw, list):
            return default_categories()
        return [Category.from_dict(item) for item in raw if isinstance(item, dict)]

    def create_category(self, category: Category) -> Category:
        categories = self.get_categories()
        categories.append(category)
        self.save_categories(categories)
        return category

    def delete_category(self, category_id: str) -> None:
        self.save_categories([c for c in self.get_categories() if c.id != category_id])
        tasks = self.get_tasks()
        for task in tasks:
            if task.category_id == category_id:
                task.category_id = None
        self.save_tasks(tasks)

    # ── Settings ──

    def get_settings(self) -> Settings:
        raw = self.storage.get_json(SETTINGS_KEY)
        if not isinstance(raw, dict):
            return default_settings()
        return Settings.from_dict(raw)

    def update_settings(self, settings: Settings) -> Settings:
        self.save_settings(settings)
        return settings

    # ── Bulk ──

    def clear_all(self) -> List[Category]:
        categories = default_categories()
        self.save_tasks([])
        self.save_categories(categories)
        self.save_settings(default_settings())
        return categories


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Supabase
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


# camelCase task key → tasks table column
TASK_COLUMNS = {
    "text": "text",
    "isPermanent": "is_permanent",
    "completedDates": "completed_dates",
    "date": "date",
    "completed": "completed",
    "categoryId": "category",
    "isDelivery": "is_delivery",
    "deliveryDate": "delivery_date",
    "assignedToId": "assigned_to_id",
}

TASK_SELECT = (
    "id, text, is_permanent, completed_dates, date, completed, category, "
    "is_delivery, delivery_date, assigned_to_id, created_by_id, workspace_id, "
    "created_at, updated_at"
)


def row_to_task(row: Dict[str, Any]) -> Task:
    """Convert a tasks table row to a Task."""
    return Task.from_dict({
        "id": row.get("id"),
        "text": row.get("text"),
        "isPermanent": row.get("is_permanent"),
        "completedDates": row.get("completed_dates") or [],
        "date": row.get("date"),
        "completed": row.get("completed"),
        "categoryId": row.get("category"),
        "isDelivery": row.get("is_delivery"),
        "deliveryDate": row.get("delivery_date"),
        "assignedToId": row.get("assigned_to_id"),
        "createdById": row.get("created_by_id"),
        "workspaceId": row.get("workspace_id"),
    })


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseRepository(DataRepository):
    """
    Remote persistence on the hosted tables.

    Schema (owned by the backend, not managed here):
        workspaces(id, name, type, owner_id)
        workspace_members(id, workspace_id, user_id, role, name, email)
        tasks(id, workspace_id, text, is_permanent, ..., created_at, updated_at)
        categories(id, workspace_id, name, color, created_at)
        settings(workspace_id, key, value jsonb, updated_at)

    Any backend error propagates as BackendError.
    """

    name = "remote"

    def __init__(self, client: SupabaseClient):
        self.client = client
        # user_id → (workspace_id, member_id)
        self._workspace_cache: Dict[str, Tuple[str, str]] = {}
        # Parallel first loads must not create the workspace twice
        self._workspace_lock = threading.Lock()

    def _current_user(self) -> Dict[str, Any]:
        session = self.client.get_session()
        if session and session.user_id:
            return session.user
        user = self.client.get_user()
        if not user.get("id"):
            raise BackendError("Usuário não autenticado", status=401)
        return user

    def workspace_ids(self) -> Tuple[str, str]:
        """
        Find or lazily create the user's workspace and membership row.

        The first access for a user creates a personal workspace and an
        owner membership named after the email's local part.
        """
        user = self._current_user()
        with self._workspace_lock:
            return self._resolve_workspace(user)

    def _resolve_workspace(self, user: Dict[str, Any]) -> Tuple[str, str]:
        user_id = user["id"]
        if user_id in self._workspace_cache:
            return self._workspace_cache[user_id]

        email = user.get("email", "") or ""

        rows = self.client.select("workspaces", "id", {"owner_id": user_id}, limit=1)
        if rows:
            workspace_id = rows[0]["id"]
        else:
            created = self.client.insert("workspaces", {
                "name": "Meu Workspace",
                "type": "personal",
                "owner_id": user_id,
            })
            if not created:
                raise BackendError("Workspace creation returned no row")
            workspace_id = created[0]["id"]
            logger.info(f"Created personal workspace {workspace_id} for {user_id}")

        members = self.client.select(
            "workspace_members", "id",
            {"workspace_id": workspace_id, "user_id": user_id}, limit=1,
        )
        if members:
            member_id = members[0]["id"]
        else:
            created = self.client.insert("workspace_members", {
                "workspace_id": workspace_id,
                "user_id": user_id,
                "role": "owner",
                "name": email.split("@")[0],
                "email": email,
            })
            if not created:
                raise BackendError("Membership creation returned no row")
            member_id = created[0]["id"]

        self._workspace_cache[user_id] = (workspace_id, member_id)
        return workspace_id, member_id

    # ── Tasks ──

    def get_tasks(self) -> List[Task]:
        workspace_id, _ = self.workspace_ids()
        rows = self.client.select(
            "tasks", TASK_SELECT, {"workspace_id": workspace_id},
            order="created_at", ascending=False,
        )
        return [row_to_task(r) for r in rows]

    def create_task(self, task: Task) -> Task:
        workspace_id, member_id = self.workspace_ids()
        self.client.insert("tasks", {
            "id": task.id,
            "workspace_id": workspace_id,
            "assigned_to_id": task.assigned_to_id or member_id,
            "created_by_id": member_id,
            "text": task.text,
            "is_permanent": task.is_permanent,
            "completed_dates": list(task.completed_dates),
            "date": task.date or date.today().isoformat(),
            "completed": bool(task.completed),
            "category": task.category_id,
            "is_delivery": bool(task.is_delivery),
            "delivery_date": task.delivery_date,
        })
        return task

    def update_task(self, task_id: str, updates: Dict[str, Any]) -> Optional[Task]:
        """Send only the supplied fields, plus updated_at."""
        values: Dict[str, Any] = {"updated_at": _utc_now()}
        for key, column in TASK_COLUMNS.items():
            if key in updates:
                values[column] = updates[key]
        rows = self.client.update("tasks", values, {"id": task_id})
        if not rows:
            raise BackendError(f"Task {task_id} not found", status=404, code="PGRST116")
        return row_to_task(rows[0])

    def delete_task(self, task_id: str) -> None:
        self.client.delete("tasks", {"id": task_id})

    # ── Categories ──

    def get_categories(self) -> List[Category]:
        workspace_id, _ = self.workspace_ids()
        rows = self.client.select(
            "categories", "id, name, color, workspace_id, created_at",
            {"workspace_id": workspace_id}, order="created_at", ascending=True,
        )
        if rows:
            return [Category.from_dict(r) for r in rows]

        created = []
        for category in default_categories(fresh_ids=True):
            try:
                created.append(self.create_category(category))
            except BackendError as e:
                if e.code != UNIQUE_VIOLATION:
                    raise
        if not created:
            # Someone else seeded them concurrently
            rows = self.client.select(
                "categories", "id, name, color, workspace_id, created_at",
                {"workspace_id": workspace_id}, order="created_at", ascending=True,
            )
            return [Category.from_dict(r) for r in rows]
        return created

    def create_category(self, category: Category) -> Category:
        workspace_id, _ = self.workspace_ids()
        self.client.insert("categories", {
            "id": category.id,
            "workspace_id": workspace_id,
            "name": category.name,
            "color": category.color,
        }, returning=False)
        return category

    def delete_category(self, category_id: str) -> None:
        """Delete the row, then clear references. Two separate, non-atomic calls."""
        self.client.delete("categories", {"id": category_id})
        self.client.update("tasks", {"category": None}, {"category": category_id})

    # ── Settings ──

    def get_settings(self) -> Settings:
        workspace_id, _ = self.workspace_ids()
        rows = self.client.select("settings", "key, value", {"workspace_id": workspace_id})
        found: Dict[str, Any] = {}
        for row in rows:
            value = row.get("value")
            if isinstance(value, dict) and "value" in value:
                value = value["value"]
            found[row.get("key")] = value

        if not any(key in found for key in SETTINGS_FIELDS):
            settings = default_settings()
            self.update_settings(settings)
            return settings
        return Settings.from_dict(found)

    def update_settings(self, settings: Settings) -> Settings:
        workspace_id, _ = self.workspace_ids()
        now = _utc_now()
        rows = [
            {
                "workspace_id": workspace_id,
                "key": key,
                "value": {"value": value},
                "updated_at": now,
            }
            for key, value in settings.to_dict().items()
        ]
        self.client.upsert("settings", rows, on_conflict="workspace_id,key")
        return settings

    # ── Bulk ──

    def clear_all(self) -> List[Category]:
        workspace_id, _ = self.workspace_ids()
        for table in ("tasks", "categories", "settings"):
            self.client.delete(table, {"workspace_id": workspace_id})
        categories = default_categories(fresh_ids=True)
        for category in categories:
            self.create_category(category)
        return categories
