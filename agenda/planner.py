"""
Planner state: the in-memory copy of tasks, categories and settings.

Load lifecycle:
  AUTH_LOADING → LOCAL ────────────→ READY
              └→ REMOTE_LOADING ──→ READY   (remote content)
                                └─→ READY   (local fallback, error recorded)
                                └─→ ERROR   (fallback disabled)

The in-memory state is authoritative during a session. Each mutation is
applied to it first and then mirrored to exactly one repository: the
remote one when a session is active, local storage otherwise.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait, FIRST_EXCEPTION
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import Config
from .local_store import LocalStorage
from .repository import DataRepository, LocalStorageRepository, SupabaseRepository
from .schema import (
    Task, Category, Settings, LOCAL_USER_ID, SETTINGS_FIELDS,
    READ_ONLY_TASK_FIELDS, TASK_BOOL_FIELDS, parse_bool,
    new_id, default_categories, default_settings,
)
from .supabase import SupabaseClient, BackendError
from .views import today, toggle_updates

logger = logging.getLogger(__name__)


class LoadState(Enum):
    AUTH_LOADING = "auth_loading"
    REMOTE_LOADING = "remote_loading"
    READY = "ready"
    ERROR = "error"


class StorageMode(Enum):
    LOCAL = "local"
    REMOTE = "remote"


class LoadTimeout(Exception):
    """Raised internally when the remote load misses its deadline."""
    pass


class Planner:
    """
    Shared planner state for one process.

    Construct it once and pass it to whoever needs it; tests hand in
    fake repositories and a fake client.
    """

    def __init__(
        self,
        local: LocalStorageRepository,
        remote: Optional[DataRepository] = None,
        client: Optional[SupabaseClient] = None,
        load_timeout: float = 8.0,
        fallback_to_local: bool = True,
    ):
        self.local = local
        self.remote = remote
        self.client = client
        self.load_timeout = load_timeout
        self.fallback_to_local = fallback_to_local

        self.tasks: List[Task] = []
        self.categories: List[Category] = default_categories()
        self.settings: Settings = default_settings()

        self.state = LoadState.AUTH_LOADING
        self.mode = StorageMode.LOCAL
        self.error: Optional[str] = None

        self._lock = threading.RLock()
        self._generation = 0
        self._unsubscribe = None

    @classmethod
    def from_config(cls, config: Config) -> "Planner":
        """Wire storage, client and repositories from configuration."""
        local = LocalStorageRepository(LocalStorage(config.db_path))
        client = None
        remote = None
        if config.backend_configured:
            client = SupabaseClient(
                config.supabase_url, config.supabase_anon_key, timeout=config.request_timeout
            )
            remote = SupabaseRepository(client)
        else:
            logger.info("Backend not configured - running in local mode")
        return cls(
            local,
            remote=remote,
            client=client,
            load_timeout=config.load_timeout,
            fallback_to_local=config.fallback_to_local,
        )

    # ── Properties ────────────────────────────────────────────────────────────

    @property
    def repository(self) -> DataRepository:
        """The single store mutations are mirrored to."""
        if self.mode == StorageMode.REMOTE and self.remote is not None:
            return self.remote
        return self.local

    @property
    def is_remote(self) -> bool:
        return self.mode == StorageMode.REMOTE

    @property
    def user_id(self) -> str:
        session = self.client.get_session() if self.client else None
        if session and session.user_id:
            return session.user_id
        return LOCAL_USER_ID

    # ── Loading ───────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Subscribe to auth changes (once) and load data for the current session."""
        if self.client is not None and self._unsubscribe is None:
            self._unsubscribe = self.client.on_auth_state_change(self._on_auth_change)
        self.reload()

    def reload(self) -> None:
        with self._lock:
            self._generation += 1
            generation = self._generation
            self.state = LoadState.AUTH_LOADING

        session = self.client.get_session() if self.client else None
        if self.remote is None or session is None:
            self._load_local(generation)
        else:
            self._load_remote(generation)

    def close(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_auth_change(self, event: str, session) -> None:
        if event in ("SIGNED_IN", "SIGNED_OUT"):
            logger.info(f"Auth state changed ({event}), reloading")
            self.reload()

    def _load_local(self, generation: int, error: Optional[str] = None) -> None:
        tasks = self.local.get_tasks()
        categories = self.local.get_categories()
        settings = self.local.get_settings()
        with self._lock:
            if generation != self._generation:
                return
            self.tasks = tasks
            self.categories = categories
            self.settings = settings
            self.mode = StorageMode.LOCAL
            self.error = error
            self.state = LoadState.READY

    def _fetch_remote(self) -> Dict[str, Any]:
        """
        Fetch all three collections in parallel, bounded by load_timeout.

        Each load gets its own pool: workers stuck past the deadline of an
        earlier load must not delay the next one.
        """
        executor = ThreadPoolExecutor(max_workers=3, thread_name_prefix="agenda-load")
        try:
            futures = {
                "tasks": executor.submit(self.remote.get_tasks),
                "categories": executor.submit(self.remote.get_categories),
                "settings": executor.submit(self.remote.get_settings),
            }
            done, pending = wait(futures.values(), timeout=self.load_timeout, return_when=FIRST_EXCEPTION)
            for future in done:
                exc = future.exception()
                if exc is not None:
                    raise exc
            if pending:
                raise LoadTimeout(f"Remote load exceeded {self.load_timeout:.0f}s")
            return {name: f.result() for name, f in futures.items()}
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _load_remote(self, generation: int) -> None:
        with self._lock:
            self.state = LoadState.REMOTE_LOADING
        try:
            data = self._fetch_remote()
        except Exception as e:
            message = getattr(e, "message", None) or str(e) or e.__class__.__name__
            if self.fallback_to_local:
                logger.warning(f"Remote load failed, using local storage: {message}")
                self._load_local(generation, error=message)
            else:
                logger.error(f"Remote load failed: {message}")
                with self._lock:
                    if generation == self._generation:
                        # Still signed in: writes keep going to the remote store
                        self.tasks = []
                        self.categories = default_categories()
                        self.settings = default_settings()
                        self.mode = StorageMode.REMOTE
                        self.error = message
                        self.state = LoadState.ERROR
            return

        with self._lock:
            if generation != self._generation:
                logger.debug("Discarding stale remote load result")
                return
            self.tasks = data["tasks"] or []
            self.categories = data["categories"] or default_categories()
            self.settings = data["settings"] or default_settings()
            self.mode = StorageMode.REMOTE
            self.error = None
            self.state = LoadState.READY

    # ── Lookups ───────────────────────────────────────────────────────────────

    def get_task(self, task_id: str) -> Task:
        for task in self.tasks:
            if task.id == task_id:
                return task
        raise KeyError(f"Task {task_id} not found")

    def get_category(self, category_id: str) -> Optional[Category]:
        for category in self.categories:
            if category.id == category_id:
                return category
        return None

    def _fresh_id(self, taken) -> str:
        while True:
            candidate = new_id()
            if candidate not in taken:
                return candidate

    # ── Task mutations ────────────────────────────────────────────────────────

    def add_task(
        self,
        text: str,
        is_permanent: bool = False,
        date: Optional[str] = None,
        category_id: Optional[str] = None,
        is_delivery: bool = False,
        delivery_date: Optional[str] = None,
        assigned_to_id: str = "",
    ) -> Task:
        """
        Create a task and mirror it.

        Exactly one kind is kept: permanent wins over delivery, and only
        one-off tasks carry a date (today when none is given). A failed
        remote insert is rolled back before the error propagates.
        """
        if text is not None and not isinstance(text, str):
            raise ValueError("Task text must be a string")
        text = (text or "").strip()
        if not text:
            raise ValueError("Task text is required")
        is_permanent = parse_bool(is_permanent, "isPermanent")
        is_delivery = parse_bool(is_delivery, "isDelivery")
        if is_permanent:
            is_delivery = False
        if is_delivery and not delivery_date:
            raise ValueError("Delivery tasks need a deliveryDate")

        with self._lock:
            task = Task(
                id=self._fresh_id({t.id for t in self.tasks}),
                text=text,
                is_permanent=is_permanent,
                is_delivery=is_delivery,
                date=None if (is_permanent or is_delivery) else (date or today()),
                delivery_date=delivery_date if is_delivery else None,
                category_id=category_id or None,
                assigned_to_id=assigned_to_id or "",
                created_by_id=self.user_id,
            )
            self.tasks.insert(0, task)
            try:
                self.repository.create_task(task)
            except BackendError:
                self.tasks = [t for t in self.tasks if t.id != task.id]
                raise
        logger.info(f"Task added: {task.id} ({task.kind.value})")
        return task

    def update_task(self, task_id: str, updates: Dict[str, Any]) -> Task:
        """
        Apply a partial camelCase update, then mirror it.

        Switching a task to permanent or delivery drops its date. Read-only
        fields are ignored. Remote failures propagate and the in-memory
        change stays applied.
        """
        updates = {k: v for k, v in updates.items() if k not in READ_ONLY_TASK_FIELDS}
        for key in TASK_BOOL_FIELDS:
            if key in updates:
                updates[key] = parse_bool(updates[key], key)
        if "text" in updates:
            text = updates["text"]
            if not isinstance(text, str) or not text.strip():
                raise ValueError("Task text is required")
            updates["text"] = text.strip()
        if "completedDates" in updates and not isinstance(updates["completedDates"], list):
            raise ValueError("completedDates must be a list")
        if updates.get("isPermanent"):
            updates["isDelivery"] = False
        if updates.get("isPermanent") or updates.get("isDelivery"):
            updates["date"] = None

        with self._lock:
            task = self.get_task(task_id)
            task.apply(updates)
            self.repository.update_task(task_id, updates)
        return task

    def toggle_task(self, task_id: str, day: Optional[str] = None) -> Task:
        """Flip completion: per-day for permanent tasks, the flag otherwise."""
        target = day or today()
        with self._lock:
            task = self.get_task(task_id)
            return self.update_task(task_id, toggle_updates(task, target))

    def delete_task(self, task_id: str) -> None:
        with self._lock:
            self.get_task(task_id)
            self.tasks = [t for t in self.tasks if t.id != task_id]
            self.repository.delete_task(task_id)
        logger.info(f"Task deleted: {task_id}")

    # ── Category mutations ────────────────────────────────────────────────────

    def add_category(self, name: str, color: str = "bg-gray-500 text-white") -> Category:
        if name is not None and not isinstance(name, str):
            raise ValueError("Category name must be a string")
        name = (name or "").strip()
        if not name:
            raise ValueError("Category name is required")
        with self._lock:
            category = Category(
                id=self._fresh_id({c.id for c in self.categories}),
                name=name,
                color=color or "bg-gray-500 text-white",
            )
            self.categories.append(category)
            try:
                self.repository.create_category(category)
            except BackendError:
                self.categories = [c for c in self.categories if c.id != category.id]
                raise
        return category

    def delete_category(self, category_id: str) -> None:
        """Remove the category and clear it from every task that used it."""
        with self._lock:
            self.categories = [c for c in self.categories if c.id != category_id]
            for task in self.tasks:
                if task.category_id == category_id:
                    task.category_id = None
            self.repository.delete_category(category_id)

    # ── Settings / bulk ───────────────────────────────────────────────────────

    def update_settings(self, changes: Dict[str, Any]) -> Settings:
        """Merge camelCase setting changes into the current settings."""
        merged = self.settings.to_dict()
        for key, value in changes.items():
            if key in SETTINGS_FIELDS:
                merged[key] = parse_bool(value, key)
        with self._lock:
            self.settings = Settings.from_dict(merged)
            self.repository.update_settings(self.settings)
        return self.settings

    def clear_all(self) -> None:
        """Remove all tasks and restore default categories and settings."""
        with self._lock:
            self.tasks = []
            self.categories = default_categories()
            self.settings = default_settings()
            self.categories = self.repository.clear_all()
        logger.info(f"All data cleared ({self.mode.value} mode)")

    # ── Export ────────────────────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "tasks": [t.to_dict() for t in self.tasks],
                "categories": [c.to_dict() for c in self.categories],
                "settings": self.settings.to_dict(),
                "mode": self.mode.value,
                "state": self.state.value,
                "error": self.error,
                "isRemote": self.is_remote,
                "userId": self.user_id,
            }
