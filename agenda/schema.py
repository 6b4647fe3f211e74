"""
Planner data model.

A task is one of three kinds, selected by two flags:
  isPermanent         → permanent routine, completion tracked per day
  isDelivery + date   → deadline task, visible until its deliveryDate
  neither             → one-off task bound to a single date

The camelCase dict produced by to_dict() is the wire shape used by the
local storage area and by the HTTP API.
"""
import uuid
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any


LOCAL_USER_ID = "local-user"


class TaskKind(Enum):
    """Mutually exclusive task kinds."""
    ONE_OFF = "one_off"
    PERMANENT = "permanent"
    DELIVERY = "delivery"


class WorkspaceType(Enum):
    """What kind of group a workspace represents."""
    FAMILY = "family"
    BUSINESS = "business"
    PERSONAL = "personal"

    @classmethod
    def from_str(cls, value: str) -> "WorkspaceType":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.PERSONAL


class MemberRole(Enum):
    """Role of a user inside a workspace."""
    OWNER = "owner"
    MEMBER = "member"

    @classmethod
    def from_str(cls, value: str) -> "MemberRole":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.MEMBER


def new_id() -> str:
    """Fresh random identifier for tasks and categories."""
    return str(uuid.uuid4())


def utc_now() -> str:
    """ISO-8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat()


_TRUE = ("true", "1", "yes", "on")
_FALSE = ("false", "0", "no", "off", "")


def parse_bool(value: Any, field_name: str = "value") -> bool:
    """
    Strict boolean for client input.

    Accepts real booleans, 0/1 and the usual true/false strings; anything
    else raises ValueError instead of being coerced by truthiness.
    """
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    raise ValueError(f"{field_name} must be a boolean, got: {value!r}")


# camelCase wire key → dataclass attribute
TASK_FIELDS = {
    "id": "id",
    "text": "text",
    "isPermanent": "is_permanent",
    "completedDates": "completed_dates",
    "date": "date",
    "completed": "completed",
    "categoryId": "category_id",
    "isDelivery": "is_delivery",
    "deliveryDate": "delivery_date",
    "assignedToId": "assigned_to_id",
    "createdById": "created_by_id",
    "workspaceId": "workspace_id",
}

# Set once at creation, never through a partial update
READ_ONLY_TASK_FIELDS = ("id", "createdById", "workspaceId")
TASK_BOOL_FIELDS = ("isPermanent", "isDelivery", "completed")


@dataclass
class Task:
    """A planner task."""

    id: str
    text: str

    # Kind selection
    is_permanent: bool = False
    is_delivery: bool = False

    # Scheduling
    date: Optional[str] = None            # one-off only, YYYY-MM-DD
    delivery_date: Optional[str] = None   # delivery only, YYYY-MM-DD

    # Completion
    completed_dates: List[str] = field(default_factory=list)  # permanent only
    completed: bool = False                                   # one-off / delivery

    # Weak reference, lookup only
    category_id: Optional[str] = None

    # Collaboration
    assigned_to_id: str = ""
    created_by_id: str = ""
    workspace_id: str = ""

    @property
    def kind(self) -> TaskKind:
        """Permanent wins over delivery; a delivery without a deadline acts as one-off."""
        if self.is_permanent:
            return TaskKind.PERMANENT
        if self.is_delivery and self.delivery_date:
            return TaskKind.DELIVERY
        return TaskKind.ONE_OFF

    def apply(self, updates: Dict[str, Any]) -> None:
        """Apply a partial camelCase update in place. Read-only fields never change."""
        for key, value in updates.items():
            attr = TASK_FIELDS.get(key)
            if attr is None or key in READ_ONLY_TASK_FIELDS:
                continue
            if attr == "completed_dates":
                value = list(value or [])
            elif attr in ("is_permanent", "is_delivery", "completed"):
                value = bool(value)
            elif attr in ("date", "delivery_date", "category_id"):
                value = value or None
            setattr(self, attr, value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "isPermanent": self.is_permanent,
            "completedDates": list(self.completed_dates),
            "date": self.date,
            "completed": self.completed,
            "categoryId": self.category_id,
            "isDelivery": self.is_delivery,
            "deliveryDate": self.delivery_date,
            "assignedToId": self.assigned_to_id,
            "createdById": self.created_by_id,
            "workspaceId": self.workspace_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Deserialize from the camelCase shape. Missing keys take defaults."""
        completed_dates = data.get("completedDates") or []
        if not isinstance(completed_dates, list):
            completed_dates = []
        return cls(
            id=str(data.get("id", "")),
            text=data.get("text", "") or "",
            is_permanent=bool(data.get("isPermanent", False)),
            is_delivery=bool(data.get("isDelivery", False)),
            date=data.get("date") or None,
            delivery_date=data.get("deliveryDate") or None,
            completed_dates=[str(d) for d in completed_dates],
            completed=bool(data.get("completed", False)),
            category_id=data.get("categoryId") or None,
            assigned_to_id=data.get("assignedToId", "") or "",
            created_by_id=data.get("createdById", "") or "",
            workspace_id=data.get("workspaceId", "") or "",
        )


@dataclass
class Category:
    """A task category. Tasks refer to it by id only."""
    id: str
    name: str
    color: str = "bg-gray-500 text-white"

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "color": self.color}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Category":
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", "") or "",
            color=data.get("color", "") or "bg-gray-500 text-white",
        )


# camelCase wire key → dataclass attribute
SETTINGS_FIELDS = {
    "darkMode": "dark_mode",
    "showCompleted": "show_completed",
    "confirmDelete": "confirm_delete",
}


@dataclass
class Settings:
    """Flat boolean preferences, one instance per user/workspace."""
    dark_mode: bool = False
    show_completed: bool = True
    confirm_delete: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "darkMode": self.dark_mode,
            "showCompleted": self.show_completed,
            "confirmDelete": self.confirm_delete,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        defaults = cls()
        values = {}
        for key, attr in SETTINGS_FIELDS.items():
            value = data.get(key)
            values[attr] = getattr(defaults, attr) if value is None else bool(value)
        return cls(**values)


@dataclass
class User:
    """A workspace member."""
    id: str
    name: str
    email: str
    role: MemberRole = MemberRole.MEMBER
    avatar: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
        }
        if self.avatar:
            data["avatar"] = self.avatar
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", "") or "",
            email=data.get("email", "") or "",
            role=MemberRole.from_str(data.get("role", "member")),
            avatar=data.get("avatar"),
        )


@dataclass
class Workspace:
    """A collaboration container with an immutable owner and a member roster."""
    id: str
    name: str
    type: WorkspaceType = WorkspaceType.PERSONAL
    owner_id: str = LOCAL_USER_ID
    member_ids: List[str] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "ownerId": self.owner_id,
            "memberIds": list(self.member_ids),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Workspace":
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", "") or "",
            type=WorkspaceType.from_str(data.get("type", "personal")),
            owner_id=data.get("ownerId", LOCAL_USER_ID) or LOCAL_USER_ID,
            member_ids=list(data.get("memberIds") or []),
            created_at=data.get("createdAt") or utc_now(),
        )


# ── Defaults ──────────────────────────────────────────────────────────────────

_DEFAULT_CATEGORIES = [
    ("1", "Trabalho", "bg-blue-500 text-white"),
    ("2", "Pessoal", "bg-emerald-500 text-white"),
    ("3", "Saúde", "bg-rose-500 text-white"),
]


def default_categories(fresh_ids: bool = False) -> List[Category]:
    """The three starter categories. Remote seeding needs fresh ids."""
    return [
        Category(id=new_id() if fresh_ids else cid, name=name, color=color)
        for cid, name, color in _DEFAULT_CATEGORIES
    ]


def default_settings() -> Settings:
    return Settings()
