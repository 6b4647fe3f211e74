"""
Workspace and membership management.

- Exactly one workspace is current at a time.
- The owner is fixed when the workspace is created and can never be removed.
- Only the owner may add or remove members.
- Removing a member only drops its id from the workspace; the member
  record stays in the member table.

State is kept per user under workspaces_{id}, current_workspace_{id}
and members_{id} in the local storage area.
"""
import logging
import threading
import time
import uuid
from typing import Any, Dict, List, Optional

from .local_store import LocalStorage
from .schema import (
    User, Workspace, WorkspaceType, MemberRole, LOCAL_USER_ID, utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_WORKSPACE_ID = "workspace-local"


class WorkspacePermissionError(Exception):
    """Raised when a non-owner attempts an owner-only action."""
    pass


def make_id(prefix: str) -> str:
    """Sortable unique id: ms timestamp + random hex."""
    ts = int(time.time() * 1000)
    return f"{prefix}-{ts}-{uuid.uuid4().hex[:8]}"


def local_user() -> User:
    return User(
        id=LOCAL_USER_ID,
        name="Usuário Local",
        email="local@planner.com",
        role=MemberRole.OWNER,
    )


def user_from_session(session) -> User:
    """Member record for an authenticated session's user."""
    email = session.email
    return User(
        id=session.user_id,
        name=email.split("@")[0] if email else session.user_id,
        email=email,
        role=MemberRole.OWNER,
    )


class WorkspaceManager:
    """Tracks the current workspace and its member roster for one user."""

    def __init__(self, storage: LocalStorage, current_user: Optional[User] = None):
        self.storage = storage
        self._lock = threading.RLock()
        self.switch_user(current_user or local_user())

    # ── Persistence ───────────────────────────────────────────────────────────

    def _key(self, name: str) -> str:
        return f"{name}_{self.current_user.id}"

    def _load(self) -> None:
        user = self.current_user

        raw = self.storage.get_json(self._key("workspaces"))
        if isinstance(raw, list) and raw:
            self.workspaces = [Workspace.from_dict(w) for w in raw if isinstance(w, dict)]
        else:
            self.workspaces = [Workspace(
                id=DEFAULT_WORKSPACE_ID,
                name="Meu Espaço",
                type=WorkspaceType.PERSONAL,
                owner_id=user.id,
                member_ids=[user.id],
            )]

        raw = self.storage.get_json(self._key("members"))
        if isinstance(raw, list) and raw:
            self.member_table = [User.from_dict(m) for m in raw if isinstance(m, dict)]
        else:
            self.member_table = [user]

        current = self.storage.get_json(self._key("current_workspace"))
        ids = [w.id for w in self.workspaces]
        self.current_workspace_id = current if current in ids else ids[0]

    def _save(self) -> None:
        self.storage.set_json(self._key("workspaces"), [w.to_dict() for w in self.workspaces])
        self.storage.set_json(self._key("current_workspace"), self.current_workspace_id)
        self.storage.set_json(self._key("members"), [m.to_dict() for m in self.member_table])

    def switch_user(self, user: User) -> None:
        """Load the workspace state belonging to user."""
        with self._lock:
            self.current_user = user
            self._load()

    # ── Queries ───────────────────────────────────────────────────────────────

    @property
    def current_workspace(self) -> Workspace:
        for workspace in self.workspaces:
            if workspace.id == self.current_workspace_id:
                return workspace
        return self.workspaces[0]

    @property
    def members(self) -> List[User]:
        """Members of the current workspace, in roster order."""
        ids = self.current_workspace.member_ids
        return [m for m in self.member_table if m.id in ids]

    def is_owner(self) -> bool:
        return self.current_user.id == self.current_workspace.owner_id

    def can_create_for_others(self) -> bool:
        return self.current_user.role == MemberRole.OWNER or self.is_owner()

    def get_member_by_id(self, user_id: str) -> Optional[User]:
        for member in self.member_table:
            if member.id == user_id:
                return member
        return None

    def _require_owner(self, action: str) -> None:
        if not self.is_owner():
            raise WorkspacePermissionError(
                f"Only the workspace owner can {action}. "
                f"Owner: {self.current_workspace.owner_id}"
            )

    # ── Mutations ─────────────────────────────────────────────────────────────

    def create_workspace(self, name: str, workspace_type: WorkspaceType = WorkspaceType.PERSONAL) -> Workspace:
        """Create a workspace owned by the current user and make it current."""
        name = (name or "").strip()
        if not name:
            raise ValueError("Workspace name is required")
        with self._lock:
            workspace = Workspace(
                id=make_id("workspace"),
                name=name,
                type=workspace_type,
                owner_id=self.current_user.id,
                member_ids=[self.current_user.id],
                created_at=utc_now(),
            )
            self.workspaces.append(workspace)
            self.current_workspace_id = workspace.id
            self._save()
        logger.info(f"Workspace created: {workspace.id} ({workspace.type.value})")
        return workspace

    def switch_workspace(self, workspace_id: str) -> bool:
        """Make workspace_id current. Unknown ids change nothing."""
        with self._lock:
            if workspace_id not in [w.id for w in self.workspaces]:
                return False
            self.current_workspace_id = workspace_id
            self._save()
            return True

    def add_member(self, name: str, email: str) -> User:
        """Append a member record and its id to the current workspace."""
        name = (name or "").strip()
        email = (email or "").strip()
        if not name or not email:
            raise ValueError("Member name and email are required")
        with self._lock:
            self._require_owner("add members")
            member = User(id=make_id("user"), name=name, email=email, role=MemberRole.MEMBER)
            self.member_table.append(member)
            self.current_workspace.member_ids.append(member.id)
            self._save()
        logger.info(f"Member added to {self.current_workspace_id}: {member.id}")
        return member

    def remove_member(self, user_id: str) -> bool:
        """
        Drop user_id from the current workspace.

        Returns False without touching anything when user_id is the owner.
        """
        with self._lock:
            self._require_owner("remove members")
            workspace = self.current_workspace
            if user_id == workspace.owner_id:
                return False
            if user_id not in workspace.member_ids:
                return False
            workspace.member_ids = [m for m in workspace.member_ids if m != user_id]
            self._save()
        logger.info(f"Member removed from {workspace.id}: {user_id}")
        return True

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "currentUser": self.current_user.to_dict(),
                "currentWorkspace": self.current_workspace.to_dict(),
                "workspaces": [w.to_dict() for w in self.workspaces],
                "members": [m.to_dict() for m in self.members],
                "isOwner": self.is_owner(),
                "canCreateForOthers": self.can_create_for_others(),
            }
