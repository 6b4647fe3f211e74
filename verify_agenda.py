#!/usr/bin/env python3
"""
Quick verification that the planner works end-to-end in local mode.
"""
import tempfile
from pathlib import Path

from agenda.local_store import LocalStorage
from agenda.planner import Planner
from agenda.repository import LocalStorageRepository
from agenda.views import progress_for_day, split_sections, tasks_for_day, today
from agenda.workspace import WorkspaceManager


def main():
    print("=" * 60)
    print("Agenda Planner Verification")
    print("=" * 60)

    db_path = Path(tempfile.mkdtemp()) / "agenda.db"

    print("\n[1/6] Creating local storage...")
    storage = LocalStorage(str(db_path))
    planner = Planner(LocalStorageRepository(storage))
    planner.start()
    print(f"✅ Planner ready ({planner.mode.value}, {planner.state.value})")
    print(f"   Categories: {', '.join(c.name for c in planner.categories)}")

    print("\n[2/6] Adding tasks...")
    day = today()
    routine = planner.add_task("Beber água", is_permanent=True, category_id="3")
    errand = planner.add_task("Pagar boleto", date=day, category_id="2")
    report = planner.add_task("Relatório mensal", is_delivery=True, delivery_date=day, category_id="1")
    for task in (routine, errand, report):
        print(f"✅ {task.kind.value:<10} {task.text}")

    print("\n[3/6] Completing tasks...")
    planner.toggle_task(routine.id, day)
    planner.toggle_task(errand.id, day)
    progress = progress_for_day(planner.tasks, day)
    print(f"✅ Progress: {progress.completed}/{progress.total} ({progress.percentage}%)")

    print("\n[4/6] Listing today...")
    sections = split_sections(tasks_for_day(planner.tasks, day), day)
    print(f"   Deliveries: {[t.text for t in sections.deliveries]}")
    print(f"   Routines:   {[t.text for t in sections.permanent]}")
    print(f"   One-off:    {[t.text for t in sections.one_off]}")

    print("\n[5/6] Reloading from storage...")
    reloaded = Planner(LocalStorageRepository(LocalStorage(str(db_path))))
    reloaded.start()
    print(f"✅ {len(reloaded.tasks)} tasks survived the reload")

    print("\n[6/6] Workspace roster...")
    workspaces = WorkspaceManager(storage)
    member = workspaces.add_member("Maria", "maria@example.com")
    print(f"✅ Workspace: {workspaces.current_workspace.name}")
    print(f"   Members: {[m.name for m in workspaces.members]} (added {member.id})")

    planner.close()
    reloaded.close()

    print("\n" + "=" * 60)
    print("✅ Agenda planner verification complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()
