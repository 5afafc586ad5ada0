"""Tests for the SourceTracking orchestrator.

Covers:
- get_changes for every supported origin/state and rejection of the rest
- conflict detection (overlap, disjoint, de-duplication, remote adds)
- ensure_no_conflicts and force_overwrite
- update / reset / clear for both ledgers
- the identity bridge wrappers
"""

from __future__ import annotations

from pathlib import Path

import pytest

from source_tracking.config_schema import build_config
from source_tracking.tracking.errors import ConflictError
from source_tracking.tracking.models import (
    ChangeOrigin,
    ChangeResult,
    ChangeState,
    ComponentStatus,
    FileResponse,
)
from source_tracking.tracking.orchestrator import SourceTracking

CLASSES = "force-app/main/default/classes"
FOO = f"{CLASSES}/Foo.cls"
FOO_META = f"{CLASSES}/Foo.cls-meta.xml"
BAR = f"{CLASSES}/Bar.cls"


@pytest.fixture
def tracker(project: Path, fake_client) -> SourceTracking:
    return SourceTracking(
        org_id=fake_client.config.org_id,
        username=fake_client.config.username,
        project_path=project,
        package_directories=["force-app"],
        client=fake_client,
    )


class TestGetChanges:
    async def test_local_add(self, tracker, project, write):
        write(project, FOO, "class Foo {}")
        [change] = await tracker.get_changes("local", "add")
        assert change == ChangeResult(origin=ChangeOrigin.LOCAL, filenames=[FOO])

    async def test_local_delete_marks_deleted(self, tracker, project, write):
        write(project, FOO, "class Foo {}")
        await tracker.update_local_tracking(files=[FOO])
        (project / FOO).unlink()
        await tracker._local.get_status(refresh=True)

        [change] = await tracker.get_changes(ChangeOrigin.LOCAL, ChangeState.DELETE)

        assert change.filenames == [FOO]
        assert change.deleted is True

    async def test_local_moved(self, tracker, project, write):
        write(project, FOO, "same")
        await tracker.update_local_tracking(files=[FOO])
        renamed = f"{CLASSES}/Renamed.cls"
        (project / FOO).rename(project / renamed)
        await tracker._local.get_status(refresh=True)

        [change] = await tracker.get_changes("local", "moved")

        assert change.filenames == [FOO, renamed]

    async def test_remote_changed_and_delete_split(self, tracker, fake_client):
        fake_client.add("ApexClass", "Foo", 1)
        fake_client.add("ApexClass", "Old", 2, deleted=True)

        changed = await tracker.get_changes("remote", "changed")
        deleted = await tracker.get_changes("remote", "delete")

        assert [(c.type, c.name, c.deleted) for c in changed] == [
            ("ApexClass", "Foo", False)
        ]
        assert [(c.type, c.name, c.deleted) for c in deleted] == [
            ("ApexClass", "Old", True)
        ]
        assert all(c.origin == ChangeOrigin.REMOTE for c in changed + deleted)

    @pytest.mark.parametrize("state", ["add", "unchanged", "moved"])
    async def test_unsupported_remote_states(self, tracker, state):
        with pytest.raises(ValueError, match="Unsupported change query"):
            await tracker.get_changes("remote", state)

    async def test_unknown_origin(self, tracker):
        with pytest.raises(ValueError):
            await tracker.get_changes("sideways", "add")


class TestConflicts:
    async def test_added_locally_and_changed_remotely(
        self, tracker, project, fake_client, write
    ):
        write(project, FOO, "class Foo {}")
        write(project, FOO_META, "<xml/>")
        fake_client.add("ApexClass", "Foo", 3)

        conflicts = await tracker.get_conflicts()

        assert len(conflicts) == 1
        assert conflicts[0].type == "ApexClass"
        assert conflicts[0].name == "Foo"
        assert conflicts[0].filenames == [FOO_META, FOO]

    async def test_one_conflict_per_component(
        self, tracker, project, fake_client, write
    ):
        """Both files of Foo changed locally still yield one entry."""
        write(project, FOO, "v1")
        write(project, FOO_META, "<xml/>")
        await tracker.update_local_tracking(files=[FOO, FOO_META])
        write(project, FOO, "v2")
        write(project, FOO_META, "<xml version='2'/>")
        await tracker._local.get_status(refresh=True)
        fake_client.add("ApexClass", "Foo", 3)

        conflicts = await tracker.get_conflicts()

        assert len(conflicts) == 1

    async def test_disjoint_changes_do_not_conflict(
        self, tracker, project, fake_client, write
    ):
        write(project, BAR, "class Bar {}")
        write(project, FOO, "class Foo {}")
        await tracker.update_local_tracking(files=[FOO])
        fake_client.add("ApexClass", "Foo", 3)

        assert await tracker.get_conflicts() == []

    async def test_remote_addition_never_conflicts(
        self, tracker, project, fake_client, write
    ):
        write(project, BAR, "class Bar {}")
        fake_client.add("ApexClass", "Brand", 1)

        assert await tracker.get_conflicts() == []

    async def test_remote_deletion_ignored(
        self, tracker, project, fake_client, write
    ):
        write(project, FOO, "class Foo {}")
        fake_client.add("ApexClass", "Foo", 1, deleted=True)

        assert await tracker.get_conflicts() == []

    async def test_ensure_no_conflicts_raises(
        self, tracker, project, fake_client, write
    ):
        write(project, FOO, "class Foo {}")
        fake_client.add("ApexClass", "Foo", 3)

        with pytest.raises(ConflictError) as excinfo:
            await tracker.ensure_no_conflicts()

        assert excinfo.value.name == "conflict"
        assert len(excinfo.value.conflicts) == 1
        assert "Foo(ApexClass)" in excinfo.value.message

    async def test_force_overwrite_skips_check(
        self, tracker, project, fake_client, write
    ):
        write(project, FOO, "class Foo {}")
        fake_client.add("ApexClass", "Foo", 3)

        await tracker.ensure_no_conflicts(force_overwrite=True)

        assert fake_client.calls == []


class TestTrackingUpdates:
    async def test_responses_sync_both_sides(
        self, tracker, project, fake_client, write
    ):
        write(project, FOO, "class Foo {}")
        fake_client.add("ApexClass", "Foo", 3)
        assert len(await tracker.get_conflicts()) == 1

        await tracker.update_tracking_from_responses(
            [
                FileResponse(
                    filename=str(project / FOO),
                    state=ComponentStatus.CREATED,
                    type="ApexClass",
                    name="Foo",
                )
            ]
        )

        assert await tracker.get_changes("local", "add") == []
        assert await tracker.get_changes("remote", "changed") == []
        assert await tracker.get_conflicts() == []

    async def test_remote_update_requeries(self, tracker, fake_client):
        await tracker.ensure_remote_tracking(initialize_with_query=True)
        fake_client.add("ApexClass", "Foo", 9)

        await tracker.update_remote_tracking(
            [
                FileResponse(
                    filename="x",
                    state=ComponentStatus.CHANGED,
                    type="ApexClass",
                    name="Foo",
                )
            ]
        )

        assert len(fake_client.calls) == 2
        assert await tracker.get_remote_changes() == []

    async def test_filename_only_responses_resolve_identity(
        self, tracker, project, fake_client, write
    ):
        write(project, FOO, "class Foo {}")
        fake_client.add("ApexClass", "Foo", 3)
        fake_client.add("ApexClass", "Bar", 4)

        await tracker.update_tracking_from_responses(
            [
                FileResponse(filename=str(project / FOO), state=ComponentStatus.CREATED),
                FileResponse(filename=BAR, state=ComponentStatus.FAILED),
            ]
        )

        remaining = await tracker.get_changes("remote", "changed")
        assert [c.name for c in remaining] == ["Bar"]
        assert await tracker.get_conflicts() == []

    async def test_unclassifiable_response_is_skipped(
        self, tracker, project, fake_client, write
    ):
        write(project, f"{CLASSES}/notes.txt", "todo")
        fake_client.add("ApexClass", "Foo", 3)

        await tracker.update_remote_tracking(
            [FileResponse(filename=f"{CLASSES}/notes.txt", state=ComponentStatus.CHANGED)]
        )

        assert [c.name for c in await tracker.get_remote_changes()] == ["Foo"]


class TestResetAndClear:
    async def test_reset_local_commits_everything(self, tracker, project, write):
        write(project, FOO, "x")
        write(project, BAR, "y")
        await tracker.update_local_tracking(files=[BAR])
        (project / BAR).unlink()
        await tracker._local.get_status(refresh=True)

        files = await tracker.reset_local_tracking()

        assert sorted(files) == sorted([FOO, BAR])
        status = await tracker._local.get_status()
        assert status.is_clean

    async def test_reset_remote_returns_count(self, tracker, fake_client):
        fake_client.add("ApexClass", "Foo", 1)
        fake_client.add("ApexClass", "Bar", 2)

        assert await tracker.reset_remote_tracking() == 2
        assert await tracker.get_remote_changes() == []

    async def test_bounded_remote_reset_keeps_later_conflicts(
        self, tracker, project, fake_client, write
    ):
        write(project, BAR, "class Bar {}")
        fake_client.add("ApexClass", "Foo", 1)
        fake_client.add("ApexClass", "Bar", 5)

        assert await tracker.reset_remote_tracking(3) == 1

        conflicts = await tracker.get_conflicts()
        assert [(c.type, c.name) for c in conflicts] == [("ApexClass", "Bar")]

    async def test_clear_remote_forgets_state(self, tracker, fake_client):
        fake_client.add("ApexClass", "Foo", 1)
        await tracker.reset_remote_tracking()

        message = await tracker.clear_remote_tracking()

        assert message.startswith("Deleted")
        changes = await tracker.get_remote_changes()
        assert [c.name for c in changes] == ["Foo"]

    async def test_clear_local_forgets_snapshot(self, tracker, project, write):
        write(project, FOO, "x")
        await tracker.update_local_tracking(files=[FOO])

        await tracker.clear_local_tracking()

        assert await tracker.get_changes("local", "add") == [
            ChangeResult(origin=ChangeOrigin.LOCAL, filenames=[FOO])
        ]


class TestIdentityBridge:
    async def test_populate_types_and_names_relativizes(
        self, tracker, project, write
    ):
        write(project, FOO, "x")
        [result] = tracker.populate_types_and_names(
            [ChangeResult(origin="local", filenames=[str(project / FOO)])]
        )
        assert (result.type, result.name) == ("ApexClass", "Foo")
        assert result.filenames == [FOO]

    async def test_exclude_unresolvable(self, tracker):
        results = tracker.populate_types_and_names(
            [ChangeResult(origin="local", filenames=["classes/Bar.cls"])],
            exclude_unresolvable=True,
        )
        assert results == []

    async def test_paths_outside_project_are_unresolved(self, tracker, tmp_path):
        elsewhere = str(tmp_path / "elsewhere" / "x.cls")
        results = tracker.populate_types_and_names(
            [
                ChangeResult(origin="local", filenames=[elsewhere]),
                ChangeResult(origin="local", filenames=[FOO]),
            ],
            exclude_unresolvable=True,
        )
        assert [(r.type, r.name) for r in results] == [("ApexClass", "Foo")]

    async def test_local_update_skips_paths_outside_project(
        self, tracker, project, write, tmp_path
    ):
        write(project, FOO, "x")
        outside = write(tmp_path, "elsewhere/x.cls", "y")

        await tracker.update_local_tracking(files=[str(outside), str(project / FOO)])

        assert tracker._local.tracked_filenames == [FOO]


def test_from_config_uses_project_section(tmp_path: Path, fake_client):
    unified = build_config(
        {
            "project": {
                "path": str(tmp_path),
                "package_directories": ["src", "extra"],
                "state_dir": ".state",
            }
        }
    )
    tracker = SourceTracking.from_config(unified, fake_client)
    assert tracker.project_path == tmp_path.resolve()
    assert tracker.package_directories == ["src", "extra"]
    assert tracker.state_root == tmp_path.resolve() / ".state"
    assert tracker.org_id == fake_client.config.org_id
