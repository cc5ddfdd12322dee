from __future__ import annotations

from pathlib import Path

from gitapply.models import (
    DELETE,
    ZERO_COMMIT,
    Change,
    ChangeKind,
    ChangeSet,
    TagStatus,
    TickState,
    is_zero,
)


def test_change_kind_and_name() -> None:
    create = Change(to_name="x.service")
    modify = Change(from_name="x.service", to_name="x.service", from_blob="a", to_blob="b")
    delete = Change(from_name="x.service")

    assert create.kind is ChangeKind.CREATE
    assert modify.kind is ChangeKind.MODIFY
    assert delete.kind is ChangeKind.DELETE
    assert delete.name == "x.service"


def test_change_identity_is_content_based() -> None:
    first = Change(from_name="a", to_name="a", from_blob="1", to_blob="2")
    second = Change(from_name="a", to_name="a", from_blob="1", to_blob="2")

    assert first == second
    assert len({first, second}) == 1
    assert first != Change(from_name="a", to_name="a", from_blob="1", to_blob="3")


def test_changeset_pairs_changes_with_destinations() -> None:
    change = Change(to_name="a.conf")
    removed = Change(from_name="b.conf")
    changeset = ChangeSet(entries=((change, Path("/clone/a.conf")), (removed, DELETE)))

    assert len(changeset) == 2
    assert dict(changeset)[Change(to_name="a.conf")] == Path("/clone/a.conf")
    assert dict(changeset)[removed] is DELETE
    assert not ChangeSet()


def test_tag_status_state() -> None:
    assert TagStatus("t", "m", "a" * 40, ZERO_COMMIT).state is TickState.CLEAN
    assert TagStatus("t", "m", "a" * 40, "a" * 40).state is TickState.CLEAN
    assert TagStatus("t", "m", "a" * 40, "b" * 40).state is TickState.INTERRUPTED
    assert TagStatus("t", "m", ZERO_COMMIT, "b" * 40).state is TickState.INTERRUPTED


def test_is_zero() -> None:
    assert is_zero(ZERO_COMMIT)
    assert is_zero("")
    assert is_zero(None)
    assert not is_zero("a" * 40)
