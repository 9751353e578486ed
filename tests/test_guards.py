from __future__ import annotations

from soulvault.errors import PolicyNameCollision, PolicyViolationError, SelfProtectionError
from soulvault.guards import (
    Policy,
    PolicyContextEntry,
    build_policy_context,
    check_self_protection,
    evaluate_policies,
    validate_policy_names,
)
from soulvault.hashing import unified_diff
from soulvault.schema import ChangeStatus, FileChange, FrozenContent


def _change(path: str, status: ChangeStatus) -> FileChange:
    return FileChange(path=path, status=status)


def test_config_deletion_is_always_blocked() -> None:
    error = check_self_protection(FrozenContent({}), [_change("soulvault.yaml", ChangeStatus.DELETED)])

    assert isinstance(error, SelfProtectionError)
    assert "soulvault.yaml" in error.message


def test_invalid_yaml_config_is_blocked() -> None:
    frozen = FrozenContent({"soulvault.yaml": b"files: [unclosed\n"})

    error = check_self_protection(frozen, [_change("soulvault.yaml", ChangeStatus.MODIFIED)])

    assert isinstance(error, SelfProtectionError)


def test_non_mapping_config_is_blocked() -> None:
    frozen = FrozenContent({"soulvault.yaml": b"- just\n- a list\n"})

    error = check_self_protection(frozen, [_change("soulvault.yaml", ChangeStatus.MODIFIED)])

    assert isinstance(error, SelfProtectionError)


def test_schema_violation_in_config_is_blocked() -> None:
    frozen = FrozenContent({"soulvault.yaml": b"version: 1\nfiles:\n  SOUL.md: shred\n"})

    error = check_self_protection(frozen, [_change("soulvault.yaml", ChangeStatus.MODIFIED)])

    assert isinstance(error, SelfProtectionError)
    assert "files" in error.message


def test_valid_config_change_passes() -> None:
    frozen = FrozenContent({"soulvault.yaml": b"version: 1\nfiles:\n  soulvault.yaml: protect\n  SOUL.md: protect\n"})

    assert check_self_protection(frozen, [_change("soulvault.yaml", ChangeStatus.MODIFIED)]) is None


def test_unrelated_changes_skip_config_validation() -> None:
    frozen = FrozenContent({"SOUL.md": b"not yaml: [\n"})

    assert check_self_protection(frozen, [_change("SOUL.md", ChangeStatus.MODIFIED)]) is None


def test_duplicate_names_listed_once_in_first_duplicate_order() -> None:
    allow = lambda context: None  # noqa: E731
    policies = [
        Policy("b", allow),
        Policy("a", allow),
        Policy("a", allow),
        Policy("b", allow),
        Policy("a", allow),
        Policy("c", allow),
    ]

    error = validate_policy_names(policies)

    assert isinstance(error, PolicyNameCollision)
    assert error.duplicates == ("a", "b")


def test_unique_names_pass() -> None:
    assert validate_policy_names([Policy("a", lambda context: None), Policy("b", lambda context: None)]) is None


def test_every_failing_policy_is_reported_in_order() -> None:
    calls = []

    def record(name, verdict):
        def check(context):
            calls.append(name)
            return verdict

        return Policy(name, check)

    policies = [record("first", "too long"), record("second", None), record("third", "forbidden word")]

    error = evaluate_policies(policies, {})

    assert calls == ["first", "second", "third"]
    assert isinstance(error, PolicyViolationError)
    assert [(item.policy, item.message) for item in error.violations] == [
        ("first", "too long"),
        ("third", "forbidden word"),
    ]


def test_raising_policy_counts_as_violation() -> None:
    def explode(context):
        raise ValueError("boom")

    error = evaluate_policies([Policy("explodes", explode)], {})

    assert isinstance(error, PolicyViolationError)
    (violation,) = error.violations
    assert violation.policy == "explodes"
    assert "ValueError" in violation.message
    assert "boom" in violation.message


def test_policy_context_shapes(vault) -> None:
    vault.ops.add_file("SOUL.md", "old soul\n")
    vault.ops.add_file("OLD.md", "old file\n")
    changes = [
        FileChange(path="NEW.md", status=ChangeStatus.CREATED, staged_hash="n"),
        FileChange(path="OLD.md", status=ChangeStatus.DELETED, protected_hash="o"),
        FileChange(path="SOUL.md", status=ChangeStatus.MODIFIED, diff_text="@@ diff @@\n"),
    ]
    frozen = FrozenContent({"NEW.md": b"new file\n", "SOUL.md": b"new soul\n"})

    context = build_policy_context(vault.ops, changes, frozen)

    assert context["NEW.md"] == PolicyContextEntry(final="new file\n", diff="", previous="")
    assert context["OLD.md"] == PolicyContextEntry(final="", diff="File deleted: OLD.md", previous="old file\n")
    soul = context["SOUL.md"]
    assert (soul.final, soul.previous) == ("new soul\n", "old soul\n")
    # Rebuilt from the frozen bytes, not the diff_text carried on the change.
    assert soul.diff == unified_diff("SOUL.md", b"old soul\n", b"new soul\n")
    assert "+new soul" in soul.diff
