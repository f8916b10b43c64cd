from __future__ import annotations

import pytest

from ao.errors import PlanFormatError
from ao.planning.durable import (
    TASK_CLOSE_TAG,
    TASK_OPEN_TAG,
    DocumentPlanStore,
    FileDocumentHost,
    SqlitePlanStore,
    embed_plan,
    extract_plan,
    parse_plan,
    render_plan,
)
from ao.planning.schema import TaskPlan
from ao.planning.store import complete_item, complete_task, create_task, get_active_task, revise_active_task


def _three_revisions() -> TaskPlan:
    plan = create_task(None, "Refactor parser", "Parser", ["A", "B"])
    task_id = get_active_task(plan).id
    plan = complete_item(plan, task_id, 0, "did A")
    plan = revise_active_task(plan, ["C"])
    return revise_active_task(plan, ["D", "E"])


def _two_tasks() -> TaskPlan:
    plan = _three_revisions()
    parent = get_active_task(plan).id
    plan = complete_task(plan, parent, "Parser refactored")
    plan = create_task(plan, "Document the parser", "Docs", ["Write guide"], parent_task_id=parent)
    return complete_item(plan, get_active_task(plan).id, 0, "Guide written")


@pytest.mark.parametrize(
    "plan",
    [
        TaskPlan(),
        create_task(None, "One", "One", ["only item"]),
        _three_revisions(),
        _two_tasks(),
    ],
)
def test_render_then_parse_reproduces_plan(plan: TaskPlan) -> None:
    assert parse_plan(render_plan(plan)) == plan


def test_multi_task_plan_keeps_every_revision() -> None:
    plan = _two_tasks()
    parsed = extract_plan(embed_plan("Issue body", plan))

    assert parsed == plan
    assert len(parsed.tasks) == 2
    assert len(parsed.tasks[0].revisions) == 3
    assert parsed.tasks[1].parent_task_id == parsed.tasks[0].id


def test_block_tags_inside_plan_text_survive_embedding() -> None:
    plan = create_task(
        None,
        f"Fix {TASK_OPEN_TAG} handling & escaping",
        "Tags",
        [f"Replace {TASK_CLOSE_TAG} in templates", "Keep <details> & </details> intact"],
    )

    embedded = embed_plan("Issue body", plan)

    assert embedded.count(TASK_CLOSE_TAG) == 1
    assert extract_plan(embedded) == plan
    assert extract_plan(embed_plan(embedded, plan)) == plan


def test_stray_closing_tag_in_document_is_ignored() -> None:
    plan = create_task(None, "One", "One", ["only item"])
    document = f"Mentions {TASK_CLOSE_TAG} in prose."

    updated = embed_plan(document, plan)

    assert updated.startswith(document)
    assert extract_plan(updated) == plan


def test_parse_plan_rejects_garbage() -> None:
    with pytest.raises(PlanFormatError):
        parse_plan("{not json")


def test_embed_plan_preserves_surrounding_text() -> None:
    plan = _three_revisions()
    document = f"Intro text.\n\n{TASK_OPEN_TAG}\n{{}}\n{TASK_CLOSE_TAG}\n\nTrailing notes."

    updated = embed_plan(document, plan)

    assert updated.startswith("Intro text.\n\n")
    assert updated.endswith("\n\nTrailing notes.")
    assert extract_plan(updated) == plan


def test_embed_plan_appends_block_when_missing() -> None:
    plan = create_task(None, "One", "One", ["only item"])
    updated = embed_plan("Issue body", plan)

    assert updated.startswith("Issue body")
    assert "<summary>Agent Context</summary>" in updated
    assert extract_plan(updated) == plan


def test_extract_plan_without_block_returns_none() -> None:
    assert extract_plan("Just prose.") is None


def test_extract_plan_unbalanced_block_raises() -> None:
    with pytest.raises(PlanFormatError):
        extract_plan(f"{TASK_OPEN_TAG} dangling")


def test_document_store_rewrites_only_the_block(tmp_path) -> None:
    host = FileDocumentHost(tmp_path / "docs")
    host.put_document("issue-1", "Please fix the bug.")
    store = DocumentPlanStore(host)

    first = create_task(None, "Fix bug", "Bug", ["A"])
    store.write_plan("issue-1", first)
    second = complete_item(first, get_active_task(first).id, 0)
    store.write_plan("issue-1", second)

    document = host.get_document("issue-1")
    assert document.startswith("Please fix the bug.")
    assert document.count(TASK_OPEN_TAG) == 1
    assert store.read_plan("issue-1") == second
    assert store.read_plan("missing") is None


def test_sqlite_store_replaces_plan_per_ref(tmp_path) -> None:
    plan = _three_revisions()
    with SqlitePlanStore(tmp_path / "ao.sqlite") as store:
        assert store.read_plan("repo#1") is None
        store.write_plan("repo#1", create_task(None, "Old", "Old", ["x"]))
        store.write_plan("repo#1", plan)
        store.write_plan("repo#2", TaskPlan())

        assert store.read_plan("repo#1") == plan
        assert store.list_refs() == ["repo#1", "repo#2"]


def test_sqlite_store_from_config_uses_db_path(tmp_path) -> None:
    db_path = tmp_path / "nested" / "plans.sqlite"
    with SqlitePlanStore.from_config({"paths": {"db_path": str(db_path)}}) as store:
        store.write_plan("ref", TaskPlan())
    assert db_path.exists()
