from __future__ import annotations

import random
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from src.domain.entities.generation_job import GenerationJobEntity, JobStatus
from src.domain.entities.image import ImageEntity
from src.domain.services.lineage_service import LineageGrouper

T0 = datetime(2025, 1, 1, tzinfo=UTC)


def img(image_id, parent=None, minutes=0, title="photo", base_name=None, version=1, width=768.0):
    return ImageEntity(
        id=image_id,
        user_id="u1",
        width=width,
        height=512.0,
        created_at=T0 + timedelta(minutes=minutes),
        title=title,
        base_name=base_name,
        parent_id=parent,
        version=version,
        path=f"u1/{image_id}.png",
    )


def job(job_id, parent, minutes_ago, now, status=JobStatus.PROCESSING, quality="pro-1k"):
    return GenerationJobEntity(
        id=job_id,
        user_id="u1",
        parent_id=parent,
        status=status,
        quality=quality,
        cost=Decimal("0.50"),
        created_at=now - timedelta(minutes=minutes_ago),
        prompt="make it blue",
    )


def test_versions_share_the_root_row():
    grouper = LineageGrouper()
    images = [img("A"), img("B", parent="A", minutes=1), img("C", parent="B", minutes=2)]
    result = grouper.build_rows(images, [], now=T0 + timedelta(hours=1))

    assert len(result.rows) == 1
    row = result.rows[0]
    assert row.id == "A"
    assert [i.id for i in row.items] == ["A", "B", "C"]
    assert row.created_at == T0
    assert row.title == "photo"


def test_missing_root_keeps_descendants_together():
    # the root "X" sits on a page that was not loaded
    grouper = LineageGrouper()
    images = [
        img("B", parent="X", minutes=5),
        img("C", parent="B", minutes=6),
        img("D", parent="X", minutes=7),
        img("E", minutes=8, title="other"),
    ]
    rows = grouper.build_rows(images, [], now=T0).rows

    by_id = {row.id: row for row in rows}
    assert set(by_id) == {"X", "E"}
    assert [i.id for i in by_id["X"].items] == ["B", "C", "D"]


def test_grouping_is_idempotent_and_order_independent():
    grouper = LineageGrouper()
    images = [
        img("A"),
        img("B", parent="A", minutes=1),
        img("C", minutes=2, title="second"),
        img("D", parent="C", minutes=3),
        img("E", parent="missing", minutes=4),
    ]
    first = grouper.build_rows(images, [], now=T0).rows
    shuffled = images[:]
    random.Random(7).shuffle(shuffled)
    second = grouper.build_rows(shuffled, [], now=T0).rows

    assert first == second
    assert grouper.group({i.id: i for i in images}) == first


def test_rows_newest_first_with_id_tiebreak():
    grouper = LineageGrouper()
    images = [img("b"), img("a"), img("c", minutes=10)]
    rows = grouper.build_rows(images, [], now=T0).rows
    assert [r.id for r in rows] == ["c", "a", "b"]


def test_cycle_falls_back_to_name_key():
    grouper = LineageGrouper()
    images = [
        img("A", parent="B", base_name="loop"),
        img("B", parent="A", minutes=1, base_name="loop"),
    ]
    rows = grouper.build_rows(images, [], now=T0).rows
    assert [r.id for r in rows] == ["name:loop"]
    assert [i.id for i in rows[0].items] == ["A", "B"]


def test_depth_bound_falls_back_to_name_key():
    grouper = LineageGrouper(max_depth=3)
    chain = [img("n0", base_name="deep")]
    for i in range(1, 6):
        chain.append(img(f"n{i}", parent=f"n{i - 1}", minutes=i, base_name="deep"))
    entities = {e.id: e for e in chain}

    assert grouper.root_key(entities["n2"], entities) == "n0"
    assert grouper.root_key(entities["n5"], entities) == "name:deep"


def test_blank_or_self_parent_falls_back_to_name_key():
    grouper = LineageGrouper()
    blank = img("A", parent="  ", title="beach")
    selfish = img("B", parent="B", title="beach", minutes=1)
    entities = {blank.id: blank, selfish.id: selfish}

    assert grouper.root_key(blank, entities) == "name:beach"
    assert grouper.root_key(selfish, entities) == "name:beach"


def test_blank_parent_root_shares_a_row_with_its_children():
    grouper = LineageGrouper()
    root = img("A", parent="", base_name="cat")
    child = img("B", parent="A", minutes=1, base_name="cat")
    grandchild = img("C", parent="B", minutes=2, title="renamed")

    rows = grouper.group({i.id: i for i in (root, child, grandchild)})

    assert [r.id for r in rows] == ["name:cat"]
    assert [i.id for i in rows[0].items] == ["A", "B", "C"]


def test_self_parent_ancestor_keeps_descendants_together():
    grouper = LineageGrouper()
    root = img("A", parent="A", base_name="dog")
    child = img("B", parent="A", minutes=1)
    rows = grouper.group({root.id: root, child.id: child})
    assert [(r.id, [i.id for i in r.items]) for r in rows] == [("name:dog", ["A", "B"])]


def test_stale_jobs_are_pruned_and_active_ones_become_placeholders():
    now = T0 + timedelta(hours=2)
    grouper = LineageGrouper()
    parent = img("A", base_name="cat", version=1, width=900.0)
    jobs = [job("fresh", "A", minutes_ago=2, now=now), job("old", "A", minutes_ago=11, now=now)]

    result = grouper.build_rows([parent], jobs, now=now)

    assert result.stale_job_ids == ["old"]
    assert set(result.active_jobs) == {"fresh"}
    placeholder = result.entities["fresh"]
    assert placeholder.is_generating and placeholder.path is None
    assert placeholder.width == 900.0
    assert placeholder.version == 2
    assert placeholder.title == "cat_v2"
    assert placeholder.estimated_duration_ms == 23_000
    assert [i.id for i in result.rows[0].items] == ["A", "fresh"]


def test_finished_or_completed_jobs_do_not_create_placeholders():
    now = T0 + timedelta(minutes=5)
    grouper = LineageGrouper()
    done = img("J1", parent="A", minutes=1)
    jobs = [
        job("J1", "A", minutes_ago=1, now=now),
        job("J2", "A", minutes_ago=1, now=now, status=JobStatus.FAILED),
    ]
    result = grouper.build_rows([img("A"), done], jobs, now=now)

    assert result.active_jobs == {}
    assert result.stale_job_ids == []
    assert not any(e.is_generating for e in result.entities.values())


def test_placeholder_estimate_counts_concurrent_jobs():
    now = T0
    grouper = LineageGrouper()
    jobs = [job(f"j{i}", "A", minutes_ago=1, now=now, quality="fast") for i in range(3)]
    result = grouper.build_rows([img("A")], jobs, now=now)
    # 12000 * (1 + 0.3 * 2)
    assert {e.estimated_duration_ms for e in result.entities.values() if e.is_generating} == {19_200}
