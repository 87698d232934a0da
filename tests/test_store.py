"""
Tests for the SQLAlchemy entity store.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker

from sitelog.entity_resolution import DuplicateEntityRace, EntityResolver, MergeError
from sitelog.models import (
    Base,
    CanonicalEntity,
    EntityKind,
    EntityMerge,
    MergeReason,
    WorkRecord,
    to_timestamp,
)
from sitelog.store import SqlEntityStore


def test_create_entity(store):
    entity_id = store.create_entity(
        "Kurt", EntityKind.PERSON, "kurt",
        attributes={"position": "Foreman"},
        seen_at=datetime(2025, 4, 2),
    )

    entity = store.get_entity(entity_id)
    assert entity.kind == EntityKind.PERSON
    assert entity.display_name == "Kurt"
    assert entity.attributes == {"position": "Foreman"}
    assert entity.occurrence_count == 1
    assert entity.first_seen == entity.last_seen == datetime(2025, 4, 2)
    assert store.alias_index.lookup_exact("kurt", EntityKind.PERSON) == entity_id


def test_create_entity_alias_taken_raises_race(store):
    store.create_entity("Kurt", EntityKind.PERSON, "kurt")

    with pytest.raises(DuplicateEntityRace) as exc_info:
        store.create_entity("KURT", EntityKind.PERSON, "kurt")

    assert exc_info.value.alias == "kurt"
    # The losing entity was rolled back with its alias
    assert store.count_entities(EntityKind.PERSON) == 1


def test_create_entity_requires_name_and_alias(store):
    with pytest.raises(ValueError):
        store.create_entity("", EntityKind.PERSON, "kurt")
    with pytest.raises(ValueError):
        store.create_entity("Kurt", EntityKind.PERSON, "")


def test_list_entities_excludes_merged_and_other_kinds(db, store, make_entity):
    a = make_entity("Bob Smith")
    b = make_entity("Bobby Smith")
    make_entity("Triad", kind=EntityKind.VENDOR)
    db.get(CanonicalEntity, b).merged_into_id = a
    db.commit()

    people = store.list_entities(EntityKind.PERSON)

    assert [e.id for e in people] == [a]
    assert store.count_entities(EntityKind.PERSON) == 1
    assert store.count_entities() == 2


def test_list_entities_order_is_stable(store, make_entity):
    ids = [make_entity(name) for name in ("Kurt", "Wes", "Mike", "Jim")]
    assert [e.id for e in store.list_entities(EntityKind.PERSON)] == sorted(ids)


def test_touch_only_widens_window(db, store, make_entity):
    kurt = make_entity("Kurt", seen_at=datetime(2025, 3, 1))

    store.touch_entity(kurt, datetime(2025, 3, 5))
    store.touch_entity(kurt, datetime(2025, 3, 3))
    store.touch_entity(kurt, datetime(2025, 1, 15))

    db.expire_all()
    entity = store.get_entity(kurt)
    assert entity.first_seen == datetime(2025, 1, 15)
    assert entity.last_seen == datetime(2025, 3, 5)


def test_increment_occurrence(db, store, make_entity):
    kurt = make_entity("Kurt")

    store.increment_occurrence(kurt)
    store.increment_occurrence(kurt)

    db.expire_all()
    assert store.get_entity(kurt).occurrence_count == 3


def test_record_resolution_is_one_step(db, store, make_entity):
    kurt = make_entity("Kurt", seen_at=datetime(2025, 3, 1))

    assert store.record_resolution(kurt, EntityKind.PERSON, datetime(2025, 3, 2), alias="kurt k") is True
    assert store.record_resolution(kurt, EntityKind.PERSON, datetime(2025, 3, 3), alias="kurt k") is False

    db.expire_all()
    entity = store.get_entity(kurt)
    assert entity.occurrence_count == 3
    assert entity.last_seen == datetime(2025, 3, 3)
    assert entity.alias_names == ["kurt", "kurt k"]


def test_update_attributes_merges_and_ignores_none(store, make_entity):
    kurt = make_entity("Kurt", attributes={"position": "Laborer", "go_by_name": "K"})

    store.update_attributes(kurt, {"position": "Foreman", "go_by_name": None})

    assert store.get_entity(kurt).attributes == {"position": "Foreman", "go_by_name": "K"}


def test_update_attributes_unknown_entity(store):
    with pytest.raises(KeyError):
        store.update_attributes("no-such-id", {"position": "Foreman"})


def test_entities_seen_on_project(db, store, make_entity):
    kurt = make_entity("Kurt")
    wes = make_entity("Wes")
    db.add(WorkRecord(entity_id=kurt, report_id="R-1", project_id="meharry"))
    db.add(WorkRecord(entity_id=wes, report_id="R-2", project_id="slu"))
    db.commit()

    assert store.entities_seen_on_project([kurt, wes], "meharry") == {kurt}
    assert store.entities_seen_on_project([kurt, wes], "monsanto") == set()
    assert store.entities_seen_on_project([], "meharry") == set()


@pytest.mark.parametrize("value,expected", [
    (datetime(2025, 3, 14, 9, 30), datetime(2025, 3, 14, 9, 30)),
    (datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc), datetime(2025, 3, 14, 9, 30)),
    ("2025-03-14T09:30:00Z", datetime(2025, 3, 14, 9, 30)),
    ("2025-03-14", datetime(2025, 3, 14)),
])
def test_to_timestamp(value, expected):
    assert to_timestamp(value) == expected


def test_to_timestamp_defaults_to_now():
    before = datetime.now(timezone.utc).replace(tzinfo=None)
    assert to_timestamp(None) >= before


def test_merge_entities_keeps_the_busier_entity(db, store, make_entity):
    quiet = make_entity("Bob Smyth", seen_at=datetime(2025, 3, 1))
    busy = make_entity("Bob Smith", seen_at=datetime(2025, 3, 5), occurrences=4)

    survivor = store.merge_entities(quiet, busy, MergeReason.CREATION_RACE, 0.89)

    assert survivor == busy
    assert store.get_entity(quiet).is_merged
    assert store.get_entity(busy).occurrence_count == 5
    assert db.query(EntityMerge).one().merge_reason == MergeReason.CREATION_RACE


def test_merge_entities_unknown_or_merged(store, make_entity):
    kurt = make_entity("Kurt")
    curt = make_entity("Curt")
    store.merge_entities(kurt, curt, MergeReason.CREATION_RACE, 0.9)

    with pytest.raises(MergeError):
        store.merge_entities(kurt, "no-such-id", MergeReason.CREATION_RACE, 0.9)
    with pytest.raises(MergeError):
        store.merge_entities(kurt, curt, MergeReason.CREATION_RACE, 0.9)


def test_concurrent_creation_through_scoped_sessions(tmp_path, config):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'sitelog.db'}", connect_args={"timeout": 30}
    )
    Base.metadata.create_all(engine)
    sessions = scoped_session(sessionmaker(bind=engine, autoflush=False))
    resolver = EntityResolver(SqlEntityStore(sessions), config)
    start = threading.Barrier(4)

    def resolve_in_thread():
        start.wait()
        try:
            return resolver.resolve_or_create("Triad", EntityKind.VENDOR)[1]
        finally:
            sessions.remove()

    with ThreadPoolExecutor(max_workers=4) as pool:
        futures = [pool.submit(resolve_in_thread) for _ in range(4)]
        entity_ids = [f.result() for f in futures]

    try:
        assert len(set(entity_ids)) == 1
        assert entity_ids[0] is not None
        assert SqlEntityStore(sessions).count_entities(EntityKind.VENDOR) == 1
    finally:
        sessions.remove()
        engine.dispose()
