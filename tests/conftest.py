"""
Shared fixtures: an in-memory SQLite database per test and a resolver wired to it.
"""

import sys
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sitelog.entity_resolution import EntityResolver, ResolverConfig
from sitelog.history import HistoryRecorder
from sitelog.models import Base, CanonicalEntity, EntityKind
from sitelog.store import SqlEntityStore

JAN_1 = datetime(2025, 1, 1, 7, 0)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    yield session
    session.close()


@pytest.fixture
def config():
    return ResolverConfig(
        match_threshold=0.80,
        ambiguity_margin=0.05,
        abbreviations={"sx partners": "surgery partners"},
    )


@pytest.fixture
def store(db):
    return SqlEntityStore(db)


@pytest.fixture
def resolver(store, config):
    return EntityResolver(store, config)


@pytest.fixture
def history(db):
    return HistoryRecorder(db)


@pytest.fixture
def make_entity(db, store, resolver):
    """
    Create an entity directly through the store, bypassing resolution.

    Extra aliases are normalized and registered; occurrences overrides the
    creation count of 1.
    """
    def _make(
        display_name,
        kind=EntityKind.PERSON,
        aliases=(),
        seen_at=JAN_1,
        occurrences=1,
        attributes=None,
    ):
        normalize = resolver.normalizer.normalize
        entity_id = store.create_entity(
            display_name, kind, normalize(display_name, kind), attributes, seen_at
        )
        for alias in aliases:
            store.alias_index.register(entity_id, normalize(alias, kind), kind)
        if occurrences != 1:
            db.execute(
                update(CanonicalEntity)
                .where(CanonicalEntity.id == entity_id)
                .values(occurrence_count=occurrences)
            )
            db.commit()
        return entity_id

    return _make
