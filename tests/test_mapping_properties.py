"""Property-based tests for mapping upserts and duplicate cleanup."""

from contextlib import contextmanager

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

from scenemedia.db.base import Base
from scenemedia.services.library import MediaLibrary


@contextmanager
def scratch_library(*, script_asset_index=True):
    engine = create_engine("sqlite+pysqlite://")
    Base.metadata.create_all(engine)
    if not script_asset_index:
        with engine.begin() as conn:
            conn.execute(text("DROP INDEX uq_script_asset_mappings_script_asset"))
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield MediaLibrary.build(session)
    finally:
        session.close()
        engine.dispose()


asset_ids = st.integers(min_value=1, max_value=6)
kinds = st.sampled_from(["image", "video", "audio"])
scenes = st.sampled_from(["act0-scene0", "act0-scene1", "act1-scene0"])


@pytest.mark.property
class TestSlotUpserts:
    @given(links=st.lists(st.tuples(scenes, kinds, asset_ids), min_size=1, max_size=20))
    @settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_one_row_per_slot_pointing_at_last_link(self, links):
        with scratch_library() as library:
            expected = {}
            for scene_id, kind, asset_id in links:
                library.mutator.link_asset(1, scene_id, kind, asset_id)
                expected[(scene_id, kind)] = asset_id

            rows = library.mappings.list_for_script(1)
            assert len(rows) == len(expected)
            assert {(row.scene_id, row.asset_type): row.asset_id for row in rows} == expected


@pytest.mark.property
class TestDuplicateCleanup:
    @given(inserted=st.lists(st.tuples(kinds, asset_ids), min_size=1, max_size=15))
    @settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_dedup_keeps_one_row_per_key(self, inserted):
        with scratch_library(script_asset_index=False) as library:
            for kind, asset_id in inserted:
                library.mappings.insert(1, None, kind, asset_id)

            distinct = set(inserted)
            assert library.verifier.verify().stats.duplicate_mappings == len(inserted) - len(distinct)

            assert library.repair.remove_duplicate_mappings() == len(inserted) - len(distinct)
            assert library.repair.remove_duplicate_mappings() == 0

            rows = library.mappings.list_for_script(1)
            assert {(row.asset_type, row.asset_id) for row in rows} == distinct
            assert len(rows) == len(distinct)
