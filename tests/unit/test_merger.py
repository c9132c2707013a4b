"""
Unit tests for ChunkMerger.
"""

import pytest

from admetrics.engine.merger import ChunkMerger, combine_counters, merge
from admetrics.models.enums import DerivedRatio, FailureKind, ReachPolicy
from admetrics.models.metrics import EntityKey
from tests.conftest import (
    make_counters,
    make_failed_partial,
    make_partial,
    make_range,
    make_record,
)

CHUNK_A = make_range("2025-01-01", "2025-01-15")
CHUNK_B = make_range("2025-01-16", "2025-01-31")


class TestCombineCounters:
    def test_sums_every_field(self):
        total = combine_counters([make_counters(), make_counters()])
        assert total.spend == 200.0
        assert total.reach == 8000.0

    def test_max_reach_policy(self):
        total = combine_counters(
            [make_counters(reach=4000.0), make_counters(reach=2500.0)], ReachPolicy.MAX
        )
        assert total.reach == 4000.0
        assert total.impressions == 20000.0


class TestChunkMerger:
    """Tests for ChunkMerger.add and finalize."""

    def test_roas_recomputed_from_summed_counters(self):
        """Chunk ROAS 4.0 and 2.0 merge to 1000 / 400 = 2.5."""
        result = merge(
            [
                make_partial([make_record(spend=100.0, purchase_value=400.0)], CHUNK_A),
                make_partial([make_record(spend=300.0, purchase_value=600.0)], CHUNK_B),
            ]
        )
        record = result.records[0]
        assert record.counters.spend == 400.0
        assert record.counters.purchase_value == 1000.0
        assert record.ratio(DerivedRatio.ROAS) == pytest.approx(2.5)

    def test_weighted_and_recomputed_roas_agree(self):
        """(100 x 4.0 + 300 x 2.0) / 400 equals 1000 / 400 exactly."""
        result = merge(
            [
                make_partial(
                    [
                        make_record(
                            spend=100.0,
                            purchase_value=400.0,
                            reported={DerivedRatio.REPORTED_ROAS: 4.0},
                        )
                    ],
                    CHUNK_A,
                ),
                make_partial(
                    [
                        make_record(
                            spend=300.0,
                            purchase_value=600.0,
                            reported={DerivedRatio.REPORTED_ROAS: 2.0},
                        )
                    ],
                    CHUNK_B,
                ),
            ]
        )
        record = result.records[0]
        assert record.reported[DerivedRatio.REPORTED_ROAS] == 2.5
        assert record.ratio(DerivedRatio.ROAS) == 2.5
        assert record.reported[DerivedRatio.REPORTED_ROAS] == record.ratio(DerivedRatio.ROAS)

    def test_single_chunk_is_identity(self):
        source = make_record(spend=123.45, purchase_value=678.9)
        result = merge([make_partial([source], CHUNK_A)])
        record = result.records[0]
        assert record.counters == source.counters
        assert record.incomplete is False

    def test_frequency_weighted_by_reach(self):
        result = merge(
            [
                make_partial([make_record(impressions=10000.0, reach=4000.0)], CHUNK_A),
                make_partial([make_record(impressions=6000.0, reach=2000.0)], CHUNK_B),
            ]
        )
        expected = (2.5 * 4000 + 3.0 * 2000) / 6000
        assert result.records[0].ratio(DerivedRatio.FREQUENCY) == pytest.approx(expected)

    def test_reported_ratios_weighted_by_basis(self):
        """Upstream ROAS is weighted by spend across chunks."""
        result = merge(
            [
                make_partial(
                    [make_record(spend=100.0, reported={DerivedRatio.REPORTED_ROAS: 3.9})], CHUNK_A
                ),
                make_partial(
                    [make_record(spend=300.0, reported={DerivedRatio.REPORTED_ROAS: 2.1})], CHUNK_B
                ),
            ]
        )
        record = result.records[0]
        assert record.reported[DerivedRatio.REPORTED_ROAS] == pytest.approx(2.55)
        assert record.ratio(DerivedRatio.REPORTED_ROAS) == pytest.approx(2.55)

    def test_reach_policy_max(self):
        merger = ChunkMerger(reach_policy=ReachPolicy.MAX)
        merger.add(make_partial([make_record(reach=4000.0)], CHUNK_A))
        merger.add(make_partial([make_record(reach=3000.0)], CHUNK_B))
        assert merger.finalize().records[0].counters.reach == 4000.0

    def test_sub_entities_kept_separate(self):
        result = merge(
            [
                make_partial(
                    [
                        make_record(sub_entity_id="cmp_2", display_name="Retargeting"),
                        make_record(sub_entity_id="cmp_1", display_name="Prospecting"),
                    ],
                    CHUNK_A,
                ),
                make_partial([make_record(sub_entity_id="cmp_1", display_name="Prospecting")], CHUNK_B),
            ]
        )
        assert [r.key.sub_entity_id for r in result.records] == ["cmp_1", "cmp_2"]
        assert result.records[0].counters.spend == 200.0
        assert result.records[1].counters.spend == 100.0

    def test_failed_chunk_marks_scope_incomplete(self):
        merger = ChunkMerger()
        merger.add(make_partial([make_record()], CHUNK_A))
        merger.add(make_failed_partial(CHUNK_B, kind=FailureKind.PERMANENT))
        merger.add(make_partial([make_record(scope_id="act_2002")], CHUNK_A, scope_id="act_2002"))
        merger.add(make_partial([make_record(scope_id="act_2002")], CHUNK_B, scope_id="act_2002"))
        result = merger.finalize()

        assert result.is_complete is False
        assert result.failed_scopes == ["act_1001"]
        failing = result.get(EntityKey(scope_id="act_1001"))
        healthy = result.get(EntityKey(scope_id="act_2002"))
        assert failing.incomplete is True
        assert failing.missing_ranges == [CHUNK_B]
        assert healthy.incomplete is False
        assert healthy.missing_ranges == []

    def test_duplicate_chunk_rejected(self):
        merger = ChunkMerger()
        merger.add(make_partial(date_range=CHUNK_A))
        with pytest.raises(ValueError, match="already merged"):
            merger.add(make_partial(date_range=CHUNK_A))

    def test_earliest_display_name_wins(self):
        result = merge(
            [
                make_partial([make_record(display_name="Renamed")], CHUNK_B),
                make_partial([make_record(display_name="Original")], CHUNK_A),
            ]
        )
        assert result.records[0].key.display_name == "Original"

    def test_arrival_order_does_not_matter(self):
        partials = [
            make_partial([make_record(spend=0.1, purchase_value=0.7, reach=3.0)], CHUNK_A),
            make_partial([make_record(spend=0.2, purchase_value=0.3, reach=7.0)], CHUNK_B),
            make_failed_partial(CHUNK_A, scope_id="act_2002"),
        ]
        forward = merge(partials)
        backward = merge(list(reversed(partials)))
        assert forward.model_dump() == backward.model_dump()

    def test_empty_merge(self):
        result = ChunkMerger().finalize()
        assert result.records == []
        assert result.is_complete is True

    def test_serialized_output_independent_of_reported_key_order(self):
        """Chunks reporting different ratios serialize identically in any order."""
        first = make_partial(
            [make_record(reported={DerivedRatio.OUTBOUND_CTR: 1.0})], CHUNK_A
        )
        second = make_partial(
            [make_record(reported={DerivedRatio.REPORTED_ROAS: 3.0})], CHUNK_B
        )
        forward = merge([first, second])
        backward = merge([second, first])

        assert forward.model_dump_json() == backward.model_dump_json()
        assert list(forward.records[0].reported) == [
            DerivedRatio.REPORTED_ROAS,
            DerivedRatio.OUTBOUND_CTR,
        ]
