"""Tests for sync tag decoding."""

import logging
import sys
from pathlib import Path

import numpy as np
import pytest

from tagsync.decoders.tags import (
    Tag,
    count_bit_gap,
    decode_edges,
    find_tags,
    pack_bits,
)
from tagsync.errors import EdgeMismatchError, HighVarianceError, NonIntegerBitGapError

sys.path.insert(0, str(Path(__file__).resolve().parent))
from conftest import make_sync_tag


class TestBitHelpers:
    def test_pack_msb_first(self):
        # Slot 0 is the most significant bit
        assert pack_bits([2], 3) == 1
        assert pack_bits([0], 3) == 4
        assert pack_bits([1, 2], 3) == 3

    def test_pack_lsb_first(self):
        assert pack_bits([0], 3, bit_order="lsb") == 1
        assert pack_bits([2], 3, bit_order="lsb") == 4

    def test_count_bit_gap(self):
        # Consecutive on bits are one bit period (2 pulse widths) apart
        assert count_bit_gap(20, 10) == 0
        assert count_bit_gap(60, 10) == 2
        assert count_bit_gap(41, 10) == 1
        assert count_bit_gap(0, 10) == 0

    def test_non_integer_gap_raises(self):
        with pytest.raises(NonIntegerBitGapError):
            count_bit_gap(25, 10)

    def test_negative_gap_raises(self):
        with pytest.raises(NonIntegerBitGapError):
            count_bit_gap(-20, 10)


class TestFindTags:
    def test_three_tag_scenario(self, three_tags):
        tag_data, spans = three_tags
        tags, report = find_tags(tag_data)
        assert [t.id for t in tags] == [1, 2, 3]
        assert [(t.start, t.end) for t in tags] == spans
        assert report.ok
        assert report.n_tags == 3
        assert report.profile.pulse_width == pytest.approx(10)
        assert report.profile.marker_width == pytest.approx(50)

    def test_starts_ascending(self, three_tags):
        tag_data, _ = three_tags
        tags, _ = find_tags(tag_data)
        starts = [t.start for t in tags]
        assert starts == sorted(starts)

    def test_round_trip_many_ids(self):
        ids = [5, 200, 17, 255, 128, 1, 96]
        tag_data, spans = make_sync_tag(ids, pulse_width=8, marker_duration=6, n_bits=8)
        tags, _ = find_tags(tag_data, n_bits=8)
        assert [t.id for t in tags] == ids
        assert [(t.start, t.end) for t in tags] == spans

    def test_round_trip_lsb_first(self):
        ids = [6, 9, 12]
        tag_data, spans = make_sync_tag(ids, n_bits=4, bit_order="lsb")
        tags, _ = find_tags(tag_data, bit_order="lsb")
        assert [t.id for t in tags] == ids

    def test_wrong_bit_order_reads_reversed_ids(self):
        tag_data, _ = make_sync_tag([1, 3], n_bits=3, bit_order="lsb")
        tags, _ = find_tags(tag_data, bit_order="msb")
        assert [t.id for t in tags] == [4, 6]

    def test_round_trip_with_jitter(self):
        ids = [3, 10, 7, 12]
        rng = np.random.default_rng(42)
        tag_data, spans = make_sync_tag(ids, pulse_width=20, n_bits=4,
                                        jitter=0.25, rng=rng)
        tags, report = find_tags(tag_data, n_bits=4)
        assert [t.id for t in tags] == ids
        assert [(t.start, t.end) for t in tags] == spans

    def test_idempotent(self, three_tags):
        tag_data, _ = three_tags
        first, report1 = find_tags(tag_data)
        second, report2 = find_tags(tag_data)
        assert first == second
        assert report1.summary() == report2.summary()

    def test_accepts_int_data(self, three_tags):
        tag_data, _ = three_tags
        tags, _ = find_tags(tag_data.astype(np.uint8))
        assert [t.id for t in tags] == [1, 2, 3]

    def test_offset_subtracted(self, three_tags):
        tag_data, spans = three_tags
        tags, _ = find_tags(tag_data, offset=15)
        assert [(t.start, t.end) for t in tags] == [(s - 15, e - 15) for s, e in spans]

    def test_max_tags(self, three_tags):
        tag_data, _ = three_tags
        tags, _ = find_tags(tag_data, max_tags=2)
        assert [t.id for t in tags] == [1, 2]

    def test_infinite_max_tags_finds_all(self, three_tags):
        tag_data, _ = three_tags
        tags, _ = find_tags(tag_data, max_tags=float("inf"))
        assert len(tags) == 3

    def test_n_bits_match(self, three_tags):
        tag_data, _ = three_tags
        tags, _ = find_tags(tag_data, n_bits=3)
        assert [t.id for t in tags] == [1, 2, 3]

    def test_n_bits_nan_accepts_any(self, three_tags):
        tag_data, _ = three_tags
        tags, _ = find_tags(tag_data, n_bits=float("nan"))
        assert len(tags) == 3

    def test_wrong_bit_count_skipped(self, three_tags):
        tag_data, _ = three_tags
        tags, report = find_tags(tag_data, n_bits=4)
        assert tags == []
        assert report.skipped == {"wrong_bit_count": 3}
        assert report.n_candidates == 3

    def test_invalid_bit_order(self, three_tags):
        tag_data, _ = three_tags
        with pytest.raises(ValueError, match="bit_order"):
            find_tags(tag_data, bit_order="middle")

    def test_no_pulses(self):
        tags, report = find_tags(np.zeros(500, dtype=bool))
        assert tags == []
        assert report.n_pulses == 0

    def test_single_pulse(self):
        data = np.zeros(100, dtype=bool)
        data[30:60] = True
        tags, report = find_tags(data)
        assert tags == []
        assert report.n_pulses == 1

    def test_partial_pulses_at_ends_ignored(self, three_tags):
        tag_data, spans = three_tags
        # Start and end mid-marker: the first and last markers are cut off
        cut = tag_data[spans[0][0] + 5:spans[2][1] - 5]
        tags, _ = find_tags(cut)
        assert [t.id for t in tags] == [2]


class TestCandidateErrors:
    def test_forward_corruption_is_mirror_mismatch(self):
        # Forward half says 2, mirrored half says 1; same number of pulses
        tag_data, _ = make_sync_tag([2, 3], n_bits=3, mirror_ids=[1, 3])
        tags, report = find_tags(tag_data)
        assert [t.id for t in tags] == [3]
        assert report.skipped == {"mirror_mismatch": 1}

    def test_every_single_bit_move_is_rejected(self):
        # Moving any one on bit in the forward half must never yield a tag
        for tag_id in [1, 2, 4]:
            for corrupt in [1, 2, 4]:
                if corrupt == tag_id:
                    continue
                tag_data, _ = make_sync_tag([tag_id], n_bits=3, mirror_ids=[corrupt])
                tags, report = find_tags(tag_data)
                assert tags == []
                assert report.skipped == {"mirror_mismatch": 1}

    def test_unmirrored_payload_skipped(self):
        tag_data, _ = make_sync_tag([1, 4], n_bits=3, mirrored=False)
        tags, report = find_tags(tag_data)
        assert tags == []
        assert report.skipped == {"unmirrored_payload": 2}

    def test_skips_logged_at_debug(self, caplog):
        tag_data, _ = make_sync_tag([2], n_bits=3, mirror_ids=[1])
        with caplog.at_level(logging.DEBUG, logger="tagsync.decoders.tags"):
            find_tags(tag_data)
        assert any("Mirrored tag data does not match" in r.message for r in caplog.records)


class TestStructuralErrors:
    def test_edge_mismatch_raises(self):
        with pytest.raises(EdgeMismatchError):
            decode_edges([10, 20, 30], [15, 40])

    def test_high_variance_rejected_without_raising(self, caplog):
        # Data pulses alternate 7 and 13 samples: std/mean ~ 0.3
        parts = [np.zeros(20, dtype=bool)]
        for k in range(4):
            parts.append(np.ones(100, dtype=bool))
            for w in (7, 13, 7, 13, 7):
                parts.append(np.zeros(10, dtype=bool))
                parts.append(np.ones(w, dtype=bool))
            parts.append(np.zeros(10, dtype=bool))
        parts.append(np.ones(100, dtype=bool))
        parts.append(np.zeros(20, dtype=bool))
        data = np.concatenate(parts)

        with caplog.at_level(logging.ERROR):
            tags, report = find_tags(data)
        assert tags == []
        assert isinstance(report.rejection, HighVarianceError)
        assert report.rejection.population == "pulse"
        assert report.rejection.ratio == pytest.approx(0.3, abs=0.03)
        assert not report.ok
        assert any(r.levelno == logging.ERROR for r in caplog.records)

    def test_all_pulses_same_width_rejected(self):
        data = np.tile(np.r_[np.zeros(10, bool), np.ones(10, bool)], 20)
        tags, report = find_tags(data)
        assert tags == []
        assert report.rejection is not None


class TestTag:
    def test_partial_flags(self):
        assert not Tag(1, 0, 99, "a", 100).is_partial
        assert Tag(1, -5, 50, "a", 100).is_partial
        assert Tag(1, 50, 100, "a", 100).is_partial

    def test_unattributed_is_not_partial(self):
        assert not Tag(1, -5, 50).is_partial

    def test_in_file(self):
        tag = Tag(3, 10, 20).in_file("x.dat", 50)
        assert tag.source_file == "x.dat"
        assert tag.source_file_length == 50
        assert tag.id == 3
