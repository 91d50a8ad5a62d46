"""Cross-stream tag matching.

Stream 0 is the base stream.  Every base tag is looked up by ID in each of
the other streams; a shared ID pins one physical moment in both files, and
the two tag spans define the affine map between the files' sample indices.
Intersecting the two files through that map gives, per file pair, the range
of base samples that overlaps the range of matched-file samples.
"""

import json as _json
import logging
import math
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .dataset import extract_tags_from_dataset
from .decoders.tags import DEFAULT_BIT_ORDER, DecodeReport, Tag
from .errors import ParserError
from .overlap import overlap_segments

logger = logging.getLogger(__name__)


@dataclass
class Match:
    """Sample correspondence between one base file and one matched file.

    ``base_overlap`` and ``match_overlap`` are inclusive 0-based index
    ranges, each in its own file's frame, covering the same span of time.
    """

    base_file: str
    match_file: str
    base_overlap: Tuple[int, int]
    match_overlap: Tuple[int, int]
    sample_rate_ratio: float
    base_file_length: int
    match_file_length: int

    def __post_init__(self):
        self.base_overlap = tuple(int(v) for v in self.base_overlap)
        self.match_overlap = tuple(int(v) for v in self.match_overlap)
        if len(self.base_overlap) != 2 or len(self.match_overlap) != 2:
            raise ValueError("overlaps must be (lo, hi) pairs")

    def to_dict(self) -> dict:
        d = asdict(self)
        d["base_overlap"] = list(self.base_overlap)
        d["match_overlap"] = list(self.match_overlap)
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "Match":
        return cls(**d)


@dataclass
class SyncEntry:
    """All matches for one base file, one list per non-base stream."""

    base_file: str
    matches: List[List[Match]]

    def stream_matches(self, stream_index: int = 0) -> List[Match]:
        return self.matches[stream_index]

    @property
    def n_matches(self) -> int:
        return sum(len(m) for m in self.matches)

    def to_dict(self) -> dict:
        return {
            "base_file": self.base_file,
            "matches": [[m.to_dict() for m in stream] for stream in self.matches],
        }

    @classmethod
    def from_dict(cls, d: dict) -> "SyncEntry":
        return cls(
            base_file=d["base_file"],
            matches=[[Match.from_dict(m) for m in stream] for stream in d["matches"]],
        )


@dataclass
class OverlapDiscrepancy:
    """Two tags disagreeing about the overlap of the same file pair.

    The overlap implied by the first tag is the one kept.
    """

    tag_id: int
    stream_index: int
    base_file: str
    match_file: str
    kept_base_overlap: Tuple[int, int]
    kept_match_overlap: Tuple[int, int]
    new_base_overlap: Tuple[int, int]
    new_match_overlap: Tuple[int, int]

    @property
    def max_delta(self) -> int:
        deltas = (
            np.subtract(self.kept_base_overlap, self.new_base_overlap).tolist()
            + np.subtract(self.kept_match_overlap, self.new_match_overlap).tolist()
        )
        return int(max(abs(d) for d in deltas))

    def to_dict(self) -> dict:
        d = asdict(self)
        for key in ("kept_base_overlap", "kept_match_overlap",
                    "new_base_overlap", "new_match_overlap"):
            d[key] = list(d[key])
        d["max_delta"] = self.max_delta
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "OverlapDiscrepancy":
        d = {k: v for k, v in d.items() if k != "max_delta"}
        for key in ("kept_base_overlap", "kept_match_overlap",
                    "new_base_overlap", "new_match_overlap"):
            d[key] = tuple(d[key])
        return cls(**d)


@dataclass
class SyncList:
    """Result of synchronizing several streams of files.

    Iterating yields one :class:`SyncEntry` per base file that matched at
    least one file of another stream, in base-stream order.
    """

    entries: List[SyncEntry] = field(default_factory=list)
    n_streams: int = 2
    discrepancies: List[OverlapDiscrepancy] = field(default_factory=list)
    failed_files: Dict[str, str] = field(default_factory=dict)
    reports: Dict[str, DecodeReport] = field(default_factory=dict, repr=False)

    def __iter__(self):
        return iter(self.entries)

    def __len__(self):
        return len(self.entries)

    def get(self, base_file: str) -> Optional[SyncEntry]:
        for entry in self.entries:
            if entry.base_file == base_file:
                return entry
        return None

    @property
    def rejected_files(self) -> List[str]:
        """Files whose tag data failed a structural decode check."""
        return [f for f, r in self.reports.items() if not r.ok]

    def summary(self) -> dict:
        return {
            "n_streams": self.n_streams,
            "n_base_files": len(self.entries),
            "n_matches": sum(e.n_matches for e in self.entries),
            "n_discrepancies": len(self.discrepancies),
            "n_failed_files": len(self.failed_files),
            "n_rejected_files": len(self.rejected_files),
            "n_skipped_candidates": sum(r.n_skipped for r in self.reports.values()),
            "n_bad_pulses": sum(r.n_bad_pulses for r in self.reports.values()),
        }

    def to_dict(self) -> dict:
        return {
            "n_streams": self.n_streams,
            "entries": [e.to_dict() for e in self.entries],
            "discrepancies": [d.to_dict() for d in self.discrepancies],
            "failed_files": dict(self.failed_files),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "SyncList":
        return cls(
            entries=[SyncEntry.from_dict(e) for e in d.get("entries", [])],
            n_streams=int(d.get("n_streams", 2)),
            discrepancies=[OverlapDiscrepancy.from_dict(x)
                           for x in d.get("discrepancies", [])],
            failed_files=dict(d.get("failed_files", {})),
        )

    def save(self, path: Union[str, Path]) -> None:
        """Save to a JSON file.  Decode reports are not saved."""
        path = Path(path)
        path.write_text(_json.dumps(self.to_dict(), indent=2))

    @classmethod
    def load(cls, path: Union[str, Path]) -> "SyncList":
        """Load from a JSON file written by :meth:`save`."""
        path = Path(path)
        return cls.from_dict(_json.loads(path.read_text()))

    def __repr__(self):
        s = self.summary()
        return (
            f"SyncList: {s['n_base_files']} base files, {s['n_matches']} "
            f"matches across {s['n_streams']} streams"
            f" ({s['n_discrepancies']} discrepancies)"
        )


def _sample_rate_ratio(base_overlap, match_overlap):
    base_span = base_overlap[1] - base_overlap[0]
    if base_span == 0:
        return math.nan
    return (match_overlap[1] - match_overlap[0]) / base_span


def build_sync_list(stream_tags: Sequence[Sequence[Tag]]):
    """Match base stream tags against every other stream by ID.

    Parameters
    ----------
    stream_tags : sequence of sequences of Tag
        Tags per stream, each attributed to its file.  Stream 0 is the base.

    Returns
    -------
    (list of SyncEntry, list of OverlapDiscrepancy)
    """
    if len(stream_tags) < 2:
        raise ValueError(f"Need at least 2 streams to synchronize, got {len(stream_tags)}")
    n_other = len(stream_tags) - 1

    by_id: List[Dict[int, List[Tag]]] = []
    for tags in stream_tags[1:]:
        index: Dict[int, List[Tag]] = {}
        for tag in tags:
            index.setdefault(tag.id, []).append(tag)
        by_id.append(index)

    entries: Dict[str, SyncEntry] = {}
    discrepancies: List[OverlapDiscrepancy] = []
    for base_tag in stream_tags[0]:
        for m in range(n_other):
            for match_tag in by_id[m].get(base_tag.id, []):
                result = overlap_segments(
                    (0, base_tag.source_file_length - 1),
                    (0, match_tag.source_file_length - 1),
                    (base_tag.start, base_tag.end),
                    (match_tag.start, match_tag.end),
                )
                if result is None:
                    # The tags match but the two files do not overlap
                    continue
                base_overlap, match_overlap = result

                entry = entries.get(base_tag.source_file)
                if entry is None:
                    entry = SyncEntry(base_file=base_tag.source_file,
                                      matches=[[] for _ in range(n_other)])
                    entries[base_tag.source_file] = entry
                matches = entry.matches[m]

                existing = next((x for x in matches
                                 if x.match_file == match_tag.source_file), None)
                if existing is None:
                    matches.append(Match(
                        base_file=base_tag.source_file,
                        match_file=match_tag.source_file,
                        base_overlap=base_overlap,
                        match_overlap=match_overlap,
                        sample_rate_ratio=_sample_rate_ratio(base_overlap, match_overlap),
                        base_file_length=base_tag.source_file_length,
                        match_file_length=match_tag.source_file_length,
                    ))
                elif (existing.base_overlap != tuple(base_overlap)
                      or existing.match_overlap != tuple(match_overlap)):
                    discrepancy = OverlapDiscrepancy(
                        tag_id=base_tag.id,
                        stream_index=m,
                        base_file=base_tag.source_file,
                        match_file=match_tag.source_file,
                        kept_base_overlap=existing.base_overlap,
                        kept_match_overlap=existing.match_overlap,
                        new_base_overlap=tuple(base_overlap),
                        new_match_overlap=tuple(match_overlap),
                    )
                    discrepancies.append(discrepancy)
                    logger.warning(
                        "Disagreement about file overlaps based on different "
                        "tags (%d) for %s / %s! Max discrepancy=%d",
                        base_tag.id, base_tag.source_file, match_tag.source_file,
                        discrepancy.max_delta,
                    )

    return list(entries.values()), discrepancies


def load_stream_tag_data(files: Sequence[str], parser: Callable):
    """Parse tag data from every file of one stream.

    A file the parser cannot read is logged and kept as a ``None`` entry, so
    it contributes no tags and is not used as decoding context.

    Returns
    -------
    (list of (file, ndarray or None), dict of file -> error message)
    """
    tag_data_set = []
    failed = {}
    for source_file in files:
        try:
            data = np.asarray(parser(source_file))
        except (ParserError, OSError) as exc:
            logger.warning("Could not read tag data from %s: %s", source_file, exc)
            failed[str(source_file)] = str(exc)
            data = None
        tag_data_set.append((str(source_file), data))
    return tag_data_set, failed


def sync_tag_streams(file_streams: Sequence[Sequence[str]],
                     file_parsers: Sequence[Callable],
                     n_bits=None, bit_order=DEFAULT_BIT_ORDER,
                     n_workers: Optional[int] = None,
                     report_dir=None) -> SyncList:
    """Create a synchronization list matching several file streams together.

    Parameters
    ----------
    file_streams : sequence of sequences of str
        One list of file paths per stream, each in recording order.  The
        first stream is the base stream.  Streams may have any number of
        files.
    file_parsers : sequence of callables
        One parser per stream; ``file_parsers[n](path)`` returns the 1-D
        binary tag data of that file.
    n_bits : int, optional
        Expected bits per tag; None accepts any bit count.
    bit_order : {"msb", "lsb"}
        Tag payload bit order.
    n_workers : int, optional
        Threads used to decode the files of each stream.
    report_dir : str or path-like, optional
        Write one match plot PNG per base file here (needs matplotlib).

    Returns
    -------
    SyncList

    Raises
    ------
    DuplicateTagError
        If a tag ID occurs more than once in one stream, other than as a
        tag split across two adjacent files.
    """
    if len(file_streams) != len(file_parsers):
        raise ValueError(
            f"Got {len(file_streams)} file streams but {len(file_parsers)} parsers"
        )
    for n, files in enumerate(file_streams):
        logger.info("%d files provided in stream #%d", len(files), n)

    stream_tag_data = []
    failed_files: Dict[str, str] = {}
    for n, (files, parser) in enumerate(zip(file_streams, file_parsers)):
        logger.info("Parsing stream #%d", n)
        tag_data_set, failed = load_stream_tag_data(files, parser)
        stream_tag_data.append(tag_data_set)
        failed_files.update(failed)

    stream_tags = []
    reports: Dict[str, DecodeReport] = {}
    for n, tag_data_set in enumerate(stream_tag_data):
        logger.info("Extracting tags from stream #%d", n)
        tags, stream_reports = extract_tags_from_dataset(
            tag_data_set, n_bits=n_bits, bit_order=bit_order, n_workers=n_workers)
        logger.info("Found %d tags in stream #%d", len(tags), n)
        stream_tags.append(tags)
        reports.update(stream_reports)

    entries, discrepancies = build_sync_list(stream_tags)
    sync_list = SyncList(
        entries=entries,
        n_streams=len(file_streams),
        discrepancies=discrepancies,
        failed_files=failed_files,
        reports=reports,
    )
    logger.info("%r", sync_list)

    if report_dir is not None:
        from .report import _try_generate_reports
        _try_generate_reports(sync_list, stream_tag_data, stream_tags, report_dir)

    return sync_list
