"""Tag extraction across the consecutive files of one data stream.

A tag that straddles a file boundary is cut in two, so each file is decoded
with the full previous and next files as context.  The decoded tags are then
attributed to the file if they overlap its own sample range, which means a
boundary tag is found once in each of the two files it touches.  Those
boundary instances are the only tolerated repetition of a tag ID in one run.
"""

import logging
import os
from multiprocessing.pool import ThreadPool
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .decoders.tags import DEFAULT_BIT_ORDER, DecodeReport, Tag, decode_edges
from .decoders.ttl import detect_edges
from .errors import DuplicateTagError, StructuralDecodeError
from .overlap import intervals_overlap

logger = logging.getLogger(__name__)


class TagDataWindow:
    """One file's tag data, viewed together with its neighbouring files.

    The three segments are never concatenated.  Edges are detected inside
    each segment and at the two junctions, then shifted into the coordinates
    of the virtual ``previous + current + next`` arena.  ``offset`` is where
    the current file starts in that arena.
    """

    def __init__(self, current, previous=None, following=None):
        self.current = np.asarray(current)
        self.previous = None if previous is None else np.asarray(previous)
        self.following = None if following is None else np.asarray(following)

    @property
    def segments(self) -> List[np.ndarray]:
        return [s for s in (self.previous, self.current, self.following)
                if s is not None and len(s) > 0]

    @property
    def offset(self) -> int:
        return 0 if self.previous is None else len(self.previous)

    @property
    def file_length(self) -> int:
        return len(self.current)

    def __len__(self):
        return sum(len(s) for s in self.segments)

    def detect_edges(self) -> Tuple[np.ndarray, np.ndarray]:
        """Rising and falling edges in arena coordinates, in order."""
        rising, falling = [], []
        start = 0
        last_sample = None
        for seg in self.segments:
            first_sample = bool(seg[0])
            if last_sample is not None:
                if first_sample and not last_sample:
                    rising.append(np.array([start], dtype=np.int64))
                elif last_sample and not first_sample:
                    falling.append(np.array([start - 1], dtype=np.int64))
            seg_rising, seg_falling = detect_edges(seg)
            rising.append(seg_rising + start)
            falling.append(seg_falling + start)
            start += len(seg)
            last_sample = bool(seg[-1])
        if not rising:
            empty = np.array([], dtype=np.int64)
            return empty, empty.copy()
        return np.concatenate(rising), np.concatenate(falling)

    def find_tags(self, n_bits=None, max_tags=None, bit_order=DEFAULT_BIT_ORDER):
        """Decode every tag in the window, positions relative to the current file."""
        rising, falling = self.detect_edges()
        return decode_edges(rising, falling, n_bits=n_bits, max_tags=max_tags,
                            offset=self.offset, bit_order=bit_order)


def extract_file_tags(window: TagDataWindow, source_file: str, n_bits=None,
                      bit_order=DEFAULT_BIT_ORDER) -> Tuple[List[Tag], DecodeReport]:
    """Decode one file's window and keep the tags that overlap the file.

    A structural decode failure is logged and recorded on the returned
    report; the file then contributes no tags.
    """
    file_length = window.file_length
    try:
        tags, report = window.find_tags(n_bits=n_bits, bit_order=bit_order)
    except StructuralDecodeError as exc:
        logger.error("Could not decode tag data in %s: %s", source_file, exc)
        return [], DecodeReport(rejection=exc)

    if file_length == 0:
        kept = []
    else:
        kept = [
            tag.in_file(source_file, file_length)
            for tag in tags
            if intervals_overlap((tag.start, tag.end), (0, file_length - 1))
        ]
    report.n_tags = len(kept)
    return kept, report


def are_tags_duplicates(t1: Tag, t2: Tag) -> bool:
    """True if two tags with the same ID cannot be one boundary-split tag.

    Two instances in the same file are always duplicates.  Instances in
    different files are tolerated only when one runs off the end of its file
    and the other runs off the start of its file.
    """
    if t1.id != t2.id:
        return False
    if t1.source_file == t2.source_file:
        return True
    split_across = (
        (t1.start < 0 and t2.end > t2.source_file_length - 1)
        or (t2.start < 0 and t1.end > t1.source_file_length - 1)
    )
    return not split_across


def find_duplicate_tags(tags: Sequence[Tag]) -> List[Tuple[Tag, Tag]]:
    """All pairs of tags that violate the one-instance-per-ID rule, in order."""
    by_id: Dict[int, List[Tag]] = {}
    for tag in tags:
        by_id.setdefault(tag.id, []).append(tag)

    duplicates = []
    for same_id in by_id.values():
        for i, t1 in enumerate(same_id):
            for t2 in same_id[i + 1:]:
                if are_tags_duplicates(t1, t2):
                    duplicates.append((t1, t2))
    return duplicates


def _decode_one(args):
    window, source_file, n_bits, bit_order = args
    logger.debug("Finding tags for %s", os.path.basename(source_file))
    tags, report = extract_file_tags(window, source_file, n_bits=n_bits,
                                     bit_order=bit_order)
    logger.info("Found %d tags in %s", len(tags), os.path.basename(source_file))
    return tags, report


def extract_tags_from_dataset(tag_data_set: Sequence[Tuple[str, Optional[np.ndarray]]],
                              n_bits=None, bit_order=DEFAULT_BIT_ORDER,
                              n_workers: Optional[int] = None,
                              check_duplicates: bool = True):
    """Extract tags from a set of tag data vectors from consecutive files.

    Parameters
    ----------
    tag_data_set : sequence of (file, tag_data)
        Files of one stream in recording order.  ``tag_data`` is None for a
        file that could not be read; it contributes no tags and is not used
        as context for its neighbours.
    n_bits : int, optional
        Expected bits per tag; None accepts any.
    n_workers : int, optional
        Decode files on a pool of this many threads.  Results are always
        collected in file order.
    check_duplicates : bool
        Raise :class:`DuplicateTagError` if a tag ID occurs more than once
        other than as a boundary-split tag.

    Returns
    -------
    (list of Tag, dict of file -> DecodeReport)
    """
    jobs = []
    for k, (source_file, data) in enumerate(tag_data_set):
        if data is None:
            continue
        previous = tag_data_set[k - 1][1] if k > 0 else None
        following = tag_data_set[k + 1][1] if k + 1 < len(tag_data_set) else None
        window = TagDataWindow(data, previous=previous, following=following)
        jobs.append((window, source_file, n_bits, bit_order))

    if n_workers and n_workers > 1 and len(jobs) > 1:
        with ThreadPool(min(n_workers, len(jobs))) as pool:
            results = pool.map(_decode_one, jobs)
    else:
        results = [_decode_one(job) for job in jobs]

    tags: List[Tag] = []
    reports: Dict[str, DecodeReport] = {}
    for (_, source_file, _, _), (file_tags, report) in zip(jobs, results):
        tags.extend(file_tags)
        reports[source_file] = report

    if check_duplicates:
        logger.debug("Checking for duplicated tags")
        duplicates = find_duplicate_tags(tags)
        if duplicates:
            raise DuplicateTagError(
                [t.id for pair in duplicates for t in pair],
                [t.source_file for pair in duplicates for t in pair],
            )
    return tags, reports
