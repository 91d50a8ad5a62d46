"""Projecting sample ranges from a base file onto matched files."""

import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .overlap import overlap_segments

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MappedRange:
    """An inclusive 0-based index range in one matched file."""

    match_file: str
    match_index_range: Tuple[int, int]


def map_data_streams(sync_list, base_file: str, base_index_range: Sequence[int],
                     stream_index: int = 0) -> List[MappedRange]:
    """Map a range of samples in a base file onto the matching stream.

    Parameters
    ----------
    sync_list : SyncList or iterable of SyncEntry
        Output of :func:`~tagsync.sync_list.sync_tag_streams`.
    base_file : str
        Base file the range refers to.
    base_index_range : (lo, hi)
        Inclusive 0-based sample range in *base_file*.
    stream_index : int
        Which non-base stream to map onto; 0 is the first stream after the
        base stream.

    Returns
    -------
    list of MappedRange
        One per matched file the range overlaps, in match order.  Empty if
        the base file has no matches.  Matches that share a single sample
        with the base file are left out.
    """
    entry = next((e for e in sync_list if e.base_file == base_file), None)
    if entry is None:
        logger.warning("No synchronization entry for base file %s", base_file)
        return []

    mapped = []
    for match in entry.stream_matches(stream_index):
        if (match.base_overlap[1] == match.base_overlap[0]
                or match.match_overlap[1] == match.match_overlap[0]):
            # A single shared sample gives no rate to map with
            logger.debug("Skipping single-sample match %s -> %s",
                         match.base_file, match.match_file)
            continue
        result = overlap_segments(
            base_index_range,
            (0, match.match_file_length - 1),
            match.base_overlap,
            match.match_overlap,
        )
        if result is None:
            continue
        _, match_range = result
        mapped.append(MappedRange(match.match_file, match_range))
    return mapped
