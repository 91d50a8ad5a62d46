"""tagsync: decode binary sync tags and align unsynchronized data streams."""

__version__ = "0.2.0"

from .decoders.pulses import PulseProfile, classify_pulses
from .decoders.tags import DecodeReport, Tag, decode_edges, find_tags
from .dataset import (
    TagDataWindow,
    extract_file_tags,
    extract_tags_from_dataset,
    find_duplicate_tags,
)
from .errors import (
    TagSyncError,
    StructuralDecodeError,
    CandidateTagError,
    ConsistencyError,
    DuplicateTagError,
    DegenerateReferenceError,
    ParserError,
)
from .mapping import MappedRange, map_data_streams
from .overlap import map_coordinate, overlap_segments
from .sync_list import (
    Match, SyncEntry, SyncList, OverlapDiscrepancy,
    build_sync_list, sync_tag_streams,
)
