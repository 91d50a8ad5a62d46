"""Exception hierarchy for sync tag decoding and stream synchronization.

Structural errors abort the decode of a single tag data vector, candidate
errors only ever skip one marker pair, consistency errors abort a whole
synchronization call.
"""


class TagSyncError(Exception):
    """Base class for all tagsync errors."""


# -- Decoding ------------------------------------------------------------------

class StructuralDecodeError(TagSyncError, ValueError):
    """A tag data vector cannot be decoded at all."""


class EdgeMismatchError(StructuralDecodeError):
    """Rising and falling edges still disagree after trimming partial pulses."""

    def __init__(self, n_rising, n_falling):
        self.n_rising = n_rising
        self.n_falling = n_falling
        super().__init__(
            f"Rising/falling edges do not match up ({n_rising} rising, "
            f"{n_falling} falling)"
        )


class PulseProfileError(StructuralDecodeError):
    """Pulse and marker widths are not reliable enough to decode tag IDs."""


class PoorSeparationError(PulseProfileError):
    """Pulse and marker width populations overlap."""


class HighVarianceError(PulseProfileError):
    """One width population varies too much relative to its mean."""

    def __init__(self, population, ratio, limit):
        self.population = population
        self.ratio = ratio
        self.limit = limit
        super().__init__(
            f"{population.capitalize()} widths have too much variation "
            f"(std/mean = {ratio:.3f} > {limit}). Tag IDs are unreliable."
        )


class CandidateTagError(TagSyncError):
    """A single marker pair does not hold a valid tag.  Always recoverable."""

    reason = "invalid_candidate"


class UnmirroredPayloadError(CandidateTagError):
    reason = "unmirrored_payload"


class NonIntegerBitGapError(CandidateTagError):
    reason = "non_integer_bit_gap"


class MirrorMismatchError(CandidateTagError):
    reason = "mirror_mismatch"


class WrongBitCountError(CandidateTagError):
    reason = "wrong_bit_count"


# -- Synchronization -----------------------------------------------------------

class ConsistencyError(TagSyncError):
    """Tag data from one run is internally inconsistent."""


class DuplicateTagError(ConsistencyError):
    """The same tag ID was found more than once in a single stream."""

    def __init__(self, tag_ids, files):
        self.tag_ids = sorted(set(tag_ids))
        self.files = sorted(set(files))
        super().__init__(
            f"Duplicate tag IDs {self.tag_ids} in files {self.files}. Make "
            f"sure only one run of data is synchronized at a time."
        )


class DegenerateReferenceError(TagSyncError, ValueError):
    """A reference interval has zero length, so no mapping is defined."""


# -- Readers -------------------------------------------------------------------

class ParserError(TagSyncError):
    """A collaborator reader could not produce tag data for a file."""


class UnreadableFileError(ParserError):
    pass


class MissingColumnError(ParserError):
    pass


class SchemaMismatchError(ParserError):
    pass
