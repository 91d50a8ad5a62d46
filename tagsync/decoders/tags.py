"""Binary synchronization tag decoding.

A sync tag is a self-delimited, mirrored binary number on a digital channel::

    1_       ________   _       _         _   _   _     ________
    0_  ____|        |_| |_____| |__ ... | |_| |_| |___|        |______

            |<== M1 ==>|<====== forward ======>|<== mirror ==>|<== M2 ==>|

- M1, the start marker: one long high period, then one pulse width low.
- The payload: a series of bits, each two pulse widths long.  An "on" bit is
  one pulse width high then one low, an "off" bit is two pulse widths low.
  The payload is transmitted forward, then sample-reversed ("mirrored"), so
  both halves must decode to the same number.
- M2, the end marker: one pulse width low, then a long high period.

Bit positions are recovered from the rising-edge timing of the payload pulses
relative to the marker edges, so only "on" bits need to produce a pulse.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

import numpy as np

from ..errors import (
    CandidateTagError,
    MirrorMismatchError,
    NonIntegerBitGapError,
    PulseProfileError,
    UnmirroredPayloadError,
    WrongBitCountError,
)
from .pulses import PulseProfile, classify_pulses
from .ttl import detect_edges, measure_pulse_widths, pair_edges

logger = logging.getLogger(__name__)

# Largest accepted distance of a bit gap from a whole number of bits
BIT_GAP_TOLERANCE = 0.2

BIT_ORDERS = ("msb", "lsb")
DEFAULT_BIT_ORDER = "msb"


@dataclass(frozen=True)
class Tag:
    """One decoded sync tag.

    ``start`` is the first high sample of the start marker and ``end`` the
    last high sample of the end marker, both 0-based in the frame of
    ``source_file`` once the tag has been attributed to a file.
    """

    id: int
    start: int
    end: int
    source_file: Optional[str] = None
    source_file_length: Optional[int] = None

    @property
    def is_partial(self) -> bool:
        """True if the tag runs over either end of its own file."""
        if self.source_file_length is None:
            return False
        return self.start < 0 or self.end > self.source_file_length - 1

    def in_file(self, source_file: str, source_file_length: int) -> "Tag":
        return replace(self, source_file=source_file,
                       source_file_length=int(source_file_length))


@dataclass
class DecodeReport:
    """Diagnostics gathered while decoding one tag data vector."""

    n_pulses: int = 0
    profile: Optional[PulseProfile] = None
    bad_pulse_idx: np.ndarray = field(
        default_factory=lambda: np.array([], dtype=np.int64), repr=False)
    bad_marker_idx: np.ndarray = field(
        default_factory=lambda: np.array([], dtype=np.int64), repr=False)
    n_candidates: int = 0
    skipped: Dict[str, int] = field(default_factory=dict)
    n_tags: int = 0
    rejection: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.rejection is None

    @property
    def n_bad_pulses(self) -> int:
        return len(self.bad_pulse_idx)

    @property
    def n_bad_markers(self) -> int:
        return len(self.bad_marker_idx)

    @property
    def n_skipped(self) -> int:
        return sum(self.skipped.values())

    def count_skip(self, reason: str) -> None:
        self.skipped[reason] = self.skipped.get(reason, 0) + 1

    def summary(self) -> Dict:
        return {
            "n_pulses": self.n_pulses,
            "n_tags": self.n_tags,
            "n_candidates": self.n_candidates,
            "n_bad_pulses": self.n_bad_pulses,
            "n_bad_markers": self.n_bad_markers,
            "skipped": dict(self.skipped),
            "rejection": str(self.rejection) if self.rejection else None,
        }


def _expected_bits(n_bits):
    if n_bits is None:
        return None
    if isinstance(n_bits, float):
        if np.isnan(n_bits):
            return None
        if not n_bits.is_integer():
            raise ValueError(f"n_bits must be a whole number, got {n_bits}")
    return int(n_bits)


def count_bit_gap(delta, pulse_width):
    """Number of whole bits that fit in the gap between two "on" bit edges.

    Raises
    ------
    NonIntegerBitGapError
        If the gap is not within ``BIT_GAP_TOLERANCE`` of a whole number of
        bits.
    """
    if delta == 0:
        return 0
    n_bits = delta / (2 * pulse_width) - 1
    n_round = int(round(n_bits))
    if abs(n_round - n_bits) > BIT_GAP_TOLERANCE or n_round < 0:
        raise NonIntegerBitGapError(
            f"Non-integer number of bits ({n_bits:.3f}) found in tag data"
        )
    return n_round


def read_bit_slots(rising_edges, start_time, end_time, pulse_width):
    """Locate the "on" bits of one payload half.

    *start_time* is one bit period before the first bit slot; *end_time* is
    one bit period after the last slot's rising edge position.

    Returns ``(slots, n_bits)``: the slot index of every on bit, in
    transmission order, and the total number of bit slots.
    """
    slots = []
    next_slot = 0
    last_time = start_time
    for t in rising_edges:
        slot = next_slot + count_bit_gap(t - last_time, pulse_width)
        slots.append(slot)
        next_slot = slot + 1
        last_time = t
    n_bits = next_slot + count_bit_gap(end_time - last_time, pulse_width)
    return slots, n_bits


def pack_bits(slots, n_bits, bit_order=DEFAULT_BIT_ORDER):
    """Accumulate on-bit slots into an integer.

    With ``bit_order="msb"`` slot 0 is the most significant of *n_bits* bits,
    with ``"lsb"`` it is the least significant.
    """
    value = 0
    for slot in slots:
        shift = n_bits - 1 - slot if bit_order == "msb" else slot
        value |= 1 << shift
    return value


def decode_payload(payload_rising_edges, marker_fall, next_marker_rise,
                   pulse_width, n_bits=None, bit_order=DEFAULT_BIT_ORDER):
    """Decode the mirrored payload between two markers into a tag ID.

    Parameters
    ----------
    payload_rising_edges : array-like
        Rising edges of the data pulses between the two markers.
    marker_fall : int
        Falling edge (last high sample) of the start marker.
    next_marker_rise : int
        Rising edge of the end marker.
    pulse_width : float
        Fitted data pulse width in samples.

    Raises
    ------
    CandidateTagError
        Subclass describing why the payload is not a valid tag.
    """
    rises = np.asarray(payload_rising_edges, dtype=np.float64)
    if len(rises) % 2 != 0:
        raise UnmirroredPayloadError(
            f"Tag is invalid - {len(rises)} data pulses, not mirrored")
    half = len(rises) // 2

    data_start = marker_fall + pulse_width + 1
    data_end = next_marker_rise - pulse_width
    data_mid = (data_start + data_end) / 2

    fwd_slots, fwd_bits = read_bit_slots(
        rises[:half], data_start - 2 * pulse_width, data_mid, pulse_width)
    # Mirrored "on" bits are sample-reversed, so their rising edge sits one
    # pulse width into the bit slot.
    mir_slots, mir_bits = read_bit_slots(
        rises[half:], data_mid - pulse_width, data_end + pulse_width,
        pulse_width)

    if n_bits is not None and fwd_bits != n_bits:
        raise WrongBitCountError(
            f"Wrong # of bits ({fwd_bits} != {n_bits}) - possibly data missing")

    tag_id = pack_bits(fwd_slots, fwd_bits, bit_order)
    mirrored = [mir_bits - 1 - slot for slot in reversed(mir_slots)]
    tag_id_mirror = pack_bits(mirrored, mir_bits, bit_order)
    if fwd_bits != mir_bits or tag_id != tag_id_mirror:
        raise MirrorMismatchError(
            f"Mirrored tag data does not match! {tag_id} != {tag_id_mirror}")
    return tag_id


def decode_edges(rising_edges, falling_edges, n_bits=None, max_tags=None,
                 offset=0, bit_order=DEFAULT_BIT_ORDER):
    """Decode tags from the paired edges of a binary tag data vector.

    Returns ``(tags, report)``.  Pulse statistics that are too poor to trust
    are reported in ``report.rejection`` with no tags returned.
    """
    if bit_order not in BIT_ORDERS:
        raise ValueError(f"bit_order must be one of {BIT_ORDERS}, got {bit_order!r}")
    n_bits = _expected_bits(n_bits)
    if max_tags is not None and not np.isfinite(max_tags):
        max_tags = None

    rising, falling = pair_edges(rising_edges, falling_edges)
    widths = measure_pulse_widths(rising, falling)

    report = DecodeReport(n_pulses=len(widths))
    tags: List[Tag] = []
    if len(widths) < 2:
        return tags, report

    try:
        classification = classify_pulses(widths)
    except PulseProfileError as exc:
        logger.error("Rejecting tag data (%d pulses): %s", len(widths), exc)
        report.rejection = exc
        return tags, report

    profile = classification.profile
    report.profile = profile
    report.bad_pulse_idx = classification.bad_pulse_idx
    report.bad_marker_idx = classification.bad_marker_idx

    marker_idx = classification.marker_idx
    for m1, m2 in zip(marker_idx[:-1], marker_idx[1:]):
        if m2 - m1 < 2:
            # Adjacent markers (end of one tag, start of the next)
            continue
        report.n_candidates += 1
        try:
            tag_id = decode_payload(
                rising[m1 + 1:m2], falling[m1], rising[m2],
                profile.pulse_width, n_bits=n_bits, bit_order=bit_order)
        except CandidateTagError as exc:
            report.count_skip(exc.reason)
            logger.debug("Skipping tag candidate at sample %d: %s",
                         rising[m1] - offset, exc)
            continue

        tags.append(Tag(
            id=tag_id,
            start=int(rising[m1]) - offset,
            end=int(falling[m2]) - offset,
        ))
        if max_tags is not None and len(tags) >= max_tags:
            break

    report.n_tags = len(tags)
    if report.n_skipped:
        logger.info("Skipped %d of %d tag candidates: %s", report.n_skipped,
                    report.n_candidates, report.skipped)
    return tags, report


def find_tags(tag_data, n_bits=None, max_tags=None, offset=0,
              bit_order=DEFAULT_BIT_ORDER):
    """Find binary synchronization tags in a vector of digital data.

    Parameters
    ----------
    tag_data : array-like
        1-D tag data; anything that evaluates to 0/1.
    n_bits : int, optional
        Expected number of bits per tag.  Tags with any other bit count
        are skipped (likely truncated by missing data).  None or NaN accepts
        any bit count.
    max_tags : int, optional
        Stop after this many tags.  None or inf finds all tags.
    offset : int
        Subtracted from every emitted position; used when *tag_data* has been
        padded with data preceding the file of interest.
    bit_order : {"msb", "lsb"}
        Significance of the first bit slot after the start marker.

    Returns
    -------
    (list of Tag, DecodeReport)

    Raises
    ------
    EdgeMismatchError
        If the edges cannot be paired into pulses.
    """
    rising, falling = detect_edges(tag_data)
    return decode_edges(rising, falling, n_bits=n_bits, max_tags=max_tags,
                        offset=offset, bit_order=bit_order)
