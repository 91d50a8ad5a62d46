"""Segment overlap algebra.

Two coordinate systems A and B (e.g. sample indices of two files recorded at
different rates) are linked by an affine map, defined by a pair of reference
intervals that cover the same physical span in each system.  The functions
here intersect segments across such a pair and map coordinates between them.

Rounded outputs use round-half-to-even (``numpy.rint``).
"""

from typing import Optional, Sequence, Tuple

import numpy as np

from .errors import DegenerateReferenceError

Segment = Tuple[float, float]

_UNIT = (0.0, 1.0)


def _as_segment(seg: Sequence[float], name: str) -> Tuple[float, float]:
    if len(seg) != 2:
        raise ValueError(f"{name} must have exactly 2 elements, got {len(seg)}")
    lo, hi = float(seg[0]), float(seg[1])
    if hi < lo:
        raise ValueError(f"{name} must satisfy hi >= lo, got [{lo}, {hi}]")
    return lo, hi


def _slope(ref_to: Segment, ref_from: Segment) -> float:
    span_from = ref_from[1] - ref_from[0]
    if span_from == 0:
        raise DegenerateReferenceError(
            f"Reference interval [{ref_from[0]}, {ref_from[1]}] has zero length"
        )
    return (ref_to[1] - ref_to[0]) / span_from


def map_coordinate(x, ref_from: Sequence[float], ref_to: Sequence[float]):
    """Map *x* (scalar or array) from the *ref_from* frame into *ref_to*.

    ``ref_from`` and ``ref_to`` are corresponding intervals in the two
    coordinate systems.  The map is ``(x - ref_from.lo) * slope + ref_to.lo``.
    """
    ref_from = _as_segment(ref_from, "ref_from")
    ref_to = _as_segment(ref_to, "ref_to")
    slope = _slope(ref_to, ref_from)
    x = np.asarray(x, dtype=np.float64)
    # Anchor at the low end of the reference so small offsets stay exact for
    # slopes far from 1.
    mapped = (x - ref_from[0]) * slope + ref_to[0]
    return float(mapped) if mapped.ndim == 0 else mapped


def intersect(seg_a: Sequence[float], seg_b: Sequence[float]) -> Optional[Segment]:
    """Intersect two closed intervals in the same coordinate system.

    Returns ``None`` when they are disjoint.  Touching endpoints count as an
    overlap of length zero.
    """
    lo = max(seg_a[0], seg_b[0])
    hi = min(seg_a[1], seg_b[1])
    if lo > hi:
        return None
    return lo, hi


def overlap_segments(
    seg_a: Sequence[float],
    seg_b: Sequence[float],
    ref_a: Sequence[float] = _UNIT,
    ref_b: Sequence[float] = _UNIT,
    round_outputs: bool = True,
) -> Optional[Tuple[Segment, Segment]]:
    """Find the overlapping parts of *seg_a* and *seg_b*.

    Parameters
    ----------
    seg_a, seg_b : pair of numbers
        Closed intervals, *seg_a* in coordinate system A and *seg_b* in
        coordinate system B.
    ref_a, ref_b : pair of numbers
        Corresponding reference intervals defining the affine map between
        A and B.  Default ``(0, 1)`` for both, i.e. the identity map, which
        turns this into a plain interval intersection.
    round_outputs : bool
        Round both outputs to the nearest integer (half to even).

    Returns
    -------
    tuple of (overlap_a, overlap_b) or None
        The intersection expressed in A's coordinates and the same span in
        B's coordinates.  ``None`` if the segments do not overlap.

    Raises
    ------
    ValueError
        If any interval is malformed (wrong length, or hi < lo).
    DegenerateReferenceError
        If either reference interval has zero length.
    """
    seg_a = _as_segment(seg_a, "seg_a")
    seg_b = _as_segment(seg_b, "seg_b")
    ref_a = _as_segment(ref_a, "ref_a")
    ref_b = _as_segment(ref_b, "ref_b")

    slope_b_to_a = _slope(ref_a, ref_b)
    slope_a_to_b = _slope(ref_b, ref_a)

    seg_b_in_a = (
        (seg_b[0] - ref_b[0]) * slope_b_to_a + ref_a[0],
        (seg_b[1] - ref_b[0]) * slope_b_to_a + ref_a[0],
    )

    overlap_a = intersect(seg_a, seg_b_in_a)
    if overlap_a is None:
        return None

    overlap_b = (
        (overlap_a[0] - ref_a[0]) * slope_a_to_b + ref_b[0],
        (overlap_a[1] - ref_a[0]) * slope_a_to_b + ref_b[0],
    )

    if round_outputs:
        overlap_a = (int(np.rint(overlap_a[0])), int(np.rint(overlap_a[1])))
        overlap_b = (int(np.rint(overlap_b[0])), int(np.rint(overlap_b[1])))
    return overlap_a, overlap_b


def intervals_overlap(seg_a: Sequence[float], seg_b: Sequence[float]) -> bool:
    """True if two intervals in the same coordinate system overlap."""
    return overlap_segments(seg_a, seg_b, round_outputs=False) is not None
