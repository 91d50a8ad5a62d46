"""Pulse width classification into data pulses and tag markers.

Tag data holds two pulse populations: short "data" pulses one pulse width
long, and long marker pulses that delimit tags.  The widths are split at the
largest gap between sorted widths, which is deterministic and exact when only
two populations are present.  Each population is then cleaned of quartile
outliers and checked for separability and spread.
"""

import logging
from dataclasses import dataclass, field

import numpy as np

from ..errors import HighVarianceError, PoorSeparationError

logger = logging.getLogger(__name__)

# Largest accepted std/mean for either population
MAX_RELATIVE_SPREAD = 0.25

# Quartile outlier fence, in units of the interquartile range
OUTLIER_IQR_FACTOR = 1.5

PULSE_DATA = 0
PULSE_MARKER = 1


@dataclass(frozen=True)
class PulseProfile:
    """Robust width statistics of one tag data vector, in samples."""

    pulse_width: float
    marker_width: float
    pulse_std: float
    marker_std: float


@dataclass
class PulseClassification:
    """Result of :func:`classify_pulses`.

    ``kinds`` holds one code per input pulse (``PULSE_DATA`` or
    ``PULSE_MARKER``).  Outliers stay classified; their original pulse
    indices are listed in ``bad_pulse_idx`` / ``bad_marker_idx``.
    """

    profile: PulseProfile
    kinds: np.ndarray
    bad_pulse_idx: np.ndarray = field(repr=False)
    bad_marker_idx: np.ndarray = field(repr=False)

    @property
    def marker_idx(self):
        return np.flatnonzero(self.kinds == PULSE_MARKER)


def remove_outliers(values, factor=OUTLIER_IQR_FACTOR):
    """Quartile-based outlier removal.

    Returns ``(kept_values, outlier_mask)`` where values outside
    ``[Q1 - factor*IQR, Q3 + factor*IQR]`` are outliers.
    """
    values = np.asarray(values, dtype=np.float64)
    if len(values) == 0:
        return values, np.zeros(0, dtype=bool)
    q1, q3 = np.percentile(values, [25, 75])
    iqr = q3 - q1
    outliers = (values < q1 - factor * iqr) | (values > q3 + factor * iqr)
    return values[~outliers], outliers


def _mean_std(values):
    """Mean and sample standard deviation (0 for a single value)."""
    mean = float(np.mean(values))
    std = float(np.std(values, ddof=1)) if len(values) > 1 else 0.0
    return mean, std


def split_widths(pulse_widths):
    """Split widths into two populations at the largest gap.

    Returns a bool array, True for the wider population.

    Raises
    ------
    PoorSeparationError
        If all pulses have the same width.
    """
    widths = np.asarray(pulse_widths, dtype=np.float64)
    ordered = np.sort(widths)
    gaps = np.diff(ordered)
    split = int(np.argmax(gaps))
    if gaps[split] <= 0:
        raise PoorSeparationError(
            f"All {len(widths)} pulses are {ordered[0]:g} samples wide; no "
            f"marker population found"
        )
    threshold = (ordered[split] + ordered[split + 1]) / 2
    return widths > threshold


def classify_pulses(pulse_widths, max_relative_spread=MAX_RELATIVE_SPREAD,
                    outlier_factor=OUTLIER_IQR_FACTOR):
    """Classify pulses as data pulses or markers and fit a :class:`PulseProfile`.

    Parameters
    ----------
    pulse_widths : array-like
        Width of every pulse in samples, in recording order.  Needs at
        least 2 entries.
    max_relative_spread : float
        Largest accepted ``std / mean`` for either population.
    outlier_factor : float
        IQR multiple for the quartile outlier fence.

    Returns
    -------
    PulseClassification

    Raises
    ------
    PoorSeparationError
        If ``pulse_width + pulse_std > marker_width - marker_std``.
    HighVarianceError
        If either population's ``std / mean`` exceeds *max_relative_spread*.
    """
    widths = np.asarray(pulse_widths, dtype=np.float64)
    if len(widths) < 2:
        raise ValueError("Need at least 2 pulses to classify pulse widths")

    is_marker = split_widths(widths)
    pulse_pos = np.flatnonzero(~is_marker)
    marker_pos = np.flatnonzero(is_marker)

    pulse_kept, pulse_out = remove_outliers(widths[pulse_pos], outlier_factor)
    marker_kept, marker_out = remove_outliers(widths[marker_pos], outlier_factor)

    pulse_width, pulse_std = _mean_std(pulse_kept)
    marker_width, marker_std = _mean_std(marker_kept)
    profile = PulseProfile(
        pulse_width=pulse_width,
        marker_width=marker_width,
        pulse_std=pulse_std,
        marker_std=marker_std,
    )

    bad_pulse_idx = pulse_pos[pulse_out]
    bad_marker_idx = marker_pos[marker_out]
    if len(bad_pulse_idx):
        logger.warning("%d non-standard-width pulses found", len(bad_pulse_idx))
    if len(bad_marker_idx):
        logger.warning("%d non-standard-width markers found", len(bad_marker_idx))

    if pulse_width + pulse_std > marker_width - marker_std:
        raise PoorSeparationError(
            f"Marker widths ({marker_width:.2f} +/- {marker_std:.2f}) and pulse "
            f"widths ({pulse_width:.2f} +/- {pulse_std:.2f}) are not well "
            f"separated. Tag IDs are unreliable."
        )
    for population, mean, std in (("pulse", pulse_width, pulse_std),
                                  ("marker", marker_width, marker_std)):
        ratio = std / mean
        if ratio > max_relative_spread:
            raise HighVarianceError(population, ratio, max_relative_spread)

    kinds = np.where(is_marker, PULSE_MARKER, PULSE_DATA).astype(np.int8)
    return PulseClassification(
        profile=profile,
        kinds=kinds,
        bad_pulse_idx=bad_pulse_idx,
        bad_marker_idx=bad_marker_idx,
    )
