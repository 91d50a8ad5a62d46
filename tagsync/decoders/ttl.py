import numpy as np

from ..errors import EdgeMismatchError


def auto_threshold(signal, n_bins=256):
    """Level separating the low and high states of an analog tag channel.

    Otsu's method on a histogram spanning the channel's range.  A clean tag
    channel sits at two levels with nothing in between, which makes the
    between-class variance flat across the whole gap; the threshold is then
    put in the middle of that plateau so noise on either level stays on its
    own side.  A channel holding one level only returns that level.
    """
    signal = np.asarray(signal, dtype=np.float64).ravel()
    signal = signal[np.isfinite(signal)]
    if signal.size == 0:
        return 0.0
    lo, hi = float(signal.min()), float(signal.max())
    if lo == hi:
        return lo

    counts, bin_edges = np.histogram(signal, bins=n_bins, range=(lo, hi))
    levels = (bin_edges[:-1] + bin_edges[1:]) / 2

    # Splitting after bin k puts bins [0, k] in the low state
    n_low = np.cumsum(counts)[:-1]
    n_high = signal.size - n_low
    sum_low = np.cumsum(counts * levels)[:-1]
    mean_low = sum_low / np.maximum(n_low, 1)
    mean_high = (sum_low[-1] + counts[-1] * levels[-1] - sum_low) / np.maximum(n_high, 1)
    between = np.where((n_low > 0) & (n_high > 0),
                       n_low * n_high * (mean_high - mean_low) ** 2, 0.0)

    plateau = np.flatnonzero(between >= between.max() * (1 - 1e-9))
    k = int(plateau[len(plateau) // 2])
    return float(bin_edges[k + 1])


def binarize(signal, threshold=None):
    """Convert a tag channel to a bool array.

    Data that already only holds 0/1 (or bools) is passed through.  Anything
    else is thresholded, with :func:`auto_threshold` when *threshold* is None.
    """
    signal = np.asarray(signal)
    if signal.dtype == np.bool_:
        return signal
    if threshold is None:
        if signal.size == 0 or np.all((signal == 0) | (signal == 1)):
            return signal.astype(np.bool_)
        threshold = auto_threshold(signal)
    return signal >= threshold


def detect_edges(tag_data):
    """Return ``(rising_edges, falling_edges)`` of a binary vector.

    A rising edge index is the first high sample after a run of low samples.
    A falling edge index is the last high sample before a run of low samples.
    A high first sample is never a rising edge and a high last sample is
    never a falling edge.  Any nonzero sample counts as high.
    """
    binary = np.asarray(tag_data).astype(np.bool_).astype(np.int8)
    if binary.ndim != 1:
        raise ValueError(f"tag data must be 1-D, got shape {binary.shape}")
    diff = np.diff(binary)
    rising_edges = np.flatnonzero(diff == 1) + 1
    falling_edges = np.flatnonzero(diff == -1)
    return rising_edges.astype(np.int64), falling_edges.astype(np.int64)


def pair_edges(rising_edges, falling_edges):
    """Trim partial pulses at both ends and check the edges pair up.

    A leading falling edge (the data starts mid-pulse) and a trailing rising
    edge (the data ends mid-pulse) are discarded.

    Raises
    ------
    EdgeMismatchError
        If the edge counts still disagree after trimming.
    """
    rising_edges = np.asarray(rising_edges, dtype=np.int64)
    falling_edges = np.asarray(falling_edges, dtype=np.int64)
    if len(rising_edges) == 0 or len(falling_edges) == 0:
        return (np.array([], dtype=np.int64), np.array([], dtype=np.int64))

    if falling_edges[0] < rising_edges[0]:
        falling_edges = falling_edges[1:]
    if len(rising_edges) and (len(falling_edges) == 0
                              or rising_edges[-1] > falling_edges[-1]):
        rising_edges = rising_edges[:-1]

    if len(rising_edges) != len(falling_edges):
        raise EdgeMismatchError(len(rising_edges), len(falling_edges))
    if len(rising_edges) and np.any(falling_edges < rising_edges):
        raise EdgeMismatchError(len(rising_edges), len(falling_edges))
    return rising_edges, falling_edges


def measure_pulse_widths(rising_edges, falling_edges):
    """Width in samples of each paired pulse, ``fall - rise + 1``."""
    return (np.asarray(falling_edges, dtype=np.int64)
            - np.asarray(rising_edges, dtype=np.int64) + 1)
