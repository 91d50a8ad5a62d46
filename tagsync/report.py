"""Match plots for synchronized tag streams.

One PNG per base file: the base file's tag data on top, and below it every
matched file's tag data re-projected onto base sample indices, with decoded
tag IDs written over each tag.  Matching IDs line up vertically when the
synchronization is correct.

matplotlib is optional.  Without it, plotting is skipped with a warning and
synchronization is unaffected.
"""

import logging
from functools import partial
from pathlib import Path

import numpy as np

from .overlap import map_coordinate

logger = logging.getLogger(__name__)

try:
    import matplotlib
    matplotlib.use("Agg")  # non-interactive backend for PNG output
    import matplotlib.pyplot as plt
    HAS_MATPLOTLIB = True
except ImportError:
    HAS_MATPLOTLIB = False

# Vertical distance between stacked traces
_TRACE_STEP = 1.5


def _tag_data_for(file, tag_data_set):
    for source_file, data in tag_data_set:
        if source_file == file:
            return data
    return None


def _annotate_tags(ax, tags, y, to_base=None, x_range=None):
    for tag in tags:
        x = (tag.start + tag.end) / 2
        if to_base is not None:
            x = to_base(x)
        if x_range is not None and not x_range[0] <= x <= x_range[1]:
            continue
        ax.text(x, y, str(tag.id), ha="center", va="center", fontsize=8)


def plot_sync_entry(entry, stream_tag_data, stream_tags, output_path):
    """Plot one base file and all of its matched files.

    Parameters
    ----------
    entry : SyncEntry
        The base file's synchronization entry.
    stream_tag_data : list of list of (file, ndarray)
        Tag data per stream, as passed to the decoder.
    stream_tags : list of list of Tag
        Decoded tags per stream.
    output_path : str or path-like
        Path of the PNG to write.
    """
    if not HAS_MATPLOTLIB:
        logger.warning(
            "matplotlib not installed, skipping match plot. "
            "Install with: pip install matplotlib"
        )
        return

    base_data = _tag_data_for(entry.base_file, stream_tag_data[0])
    if base_data is None:
        logger.warning("No tag data for %s, skipping match plot", entry.base_file)
        return
    base_tags = [t for t in stream_tags[0] if t.source_file == entry.base_file]

    x_range = (
        min([t.start for t in base_tags] + [0]),
        max([t.end for t in base_tags] + [len(base_data) - 1]),
    )

    fig, ax = plt.subplots(figsize=(14, 3 + entry.n_matches))
    ax.plot(np.arange(len(base_data)), base_data.astype(np.float64),
            lw=0.8, label=Path(entry.base_file).name)
    _annotate_tags(ax, base_tags, 0.5)

    row = 0
    for m, matches in enumerate(entry.matches):
        for match in matches:
            row += 1
            match_data = _tag_data_for(match.match_file, stream_tag_data[m + 1])
            if match_data is None:
                continue
            lo, hi = match.match_overlap
            x = np.linspace(match.base_overlap[0], match.base_overlap[1], hi - lo + 1)
            y = match_data[lo:hi + 1].astype(np.float64) - _TRACE_STEP * row
            ax.plot(x, y, lw=0.8, label=Path(match.match_file).name)

            if hi <= lo:
                continue
            match_tags = [t for t in stream_tags[m + 1]
                          if t.source_file == match.match_file]
            to_base = partial(map_coordinate, ref_from=match.match_overlap,
                              ref_to=match.base_overlap)
            _annotate_tags(ax, match_tags, 0.5 - _TRACE_STEP * row,
                           to_base=to_base, x_range=x_range)

    ax.set_xlim(*x_range)
    ax.set_ylim(-0.5 - _TRACE_STEP * row, 1.5)
    ax.set_yticks([])
    ax.set_xlabel("Base file sample index")
    ax.legend(loc="upper right", fontsize=7)
    ax.set_title(f"Tag matches for {Path(entry.base_file).name}")

    fig.savefig(str(output_path), dpi=120, bbox_inches="tight")
    plt.close(fig)
    logger.info("Saved match plot to %s", output_path)


def _try_generate_reports(sync_list, stream_tag_data, stream_tags, report_dir):
    """Write one match plot per base file, never raising.

    Plotting must not block synchronization, so any failure is logged as a
    warning and the remaining plots are still attempted.
    """
    report_dir = Path(report_dir)
    try:
        report_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        logger.warning("Cannot create report directory %s", report_dir, exc_info=True)
        return
    for entry in sync_list:
        png_path = report_dir / (Path(entry.base_file).name + ".matches.png")
        try:
            plot_sync_entry(entry, stream_tag_data, stream_tags, png_path)
        except Exception:
            logger.warning("Failed to generate match plot at %s", png_path,
                           exc_info=True)
