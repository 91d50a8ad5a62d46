"""Test data generators for tagsync.

``make_sync_tag`` synthesizes binary tag data in the on-the-wire format:
start marker, forward payload, sample-reversed payload, end marker.  It
returns the exact span of every tag so tests can check decoded positions.
"""

import numpy as np
import pytest

PAD = 20


def _segment(value, length, jitter, rng):
    if jitter:
        length = max(0, int(round(rng.normal(length, jitter))))
    return np.full(length, value, dtype=bool)


def _payload_bits(tag_id, n_bits, bit_order):
    bits = [(tag_id >> (n_bits - 1 - k)) & 1 for k in range(n_bits)]
    return bits if bit_order == "msb" else bits[::-1]


def make_sync_tag(tag_ids, pulse_width=10, marker_duration=5, n_bits=None,
                  gap=10, jitter=0.0, rng=None, mirrored=True,
                  bit_order="msb", mirror_ids=None):
    """Generate tag data for *tag_ids*.

    Parameters
    ----------
    tag_ids : list of int
    pulse_width : int
        Samples per pulse width.
    marker_duration : int
        Marker high time in pulse widths.
    n_bits : int, optional
        Bits per tag; defaults to enough for the largest ID.
    gap : int
        Low time between tags, in pulse widths.
    jitter : float
        Standard deviation in samples added to every segment length.
    mirrored : bool
        Append the sample-reversed payload.
    mirror_ids : list of int, optional
        Encode these IDs in the mirrored halves instead (for corruption
        tests).

    Returns
    -------
    (ndarray of bool, list of (start, end))
        The tag data and each tag's first and last high marker sample.
    """
    rng = rng if rng is not None else np.random.default_rng(0)
    if n_bits is None:
        n_bits = max(1, int(max(tag_ids)).bit_length())
    if mirror_ids is None:
        mirror_ids = tag_ids
    pw = pulse_width

    def payload(tag_id):
        parts = []
        for bit in _payload_bits(tag_id, n_bits, bit_order):
            if bit:
                parts += [_segment(True, pw, jitter, rng), _segment(False, pw, jitter, rng)]
            else:
                parts += [_segment(False, 2 * pw, jitter, rng)]
        return np.concatenate(parts)

    chunks = [_segment(False, PAD, 0, rng)]
    spans = []
    length = PAD
    for j, (tag_id, mirror_id) in enumerate(zip(tag_ids, mirror_ids)):
        parts = [
            _segment(True, marker_duration * pw, jitter, rng),
            _segment(False, pw, jitter, rng),
            payload(tag_id),
        ]
        if mirrored:
            parts.append(payload(mirror_id)[::-1])
        parts.append(_segment(False, pw, jitter, rng))
        parts.append(_segment(True, marker_duration * pw, jitter, rng))
        tag = np.concatenate(parts)
        spans.append((length, length + len(tag) - 1))
        chunks.append(tag)
        length += len(tag)
        if j < len(tag_ids) - 1:
            between = _segment(False, gap * pw, jitter, rng)
            chunks.append(between)
            length += len(between)
    chunks.append(_segment(False, PAD, 0, rng))
    return np.concatenate(chunks), spans


def split_tag_data(tag_data, split_points):
    """Cut one tag data vector into consecutive files."""
    return np.split(np.asarray(tag_data), split_points)


@pytest.fixture
def three_tags():
    """Tags 1, 2, 3 with 3 bits, pulse width 10 and 5-width markers."""
    return make_sync_tag([1, 2, 3], pulse_width=10, marker_duration=5, n_bits=3)


@pytest.fixture
def write_fpga_dat():
    """Write tag data as a tab-delimited FPGA table."""
    def _write(path, tag_data, column="CameraTimestamp"):
        tag_data = np.asarray(tag_data).astype(int)
        with open(path, "w") as f:
            f.write(f"Sample\t{column}\tOther\n")
            for i, v in enumerate(tag_data):
                f.write(f"{i}\t{v}\t{(i * 7) % 3}\n")
        return str(path)
    return _write


@pytest.fixture
def write_video_xml():
    """Write tag data as Phantom camera metadata, one Time element per frame."""
    def _write(path, tag_data, total_image_count=None):
        tag_data = np.asarray(tag_data).astype(bool)
        if total_image_count is None:
            total_image_count = len(tag_data)
        times = "\n".join(
            f"    <Time>12:00:{i // 1000:02d}.{i % 1000:03d}{' E' if v else ''}</Time>"
            for i, v in enumerate(tag_data)
        )
        xml = (
            "<chd>\n"
            "  <CineFileHeader>\n"
            f"    <TotalImageCount>{total_image_count}</TotalImageCount>\n"
            "  </CineFileHeader>\n"
            "  <TIMEBLOCK>\n"
            f"{times}\n"
            "  </TIMEBLOCK>\n"
            "</chd>\n"
        )
        with open(path, "w") as f:
            f.write(xml)
        return str(path)
    return _write
