"""Readers that pull binary tag data out of device-specific files.

Each reader takes a file path and returns a 1-D bool array of tag data, one
entry per sample (or video frame).  Failures raise a :class:`ParserError`
subclass so the caller can skip the file.
"""

import logging
import xml.etree.ElementTree as ET
from functools import partial
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import numpy as np
import pandas as pd

from .decoders.ttl import binarize
from .errors import MissingColumnError, SchemaMismatchError, UnreadableFileError

logger = logging.getLogger(__name__)

FPGA_TAG_COLUMN = "CameraTimestamp"
DORIC_TAG_COLUMN = "SyncTags"


def _read_table(path, sep=None):
    try:
        # sep=None lets the python engine sniff the delimiter
        return pd.read_csv(path, sep=sep, engine="python")
    except (OSError, ValueError, pd.errors.ParserError) as e:
        raise UnreadableFileError(f"Could not read table from {path}: {e}") from e


def _table_column(table, column, path):
    if column not in table.columns:
        raise MissingColumnError(
            f"Column {column!r} not found in {path}; available columns: "
            f"{list(table.columns)}"
        )
    return table[column].to_numpy()


def read_fpga_tag_data(dat_path: Union[str, Path],
                       tag_column: str = FPGA_TAG_COLUMN) -> np.ndarray:
    """Read tag data from an FPGA ``.dat`` table.

    The file is a delimited text table with a header row; *tag_column* holds
    the tag channel as 0/1 values.
    """
    table = _read_table(dat_path)
    values = _table_column(table, tag_column, dat_path)
    return np.asarray(values).astype(bool)


def read_doric_tag_data(csv_path: Union[str, Path],
                        tag_column: str = DORIC_TAG_COLUMN) -> np.ndarray:
    """Read tag data from a Doric fiber photometry ``.csv`` export."""
    table = _read_table(csv_path, sep=",")
    values = _table_column(table, tag_column, csv_path)
    return binarize(np.asarray(values, dtype=np.float64))


def read_video_tag_data(xml_path: Union[str, Path]) -> np.ndarray:
    """Read tag data from a Phantom camera metadata ``.xml`` file.

    Each ``TIMEBLOCK/Time`` element is one frame.  The camera appends an
    ``E`` to the frame time while the event input is high.  The frame count
    must agree with ``CineFileHeader/TotalImageCount``.
    """
    try:
        root = ET.parse(str(xml_path)).getroot()
    except (OSError, ET.ParseError) as e:
        raise UnreadableFileError(f"Could not parse XML file {xml_path}: {e}") from e

    timeblock = root.find(".//TIMEBLOCK")
    if timeblock is None:
        raise SchemaMismatchError(f"No TIMEBLOCK element in {xml_path}")
    times = [(el.text or "").strip() for el in timeblock.iter("Time")]
    tag_data = np.array([t.endswith("E") for t in times], dtype=bool)

    count_el = root.find(".//CineFileHeader/TotalImageCount")
    if count_el is None or count_el.text is None:
        raise SchemaMismatchError(
            f"No CineFileHeader/TotalImageCount element in {xml_path}")
    try:
        expected = int(count_el.text.strip())
    except ValueError:
        raise SchemaMismatchError(
            f"TotalImageCount {count_el.text.strip()!r} in {xml_path} is not "
            f"a frame count"
        ) from None
    if len(tag_data) != expected:
        raise SchemaMismatchError(
            f"Error reading tag data from file {xml_path}: {len(tag_data)} "
            f"frame times found but {expected} frames recorded"
        )
    return tag_data


def read_meta(bin_path: Union[str, Path]) -> Dict[str, str]:
    """Read a SpikeGLX-style ``key=value`` ``.meta`` file next to *bin_path*.

    Raises
    ------
    UnreadableFileError
        If the ``.meta`` file does not exist.
    """
    meta_path = Path(bin_path).with_suffix(".meta")
    if not meta_path.exists():
        raise UnreadableFileError(f"No .meta file found at {meta_path}")

    meta = {}
    with meta_path.open() as f:
        for line in f:
            line = line.strip()
            if not line or "=" not in line:
                continue
            key, value = line.split("=", 1)
            # '~' marks array-valued keys
            meta[key.lstrip("~")] = value
    return meta


def read_daq_tag_data(bin_path: Union[str, Path], n_channels: Optional[int] = None,
                      tag_channel: Union[int, str] = "last",
                      dtype=np.int16, threshold: Optional[float] = None) -> np.ndarray:
    """Read tag data from an interleaved multi-channel DAQ binary file.

    Parameters
    ----------
    bin_path : str or Path
        Interleaved binary samples, channel-minor.
    n_channels : int, optional
        Number of interleaved channels.  Read from ``nSavedChans`` in the
        paired ``.meta`` file when omitted.
    tag_channel : int or "last"
        Zero-based channel index of the tag channel.
    threshold : float, optional
        Level separating low from high.  Found automatically when omitted.

    Raises
    ------
    SchemaMismatchError
        If the channel count is missing or unusable, or *tag_channel* is not
        one of the channels.
    """
    bin_path = Path(bin_path)
    if n_channels is None:
        meta = read_meta(bin_path)
        try:
            n_channels = int(meta["nSavedChans"])
        except KeyError:
            raise SchemaMismatchError(
                f"No nSavedChans entry in the .meta file for {bin_path}") from None
        except ValueError:
            raise SchemaMismatchError(
                f"nSavedChans={meta['nSavedChans']!r} in the .meta file for "
                f"{bin_path} is not a channel count"
            ) from None
    if n_channels < 1:
        raise SchemaMismatchError(f"{bin_path} needs at least 1 channel, got {n_channels}")
    if tag_channel == "last":
        tag_channel = n_channels - 1
    elif not isinstance(tag_channel, int):
        raise ValueError(f"tag_channel must be an int or 'last', got {tag_channel!r}")
    if not 0 <= tag_channel < n_channels:
        raise SchemaMismatchError(
            f"tag_channel {tag_channel} out of range for {n_channels} channels "
            f"in {bin_path}"
        )

    try:
        raw = np.memmap(bin_path, dtype=dtype, mode="r")
    except (OSError, ValueError) as e:
        raise UnreadableFileError(f"Could not map {bin_path}: {e}") from e
    if raw.size % n_channels:
        raise SchemaMismatchError(
            f"{bin_path} holds {raw.size} samples, not a multiple of "
            f"{n_channels} channels"
        )
    signal = np.asarray(raw.reshape(-1, n_channels)[:, tag_channel])
    return binarize(signal, threshold)


def find_stream_files(root: Union[str, Path], suffix: str,
                      recursive: bool = True) -> List[str]:
    """All files under *root* with *suffix* (case-insensitive), sorted by path."""
    root = Path(root)
    if not root.is_dir():
        raise NotADirectoryError(f"{root} is not a directory")
    suffix = suffix.lower()
    if not suffix.startswith("."):
        suffix = "." + suffix
    candidates = root.rglob("*") if recursive else root.glob("*")
    files = sorted(str(p) for p in candidates
                   if p.is_file() and p.suffix.lower() == suffix)
    logger.info("Found %d %s files in %s", len(files), suffix, root)
    return files


# Stream kind -> (file suffix, reader)
READERS: Dict[str, tuple] = {
    "fpga": (".dat", read_fpga_tag_data),
    "video": (".xml", read_video_tag_data),
    "doric": (".csv", read_doric_tag_data),
    "daq": (".dat", read_daq_tag_data),
}


def get_reader(kind: str, **kwargs) -> Callable:
    """Reader for a stream kind, with keyword arguments bound."""
    try:
        _, reader = READERS[kind]
    except KeyError:
        raise ValueError(
            f"Unknown stream kind {kind!r}; choose from {sorted(READERS)}"
        ) from None
    return partial(reader, **kwargs) if kwargs else reader
