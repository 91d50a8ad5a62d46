"""Tests for the tagsync command-line interface."""

import json
import sys
from pathlib import Path

import numpy as np
import pytest

from tagsync.cli import (
    EXIT_DECODE_ERROR,
    EXIT_DUPLICATE_TAGS,
    EXIT_OK,
    EXIT_USAGE,
    main,
)
from tagsync.sync_list import SyncList

sys.path.insert(0, str(Path(__file__).resolve().parent))
from conftest import make_sync_tag, split_tag_data


@pytest.fixture
def video_fpga_dirs(tmp_path, write_fpga_dat, write_video_xml):
    """One video metadata file and two FPGA tables sampled 3x faster."""
    video, spans = make_sync_tag([1, 2, 3, 4, 5, 6], n_bits=3)
    fpga = np.repeat(video, 3)
    video_dir = tmp_path / "video"
    fpga_dir = tmp_path / "fpga"
    video_dir.mkdir()
    fpga_dir.mkdir()
    write_video_xml(video_dir / "cam0.xml", video)
    for k, part in enumerate(split_tag_data(fpga, [3 * spans[2][1] + 60])):
        write_fpga_dat(fpga_dir / f"fpga{k}.dat", part)
    return video_dir, fpga_dir


class TestVideoFpga:
    def test_video_to_fpga(self, tmp_path, video_fpga_dirs, capsys):
        video_dir, fpga_dir = video_fpga_dirs
        out = tmp_path / "sync.json"
        code = main(["video-fpga", str(video_dir), str(fpga_dir), "-o", str(out)])
        assert code == EXIT_OK
        sync_list = SyncList.load(out)
        assert [Path(e.base_file).name for e in sync_list] == ["fpga0.dat", "fpga1.dat"]
        for entry in sync_list:
            match = entry.matches[0][0]
            assert Path(match.match_file).name == "cam0.xml"
            assert match.sample_rate_ratio == pytest.approx(1 / 3, abs=0.01)
        summary = json.loads(capsys.readouterr().out)
        assert summary["n_base_files"] == 2
        assert summary["n_matches"] == 2

    def test_fpga_to_video(self, tmp_path, video_fpga_dirs):
        video_dir, fpga_dir = video_fpga_dirs
        out = tmp_path / "sync.json"
        code = main(["-q", "video-fpga", str(video_dir), str(fpga_dir),
                     "--direction", "fpga-to-video", "-o", str(out)])
        assert code == EXIT_OK
        sync_list = SyncList.load(out)
        assert len(sync_list) == 1
        files = [Path(m.match_file).name for m in sync_list.entries[0].matches[0]]
        assert files == ["fpga0.dat", "fpga1.dat"]

    def test_no_files(self, tmp_path):
        (tmp_path / "video").mkdir()
        (tmp_path / "fpga").mkdir()
        code = main(["video-fpga", str(tmp_path / "video"), str(tmp_path / "fpga")])
        assert code == EXIT_USAGE

    def test_missing_directory(self, tmp_path):
        code = main(["video-fpga", str(tmp_path / "a"), str(tmp_path / "b")])
        assert code == EXIT_USAGE


class TestStreams:
    def test_duplicate_tags(self, tmp_path, write_fpga_dat, write_video_xml):
        data, _ = make_sync_tag([1, 2, 1], n_bits=2)
        (tmp_path / "v").mkdir()
        (tmp_path / "f").mkdir()
        write_video_xml(tmp_path / "v" / "cam.xml", data)
        write_fpga_dat(tmp_path / "f" / "run.dat", data)
        code = main(["streams", "--stream", f"fpga={tmp_path / 'f'}",
                     "--stream", f"video={tmp_path / 'v'}"])
        assert code == EXIT_DUPLICATE_TAGS

    def test_rejected_tag_data(self, tmp_path, write_fpga_dat, write_video_xml):
        good, _ = make_sync_tag([1, 2], n_bits=2)
        square = np.tile(np.r_[np.zeros(10, bool), np.ones(10, bool)], 30)
        (tmp_path / "v").mkdir()
        (tmp_path / "f").mkdir()
        write_video_xml(tmp_path / "v" / "cam.xml", good)
        write_fpga_dat(tmp_path / "f" / "run.dat", square)
        code = main(["streams", "--stream", f"fpga={tmp_path / 'f'}",
                     "--stream", f"video={tmp_path / 'v'}"])
        assert code == EXIT_DECODE_ERROR

    @pytest.mark.parametrize("specs", [
        ["--stream", "fpga=somewhere"],
        ["--stream", "tarot=a", "--stream", "fpga=b"],
        ["--stream", "fpga", "--stream", "video=b"],
    ])
    def test_bad_stream_specs(self, specs):
        assert main(["streams"] + specs) == EXIT_USAGE

    def test_bad_arguments(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["video-fpga"])
        assert exc_info.value.code == EXIT_USAGE


class TestMap:
    def test_map_range(self, tmp_path, video_fpga_dirs, capsys):
        video_dir, fpga_dir = video_fpga_dirs
        out = tmp_path / "sync.json"
        assert main(["-q", "video-fpga", str(video_dir), str(fpga_dir), "-o", str(out)]) == EXIT_OK
        capsys.readouterr()
        base_file = SyncList.load(out).entries[0].base_file
        assert main(["map", str(out), base_file, "300", "599"]) == EXIT_OK
        line = capsys.readouterr().out.strip()
        match_file, lo, hi = line.split("\t")
        assert Path(match_file).name == "cam0.xml"
        assert int(lo) == pytest.approx(100, abs=2)
        assert int(hi) == pytest.approx(200, abs=2)

    def test_missing_sync_list(self, tmp_path):
        assert main(["map", str(tmp_path / "none.json"), "a", "0", "1"]) == EXIT_USAGE
