import os
import sys
import time

import pytest

sys.path.insert(0, os.path.join("..", "src"))
sys.path.insert(0, "src")
from ftp_listing import MONTHS, formatListing, formatListingLine


## 2021-09-07 some time in the afternoon (rendered in local time below)
MTIME = 1631023500


def _expectedDate(timestamp: float) -> str:
    t = time.localtime(timestamp)
    return f"{MONTHS[t.tm_mon - 1]} {t.tm_mday} {t.tm_hour:02d}:{t.tm_min:02d}"


@pytest.fixture()
def listingRoot(tmp_path):
    (tmp_path / "b_dir").mkdir()
    (tmp_path / "a_file.txt").write_bytes(b"x" * 42)
    for name in ("b_dir", "a_file.txt"):
        os.utime(tmp_path / name, (MTIME, MTIME))
    return tmp_path


class Test_ListingFormatter_Line:
    def test_file(self, listingRoot) -> None:
        path = listingRoot / "a_file.txt"
        os.chmod(path, 0o644)
        line = formatListingLine(str(path))
        assert line == f"-rw-rw-rw- 1 anonymous anonymous 42 {_expectedDate(MTIME)} a_file.txt\r\n"

    def test_directory(self, listingRoot) -> None:
        path = listingRoot / "b_dir"
        size = os.stat(path).st_size
        line = formatListingLine(str(path))
        assert line.startswith("drw-rw-rw- 1 anonymous anonymous ")
        assert line == f"drw-rw-rw- 1 anonymous anonymous {size} {_expectedDate(MTIME)} b_dir/\r\n"

    def test_readOnly(self, listingRoot) -> None:
        path = listingRoot / "a_file.txt"
        os.chmod(path, 0o444)
        try:
            line = formatListingLine(str(path))
        finally:
            os.chmod(path, 0o644)
        assert line.startswith("-r--r--r-- ")

    def test_anyWriteBitIsWritable(self, listingRoot) -> None:
        path = listingRoot / "a_file.txt"
        os.chmod(path, 0o404 | 0o020)
        line = formatListingLine(str(path))
        assert line.startswith("-rw-rw-rw- ")

    def test_september(self, tmp_path) -> None:
        path = tmp_path / "f"
        path.write_text("")
        os.utime(path, (MTIME, MTIME))
        assert " Sep " in formatListingLine(str(path))

    def test_zeroPaddedTime(self, tmp_path) -> None:
        path = tmp_path / "f"
        path.write_text("")
        ## 05:03 local time, any day
        early = time.mktime((2020, 1, 2, 5, 3, 0, 0, 0, -1))
        os.utime(path, (early, early))
        assert " Jan 2 05:03 f\r\n" in formatListingLine(str(path))

    def test_missingEntry(self, tmp_path) -> None:
        assert formatListingLine(str(tmp_path / "missing")) is None

    def test_monthTable(self) -> None:
        assert len(MONTHS) == 12
        assert all(len(month) == 3 for month in MONTHS)


class Test_ListingFormatter_Listing:
    def test_directorySortedByName(self, listingRoot) -> None:
        listing = formatListing(str(listingRoot))
        lines = listing.split("\r\n")
        assert lines[-1] == ""
        assert len(lines) == 3
        assert lines[0].endswith(" a_file.txt")
        assert lines[1].endswith(" b_dir/")

    def test_singleFile(self, listingRoot) -> None:
        path = str(listingRoot / "a_file.txt")
        assert formatListing(path) == formatListingLine(path)

    def test_emptyDirectory(self, listingRoot) -> None:
        assert formatListing(str(listingRoot / "b_dir")) == ""
