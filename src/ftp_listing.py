import os
import stat
import time
from typing import Optional


MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

LISTING_OWNER = "anonymous"
LISTING_GROUP = "anonymous"


def formatListingLine(path: str) -> Optional[str]:
    """Renders one filesystem entry as a listing line.

    Returns None if the entry cannot be stat'ed (e.g. it was removed while the
    directory was being listed)."""
    try:
        meta = os.stat(path)
    except OSError:
        return None

    isDirectory = stat.S_ISDIR(meta.st_mode)
    ## Coarse two-state rights, only "no write bit at all" counts as read-only
    rights = "r--r--r--" if stat.S_IMODE(meta.st_mode) & 0o222 == 0 else "rw-rw-rw-"
    modified = time.localtime(meta.st_mtime)
    name = os.path.basename(os.path.normpath(path))

    return "{isDir}{rights} {links} {owner} {group} {size} {month} {day} {hour:02d}:{min:02d} {name}{extra}\r\n".format(
        isDir="d" if isDirectory else "-",
        rights=rights,
        links=1,
        owner=LISTING_OWNER,
        group=LISTING_GROUP,
        size=meta.st_size,
        month=MONTHS[modified.tm_mon - 1],
        day=modified.tm_mday,
        hour=modified.tm_hour,
        min=modified.tm_min,
        name=name,
        extra="/" if isDirectory else "",
    )


def formatListing(path: str) -> str:
    """A directory yields one line per entry (sorted by name), anything else a single line"""
    if not os.path.isdir(path):
        return formatListingLine(path) or ""

    lines = []
    for entry in sorted(os.listdir(path)):
        line = formatListingLine(os.path.join(path, entry))
        if line is not None:
            lines.append(line)
    return "".join(lines)
