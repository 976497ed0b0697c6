from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Iterable, List, Optional, Sequence

# Case-sensitive on purpose: `logo.PNG` is copied verbatim, `logo.JPG` is not.
COMPRESSIBLE_EXTENSIONS = {"jpg", "JPG", "jpeg", "JPEG", "png", "svg", "gif"}

FORMAT_BY_EXTENSION = {
    "jpg": "jpg",
    "jpeg": "jpg",
    "png": "png",
    "svg": "svg",
    "gif": "gif",
}


class RawSource:
    """
    Manifest entry holding a fixed buffer, as the host build's own sources do.
    """

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)

    def source(self) -> bytes:
        return self._data

    def size(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"RawSource(size={len(self._data)})"


def select_assets(keys: Iterable[str], patterns: Sequence[str]) -> List[str]:
    """
    Return the manifest keys matched by at least one glob pattern.

    Keys keep the manifest's order. An empty pattern list selects nothing.
    """
    if not patterns:
        return []
    return [key for key in keys if any(fnmatchcase(key, pattern) for pattern in patterns)]


def _extension(filename: str) -> str:
    _, dot, ext = filename.rpartition(".")
    return ext if dot else ""


def is_compressible(filename: str) -> bool:
    return _extension(filename) in COMPRESSIBLE_EXTENSIONS


def format_for(filename: str) -> Optional[str]:
    return FORMAT_BY_EXTENSION.get(_extension(filename).lower())


@dataclass(frozen=True)
class RewrittenPath:
    filename: str
    # Directory the result is read back from, with a trailing `/` (or empty).
    source_dir: str
    destination_dir: str
    new_key: str

    @property
    def source_path(self) -> str:
        return self.source_dir + self.filename

    @property
    def destination_path(self) -> str:
        return self.destination_dir + self.filename


def rewrite_path(path: str, output: str = "", destination: str = "") -> RewrittenPath:
    """
    Work out where an artifact is written to and under which key it comes back.

    The first directory segment is the host's own output bucket; it is dropped
    from the destination and replaced by `destination + output`:

        a/b/c/file.png  ->  destination_dir "<destination><output>/b/c/"
                            new_key        "../a/b/c/file.png"
    """
    segments = path.split("/")
    filename = segments.pop()

    source_dir = "/".join(segments) + "/" if segments else ""

    remaining = segments[1:]
    relative_dir = "/" + "/".join(remaining) if remaining else ""
    destination_dir = f"{destination}{output}{relative_dir}/"

    return RewrittenPath(
        filename=filename,
        source_dir=source_dir,
        destination_dir=destination_dir,
        new_key=f"../{source_dir}{filename}",
    )
