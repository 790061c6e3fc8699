import logging
import os
import tempfile
from collections.abc import Iterable, Iterator
from pathlib import Path

from flashmark.domain.constants import MARKDOWN_SUFFIXES

logger = logging.getLogger(__name__)


def iter_markdown_files(root: Path) -> Iterator[Path]:
    """Yield markdown files under `root` (or `root` itself), sorted, skipping dot-dirs."""
    if root.is_file():
        if root.suffix.lower() in MARKDOWN_SUFFIXES:
            yield root
        return
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root)
        if any(part.startswith(".") for part in rel.parts):
            continue
        if path.is_file() and path.suffix.lower() in MARKDOWN_SUFFIXES:
            yield path


def collect_watched_files(watched_paths: Iterable[Path]) -> dict[str, Path]:
    """
    Map sync paths to files on disk.

    The sync path of a file is relative to the watched directory it was
    found in (its own name for a watched file), using `/` separators. The
    first watched path that yields a given sync path wins.
    """
    files: dict[str, Path] = {}
    for root in watched_paths:
        root = Path(root)
        if not root.exists():
            logger.warning(f"[vault] watched path does not exist: {root}")
            continue
        base = root.parent if root.is_file() else root
        for path in iter_markdown_files(root):
            key = path.relative_to(base).as_posix()
            if key in files:
                logger.warning(f"[vault] {path} duplicates sync path {key}, skipped")
                continue
            files[key] = path
    return files


def atomic_write_many(contents: dict[Path, str]) -> None:
    """
    Replace several files, all or nothing as far as the filesystem allows.

    Every new content is first written to a temp file next to its target;
    only when all of them are on disk are they moved in with `os.replace`.
    """
    staged: list[tuple[str, Path]] = []
    try:
        for path, content in contents.items():
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            staged.append((tmp, path))
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
                fh.write(content)
        while staged:
            tmp, path = staged[0]
            os.replace(tmp, path)
            staged.pop(0)
    finally:
        for tmp, _ in staged:
            Path(tmp).unlink(missing_ok=True)


def atomic_write_text(path: Path, content: str) -> None:
    atomic_write_many({path: content})


def read_text(path: Path) -> str:
    """Read UTF-8 text without newline translation."""
    with open(path, encoding="utf-8", newline="") as fh:
        return fh.read()
