"""Turn a marker-delimited text blob into a zip archive.

The generated text declares files with marker lines::

    === file: backend/app.py ===
    print("hello")
    === file: README.md ===
    # Demo

Each marker opens a segment that runs until the next marker line or the end
of the input. Segments become zip members at their declared paths.
"""

from __future__ import annotations

import io
import logging
import zipfile
from enum import Enum
from typing import Iterator, List, Optional

from ..domain.archive_models import ArchiveManifest, FileBlock
from ..domain.errors import EmptyInput, OversizedContent


logger = logging.getLogger("megachat.archive")

MARKER_PREFIX = "=== file:"
MARKER_SUFFIX = "==="


class _ScanState(Enum):
    SEEKING_MARKER = "seeking-marker"
    IN_CONTENT = "in-content"


def parse_marker(line: str) -> Optional[str]:
    """Return the declared path when ``line`` is a marker line, else ``None``.

    Lines missing the closing ``===``, carrying an empty path, or whose path
    itself contains ``=== file:`` are not markers.
    """
    stripped = line.strip()
    if not stripped.startswith(MARKER_PREFIX) or not stripped.endswith(MARKER_SUFFIX):
        return None
    inner = stripped[len(MARKER_PREFIX) : len(stripped) - len(MARKER_SUFFIX)]
    # "=== file: <path> ===" needs whitespace on both sides of the path
    if not inner or not inner[0].isspace() or not inner[-1].isspace():
        return None
    path = inner.strip()
    if not path or MARKER_PREFIX in path:
        return None
    return path


def _lines(text: str) -> Iterator[str]:
    """Yield lines with their ``\\n`` terminator; only ``\\n`` ends a line."""
    start = 0
    while start < len(text):
        end = text.find("\n", start)
        if end == -1:
            yield text[start:]
            return
        yield text[start : end + 1]
        start = end + 1


def scan_file_blocks(text: str) -> List[FileBlock]:
    """Split ``text`` into FileBlocks in order of appearance, duplicates included."""
    blocks: List[FileBlock] = []
    state = _ScanState.SEEKING_MARKER
    current_path: Optional[str] = None
    buffer: List[str] = []

    for line in _lines(text or ""):
        path = parse_marker(line)
        if path is not None:
            if state is _ScanState.IN_CONTENT and current_path is not None:
                blocks.append(FileBlock(path=current_path, content="".join(buffer).strip()))
            state = _ScanState.IN_CONTENT
            current_path = path
            buffer = []
            continue
        if state is _ScanState.IN_CONTENT:
            buffer.append(line)
        # seeking-marker: text before the first marker is dropped

    if state is _ScanState.IN_CONTENT and current_path is not None:
        blocks.append(FileBlock(path=current_path, content="".join(buffer).strip()))
    return blocks


def build_manifest(text: str) -> ArchiveManifest:
    return ArchiveManifest.from_blocks(scan_file_blocks(text))


def write_zip(manifest: ArchiveManifest) -> bytes:
    mem = io.BytesIO()
    with zipfile.ZipFile(mem, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        for path, content in manifest.items():
            zf.writestr(path, content.encode("utf-8"))
    return mem.getvalue()


def build_archive(source_text: str, max_bytes: Optional[int] = None) -> bytes:
    """Return zip bytes for every segment in ``source_text``.

    Raises
    ------
    EmptyInput
        No marker-delimited segment was found.
    OversizedContent
        ``max_bytes`` is set and the combined UTF-8 content exceeds it.
    """
    manifest = build_manifest(source_text)
    if not manifest:
        raise EmptyInput("No '=== file: <path> ===' markers found in the submitted text")
    if max_bytes is not None:
        size = manifest.total_bytes()
        if size > max_bytes:
            raise OversizedContent(size, max_bytes)
    blob = write_zip(manifest)
    logger.debug("archive_built", extra={"members": len(manifest), "bytes": len(blob)})
    return blob
