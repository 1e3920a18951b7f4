from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Tuple


@dataclass(frozen=True)
class FileBlock:
    path: str
    content: str

    def __post_init__(self) -> None:
        if not self.path:
            raise ValueError("FileBlock path must not be empty")


@dataclass
class ArchiveManifest:
    """Ordered path -> content mapping; a repeated path keeps its slot, later content wins."""

    _entries: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_blocks(cls, blocks: Iterable[FileBlock]) -> "ArchiveManifest":
        manifest = cls()
        for block in blocks:
            manifest.add(block)
        return manifest

    def add(self, block: FileBlock) -> None:
        self._entries[block.path] = block.content

    def items(self) -> List[Tuple[str, str]]:
        return list(self._entries.items())

    def paths(self) -> List[str]:
        return list(self._entries.keys())

    def total_bytes(self) -> int:
        return sum(len(content.encode("utf-8")) for content in self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[FileBlock]:
        for path, content in self._entries.items():
            yield FileBlock(path=path, content=content)

    def __bool__(self) -> bool:
        return bool(self._entries)
