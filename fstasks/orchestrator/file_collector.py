"""File collection utilities for batch uploads."""
from pathlib import Path
from typing import Iterable, List

from ..models import LocalFile


class FileCollector:
    """Collects local files and their upload-relative paths."""

    @staticmethod
    def collect_files(sources: Iterable[Path]) -> List[LocalFile]:
        """
        Expand files and folders into LocalFile entries.

        A file is uploaded under its own name; a folder keeps its name as the
        prefix of every relative path (``photos/2024/a.jpg``).

        Args:
            sources: Files and/or folders

        Returns:
            LocalFile list, folder contents sorted, duplicates dropped
        """
        files: List[LocalFile] = []
        seen = set()
        for source in sources:
            source = Path(source)
            if source.is_dir():
                for item in sorted(p for p in source.rglob("*") if p.is_file()):
                    rel = f"{source.name}/{item.relative_to(source).as_posix()}"
                    if rel not in seen:
                        seen.add(rel)
                        files.append(LocalFile(path=item, relative_path=rel, size=item.stat().st_size))
            elif source.is_file():
                if source.name not in seen:
                    seen.add(source.name)
                    files.append(
                        LocalFile(path=source, relative_path=source.name, size=source.stat().st_size)
                    )
            else:
                raise FileNotFoundError(f"No such file or directory: {source}")
        return files

    @staticmethod
    def match_pending(source: Path, pending: Iterable[str]) -> List[LocalFile]:
        """
        Map relative paths reported by the backend back to files under ``source``.

        Paths may or may not carry the folder name of ``source`` as prefix.
        Entries with no local counterpart are dropped.
        """
        source = Path(source)
        candidates = {f.relative_path: f for f in FileCollector.collect_files([source])}
        matched: List[LocalFile] = []
        for rel in pending:
            rel = rel.lstrip("/")
            local = candidates.get(rel)
            if local is None and source.is_dir():
                item = source / rel
                if item.is_file():
                    local = LocalFile(path=item, relative_path=rel, size=item.stat().st_size)
            if local is not None:
                matched.append(local)
        return matched
