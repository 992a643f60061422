"""The document store ("vault").

All paths crossing this boundary are vault-relative POSIX strings
(``"Novel/Chapter 1.md"``); the vault root is ``""``. Hidden entries
(dot-prefixed files and folders, e.g. ``.draftwright/``) are never listed.
"""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import Protocol

logger = logging.getLogger(__name__)


def normalize_path(path: str) -> str:
    """Normalise a vault path; raises ``ValueError`` if it escapes the root."""

    parts: list[str] = []
    for part in PurePosixPath(path.replace("\\", "/")).parts:
        if part in {"/", "", "."}:
            continue
        if part == "..":
            if not parts:
                raise ValueError(f"Path escapes the vault root: {path}")
            parts.pop()
            continue
        parts.append(part)
    return "/".join(parts)


def join_path(folder: str, name: str) -> str:
    folder = normalize_path(folder)
    return normalize_path(f"{folder}/{name}" if folder else name)


def parent_of(path: str) -> str:
    parent = PurePosixPath(normalize_path(path)).parent.as_posix()
    return "" if parent == "." else parent


def stem_of(path: str) -> str:
    return PurePosixPath(path).stem


def is_within(path: str, folder: str) -> bool:
    """True if ``path`` is ``folder`` or lies anywhere beneath it."""

    folder = normalize_path(folder)
    path = normalize_path(path)
    if not folder:
        return True
    return path == folder or path.startswith(folder + "/")


def is_hidden(path: str | PurePosixPath) -> bool:
    return any(part.startswith(".") for part in PurePosixPath(path).parts)


class Vault(Protocol):
    """File I/O consumed from the host document store."""

    def exists(self, path: str) -> bool: ...

    def is_folder(self, path: str) -> bool: ...

    def read(self, path: str) -> str: ...

    def write(self, path: str, content: str) -> None: ...

    def delete(self, path: str) -> None: ...

    def rename(self, old_path: str, new_path: str) -> None: ...

    def list_files(
        self, folder: str = "", *, suffix: str | None = None, recursive: bool = False
    ) -> list[str]: ...

    def mtime(self, path: str) -> float: ...


class FileSystemVault:
    """A vault backed by a local directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"FileSystemVault({str(self.root)!r})"

    def _abs(self, path: str) -> Path:
        relative = normalize_path(path)
        return self.root / relative if relative else self.root

    def exists(self, path: str) -> bool:
        return self._abs(path).exists()

    def is_folder(self, path: str) -> bool:
        return self._abs(path).is_dir()

    def read(self, path: str) -> str:
        return self._abs(path).read_text(encoding="utf-8")

    def write(self, path: str, content: str) -> None:
        target = self._abs(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        logger.debug("Wrote vault file", extra={"path": normalize_path(path)})

    def delete(self, path: str) -> None:
        target = self._abs(path)
        if target.is_dir():
            for child in sorted(target.rglob("*"), reverse=True):
                if child.is_dir():
                    child.rmdir()
                else:
                    child.unlink()
            target.rmdir()
        else:
            target.unlink()

    def rename(self, old_path: str, new_path: str) -> None:
        dest = self._abs(new_path)
        if dest.exists():
            raise FileExistsError(f"Rename destination already exists: {new_path}")
        dest.parent.mkdir(parents=True, exist_ok=True)
        self._abs(old_path).replace(dest)

    def list_files(
        self, folder: str = "", *, suffix: str | None = None, recursive: bool = False
    ) -> list[str]:
        base = self._abs(folder)
        if not base.is_dir():
            return []
        candidates = base.rglob("*") if recursive else base.iterdir()
        files: list[str] = []
        for p in candidates:
            if not p.is_file():
                continue
            relative = PurePosixPath(p.relative_to(self.root).as_posix())
            if is_hidden(relative):
                continue
            if suffix is not None and p.suffix != suffix:
                continue
            files.append(relative.as_posix())
        # Stable ordering: path sort.
        return sorted(files)

    def mtime(self, path: str) -> float:
        return self._abs(path).stat().st_mtime
