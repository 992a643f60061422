"""Draft and Scene entities.

A Draft is rooted at an index file: a Markdown note whose frontmatter holds a
``longform`` mapping. The Draft's identifier is that file's vault path. For
multi-file Drafts the frontmatter also carries the authoritative Scene order,
as Scene names (file stems) relative to the scene folder::

    ---
    longform:
      format: scenes
      title: My Novel
      sceneFolder: /
      scenes:
        - Opening
        - The Storm
    ---

Drafts are immutable; the sync engine replaces them wholesale, so every
reader holds a consistent snapshot.
"""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable, Sequence
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from draftwright.model.frontmatter import split_frontmatter
from draftwright.vault.store import Vault, join_path, normalize_path, parent_of, stem_of

DRAFT_KEY = "longform"
SCENE_SUFFIX = ".md"


class DraftFormat(str, Enum):
    SCENES = "scenes"
    SINGLE = "single"


def collation_key(name: str) -> tuple[str, str]:
    """Deterministic ordering for Scene names: case-insensitive, then exact."""

    return (name.casefold(), name)


class Draft(BaseModel):
    model_config = ConfigDict(frozen=True)

    vault_path: str
    title: str
    format: DraftFormat = DraftFormat.SCENES
    scene_folder: str = "/"
    scenes: tuple[str, ...] = ()
    ignored_files: tuple[str, ...] = ()
    workflow: str | None = None

    @property
    def folder(self) -> str:
        return parent_of(self.vault_path)

    @property
    def scene_root(self) -> str:
        return join_path(self.folder, self.scene_folder)

    def scene_path(self, name: str) -> str:
        return join_path(self.scene_root, name + SCENE_SUFFIX)

    def scene_paths(self) -> list[str]:
        return [self.scene_path(name) for name in self.scenes]

    def is_ignored(self, path: str) -> bool:
        filename = path.rsplit("/", 1)[-1]
        return any(
            fnmatch.fnmatchcase(filename, pattern) or fnmatch.fnmatchcase(path, pattern)
            for pattern in self.ignored_files
        )

    def scene_name_for(self, path: str) -> str | None:
        """The Scene name ``path`` would have in this Draft, if it is content."""

        if self.format != DraftFormat.SCENES:
            return None
        path = normalize_path(path)
        if not path.endswith(SCENE_SUFFIX) or path == self.vault_path:
            return None
        if parent_of(path) != self.scene_root or self.is_ignored(path):
            return None
        return stem_of(path)

    def with_scenes(self, scenes: Iterable[str]) -> Draft:
        return self.model_copy(update={"scenes": tuple(scenes)})

    def moved_to(self, vault_path: str) -> Draft:
        return self.model_copy(update={"vault_path": normalize_path(vault_path)})


class Scene(BaseModel):
    """One content file of a multi-file Draft. Content is read on demand."""

    model_config = ConfigDict(frozen=True)

    path: str
    name: str
    draft_path: str

    @property
    def title(self) -> str:
        return self.name

    def read_content(self, vault: Vault) -> str:
        return vault.read(self.path)


class SceneText(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    title: str
    path: str
    text: str


class DraftSnapshot(BaseModel):
    """A Draft plus the text of its content, captured at one instant."""

    model_config = ConfigDict(frozen=True)

    draft: Draft
    scenes: tuple[SceneText, ...] = Field(default_factory=tuple)
    body: str = ""

    @property
    def title(self) -> str:
        return self.draft.title

    def compiled_text(self, separator: str = "\n\n") -> str:
        if self.draft.format == DraftFormat.SINGLE:
            return self.body
        return separator.join(scene.text for scene in self.scenes)


def draft_from_frontmatter(vault_path: str, metadata: dict[str, Any]) -> Draft | None:
    """Build a Draft from an index file's frontmatter; ``None`` if not a root."""

    block = metadata.get(DRAFT_KEY)
    if not isinstance(block, dict) or "format" not in block:
        return None
    try:
        fmt = DraftFormat(str(block["format"]))
    except ValueError:
        return None

    vault_path = normalize_path(vault_path)
    title = block.get("title")
    scenes_raw = block.get("scenes") if fmt == DraftFormat.SCENES else None
    scenes = (
        tuple(str(s) for s in scenes_raw if isinstance(s, str | int | float))
        if isinstance(scenes_raw, list)
        else ()
    )
    ignored_raw = block.get("ignoredFiles")
    ignored = tuple(str(p) for p in ignored_raw) if isinstance(ignored_raw, list) else ()
    workflow = block.get("workflow")
    return Draft(
        vault_path=vault_path,
        title=str(title) if title else stem_of(vault_path),
        format=fmt,
        scene_folder=str(block.get("sceneFolder") or "/"),
        scenes=scenes,
        ignored_files=ignored,
        workflow=str(workflow) if workflow else None,
    )


def draft_frontmatter(draft: Draft, existing: dict[str, Any]) -> dict[str, Any]:
    """Merge ``draft``'s order back into an index file's frontmatter.

    Unrelated keys (in and outside the ``longform`` block) are preserved.
    """

    metadata = dict(existing)
    block = dict(metadata.get(DRAFT_KEY) or {})
    block["format"] = draft.format.value
    if draft.format == DraftFormat.SCENES:
        block["scenes"] = list(draft.scenes)
    metadata[DRAFT_KEY] = block
    return metadata


def read_draft(vault: Vault, vault_path: str) -> Draft | None:
    """Read ``vault_path`` and parse it as a Draft root, if it is one."""

    metadata, _ = split_frontmatter(vault.read(vault_path))
    return draft_from_frontmatter(vault_path, metadata)


def draft_for_path(path: str, drafts: Sequence[Draft]) -> Draft | None:
    """The Draft whose index file or tracked Scene is ``path``."""

    path = normalize_path(path)
    for draft in drafts:
        if draft.vault_path == path:
            return draft
    for draft in drafts:
        name = draft.scene_name_for(path)
        if name is not None and name in draft.scenes:
            return draft
    return None


def take_draft_snapshot(draft: Draft, vault: Vault) -> DraftSnapshot:
    """Load the Draft's text once so a compile sees a single instant."""

    if draft.format == DraftFormat.SINGLE:
        _, body = split_frontmatter(vault.read(draft.vault_path))
        return DraftSnapshot(draft=draft, body=body)

    scenes = tuple(
        SceneText(
            name=name,
            title=name,
            path=draft.scene_path(name),
            text=vault.read(draft.scene_path(name)),
        )
        for name in draft.scenes
    )
    return DraftSnapshot(draft=draft, scenes=scenes)
