"""Steps that ship with draftwright."""

from __future__ import annotations

import re
from collections.abc import Callable

from draftwright.compile.registry import StepRegistry
from draftwright.compile.steps import StepContext, StepDefinition, StepKind, StepOption
from draftwright.model.drafts import SceneText
from draftwright.model.frontmatter import strip_frontmatter

_OBSIDIAN_COMMENT_RE = re.compile(r"%%.*?%%", re.S)
_HTML_COMMENT_RE = re.compile(r"<!--.*?-->", re.S)
_WIKILINK_RE = re.compile(r"!?\[\[([^\]|]+)(?:\|([^\]]+))?\]\]")
_MARKDOWN_LINK_RE = re.compile(r"(?<!!)\[([^\]]*)\]\([^)]*\)")

TITLE_PLACEHOLDER = "$1"


def _map_scenes(
    scenes: list[SceneText], fn: Callable[[SceneText], str]
) -> list[SceneText]:
    return [scene.model_copy(update={"text": fn(scene)}) for scene in scenes]


def _strip_frontmatter(scenes: list[SceneText], _context: StepContext) -> list[SceneText]:
    return _map_scenes(scenes, lambda s: strip_frontmatter(s.text))


def _remove_comments(scenes: list[SceneText], context: StepContext) -> list[SceneText]:
    def clean(scene: SceneText) -> str:
        text = scene.text
        if context.options.get("obsidian"):
            text = _OBSIDIAN_COMMENT_RE.sub("", text)
        if context.options.get("html"):
            text = _HTML_COMMENT_RE.sub("", text)
        return text

    return _map_scenes(scenes, clean)


def _remove_links(scenes: list[SceneText], context: StepContext) -> list[SceneText]:
    def clean(scene: SceneText) -> str:
        text = _WIKILINK_RE.sub(lambda m: m.group(2) or m.group(1), scene.text)
        if context.options.get("remove-external-links"):
            text = _MARKDOWN_LINK_RE.sub(lambda m: m.group(1), text)
        return text

    return _map_scenes(scenes, clean)


def _prepend_title(scenes: list[SceneText], context: StepContext) -> list[SceneText]:
    fmt = str(context.options["format"])
    separator = str(context.options["separator"])

    def prepend(scene: SceneText) -> str:
        return fmt.replace(TITLE_PLACEHOLDER, scene.title) + separator + scene.text

    return _map_scenes(scenes, prepend)


def _concatenate_text(scenes: list[SceneText], context: StepContext) -> str:
    separator = str(context.options["separator"])
    return separator.join(scene.text.strip("\n") for scene in scenes)


def _write_to_note(text: str, context: StepContext) -> str:
    target = str(context.options["target"]).replace(TITLE_PLACEHOLDER, context.draft_title)
    context.write_note(target, text)
    return text


BUILTIN_STEPS: tuple[StepDefinition, ...] = (
    StepDefinition(
        id="strip-frontmatter",
        name="Strip Frontmatter",
        description="Removes the YAML frontmatter from each scene.",
        input_kind=StepKind.SCENES,
        output_kind=StepKind.SCENES,
        run=_strip_frontmatter,
    ),
    StepDefinition(
        id="remove-comments",
        name="Remove Comments",
        description="Removes %% Obsidian %% and/or <!-- HTML --> comments from each scene.",
        input_kind=StepKind.SCENES,
        output_kind=StepKind.SCENES,
        run=_remove_comments,
        options=(
            StepOption(id="obsidian", name="Remove %% comments", type="boolean", default=True),
            StepOption(id="html", name="Remove <!-- --> comments", type="boolean", default=True),
        ),
    ),
    StepDefinition(
        id="remove-links",
        name="Remove Links",
        description="Replaces [[wikilinks]] with their display text.",
        input_kind=StepKind.SCENES,
        output_kind=StepKind.SCENES,
        run=_remove_links,
        options=(
            StepOption(
                id="remove-external-links",
                name="Remove external links",
                description="Also replace [text](url) links with their text.",
                type="boolean",
                default=False,
            ),
        ),
    ),
    StepDefinition(
        id="prepend-title",
        name="Prepend Title",
        description="Prepends each scene with its title; $1 in the format is the title.",
        input_kind=StepKind.SCENES,
        output_kind=StepKind.SCENES,
        run=_prepend_title,
        options=(
            StepOption(id="format", name="Title format", type="text", default="## $1"),
            StepOption(id="separator", name="Separator", type="text", default="\n\n"),
        ),
    ),
    StepDefinition(
        id="concatenate-text",
        name="Concatenate Text",
        description="Joins all scenes into a single manuscript.",
        input_kind=StepKind.SCENES,
        output_kind=StepKind.TEXT,
        run=_concatenate_text,
        options=(StepOption(id="separator", name="Separator", type="text", default="\n\n"),),
    ),
    StepDefinition(
        id="write-to-note",
        name="Save as Note",
        description="Saves the manuscript to a note; $1 in the target is the draft title.",
        input_kind=StepKind.TEXT,
        output_kind=StepKind.TEXT,
        run=_write_to_note,
        options=(
            StepOption(
                id="target", name="Output path", type="text", default="manuscripts/$1.md"
            ),
        ),
    ),
)


def register_builtin_steps(registry: StepRegistry) -> None:
    for step in BUILTIN_STEPS:
        registry.register(step)
