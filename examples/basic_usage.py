#!/usr/bin/env python3
"""Programmatic compile example.

This demonstrates using the draftwright components directly:

* load settings from `.env`
* discover the vault's drafts
* store a small workflow and compile one draft with it

The vault is passed as an argument (not read from `.env`).
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence

from draftwright.app import DraftwrightApp
from draftwright.compile.workflow import Workflow
from draftwright.config import DraftwrightSettings
from draftwright.logging import configure_logging


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compile a draft (programmatic example).")
    parser.add_argument("--vault", required=True, help="Vault directory")
    parser.add_argument("--draft", required=True, help="Index file or scene path of the draft")
    parser.add_argument(
        "--separator",
        default="\n\n* * *\n\n",
        help="Text placed between scenes",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = DraftwrightSettings(DRAFTWRIGHT_VAULT_PATH=Path(args.vault))
    configure_logging(settings.log_level)

    app = DraftwrightApp.from_settings(settings)
    try:
        app.load_settings()
        app.begin_observing()

        draft = app.draft_for_path(args.draft)
        if draft is None:
            print(f"No draft owns {args.draft}")
            return 1

        workflow = (
            Workflow(name="Example", description="Plain manuscript with scene breaks")
            .add_step("strip-frontmatter")
            .add_step("remove-comments")
            .add_step("concatenate-text", {"separator": args.separator})
        )
        app.set_workflow(workflow.name, workflow)

        artifact = app.run_workflow(workflow.name, draft.vault_path)
    finally:
        app.close()

    print(f"Compiled {draft.title} ({len(draft.scenes)} scenes)")
    print(artifact.text)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
