"""CLI entrypoint.

Every command loads the persisted settings and discovers the vault's Drafts
before acting, exactly as the long-running ``watch`` host does.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path

from pydantic import ValidationError

from draftwright import __version__
from draftwright.app import DraftwrightApp
from draftwright.compile.workflow import serialize_workflow
from draftwright.config import DraftwrightSettings
from draftwright.errors import (
    PersistenceFailure,
    UnknownDraftError,
    UnknownWorkflowError,
    WorkflowRunError,
)
from draftwright.logging import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="draftwright",
        description="Long-form drafting over a folder of Markdown notes",
    )
    parser.add_argument("--version", action="version", version=f"draftwright {__version__}")
    parser.add_argument(
        "--vault",
        default=None,
        help="Vault directory (overrides DRAFTWRIGHT_VAULT_PATH)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    drafts = subparsers.add_parser("drafts", help="List drafts and their scene order")
    drafts.add_argument("--json", action="store_true", help="Print machine-readable JSON")

    workflows = subparsers.add_parser("workflows", help="List stored workflows")
    workflows.add_argument(
        "--show",
        default=None,
        metavar="NAME",
        help="Print one workflow's stored definition as JSON",
    )

    subparsers.add_parser("steps", help="List registered steps")

    compile_cmd = subparsers.add_parser("compile", help="Compile a draft with a workflow")
    compile_cmd.add_argument(
        "draft",
        help="Vault-relative path of the draft's index file (or any of its scenes)",
    )
    compile_cmd.add_argument(
        "--workflow",
        default=None,
        help="Workflow name (defaults to the draft's own workflow, then 'Default Workflow')",
    )
    compile_cmd.add_argument(
        "--print",
        dest="print_text",
        action="store_true",
        help="Print the compiled manuscript to stdout",
    )

    watch = subparsers.add_parser("watch", help="Keep drafts in sync with the vault until stopped")
    watch.add_argument(
        "--duration-seconds",
        type=float,
        default=0.0,
        help="Stop after this many seconds (0 means run until interrupted)",
    )

    return parser


def _load_settings(args: argparse.Namespace) -> DraftwrightSettings:
    if args.vault is not None:
        return DraftwrightSettings(DRAFTWRIGHT_VAULT_PATH=Path(args.vault))
    return DraftwrightSettings()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = _load_settings(args)
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    app = DraftwrightApp.from_settings(settings)
    try:
        app.load_settings()
        app.begin_observing(watch=args.command == "watch")

        if args.command == "drafts":
            drafts = app.list_drafts()
            if args.json:
                payload = [d.model_dump(mode="json") for d in drafts]
                print(json.dumps(payload, indent=2, ensure_ascii=False))
                return 0
            if not drafts:
                print(f"No drafts found in {settings.vault_path}")
            for draft in drafts:
                print(f"{draft.vault_path}  [{draft.format.value}]  {draft.title}")
                for position, scene in enumerate(draft.scenes, start=1):
                    print(f"  {position:>3}. {scene}")
            return 0

        if args.command == "workflows":
            if args.show is not None:
                workflow = app.get_workflow(args.show)
                print(json.dumps(serialize_workflow(workflow), indent=2, ensure_ascii=False))
                return 0
            for name in app.list_workflows():
                missing = app.workflows.unresolved(name)
                suffix = f"  (unresolved: {', '.join(missing)})" if missing else ""
                print(f"{name}{suffix}")
            return 0

        if args.command == "steps":
            for step in app.list_steps():
                print(
                    f"{step.id}  {step.input_kind.value} -> {step.output_kind.value}  "
                    f"{step.name}  [{step.source}]"
                )
            return 0

        if args.command == "compile":
            draft = app.draft_for_path(args.draft)
            if draft is None:
                raise UnknownDraftError(args.draft)
            name = args.workflow or draft.workflow or "Default Workflow"
            artifact = app.run_workflow(name, draft.vault_path)
            if args.print_text:
                print(artifact.text)
            for path in artifact.written_paths:
                print(f"Wrote {path}", file=sys.stderr)
            return 0

        if args.command == "watch":
            deadline = time.monotonic() + args.duration_seconds if args.duration_seconds else None
            print(f"Watching {settings.vault_path} (Ctrl+C to stop)", file=sys.stderr)
            try:
                while True:
                    if deadline is not None and time.monotonic() >= deadline:
                        break
                    time.sleep(min(settings.poll_interval_seconds, 0.5))
            except KeyboardInterrupt:
                pass
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except (UnknownDraftError, UnknownWorkflowError) as e:
        kind = "draft" if isinstance(e, UnknownDraftError) else "workflow"
        print(f"Unknown {kind}: {e.args[0]}", file=sys.stderr)
        return 3

    except WorkflowRunError as e:
        logger.warning("Compile failed", extra={"step_id": e.step_id, "position": e.position})
        print(f"Compile failed: {e}", file=sys.stderr)
        return 4

    except PersistenceFailure as e:
        print(str(e), file=sys.stderr)
        return 5

    except Exception:
        logger.exception("Command failed")
        return 1

    finally:
        app.close()


if __name__ == "__main__":
    raise SystemExit(main())
