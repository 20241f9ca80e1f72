from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError

from legalyze.config.settings import Settings
from legalyze.logging_setup import setup_logging
from legalyze.pipeline.document_chat import ChatMessage, parse_chat_messages
from legalyze.pipeline.orchestrator import ANALYSIS_BIASES, LifecycleOrchestrator
from legalyze.storage.repo import StorageRepo
from legalyze.utils.error_taxonomy import PersistenceError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="legalyze")
    parser.add_argument(
        "--env-file", type=str, default=".env", help="Path to .env file"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_ing = subparsers.add_parser("ingest", help="Store a plain-text document")
    p_ing.add_argument("--title", required=True)
    p_ing.add_argument("--file", required=True, type=Path)

    p_an = subparsers.add_parser("analyze", help="Run the full analysis")
    p_an.add_argument("--document-id", required=True)
    p_an.add_argument("--perspective", required=True)
    p_an.add_argument("--bias", choices=ANALYSIS_BIASES, default="neutral")

    p_par = subparsers.add_parser("extract-parties")
    p_par.add_argument("--document-id", required=True)

    p_chk = subparsers.add_parser("check", help="Delete the document if it is not legal text")
    p_chk.add_argument("--document-id", required=True)

    p_chat = subparsers.add_parser("chat")
    p_chat.add_argument("--document-id", required=True)
    p_chat.add_argument("--message", required=True)
    p_chat.add_argument(
        "--history",
        type=Path,
        default=None,
        help="JSON file with a list of {role, content} messages",
    )

    p_show = subparsers.add_parser("show")
    p_show.add_argument("--analysis-id", required=True)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if os.path.exists(args.env_file):
        load_dotenv(dotenv_path=args.env_file)

    try:
        settings = Settings()
    except ValidationError as e:
        print(f"Config validation error:\n{e}", file=sys.stderr)
        return 1

    setup_logging(settings.log_level, settings.log_file)

    try:
        history = _load_history(getattr(args, "history", None))
        content = args.file.read_text(encoding="utf-8") if args.command == "ingest" else None
    except (OSError, ValueError) as e:
        print(f"Input error: {e}", file=sys.stderr)
        return 1

    try:
        repo = StorageRepo(settings.resolved_sqlite_path)
        if args.command == "ingest":
            return _ingest(repo, title=args.title, content=content or "")
        if args.command == "show":
            return _show(repo, analysis_id=args.analysis_id)
        orchestrator = LifecycleOrchestrator.from_settings(settings, store=repo)
        return asyncio.run(_run_workflow(orchestrator, args, history))
    except PersistenceError as e:
        print(f"Storage error: {e}", file=sys.stderr)
        return 1


async def _run_workflow(
    orchestrator: LifecycleOrchestrator,
    args: argparse.Namespace,
    history: list[ChatMessage],
) -> int:
    if args.command == "analyze":
        outcome = await orchestrator.analyze_document(
            args.document_id,
            party_perspective=args.perspective,
            analysis_bias=args.bias,
        )
    elif args.command == "extract-parties":
        outcome = await orchestrator.extract_parties(args.document_id)
    elif args.command == "check":
        outcome = await orchestrator.check_legal_document(args.document_id)
    elif args.command == "chat":
        outcome = await orchestrator.chat_with_document(
            args.document_id,
            args.message,
            history,
        )
    else:
        raise ValueError(f"Unknown command: {args.command}")

    _print_json(asdict(outcome))
    return 0 if outcome.status == "succeeded" else 1


def _ingest(repo: StorageRepo, *, title: str, content: str) -> int:
    document = repo.create_document(title=title, content=content, status="completed")
    _print_json({"document_id": document.document_id, "status": document.status})
    return 0


def _show(repo: StorageRepo, *, analysis_id: str) -> int:
    analysis = repo.get_analysis(analysis_id)
    if analysis is None:
        print(f"Analysis not found: {analysis_id}", file=sys.stderr)
        return 1
    _print_json(asdict(analysis))
    return 0


def _load_history(path: Path | None) -> list[ChatMessage]:
    if path is None:
        return []
    items = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(items, list) or not all(
        isinstance(item, dict) and "role" in item and "content" in item for item in items
    ):
        raise ValueError(f"History must be a JSON list of {{role, content}} objects: {path}")
    return parse_chat_messages(items)


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    sys.exit(main())
