"""AI Writer - command line entry point."""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from aiwriter.budget.ledger import BudgetLedger
from aiwriter.config import AppConfig, BudgetConfig, ImageSearchConfig, LlmConfig
from aiwriter.models import GenerationRequest, OutputFormat
from aiwriter.pipeline.artifacts import export_artifacts, render_json
from aiwriter.pipeline.history import HistoryStore
from aiwriter.pipeline.orchestrator import GenerationOrchestrator, GenerationOutcome
from aiwriter.utils.logger import configure_logging
from aiwriter.utils.storage import JsonFileStore, LocalFileWriter

STORE_FILE = "store.json"


def parse_formats(value: str) -> frozenset[OutputFormat]:
    """Parse a comma-separated format list such as "pdf,pptx"."""
    try:
        formats = frozenset(OutputFormat(v.strip().lower()) for v in value.split(",") if v.strip())
    except ValueError as e:
        raise argparse.ArgumentTypeError(
            f"formats must be a comma-separated subset of {[f.value for f in OutputFormat]}"
        ) from e
    if not formats:
        raise argparse.ArgumentTypeError("at least one format required")
    return formats


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="aiwriter")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Generate a document about a topic")
    gen.add_argument("topic")
    gen.add_argument("--language", default="en")
    gen.add_argument("--formats", type=parse_formats, default=frozenset({OutputFormat.PDF}))

    summ = sub.add_parser("summarize", help="Summarize a text file")
    summ.add_argument("file", type=Path)
    summ.add_argument("--language", default="en")
    summ.add_argument("--formats", type=parse_formats, default=frozenset({OutputFormat.PDF}))

    trans = sub.add_parser("translate", help="Translate a text file")
    trans.add_argument("file", type=Path)
    trans.add_argument("--source", required=True)
    trans.add_argument("--target", required=True)
    trans.add_argument("--formats", type=parse_formats, default=frozenset({OutputFormat.PDF}))

    sub.add_parser("budget", help="Show today's token usage")
    sub.add_parser("history", help="List past generations")
    return parser


def _finish(outcome: GenerationOutcome, app: AppConfig, history: HistoryStore) -> int:
    if not outcome.ok:
        print(f"Error: {outcome.user_message}", file=sys.stderr)
        return 1
    entry = export_artifacts(
        outcome.result,
        outcome.history,
        ["json"],
        {"json": render_json},
        LocalFileWriter(app.output_dir),
    )
    history.append(entry)
    for f in entry.files:
        print(f"Wrote {f.file_path} ({f.size_bytes} bytes)")
    print(f"Tokens remaining today: {outcome.budget.remaining}")
    return 0


async def _run(args: argparse.Namespace, app: AppConfig) -> int:
    store = JsonFileStore(app.data_dir / STORE_FILE)
    history = HistoryStore(store)

    if args.command == "budget":
        state = BudgetLedger.from_config(store, BudgetConfig()).snapshot()
        print(
            json.dumps(
                {
                    "date": state.date.isoformat(),
                    "tokens_used_today": state.tokens_used_today,
                    "effective_limit": state.effective_limit,
                    "remaining": state.remaining,
                }
            )
        )
        return 0
    if args.command == "history":
        for entry in history.list():
            print(json.dumps(entry.to_dict(), ensure_ascii=False))
        return 0

    async with GenerationOrchestrator.from_config(
        store,
        LlmConfig(),
        ImageSearchConfig(),
        BudgetConfig(),
        log_dir=app.data_dir / "logs",
    ) as orchestrator:
        if args.command == "generate":
            outcome = await orchestrator.generate(
                GenerationRequest(args.topic, args.language, args.formats)
            )
        elif args.command == "summarize":
            text = args.file.read_text(encoding="utf-8")
            outcome = await orchestrator.summarize(
                text, args.language, args.formats, title=f"Summary {args.file.stem}"
            )
        else:
            text = args.file.read_text(encoding="utf-8")
            outcome = await orchestrator.translate(
                text, args.source, args.target, args.formats, title=args.file.stem
            )
    return _finish(outcome, app, history)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for AI Writer."""
    args = build_parser().parse_args(argv)
    app = AppConfig()
    configure_logging(app.log_level)
    return asyncio.run(_run(args, app))


if __name__ == "__main__":
    raise SystemExit(main())
