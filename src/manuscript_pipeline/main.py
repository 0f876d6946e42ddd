# src/manuscript_pipeline/main.py — v1
"""CLI entry point — upload, submit, status, cancel, result, worker, budget.

Usage:
    manuscript-pipeline upload <file> --user <id> [--title T] [--genre G]
    manuscript-pipeline submit <manuscriptId> --user <id> [--assets] [--run]
    manuscript-pipeline status <reportId>
    manuscript-pipeline cancel <reportId>
    manuscript-pipeline result <reportId> <stageId>
    manuscript-pipeline worker [--once]
    manuscript-pipeline budget <userId> [--limit USD] [--tier TIER]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from manuscript_pipeline.llm.base_client import BaseLLMClient
from manuscript_pipeline.llm.models import LLMResponse, Message
from manuscript_pipeline.version import __version__

if TYPE_CHECKING:
    from manuscript_pipeline.api.facade import PipelineContext
    from manuscript_pipeline.config.settings import Settings
    from manuscript_pipeline.core.models import StatusRecord

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    from manuscript_pipeline.config.settings import ConfigurationError, load_settings

    try:
        settings = load_settings()
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    _setup_logging(settings, args.verbose)

    try:
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="manuscript-pipeline",
        description=f"manuscript-pipeline v{__version__} — LLM manuscript analysis pipeline",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- upload ---
    p_upload = subparsers.add_parser("upload", help="Store a manuscript text file")
    p_upload.add_argument("file", type=Path, help="Plain-text manuscript")
    p_upload.add_argument("--user", required=True, help="Owning user id")
    p_upload.add_argument("--title", default="", help="Book title")
    p_upload.add_argument("--genre", default="general", help="Genre (default: general)")
    p_upload.add_argument("--id", dest="manuscript_id", default=None, help="Explicit manuscript id")
    p_upload.set_defaults(func=_cmd_upload)

    # --- submit ---
    p_submit = subparsers.add_parser("submit", help="Submit a manuscript for analysis")
    p_submit.add_argument("manuscript_id", help="Manuscript id returned by upload")
    p_submit.add_argument("--user", required=True, help="Submitting user id")
    p_submit.add_argument("--report-id", default=None, help="Explicit report id")
    p_submit.add_argument("--genre", default=None, help="Override manuscript genre")
    p_submit.add_argument(
        "--style-guide", choices=["chicago", "ap", "custom"], default="chicago",
    )
    p_submit.add_argument("--assets", action="store_true", help="Include asset stages")
    p_submit.add_argument("--marketing", action="store_true", help="Include marketing stages")
    p_submit.add_argument("--audiobook", action="store_true", help="Include audiobook suite")
    p_submit.add_argument(
        "--format", dest="formats", action="append", choices=["epub", "pdf"], default=[],
        help="Formatting brief to produce (repeatable)",
    )
    p_submit.add_argument("--author-json", type=Path, default=None, help="Author details JSON file")
    p_submit.add_argument("--series-json", type=Path, default=None, help="Series details JSON file")
    p_submit.add_argument(
        "--run", action="store_true",
        help="Drive the report in this process until it is terminal",
    )
    p_submit.set_defaults(func=_cmd_submit)

    # --- status ---
    p_status = subparsers.add_parser("status", help="Show a report's status record")
    p_status.add_argument("report_id")
    p_status.set_defaults(func=_cmd_status)

    # --- cancel ---
    p_cancel = subparsers.add_parser("cancel", help="Request cancellation of a report")
    p_cancel.add_argument("report_id")
    p_cancel.set_defaults(func=_cmd_cancel)

    # --- result ---
    p_result = subparsers.add_parser("result", help="Print one stage result")
    p_result.add_argument("report_id")
    p_result.add_argument("stage_id")
    p_result.set_defaults(func=_cmd_result)

    # --- worker ---
    p_worker = subparsers.add_parser("worker", help="Run a queue worker")
    p_worker.add_argument("--once", action="store_true", help="Drive at most one report")
    p_worker.add_argument("--consumer-id", default=None, help="Lease owner identity")
    p_worker.set_defaults(func=_cmd_worker)

    # --- budget ---
    p_budget = subparsers.add_parser("budget", help="Show or adjust a user's monthly budget")
    p_budget.add_argument("user_id")
    p_budget.add_argument("--limit", type=float, default=None, help="Set monthly limit (USD)")
    p_budget.add_argument(
        "--tier", choices=["free", "pro", "enterprise"], default=None, help="Set user tier",
    )
    p_budget.set_defaults(func=_cmd_budget)

    return parser


async def _cmd_upload(args: argparse.Namespace, settings: Settings) -> int:
    """Store a manuscript from a text file."""
    from manuscript_pipeline.api.facade import upload_manuscript
    from manuscript_pipeline.api.models import UploadRequest

    file_path: Path = args.file
    if not file_path.is_file():
        logger.error("File not found: %s", file_path)
        return 1

    ctx = _context(settings, with_llm=False)
    try:
        response = await upload_manuscript(
            ctx,
            UploadRequest(
                user_id=args.user,
                text=file_path.read_text(encoding="utf-8"),
                title=args.title or file_path.stem,
                genre=args.genre,
                manuscript_id=args.manuscript_id,
            ),
        )
    finally:
        ctx.close()
    print(f"Manuscript {response.manuscript_id} stored ({response.word_count} words)")
    return 0


async def _cmd_submit(args: argparse.Namespace, settings: Settings) -> int:
    """Submit a report, optionally driving it to completion in-process."""
    from manuscript_pipeline.api.facade import error_response, get_status, submit_report
    from manuscript_pipeline.api.models import SubmitRequest
    from manuscript_pipeline.core.errors import BudgetExceeded, DuplicateReport, ManuscriptMissing
    from manuscript_pipeline.core.models import SubmitOptions

    options = SubmitOptions(
        user_id=args.user,
        genre=args.genre,
        style_guide=args.style_guide,
        include_assets=args.assets,
        include_marketing=args.marketing,
        include_audiobook=args.audiobook,
        formats=sorted(set(args.formats)),
        author_data=_read_json(args.author_json),
        series_data=_read_json(args.series_json),
    )

    ctx = _context(settings, with_llm=args.run)
    try:
        try:
            response = await submit_report(
                ctx,
                SubmitRequest(
                    manuscript_id=args.manuscript_id, options=options, report_id=args.report_id
                ),
            )
        except (BudgetExceeded, DuplicateReport, ManuscriptMissing) as exc:
            print(error_response(exc).message, file=sys.stderr)
            return 1
        print(f"Report {response.report_id} queued")

        if not args.run:
            if ctx.settings.queue_backend == "memory":
                logger.warning(
                    "QUEUE_BACKEND=memory: the envelope lives only in this process; "
                    "use --run or a shared queue backend"
                )
            return 0

        worker = ctx.worker()
        while True:
            await worker.run_once(timeout=ctx.settings.dequeue_timeout_sec)
            view = await get_status(ctx, response.report_id)
            if view.status.is_terminal:
                break
        _print_status(view.report_id, view.status, view.user_message)
        return 0 if view.status.state == "complete" else 1
    finally:
        ctx.close()


async def _cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    from manuscript_pipeline.api.facade import get_status
    from manuscript_pipeline.core.errors import ReportNotFound

    ctx = _context(settings, with_llm=False)
    try:
        view = await get_status(ctx, args.report_id)
    except ReportNotFound:
        print(f"Report {args.report_id} not found", file=sys.stderr)
        return 1
    finally:
        ctx.close()
    _print_status(view.report_id, view.status, view.user_message)
    return 0


async def _cmd_cancel(args: argparse.Namespace, settings: Settings) -> int:
    from manuscript_pipeline.api.facade import cancel_report
    from manuscript_pipeline.core.errors import ReportNotFound

    ctx = _context(settings, with_llm=False)
    try:
        await cancel_report(ctx, args.report_id)
    except ReportNotFound:
        print(f"Report {args.report_id} not found", file=sys.stderr)
        return 1
    finally:
        ctx.close()
    print(f"Cancel requested for {args.report_id}")
    return 0


async def _cmd_result(args: argparse.Namespace, settings: Settings) -> int:
    from manuscript_pipeline.api.facade import get_result
    from manuscript_pipeline.core.errors import ResultNotFound

    ctx = _context(settings, with_llm=False)
    try:
        data = await get_result(ctx, args.report_id, args.stage_id)
    except ResultNotFound:
        print(f"No {args.stage_id} result for {args.report_id}", file=sys.stderr)
        return 1
    finally:
        ctx.close()
    print(json.dumps(json.loads(data), indent=2, ensure_ascii=False))
    return 0


async def _cmd_worker(args: argparse.Namespace, settings: Settings) -> int:
    """Run a worker until SIGINT/SIGTERM (or one report with --once)."""
    ctx = _context(settings, with_llm=True)
    worker = ctx.worker(consumer_id=args.consumer_id)
    try:
        if args.once:
            state = await worker.run_once(timeout=ctx.settings.dequeue_timeout_sec)
            print(f"Report finished: {state}" if state else "No report driven")
            return 0

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, worker.stop)
            except NotImplementedError:
                pass
        await worker.run()
        return 0
    finally:
        ctx.close()


async def _cmd_budget(args: argparse.Namespace, settings: Settings) -> int:
    """Show (and optionally change) a user's budget for the current period."""
    from manuscript_pipeline.ledger.models import user_scope

    ctx = _context(settings, with_llm=False)
    try:
        if args.tier:
            await ctx.ledger.set_user_tier(args.user_id, args.tier)
        if args.limit is not None:
            await ctx.ledger.set_limit(user_scope(args.user_id), args.limit)
        check = await ctx.ledger.check_user(args.user_id)
        alerts = await ctx.ledger.alerts(user_scope(args.user_id))
    finally:
        ctx.close()

    print(f"\nBudget for {args.user_id} ({check.period}):")
    print(f"  Limit:     ${check.limit_usd:.2f}")
    print(f"  Spent:     ${check.spent_usd:.4f}")
    print(f"  Remaining: ${check.remaining_usd:.4f}")
    print(f"  Exceeded:  {'yes' if check.exceeded else 'no'}")
    for alert in alerts:
        if alert.period == check.period:
            print(f"  Alert:     {alert.threshold:.0f}% ({alert.severity})")
    return 0


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _context(settings: Settings, with_llm: bool) -> PipelineContext:
    """Build the pipeline context; commands that never call the LLM get a stub client."""
    from manuscript_pipeline.api.facade import PipelineContext

    llm_client = None if with_llm else _OfflineClient()
    return PipelineContext.from_settings(settings, llm_client=llm_client)


def _read_json(path: Path | None) -> dict[str, Any]:
    if path is None:
        return {}
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return data


def _print_status(report_id: str, status: StatusRecord, message: str | None) -> None:
    """Print a human-readable summary of a StatusRecord."""
    print(f"\nReport {report_id}:")
    print(f"  State:    {status.state}")
    print(f"  Progress: {status.progress}%")
    if status.current_step:
        print(f"  Step:     {status.current_step}")
    print(f"  Message:  {message or status.message}")
    for stage_id, key in sorted((status.results or {}).items()):
        print(f"  Result:   {stage_id} -> {key}")
    for stage_id, kind in sorted((status.errors or {}).items()):
        print(f"  Error:    {stage_id}: {kind}")


def _setup_logging(settings: Settings, verbose: bool) -> None:
    """Configure logging for CLI usage."""
    from manuscript_pipeline.logging.logger import setup_logging

    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class _OfflineClient(BaseLLMClient):
    """Placeholder LLM client for commands that only read or write state."""

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.2,
        idempotency_key: str | None = None,
    ) -> LLMResponse:
        raise RuntimeError("This command does not call the LLM")

    @property
    def provider_name(self) -> str:
        return "offline"

    @property
    def model(self) -> str:
        return "offline"


if __name__ == "__main__":
    sys.exit(main())
