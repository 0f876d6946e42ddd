# src/manuscript_pipeline/pipeline/analyzer.py — v1
"""Analyzer — execute one stage of one report.

Reads inputs from the object store, prices the call against the user's
budget, calls the LLM once (once per section for sectioned stages),
records the cost, validates the answer and writes the result under its
canonical key. Retries are not handled here: every failure surfaces as
a PipelineError whose kind the orchestrator turns into a retry, a
repair or a terminal stage state.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from manuscript_pipeline.config.settings import Settings
from manuscript_pipeline.core.errors import (
    BudgetExceeded,
    InvariantViolation,
    ManuscriptMissing,
    ManuscriptUnreadable,
    ObjectConflict,
    ResultNotFound,
    StageCancelled,
    StageValidationError,
    error_for_kind,
)
from manuscript_pipeline.ledger.base_ledger import BaseCostLedger
from manuscript_pipeline.ledger.cost_calculator import (
    estimate_stage_cost,
    llm_cost_event,
    resolve_pricing,
)
from manuscript_pipeline.ledger.models import ModelPricing
from manuscript_pipeline.llm.base_client import BaseLLMClient
from manuscript_pipeline.llm.concurrency import LLMConcurrencyLimiter
from manuscript_pipeline.llm.models import LLMResponse, Message
from manuscript_pipeline.llm.retry import classify_error
from manuscript_pipeline.llm.token_budget import estimate_call_tokens, request_id
from manuscript_pipeline.pipeline.plugin_kit.base_stage import BaseStage
from manuscript_pipeline.pipeline.plugin_kit.models import (
    SectionOutcome,
    StageInput,
    StageResponse,
    StageResult,
    TextSection,
)
from manuscript_pipeline.pipeline.registry import StageRegistry
from manuscript_pipeline.pipeline.state import PipelineRun
from manuscript_pipeline.storage import layout
from manuscript_pipeline.storage.manuscripts import load_manuscript
from manuscript_pipeline.storage.run_repository import RunRepository

logger = logging.getLogger(__name__)

CancelCheck = Callable[[], Awaitable[bool]]


@dataclass
class _Call:
    """One billed LLM call of a stage attempt."""

    llm: LLMResponse
    usd: float
    response: StageResponse | None
    error: str | None
    section: TextSection | None = None


def serialize_result(response: StageResponse) -> bytes:
    """Canonical result bytes: camelCase keys, sorted, UTF-8, no timestamps."""
    payload = response.model_dump(by_alias=True, mode="json")
    return json.dumps(payload, sort_keys=True, ensure_ascii=False).encode("utf-8")


class StageAnalyzer:
    """Run single stages against the LLM with budget and cost accounting.

    Args:
        registry: Stage definitions of the current DAG.
        runs: Repository over the shared object store.
        ledger: Cost ledger for preflight checks and cost events.
        llm_client: Provider client used for every stage.
        limiter: Global LLM concurrency limiter shared by all reports.
        settings: Budget margin and pricing configuration.
        pricing: Optional per-model pricing table override.
    """

    def __init__(
        self,
        registry: StageRegistry,
        runs: RunRepository,
        ledger: BaseCostLedger,
        llm_client: BaseLLMClient,
        limiter: LLMConcurrencyLimiter | None = None,
        settings: Settings | None = None,
        pricing: dict[str, ModelPricing] | None = None,
    ) -> None:
        self._registry = registry
        self._runs = runs
        self._ledger = ledger
        self._llm = llm_client
        self._limiter = limiter or LLMConcurrencyLimiter()
        self._settings = settings or Settings()
        self._pricing = pricing

    async def run(
        self,
        report_id: str,
        stage_id: str,
        attempt: int,
        *,
        repair_hint: str | None = None,
        is_cancelled: CancelCheck | None = None,
    ) -> StageResult:
        """Execute one stage attempt.

        Sectioned stages make one call per manuscript section and store
        the merged report; every call is budgeted up front and billed on
        its own.

        Raises:
            InvariantViolation: Unknown stage, missing run, manuscript or parent result.
            BudgetExceeded: The estimated cost does not fit the remaining budget.
            StageCancelled: The report was cancelled before an LLM call.
            TransientError, AuthError: Classified LLM failures.
            StageValidationError: The answer did not satisfy the stage contract.
        """
        stage = self._registry.get(stage_id)
        if stage is None:
            raise InvariantViolation(f"Unknown stage '{stage_id}'", stage_id=stage_id)

        key = layout.result_key(report_id, stage_id)
        if await self._runs.store.exists(key):
            logger.info("Stage %s/%s already has a result, reusing", report_id, stage_id)
            return StageResult(stage_id=stage_id, result_key=key, reused=True)

        run = await self._runs.load_run(report_id)
        if run is None:
            raise InvariantViolation(f"No run for report {report_id}", stage_id=stage_id)

        inp = await self._load_input(run, stage, attempt, repair_hint)
        if stage.section_words:
            calls = [
                inp.model_copy(update={"section": section})
                for section in stage.split_sections(inp.text)
            ]
        else:
            calls = [inp]
        prompts = [stage.build_prompt(call) for call in calls]
        pricing = resolve_pricing(self._llm.model, self._settings, self._pricing)
        await self._preflight(run, stage, prompts, pricing)

        if is_cancelled is not None and await is_cancelled():
            raise StageCancelled(f"Report {report_id} cancelled", stage_id=stage_id)

        if not stage.section_words:
            call = await self._attempt_call(run, stage, attempt, prompts[0], pricing)
            if call.response is None:
                logger.warning(
                    "Stage %s/%s attempt %d returned an invalid answer: %s",
                    report_id, stage_id, attempt, call.error,
                )
                raise StageValidationError(call.error or "invalid response", stage_id=stage_id)
            result = call.response
            totals = [call]
        else:
            totals = await self._run_sections(run, stage, attempt, calls, prompts, pricing, is_cancelled)
            result = self._merge(run, stage, attempt, inp, totals)

        await self._write_result(key, result)

        input_tokens = sum(c.llm.input_tokens for c in totals)
        output_tokens = sum(c.llm.output_tokens for c in totals)
        usd = sum(c.usd for c in totals)
        logger.info(
            "Stage %s/%s attempt %d done: calls=%d tokens=%d/%d cost=$%.4f latency=%dms",
            report_id, stage_id, attempt, len(totals),
            input_tokens, output_tokens, usd, max(c.llm.latency_ms for c in totals),
        )
        return StageResult(
            stage_id=stage_id,
            result_key=key,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            usd=usd,
            model=totals[0].llm.model,
        )

    # --- Steps ---

    async def _load_input(
        self,
        run: PipelineRun,
        stage: BaseStage,
        attempt: int,
        repair_hint: str | None,
    ) -> StageInput:
        try:
            manuscript, text = await load_manuscript(
                self._runs.store, run.user_id, run.manuscript_id
            )
        except (ManuscriptMissing, ManuscriptUnreadable) as exc:
            raise InvariantViolation(str(exc), stage_id=stage.stage_id) from exc

        parents: dict[str, dict[str, Any]] = {}
        for dep in stage.dependencies:
            try:
                raw = await self._runs.read_result(run.report_id, dep)
            except ResultNotFound as exc:
                raise InvariantViolation(
                    f"Missing result of '{dep}' required by '{stage.stage_id}'",
                    stage_id=stage.stage_id,
                ) from exc
            parents[dep] = json.loads(raw)

        return StageInput(
            report_id=run.report_id,
            stage_id=stage.stage_id,
            attempt=attempt,
            manuscript=manuscript,
            text=text,
            options=run.options,
            parents=parents,
            repair_hint=repair_hint,
        )

    async def _preflight(
        self, run: PipelineRun, stage: BaseStage, prompts: list[str], pricing: ModelPricing
    ) -> None:
        """Refuse the stage when the estimated cost of its calls does not fit the budgets."""
        estimate = 0.0
        for prompt in prompts:
            est_in, est_out = estimate_call_tokens(prompt, stage.system_prompt, stage.max_tokens)
            estimate += estimate_stage_cost(est_in, est_out, pricing)
        needed = estimate * self._settings.budget_estimate_margin

        for check in (
            await self._ledger.check_user(run.user_id),
            await self._ledger.check_global(),
        ):
            if check.exceeded or check.remaining_usd < needed:
                logger.warning(
                    "Budget preflight refused %s/%s: scope=%s remaining=$%.4f needed=$%.4f",
                    run.report_id, stage.stage_id, check.scope, check.remaining_usd, needed,
                )
                raise BudgetExceeded(
                    f"{check.scope} budget cannot cover {stage.stage_id}",
                    stage_id=stage.stage_id,
                )

    async def _attempt_call(
        self,
        run: PipelineRun,
        stage: BaseStage,
        attempt: int,
        prompt: str,
        pricing: ModelPricing,
        section: TextSection | None = None,
    ) -> _Call:
        """One billed LLM call plus validation of its answer."""
        number = section.number if section is not None else None
        rid = request_id(run.report_id, stage.stage_id, attempt, number)
        response = await self._call_llm(stage, prompt, rid)

        validated: StageResponse | None = None
        failure: str | None = None
        try:
            validated = stage.validate_response(stage.parse_response(response.content))
        except (ValidationError, ValueError) as exc:
            failure = _summarize_validation(exc)

        usd = await self._record_cost(
            run, stage.stage_id, attempt, rid, response, pricing, failure, section=number
        )
        return _Call(llm=response, usd=usd, response=validated, error=failure, section=section)

    async def _run_sections(
        self,
        run: PipelineRun,
        stage: BaseStage,
        attempt: int,
        calls: list[StageInput],
        prompts: list[str],
        pricing: ModelPricing,
        is_cancelled: CancelCheck | None,
    ) -> list[_Call]:
        """Call every section, at most section_concurrency at a time.

        The first failing call cancels the calls still pending.
        """
        gate = asyncio.Semaphore(self._settings.section_concurrency)

        async def one(inp: StageInput, prompt: str) -> _Call:
            async with gate:
                if is_cancelled is not None and await is_cancelled():
                    raise StageCancelled(
                        f"Report {run.report_id} cancelled", stage_id=stage.stage_id
                    )
                return await self._attempt_call(run, stage, attempt, prompt, pricing, inp.section)

        tasks = [asyncio.create_task(one(inp, prompt)) for inp, prompt in zip(calls, prompts)]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    def _merge(
        self,
        run: PipelineRun,
        stage: BaseStage,
        attempt: int,
        inp: StageInput,
        done: list[_Call],
    ) -> StageResponse:
        """Merged report, or StageValidationError when most sections failed."""
        invalid = [c for c in done if c.response is None]
        if len(invalid) * 2 > len(done):
            detail = f"{len(invalid)} of {len(done)} sections invalid ({invalid[0].error})"
            logger.warning(
                "Stage %s/%s attempt %d: %s", run.report_id, stage.stage_id, attempt, detail
            )
            raise StageValidationError(detail, stage_id=stage.stage_id)
        if invalid:
            logger.warning(
                "Stage %s/%s attempt %d: sections %s left unanalyzed",
                run.report_id, stage.stage_id, attempt,
                ", ".join(str(c.section.number) for c in invalid),
            )
        outcomes = [
            SectionOutcome(section=c.section, response=c.response, error=c.error)
            for c in done
        ]
        return stage.merge_sections(inp, outcomes)

    async def _write_result(self, key: str, result: StageResponse) -> None:
        try:
            await self._runs.store.put(key, serialize_result(result))
        except ObjectConflict:
            logger.warning("Result %s was written concurrently; keeping the stored copy", key)

    async def _call_llm(self, stage: BaseStage, prompt: str, rid: str) -> LLMResponse:
        start = time.monotonic()
        try:
            async with self._limiter.slot():
                response = await self._llm.complete(
                    [Message(role="user", content=prompt)],
                    system=stage.system_prompt,
                    max_tokens=stage.max_tokens,
                    temperature=stage.temperature,
                    idempotency_key=rid,
                )
        except Exception as exc:
            kind = classify_error(exc)
            logger.warning(
                "LLM call for %s failed after %.1fs (%s): %s",
                stage.stage_id, time.monotonic() - start, kind, exc,
            )
            raise error_for_kind(kind, str(exc), stage_id=stage.stage_id) from exc
        return response

    async def _record_cost(
        self,
        run: PipelineRun,
        stage_id: str,
        attempt: int,
        rid: str,
        response: LLMResponse,
        pricing: ModelPricing,
        failure: str | None,
        section: int | None = None,
    ) -> float:
        metadata: dict[str, Any] = {
            "attempt": attempt,
            "requestId": rid,
            "provider": response.provider,
        }
        if section is not None:
            metadata["section"] = section
        if failure is not None:
            metadata["errorKind"] = "validation_error"
        if response.model != pricing.model:
            pricing = resolve_pricing(response.model, self._settings, self._pricing)
        event = llm_cost_event(
            report_id=run.report_id,
            user_id=run.user_id,
            stage_id=stage_id,
            attempt=attempt,
            model=response.model,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
            pricing=pricing,
            metadata=metadata,
            section=section,
        )
        await self._ledger.record(event)
        return event.usd


def _summarize_validation(exc: Exception) -> str:
    """Short, prompt-safe description of why an answer was rejected."""
    if isinstance(exc, ValidationError):
        parts = [
            f"{'.'.join(str(p) for p in err['loc']) or 'root'}: {err['msg']}"
            for err in exc.errors()[:5]
        ]
        return "; ".join(parts)
    return str(exc)
