# src/manuscript_pipeline/ledger/cost_calculator.py — v1
"""Cost formulas for every billable operation.

LLM calls are priced per token from a per-model table (USD per 1M
tokens) with the configured rates as fallback. Payment processing,
email and infrastructure operations have fixed or table-driven costs.
"""

from __future__ import annotations

import uuid
from typing import Any

from manuscript_pipeline.config.settings import Settings
from manuscript_pipeline.ledger.models import CostEvent, ModelPricing

# Default pricing per 1M tokens
DEFAULT_PRICING: dict[str, ModelPricing] = {
    "claude-sonnet-4-20250514": ModelPricing(
        model="claude-sonnet-4-20250514",
        input_price_per_1m=3.0, output_price_per_1m=15.0,
    ),
    "claude-haiku-4-5-20251001": ModelPricing(
        model="claude-haiku-4-5-20251001",
        input_price_per_1m=0.80, output_price_per_1m=4.0,
    ),
    "gpt-4o": ModelPricing(
        model="gpt-4o",
        input_price_per_1m=2.50, output_price_per_1m=10.0,
    ),
    "gpt-4o-mini": ModelPricing(
        model="gpt-4o-mini",
        input_price_per_1m=0.15, output_price_per_1m=0.60,
    ),
}

STRIPE_PERCENT_FEE = 0.029
STRIPE_FIXED_FEE_USD = 0.30
EMAIL_COST_USD = 0.0005

# USD per unit of each infrastructure operation
INFRA_COST_TABLE: dict[str, float] = {
    "compute_cpu_ms": 0.000002,
    "db_read": 0.000001,
    "db_write": 0.000001,
    "object_store_class_a": 0.0000045,
    "object_store_class_b": 0.00000036,
    "kv_read": 0.0000005,
    "kv_write": 0.000005,
    "queue_operation": 0.0000004,
}

# Namespace for deterministic event ids (at-least-once safe)
_EVENT_NAMESPACE = uuid.UUID("6f1c1f0e-3b9a-4b1e-9d59-8f3a2d1c0b7e")


def resolve_pricing(
    model: str,
    settings: Settings | None = None,
    pricing: dict[str, ModelPricing] | None = None,
) -> ModelPricing:
    """Find pricing for a model, falling back to the configured rates.

    Lookup order: LLM_PRICING overrides, then the pricing table, then
    LLM_RATE_IN / LLM_RATE_OUT.
    """
    settings = settings or Settings()
    overrides = settings.pricing_overrides
    if model in overrides:
        rate_in, rate_out = overrides[model]
        return ModelPricing(
            model=model, input_price_per_1m=rate_in, output_price_per_1m=rate_out
        )
    table = pricing if pricing is not None else DEFAULT_PRICING
    if model in table:
        return table[model]
    return ModelPricing(
        model=model,
        input_price_per_1m=settings.llm_rate_in,
        output_price_per_1m=settings.llm_rate_out,
    )


def compute_llm_cost(input_tokens: int, output_tokens: int, pricing: ModelPricing) -> float:
    """usd = in x rate_in + out x rate_out (rates per 1M tokens)."""
    return (
        input_tokens * pricing.input_price_per_1m / 1_000_000
        + output_tokens * pricing.output_price_per_1m / 1_000_000
    )


def compute_stripe_fee(amount_usd: float) -> float:
    """Card processing fee for a charge of amount_usd."""
    return STRIPE_PERCENT_FEE * amount_usd + STRIPE_FIXED_FEE_USD


def compute_infra_cost(operation: str, units: float = 1.0) -> float:
    """Table-driven infrastructure cost.

    Raises:
        KeyError: If the operation has no entry in INFRA_COST_TABLE.
    """
    return INFRA_COST_TABLE[operation] * units


def deterministic_event_id(*parts: object) -> str:
    """Stable event id derived from the identity of the billed operation."""
    return str(uuid.uuid5(_EVENT_NAMESPACE, ":".join(str(p) for p in parts)))


def llm_cost_event(
    *,
    report_id: str,
    user_id: str,
    stage_id: str,
    attempt: int,
    model: str,
    input_tokens: int,
    output_tokens: int,
    pricing: ModelPricing,
    metadata: dict[str, Any] | None = None,
    section: int | None = None,
) -> CostEvent:
    """Build the CostEvent for one stage LLM call.

    Sectioned stages bill every section call separately; ``section``
    keeps their event ids distinct.
    """
    identity: tuple[object, ...] = (report_id, stage_id, attempt)
    if section is not None:
        identity += (f"s{section}",)
    return CostEvent(
        event_id=deterministic_event_id(*identity),
        report_id=report_id,
        user_id=user_id,
        cost_center="llm",
        feature_name=stage_id,
        operation="llm_completion",
        usd=compute_llm_cost(input_tokens, output_tokens, pricing),
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        model=model,
        metadata=metadata or {},
    )


def stripe_cost_event(
    *, user_id: str, amount_usd: float, charge_id: str, feature_name: str = "billing"
) -> CostEvent:
    return CostEvent(
        event_id=deterministic_event_id("stripe", charge_id),
        user_id=user_id,
        cost_center="payment",
        feature_name=feature_name,
        operation="stripe_charge",
        usd=compute_stripe_fee(amount_usd),
        metadata={"amountUsd": amount_usd, "chargeId": charge_id},
    )


def email_cost_event(
    *, user_id: str | None, message_id: str, feature_name: str = "notifications"
) -> CostEvent:
    return CostEvent(
        event_id=deterministic_event_id("email", message_id),
        user_id=user_id,
        cost_center="email",
        feature_name=feature_name,
        operation="email_send",
        usd=EMAIL_COST_USD,
        metadata={"messageId": message_id},
    )


def infra_cost_event(
    *,
    operation: str,
    units: float,
    event_key: str,
    report_id: str | None = None,
    user_id: str | None = None,
    feature_name: str = "pipeline",
) -> CostEvent:
    return CostEvent(
        event_id=deterministic_event_id("infra", operation, event_key),
        report_id=report_id,
        user_id=user_id,
        cost_center="infrastructure",
        feature_name=feature_name,
        operation=operation,
        usd=compute_infra_cost(operation, units),
        metadata={"units": units},
    )


def estimate_stage_cost(
    estimated_input_tokens: int, max_output_tokens: int, pricing: ModelPricing
) -> float:
    """Upper-bound cost of a stage call, priced at its full output allowance."""
    return compute_llm_cost(estimated_input_tokens, max_output_tokens, pricing)
