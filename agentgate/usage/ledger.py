"""
Brand-aware token and cost accounting.

Providers disagree on counter names: DeepSeek reports cache hits and misses
separately, OpenAI's event protocol nests cached tokens under
``input_tokens_details``, Anthropic reports ``cache_read_input_tokens`` and
the chat-completions dialects have no cache counter at all.  The ledger
maps each brand's counters onto one ``UsageRecord``.

Costs are billed in fixed minimum units: every billable component is
floored at ``MIN_UNIT`` after rounding to four decimals, and the total is
floored again at ``MIN_TOTAL``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from agentgate.usage.pricing import ModelRates, PricingTable

logger = logging.getLogger(__name__)

MIN_UNIT = 0.0001
MIN_TOTAL = 0.0002


@dataclass(frozen=True)
class CounterMapping:
    input: tuple[str, ...]
    output: tuple[str, ...]
    cached: tuple[str, ...] = ()
    total: tuple[str, ...] = ("total_tokens",)


_GENERIC = CounterMapping(
    input=("prompt_tokens", "input_tokens"),
    output=("completion_tokens", "output_tokens"),
)

COUNTER_MAPPINGS: dict[str, CounterMapping] = {
    "deepseek": CounterMapping(
        input=("prompt_cache_miss_tokens", "prompt_tokens"),
        output=("completion_tokens",),
        cached=("prompt_cache_hit_tokens",),
    ),
    "openai": CounterMapping(
        input=("input_tokens", "prompt_tokens"),
        output=("output_tokens", "completion_tokens"),
        cached=("input_tokens_details.cached_tokens", "prompt_tokens_details.cached_tokens"),
    ),
    "anthropic": CounterMapping(
        input=("input_tokens",),
        output=("output_tokens",),
        cached=("cache_read_input_tokens",),
    ),
    "gemini": _GENERIC,
    "generic": _GENERIC,
}


@dataclass
class UsageRecord:
    """Billing unit for one upstream round-trip (or one billable tool call)."""

    brand: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cached_tokens: int | None = None
    rates: ModelRates = field(default_factory=ModelRates)
    input_cost: float = 0.0
    output_cost: float = 0.0
    total_cost: float = 0.0
    cache_savings: float | None = None
    source: str = "model"
    original: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        breakdown: dict[str, Any] = {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }
        costs: dict[str, Any] = {
            "input_cost": self.input_cost,
            "output_cost": self.output_cost,
            "total_cost": self.total_cost,
        }
        if self.cached_tokens is not None:
            breakdown["cached_tokens"] = self.cached_tokens
        if self.cache_savings is not None:
            costs["cache_savings"] = self.cache_savings
        return {
            "type": self.source,
            "brand": self.brand,
            "model": self.model,
            "original": self.original,
            "breakdown": breakdown,
            "pricing": {
                "input_per_1k": round(self.rates.input_per_1k, 4),
                "output_per_1k": round(self.rates.output_per_1k, 4),
                "input_cache_per_1k": round(self.rates.input_cache_per_1k, 4),
            },
            "costs": costs,
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _lookup(usage: dict, path: str) -> Any:
    value: Any = usage
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _first_count(usage: dict, candidates: tuple[str, ...]) -> int | None:
    for path in candidates:
        value = _lookup(usage, path)
        if isinstance(value, (int, float)):
            return int(value)
    return None


def floor_cost(value: float) -> float:
    """Round to four decimals and floor at the minimum billable unit."""
    return max(MIN_UNIT, round(value, 4))


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class UsageLedger:
    """
    Turns raw provider usage counters into ``UsageRecord`` objects.

    Parameters
    ----------
    pricing:
        Process-wide rate table.  Never mutated.
    """

    def __init__(self, pricing: PricingTable | None = None) -> None:
        self.pricing = pricing or PricingTable()

    def record(
        self,
        usage: dict,
        brand: str,
        model: str,
        *,
        own_credentials: bool = False,
    ) -> UsageRecord:
        mapping = COUNTER_MAPPINGS.get(brand, _GENERIC)
        input_tokens = _first_count(usage, mapping.input) or 0
        output_tokens = _first_count(usage, mapping.output) or 0
        cached = _first_count(usage, mapping.cached) if mapping.cached else None
        total = _first_count(usage, mapping.total)
        if total is None:
            total = input_tokens + output_tokens
            # deepseek's input counter excludes cache hits
            if brand == "deepseek" and cached:
                total += cached

        if own_credentials:
            return UsageRecord(
                brand=brand,
                model=model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=total,
                cached_tokens=cached,
                original=dict(usage),
            )

        rates = self.pricing.get(brand, model)
        if not rates.is_priced:
            logger.warning("No pricing for %s/%s; billing minimum units", brand, model)

        cached_count = cached or 0
        if brand == "deepseek":
            hit_cost = floor_cost(cached_count / 1000 * rates.input_cache_per_1k) if cached_count else 0.0
            miss_cost = floor_cost(input_tokens / 1000 * rates.input_per_1k)
            input_cost = round(hit_cost + miss_cost, 4)
            savings = cached_count / 1000 * (rates.input_per_1k - rates.input_cache_per_1k)
        else:
            input_cost = floor_cost(input_tokens / 1000 * rates.input_per_1k)
            savings = cached_count / 1000 * rates.input_per_1k
        output_cost = floor_cost(output_tokens / 1000 * rates.output_per_1k)
        total_cost = max(MIN_TOTAL, round(input_cost + output_cost, 4))

        return UsageRecord(
            brand=brand,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total,
            cached_tokens=cached,
            rates=rates,
            input_cost=input_cost,
            output_cost=output_cost,
            total_cost=total_cost,
            cache_savings=round(savings, 4) if mapping.cached else None,
            original=dict(usage),
        )

    def record_tool(self, tool_name: str, usage: dict) -> UsageRecord:
        """
        Wrap usage reported by a tool.  Tools report their own cost, so no
        rate lookup happens; a reported ``total_cost`` is taken as-is.
        """
        cost = usage.get("total_cost", usage.get("cost", 0.0)) or 0.0
        return UsageRecord(
            brand="tool",
            model=tool_name,
            input_tokens=_first_count(usage, _GENERIC.input) or 0,
            output_tokens=_first_count(usage, _GENERIC.output) or 0,
            total_tokens=_first_count(usage, _GENERIC.total) or 0,
            total_cost=round(float(cost), 4),
            source="tool",
            original=dict(usage),
        )


def summarize(records: list[UsageRecord]) -> dict:
    """Aggregate a session's records for the synchronous response."""
    return {
        "input_tokens": sum(r.input_tokens for r in records),
        "output_tokens": sum(r.output_tokens for r in records),
        "total_tokens": sum(r.total_tokens for r in records),
        "total_cost": round(sum(r.total_cost for r in records), 4),
        "records": len(records),
    }
