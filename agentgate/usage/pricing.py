"""Per-brand, per-model rate tables (already marked up, per 1k tokens)."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field


@dataclass(frozen=True)
class ModelRates:
    input_per_1k: float = 0.0
    output_per_1k: float = 0.0
    input_cache_per_1k: float = 0.0

    @property
    def is_priced(self) -> bool:
        return bool(self.input_per_1k or self.output_per_1k or self.input_cache_per_1k)


@dataclass
class PricingTable:
    """
    Read-only rate lookup shared by every session in the process.

    Parameters
    ----------
    rates:
        ``{brand: {model: ModelRates}}``.
    """

    rates: dict[str, dict[str, ModelRates]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict) -> PricingTable:
        rates: dict[str, dict[str, ModelRates]] = {}
        for brand, models in (raw or {}).items():
            rates[brand] = {
                model: ModelRates(
                    input_per_1k=float(r.get("input_per_1k", 0) or 0),
                    output_per_1k=float(r.get("output_per_1k", 0) or 0),
                    input_cache_per_1k=float(r.get("input_cache_per_1k", 0) or 0),
                )
                for model, r in (models or {}).items()
            }
        return cls(rates=rates)

    def get(self, brand: str, model: str) -> ModelRates:
        """Return the rates for *brand*/*model*, or zero rates if unknown."""
        return self.rates.get(brand, {}).get(model, ModelRates())

    def to_dict(self) -> dict:
        return {
            brand: {model: asdict(r) for model, r in models.items()}
            for brand, models in self.rates.items()
        }
