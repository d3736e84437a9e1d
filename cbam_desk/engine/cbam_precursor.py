from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from cbam_desk.engine.cbam_defaults import resolve_default
from cbam_desk.engine.cn_codes import clean_cn, resolve_category
from cbam_desk.engine.models import VALUE_AUTO_DEFAULT, EmissionEntry, Precursor
from cbam_desk.engine.reference import RegulatoryReference, resolve_reference
from cbam_desk.mrv.lineage import quantize

logger = logging.getLogger(__name__)


def is_complex_good(cn_code: Any, reference: Optional[RegulatoryReference] = None) -> bool:
    ref = resolve_reference(reference)
    return clean_cn(cn_code) in ref.complex_goods


def is_simple_good(cn_code: Any, reference: Optional[RegulatoryReference] = None) -> bool:
    ref = resolve_reference(reference)
    return clean_cn(cn_code) in ref.simple_goods


@dataclass(frozen=True)
class PrecursorAggregate:
    precursors: Tuple[Precursor, ...]
    embedded_emissions: float
    auto_generated: bool
    warnings: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "precursors": [p.to_dict() for p in self.precursors],
            "embedded_emissions": self.embedded_emissions,
            "auto_generated": self.auto_generated,
            "warnings": list(self.warnings),
        }


def default_precursors(entry: EmissionEntry, reference: Optional[RegulatoryReference] = None) -> Tuple[Precursor, ...]:
    """Default precursor lines for a complex good, scaled to the entry quantity.

    Weight fractions are a heuristic apportionment of the good's mass, not a
    mass balance, so the generated quantities need not add up to the entry
    quantity. Each line's factor is the mark-up adjusted default of the
    precursor itself for the entry's country; when the precursor CN has no
    default, the parent category's default is used instead.
    """
    ref = resolve_reference(reference)
    cn = clean_cn(entry.cn_code)
    templates = ref.complex_goods.get(cn) or ()
    if not templates:
        return ()

    parent = resolve_default(cn, None, entry.country_of_origin, ref)
    rows: List[Precursor] = []
    for t in templates:
        dv = resolve_default(t.cn_code, None, entry.country_of_origin, ref) or parent
        factor = dv.total if dv is not None else 0.0
        rows.append(
            Precursor(
                cn_code=t.cn_code,
                name=t.name,
                quantity=quantize(t.weight * entry.quantity, 6),
                emission_factor=quantize(factor, 6),
                reporting_period_year=entry.reporting_period_year,
                value_type=VALUE_AUTO_DEFAULT,
                verified=False,
            )
        )
    return tuple(rows)


def aggregate_precursors(entry: EmissionEntry, reference: Optional[RegulatoryReference] = None) -> PrecursorAggregate:
    """Embedded emissions contributed by precursors.

    Supplied precursor lines are used as given (quantity x factor). A complex
    good with no supplied lines gets the default composition tagged
    ``auto_default``. Lines already tagged ``auto_default`` come from an
    earlier calculation and are regenerated, never treated as supplied, so
    they follow changes to quantity or origin. Simple goods and goods
    outside the complex-goods table contribute their supplied lines only.
    """
    ref = resolve_reference(reference)
    warnings: List[str] = []

    supplied: List[Precursor] = []
    for p in entry.precursors_used:
        if not p.cn_code:
            logger.warning("Skipping precursor without CN code on entry %s", entry.entry_id or entry.cn_code)
            warnings.append("Precursor line without CN code ignored")
            continue
        if p.is_auto_default:
            continue
        supplied.append(p)

    if supplied:
        if is_simple_good(entry.cn_code, ref):
            warnings.append("Simple good does not require precursors; supplied lines are still counted")
        for p in supplied:
            if not p.has_emissions_data:
                warnings.append(f"Precursor {p.cn_code} has no emissions data")
            elif resolve_category(p.cn_code, ref) is None:
                warnings.append(f"Precursor {p.cn_code} is outside CBAM scope bands")
        total = sum(p.embedded_emissions for p in supplied)
        return PrecursorAggregate(
            precursors=tuple(supplied),
            embedded_emissions=quantize(total, 6),
            auto_generated=False,
            warnings=tuple(warnings),
        )

    if is_complex_good(entry.cn_code, ref):
        generated = default_precursors(entry, ref)
        warnings.append(
            f"Complex good without precursor data: {len(generated)} default precursor lines applied (unverified)"
        )
        total = sum(p.embedded_emissions for p in generated)
        return PrecursorAggregate(
            precursors=generated,
            embedded_emissions=quantize(total, 6),
            auto_generated=True,
            warnings=tuple(warnings),
        )

    return PrecursorAggregate(precursors=(), embedded_emissions=0.0, auto_generated=False, warnings=tuple(warnings))
