from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from cbam_desk.engine.cbam_defaults import base_default, country_markup
from cbam_desk.engine.cbam_precursor import aggregate_precursors
from cbam_desk.engine.cn_codes import clean_cn, resolve_category
from cbam_desk.engine.models import EmissionEntry
from cbam_desk.engine.reference import IntensityPair, RegulatoryReference, resolve_reference
from cbam_desk.mrv.lineage import quantize


@dataclass(frozen=True)
class PreviewResult:
    """Pessimistic estimate shown while an entry is still being filled in.

    Never feeds the official figures; see ``engine.certificates`` for those.
    """
    total_emissions: float
    chargeable_emissions: float
    certificates_required: float
    estimated_cost: Optional[float]
    markup_applied: float
    direct_intensity_used: float
    indirect_intensity_used: float
    warnings: Tuple[str, ...]
    is_conservative: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_emissions": self.total_emissions,
            "chargeable_emissions": self.chargeable_emissions,
            "certificates_required": self.certificates_required,
            "estimated_cost": self.estimated_cost,
            "markup_applied": self.markup_applied,
            "direct_intensity_used": self.direct_intensity_used,
            "indirect_intensity_used": self.indirect_intensity_used,
            "warnings": list(self.warnings),
            "is_conservative": self.is_conservative,
        }


def _estimated_cost(chargeable: float, certificate_price: Optional[float]) -> Optional[float]:
    if certificate_price is None:
        return None
    return quantize(quantize(chargeable, 6) * float(certificate_price), 2)


def conservative_preview(
    entry: EmissionEntry,
    reference: Optional[RegulatoryReference] = None,
    certificate_price: Optional[float] = None,
) -> PreviewResult:
    """Worst-case figures for display before the entry is final.

    - unverified intensities below the conservative floor (zero included)
      are replaced by it; the floor is the category minimum or the official
      default grossed up by the preview factor, whichever is larger
    - unverified precursor emissions are grossed up the same way
    - without verified actuals the mark-up is the larger of the year's
      ceiling and the country tier
    - free allocation is ignored beyond the fixed preview factor
    - the total is floored at a small positive value

    For unverified entries the preview therefore never falls below the
    official figures of ``engine.cbam.calculate_entry``.
    """
    ref = resolve_reference(reference)
    factor = ref.preview_chargeable_factor
    cn = clean_cn(entry.cn_code)
    if not cn:
        total = ref.preview_total_floor
        return PreviewResult(
            total_emissions=quantize(total, 6),
            chargeable_emissions=quantize(total * factor, 6),
            certificates_required=quantize(total * factor, 6),
            estimated_cost=_estimated_cost(total * factor, certificate_price),
            markup_applied=0.0,
            direct_intensity_used=0.0,
            indirect_intensity_used=0.0,
            warnings=("CN code required", "Total floored"),
        )

    warnings: List[str] = []
    year = entry.reporting_period_year or ref.definitive_start_year
    category = resolve_category(cn, ref)
    cat = ref.category(category)
    if cat is None:
        minimum = ref.conservative_minimum_fallback
        warnings.append(f"CN {cn} is outside CBAM scope bands; fallback conservative minimum applied")
    else:
        minimum = cat.conservative_minimum

    direct = max(0.0, entry.direct_emissions_specific)
    indirect = max(0.0, entry.indirect_emissions_specific)
    gross_up = 1.0 / factor if factor > 0 else 1.0

    if not entry.is_verified:
        base = base_default(cn, entry.production_route, ref)
        if base is not None:
            minimum = IntensityPair(
                direct=max(minimum.direct, base.direct * gross_up),
                indirect=max(minimum.indirect, base.indirect * gross_up),
            )
        if direct < minimum.direct:
            warnings.append(
                f"Unverified direct emissions {direct:g} replaced by conservative default {minimum.direct:g} tCO2e/t"
            )
            direct = minimum.direct
        if indirect < minimum.indirect:
            warnings.append(
                f"Unverified indirect emissions {indirect:g} replaced by conservative default {minimum.indirect:g} tCO2e/t"
            )
            indirect = minimum.indirect
        markup = max(ref.markup_ceiling(year), country_markup(entry.country_of_origin, ref))
        warnings.append(f"Maximum default mark-up {markup:.0%} applied until verified data is available")
    else:
        markup = 0.0
        gross_up = 1.0

    qty = max(0.0, entry.quantity)
    if qty <= 0:
        warnings.append("Quantity missing; total floored")

    precursors = aggregate_precursors(entry, ref)
    if precursors.auto_generated:
        warnings.append("Default precursor composition assumed")

    total = (direct + indirect) * (1.0 + markup) * qty + precursors.embedded_emissions * gross_up
    total = max(ref.preview_total_floor, total)

    chargeable = total * factor

    return PreviewResult(
        total_emissions=quantize(total, 6),
        chargeable_emissions=quantize(chargeable, 6),
        certificates_required=quantize(chargeable, 6),
        estimated_cost=_estimated_cost(chargeable, certificate_price),
        markup_applied=markup,
        direct_intensity_used=direct,
        indirect_intensity_used=indirect,
        warnings=tuple(warnings),
    )
