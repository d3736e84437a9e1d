from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from cbam_desk.engine.cbam_defaults import benchmark_for, detect_route, resolve_default
from cbam_desk.engine.cbam_precursor import aggregate_precursors
from cbam_desk.engine.certificates import calculate_certificates
from cbam_desk.engine.cn_codes import clean_cn, resolve_category
from cbam_desk.engine.models import METHOD_DEFAULT, EmissionEntry
from cbam_desk.engine.reference import RegulatoryReference, resolve_reference
from cbam_desk.mrv.lineage import quantize, sha256_json

logger = logging.getLogger(__name__)

ENGINE_VERSION = "cbam-engine-1.0.0"


@dataclass(frozen=True)
class CalculationResult:
    cn_code: str
    category: Optional[str]
    production_route: Optional[str]
    route_detected: bool
    reporting_year: int
    calculation_method: str
    direct_intensity: float
    indirect_intensity: float
    markup_applied: float
    direct_emissions: float
    indirect_emissions: float
    precursor_emissions: float
    total_embedded_emissions: float
    benchmark: Optional[float]
    free_allocation_adjusted: float
    foreign_deduction: float
    chargeable_emissions: float
    certificates_required: float
    certificate_cost: Optional[float]
    calculation_note: str
    reference_version: str
    engine_version: str
    result_hash: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cn_code": self.cn_code,
            "category": self.category,
            "production_route": self.production_route,
            "route_detected": self.route_detected,
            "reporting_year": self.reporting_year,
            "calculation_method": self.calculation_method,
            "direct_intensity": self.direct_intensity,
            "indirect_intensity": self.indirect_intensity,
            "markup_applied": self.markup_applied,
            "direct_emissions": self.direct_emissions,
            "indirect_emissions": self.indirect_emissions,
            "precursor_emissions": self.precursor_emissions,
            "total_embedded_emissions": self.total_embedded_emissions,
            "benchmark": self.benchmark,
            "free_allocation_adjusted": self.free_allocation_adjusted,
            "foreign_deduction": self.foreign_deduction,
            "chargeable_emissions": self.chargeable_emissions,
            "certificates_required": self.certificates_required,
            "certificate_cost": self.certificate_cost,
            "calculation_note": self.calculation_note,
            "reference_version": self.reference_version,
            "engine_version": self.engine_version,
            "result_hash": self.result_hash,
        }


def calculate_entry(
    entry: EmissionEntry,
    reference: Optional[RegulatoryReference] = None,
    certificate_price: Optional[float] = None,
) -> Tuple[EmissionEntry, CalculationResult]:
    """Official calculation for one entry.

    Flow: default values (unless verified) -> precursors -> totals ->
    phase-in certificates. Returns the entry updated with the derived
    figures plus the result record; the input entry is not modified.
    """
    ref = resolve_reference(reference)
    notes: List[str] = []

    cn = clean_cn(entry.cn_code)
    category = resolve_category(cn, ref)
    year = int(entry.reporting_period_year or ref.definitive_start_year)
    method = entry.calculation_method

    direct_i = max(0.0, entry.direct_emissions_specific)
    indirect_i = max(0.0, entry.indirect_emissions_specific)
    markup = 0.0

    if method == METHOD_DEFAULT:
        dv = resolve_default(cn, entry.production_route, entry.country_of_origin, ref)
        if dv is not None:
            direct_i, indirect_i, markup = dv.direct, dv.indirect, dv.markup_rate
            notes.append(f"Default values ({dv.source}) with {markup:.0%} mark-up for {dv.country or 'unknown origin'}")
        else:
            notes.append(f"No applicable default for CN {cn or '-'}; reported intensities kept")
    else:
        notes.append("Verified actual emissions (EU method)")

    precursors = aggregate_precursors(entry.with_changes(cn_code=cn), ref)
    notes.extend(precursors.warnings)

    qty = max(0.0, entry.quantity)
    direct_total = direct_i * qty
    indirect_total = indirect_i * qty
    total = direct_total + indirect_total + precursors.embedded_emissions

    route = entry.production_route
    route_detected = False
    if not route and category is not None:
        route = detect_route(cn, entry.country_of_origin, entry.product_description, ref)
        route_detected = route is not None
        if route_detected:
            notes.append(f"Production route not given; {route} assumed for the benchmark")
    benchmark = benchmark_for(category, route, ref, cn_code=cn)
    cert = calculate_certificates(
        total_emissions=total,
        quantity=qty,
        reporting_year=year,
        benchmark=benchmark,
        foreign_deduction=entry.carbon_price_due_paid,
        certificate_price=certificate_price,
        reference=ref,
    )
    if cert.note:
        notes.append(cert.note)

    certificates = cert.certificates_required
    cost = cert.certificate_cost
    if entry.de_minimis_threshold_exceeded is False:
        certificates = 0.0
        cost = 0.0 if cost is not None else None
        notes.append("Below de minimis threshold: no certificates due")

    core = {
        "inputs": {
            "cn_code": cn,
            "country_of_origin": entry.country_of_origin,
            "quantity": qty,
            "production_route": entry.production_route,
            "product_description": entry.product_description,
            "verification_status": entry.verification_status,
            "direct_emissions_specific": entry.direct_emissions_specific,
            "indirect_emissions_specific": entry.indirect_emissions_specific,
            "reporting_period_year": year,
            "carbon_price_due_paid": entry.carbon_price_due_paid,
            "precursors_used": [p.to_dict() for p in entry.precursors_used if not p.is_auto_default],
        },
        "outputs": {
            "direct_intensity": direct_i,
            "indirect_intensity": indirect_i,
            "markup_applied": markup,
            "production_route": route,
            "benchmark": benchmark,
            "precursor_emissions": precursors.embedded_emissions,
            "certificates": cert.to_dict(),
            "certificates_due": certificates,
        },
        "reference": ref.meta(),
        "engine_version": ENGINE_VERSION,
    }

    result = CalculationResult(
        cn_code=cn,
        category=category,
        production_route=route,
        route_detected=route_detected,
        reporting_year=year,
        calculation_method=method,
        direct_intensity=direct_i,
        indirect_intensity=indirect_i,
        markup_applied=markup,
        direct_emissions=quantize(direct_total, 6),
        indirect_emissions=quantize(indirect_total, 6),
        precursor_emissions=precursors.embedded_emissions,
        total_embedded_emissions=cert.total_emissions,
        benchmark=benchmark,
        free_allocation_adjusted=cert.free_allocation_adjusted,
        foreign_deduction=cert.foreign_deduction,
        chargeable_emissions=cert.chargeable_emissions,
        certificates_required=certificates,
        certificate_cost=cost,
        calculation_note="; ".join(notes),
        reference_version=ref.version_id,
        engine_version=ENGINE_VERSION,
        result_hash=sha256_json(core),
    )
    logger.debug(
        "CBAM calculation %s: total=%s certificates=%s (%s)",
        cn or "-",
        result.total_embedded_emissions,
        result.certificates_required,
        result.result_hash[:12],
    )

    updated = entry.with_changes(
        cn_code=cn,
        direct_emissions_specific=direct_i,
        indirect_emissions_specific=indirect_i,
        reporting_period_year=year,
        precursors_used=precursors.precursors,
        free_allocation_adjustment=cert.free_allocation_adjusted,
        certificates_required=certificates,
        total_embedded_emissions=cert.total_emissions,
    )
    return updated, result
