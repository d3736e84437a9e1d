from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from cbam_desk.engine.reference import RegulatoryReference, resolve_reference
from cbam_desk.mrv.lineage import quantize

TRANSITIONAL_NOTE = "Transitional period: reporting only, no certificates due"
NO_BENCHMARK_NOTE = "No benchmark known: zero free allocation assumed"


@dataclass(frozen=True)
class CertificateResult:
    reporting_year: int
    total_emissions: float
    benchmark: Optional[float]
    free_allocation_full: float
    free_allocation_remaining: float
    free_allocation_adjusted: float
    foreign_deduction: float
    chargeable_emissions: float
    certificates_required: float
    certificate_price: Optional[float]
    certificate_cost: Optional[float]
    note: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reporting_year": self.reporting_year,
            "total_emissions": self.total_emissions,
            "benchmark": self.benchmark,
            "free_allocation_full": self.free_allocation_full,
            "free_allocation_remaining": self.free_allocation_remaining,
            "free_allocation_adjusted": self.free_allocation_adjusted,
            "foreign_deduction": self.foreign_deduction,
            "chargeable_emissions": self.chargeable_emissions,
            "certificates_required": self.certificates_required,
            "certificate_price": self.certificate_price,
            "certificate_cost": self.certificate_cost,
            "note": self.note,
        }


def calculate_certificates(
    *,
    total_emissions: float,
    quantity: float,
    reporting_year: int,
    benchmark: Optional[float] = None,
    foreign_deduction: float = 0.0,
    certificate_price: Optional[float] = None,
    reference: Optional[RegulatoryReference] = None,
) -> CertificateResult:
    """Certificates due for one entry under the phase-in schedule.

    free_allocation_adjusted = benchmark * quantity * free_allocation_remaining[year]
    chargeable = max(0, total - free_allocation_adjusted - foreign_deduction)
    certificates = chargeable

    The year's cbam_factor is already inside free_allocation_remaining and is
    not multiplied into the certificate count again. Without a benchmark,
    nothing is freely allocated.
    """
    ref = resolve_reference(reference)
    year = int(reporting_year)
    total = max(0.0, float(total_emissions))
    qty = max(0.0, float(quantity))
    deduction = max(0.0, float(foreign_deduction or 0.0))

    row = ref.phase_in_for(year)
    if row is None:
        return CertificateResult(
            reporting_year=year,
            total_emissions=quantize(total, 6),
            benchmark=benchmark,
            free_allocation_full=0.0,
            free_allocation_remaining=1.0,
            free_allocation_adjusted=0.0,
            foreign_deduction=0.0,
            chargeable_emissions=0.0,
            certificates_required=0.0,
            certificate_price=certificate_price,
            certificate_cost=0.0 if certificate_price is not None else None,
            note=TRANSITIONAL_NOTE,
        )

    notes = []
    if benchmark is None:
        full = 0.0
        notes.append(NO_BENCHMARK_NOTE)
    else:
        full = float(benchmark) * qty
    adjusted = full * row.free_allocation_remaining

    chargeable = max(0.0, total - adjusted - deduction)
    certificates = chargeable

    cost = None
    if certificate_price is not None:
        cost = quantize(quantize(certificates, 6) * float(certificate_price), 2)

    return CertificateResult(
        reporting_year=year,
        total_emissions=quantize(total, 6),
        benchmark=benchmark,
        free_allocation_full=quantize(full, 6),
        free_allocation_remaining=row.free_allocation_remaining,
        free_allocation_adjusted=quantize(adjusted, 6),
        foreign_deduction=quantize(deduction, 6),
        chargeable_emissions=quantize(chargeable, 6),
        certificates_required=quantize(certificates, 6),
        certificate_price=certificate_price,
        certificate_cost=cost,
        note="; ".join(notes),
    )
