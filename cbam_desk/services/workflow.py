from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from cbam_desk.config import settings
from cbam_desk.engine.cbam import CalculationResult, calculate_entry
from cbam_desk.engine.models import EmissionEntry
from cbam_desk.engine.preview import PreviewResult, conservative_preview
from cbam_desk.engine.reference import RegulatoryReference, resolve_reference
from cbam_desk.services.lifecycle import StateSnapshot, state_snapshot
from cbam_desk.services.submission_gate import GateEvaluation, SubmitResult, evaluate_gates, submit_entry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntryEvaluation:
    entry: EmissionEntry
    calculation: CalculationResult
    gates: GateEvaluation
    state: StateSnapshot
    preview: PreviewResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry": self.entry.to_dict(),
            "calculation": self.calculation.to_dict(),
            "gates": self.gates.to_dict(),
            "state": self.state.to_dict(),
            "preview": self.preview.to_dict(),
        }


def _with_year(entry: EmissionEntry) -> EmissionEntry:
    if entry.reporting_period_year:
        return entry
    return entry.with_changes(reporting_period_year=settings.DEFAULT_REPORTING_YEAR)


def evaluate_entry(
    entry: EmissionEntry,
    reference: Optional[RegulatoryReference] = None,
    certificate_price: Optional[float] = None,
) -> EntryEvaluation:
    """Full pass over one entry: calculation, gates, lifecycle state, preview.

    A submitted entry is reported as-is; its figures are recomputed for
    display but never written back.
    """
    ref = resolve_reference(reference)
    price = settings.CERTIFICATE_PRICE_EUR if certificate_price is None else certificate_price

    if entry.is_submitted:
        _, calc = calculate_entry(entry, ref, price)
        updated = entry
    else:
        updated, calc = calculate_entry(_with_year(entry), ref, price)

    return EntryEvaluation(
        entry=updated,
        calculation=calc,
        gates=evaluate_gates(updated, ref),
        state=state_snapshot(updated, ref),
        preview=conservative_preview(entry, ref, price),
    )


def submit(
    entry: EmissionEntry,
    submitted_at: Optional[datetime] = None,
    reference: Optional[RegulatoryReference] = None,
) -> SubmitResult:
    """Recalculate from the record and submit only if every gate passes now."""
    ref = resolve_reference(reference)
    if entry.is_submitted:
        return submit_entry(entry, submitted_at, ref)
    updated, _ = calculate_entry(_with_year(entry), ref)
    return submit_entry(updated, submitted_at, ref)
