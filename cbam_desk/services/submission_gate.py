from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from cbam_desk.engine.cbam_precursor import is_complex_good
from cbam_desk.engine.models import (
    METHOD_DEFAULT,
    VERIFIED_SATISFACTORY,
    EmissionEntry,
    is_validation_passed,
)
from cbam_desk.engine.reference import RegulatoryReference, resolve_reference

logger = logging.getLogger(__name__)

GATE_VALIDATION = "validation"
GATE_VERIFICATION = "verification"
GATE_LOCKS = "lifecycle_locks"
GATE_EMISSIONS = "non_zero_emissions"
GATE_CERTIFICATES = "certificates_required"
GATE_PRECURSORS = "precursor_completeness"

_DEFAULT_METHODS = frozenset({METHOD_DEFAULT.lower(), "default"})
_ACTUAL_METHODS = frozenset({"eu_method", "actual_values", "actual", "combined", "combined_actual_default"})


@dataclass(frozen=True)
class GateResult:
    gate: str
    passed: bool
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"gate": self.gate, "passed": self.passed, "reason": self.reason}


@dataclass(frozen=True)
class GateEvaluation:
    can_submit: bool
    gates: Tuple[GateResult, ...]

    @property
    def blocked_reasons(self) -> List[str]:
        return [g.reason for g in self.gates if not g.passed]

    def gate(self, name: str) -> Optional[GateResult]:
        for g in self.gates:
            if g.gate == name:
                return g
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "canSubmit": self.can_submit,
            "gates": [g.to_dict() for g in self.gates],
            "blockedReasons": self.blocked_reasons,
        }


def _gate_validation(entry: EmissionEntry) -> GateResult:
    if is_validation_passed(entry.validation_status):
        return GateResult(GATE_VALIDATION, True, "Validation passed")
    return GateResult(
        GATE_VALIDATION, False, f"Validation status is '{entry.validation_status or 'pending'}', must be validated"
    )


def _gate_verification(entry: EmissionEntry) -> GateResult:
    method = (entry.declared_method or entry.calculation_method).strip()
    key = method.lower()
    if key in _DEFAULT_METHODS:
        return GateResult(GATE_VERIFICATION, True, "Default values: verification not required")
    if key in _ACTUAL_METHODS:
        if entry.verification_status == VERIFIED_SATISFACTORY:
            return GateResult(GATE_VERIFICATION, True, "Actual values verified by accredited verifier")
        return GateResult(
            GATE_VERIFICATION,
            False,
            f"Method '{method}' requires a satisfactory accredited verification "
            f"(status is '{entry.verification_status}')",
        )
    return GateResult(GATE_VERIFICATION, False, f"Unknown calculation method '{method}'")


def _gate_locks(entry: EmissionEntry) -> GateResult:
    active = entry.active_locks
    if not active:
        return GateResult(GATE_LOCKS, True, "No active lifecycle locks")
    names = ", ".join(sorted(lk.lock_type for lk in active))
    return GateResult(GATE_LOCKS, False, f"{len(active)} active lifecycle lock(s): {names}")


def _gate_emissions(entry: EmissionEntry, ref: RegulatoryReference) -> GateResult:
    value = entry.direct_emissions_specific
    if value > ref.zero_emissions_epsilon:
        return GateResult(GATE_EMISSIONS, True, "Direct emissions reported")
    return GateResult(
        GATE_EMISSIONS,
        False,
        f"Zero or invalid direct emissions ({value:g} tCO2e/t): a value of zero is not accepted",
    )


def _gate_certificates(entry: EmissionEntry) -> GateResult:
    if entry.de_minimis_threshold_exceeded is False:
        return GateResult(GATE_CERTIFICATES, True, "Below de minimis threshold: no certificates required")
    if entry.certificates_required > 0:
        return GateResult(GATE_CERTIFICATES, True, f"{entry.certificates_required:g} certificates required")
    return GateResult(
        GATE_CERTIFICATES, False, "Certificates required is zero but the entry is not flagged below de minimis"
    )


def _gate_precursors(entry: EmissionEntry, ref: RegulatoryReference) -> GateResult:
    if not is_complex_good(entry.cn_code, ref):
        return GateResult(GATE_PRECURSORS, True, "Not a complex good")
    if entry.precursors_used:
        return GateResult(GATE_PRECURSORS, True, f"{len(entry.precursors_used)} precursor record(s) present")
    return GateResult(GATE_PRECURSORS, False, f"Complex good {entry.cn_code} has no precursor records")


def evaluate_gates(entry: EmissionEntry, reference: Optional[RegulatoryReference] = None) -> GateEvaluation:
    """Run all six submission gates on the entry as recorded.

    Gates are independent; the entry may be submitted only if all pass.
    """
    ref = resolve_reference(reference)
    gates = (
        _gate_validation(entry),
        _gate_verification(entry),
        _gate_locks(entry),
        _gate_emissions(entry, ref),
        _gate_certificates(entry),
        _gate_precursors(entry, ref),
    )
    return GateEvaluation(can_submit=all(g.passed for g in gates), gates=gates)


@dataclass(frozen=True)
class SubmitResult:
    accepted: bool
    entry: EmissionEntry
    gates: Optional[GateEvaluation]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accepted": self.accepted,
            "reason": self.reason,
            "entry": self.entry.to_dict(),
            "gates": self.gates.to_dict() if self.gates else None,
        }


def submit_entry(
    entry: EmissionEntry,
    submitted_at: Optional[datetime] = None,
    reference: Optional[RegulatoryReference] = None,
) -> SubmitResult:
    """Mark an entry submitted if every gate passes at this moment.

    The lifecycle state is not trusted here; gates are re-run on the record.
    """
    if entry.is_submitted:
        return SubmitResult(False, entry, None, "Entry already submitted and immutable")

    evaluation = evaluate_gates(entry, reference)
    if not evaluation.can_submit:
        logger.info(
            "Submission blocked for %s: %s",
            entry.entry_id or entry.cn_code,
            "; ".join(evaluation.blocked_reasons),
        )
        return SubmitResult(False, entry, evaluation, "Submission blocked by failing gates")

    ts = (submitted_at or datetime.now(timezone.utc)).isoformat()
    return SubmitResult(
        True,
        entry.with_changes(status="submitted", submission_date=ts),
        evaluation,
        "Submitted",
    )
