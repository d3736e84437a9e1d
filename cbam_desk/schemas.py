from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from cbam_desk.engine.cbam import CalculationResult
from cbam_desk.engine.models import EmissionEntry, LifecycleLock, Precursor
from cbam_desk.services.lifecycle import StateSnapshot
from cbam_desk.services.submission_gate import GateEvaluation


class PrecursorIn(BaseModel):
    precursor_cn_code: str
    precursor_name: str = ""
    quantity_consumed: float = Field(default=0.0, ge=0)
    emission_factor: float = Field(default=0.0, ge=0)
    emissions_embedded: Optional[float] = Field(default=None, ge=0)
    reporting_period_year: Optional[int] = None
    value_type: str = "actual"
    evidence_reference: Optional[str] = None

    def to_precursor(self) -> Precursor:
        return Precursor.from_record(self.model_dump())


class LockIn(BaseModel):
    lock_type: str
    status: str = "pending"
    reason: str = ""


class EntryIn(BaseModel):
    """Input record as delivered by a form or import pipeline.

    ``calculation_method`` is only kept as the method the record declares;
    the calculation path always follows the verification status.
    """
    model_config = ConfigDict(extra="ignore")

    entry_id: Optional[str] = None
    cn_code: str = ""
    country_of_origin: str = ""
    quantity: float = Field(default=0.0, ge=0)
    production_route: Optional[str] = None
    product_name: Optional[str] = None
    calculation_method: Optional[str] = None
    direct_emissions_specific: float = Field(default=0.0, ge=0)
    indirect_emissions_specific: float = Field(default=0.0, ge=0)
    reporting_period_year: Optional[int] = None
    verification_status: str = "not_verified"
    validation_status: str = "pending"
    precursors_used: List[PrecursorIn] = Field(default_factory=list)
    carbon_price_due_paid: float = Field(default=0.0, ge=0)
    carbon_price_certificate_ref: Optional[str] = None
    lifecycle_locks: List[LockIn | str] = Field(default_factory=list)
    de_minimis_threshold_exceeded: Optional[bool] = None
    status: str = "draft"
    submission_date: Optional[str] = None

    def to_entry(self) -> EmissionEntry:
        rec = self.model_dump(exclude={"precursors_used", "lifecycle_locks"})
        entry = EmissionEntry.from_record(rec)
        return entry.with_changes(
            precursors_used=tuple(p.to_precursor() for p in self.precursors_used),
            lifecycle_locks=tuple(
                LifecycleLock.from_record(lk if isinstance(lk, str) else lk.model_dump())
                for lk in self.lifecycle_locks
            ),
        )


class CalculationResultOut(BaseModel):
    total_embedded_emissions: float
    free_allocation_adjusted: float
    chargeable_emissions: float
    certificates_required: float
    markup_applied: float
    calculation_note: str
    calculation_method: str
    production_route: Optional[str] = None
    benchmark: Optional[float] = None
    certificate_cost: Optional[float] = None
    reference_version: str
    engine_version: str
    result_hash: str

    @classmethod
    def from_result(cls, r: CalculationResult) -> "CalculationResultOut":
        return cls(
            total_embedded_emissions=r.total_embedded_emissions,
            free_allocation_adjusted=r.free_allocation_adjusted,
            chargeable_emissions=r.chargeable_emissions,
            certificates_required=r.certificates_required,
            markup_applied=r.markup_applied,
            calculation_note=r.calculation_note,
            calculation_method=r.calculation_method,
            production_route=r.production_route,
            benchmark=r.benchmark,
            certificate_cost=r.certificate_cost,
            reference_version=r.reference_version,
            engine_version=r.engine_version,
            result_hash=r.result_hash,
        )


class GateOut(BaseModel):
    gate: str
    passed: bool
    reason: str


class GateEvaluationOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    can_submit: bool = Field(alias="canSubmit")
    gates: List[GateOut]
    blocked_reasons: List[str] = Field(alias="blockedReasons")

    @classmethod
    def from_evaluation(cls, ev: GateEvaluation) -> "GateEvaluationOut":
        return cls(
            can_submit=ev.can_submit,
            gates=[GateOut(**g.to_dict()) for g in ev.gates],
            blocked_reasons=ev.blocked_reasons,
        )


class StateOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    state: str
    editable_fields: List[str] = Field(alias="editableFields")
    visibility_rules: Dict[str, Any] = Field(alias="visibilityRules")

    @classmethod
    def from_snapshot(cls, s: StateSnapshot) -> "StateOut":
        return cls(
            state=s.state,
            editable_fields=list(s.editable_fields),
            visibility_rules=dict(s.visibility_rules),
        )
