from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple

import pandas as pd

from cbam_desk.engine.cn_codes import clean_cn

# Verification statuses
NOT_VERIFIED = "not_verified"
VERIFIED_SATISFACTORY = "accredited_verifier_satisfactory"
VERIFIED_UNSATISFACTORY = "accredited_verifier_unsatisfactory"

# Calculation methods
METHOD_DEFAULT = "default_values"
METHOD_EU = "EU_method"

VALIDATION_PASSED = frozenset({"validated", "pass", "valid"})
VALIDATION_FAILED = frozenset({"flagged", "rejected"})

# Lock statuses that no longer block anything
LOCK_TERMINAL_STATUSES = frozenset({"approved", "resolved", "rejected"})
LOCK_TYPES = ("cn_code_change", "precursor_deviation", "recalculation_request")

VALUE_ACTUAL = "actual"
VALUE_AUTO_DEFAULT = "auto_default"


def _norm(s: Any) -> str:
    return str(s or "").strip().lower().replace(" ", "_")


def _to_float(x: Any) -> float:
    try:
        if pd.isna(x):
            return 0.0
    except (TypeError, ValueError):
        pass
    try:
        return float(x)
    except (TypeError, ValueError):
        return 0.0


def _to_int(x: Any) -> Optional[int]:
    if x is None or x == "":
        return None
    try:
        return int(float(x))
    except (TypeError, ValueError):
        return None


def _to_bool(x: Any) -> Optional[bool]:
    """Tri-state flag from form or spreadsheet input; unreadable values are None."""
    if x is None or isinstance(x, bool):
        return x
    if isinstance(x, str):
        s = x.strip().lower()
        if s in ("true", "yes", "y", "1"):
            return True
        if s in ("false", "no", "n", "0"):
            return False
        return None
    try:
        if pd.isna(x):
            return None
    except (TypeError, ValueError):
        return None
    try:
        return bool(float(x))
    except (TypeError, ValueError):
        return None


def _first(d: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if d.get(k) is not None:
            return d[k]
    return default


def derive_calculation_method(verification_status: Any) -> str:
    """EU_method if and only if an accredited verifier signed off, else defaults."""
    if str(verification_status or "").strip() == VERIFIED_SATISFACTORY:
        return METHOD_EU
    return METHOD_DEFAULT


def is_validation_passed(status: Any) -> bool:
    return _norm(status) in VALIDATION_PASSED


@dataclass(frozen=True)
class Precursor:
    """Input material consumed to make a complex good."""
    cn_code: str
    name: str = ""
    quantity: float = 0.0
    emission_factor: float = 0.0
    reported_embedded: Optional[float] = None
    reporting_period_year: Optional[int] = None
    value_type: str = VALUE_ACTUAL
    verified: bool = False
    evidence_reference: Optional[str] = None

    @property
    def embedded_emissions(self) -> float:
        if self.quantity > 0 and self.emission_factor > 0:
            return self.quantity * self.emission_factor
        if self.reported_embedded is not None:
            return max(0.0, self.reported_embedded)
        return 0.0

    @property
    def has_emissions_data(self) -> bool:
        return (self.quantity > 0 and self.emission_factor > 0) or (
            self.reported_embedded is not None and self.reported_embedded > 0
        )

    @property
    def is_auto_default(self) -> bool:
        return self.value_type == VALUE_AUTO_DEFAULT

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> "Precursor":
        embedded = _first(rec, "emissions_embedded", "embedded_emissions")
        return cls(
            cn_code=clean_cn(_first(rec, "precursor_cn_code", "cn_code", default="")),
            name=str(_first(rec, "precursor_name", "name", default="") or ""),
            quantity=_to_float(_first(rec, "quantity_consumed", "quantity", default=0.0)),
            emission_factor=_to_float(_first(rec, "emission_factor", "emissions_intensity_factor", default=0.0)),
            reported_embedded=None if embedded is None else _to_float(embedded),
            reporting_period_year=_to_int(rec.get("reporting_period_year")),
            value_type=str(rec.get("value_type") or VALUE_ACTUAL),
            verified=bool(rec.get("verified", False)),
            evidence_reference=rec.get("evidence_reference") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "precursor_cn_code": self.cn_code,
            "precursor_name": self.name,
            "quantity_consumed": self.quantity,
            "emission_factor": self.emission_factor,
            "emissions_embedded": self.embedded_emissions,
            "reporting_period_year": self.reporting_period_year,
            "value_type": self.value_type,
            "verified": self.verified,
            "evidence_reference": self.evidence_reference,
        }


@dataclass(frozen=True)
class LifecycleLock:
    """Pending-action marker that blocks submission until it is settled."""
    lock_type: str
    status: str = "pending"
    reason: str = ""

    @property
    def is_active(self) -> bool:
        return _norm(self.status) not in LOCK_TERMINAL_STATUSES

    @classmethod
    def from_record(cls, rec: Any) -> "LifecycleLock":
        # Bare strings name a lock type with no status, so they stay active
        if isinstance(rec, LifecycleLock):
            return rec
        if isinstance(rec, dict):
            return cls(
                lock_type=str(_first(rec, "lock_type", "type", default="unknown")),
                status=str(rec.get("status") or "pending"),
                reason=str(rec.get("reason") or ""),
            )
        return cls(lock_type=str(rec), status="pending")

    def to_dict(self) -> Dict[str, Any]:
        return {"lock_type": self.lock_type, "status": self.status, "reason": self.reason}


@dataclass(frozen=True)
class EmissionEntry:
    """One import declaration line.

    The calculation method is not stored: it is projected from the
    verification status. ``declared_method`` only keeps what an imported
    record claimed, for compatibility checks.
    """
    cn_code: str = ""
    country_of_origin: str = ""
    quantity: float = 0.0
    production_route: Optional[str] = None
    declared_method: Optional[str] = None
    direct_emissions_specific: float = 0.0
    indirect_emissions_specific: float = 0.0
    reporting_period_year: Optional[int] = None
    verification_status: str = NOT_VERIFIED
    validation_status: str = "pending"
    precursors_used: Tuple[Precursor, ...] = ()
    lifecycle_locks: Tuple[LifecycleLock, ...] = ()
    carbon_price_due_paid: float = 0.0
    carbon_price_certificate_ref: Optional[str] = None
    free_allocation_adjustment: float = 0.0
    certificates_required: float = 0.0
    total_embedded_emissions: float = 0.0
    de_minimis_threshold_exceeded: Optional[bool] = None
    status: str = "draft"
    submission_date: Optional[str] = None
    entry_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def calculation_method(self) -> str:
        return derive_calculation_method(self.verification_status)

    @property
    def is_verified(self) -> bool:
        return self.verification_status == VERIFIED_SATISFACTORY

    @property
    def is_submitted(self) -> bool:
        return _norm(self.status) == "submitted" or bool(self.submission_date)

    @property
    def product_description(self) -> str:
        return str(_first(self.extra, "product_name", "description", "goods_description", default="") or "")

    @property
    def active_locks(self) -> Tuple[LifecycleLock, ...]:
        return tuple(lk for lk in self.lifecycle_locks if lk.is_active)

    def with_changes(self, **changes: Any) -> "EmissionEntry":
        return replace(self, **changes)

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> "EmissionEntry":
        """Build an entry from a loosely-typed dict (form or import row)."""
        route = rec.get("production_route")
        known = {
            "cn_code", "country_of_origin", "quantity", "production_route", "calculation_method",
            "direct_emissions_specific", "indirect_emissions_specific", "reporting_period_year",
            "verification_status", "validation_status", "precursors_used", "lifecycle_locks",
            "carbon_price_due_paid", "carbon_price_certificate_ref", "free_allocation_adjustment",
            "certificates_required", "total_embedded_emissions", "de_minimis_threshold_exceeded",
            "status", "submission_date", "id", "entry_id",
        }
        return cls(
            cn_code=clean_cn(rec.get("cn_code")),
            country_of_origin=str(rec.get("country_of_origin") or "").strip(),
            quantity=_to_float(rec.get("quantity")),
            production_route=_norm(route) if route else None,
            declared_method=(str(rec["calculation_method"]).strip() if rec.get("calculation_method") else None),
            direct_emissions_specific=_to_float(rec.get("direct_emissions_specific")),
            indirect_emissions_specific=_to_float(rec.get("indirect_emissions_specific")),
            reporting_period_year=_to_int(rec.get("reporting_period_year")),
            verification_status=str(rec.get("verification_status") or NOT_VERIFIED).strip(),
            validation_status=str(rec.get("validation_status") or "pending").strip(),
            precursors_used=tuple(
                p if isinstance(p, Precursor) else Precursor.from_record(p)
                for p in (rec.get("precursors_used") or [])
                if isinstance(p, (Precursor, dict))
            ),
            lifecycle_locks=tuple(LifecycleLock.from_record(x) for x in (rec.get("lifecycle_locks") or [])),
            carbon_price_due_paid=_to_float(rec.get("carbon_price_due_paid")),
            carbon_price_certificate_ref=rec.get("carbon_price_certificate_ref") or None,
            free_allocation_adjustment=_to_float(rec.get("free_allocation_adjustment")),
            certificates_required=_to_float(rec.get("certificates_required")),
            total_embedded_emissions=_to_float(rec.get("total_embedded_emissions")),
            de_minimis_threshold_exceeded=_to_bool(rec.get("de_minimis_threshold_exceeded")),
            status=str(rec.get("status") or "draft"),
            submission_date=rec.get("submission_date") or None,
            entry_id=_first(rec, "entry_id", "id"),
            extra={k: v for k, v in rec.items() if k not in known},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "cn_code": self.cn_code,
            "country_of_origin": self.country_of_origin,
            "quantity": self.quantity,
            "production_route": self.production_route,
            "calculation_method": self.calculation_method,
            "declared_method": self.declared_method,
            "direct_emissions_specific": self.direct_emissions_specific,
            "indirect_emissions_specific": self.indirect_emissions_specific,
            "reporting_period_year": self.reporting_period_year,
            "verification_status": self.verification_status,
            "validation_status": self.validation_status,
            "precursors_used": [p.to_dict() for p in self.precursors_used],
            "lifecycle_locks": [lk.to_dict() for lk in self.lifecycle_locks],
            "carbon_price_due_paid": self.carbon_price_due_paid,
            "carbon_price_certificate_ref": self.carbon_price_certificate_ref,
            "free_allocation_adjustment": self.free_allocation_adjustment,
            "certificates_required": self.certificates_required,
            "total_embedded_emissions": self.total_embedded_emissions,
            "de_minimis_threshold_exceeded": self.de_minimis_threshold_exceeded,
            "status": self.status,
            "submission_date": self.submission_date,
        }
