from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from cbam_desk.engine.cbam_defaults import base_default, is_eu_member
from cbam_desk.engine.cbam_precursor import is_complex_good
from cbam_desk.engine.cn_codes import is_valid_cn, resolve_category
from cbam_desk.engine.models import VERIFIED_SATISFACTORY, EmissionEntry
from cbam_desk.engine.reference import RegulatoryReference, resolve_reference

_ACTUAL_METHODS = frozenset({"eu_method", "actual_values", "actual", "combined", "combined_actual_default"})


@dataclass
class ValidationIssue:
    rule_id: str
    reg_reference: str
    severity: str  # info/warn/fail
    message: str
    remediation: str
    details: Dict[str, Any] | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "reg_reference": self.reg_reference,
            "severity": self.severity,
            "message": self.message,
            "remediation": self.remediation,
            "details": self.details or {},
        }


def validate_entry(entry: EmissionEntry, reference: Optional[RegulatoryReference] = None) -> List[ValidationIssue]:
    """Checklist for one import entry before it can move past validation.

    References:
      - Regulation (EU) 2023/956 (CBAM)
      - C(2025) 8151 Art. 13-15 (complex goods and precursors)
      - C(2025) 8552 (default values)
    """
    ref = resolve_reference(reference)
    issues: List[ValidationIssue] = []

    # Scope
    if not is_valid_cn(entry.cn_code):
        issues.append(
            ValidationIssue(
                rule_id="CBAM.SCOPE.010",
                reg_reference="EU 2023/956 Annex I",
                severity="fail",
                message=f"CN code must have 8 digits: {entry.cn_code or '-'}",
                remediation="Enter the full 8-digit Combined Nomenclature code from the customs declaration.",
            )
        )
    elif resolve_category(entry.cn_code, ref) is None:
        issues.append(
            ValidationIssue(
                rule_id="CBAM.SCOPE.020",
                reg_reference="EU 2023/956 Annex I",
                severity="fail",
                message=f"CN code {entry.cn_code} is not a CBAM good",
                remediation="Check the CN code; goods outside Annex I are not declared under CBAM.",
            )
        )

    if not entry.country_of_origin:
        issues.append(
            ValidationIssue(
                rule_id="CBAM.SCOPE.030",
                reg_reference="EU 2023/956 Art. 2",
                severity="fail",
                message="Country of origin is missing",
                remediation="Enter the country where the goods were produced.",
            )
        )
    elif is_eu_member(entry.country_of_origin, ref):
        issues.append(
            ValidationIssue(
                rule_id="CBAM.SCOPE.040",
                reg_reference="EU 2023/956 Art. 2",
                severity="fail",
                message=f"Origin {entry.country_of_origin} is an EU member state; CBAM does not apply",
                remediation="Remove the entry or correct the country of origin.",
            )
        )

    # Quantities and intensities
    if entry.quantity <= 0:
        issues.append(
            ValidationIssue(
                rule_id="CBAM.QTY.010",
                reg_reference="EU 2023/956 Art. 6",
                severity="fail",
                message="Imported quantity must be greater than zero",
                remediation="Enter the net mass in tonnes.",
                details={"quantity": entry.quantity},
            )
        )
    if entry.direct_emissions_specific < 0 or entry.indirect_emissions_specific < 0:
        issues.append(
            ValidationIssue(
                rule_id="CBAM.EM.010",
                reg_reference="EU 2023/956 Annex IV",
                severity="fail",
                message="Emission intensities cannot be negative",
                remediation="Correct the direct/indirect specific emissions.",
            )
        )

    year = entry.reporting_period_year
    if year is None or year < ref.definitive_start_year:
        issues.append(
            ValidationIssue(
                rule_id="CBAM.PERIOD.010",
                reg_reference="EU 2023/956 Art. 36",
                severity="fail",
                message=f"Reporting year {year or '-'} is before the definitive period ({ref.definitive_start_year})",
                remediation="Use the declaration year; transitional reports are filed separately.",
            )
        )

    # Method and verification
    declared = (entry.declared_method or "").strip().lower()
    if declared in _ACTUAL_METHODS and entry.verification_status != VERIFIED_SATISFACTORY:
        issues.append(
            ValidationIssue(
                rule_id="CBAM.METHOD.010",
                reg_reference="EU 2023/956 Art. 8",
                severity="fail",
                message=f"Declared method '{entry.declared_method}' needs a satisfactory verification report",
                remediation="Obtain an accredited verifier opinion or switch to default values.",
                details={"verification_status": entry.verification_status},
            )
        )
    if not entry.is_verified and entry.direct_emissions_specific <= ref.zero_emissions_epsilon:
        issues.append(
            ValidationIssue(
                rule_id="CBAM.METHOD.020",
                reg_reference="C(2025) 8552",
                severity="fail",
                message="Default values cannot report zero direct emissions",
                remediation="Run the calculation so default values are applied, or provide verified data.",
            )
        )

    # Precursors
    if is_complex_good(entry.cn_code, ref) and not entry.precursors_used:
        issues.append(
            ValidationIssue(
                rule_id="CBAM.PREC.010",
                reg_reference="C(2025) 8151 Art. 13",
                severity="fail",
                message=f"Complex good {entry.cn_code} has no precursor records",
                remediation="Add precursor data or run the calculation to apply default precursors.",
            )
        )
    for p in entry.precursors_used:
        if not p.has_emissions_data:
            issues.append(
                ValidationIssue(
                    rule_id="CBAM.PREC.020",
                    reg_reference="C(2025) 8151 Art. 15",
                    severity="fail",
                    message=f"Precursor {p.cn_code or '-'} has no emissions data",
                    remediation="Provide quantity consumed and emission factor, or embedded emissions.",
                    details=p.to_dict(),
                )
            )
        if (
            p.reporting_period_year is not None
            and year is not None
            and p.reporting_period_year != year
            and not p.evidence_reference
        ):
            issues.append(
                ValidationIssue(
                    rule_id="CBAM.PREC.030",
                    reg_reference="EU 2023/956 Art. 14(2)",
                    severity="warn",
                    message=(
                        f"Precursor {p.cn_code} reported for {p.reporting_period_year}, "
                        f"complex good for {year}"
                    ),
                    remediation="Attach evidence justifying the different precursor reporting period.",
                )
            )

    # Carbon price paid abroad
    if entry.carbon_price_due_paid > 0 and not entry.carbon_price_certificate_ref:
        issues.append(
            ValidationIssue(
                rule_id="CBAM.PRICE.010",
                reg_reference="EU 2023/956 Art. 9",
                severity="fail",
                message="Carbon price deduction claimed without supporting certificate",
                remediation="Reference the independent certification of the carbon price paid.",
                details={"carbon_price_due_paid": entry.carbon_price_due_paid},
            )
        )

    # Materiality of actual data against the unmarked default for the code and route
    if entry.is_verified:
        cat = ref.category(resolve_category(entry.cn_code, ref))
        base = base_default(entry.cn_code, entry.production_route, ref)
        if cat is not None and base is not None and base.total > 0:
            reported = entry.direct_emissions_specific + entry.indirect_emissions_specific
            variance = abs(reported - base.total) / base.total
            if variance > ref.materiality_threshold:
                issues.append(
                    ValidationIssue(
                        rule_id="CBAM.MAT.010",
                        reg_reference="EU 2023/956 Annex VI",
                        severity="warn",
                        message=f"Actual intensity deviates {variance:.1%} from the {cat.label} default",
                        remediation="Confirm the verifier covered the deviation in the verification report.",
                        details={"reported": reported, "default": base.total},
                    )
                )

    return issues


def validation_status_for(issues: List[ValidationIssue]) -> str:
    return "flagged" if any(i.severity == "fail" for i in issues) else "validated"


def apply_validation(entry: EmissionEntry, reference: Optional[RegulatoryReference] = None) -> EmissionEntry:
    """Entry carrying the validation status its current data earns.

    Submitted entries are returned unchanged.
    """
    if entry.is_submitted:
        return entry
    return entry.with_changes(validation_status=validation_status_for(validate_entry(entry, reference)))
