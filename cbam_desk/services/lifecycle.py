from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from cbam_desk.engine.cbam_precursor import is_complex_good
from cbam_desk.engine.cn_codes import resolve_category
from cbam_desk.engine.models import (
    VALIDATION_FAILED,
    EmissionEntry,
    derive_calculation_method,
    is_validation_passed,
)
from cbam_desk.engine.reference import RegulatoryReference, resolve_reference

logger = logging.getLogger(__name__)


def _norm(s: Any) -> str:
    return str(s or "").strip().lower().replace(" ", "_")


DRAFT = "DRAFT"
SCOPE_RESOLVED = "SCOPE_RESOLVED"
DATA_COLLECTION = "DATA_COLLECTION"
VALIDATION_PENDING = "VALIDATION_PENDING"
VALIDATION_FAILED_STATE = "VALIDATION_FAILED"
VALIDATED = "VALIDATED"
VERIFIED = "VERIFIED"
REPORT_READY = "REPORT_READY"
SUBMITTED = "SUBMITTED"

STATES = (
    DRAFT,
    SCOPE_RESOLVED,
    DATA_COLLECTION,
    VALIDATION_PENDING,
    VALIDATION_FAILED_STATE,
    VALIDATED,
    VERIFIED,
    REPORT_READY,
    SUBMITTED,
)

# action name -> capability flag
ACTIONS = MappingProxyType({
    "edit_cn_code": "can_edit_cn_code",
    "edit_quantity": "can_edit_quantity",
    "edit_country": "can_edit_country",
    "edit_production_route": "can_edit_production_route",
    "edit_emissions": "can_edit_emissions",
    "add_precursors": "can_add_precursors",
    "submit": "can_submit",
    "select_method": "can_select_method",
    "request_data": "can_request_data",
})


def _caps(
    *,
    cn: bool = False,
    qty: bool = False,
    country: bool = False,
    route: bool = False,
    emissions: bool = False,
    precursors: bool = False,
    submit: bool = False,
    request: bool = False,
    method: Optional[str],
    fields: Tuple[str, ...] = (),
    preview: str,
) -> Mapping[str, Any]:
    return MappingProxyType({
        "can_edit_cn_code": cn,
        "can_edit_quantity": qty,
        "can_edit_country": country,
        "can_edit_production_route": route,
        "can_edit_emissions": emissions,
        "can_add_precursors": precursors,
        "can_submit": submit,
        # the method is always derived from verification status
        "can_select_method": False,
        "can_request_data": request,
        "method_derived": method,
        "editable_fields": fields,
        "live_preview_mode": preview,
    })


CAPABILITIES: Mapping[str, Mapping[str, Any]] = MappingProxyType({
    DRAFT: _caps(
        cn=True, qty=True, country=True, route=True, emissions=True,
        method=None, fields=("cn_code", "country_of_origin", "quantity"),
        preview="conservative_default",
    ),
    SCOPE_RESOLVED: _caps(
        qty=True, precursors=True, request=True,
        method="default_values", fields=("quantity",),
        preview="conservative_default_applied",
    ),
    DATA_COLLECTION: _caps(
        qty=True, precursors=True, request=True,
        method="default_values", fields=("quantity", "precursors"),
        preview="conservative_defaults_with_warnings",
    ),
    VALIDATION_PENDING: _caps(method="default_values", preview="validating"),
    VALIDATION_FAILED_STATE: _caps(
        qty=True, precursors=True, request=True,
        method="default_values", fields=("quantity", "precursors"),
        preview="conservative_with_errors",
    ),
    VALIDATED: _caps(request=True, method="default_values", preview="conservative_validated"),
    VERIFIED: _caps(
        emissions=True,
        method="EU_method", fields=("direct_emissions_specific", "indirect_emissions_specific"),
        preview="verified_actuals",
    ),
    REPORT_READY: _caps(submit=True, method="determined", preview="final_submission_preview"),
    SUBMITTED: _caps(method="submitted_snapshot", preview="submitted_readonly"),
})

_SHOWN = ("show_cn_code", "show_country", "show_quantity", "show_production_route", "show_precursors")


def _vis(basic: bool = True, **flags: bool) -> Mapping[str, bool]:
    rules = {k: True for k in _SHOWN}
    if not basic:
        rules["show_production_route"] = False
        rules["show_precursors"] = False
    rules.update({
        "show_defaults_warning": False,
        "show_verification_status": False,
        "show_method_selection": False,
        "show_method_badge": False,
        "show_submit_button": False,
    })
    rules.update(flags)
    return MappingProxyType(rules)


VISIBILITY: Mapping[str, Mapping[str, bool]] = MappingProxyType({
    DRAFT: _vis(basic=False, show_defaults_warning=True),
    SCOPE_RESOLVED: _vis(show_defaults_warning=True),
    DATA_COLLECTION: _vis(show_defaults_warning=True, show_data_collection_warnings=True),
    VALIDATION_PENDING: _vis(show_validation_spinner=True),
    VALIDATION_FAILED_STATE: _vis(show_defaults_warning=True, show_validation_errors=True, show_blocking_reasons=True),
    VALIDATED: _vis(show_verification_status=True, show_data_request_option=True),
    VERIFIED: _vis(show_verification_status=True, show_method_badge=True, show_verification_evidence=True),
    REPORT_READY: _vis(
        show_verification_status=True, show_method_badge=True, show_submit_button=True,
        show_submission_gate=True, show_final_preview=True,
    ),
    SUBMITTED: _vis(
        show_verification_status=True, show_read_only_banner=True, show_submission_date=True,
        all_fields_greyed=True,
    ),
})

LEGAL_TRANSITIONS = frozenset({
    (DRAFT, SCOPE_RESOLVED),
    (SCOPE_RESOLVED, DATA_COLLECTION),
    (DATA_COLLECTION, VALIDATION_PENDING),
    (VALIDATION_PENDING, VALIDATED),
    (VALIDATION_PENDING, VALIDATION_FAILED_STATE),
    (VALIDATION_FAILED_STATE, VALIDATION_PENDING),
    (VALIDATED, VERIFIED),
    (VALIDATED, REPORT_READY),
    (VERIFIED, REPORT_READY),
    (REPORT_READY, SUBMITTED),
})


@dataclass(frozen=True)
class StateSnapshot:
    state: str
    calculation_method: str
    capabilities: Mapping[str, Any]
    visibility_rules: Mapping[str, bool]

    @property
    def editable_fields(self) -> Tuple[str, ...]:
        return tuple(self.capabilities["editable_fields"])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "calculation_method": self.calculation_method,
            "capabilities": dict(self.capabilities),
            "editable_fields": list(self.editable_fields),
            "visibility_rules": dict(self.visibility_rules),
        }


def is_data_complete(entry: EmissionEntry, reference: Optional[RegulatoryReference] = None) -> bool:
    """Enough data to start validation."""
    ref = resolve_reference(reference)
    if not entry.cn_code or not entry.country_of_origin or entry.quantity <= 0:
        return False
    if entry.direct_emissions_specific <= 0:
        return False
    if is_complex_good(entry.cn_code, ref) and not entry.precursors_used:
        return False
    return True


def determine_state(entry: Optional[EmissionEntry], reference: Optional[RegulatoryReference] = None) -> str:
    """Lifecycle state derived from entry data alone.

    Checked from the terminal end backwards, so a submitted entry is always
    SUBMITTED whatever else it carries.
    """
    if entry is None:
        return DRAFT
    ref = resolve_reference(reference)

    if entry.is_submitted:
        return SUBMITTED
    if is_validation_passed(entry.validation_status) and not entry.active_locks:
        return REPORT_READY
    if entry.is_verified:
        return VERIFIED
    if is_validation_passed(entry.validation_status):
        return VALIDATED
    if _norm(entry.validation_status) in VALIDATION_FAILED:
        return VALIDATION_FAILED_STATE
    if is_data_complete(entry, ref):
        return VALIDATION_PENDING

    scope_resolved = bool(entry.cn_code) and resolve_category(entry.cn_code, ref) is not None
    if scope_resolved and entry.country_of_origin and entry.quantity > 0:
        return DATA_COLLECTION
    if scope_resolved and entry.country_of_origin:
        return SCOPE_RESOLVED
    return DRAFT


def allowed_actions(state: str) -> Mapping[str, Any]:
    return CAPABILITIES.get(state, CAPABILITIES[DRAFT])


def visibility_rules(state: str) -> Mapping[str, bool]:
    return VISIBILITY.get(state, VISIBILITY[DRAFT])


def state_snapshot(entry: EmissionEntry, reference: Optional[RegulatoryReference] = None) -> StateSnapshot:
    state = determine_state(entry, reference)
    return StateSnapshot(
        state=state,
        calculation_method=derive_calculation_method(entry.verification_status),
        capabilities=allowed_actions(state),
        visibility_rules=visibility_rules(state),
    )


def can_perform_action(state: str, action: str) -> Tuple[bool, str]:
    flag = ACTIONS.get(action)
    if flag is None:
        return False, f"Unknown action: {action}"
    if allowed_actions(state).get(flag) is True:
        return True, "Action allowed"
    return False, f"Action {action} blocked in {state}"


def is_legal_transition(from_state: str, to_state: str) -> Tuple[bool, str]:
    if (from_state, to_state) in LEGAL_TRANSITIONS:
        return True, "Transition allowed"
    if from_state == SUBMITTED:
        reason = "Submitted entries are immutable"
    else:
        reason = f"Illegal transition {from_state} -> {to_state}"
    logger.info("Rejected lifecycle transition %s -> %s", from_state, to_state)
    return False, reason
