import pytest
from pydantic import ValidationError

from cbam_desk.engine.cbam import calculate_entry
from cbam_desk.schemas import CalculationResultOut, EntryIn, GateEvaluationOut, StateOut
from cbam_desk.services.workflow import evaluate_entry


def test_entry_in_builds_domain_entry():
    payload = {
        "entry_id": "E-1",
        "cn_code": "7208 10 00",
        "country_of_origin": "Türkiye",
        "quantity": 40,
        "calculation_method": "EU_method",
        "precursors_used": [{"precursor_cn_code": "72011000", "quantity_consumed": 20, "emission_factor": 1.9}],
        "lifecycle_locks": ["cn_code_change", {"lock_type": "precursor_deviation", "status": "resolved"}],
        "ui_only_field": "ignored",
    }
    entry = EntryIn(**payload).to_entry()
    assert entry.cn_code == "72081000"
    assert entry.declared_method == "EU_method"
    # not verified, so the working method is still default values
    assert entry.calculation_method == "default_values"
    assert entry.precursors_used[0].embedded_emissions == pytest.approx(38.0)
    assert [lk.lock_type for lk in entry.active_locks] == ["cn_code_change"]
    assert "ui_only_field" not in entry.extra


@pytest.mark.parametrize(
    "field,value",
    [("quantity", -1), ("direct_emissions_specific", -0.5), ("carbon_price_due_paid", -3)],
)
def test_negative_values_rejected(field, value):
    with pytest.raises(ValidationError):
        EntryIn(cn_code="72085100", **{field: value})


def test_negative_precursor_quantity_rejected():
    with pytest.raises(ValidationError):
        EntryIn(precursors_used=[{"precursor_cn_code": "72011000", "quantity_consumed": -5}])


def test_result_and_gate_payloads(reference, make_entry):
    ev = evaluate_entry(make_entry(), reference, certificate_price=75.0)

    calc = CalculationResultOut.from_result(ev.calculation)
    assert calc.result_hash == ev.calculation.result_hash
    assert calc.certificate_cost == pytest.approx(ev.calculation.certificates_required * 75.0, abs=0.01)

    gates = GateEvaluationOut.from_evaluation(ev.gates).model_dump(by_alias=True)
    assert gates["canSubmit"] is False
    assert gates["blockedReasons"] == ev.gates.blocked_reasons
    assert len(gates["gates"]) == 6

    state = StateOut.from_snapshot(ev.state).model_dump(by_alias=True)
    assert state["state"] == ev.state.state
    assert "visibilityRules" in state and "editableFields" in state


def test_gate_payload_accepts_wire_names():
    out = GateEvaluationOut(canSubmit=True, gates=[], blockedReasons=[])
    assert out.can_submit is True


def test_schema_roundtrip_matches_direct_record(reference, make_entry):
    direct = make_entry(cn_code="76011000", quantity=12)
    via_schema = EntryIn(
        cn_code="76011000",
        country_of_origin="China",
        quantity=12,
        reporting_period_year=2026,
    ).to_entry()
    assert calculate_entry(direct, reference)[1] == calculate_entry(via_schema, reference)[1]


def test_product_name_reaches_route_detection(reference):
    entry = EntryIn(cn_code="72085100", country_of_origin="China", quantity=5, product_name="Scrap EAF plate").to_entry()
    assert entry.product_description == "Scrap EAF plate"

    out = CalculationResultOut.from_result(calculate_entry(entry, reference)[1])
    assert out.production_route == "scrap_eaf"
    assert out.benchmark == 0.072


def test_de_minimis_text_flag_parsed():
    assert EntryIn(cn_code="72085100", de_minimis_threshold_exceeded="false").to_entry().de_minimis_threshold_exceeded is False
