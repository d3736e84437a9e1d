import dataclasses
import logging

import pytest

from cbam_desk.engine.reference import DEFINITIVE_YEARS, load_reference


def test_default_reference_is_versioned(reference):
    assert reference.version_id == "cbam-ref-2026.2"
    assert reference.effective_date == "2026-01-01"
    assert len(reference.fingerprint) == 64


def test_phase_in_covers_definitive_years(reference):
    assert tuple(reference.phase_in) == DEFINITIVE_YEARS
    for row in reference.phase_in.values():
        assert row.cbam_factor == pytest.approx(1.0 - row.free_allocation_remaining)
    assert reference.phase_in[2026].free_allocation_remaining == 0.975
    assert reference.phase_in[2030].cbam_factor == 0.5125
    assert reference.phase_in[2034].free_allocation_remaining == 0.0


def test_phase_in_outside_schedule(reference):
    assert reference.phase_in_for(2025) is None
    assert reference.phase_in_for(2040) == reference.phase_in[2034]
    assert reference.markup_ceiling(2020) == 0.10
    assert reference.markup_ceiling(2027) == 0.20
    assert reference.markup_ceiling(2050) == 0.30


def test_reference_is_read_only(reference):
    with pytest.raises(TypeError):
        reference.phase_in[2026] = None
    with pytest.raises(TypeError):
        reference.country_tiers["atlantis"] = 0.0
    with pytest.raises(dataclasses.FrozenInstanceError):
        reference.version_id = "changed"


def test_same_document_same_fingerprint(reference):
    again = load_reference()
    assert again.fingerprint == reference.fingerprint


def test_cbam_factor_mismatch_rejected(raw_reference_doc, reference_from):
    raw_reference_doc["phase_in"][2030]["cbam_factor"] = 0.5
    with pytest.raises(ValueError, match="cbam_factor"):
        reference_from(raw_reference_doc)


def test_missing_year_rejected(raw_reference_doc, reference_from):
    del raw_reference_doc["phase_in"][2031]
    with pytest.raises(ValueError, match="missing years"):
        reference_from(raw_reference_doc)


def test_markup_out_of_range_rejected(raw_reference_doc, reference_from):
    raw_reference_doc["country_markup"]["tiers"]["mid_risk"]["markup"] = 1.5
    with pytest.raises(ValueError, match="markup"):
        reference_from(raw_reference_doc)


def test_overlapping_bands_rejected(raw_reference_doc, reference_from):
    raw_reference_doc["categories"]["aluminium"]["bands"] = [[7220, 7616]]
    with pytest.raises(ValueError, match="overlap"):
        reference_from(raw_reference_doc)


def test_simple_and_complex_goods_disjoint(raw_reference_doc, reference_from, reference):
    assert not reference.simple_goods.intersection(reference.complex_goods)
    raw_reference_doc["simple_goods"].append("72081000")
    with pytest.raises(ValueError, match="simple and complex"):
        reference_from(raw_reference_doc)


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_reference(tmp_path / "nope.yaml")


def test_load_logs_version(caplog):
    with caplog.at_level(logging.INFO, logger="cbam_desk.engine.reference"):
        load_reference()
    assert "cbam-ref-2026.2" in caplog.text


def test_cn_level_tables_loaded(reference):
    assert reference.cn_defaults["760110"].defaults.indirect == 11.61
    assert reference.cn_defaults["7207"].name == "Semi-finished steel"
    assert reference.product_benchmarks["28041000"]["grey_smr"] == 9.27
    assert "china" in reference.high_carbon_countries
    rule = reference.route_rules["iron_steel"]
    assert rule.keywords[0] == ("scrap", "scrap_eaf")
    assert rule.high_carbon == "bf_bof"
    with pytest.raises(TypeError):
        reference.product_benchmarks["7208"]["bf_bof"] = 0.0


@pytest.mark.parametrize("key", ["720", "72081", "7208100011", "72O8"])
def test_cn_default_keys_need_4_6_or_8_digits(raw_reference_doc, reference_from, key):
    raw_reference_doc["cn_defaults"][key] = {"direct": 1.0, "indirect": 0.1}
    with pytest.raises(ValueError, match="4, 6 or 8 digits"):
        reference_from(raw_reference_doc)


def test_cn_default_outside_bands_rejected(raw_reference_doc, reference_from):
    raw_reference_doc["cn_defaults"]["84713000"] = {"direct": 1.0, "indirect": 0.1}
    with pytest.raises(ValueError, match="outside every category band"):
        reference_from(raw_reference_doc)


def test_product_benchmark_route_must_match_category(raw_reference_doc, reference_from):
    raw_reference_doc["product_benchmarks"]["7208"]["primary"] = 8.5
    with pytest.raises(ValueError, match="not a iron_steel route"):
        reference_from(raw_reference_doc)


def test_route_detection_rejects_unknown_routes(raw_reference_doc, reference_from):
    raw_reference_doc["route_detection"]["categories"]["cement"]["default"] = "kiln"
    with pytest.raises(ValueError, match="unknown routes"):
        reference_from(raw_reference_doc)


def test_cn_level_tables_are_optional(raw_reference_doc, reference_from):
    for key in ("cn_defaults", "product_benchmarks", "route_detection"):
        del raw_reference_doc[key]
    ref = reference_from(raw_reference_doc)
    assert dict(ref.cn_defaults) == {}
    assert dict(ref.route_rules) == {}
    assert ref.high_carbon_countries == frozenset()
