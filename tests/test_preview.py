import pytest

from cbam_desk.engine.cbam import calculate_entry
from cbam_desk.engine.preview import conservative_preview
from cbam_desk.mrv.lineage import quantize


def test_missing_cn_code_is_still_floored(reference, make_entry):
    res = conservative_preview(make_entry(cn_code=""), reference, certificate_price=100.0)
    assert res.total_emissions == reference.preview_total_floor
    assert res.chargeable_emissions == quantize(reference.preview_total_floor * 0.975, 6)
    assert res.certificates_required == res.chargeable_emissions
    assert res.estimated_cost == quantize(res.chargeable_emissions * 100.0, 2)
    assert "CN code required" in res.warnings


def test_unverified_zero_replaced_by_conservative_minimum(reference, make_entry):
    entry = make_entry(
        cn_code="72085100",
        country_of_origin="China",
        quantity=10,
        reporting_period_year=2028,
        direct_emissions_specific=0,
        indirect_emissions_specific=0,
    )
    res = conservative_preview(entry, reference)

    assert res.direct_intensity_used == 2.30
    assert res.indirect_intensity_used == 0.40
    # year ceiling (30%) beats the China tier (10%)
    assert res.markup_applied == 0.30
    assert res.total_emissions == pytest.approx(2.70 * 1.30 * 10)
    assert res.chargeable_emissions == pytest.approx(2.70 * 1.30 * 10 * 0.975)
    assert any("replaced by conservative default" in w for w in res.warnings)


def test_country_tier_used_when_above_year_ceiling(reference, make_entry):
    entry = make_entry(country_of_origin="Atlantis", quantity=1, direct_emissions_specific=5.0, indirect_emissions_specific=1.0)
    res = conservative_preview(entry, reference)
    assert res.markup_applied == 0.30
    assert res.direct_intensity_used == 5.0


def test_verified_actuals_not_marked_up(reference, make_entry):
    entry = make_entry(
        verification_status="accredited_verifier_satisfactory",
        quantity=100,
        direct_emissions_specific=1.0,
        indirect_emissions_specific=0.0,
    )
    res = conservative_preview(entry, reference)
    assert res.markup_applied == 0.0
    assert res.direct_intensity_used == 1.0
    assert res.indirect_intensity_used == 0.0
    assert res.total_emissions == pytest.approx(100.0)


def test_total_floor(reference, make_entry):
    entry = make_entry(
        verification_status="accredited_verifier_satisfactory",
        quantity=0,
        direct_emissions_specific=0.0,
    )
    res = conservative_preview(entry, reference)
    assert res.total_emissions == 0.001


def test_preview_free_allocation_ignored_every_year(reference, make_entry):
    for year in (2026, 2030, 2033):
        entry = make_entry(
            verification_status="accredited_verifier_satisfactory",
            quantity=10,
            direct_emissions_specific=2.0,
            reporting_period_year=year,
        )
        res = conservative_preview(entry, reference)
        assert res.chargeable_emissions == pytest.approx(20.0 * 0.975)


def test_preview_not_below_official_figures(reference, make_entry):
    entry = make_entry(country_of_origin="Atlantis", quantity=25)
    _, official = calculate_entry(entry, reference)
    preview = conservative_preview(entry, reference)
    assert preview.total_emissions >= official.total_embedded_emissions


def test_out_of_scope_cn_uses_fallback_minimum(reference, make_entry):
    res = conservative_preview(make_entry(cn_code="84713000", quantity=1), reference)
    assert res.direct_intensity_used == reference.conservative_minimum_fallback.direct
    assert any("outside CBAM scope" in w for w in res.warnings)


def test_preview_price(reference, make_entry):
    entry = make_entry(verification_status="accredited_verifier_satisfactory", quantity=1, direct_emissions_specific=1.0)
    res = conservative_preview(entry, reference, certificate_price=100.0)
    assert res.estimated_cost == pytest.approx(97.5)


def _route_cases():
    cases = [
        ("72085100", None), ("72085100", "bf_bof"), ("72085100", "dri_eaf"), ("72085100", "scrap_eaf"),
        ("76011000", None), ("76011000", "primary"), ("76011000", "secondary"),
        ("25231000", None), ("25231000", "dry_process"), ("25231000", "wet_process"),
        ("28080000", None), ("28080000", "haber_bosch"),
        ("28041000", None), ("28041000", "grey_smr"), ("28041000", "blue_smr_ccs"), ("28041000", "green_electrolysis"),
        ("27160000", None), ("27160000", "grid_mix"),
        # complex goods with default precursor composition
        ("72081000", None), ("76041010", None),
    ]
    return [(cn, route, year) for cn, route in cases for year in range(2026, 2035)]


@pytest.mark.parametrize("country", ["China", "Atlantis"])
@pytest.mark.parametrize("cn,route,year", _route_cases())
def test_unverified_preview_never_below_official(reference, make_entry, cn, route, year, country):
    entry = make_entry(
        cn_code=cn,
        production_route=route,
        country_of_origin=country,
        quantity=100,
        reporting_period_year=year,
    )
    _, official = calculate_entry(entry, reference)
    preview = conservative_preview(entry, reference)

    assert preview.total_emissions >= official.total_embedded_emissions - 1e-4
    assert preview.certificates_required >= official.certificates_required - 1e-4


def test_primary_aluminium_preview_covers_route_default(reference, make_entry):
    entry = make_entry(
        cn_code="76011000", production_route="primary", country_of_origin="Atlantis", quantity=100, reporting_period_year=2030
    )
    _, official = calculate_entry(entry, reference)
    preview = conservative_preview(entry, reference)

    assert official.certificates_required == pytest.approx(638.625)
    # route indirect default 6.20 grossed up by the preview factor beats the 0.60 minimum
    assert preview.indirect_intensity_used == pytest.approx(6.20 / 0.975)
    assert preview.certificates_required > official.certificates_required


def test_verified_preview_keeps_reported_intensities(reference, make_entry):
    entry = make_entry(
        cn_code="76011000",
        verification_status="accredited_verifier_satisfactory",
        quantity=10,
        direct_emissions_specific=0.2,
        indirect_emissions_specific=0.1,
    )
    res = conservative_preview(entry, reference)
    assert res.direct_intensity_used == 0.2
    assert res.indirect_intensity_used == 0.1
    assert res.total_emissions == pytest.approx(3.0)
