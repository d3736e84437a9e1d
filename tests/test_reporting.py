import numpy as np
import pandas as pd
import pytest

from cbam_desk.services.reporting import TABLE_COLUMNS, de_minimis_status, entries_from_frame, period_summary


def test_small_importer_is_exempt(reference, make_entry):
    entries = [
        make_entry(entry_id="A", quantity=20),
        make_entry(entry_id="B", cn_code="76011000", quantity=25),
    ]
    dm = de_minimis_status(entries, reference)
    assert dm["cumulative_mass_t"] == pytest.approx(45.0)
    assert dm["exempt"] is True

    table, totals = period_summary(entries, reference, certificate_price=75.0)
    assert totals["de_minimis"]["exempt"] is True
    assert totals["certificates_required"] == 0.0
    assert totals["embedded_emissions_tco2e"] > 0
    assert (table["certificates_required"] == 0).all()


def test_threshold_exceeded(reference, make_entry):
    entries = [make_entry(entry_id="A", quantity=60), make_entry(entry_id="B", quantity=40)]
    assert de_minimis_status(entries, reference)["exempt"] is False
    _, totals = period_summary(entries, reference, certificate_price=75.0)
    assert totals["certificates_required"] > 0
    assert totals["certificate_cost_eur"] == pytest.approx(totals["certificates_required"] * 75.0, abs=0.01)


def test_excluded_categories_never_exempt(reference, make_entry):
    entries = [
        make_entry(entry_id="S", quantity=5),
        make_entry(entry_id="P", cn_code="27160000", quantity=10, direct_emissions_specific=0.4),
    ]
    dm = de_minimis_status(entries, reference)
    assert dm["cumulative_mass_t"] == pytest.approx(5.0)
    assert dm["excluded_mass_t"] == pytest.approx(10.0)

    table, _ = period_summary(entries, reference)
    by_id = table.set_index("entry_id")
    assert by_id.loc["S", "certificates_required"] == 0.0
    assert by_id.loc["P", "certificates_required"] > 0


def test_explicit_flag_is_respected(reference, make_entry):
    entries = [make_entry(entry_id="A", quantity=10, de_minimis_threshold_exceeded=True)]
    table, _ = period_summary(entries, reference)
    assert table.loc[0, "certificates_required"] > 0


def test_table_is_sorted_and_complete(reference, make_entry):
    entries = [
        make_entry(entry_id="B", cn_code="76011000", quantity=30),
        make_entry(entry_id="Z", quantity=30),
        make_entry(entry_id="A", quantity=30),
        make_entry(entry_id="X", cn_code="84713000", quantity=5),
    ]
    table, totals = period_summary(entries, reference)
    assert list(table.columns) == TABLE_COLUMNS
    assert list(table["entry_id"]) == ["A", "Z", "B", "X"]
    assert totals["entries"] == 4
    assert totals["quantity_t"] == pytest.approx(95.0)

    cats = [g["category"] for g in totals["goods_summary"]]
    assert set(cats) == {"iron_steel", "aluminium", "out_of_scope"}
    steel = next(g for g in totals["goods_summary"] if g["category"] == "iron_steel")
    assert steel["quantity_t"] == pytest.approx(60.0)


def test_blocked_entries_counted(reference, make_entry):
    entries = [
        make_entry(entry_id="A", quantity=60, validation_status="validated", calculation_method="default_values"),
        make_entry(entry_id="B", quantity=60),
    ]
    table, totals = period_summary(entries, reference)
    assert list(table["can_submit"]) == [True, False]
    assert totals["blocked_entries"] == 1
    assert "Validation status" in table.loc[1, "blocked_reasons"]


def test_summary_hash_is_deterministic(reference, make_entry):
    entries = [make_entry(entry_id="A", cn_code="72081000", quantity=70), make_entry(entry_id="B", quantity=10)]
    _, t1 = period_summary(entries, reference, certificate_price=80.0)
    _, t2 = period_summary(list(reversed(entries)), reference, certificate_price=80.0)
    assert t1["summary_hash"] == t2["summary_hash"]

    _, t3 = period_summary(entries, reference, certificate_price=81.0)
    assert t3["summary_hash"] != t1["summary_hash"]


def test_empty_period(reference):
    table, totals = period_summary([], reference)
    assert table.empty
    assert totals["entries"] == 0
    assert totals["goods_summary"] == []
    assert totals["de_minimis"]["exempt"] is True


def test_entries_from_frame():
    df = pd.DataFrame(
        {
            "Entry ID": ["E-1", "E-2"],
            "CN Code": ["7208 51 00", "76011000"],
            "Country of Origin": ["Turkey", "Norway"],
            "Quantity": [12.5, 3],
            "Production Route": ["BF BOF", np.nan],
            "Reporting Period Year": [2027, np.nan],
        }
    )
    entries = entries_from_frame(df)
    assert [e.entry_id for e in entries] == ["E-1", "E-2"]
    assert entries[0].cn_code == "72085100"
    assert entries[0].production_route == "bf_bof"
    assert entries[0].reporting_period_year == 2027
    assert entries[1].production_route is None
    assert entries[1].reporting_period_year is None
    assert entries[1].quantity == 3.0


def test_entries_from_empty_frame():
    assert entries_from_frame(pd.DataFrame()) == []


def test_de_minimis_flags_from_spreadsheet_text():
    df = pd.DataFrame(
        {
            "Entry ID": ["E-1", "E-2", "E-3", "E-4", "E-5"],
            "CN Code": ["72085100"] * 5,
            "Quantity": [10] * 5,
            "De Minimis Threshold Exceeded": ["false", "No", "TRUE", np.nan, "maybe"],
            "Product Name": ["HR sheet", np.nan, "scrap EAF", np.nan, np.nan],
        }
    )
    entries = entries_from_frame(df)
    assert [e.de_minimis_threshold_exceeded for e in entries] == [False, False, True, None, None]
    assert entries[2].product_description == "scrap EAF"
    assert entries[1].product_description == ""


def test_false_text_flag_still_zeroes_certificates(reference, make_entry):
    entries = [make_entry(entry_id="A", quantity=60, de_minimis_threshold_exceeded="false")]
    table, _ = period_summary(entries, reference)
    assert table.loc[0, "certificates_required"] == 0.0
