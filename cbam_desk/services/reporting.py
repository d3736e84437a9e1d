from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from cbam_desk.engine.cn_codes import resolve_category
from cbam_desk.engine.models import EmissionEntry
from cbam_desk.engine.reference import RegulatoryReference, resolve_reference
from cbam_desk.mrv.lineage import quantize, sha256_json
from cbam_desk.services.workflow import EntryEvaluation, evaluate_entry

TABLE_COLUMNS = [
    "entry_id",
    "cn_code",
    "category",
    "country_of_origin",
    "quantity_t",
    "calculation_method",
    "markup_applied",
    "direct_tco2e",
    "indirect_tco2e",
    "precursor_tco2e",
    "embedded_emissions_tco2e",
    "free_allocation_tco2e",
    "chargeable_tco2e",
    "certificates_required",
    "certificate_cost_eur",
    "state",
    "can_submit",
    "blocked_reasons",
]


def entries_from_frame(df: pd.DataFrame) -> List[EmissionEntry]:
    """Entries from a flat import table (one row per entry, no precursor lines).

    Column names are normalised; empty cells become missing values.
    """
    if df is None or len(df) == 0:
        return []
    frame = df.copy()
    frame.columns = [str(c).strip().lower().replace(" ", "_") for c in frame.columns]
    frame = frame.astype(object).replace({np.nan: None})
    return [EmissionEntry.from_record(rec) for rec in frame.to_dict(orient="records")]


def de_minimis_status(entries: Iterable[EmissionEntry], reference: Optional[RegulatoryReference] = None) -> Dict[str, Any]:
    """Cumulative imported mass against the yearly de minimis threshold.

    Categories excluded from the exemption are not counted and never exempt.
    """
    ref = resolve_reference(reference)
    mass = 0.0
    excluded = 0.0
    for e in entries:
        cat = resolve_category(e.cn_code, ref)
        if cat is None:
            continue
        if cat in ref.de_minimis_excluded_categories:
            excluded += max(0.0, e.quantity)
        else:
            mass += max(0.0, e.quantity)
    return {
        "cumulative_mass_t": quantize(mass, 6),
        "excluded_mass_t": quantize(excluded, 6),
        "threshold_t": ref.de_minimis_threshold_tonnes,
        "exempt": mass <= ref.de_minimis_threshold_tonnes,
    }


def _flag_de_minimis(
    entries: List[EmissionEntry], exempt: bool, ref: RegulatoryReference
) -> List[EmissionEntry]:
    out = []
    for e in entries:
        if e.is_submitted or e.de_minimis_threshold_exceeded is not None:
            out.append(e)
            continue
        cat = resolve_category(e.cn_code, ref)
        below = exempt and cat is not None and cat not in ref.de_minimis_excluded_categories
        out.append(e.with_changes(de_minimis_threshold_exceeded=not below))
    return out


def _row(ev: EntryEvaluation) -> Dict[str, Any]:
    c = ev.calculation
    return {
        "entry_id": ev.entry.entry_id,
        "cn_code": c.cn_code,
        "category": c.category,
        "country_of_origin": ev.entry.country_of_origin,
        "quantity_t": ev.entry.quantity,
        "calculation_method": c.calculation_method,
        "markup_applied": c.markup_applied,
        "direct_tco2e": c.direct_emissions,
        "indirect_tco2e": c.indirect_emissions,
        "precursor_tco2e": c.precursor_emissions,
        "embedded_emissions_tco2e": c.total_embedded_emissions,
        "free_allocation_tco2e": c.free_allocation_adjusted,
        "chargeable_tco2e": c.chargeable_emissions,
        "certificates_required": c.certificates_required,
        "certificate_cost_eur": c.certificate_cost or 0.0,
        "state": ev.state.state,
        "can_submit": ev.gates.can_submit,
        "blocked_reasons": "; ".join(ev.gates.blocked_reasons),
    }


def period_summary(
    entries: Iterable[EmissionEntry],
    reference: Optional[RegulatoryReference] = None,
    certificate_price: Optional[float] = None,
) -> Tuple[pd.DataFrame, Dict[str, Any]]:
    """Evaluate a declarant's entries for one period.

    Returns a per-entry table (stable order: cn_code, entry_id) and totals
    with a goods summary per category.
    """
    ref = resolve_reference(reference)
    items = list(entries)
    dm = de_minimis_status(items, ref)
    flagged = _flag_de_minimis(items, bool(dm["exempt"]), ref)
    evaluations = [evaluate_entry(e, ref, certificate_price) for e in flagged]

    table = pd.DataFrame([_row(ev) for ev in evaluations], columns=TABLE_COLUMNS)
    if len(table):
        table["_eid"] = table["entry_id"].fillna("").astype(str)
        table = (
            table.sort_values(by=["cn_code", "_eid"], ascending=[True, True], kind="mergesort")
            .drop(columns=["_eid"])
            .reset_index(drop=True)
        )

    sum_cols = [
        "quantity_t",
        "embedded_emissions_tco2e",
        "direct_tco2e",
        "indirect_tco2e",
        "precursor_tco2e",
        "certificates_required",
        "certificate_cost_eur",
    ]
    goods_summary: List[Dict[str, Any]] = []
    if len(table):
        goods_summary = (
            table.assign(category=table["category"].fillna("out_of_scope"))
            .groupby("category", dropna=False)[sum_cols]
            .sum()
            .reset_index()
            .sort_values(["embedded_emissions_tco2e", "category"], ascending=[False, True], kind="mergesort")
            .to_dict(orient="records")
        )
        for g in goods_summary:
            for k in sum_cols:
                g[k] = quantize(g[k], 6)

    totals: Dict[str, Any] = {
        "entries": int(len(table)),
        "quantity_t": quantize(table["quantity_t"].sum() if len(table) else 0.0, 6),
        "embedded_emissions_tco2e": quantize(table["embedded_emissions_tco2e"].sum() if len(table) else 0.0, 6),
        "certificates_required": quantize(table["certificates_required"].sum() if len(table) else 0.0, 6),
        "certificate_cost_eur": quantize(table["certificate_cost_eur"].sum() if len(table) else 0.0, 2),
        "blocked_entries": int((~table["can_submit"].astype(bool)).sum()) if len(table) else 0,
        "de_minimis": dm,
        "goods_summary": goods_summary,
        "reference": ref.meta(),
    }
    totals["summary_hash"] = sha256_json(
        {"rows": table.to_dict(orient="records"), "totals": {k: v for k, v in totals.items()}}
    )
    return table, totals
