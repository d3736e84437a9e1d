from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from cbam_desk.config import settings
from cbam_desk.mrv.lineage import sha256_json

logger = logging.getLogger(__name__)

DEFAULT_REFERENCE_PATH = Path(__file__).resolve().parent.parent / "data" / "cbam_reference_2026.yaml"

DEFINITIVE_YEARS = tuple(range(2026, 2035))


def _norm(s: Any) -> str:
    return str(s or "").strip().lower().replace(" ", "_")


def _to_float(x: Any) -> float:
    try:
        return float(x)
    except (TypeError, ValueError):
        return 0.0


@dataclass(frozen=True)
class PhaseInYear:
    """One row of the free-allocation phase-out schedule."""
    year: int
    free_allocation_remaining: float
    cbam_factor: float
    default_markup: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "year": self.year,
            "free_allocation_remaining": self.free_allocation_remaining,
            "cbam_factor": self.cbam_factor,
            "default_markup": self.default_markup,
        }


@dataclass(frozen=True)
class IntensityPair:
    direct: float
    indirect: float

    @property
    def total(self) -> float:
        return self.direct + self.indirect


@dataclass(frozen=True)
class RouteReference:
    route: str
    defaults: IntensityPair
    benchmark: Optional[float]


@dataclass(frozen=True)
class CategoryReference:
    key: str
    label: str
    defaults: IntensityPair
    conservative_minimum: IntensityPair
    routes: Mapping[str, RouteReference]


@dataclass(frozen=True)
class PrecursorTemplate:
    cn_code: str
    name: str
    weight: float


@dataclass(frozen=True)
class CnDefault:
    """Default intensities published for a CN code or code prefix."""
    cn_code: str
    name: str
    defaults: IntensityPair


@dataclass(frozen=True)
class RouteRule:
    category: str
    keywords: Tuple[Tuple[str, str], ...]
    cn_routes: Mapping[str, str]
    high_carbon: Optional[str]
    default: Optional[str]


@dataclass(frozen=True)
class RegulatoryReference:
    """Immutable, versioned regulatory reference data.

    Built once from a YAML document and passed into the engine. All mappings
    are read-only views, so two calculations sharing a reference cannot
    influence each other.
    """
    version_id: str
    effective_date: str
    source: str
    fingerprint: str
    definitive_start_year: int
    zero_emissions_epsilon: float
    preview_total_floor: float
    preview_chargeable_factor: float
    de_minimis_threshold_tonnes: float
    de_minimis_excluded_categories: frozenset
    materiality_threshold: float
    phase_in: Mapping[int, PhaseInYear]
    country_tiers: Mapping[str, float]
    country_fallback_markup: float
    country_aliases: Mapping[str, str]
    eu_member_states: frozenset
    categories: Mapping[str, CategoryReference]
    cn_intervals: Tuple[Tuple[int, int, str], ...]
    conservative_minimum_fallback: IntensityPair
    complex_goods: Mapping[str, Tuple[PrecursorTemplate, ...]]
    simple_goods: frozenset
    cn_defaults: Mapping[str, CnDefault]
    product_benchmarks: Mapping[str, Mapping[str, float]]
    route_rules: Mapping[str, RouteRule]
    high_carbon_countries: frozenset

    @property
    def last_year(self) -> int:
        return max(self.phase_in)

    def phase_in_for(self, year: int) -> Optional[PhaseInYear]:
        """Schedule row for ``year``.

        Years after the schedule keep the final row; years before the
        definitive period have no row (transitional reporting only).
        """
        y = int(year)
        if y < self.definitive_start_year:
            return None
        return self.phase_in[min(y, self.last_year)]

    def markup_ceiling(self, year: int) -> float:
        y = max(int(year), self.definitive_start_year)
        return self.phase_in[min(y, self.last_year)].default_markup

    def category(self, key: Optional[str]) -> Optional[CategoryReference]:
        if not key:
            return None
        return self.categories.get(key)

    def meta(self) -> Dict[str, Any]:
        return {
            "version_id": self.version_id,
            "effective_date": self.effective_date,
            "source": self.source,
            "fingerprint": self.fingerprint,
        }


def _pair(raw: Any, where: str) -> IntensityPair:
    if not isinstance(raw, dict):
        raise ValueError(f"{where}: expected a mapping with direct/indirect")
    p = IntensityPair(direct=_to_float(raw.get("direct")), indirect=_to_float(raw.get("indirect")))
    if p.direct < 0 or p.indirect < 0:
        raise ValueError(f"{where}: intensities must be >= 0")
    return p


def _check_markup(value: float, where: str) -> float:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{where}: markup {value} outside [0, 1]")
    return value


def _subtract(band: Tuple[int, int], exclusions: List[Tuple[int, int]]) -> List[Tuple[int, int]]:
    parts = [band]
    for ex_lo, ex_hi in exclusions:
        nxt: List[Tuple[int, int]] = []
        for lo, hi in parts:
            if ex_hi < lo or ex_lo > hi:
                nxt.append((lo, hi))
                continue
            if lo < ex_lo:
                nxt.append((lo, ex_lo - 1))
            if ex_hi < hi:
                nxt.append((ex_hi + 1, hi))
        parts = nxt
    return parts


def _build_intervals(raw_categories: Dict[str, Any]) -> Tuple[Tuple[int, int, str], ...]:
    """Sorted, non-overlapping (start, end, category) heading intervals."""
    intervals: List[Tuple[int, int, str]] = []
    for key, cat_doc in raw_categories.items():
        exclusions = [(int(a), int(b)) for a, b in (cat_doc.get("exclusions") or [])]
        for lo, hi in cat_doc.get("bands") or []:
            lo, hi = int(lo), int(hi)
            if lo > hi:
                raise ValueError(f"categories.{key}: band {lo}-{hi} is reversed")
            for a, b in _subtract((lo, hi), exclusions):
                intervals.append((a, b, key))

    intervals.sort()
    for (a_lo, a_hi, a_key), (b_lo, b_hi, b_key) in zip(intervals, intervals[1:]):
        if b_lo <= a_hi:
            raise ValueError(f"CN bands overlap: {a_key} {a_lo}-{a_hi} and {b_key} {b_lo}-{b_hi}")
    return tuple(intervals)


def _prefix_category(intervals: Tuple[Tuple[int, int, str], ...], key: Any, where: str) -> str:
    """Category of an 8-, 6- or 4-digit CN key used in a lookup table."""
    s = str(key)
    if len(s) not in (4, 6, 8) or not s.isdigit():
        raise ValueError(f"{where}.{s}: CN keys must have 4, 6 or 8 digits")
    heading = int(s[:4])
    for lo, hi, category in intervals:
        if lo <= heading <= hi:
            return category
    raise ValueError(f"{where}.{s}: CN code outside every category band")


def _build_cn_defaults(raw: Dict[str, Any], intervals) -> Dict[str, CnDefault]:
    out: Dict[str, CnDefault] = {}
    for cn, row in (raw or {}).items():
        _prefix_category(intervals, cn, "cn_defaults")
        pair = _pair(row, f"cn_defaults.{cn}")
        out[str(cn)] = CnDefault(cn_code=str(cn), name=str(row.get("name") or ""), defaults=pair)
    return out


def _build_product_benchmarks(raw: Dict[str, Any], intervals, categories) -> Dict[str, Mapping[str, float]]:
    out: Dict[str, Mapping[str, float]] = {}
    for cn, row in (raw or {}).items():
        category = _prefix_category(intervals, cn, "product_benchmarks")
        values: Dict[str, float] = {}
        for route, value in (row or {}).items():
            r = _norm(route)
            if r not in categories[category].routes:
                raise ValueError(f"product_benchmarks.{cn}: {route} is not a {category} route")
            v = _to_float(value)
            if v < 0:
                raise ValueError(f"product_benchmarks.{cn}.{route}: benchmark must be >= 0")
            values[r] = v
        out[str(cn)] = MappingProxyType(values)
    return out


def _build_route_rules(raw: Dict[str, Any], categories) -> Dict[str, RouteRule]:
    rules: Dict[str, RouteRule] = {}
    for key, rule in ((raw or {}).get("categories") or {}).items():
        cat = categories.get(key)
        if cat is None:
            raise ValueError(f"route_detection.{key}: unknown category")
        rule = rule or {}
        keywords = tuple((str(word).lower(), _norm(route)) for word, route in (rule.get("keywords") or []))
        cn_routes = {str(cn): _norm(route) for cn, route in (rule.get("cn_routes") or {}).items()}
        high_carbon = _norm(rule.get("high_carbon")) or None
        default = _norm(rule.get("default")) or None
        named = [r for _, r in keywords] + list(cn_routes.values()) + [high_carbon, default]
        unknown = sorted({r for r in named if r and r not in cat.routes})
        if unknown:
            raise ValueError(f"route_detection.{key}: unknown routes {unknown}")
        rules[key] = RouteRule(
            category=key,
            keywords=keywords,
            cn_routes=MappingProxyType(cn_routes),
            high_carbon=high_carbon,
            default=default,
        )
    return rules


def build_reference(doc: Dict[str, Any]) -> RegulatoryReference:
    """Validate a raw reference document and freeze it."""
    if not isinstance(doc, dict) or not doc:
        raise ValueError("Reference document is empty or not a mapping")

    for key in ("version_id", "effective_date", "phase_in", "categories"):
        if key not in doc:
            raise ValueError(f"Reference document missing required key: {key}")

    phase_in: Dict[int, PhaseInYear] = {}
    for year, row in (doc.get("phase_in") or {}).items():
        y = int(year)
        remaining = _to_float(row.get("free_allocation_remaining"))
        factor = _to_float(row.get("cbam_factor"))
        if abs((1.0 - remaining) - factor) > 1e-9:
            raise ValueError(
                f"phase_in.{y}: cbam_factor {factor} != 1 - free_allocation_remaining {remaining}"
            )
        phase_in[y] = PhaseInYear(
            year=y,
            free_allocation_remaining=remaining,
            cbam_factor=factor,
            default_markup=_check_markup(_to_float(row.get("default_markup")), f"phase_in.{y}"),
        )
    missing = [y for y in DEFINITIVE_YEARS if y not in phase_in]
    if missing:
        raise ValueError(f"phase_in: missing years {missing}")

    cm = doc.get("country_markup") or {}
    fallback = _check_markup(_to_float(cm.get("fallback", 0.30)), "country_markup.fallback")
    tiers: Dict[str, float] = {}
    for tier_name, tier in (cm.get("tiers") or {}).items():
        rate = _check_markup(_to_float(tier.get("markup")), f"country_markup.{tier_name}")
        for country in tier.get("countries") or []:
            tiers[_norm(country)] = rate

    aliases = {_norm(k): str(v) for k, v in (doc.get("country_aliases") or {}).items()}

    raw_categories = doc.get("categories") or {}
    categories: Dict[str, CategoryReference] = {}
    for key, cat_doc in raw_categories.items():
        routes: Dict[str, RouteReference] = {}
        for route, route_doc in (cat_doc.get("routes") or {}).items():
            bench = route_doc.get("benchmark")
            routes[_norm(route)] = RouteReference(
                route=_norm(route),
                defaults=_pair(route_doc, f"categories.{key}.routes.{route}"),
                benchmark=None if bench is None else _to_float(bench),
            )
        categories[key] = CategoryReference(
            key=key,
            label=str(cat_doc.get("label") or key),
            defaults=_pair(cat_doc.get("default"), f"categories.{key}.default"),
            conservative_minimum=_pair(cat_doc.get("conservative_minimum"), f"categories.{key}.conservative_minimum"),
            routes=MappingProxyType(routes),
        )

    complex_goods: Dict[str, Tuple[PrecursorTemplate, ...]] = {}
    for cn, rows in (doc.get("complex_goods") or {}).items():
        complex_goods[str(cn)] = tuple(
            PrecursorTemplate(cn_code=str(r["cn_code"]), name=str(r.get("name") or ""), weight=_to_float(r.get("weight")))
            for r in rows
        )
    simple_goods = frozenset(str(x) for x in (doc.get("simple_goods") or []))
    overlap = simple_goods.intersection(complex_goods)
    if overlap:
        raise ValueError(f"CN codes listed as both simple and complex: {sorted(overlap)}")

    intervals = _build_intervals(raw_categories)
    detection = doc.get("route_detection") or {}

    return RegulatoryReference(
        version_id=str(doc["version_id"]),
        effective_date=str(doc["effective_date"]),
        source=str(doc.get("source") or ""),
        fingerprint=sha256_json(doc),
        definitive_start_year=int(doc.get("definitive_start_year", min(DEFINITIVE_YEARS))),
        zero_emissions_epsilon=_to_float(doc.get("zero_emissions_epsilon", 0.001)),
        preview_total_floor=_to_float(doc.get("preview_total_floor", 0.001)),
        preview_chargeable_factor=_to_float(doc.get("preview_chargeable_factor", 0.975)),
        de_minimis_threshold_tonnes=_to_float(doc.get("de_minimis_threshold_tonnes", 50.0)),
        de_minimis_excluded_categories=frozenset(str(c) for c in (doc.get("de_minimis_excluded_categories") or [])),
        materiality_threshold=_to_float(doc.get("materiality_threshold", 0.05)),
        phase_in=MappingProxyType(dict(sorted(phase_in.items()))),
        country_tiers=MappingProxyType(tiers),
        country_fallback_markup=fallback,
        country_aliases=MappingProxyType(aliases),
        eu_member_states=frozenset(_norm(c) for c in (doc.get("eu_member_states") or [])),
        categories=MappingProxyType(categories),
        cn_intervals=intervals,
        conservative_minimum_fallback=_pair(
            doc.get("conservative_minimum_fallback") or {"direct": 0.0, "indirect": 0.0},
            "conservative_minimum_fallback",
        ),
        complex_goods=MappingProxyType(complex_goods),
        simple_goods=simple_goods,
        cn_defaults=MappingProxyType(_build_cn_defaults(doc.get("cn_defaults"), intervals)),
        product_benchmarks=MappingProxyType(
            _build_product_benchmarks(doc.get("product_benchmarks"), intervals, categories)
        ),
        route_rules=MappingProxyType(_build_route_rules(detection, categories)),
        high_carbon_countries=frozenset(_norm(c) for c in (detection.get("high_carbon_countries") or [])),
    )


def load_reference(path: Optional[Path | str] = None) -> RegulatoryReference:
    """Load and validate a reference YAML document.

    Raises FileNotFoundError for a missing path and ValueError for a
    malformed document.
    """
    p = Path(path) if path else DEFAULT_REFERENCE_PATH
    if not p.exists():
        raise FileNotFoundError(f"Reference document not found: {p}")
    doc = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    ref = build_reference(doc)
    logger.info(
        "Loaded CBAM reference %s (effective %s, fingerprint %s) from %s",
        ref.version_id,
        ref.effective_date,
        ref.fingerprint[:12],
        p,
    )
    return ref


@lru_cache(maxsize=1)
def default_reference() -> RegulatoryReference:
    """Process-wide reference, honouring CBAM_REFERENCE_PATH."""
    return load_reference(settings.REFERENCE_PATH or None)


def resolve_reference(reference: Optional[RegulatoryReference]) -> RegulatoryReference:
    return reference if reference is not None else default_reference()
