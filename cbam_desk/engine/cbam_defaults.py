from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from cbam_desk.engine.cn_codes import clean_cn, prefix_lookup, resolve_category
from cbam_desk.engine.reference import IntensityPair, RegulatoryReference, resolve_reference
from cbam_desk.mrv.lineage import quantize

logger = logging.getLogger(__name__)


def _norm(s: Any) -> str:
    return str(s or "").strip().lower().replace(" ", "_")


@dataclass(frozen=True)
class DefaultValue:
    """Mark-up adjusted default intensities for one CN code and origin.

    ``base_*`` keep the unmarked values so the applied mark-up is auditable.
    """
    cn_code: str
    category: str
    production_route: Optional[str]
    country: str
    base_direct: float
    base_indirect: float
    markup_rate: float
    direct: float
    indirect: float
    source: str

    @property
    def total(self) -> float:
        return self.direct + self.indirect

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cn_code": self.cn_code,
            "category": self.category,
            "production_route": self.production_route,
            "country": self.country,
            "base_direct": self.base_direct,
            "base_indirect": self.base_indirect,
            "markup_rate": self.markup_rate,
            "direct": self.direct,
            "indirect": self.indirect,
            "source": self.source,
        }


def canonical_country(country: Any, reference: Optional[RegulatoryReference] = None) -> str:
    """Case-insensitive country name with ISO-2 and common aliases folded in."""
    ref = resolve_reference(reference)
    raw = str(country or "").strip()
    if not raw:
        return ""
    return ref.country_aliases.get(_norm(raw), raw)


def is_eu_member(country: Any, reference: Optional[RegulatoryReference] = None) -> bool:
    ref = resolve_reference(reference)
    return _norm(canonical_country(country, ref)) in ref.eu_member_states


def country_markup(country: Any, reference: Optional[RegulatoryReference] = None) -> float:
    """Mark-up tier for a country of origin.

    Unknown or empty countries always get the fallback (maximum) tier.
    """
    ref = resolve_reference(reference)
    name = canonical_country(country, ref)
    rate = ref.country_tiers.get(_norm(name))
    if rate is None:
        logger.debug("Country %r has no mark-up tier, using fallback %.2f", country, ref.country_fallback_markup)
        return ref.country_fallback_markup
    return rate


def _base_intensities(
    cn_code: str, category: str, production_route: Optional[str], ref: RegulatoryReference
) -> Tuple[IntensityPair, str]:
    """Unmarked defaults: explicit route, then CN prefix, then category."""
    cat = ref.categories[category]
    route = cat.routes.get(_norm(production_route)) if production_route else None
    if route is not None:
        return route.defaults, f"route:{category}/{route.route}"
    hit = prefix_lookup(ref.cn_defaults, cn_code)
    if hit is not None:
        return hit[1].defaults, f"cn:{hit[0]}"
    return cat.defaults, f"category:{category}"


def base_default(
    cn_code: Any, production_route: Optional[str] = None, reference: Optional[RegulatoryReference] = None
) -> Optional[IntensityPair]:
    """Unmarked default intensities for a CN code, or None outside CBAM."""
    ref = resolve_reference(reference)
    cn = clean_cn(cn_code)
    category = resolve_category(cn, ref)
    if category is None:
        return None
    return _base_intensities(cn, category, production_route, ref)[0]


def resolve_default(
    cn_code: Any,
    production_route: Optional[str] = None,
    country: Any = None,
    reference: Optional[RegulatoryReference] = None,
) -> Optional[DefaultValue]:
    """Default direct/indirect intensity with the country mark-up applied.

    Returns None for CN codes outside the CBAM categories; callers treat
    that as "not applicable", not as an error.
    """
    ref = resolve_reference(reference)
    cn = clean_cn(cn_code)
    category = resolve_category(cn, ref)
    if category is None:
        return None

    base, source = _base_intensities(cn, category, production_route, ref)
    markup = country_markup(country, ref)

    return DefaultValue(
        cn_code=cn,
        category=category,
        production_route=_norm(production_route) or None,
        country=canonical_country(country, ref),
        base_direct=base.direct,
        base_indirect=base.indirect,
        markup_rate=markup,
        direct=quantize(base.direct * (1.0 + markup), 3),
        indirect=quantize(base.indirect * (1.0 + markup), 3),
        source=f"{ref.version_id}:{source}",
    )


def detect_route(
    cn_code: Any,
    country: Any = None,
    description: Optional[str] = None,
    reference: Optional[RegulatoryReference] = None,
) -> Optional[str]:
    """Production route to assume when an entry names none.

    Description keywords win, then CN hints, then the high-carbon origin
    route, then the category default.
    """
    ref = resolve_reference(reference)
    cn = clean_cn(cn_code)
    cat = ref.category(resolve_category(cn, ref))
    if cat is None:
        return None
    rule = ref.route_rules.get(cat.key)
    if rule is None:
        return next(iter(cat.routes), None)

    text = str(description or "").lower()
    for keyword, route in rule.keywords:
        if keyword in text:
            return route
    hit = prefix_lookup(rule.cn_routes, cn)
    if hit is not None:
        return hit[1]
    if rule.high_carbon and _norm(canonical_country(country, ref)) in ref.high_carbon_countries:
        return rule.high_carbon
    return rule.default or next(iter(cat.routes), None)


def benchmark_for(
    category: Optional[str],
    production_route: Optional[str],
    reference: Optional[RegulatoryReference] = None,
    cn_code: Any = None,
) -> Optional[float]:
    """Benchmark intensity (tCO2e/t) for a route, or None.

    A product benchmark for the CN code wins over the category route value.
    """
    ref = resolve_reference(reference)
    cat = ref.category(category)
    if cat is None or not production_route:
        return None
    route = _norm(production_route)
    if cn_code:
        hit = prefix_lookup(ref.product_benchmarks, cn_code)
        if hit is not None and route in hit[1]:
            return hit[1][route]
    rr = cat.routes.get(route)
    if rr is None:
        return None
    return rr.benchmark
