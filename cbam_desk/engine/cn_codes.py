from __future__ import annotations

import logging
from bisect import bisect_right
from typing import Any, Mapping, Optional, Tuple

from cbam_desk.engine.reference import RegulatoryReference, resolve_reference

logger = logging.getLogger(__name__)


def clean_cn(x: Any) -> str:
    return str(x or "").strip().replace(".", "").replace(" ", "")


def cn_heading(cn_code: Any) -> Optional[int]:
    """Integer value of the four-digit heading, or None for malformed codes.

    Codes are compared numerically, so "7206" and "72061000" share a heading
    and a short or non-numeric code never sorts into a band by accident.
    """
    s = clean_cn(cn_code)
    if len(s) < 4 or not s.isdigit():
        return None
    return int(s[:4])


def is_valid_cn(cn_code: Any) -> bool:
    s = clean_cn(cn_code)
    return len(s) == 8 and s.isdigit()


def resolve_category(cn_code: Any, reference: Optional[RegulatoryReference] = None) -> Optional[str]:
    """Goods category for a CN code, or None when outside every CBAM band."""
    ref = resolve_reference(reference)
    heading = cn_heading(cn_code)
    if heading is None:
        logger.debug("CN code %r is not numeric, no category", cn_code)
        return None

    intervals = ref.cn_intervals
    i = bisect_right([lo for lo, _, _ in intervals], heading) - 1
    if i >= 0:
        lo, hi, category = intervals[i]
        if lo <= heading <= hi:
            return category

    logger.debug("CN heading %04d is outside CBAM scope bands", heading)
    return None


def in_scope(cn_code: Any, reference: Optional[RegulatoryReference] = None) -> bool:
    return resolve_category(cn_code, reference) is not None


def prefix_lookup(table: Mapping[str, Any], cn_code: Any) -> Optional[Tuple[str, Any]]:
    """Longest 8-, 6- or 4-digit prefix of ``cn_code`` present in ``table``."""
    s = clean_cn(cn_code)
    for n in (8, 6, 4):
        if len(s) >= n and s[:n] in table:
            return s[:n], table[s[:n]]
    return None
