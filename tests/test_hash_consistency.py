import math
from decimal import Decimal

import numpy as np

from cbam_desk.mrv.lineage import canonical_json, quantize, sha256_json


def test_hash_consistency():
    a = {"b": 1, "a": 2.0, "c": [3.141592653589793, {"z": 0.1 + 0.2}]}
    b = {"c": [{"z": 0.3}, 3.141592653589793], "a": 2.0, "b": 1}
    # list order is significant
    assert sha256_json(a) != sha256_json(b)

    x = {"a": 0.1 + 0.2}
    y = {"a": 0.3}
    assert sha256_json(x) == sha256_json(y)


def test_key_order_does_not_matter():
    assert canonical_json({"x": 1, "y": [1, 2]}) == canonical_json({"y": [1, 2], "x": 1})


def test_numpy_and_decimal_scalars():
    assert sha256_json({"v": np.float64(1.5), "n": np.int64(3)}) == sha256_json({"v": 1.5, "n": 3})
    assert sha256_json({"v": Decimal("2.50")}) == sha256_json({"v": 2.5})
    assert canonical_json({"ok": np.bool_(True)}) == '{"ok":true}'


def test_non_finite_values():
    assert canonical_json([math.nan, math.inf, -math.inf]) == '["NaN","Infinity","-Infinity"]'


def test_objects_with_to_dict(reference):
    assert sha256_json(reference.phase_in[2030]) == sha256_json(reference.phase_in[2030].to_dict())


def test_quantize_half_up():
    assert quantize(2.0245, 3) == 2.025
    assert quantize(1.48 * 1.3, 3) == 1.924
    assert quantize("n/a") == 0.0
