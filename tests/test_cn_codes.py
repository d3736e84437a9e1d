import pytest

from cbam_desk.engine.cn_codes import clean_cn, cn_heading, in_scope, is_valid_cn, resolve_category


@pytest.mark.parametrize(
    "cn,category",
    [
        ("72061000", "iron_steel"),
        ("7206", "iron_steel"),
        ("72081000", "iron_steel"),
        ("72299000", "iron_steel"),
        ("72011000", "iron_steel"),
        ("73089098", "iron_steel"),
        ("7208.10.00", "iron_steel"),
        ("76011000", "aluminium"),
        ("76169990", "aluminium"),
        ("25231000", "cement"),
        ("25070080", "cement"),
        ("28080000", "fertilizers"),
        ("28141000", "fertilizers"),
        ("31021010", "fertilizers"),
        ("31059000", "fertilizers"),
        ("28041000", "hydrogen"),
        ("2716 00 00", "electricity"),
    ],
)
def test_category_bands(reference, cn, category):
    assert resolve_category(cn, reference) == category


@pytest.mark.parametrize(
    "cn",
    [
        "72041000",  # scrap, between bands
        "72300000",
        "76170000",
        "29011000",  # excluded from the fertiliser band
        "31010000",
        "84713000",
        "720",
        "abcd1234",
        "",
        None,
    ],
)
def test_outside_scope(reference, cn):
    assert resolve_category(cn, reference) is None
    assert not in_scope(cn, reference)


def test_numeric_heading():
    assert cn_heading("7206") == 7206
    assert cn_heading(" 7229.90.20 ") == 7229
    assert cn_heading("72") is None
    assert cn_heading("72A61000") is None


def test_clean_and_validate():
    assert clean_cn("7208 10.00") == "72081000"
    assert is_valid_cn("72081000")
    assert not is_valid_cn("7208100")
    assert not is_valid_cn("7208100X")
