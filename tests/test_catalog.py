import pytest

from catalog import (
    CLUSTERS,
    CROP_CONFIG,
    SystemRole,
    cluster_for_role,
    normalize_phone,
    phone_search_term,
    pin_to_password,
    resolve_unit,
    units_for,
    validate_pin,
)


@pytest.mark.parametrize("raw,expected", [
    ("0712345678", "+254712345678"),
    ("0112345678", "+254112345678"),
    ("712345678", "+254712345678"),
    ("254712345678", "+254712345678"),
    ("+254 712 345 678", "+254712345678"),
    ("0712-345-678", "+254712345678"),
    ("", ""),
])
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


def test_phone_search_term_matches_local_and_international():
    assert phone_search_term("0712345678") == phone_search_term("+254712345678") == "712345678"
    assert phone_search_term("1234") == "1234"


def test_validate_pin():
    assert validate_pin("0420")
    assert not validate_pin("042")
    assert not validate_pin("04200")
    assert not validate_pin("12a4")
    assert not validate_pin(1234)
    assert not validate_pin(None)
    assert not validate_pin("1234\n")
    assert not validate_pin("\u0661\u0662\u0663\u0664")


def test_pin_to_password_pads_four_digit_pins():
    assert pin_to_password("1234") == "123400"


def test_units_fall_back_to_other():
    assert units_for("Maize")[0] == "2kg Tin"
    assert units_for("Yams") == CROP_CONFIG["Other"]


def test_resolve_unit_coerces_invalid_unit():
    assert resolve_unit("Tomatoes", "Box") == "Box"
    assert resolve_unit("Tomatoes", "Litre") == "Crate"
    assert resolve_unit("Bread", None) == "Loaf"


def test_cluster_only_kept_for_field_roles():
    assert cluster_for_role(SystemRole.SUPPLIER, "Mulo") == "Mulo"
    assert cluster_for_role(SystemRole.AUDITOR, "Mulo") == "-"


def test_clusters_have_coordinates():
    assert "Mariwa" in CLUSTERS
    assert all({"lat", "lng"} <= set(c) for c in CLUSTERS.values())
