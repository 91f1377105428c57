"""Unit tests for the common CPT code catalog."""

from billscanner.cpt_codes import COMMON_CPT_CODES, get_cpt_code_info, search_cpt_codes
from billscanner.rate_lookup import DEFAULT_FALLBACK_RATES


def test_get_cpt_code_info():
    info = get_cpt_code_info("72141")

    assert info.description == "MRI lumbar spine without contrast"
    assert info.category == "Radiology"
    assert get_cpt_code_info(" 72141 ") == info
    assert get_cpt_code_info("00000") is None


def test_every_fallback_code_is_described():
    assert set(DEFAULT_FALLBACK_RATES) <= set(COMMON_CPT_CODES)


def test_search_by_description_is_case_insensitive():
    codes = [cpt.code for cpt in search_cpt_codes("MRI")]

    assert codes == ["72141"]


def test_search_by_code_prefix():
    codes = {cpt.code for cpt in search_cpt_codes("9921")}

    assert codes == {"99213", "99214", "99215"}


def test_search_by_category():
    codes = {cpt.code for cpt in search_cpt_codes("laboratory")}

    assert {"80053", "85027", "80061"} <= codes


def test_empty_search_returns_catalog():
    assert len(search_cpt_codes("")) == len(COMMON_CPT_CODES)
