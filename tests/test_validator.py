"""
Autolabel Tests - Sample Code Validator
"""

import pytest

from autolabel.validator import is_valid_code


class TestValidCodes:
    @pytest.mark.parametrize("code", [
        "MWI.1.2.10A.5.3",
        "MWI.3.99.999.99.99",
        "MWI.1.1.1.1.1",
        "KEN.12.34B.5.6",
        "KEN.47.999.99.99",
    ])
    def test_accepts(self, code):
        assert is_valid_code(code) is True


class TestInvalidCodes:
    @pytest.mark.parametrize("code", [
        "",
        "MWI",
        "mwi.1.2.10A.5.3",  # case-sensitive prefix
        "MWI.1.2.10a.5.3",  # lowercase letter
        "MWI.4.2.10.5.3",  # region out of range
        "MWI.1.2.10.5",  # missing segment
        "MWI.1.2.10.5.3.1",  # extra segment
        "MWI.1A.2.10.5.3",  # letter on a segment that takes none
        "MWI.01.2.10.5.3",  # leading zero
        "MWI.0.2.10.5.3",
        " MWI.1.2.10A.5.3",  # whole string must match
        "MWI.1.2.10A.5.3 ",
        "KEN.48.1.1.1",
        "TZA.1.2.3.4",
        "MWI..2.10.5.3",
    ])
    def test_rejects(self, code):
        assert is_valid_code(code) is False

    @pytest.mark.parametrize("value", [None, 42, 3.5, ["MWI.1.2.10A.5.3"], b"MWI.1.2.10A.5.3"])
    def test_non_string_is_invalid_not_error(self, value):
        assert is_valid_code(value) is False

    def test_is_deterministic(self):
        assert all(is_valid_code("KEN.12.34B.5.6") for _ in range(10))
