"""Tests for program exception values."""

import pytest

from argo_clinical.errors import InvalidArgumentError
from argo_clinical.submission.program_exceptions import (
    ProgramException,
    check_program_exceptions,
    excepted_value,
    normalize_exception_value,
)

EXCEPTIONS = [ProgramException("TEST-CA", "specimen", "tumour_grade", "not applicable")]


class TestExceptionValues:
    def test_normalize(self):
        assert normalize_exception_value("  nOT APPLICABLE ") == "Not applicable"
        assert normalize_exception_value(None) == ""

    def test_excepted_value_matches_schema_and_field(self):
        assert excepted_value(EXCEPTIONS, "specimen", "tumour_grade", "NOT applicable") == (
            "Not applicable"
        )
        assert excepted_value(EXCEPTIONS, "specimen", "tumour_grade", "G1") is None
        assert excepted_value(EXCEPTIONS, "donor", "tumour_grade", "Not applicable") is None
        assert excepted_value(EXCEPTIONS, "specimen", "tumour_grade", "") is None

    def test_check(self):
        check_program_exceptions(EXCEPTIONS)

        with pytest.raises(InvalidArgumentError):
            check_program_exceptions(
                [ProgramException("TEST-CA", "specimen", "tumour_grade", "Later")]
            )

    def test_dict_round_trip(self):
        [exception] = EXCEPTIONS

        assert ProgramException.from_dict(exception.to_dict()) == exception
