"""
Department split validation tests
"""
import pytest

from reconciliation.department_splits import normalize_splits, validate_department_splits
from reconciliation.errors import DepartmentSplitError


class TestValidateDepartmentSplits:

    def test_valid_splits_pass(self):
        splits = [{"department_name": "Design", "amount": 300}, {"department_name": "Ops", "amount": 200}]
        assert validate_department_splits(splits, 500) is True

    def test_split_mode_off_skips_validation(self):
        assert validate_department_splits([], 500, split_mode=False) is True

    def test_empty_splits_rejected(self):
        with pytest.raises(DepartmentSplitError, match="required"):
            validate_department_splits([], 500)

    def test_missing_name_rejected(self):
        splits = [{"department_name": "  ", "amount": 500}]
        with pytest.raises(DepartmentSplitError) as exc_info:
            validate_department_splits(splits, 500)
        assert exc_info.value.details["invalid_split_indexes"] == [0]

    def test_non_positive_amount_rejected(self):
        splits = [{"department_name": "Design", "amount": 500}, {"department_name": "Ops", "amount": 0}]
        with pytest.raises(DepartmentSplitError) as exc_info:
            validate_department_splits(splits, 500)
        assert exc_info.value.details["invalid_split_indexes"] == [1]

    def test_non_finite_amount_rejected(self):
        splits = [{"department_name": "Design", "amount": float("nan")}, {"department_name": "Ops", "amount": float("inf")}]
        with pytest.raises(DepartmentSplitError) as exc_info:
            validate_department_splits(splits, 500)
        assert exc_info.value.details["invalid_split_indexes"] == [0, 1]

    def test_duplicate_names_rejected_case_insensitively(self):
        splits = [{"department_name": "Design", "amount": 250}, {"department_name": " design ", "amount": 250}]
        with pytest.raises(DepartmentSplitError, match="Duplicate"):
            validate_department_splits(splits, 500)

    def test_sum_mismatch_reports_both_totals(self):
        """A300 + B150 against 500 is rejected with both figures"""
        splits = [{"department_name": "A", "amount": 300}, {"department_name": "B", "amount": 150}]
        with pytest.raises(DepartmentSplitError) as exc_info:
            validate_department_splits(splits, 500)
        error = exc_info.value
        assert "450.00" in error.message
        assert "500.00" in error.message
        assert error.details["split_total"] == 450.0
        assert error.details["expected_total"] == 500.0
        assert error.details["difference"] == -50.0
        assert error.code == "DEPARTMENT_SPLIT_INVALID"

    def test_one_cent_tolerance(self):
        splits = [{"department_name": "A", "amount": 333.33}, {"department_name": "B", "amount": 666.66}]
        assert validate_department_splits(splits, 1000) is True

    def test_attribute_style_splits_accepted(self):
        class Split:
            def __init__(self, department_name, amount):
                self.department_name = department_name
                self.amount = amount

        assert validate_department_splits([Split("A", 100), Split("B", 50)], 150) is True


def test_normalize_splits_trims_and_rounds():
    splits = [{"department_name": "  Design ", "amount": "300.005"}]
    assert normalize_splits(splits) == [{"department_name": "Design", "amount": 300.01}]
