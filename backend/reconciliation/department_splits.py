"""
DEPARTMENT SPLIT VALIDATION

A split-mode payment allocates its received amount across departments.
Rules are checked in order and the first failure wins:

1. At least one split entry
2. Every split has a department name and an amount > 0
3. Department names are unique, case-insensitively
4. Split total equals the expected total within 0.01
5. Split total is not zero
"""

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping
import logging

from reconciliation.errors import DepartmentSplitError
from reconciliation.financial_precision import (
    FinancialPrecisionError, amounts_match, round_financial, to_decimal, to_float
)

logger = logging.getLogger(__name__)


def _split_value(split: Any, key: str):
    if isinstance(split, Mapping):
        return split.get(key)
    return getattr(split, key, None)


def _split_amount(split: Any) -> Decimal:
    try:
        return to_decimal(_split_value(split, "amount"))
    except FinancialPrecisionError:
        return Decimal("0")


def validate_department_splits(
    splits: Iterable[Any],
    expected_total,
    split_mode: bool = True,
) -> bool:
    """
    Validate department splits against the payment's base-currency amount.

    Returns True when valid. Raises DepartmentSplitError otherwise.
    """
    if not split_mode:
        return True

    splits = list(splits or [])

    if not splits:
        raise DepartmentSplitError(
            "Department splits are required when department split mode is enabled. "
            "Add at least one department split or disable department split mode."
        )

    invalid = [
        index for index, split in enumerate(splits)
        if not (_split_value(split, "department_name") or "").strip()
        or _split_amount(split) <= 0
    ]
    if invalid:
        raise DepartmentSplitError(
            "All department splits must have a department name and an amount greater than 0.",
            details={"invalid_split_indexes": invalid},
        )

    seen = set()
    duplicates = []
    for split in splits:
        key = _split_value(split, "department_name").strip().lower()
        if key in seen:
            duplicates.append(_split_value(split, "department_name").strip())
        seen.add(key)
    if duplicates:
        raise DepartmentSplitError(
            "Duplicate department names are not allowed in splits. "
            "Each department can only appear once per payment.",
            details={"duplicate_departments": duplicates},
        )

    split_total = round_financial(sum((_split_amount(s) for s in splits), Decimal("0")))
    expected = round_financial(expected_total)
    if not amounts_match(split_total, expected):
        raise DepartmentSplitError(
            f"Department split total does not match payment amount. "
            f"Split total: {split_total:.2f}, expected amount: {expected:.2f}.",
            details={
                "split_total": to_float(split_total),
                "expected_total": to_float(expected),
                "difference": to_float(split_total - expected),
            },
        )

    if split_total == 0:
        raise DepartmentSplitError("Department split total cannot be zero.")

    logger.debug(f"[SPLITS] {len(splits)} department splits validated against {expected}")
    return True


def normalize_splits(splits: Iterable[Any]) -> List[Dict[str, Any]]:
    """Trimmed names and cent-rounded amounts, ready for storage."""
    return [
        {
            "department_name": _split_value(split, "department_name").strip(),
            "amount": to_float(_split_amount(split)),
        }
        for split in splits or []
    ]
