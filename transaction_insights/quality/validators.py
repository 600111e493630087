"""
Data Validation Module

Rule-based checks over the clean set and the analytical view, in the style of
Great Expectations suites. Each stage gets a pre-built suite guarding its
invariants:

- clean set: one row per raw row, unique strictly increasing ids, timestamps present
- analytical view: row count kept, labels and user_type never null

A failed ERROR check fails the suite, a failed WARNING check makes it
PARTIAL, a failed INFO check is only recorded.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import polars as pl
import structlog

from transaction_insights.schemas import ANONYMOUS, REGISTERED

logger = structlog.get_logger(__name__)

Check = Callable[[pl.DataFrame], "ValidationCheck"]


class ValidationSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass
class ValidationCheck:
    """Outcome of one check"""
    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    details: Optional[Dict[str, Any]] = None
    failed_rows: int = 0
    total_rows: int = 0


@dataclass
class ValidationResult:
    """Outcome of a whole suite"""
    status: ValidationStatus
    checks: List[ValidationCheck] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def total_checks(self) -> int:
        return len(self.checks)

    @property
    def passed_checks(self) -> int:
        return sum(1 for c in self.checks if c.passed)

    @property
    def failures(self) -> List[ValidationCheck]:
        return [c for c in self.checks if not c.passed]

    @property
    def failed_checks(self) -> int:
        """Failed ERROR checks"""
        return sum(1 for c in self.failures if c.severity == ValidationSeverity.ERROR)

    @property
    def warning_count(self) -> int:
        return sum(1 for c in self.failures if c.severity == ValidationSeverity.WARNING)

    @property
    def success_rate(self) -> float:
        if not self.checks:
            return 100.0
        return self.passed_checks / self.total_checks * 100


class DataValidator:
    """
    Chainable validation suite.

    Example:
        result = (
            DataValidator()
            .add_not_null_check("id")
            .add_unique_check("id")
            .validate(df)
        )
    """

    def __init__(self, strict_mode: bool = False):
        # Treat WARNING failures as FAILED
        self.strict_mode = strict_mode
        self._checks: List[Check] = []

    def reset(self) -> None:
        self._checks = []

    def _add_column_check(
        self,
        name: str,
        column: str,
        severity: ValidationSeverity,
        count_failures: Callable[[pl.DataFrame], int],
        describe: Callable[[int], str],
        details: Optional[Callable[[pl.DataFrame, int], Dict[str, Any]]] = None,
    ) -> "DataValidator":
        """Register a check that counts offending rows in one column"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            if column not in df.columns:
                return ValidationCheck(name, False, severity, f"Column '{column}' not found")

            failed = count_failures(df)
            return ValidationCheck(
                name=name,
                passed=failed == 0,
                severity=severity,
                message=describe(failed),
                details=details(df, failed) if details else None,
                failed_rows=failed,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_not_null_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        return self._add_column_check(
            f"not_null_{column}",
            column,
            severity,
            lambda df: df[column].null_count(),
            lambda n: f"Column '{column}' has {n} null values" if n else f"Column '{column}' is fully populated",
            lambda df, n: {"null_count": n, "null_percentage": n / df.height * 100 if df.height else 0.0},
        )

    def add_unique_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        return self._add_column_check(
            f"unique_{column}",
            column,
            severity,
            lambda df: df.height - df[column].n_unique(),
            lambda n: f"Column '{column}' has {n} duplicate values" if n else f"Column '{column}' is unique",
            lambda df, n: {"duplicate_count": n},
        )

    def add_increasing_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Values must strictly increase in row order"""
        return self._add_column_check(
            f"increasing_{column}",
            column,
            severity,
            lambda df: df.select((pl.col(column).diff() <= 0).sum()).item() or 0,
            lambda n: f"Column '{column}' steps back {n} times" if n else f"Column '{column}' strictly increases",
        )

    def add_enum_check(
        self,
        column: str,
        allowed_values: List[Any],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Non-null values must come from ``allowed_values``"""
        return self._add_column_check(
            f"enum_{column}",
            column,
            severity,
            lambda df: df.filter(
                pl.col(column).is_not_null() & ~pl.col(column).is_in(allowed_values)
            ).height,
            lambda n: f"Column '{column}' has {n} values outside {allowed_values}" if n else f"Column '{column}' values allowed",
            lambda df, n: {"allowed_values": allowed_values},
        )

    def add_row_count_check(
        self,
        expected_rows: int,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """The frame must hold exactly ``expected_rows`` rows"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            return ValidationCheck(
                name="row_count",
                passed=df.height == expected_rows,
                severity=severity,
                message=f"Expected {expected_rows} rows, found {df.height}",
                details={"expected": expected_rows, "actual": df.height},
                failed_rows=abs(expected_rows - df.height),
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_custom_check(
        self,
        name: str,
        check_func: Callable[[pl.DataFrame], bool],
        message_on_fail: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Frame-level predicate; an exception inside it counts as a failure"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            try:
                passed = bool(check_func(df))
            except Exception as e:
                return ValidationCheck(name, False, severity, f"Check raised {type(e).__name__}: {e}")
            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message="Check passed" if passed else message_on_fail,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def _status(self, result: ValidationResult) -> ValidationStatus:
        if result.failed_checks or (self.strict_mode and result.warning_count):
            return ValidationStatus.FAILED
        if result.warning_count:
            return ValidationStatus.PARTIAL
        return ValidationStatus.PASSED

    def validate(self, df: pl.DataFrame) -> ValidationResult:
        """
        Run every registered check against ``df``.

        Args:
            df: Collected frame to validate

        Returns:
            ValidationResult with one ValidationCheck per registered check
        """
        result = ValidationResult(status=ValidationStatus.PASSED)
        logger.debug("Running validation suite", checks=len(self._checks), rows=df.height)

        for check in self._checks:
            outcome = check(df)
            result.checks.append(outcome)
            if not outcome.passed:
                logger.warning(
                    "Validation check failed",
                    check=outcome.name,
                    severity=outcome.severity.value,
                    detail=outcome.message,
                )

        result.status = self._status(result)
        result.completed_at = datetime.utcnow()

        logger.info(
            "Validation complete",
            status=result.status.value,
            passed=result.passed_checks,
            failed=result.failed_checks,
            warnings=result.warning_count,
        )
        return result


def create_clean_set_validator(raw_rows: int) -> DataValidator:
    """Suite for a freshly built clean set of ``raw_rows`` rows"""
    return (
        DataValidator()
        .add_row_count_check(raw_rows)
        .add_not_null_check("id")
        .add_unique_check("id")
        .add_increasing_check("id")
        .add_not_null_check("event_time")
        .add_not_null_check("normalized_event_time")
        # Missing labels are expected; the view imputes them
        .add_not_null_check("category_code", severity=ValidationSeverity.INFO)
        .add_not_null_check("brand", severity=ValidationSeverity.INFO)
    )


def create_analytical_view_validator(expected_rows: int) -> DataValidator:
    """Suite for the collected analytical view"""
    return (
        DataValidator()
        .add_row_count_check(expected_rows)
        .add_not_null_check("category_code")
        .add_not_null_check("brand")
        .add_not_null_check("user_type")
        .add_enum_check("user_type", [ANONYMOUS, REGISTERED])
        .add_not_null_check("weekday")
    )
