"""
Data Validation Module

Rule-based quality checks for the cleaned input streams and the order fact
table. Input-data findings are reported, never fatal: the decomposition
tolerates nulls, so failed checks surface as warnings in the log
and in the ValidationResult.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import polars as pl
import structlog

from gmv_decomposition.config import get_settings

logger = structlog.get_logger(__name__)


class ValidationSeverity(str, Enum):
    """Severity levels for validation failures"""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationStatus(str, Enum):
    """Overall validation status"""
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass
class ValidationCheck:
    """Single validation check result"""
    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    details: Optional[Dict[str, Any]] = None
    failed_rows: int = 0
    total_rows: int = 0


@dataclass
class ValidationResult:
    """Complete validation suite result"""
    status: ValidationStatus
    total_checks: int
    passed_checks: int
    failed_checks: int
    warning_count: int
    checks: List[ValidationCheck] = field(default_factory=list)
    subject: str = ""

    @property
    def success_rate(self) -> float:
        """Percentage of passed checks"""
        if self.total_checks == 0:
            return 100.0
        return (self.passed_checks / self.total_checks) * 100

    @property
    def failures(self) -> List[ValidationCheck]:
        return [c for c in self.checks if not c.passed]


def summarize_checks(
    checks: List[ValidationCheck],
    subject: str = "",
    strict_mode: bool = False,
) -> ValidationResult:
    """Fold individual checks into a ValidationResult"""
    passed_checks = sum(1 for c in checks if c.passed)
    failed_checks = sum(1 for c in checks if not c.passed and c.severity == ValidationSeverity.ERROR)
    warning_count = sum(1 for c in checks if not c.passed and c.severity == ValidationSeverity.WARNING)

    if failed_checks > 0:
        status = ValidationStatus.FAILED
    elif warning_count > 0 and strict_mode:
        status = ValidationStatus.FAILED
    elif warning_count > 0:
        status = ValidationStatus.PARTIAL
    else:
        status = ValidationStatus.PASSED

    return ValidationResult(
        status=status,
        total_checks=len(checks),
        passed_checks=passed_checks,
        failed_checks=failed_checks,
        warning_count=warning_count,
        checks=checks,
        subject=subject,
    )


def _missing_column(name: str, column: str, severity: ValidationSeverity) -> ValidationCheck:
    return ValidationCheck(
        name=name,
        passed=False,
        severity=severity,
        message=f"Column '{column}' not found",
    )


class DataValidator:
    """
    Chainable validator over a polars DataFrame.

    Example:
        validator = DataValidator("order_items")
        validator.add_not_null_check("order_id").add_range_check("price", min_value=0)
        result = validator.validate(df)
    """

    def __init__(self, subject: str = "", strict_mode: bool = False):
        self.subject = subject
        self.strict_mode = strict_mode
        self._checks: List[Callable[[pl.DataFrame], ValidationCheck]] = []

    def add_not_null_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for null values in column"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"not_null_{column}"
            if column not in df.columns:
                return _missing_column(name, column, severity)

            null_count = df[column].null_count()
            return ValidationCheck(
                name=name,
                passed=null_count == 0,
                severity=severity,
                message=f"Column '{column}' has {null_count} null values",
                details={"null_count": null_count},
                failed_rows=null_count,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_unique_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for uniqueness of column values"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"unique_{column}"
            if column not in df.columns:
                return _missing_column(name, column, severity)

            duplicate_count = df.height - df[column].n_unique()
            return ValidationCheck(
                name=name,
                passed=duplicate_count == 0,
                severity=severity,
                message=f"Column '{column}' has {duplicate_count} duplicate values",
                details={"duplicate_count": duplicate_count},
                failed_rows=duplicate_count,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_range_check(
        self,
        column: str,
        min_value: Optional[float] = None,
        max_value: Optional[float] = None,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for non-null values within [min_value, max_value]"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"range_{column}"
            if column not in df.columns:
                return _missing_column(name, column, severity)

            out_of_range = pl.lit(False)
            if min_value is not None:
                out_of_range = out_of_range | (pl.col(column) < min_value)
            if max_value is not None:
                out_of_range = out_of_range | (pl.col(column) > max_value)

            # an untyped all-null column has no values to compare
            failed = 0 if df[column].dtype == pl.Null else df.filter(out_of_range).height
            return ValidationCheck(
                name=name,
                passed=failed == 0,
                severity=severity,
                message=f"Column '{column}' has {failed} values outside [{min_value}, {max_value}]",
                details={"min": min_value, "max": max_value, "out_of_range_count": failed},
                failed_rows=failed,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_enum_check(
        self,
        column: str,
        allowed_values: List[Any],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for non-null values in an allowed set"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"enum_{column}"
            if column not in df.columns:
                return _missing_column(name, column, severity)

            invalid = 0
            if df[column].dtype != pl.Null:
                invalid = df.filter(
                    ~pl.col(column).is_in(allowed_values) & pl.col(column).is_not_null()
                ).height
            return ValidationCheck(
                name=name,
                passed=invalid == 0,
                severity=severity,
                message=f"Column '{column}' has {invalid} values outside {allowed_values}",
                details={"allowed_values": allowed_values, "invalid_count": invalid},
                failed_rows=invalid,
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
        """Add custom validation check"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            passed = bool(check_func(df))
            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message="Check passed" if passed else message_on_fail,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def validate(self, df: pl.DataFrame) -> ValidationResult:
        """
        Run all validation checks on DataFrame.

        Args:
            df: DataFrame to validate

        Returns:
            ValidationResult with all check results
        """
        checks = []
        for check_func in self._checks:
            result = check_func(df)
            checks.append(result)

            if not result.passed:
                logger.warning(
                    "Validation failed",
                    subject=self.subject,
                    check=result.name,
                    message=result.message,
                    severity=result.severity.value,
                )

        validation_result = summarize_checks(checks, subject=self.subject, strict_mode=self.strict_mode)

        logger.info(
            "Validation complete",
            subject=self.subject,
            status=validation_result.status.value,
            passed=validation_result.passed_checks,
            failed=validation_result.failed_checks,
            warnings=validation_result.warning_count,
        )
        return validation_result


# Order lifecycle of the cleaned orders stream. The configured delivered
# status is added on top when it is not one of these.
ORDER_STATUSES = [
    "created",
    "approved",
    "invoiced",
    "processing",
    "shipped",
    "delivered",
    "canceled",
    "unavailable",
]


# Pre-built validators for the input streams. Nulls are legal upstream output,
# so null checks on attribute columns are warnings.
def create_orders_validator(delivered_status: Optional[str] = None) -> DataValidator:
    """Validator for the cleaned orders stream"""
    status = delivered_status or get_settings().decomposition.delivered_status
    allowed = ORDER_STATUSES if status in ORDER_STATUSES else ORDER_STATUSES + [status]
    return (
        DataValidator("orders")
        .add_not_null_check("order_id")
        .add_unique_check("order_id")
        .add_not_null_check("status", severity=ValidationSeverity.WARNING)
        .add_enum_check("status", allowed, severity=ValidationSeverity.WARNING)
        .add_not_null_check("purchase_ts", severity=ValidationSeverity.WARNING)
        .add_range_check("month", min_value=1, max_value=12)
    )


def create_order_items_validator() -> DataValidator:
    """Validator for the cleaned order items stream"""
    return (
        DataValidator("order_items")
        .add_not_null_check("order_id")
        .add_range_check("price", min_value=0)
        .add_range_check("freight_value", min_value=0)
        .add_not_null_check("product_id", severity=ValidationSeverity.WARNING)
    )


def create_payments_validator() -> DataValidator:
    """Validator for the cleaned payments stream"""
    return (
        DataValidator("payments")
        .add_not_null_check("order_id")
        .add_range_check("payment_value", min_value=0)
        .add_range_check("payment_installments", min_value=0, severity=ValidationSeverity.WARNING)
    )


def create_reviews_validator() -> DataValidator:
    """Validator for the cleaned reviews stream"""
    return (
        DataValidator("reviews")
        .add_not_null_check("order_id")
        .add_range_check("review_score", min_value=1, max_value=5, severity=ValidationSeverity.WARNING)
    )


def create_customers_validator() -> DataValidator:
    """Validator for the cleaned customers stream"""
    return (
        DataValidator("customers")
        .add_not_null_check("customer_id")
        .add_unique_check("customer_id", severity=ValidationSeverity.WARNING)
        .add_custom_check(
            name="state_code_length",
            check_func=lambda df: df.filter(
                pl.col("state").is_not_null() & (pl.col("state").cast(pl.Utf8).str.len_chars() != 2)
            ).height == 0,
            message_on_fail="Customer state codes must be two letters",
            severity=ValidationSeverity.WARNING,
        )
    )


def create_order_facts_validator() -> DataValidator:
    """Validator for the order fact table's structural invariants"""
    return (
        DataValidator("order_facts")
        .add_not_null_check("order_id")
        .add_unique_check("order_id")
        .add_not_null_check("main_category")
        .add_range_check("order_amount_net", min_value=0)
        .add_range_check("order_amount_gross", min_value=0)
        .add_range_check("order_freight", min_value=0)
        .add_range_check("items_per_order", min_value=1)
        .add_range_check("review_score", min_value=1, max_value=5, severity=ValidationSeverity.WARNING)
        .add_custom_check(
            name="gross_covers_net",
            check_func=lambda df: df.filter(
                pl.col("order_amount_gross") < pl.col("order_amount_net")
            ).height == 0,
            message_on_fail="Gross amount below net amount",
        )
    )


INPUT_VALIDATORS: Dict[str, Callable[[], DataValidator]] = {
    "orders": create_orders_validator,
    "order_items": create_order_items_validator,
    "payments": create_payments_validator,
    "reviews": create_reviews_validator,
    "customers": create_customers_validator,
}
