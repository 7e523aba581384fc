"""Graded check results and their aggregation."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List

from rwcompliance.utils.logging import get_logger
from rwcompliance.wire.errors import ValidationFailed

log = get_logger(__name__)


class Level(str, Enum):
    """Requirement strength of a check, in RFC 2119 terms."""

    MUST = "MUST"
    SHOULD = "SHOULD"
    MAY = "MAY"
    RECOMMENDED = "RECOMMENDED"


@dataclass(frozen=True)
class CheckResult:
    name: str
    level: Level
    passed: bool
    message: str = ""

    @property
    def is_failure(self) -> bool:
        """A failed MUST check. Other levels only ever warn."""
        return not self.passed and self.level is Level.MUST

    @property
    def is_warning(self) -> bool:
        return not self.passed and self.level is not Level.MUST


def check(level: Level, name: str, condition: bool, message: str = "") -> CheckResult:
    return CheckResult(name=name, level=level, passed=bool(condition), message=message)


def must(name: str, condition: bool, message: str = "") -> CheckResult:
    return check(Level.MUST, name, condition, message)


def should(name: str, condition: bool, message: str = "") -> CheckResult:
    return check(Level.SHOULD, name, condition, message)


def may(name: str, condition: bool, message: str = "") -> CheckResult:
    return check(Level.MAY, name, condition, message)


def recommended(name: str, condition: bool, message: str = "") -> CheckResult:
    return check(Level.RECOMMENDED, name, condition, message)


@dataclass
class Report:
    """Every check result of one run, collected without short-circuiting."""

    name: str = ""
    results: List[CheckResult] = field(default_factory=list)

    def add(self, result: CheckResult) -> CheckResult:
        self.results.append(result)
        return result

    def extend(self, results: Iterable[CheckResult]) -> None:
        self.results.extend(results)

    @property
    def failures(self) -> List[CheckResult]:
        return [r for r in self.results if r.is_failure]

    @property
    def warnings(self) -> List[CheckResult]:
        return [r for r in self.results if r.is_warning]

    @property
    def ok(self) -> bool:
        """True when no MUST-level check failed."""
        return not self.failures

    def log_results(self) -> None:
        """Log failures as errors, warnings as warnings and a summary line."""
        for r in self.failures:
            log.error("check_failed", report=self.name, check=r.name, level=r.level.value, message=r.message)
        for r in self.warnings:
            log.warning("check_warning", report=self.name, check=r.name, level=r.level.value, message=r.message)
        log.info(
            "report_summary",
            report=self.name,
            checks=len(self.results),
            failures=len(self.failures),
            warnings=len(self.warnings),
        )

    def raise_for_failures(self) -> None:
        """Raise ValidationFailed if any MUST check failed."""
        failures = self.failures
        if failures:
            raise ValidationFailed(failures)
