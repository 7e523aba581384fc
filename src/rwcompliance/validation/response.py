"""Grading of receiver replies to remote-write requests."""

from dataclasses import dataclass
from typing import List

from rwcompliance.client.remote_write import WriteOutcome, response_headers_summary
from rwcompliance.validation.report import CheckResult, must


@dataclass(frozen=True)
class ExpectedResponse:
    """What a conforming receiver should answer.

    Attributes:
        success: Request should be fully accepted (2xx).
        retryable: Rejection should be temporary (5xx).
        samples, exemplars, histograms: Items in the request. Exact for a
            success, an upper bound for a rejection.
        status_code: Required exact status. 0 means any in the right class,
            except 4xx which then defaults to 400.
        strict: A success must be exactly 204.
    """

    success: bool = True
    retryable: bool = False
    samples: int = 0
    exemplars: int = 0
    histograms: int = 0
    status_code: int = 0
    strict: bool = False

    @property
    def total(self) -> int:
        return self.samples + self.exemplars + self.histograms


def _bounded(expected: ExpectedResponse, outcome: WriteOutcome, ctx: str) -> List[CheckResult]:
    w = outcome.written
    return [
        must("samples_written_bounded", w.samples <= expected.samples,
             f"{ctx}: {w.samples} samples written, request had {expected.samples}"),
        must("exemplars_written_bounded", w.exemplars <= expected.exemplars,
             f"{ctx}: {w.exemplars} exemplars written, request had {expected.exemplars}"),
        must("histograms_written_bounded", w.histograms <= expected.histograms,
             f"{ctx}: {w.histograms} histograms written, request had {expected.histograms}"),
        must("total_written_bounded", w.total <= expected.total,
             f"{ctx}: {w.total} items written, request had {expected.total}"),
    ]


def check_response(expected: ExpectedResponse, outcome: WriteOutcome) -> List[CheckResult]:
    """Grade a receiver reply against what the request deserved.

    Missing written-count headers count as zero.
    """
    status = outcome.status_code
    ctx = f"status {status} {response_headers_summary(outcome)}"
    results = []
    if outcome.header_error:
        results.append(must("written_headers_valid", False, outcome.header_error))
    if expected.status_code:
        results.append(
            must("status_exact", status == expected.status_code,
                 f"response code is {status}, want exactly {expected.status_code}")
        )

    family = status // 100
    w = outcome.written
    if family == 2:
        results.append(must("success_expected", expected.success,
                            f"response code is {status} but the request should have failed"))
        results.append(must("samples_written", w.samples == expected.samples,
                            f"{ctx}: {w.samples} samples written, want {expected.samples}"))
        results.append(must("exemplars_written", w.exemplars == expected.exemplars,
                            f"{ctx}: {w.exemplars} exemplars written, want {expected.exemplars}"))
        results.append(must("histograms_written", w.histograms == expected.histograms,
                            f"{ctx}: {w.histograms} histograms written, want {expected.histograms}"))
        if expected.strict:
            results.append(must("status_no_content", status == 204,
                                f"response code is {status}, want 204"))
    elif family == 4:
        results.append(must("not_retryable", not expected.retryable,
                            f"response code is {status} but the error should be retryable"))
        if not expected.status_code:
            results.append(must("status_bad_request", status == 400,
                                f"response code is {status}, want 400"))
        results.extend(_bounded(expected, outcome, ctx))
    elif family == 5:
        results.append(must("failure_expected", not expected.success,
                            f"response code is {status} but the request should have succeeded"))
        results.append(must("retryable", expected.retryable,
                            f"response code is {status} but the error should not be retryable"))
        results.extend(_bounded(expected, outcome, ctx))
    else:
        results.append(must("status_class", False,
                            f"response code is {status} but should be 2xx, 4xx or 5xx"))
    return results
