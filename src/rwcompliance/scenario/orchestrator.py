"""One scenario run: scrape target, scripted receiver and a sender under test.

A launcher is any callable ``launcher(options, stop)`` that runs a sender
(or anything else that talks remote-write) against ``options`` until the
``stop`` event is set. Launchers are passed in explicitly; nothing here
keeps a registry of them.
"""

import dataclasses
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional

from rwcompliance.capture.endpoint import ScriptedEndpoint, ScriptedResponse
from rwcompliance.capture.scrape import ScrapeTarget
from rwcompliance.capture.store import CapturedRequest, RequestStore
from rwcompliance.utils.config import Config
from rwcompliance.utils.logging import get_logger
from rwcompliance.validation.conversation import check_decoded
from rwcompliance.validation.report import CheckResult, Level, Report, check, must
from rwcompliance.wire.models import ProtocolVersion, WireMessage

log = get_logger(__name__)


@dataclass(frozen=True)
class LaunchOptions:
    """Everything a launcher needs to point a sender at the harness."""

    scrape_target_host_port: str
    scrape_job_name: str
    remote_write_url: str
    version: ProtocolVersion


Launcher = Callable[[LaunchOptions, threading.Event], None]


@dataclass
class ScenarioResult:
    """What came out of one run. A timeout is reported, not raised.

    ``timed_out`` is set only when the deadline passed before the script
    finished; a launcher that exits early leaves it False.
    """

    scenario: str
    sender: str
    version: ProtocolVersion
    requests: List[CapturedRequest] = field(default_factory=list)
    timed_out: bool = False
    launcher_error: Optional[BaseException] = None
    scrapes: int = 0
    duration_seconds: float = 0.0

    def messages(self) -> List[WireMessage]:
        """Decoded messages, skipping requests that failed to parse."""
        return [r.message for r in self.requests if r.message is not None]


ValidateFn = Callable[[ScenarioResult], List[CheckResult]]


@dataclass
class ValidateCase:
    """A named, graded check run over a scenario result."""

    name: str
    validate: ValidateFn
    description: str = ""
    level: Level = Level.MUST


@dataclass
class Scenario:
    name: str
    description: str = ""
    level: Level = Level.MUST
    version: ProtocolVersion = ProtocolVersion.V2
    scrape_data: str = ""
    responses: List[ScriptedResponse] = field(default_factory=lambda: [ScriptedResponse()])
    timeout: Optional[float] = None  # falls back to the configured default
    validate: Optional[ValidateFn] = None
    validate_cases: List[ValidateCase] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.version = ProtocolVersion.parse(self.version)
        if not self.responses:
            self.responses = [ScriptedResponse()]


def run_scenario(
    scenario: Scenario,
    launcher: Launcher,
    config: Optional[Config] = None,
    sender_name: str = "",
) -> ScenarioResult:
    """Run one scenario to completion or timeout.

    Starts the scripted receiver and the scrape target, runs the launcher in
    a thread, then waits until the response script is used up, the launcher
    gives up, or the timeout passes. Everything is torn down the same way in
    all three cases and the captured requests are returned.
    """
    config = config or Config()
    timeout = scenario.timeout if scenario.timeout is not None else config.scenario.timeout_seconds
    store = RequestStore()
    endpoint = ScriptedEndpoint(
        responses=scenario.responses,
        version=scenario.version,
        store=store,
        config=config.endpoint,
        verbose=config.app.debug,
    )
    target = ScrapeTarget(scenario.scrape_data, config.scrape)
    stop = threading.Event()
    errors: List[BaseException] = []

    log.info(
        "scenario_started",
        scenario=scenario.name,
        sender=sender_name,
        version=scenario.version.value,
        timeout=timeout,
    )
    t0 = time.monotonic()
    with endpoint, target:
        options = LaunchOptions(
            scrape_target_host_port=target.host_port,
            scrape_job_name=config.scenario.job_name,
            remote_write_url=endpoint.url,
            version=scenario.version,
        )

        def _launch() -> None:
            try:
                launcher(options, stop)
            except Exception as e:
                log.error("launcher_failed", scenario=scenario.name, error=str(e), error_type=type(e).__name__)
                errors.append(e)

        thread = threading.Thread(target=_launch, daemon=True, name=f"launcher-{scenario.name}")
        thread.start()

        deadline = t0 + timeout
        while not endpoint.done.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0 or not thread.is_alive():
                break
            endpoint.done.wait(min(config.scenario.poll_interval_seconds, remaining))

        timed_out = not endpoint.done.is_set() and time.monotonic() >= deadline
        stop.set()
        thread.join(timeout=config.scenario.stop_grace_seconds + 5)
        if thread.is_alive():
            log.warning("launcher_still_running", scenario=scenario.name)
        scrapes = target.scrape_count

    result = ScenarioResult(
        scenario=scenario.name,
        sender=sender_name,
        version=scenario.version,
        requests=store.snapshot(),
        timed_out=timed_out,
        launcher_error=errors[0] if errors else None,
        scrapes=scrapes,
        duration_seconds=round(time.monotonic() - t0, 3),
    )
    log.info(
        "scenario_finished",
        scenario=scenario.name,
        sender=sender_name,
        requests=len(result.requests),
        timed_out=result.timed_out,
        duration_seconds=result.duration_seconds,
    )
    return result


def run_for_each(
    scenario: Scenario,
    launchers: Mapping[str, Launcher],
    config: Optional[Config] = None,
) -> Dict[str, ScenarioResult]:
    """Run the same scenario once per named launcher, one after another."""
    return {
        name: run_scenario(scenario, launcher, config=config, sender_name=name)
        for name, launcher in launchers.items()
    }


def _run_validator(name: str, level: Level, fn: ValidateFn, result: ScenarioResult) -> List[CheckResult]:
    try:
        return list(fn(result))
    except Exception as e:
        log.error("validator_error", check=name, error=str(e), error_type=type(e).__name__)
        return [check(level, name, False, f"validator raised {type(e).__name__}: {e}")]


def evaluate(scenario: Scenario, result: ScenarioResult) -> Report:
    """Grade a scenario result.

    Decode failures, the scenario's own validation and every validate case
    all land in one report; nothing stops at the first failure.
    """
    report = Report(name=f"{scenario.name}/{result.sender}" if result.sender else scenario.name)
    if result.launcher_error is not None:
        report.add(must("launcher_ran", False, f"launcher failed: {result.launcher_error}"))
    report.extend(check_decoded(result.requests))
    if scenario.validate is not None:
        report.extend(_run_validator(scenario.name, scenario.level, scenario.validate, result))
    for case in scenario.validate_cases:
        for r in _run_validator(case.name, case.level, case.validate, result):
            report.add(dataclasses.replace(r, name=f"{case.name}/{r.name}"))
    report.log_results()
    return report
