"""Scenario runs: wiring a sender under test to the capture side."""

from rwcompliance.scenario.orchestrator import (
    LaunchOptions,
    Scenario,
    ScenarioResult,
    ValidateCase,
    evaluate,
    run_for_each,
    run_scenario,
)
from rwcompliance.scenario.process import command_launcher, run_command

__all__ = [
    "LaunchOptions",
    "Scenario",
    "ScenarioResult",
    "ValidateCase",
    "command_launcher",
    "evaluate",
    "run_command",
    "run_for_each",
    "run_scenario",
]
