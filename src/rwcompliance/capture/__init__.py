"""Capture side of the harness: mock receiver, request log and scrape target."""

from rwcompliance.capture.endpoint import ScriptedEndpoint, ScriptedResponse
from rwcompliance.capture.scrape import ScrapeTarget
from rwcompliance.capture.store import CapturedRequest, RequestStore

__all__ = [
    "CapturedRequest",
    "RequestStore",
    "ScrapeTarget",
    "ScriptedEndpoint",
    "ScriptedResponse",
]
