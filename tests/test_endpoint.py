"""Tests for the scripted endpoint and the scrape target, over real HTTP."""

import pytest
import requests

from rwcompliance.capture.endpoint import ScriptedEndpoint, ScriptedResponse
from rwcompliance.capture.scrape import (
    EOF_MARKER,
    OPENMETRICS_CONTENT_TYPE,
    TEXT_CONTENT_TYPE,
    ScrapeTarget,
    render,
)
from rwcompliance.utils.config import ScrapeConfig
from rwcompliance.wire.builder import RequestBuilder
from rwcompliance.wire.models import ProtocolVersion
from rwcompliance.wire.transport import (
    EXEMPLARS_WRITTEN_HEADER,
    HISTOGRAMS_WRITTEN_HEADER,
    SAMPLES_WRITTEN_HEADER,
    encode_request,
)

TS = 1_700_000_000_000


def _post(endpoint: ScriptedEndpoint, version=ProtocolVersion.V2, samples: int = 1):
    builder = RequestBuilder(version=version)
    for i in range(samples):
        builder.add_sample({"__name__": "m", "i": str(i)}, float(i), TS)
    headers, body = encode_request(builder.build())
    return requests.post(endpoint.url, headers=dict(headers), data=body, timeout=5)


# ---------------------------------------------------------------------------
# Scripted endpoint
# ---------------------------------------------------------------------------


def test_default_reply_is_204_with_written_counts(endpoint_factory) -> None:
    """Without a script the endpoint answers 204 with counted items."""
    endpoint = endpoint_factory()
    resp = _post(endpoint, samples=3)

    assert resp.status_code == 204
    assert resp.headers[SAMPLES_WRITTEN_HEADER] == "3"
    assert resp.headers[EXEMPLARS_WRITTEN_HEADER] == "0"
    assert resp.headers[HISTOGRAMS_WRITTEN_HEADER] == "0"
    assert len(endpoint.requests()) == 1
    assert endpoint.requests()[0].decoded


def test_script_is_replayed_in_order(endpoint_factory) -> None:
    """Scripted replies are served one per request, in order."""
    endpoint = endpoint_factory(
        [ScriptedResponse(status_code=500, body="boom"), ScriptedResponse(status_code=200)]
    )

    first = _post(endpoint)
    assert first.status_code == 500
    assert first.text == "boom"
    assert SAMPLES_WRITTEN_HEADER not in first.headers
    assert not endpoint.done.is_set()

    assert _post(endpoint).status_code == 200
    assert endpoint.done.is_set()


def test_requests_after_script_get_finished_status(endpoint_factory) -> None:
    """Once the script is used up requests get 410 and are not recorded."""
    endpoint = endpoint_factory()
    _post(endpoint)

    late = _post(endpoint)
    assert late.status_code == 410
    assert late.text == "Test finished"
    assert endpoint.closed
    # only the scripted request was recorded
    assert len(endpoint.requests()) == 1


def test_keep_open_answers_past_script(endpoint_factory) -> None:
    """With close_when_done off the endpoint keeps answering 204."""
    endpoint = endpoint_factory(close_when_done=False)
    assert _post(endpoint).status_code == 204
    assert _post(endpoint).status_code == 204
    assert endpoint.wait_done(0)
    assert len(endpoint.requests()) == 2


def test_undecodable_body_is_recorded_and_rejected(endpoint_factory) -> None:
    """Bodies that fail to decode get 400 but are still captured."""
    endpoint = endpoint_factory()
    resp = requests.post(
        endpoint.url,
        headers={"Content-Encoding": "snappy", "Content-Type": "application/x-protobuf"},
        data=b"\xff" * 8,
        timeout=5,
    )

    assert resp.status_code == 400
    captured = endpoint.requests()
    assert len(captured) == 1
    assert not captured[0].decoded
    assert captured[0].body == b"\xff" * 8
    assert endpoint.done.is_set()


def test_v1_endpoint_sends_no_written_headers(endpoint_factory) -> None:
    """0.1.0 replies carry no written-count headers."""
    endpoint = endpoint_factory(version=ProtocolVersion.V1)
    resp = _post(endpoint, version=ProtocolVersion.V1)

    assert resp.status_code == 204
    assert SAMPLES_WRITTEN_HEADER not in resp.headers
    assert endpoint.requests()[0].message.version is ProtocolVersion.V1


def test_explicit_written_counts_are_reported(endpoint_factory) -> None:
    """Scripted counts win over what was decoded, to fake partial writes."""
    endpoint = endpoint_factory([ScriptedResponse(samples_written=1)])
    resp = _post(endpoint, samples=5)
    assert resp.headers[SAMPLES_WRITTEN_HEADER] == "1"


def test_scripted_headers_are_sent(endpoint_factory) -> None:
    """Headers from the script are sent with the reply."""
    endpoint = endpoint_factory([ScriptedResponse(status_code=429, headers={"Retry-After": "1"})])
    resp = _post(endpoint)
    assert resp.status_code == 429
    assert resp.headers["Retry-After"] == "1"


def test_handle_without_http() -> None:
    """handle() replays the script without a running server."""
    endpoint = ScriptedEndpoint([ScriptedResponse(status_code=503)])
    message = RequestBuilder().add_sample({"__name__": "m"}, 1.0, TS).build()
    headers, body = encode_request(message)

    status, reply_headers, _ = endpoint.handle("POST", "/api/v1/write", dict(headers), body)

    assert status == 503
    assert reply_headers == {}
    assert endpoint.requests()[0].path == "/api/v1/write"


def test_address_before_start_raises() -> None:
    """Asking for the address before start is an error."""
    with pytest.raises(RuntimeError):
        ScriptedEndpoint().address


# ---------------------------------------------------------------------------
# Scrape target
# ---------------------------------------------------------------------------


def test_render_appends_eof() -> None:
    """OpenMetrics output always ends with the EOF marker."""
    ctype, doc = render("test_metric 1")
    assert ctype == OPENMETRICS_CONTENT_TYPE
    assert doc == "test_metric 1\n" + EOF_MARKER


def test_render_keeps_existing_eof() -> None:
    """An existing EOF marker is not duplicated."""
    _, doc = render("a 1\n# EOF\n")
    assert doc.count("# EOF") == 1


def test_render_auto_picks_format() -> None:
    """Auto mode picks OpenMetrics only when exemplars need it."""
    assert render("a 1\n", "auto")[0] == TEXT_CONTENT_TYPE
    assert render('a_total 1 # {trace_id="x"} 1\n', "auto")[0] == OPENMETRICS_CONTENT_TYPE


def test_render_unknown_format() -> None:
    """Unknown exposition formats are refused."""
    with pytest.raises(ValueError):
        render("", "protobuf")


def test_scrape_target_serves_and_counts(scrape_target) -> None:
    """The scrape target serves the document and counts scrapes."""
    resp = requests.get(scrape_target.url, timeout=5)

    assert resp.status_code == 200
    assert resp.headers["Content-Type"] == OPENMETRICS_CONTENT_TYPE
    assert resp.text == "test_metric 1\n# EOF\n"
    assert scrape_target.scrape_count == 1


def test_scrape_target_update_and_text_format() -> None:
    """Updated metrics are served on any path in text format."""
    with ScrapeTarget("a 1\n", ScrapeConfig(exposition_format="text")) as target:
        target.update_metrics("b 2\n")
        resp = requests.get(f"http://{target.host_port}/anything", timeout=5)

    assert resp.headers["Content-Type"] == TEXT_CONTENT_TYPE
    assert resp.text == "b 2\n"


def test_scrape_target_rejects_bad_format() -> None:
    """A bad exposition format fails at construction."""
    with pytest.raises(ValueError):
        ScrapeTarget("", ScrapeConfig(exposition_format="json"))
