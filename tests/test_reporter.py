import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

from triggerci.model import Event, EventKind, JobResult, JobStatus, RunStatus
from triggerci.reporter import HttpSink, JsonFileSink, MemorySink, ReportError, report


PUSH = Event(kind=EventKind.PUSH, branch="main", sha="abc", delivery_id="delivery/1")


def _passed(name):
    return JobResult(job_name=name, status=JobStatus.PASSED)


def test_any_failure_fails_the_run():
    run = report(PUSH, True, [_passed("a"), JobResult(job_name="b", status=JobStatus.FAILED, failing_step_index=1)])
    assert run.status is RunStatus.FAILED
    assert not run.passed


def test_timeout_fails_the_run():
    run = report(PUSH, True, [JobResult(job_name="a", status=JobStatus.TIMED_OUT)])
    assert run.status is RunStatus.FAILED


def test_all_skipped_passes():
    run = report(PUSH, True, [JobResult(job_name=n, status=JobStatus.SKIPPED) for n in ("a", "b")])
    assert run.status is RunStatus.PASSED


def test_cancelled_run():
    run = report(PUSH, True, [_passed("a"), JobResult(job_name="b", status=JobStatus.CANCELLED)])
    assert run.status is RunStatus.CANCELLED


def test_not_admitted_has_no_jobs():
    run = report(PUSH, False, [_passed("a")])
    assert run.job_results == ()
    assert run.status is RunStatus.PASSED
    assert run.to_dict()["admitted"] is False


def test_report_is_pure():
    results = [_passed("a"), JobResult(job_name="b", status=JobStatus.FAILED, failing_step_index=0, reason="boom")]
    assert report(PUSH, True, results) == report(PUSH, True, list(results))


def test_to_dict_shape():
    data = report(PUSH, True, [JobResult(job_name="a", status=JobStatus.FAILED, failing_step_index=2,
                                         failing_step_label="Clippy", duration_s=1.23456)]).to_dict()
    assert data["status"] == "failed"
    assert data["event"]["kind"] == "push"
    assert data["jobs"] == [{
        "job_name": "a",
        "status": "failed",
        "failing_step_index": 2,
        "failing_step_label": "Clippy",
        "reason": None,
        "duration_s": 1.235,
    }]


def test_memory_sink_keeps_latest_per_event():
    sink = MemorySink()
    sink.publish(report(PUSH, True, [JobResult(job_name="a", status=JobStatus.FAILED)]))
    sink.publish(report(PUSH, True, [_passed("a")]))
    assert list(sink.runs) == ["delivery/1"]
    assert sink.runs["delivery/1"].passed


def test_json_file_sink_overwrites(tmp_path):
    sink = JsonFileSink(tmp_path / "results")
    sink.publish(report(PUSH, True, [JobResult(job_name="a", status=JobStatus.FAILED)]))
    sink.publish(report(PUSH, True, [_passed("a")]))

    files = list((tmp_path / "results").iterdir())
    assert [f.name for f in files] == ["delivery_1.json"]
    assert json.loads(files[0].read_text())["status"] == "passed"


class _Recorder(BaseHTTPRequestHandler):
    received = []
    status = 200

    def do_POST(self):
        body = self.rfile.read(int(self.headers["Content-Length"]))
        type(self).received.append((self.path, json.loads(body)))
        self.send_response(type(self).status)
        self.end_headers()
        self.wfile.write(b"{}")

    def log_message(self, format, *args):
        pass


@pytest.fixture
def http_server():
    _Recorder.received = []
    _Recorder.status = 200
    server = HTTPServer(("127.0.0.1", 0), _Recorder)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_port}", _Recorder
    server.shutdown()
    server.server_close()


def test_http_sink_posts_to_event_url(http_server):
    url, recorder = http_server
    HttpSink(url + "/").publish(report(PUSH, True, [_passed("a")]))

    path, body = recorder.received[0]
    assert path == "/results/delivery%2F1"
    assert body["status"] == "passed"


def test_http_sink_error(http_server):
    url, recorder = http_server
    recorder.status = 500
    with pytest.raises(ReportError, match="500"):
        HttpSink(url).publish(report(PUSH, True, [_passed("a")]))


def test_http_sink_unreachable():
    with pytest.raises(ReportError):
        HttpSink("http://127.0.0.1:9", timeout=1).publish(report(PUSH, False, ()))
