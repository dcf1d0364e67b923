import pytest
import requests
from unittest.mock import MagicMock
from vtp.domain.models import UploadOutcome
from vtp.producer.backoff import BackoffSchedule
from vtp.producer.upload_client import FolderSummary, UploadClient, multipart_body

def _response(status_code, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    if payload is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    response.text = text
    return response

QUEUED = _response(200, {"status": "queued"})
FULL = _response(503, {"status": "queue_full"})

@pytest.fixture
def folder(tmp_path):
    d = tmp_path / "folder1"
    d.mkdir()
    (d / "a.mp4").write_bytes(b"aaaa")
    return d

def _client(folder, config, responses, sleeps):
    session = MagicMock()
    session.post.side_effect = responses
    client = UploadClient(folder, "http://consumer:8080/", config, session=session, sleep=sleeps.append)
    return client, session

def test_multipart_body_streams_file(tmp_path):
    f = tmp_path / 'clip "1".mp4'
    f.write_bytes(b"x" * 10)
    chunks = list(multipart_body(f, "BOUNDARY", chunk_size=4))
    body = b"".join(chunks)

    assert len(chunks) == 1 + 3 + 1
    assert body.startswith(b"--BOUNDARY\r\n")
    assert b'name="file"; filename="clip %221%22.mp4"' in body
    assert b"\r\n\r\n" + b"x" * 10 + b"\r\n--BOUNDARY--\r\n" in body

def test_accepted_on_first_try(folder, producer_config):
    sleeps = []
    client, session = _client(folder, producer_config, [QUEUED], sleeps)

    assert client.upload_file(folder / "a.mp4") == UploadOutcome.ACCEPTED
    assert sleeps == []
    args, kwargs = session.post.call_args
    assert args[0] == "http://consumer:8080/upload"
    assert kwargs["headers"]["Content-Type"].startswith("multipart/form-data; boundary=")
    assert kwargs["timeout"] == (5.0, 120.0)

def test_backpressure_retries_same_file_with_growing_delays(folder, producer_config):
    producer_config.max_retries = 10
    sleeps = []
    client, session = _client(folder, producer_config, [FULL, FULL, FULL, QUEUED], sleeps)

    assert client.upload_file(folder / "a.mp4") == UploadOutcome.ACCEPTED
    assert session.post.call_count == 4
    assert sleeps == [1.0, 2.0, 4.0]

def test_backpressure_with_jitter_stays_in_bounds(folder, producer_config):
    producer_config.max_retries = 10
    sleeps = []
    client, _ = _client(folder, producer_config, [FULL, FULL, FULL, QUEUED], sleeps)
    client.backoff = BackoffSchedule(1000, 30000, jitter_ms=1000)

    client.upload_file(folder / "a.mp4")

    assert sleeps[0] == 1.0
    assert 2.0 <= sleeps[1] < 3.0
    assert 4.0 <= sleeps[2] < 5.0

def test_abandon_after_max_retries(folder, producer_config):
    sleeps = []
    client, session = _client(folder, producer_config, [FULL] * 10, sleeps)

    assert client.upload_file(folder / "a.mp4") == UploadOutcome.ABANDONED
    assert session.post.call_count == producer_config.max_retries
    assert len(sleeps) == producer_config.max_retries - 1

def test_backoff_resets_between_files(folder, producer_config):
    (folder / "b.mp4").write_bytes(b"bbbb")
    sleeps = []
    client, _ = _client(folder, producer_config, [FULL, QUEUED, FULL, QUEUED], sleeps)

    summary = client.run()

    assert summary.accepted == 2
    assert sleeps == [1.0, 1.0]

@pytest.mark.parametrize("response", [
    _response(500, text="Internal Server Error"),
    _response(400, {"detail": "bad"}),
    _response(200, None, text="<html>"),
    _response(200, ["not", "a", "dict"]),
    _response(200, {"status": "weird"}),
])
def test_other_failures_are_terminal(folder, producer_config, response):
    sleeps = []
    client, session = _client(folder, producer_config, [response, QUEUED], sleeps)

    assert client.upload_file(folder / "a.mp4") == UploadOutcome.FAILED
    assert session.post.call_count == 1
    assert sleeps == []

def test_transport_error_is_terminal(folder, producer_config):
    sleeps = []
    client, _ = _client(folder, producer_config, [requests.ConnectionError("refused")], sleeps)
    assert client.upload_file(folder / "a.mp4") == UploadOutcome.FAILED

@pytest.mark.parametrize("status", ["already_exists", "skipped_duplicate"])
def test_duplicate_statuses(folder, producer_config, status):
    client, _ = _client(folder, producer_config, [_response(200, {"status": status})], [])
    assert client.upload_file(folder / "a.mp4") == UploadOutcome.DUPLICATE

def test_run_continues_after_failures(folder, producer_config):
    (folder / "b.mp4").write_bytes(b"bbbb")
    (folder / "c.mp4").write_bytes(b"cccc")
    (folder / "skip.txt").write_text("ignored")
    responses = [_response(500), _response(200, {"status": "already_exists"}), QUEUED]
    client, session = _client(folder, producer_config, responses, [])

    summary = client.run()

    assert session.post.call_count == 3
    assert (summary.accepted, summary.duplicate, summary.failed, summary.abandoned) == (1, 1, 1, 0)
    assert summary.total == 3

def test_run_empty_folder(tmp_path, producer_config):
    client, session = _client(tmp_path, producer_config, [], [])
    assert client.run().total == 0
    assert not session.post.called

def test_stop_event_abandons_during_backoff(folder, producer_config):
    client, session = _client(folder, producer_config, [FULL, QUEUED], [])
    client._sleep = lambda seconds: client.stop_event.set()

    assert client.upload_file(folder / "a.mp4") == UploadOutcome.ABANDONED
    assert session.post.call_count == 1

def test_folder_summary_record(tmp_path):
    summary = FolderSummary(folder=tmp_path)
    for outcome in (UploadOutcome.ACCEPTED, UploadOutcome.DUPLICATE, UploadOutcome.FAILED, UploadOutcome.ABANDONED):
        summary.record(outcome)
    assert summary.total == 4
