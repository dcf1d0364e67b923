import threading
from unittest.mock import MagicMock, patch
from vtp.producer.runner import run_producers, source_folders
from vtp.producer.upload_client import FolderSummary

def _queued_session():
    session = MagicMock()
    response = MagicMock()
    response.status_code = 200
    response.json.return_value = {"status": "queued"}
    session.post.return_value = response
    return session

def test_source_folders_skips_missing(source_root):
    folders = source_folders(source_root, "folder", 3)
    assert [f.name for f in folders] == ["folder1", "folder2"]

def test_run_producers_one_client_per_folder(source_root, producer_config):
    sessions = []

    def factory():
        s = _queued_session()
        sessions.append(s)
        return s

    summaries = run_producers(producer_config, source_root, "http://localhost:8080", session_factory=factory)

    assert [s.folder.name for s in summaries] == ["folder1", "folder2"]
    assert [s.accepted for s in summaries] == [2, 2]
    # Sessions are never shared between folders
    assert len(sessions) == 2
    assert all(s.post.call_count == 2 for s in sessions)

def test_run_producers_no_folders(tmp_path, producer_config):
    assert run_producers(producer_config, tmp_path, "http://localhost:8080") == []

def test_run_producers_contains_client_crash(source_root, producer_config):
    def crash(self):
        if self.folder.name == "folder1":
            raise RuntimeError("boom")
        return FolderSummary(folder=self.folder, accepted=1)

    with patch("vtp.producer.upload_client.UploadClient.run", crash):
        summaries = run_producers(producer_config, source_root, "http://x", session_factory=MagicMock)

    assert [(s.folder.name, s.total) for s in summaries] == [("folder1", 0), ("folder2", 1)]

def test_run_producers_honours_stop_event(source_root, producer_config):
    stop = threading.Event()
    stop.set()
    session = _queued_session()
    summaries = run_producers(producer_config, source_root, "http://x", stop_event=stop, session_factory=lambda: session)
    assert all(s.total == 0 for s in summaries)
    assert not session.post.called
