from tagsync.core.event_logger import EventLogger
from tagsync.core.events import EventReporter, NotificationHub
from tagsync.models.data_item import DataItem, ResultCode


def _reporter():
    hub = NotificationHub()
    return hub, EventReporter(hub)


def test_records_errors_and_logs():
    hub, reporter = _reporter()
    recorder = EventLogger()
    recorder.attach(hub)

    reporter.log("Connected to server")
    reporter.error(ResultCode.SERVER_SHUTDOWN, "Server shutdown: bye")
    reporter.data_changed(ResultCode.OK, DataItem("T1", 1000))

    history = recorder.get_history()
    assert [e['level'] for e in history] == ["INFO", "ERROR"]
    assert history[1]['message'] == "[SERVER_SHUTDOWN] Server shutdown: bye"


def test_records_data_when_asked():
    hub, reporter = _reporter()
    recorder = EventLogger(record_data=True)
    recorder.attach(hub)

    item = DataItem("T1", 1000, new_value=5)
    reporter.data_changed(ResultCode.OK, item)

    entry, = recorder.get_history()
    assert entry['level'] == "DATA"
    assert entry['source'] == "T1"


def test_history_is_bounded():
    recorder = EventLogger(max_history=3)
    for i in range(5):
        recorder.log("INFO", "test", f"message {i}")
    assert [e['message'] for e in recorder.get_history()] == ["message 2", "message 3", "message 4"]


def test_detach_stops_recording():
    hub, reporter = _reporter()
    recorder = EventLogger()
    recorder.attach(hub)
    recorder.detach()

    reporter.log("ignored")

    assert recorder.get_history() == []
    assert hub.listener_count("log") == 0


def test_save_and_load(tmp_path):
    path = str(tmp_path / "events.json")
    recorder = EventLogger()
    recorder.log("ERROR", "session", "link down")
    recorder.save_to_file(path)

    restored = EventLogger()
    restored.load_from_file(path)

    assert restored.get_history() == recorder.get_history()


def test_load_missing_file_keeps_history(tmp_path):
    recorder = EventLogger()
    recorder.log("INFO", "session", "kept")
    recorder.load_from_file(str(tmp_path / "missing.json"))
    assert len(recorder.get_history()) == 1
