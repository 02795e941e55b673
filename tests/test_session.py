"""Tests for session state and persistence."""

import json

from droidgram.autonomy.config import apply_preset
from droidgram.session.manager import AUTONOMY_KEY, Session, SessionManager


class TestSession:
    def test_add_message(self):
        session = Session(key="telegram:1")
        session.add_message("user", "hello", job_id="j1")
        assert session.messages[0]["role"] == "user"
        assert session.messages[0]["job_id"] == "j1"
        assert "timestamp" in session.messages[0]

    def test_default_autonomy(self):
        session = Session(key="telegram:1")
        assert session.get_autonomy("high").level == "high"

    def test_autonomy_roundtrip(self):
        session = Session(key="telegram:1")
        config = apply_preset("low")
        config.exec.allowlist.append("rustc")
        session.set_autonomy(config)
        assert isinstance(session.metadata[AUTONOMY_KEY], str)
        assert session.get_autonomy() == config

    def test_droid_session_id(self):
        session = Session(key="telegram:1")
        assert session.droid_session_id is None
        session.droid_session_id = "abc"
        assert session.droid_session_id == "abc"
        session.droid_session_id = None
        assert "droid_session_id" not in session.metadata

    def test_agent(self):
        session = Session(key="telegram:1")
        session.set_agent("VEGA", "ship the landing page")
        assert session.active_agent == "VEGA"
        assert session.active_mission == "ship the landing page"
        session.set_agent("RIGEL")
        assert session.active_mission is None
        session.set_agent(None)
        assert session.active_agent is None

    def test_clear_keeps_autonomy(self):
        session = Session(key="telegram:1")
        session.set_autonomy(apply_preset("high"))
        session.droid_session_id = "abc"
        session.add_message("user", "hi")
        session.clear()
        assert session.messages == []
        assert session.droid_session_id is None
        assert session.get_autonomy().level == "high"

    def test_clear_without_autonomy(self):
        session = Session(key="telegram:1", metadata={"cwd": "/x"})
        session.clear()
        assert session.metadata == {}


class TestSessionManager:
    def test_create_is_cached(self, tmp_path):
        manager = SessionManager(tmp_path)
        assert manager.get_or_create("telegram:1") is manager.get_or_create("telegram:1")

    def test_save_and_load(self, tmp_path):
        manager = SessionManager(tmp_path)
        session = manager.get_or_create("telegram:42")
        session.droid_session_id = "droid-1"
        session.add_message("user", "deploy it")
        manager.save(session)

        reloaded = SessionManager(tmp_path).get_or_create("telegram:42")
        assert reloaded.droid_session_id == "droid-1"
        assert reloaded.messages[0]["content"] == "deploy it"
        assert reloaded.created_at == session.created_at

    def test_file_layout(self, tmp_path):
        manager = SessionManager(tmp_path)
        manager.save(manager.get_or_create("telegram:42"))
        path = tmp_path / "telegram_42.jsonl"
        first = json.loads(path.read_text().splitlines()[0])
        assert first["_type"] == "metadata"
        assert not list(tmp_path.glob("*.tmp.*"))

    def test_corrupt_lines_skipped(self, tmp_path):
        path = tmp_path / "telegram_7.jsonl"
        path.write_text(
            json.dumps({"_type": "metadata", "metadata": {"droid_session_id": "x"}}) + "\n"
            "{not json\n"
            + json.dumps({"role": "user", "content": "ok"}) + "\n"
        )
        session = SessionManager(tmp_path).get_or_create("telegram:7")
        assert session.droid_session_id == "x"
        assert len(session.messages) == 1

    def test_delete(self, tmp_path):
        manager = SessionManager(tmp_path)
        manager.save(manager.get_or_create("telegram:1"))
        assert manager.delete("telegram:1")
        assert not manager.delete("telegram:1")
        assert manager.get_or_create("telegram:1").messages == []

    def test_list_sessions(self, tmp_path):
        manager = SessionManager(tmp_path)
        for key in ("telegram:1", "telegram:2"):
            manager.save(manager.get_or_create(key))
        (tmp_path / "junk.jsonl").write_text("garbage\n")

        keys = {s["key"] for s in manager.list_sessions()}
        assert keys == {"telegram:1", "telegram:2"}
