"""
Tests for the persistence mirror

Tests cover:
- Events emitted by economy operations (via a recording sink)
- Outbox drop-on-full and failure isolation
- Background worker draining
- SQLite sink writes
- HTTP sink request bodies (httpx.MockTransport)
"""

import json
import sqlite3

import db_writer
import httpx
import pytest
from config import MirrorConfig
from economy import CommunityEconomy
from mirror import HttpMirrorSink, MirrorOutbox, MirrorSink, SqliteMirrorSink, build_mirror
from scenario import build_initial_households, build_initial_tasks


class RecordingSink(MirrorSink):
    """Collects every mirror call as (operation, kwargs)."""

    def __init__(self):
        self.events = []
        self.closed = False

    def _record(self, operation, **kwargs):
        self.events.append((operation, kwargs))

    def mirror_households(self, households):
        self._record("mirror_households", households=households)

    def record_bid(self, task_id, household_id, amount, allocation_score, task_meta, equity_override):
        self._record("record_bid", task_id=task_id, household_id=household_id, amount=amount,
                     allocation_score=allocation_score, task_meta=task_meta, equity_override=equity_override)

    def record_transfer(self, from_id, to_id, amount, ai_suggested, from_name=None, to_name=None):
        self._record("record_transfer", from_id=from_id, to_id=to_id, amount=amount, ai_suggested=ai_suggested)

    def record_log(self, log_type, message, household_id=None):
        self._record("record_log", log_type=log_type, message=message, household_id=household_id)

    def record_trend_point(self, cycle, poverty_rate, extreme_poverty_count, resilience_score, avg_poverty_index):
        self._record("record_trend_point", cycle=cycle, poverty_rate=poverty_rate)

    def record_shock(self, household_id, credit_loss, new_credits, new_shock_risk, new_poverty_index):
        self._record("record_shock", household_id=household_id, credit_loss=credit_loss, new_credits=new_credits)

    def record_tokenization(self, household_id, hours, credits_earned, new_credits, new_labor_hours,
                            new_poverty_index, new_credit_deficit):
        self._record("record_tokenization", household_id=household_id, hours=hours, new_credits=new_credits)

    def close(self):
        self.closed = True

    def operations(self):
        return [op for op, _ in self.events]


class FailingSink(RecordingSink):
    def record_log(self, log_type, message, household_id=None):
        raise sqlite3.OperationalError("database is locked")


@pytest.fixture
def recorded():
    sink = RecordingSink()
    outbox = MirrorOutbox(sink)
    economy = CommunityEconomy(build_initial_households(), tasks=build_initial_tasks(), mirror=outbox, seed=11)
    outbox.flush()
    sink.events.clear()
    return economy, outbox, sink


class TestEconomyEvents:
    """Test suite for the events each operation emits"""

    def test_construction_mirrors_population(self):
        sink = RecordingSink()
        outbox = MirrorOutbox(sink)
        CommunityEconomy(build_initial_households(), mirror=outbox)
        outbox.flush()

        assert sink.operations() == ["record_log", "record_log", "mirror_households"]
        assert len(sink.events[2][1]["households"]) == 5

    def test_emit_does_not_call_sink(self, recorded):
        """Nothing reaches the sink until the outbox is drained"""
        economy, outbox, sink = recorded
        economy.transfer_credits("h2", "h4", 10)

        assert sink.events == []
        assert outbox.pending > 0

    def test_transfer_events(self, recorded):
        economy, outbox, sink = recorded
        economy.transfer_credits("h2", "h4", 10)
        outbox.flush()

        ops = sink.operations()
        assert "record_transfer" in ops
        assert "mirror_households" in ops
        transfer = dict(sink.events)["record_transfer"]
        assert transfer == {"from_id": "h2", "to_id": "h4", "amount": 10, "ai_suggested": False}

    def test_tokenize_event(self, recorded):
        economy, outbox, sink = recorded
        economy.tokenize_labor("h5", 2)
        outbox.flush()

        event = dict(sink.events)["record_tokenization"]
        assert event == {"household_id": "h5", "hours": 2, "new_credits": 35}

    def test_bid_event(self, recorded):
        economy, outbox, sink = recorded
        economy.submit_bid("t2", "h3", 10)
        outbox.flush()

        event = dict(sink.events)["record_bid"]
        assert event["equity_override"] is True
        assert event["task_meta"]["title"] == "Mobile Health Camp Support"
        assert event["task_meta"]["household_name"] == "Meena Devi"

    def test_shock_event(self, recorded):
        economy, outbox, sink = recorded
        target = economy.simulate_shock()
        outbox.flush()

        event = dict(sink.events)["record_shock"]
        assert event["household_id"] == target.household_id
        assert event["new_credits"] >= 60

    def test_cycle_events(self, recorded):
        economy, outbox, sink = recorded
        economy.run_cycle()
        outbox.flush()

        ops = sink.operations()
        assert "mirror_households" in ops
        assert dict(sink.events)["record_trend_point"]["cycle"] == 1
        assert ops[-1] == "record_log"

    def test_rejected_operation_emits_nothing(self, recorded):
        economy, outbox, sink = recorded
        economy.transfer_credits("h5", "h2", 10_000)
        outbox.flush()
        assert sink.events == []


class TestMirrorOutbox:
    """Test suite for outbox delivery guarantees"""

    def test_full_outbox_drops(self):
        outbox = MirrorOutbox(RecordingSink(), capacity=2)
        for i in range(5):
            outbox.emit("record_log", log_type="info", message=str(i))

        assert outbox.dropped == 3
        assert outbox.pending == 2

    def test_unknown_operation(self):
        outbox = MirrorOutbox(RecordingSink())
        with pytest.raises(ValueError, match="unknown mirror operation"):
            outbox.emit("drop_tables")

    def test_sink_failure_is_swallowed(self):
        sink = FailingSink()
        outbox = MirrorOutbox(sink)
        economy = CommunityEconomy(build_initial_households(), mirror=outbox)
        economy.transfer_credits("h2", "h4", 10)

        assert outbox.flush()
        assert outbox.failed > 0
        assert "record_transfer" in sink.operations()
        assert economy.get_household("h4").credits == 95

    def test_worker_drains_in_background(self):
        sink = RecordingSink()
        outbox = MirrorOutbox(sink)
        outbox.start()
        try:
            assert outbox.is_running
            outbox.emit("record_log", log_type="info", message="hello")
            assert outbox.flush(timeout=5.0)
            assert sink.events == [("record_log", {"log_type": "info", "message": "hello", "household_id": None})]
        finally:
            outbox.stop()

        assert not outbox.is_running
        assert sink.closed

    def test_build_mirror_none(self):
        assert build_mirror(MirrorConfig(backend="none")) is None


class TestSqliteMirrorSink:
    """Test suite for the SQLite mirror"""

    def test_economy_round_trip(self, tmp_path):
        db_path = str(tmp_path / "mirror.db")
        outbox = build_mirror(MirrorConfig(backend="sqlite", db_path=db_path))
        economy = CommunityEconomy(build_initial_households(), tasks=build_initial_tasks(), mirror=outbox, seed=2)
        economy.submit_bid("t2", "h3", 10)
        economy.transfer_credits("h2", "h4", 10)
        economy.run_cycle()
        assert outbox.flush()

        conn = sqlite3.connect(db_path)
        try:
            assert conn.execute("SELECT COUNT(*) FROM households").fetchone()[0] == 5
            assert conn.execute("SELECT status, allocated FROM tasks WHERE id = 't2'").fetchone() == ("allocated", "h3")
            assert conn.execute("SELECT from_id, to_id, amount FROM transfers").fetchall() == [("h2", "h4", 10.0)]
            assert conn.execute("SELECT cycle FROM trend_points").fetchall() == [(1,)]
            assert conn.execute("SELECT COUNT(*) FROM system_logs").fetchone()[0] == len(economy.system_logs)
            credits = dict(conn.execute("SELECT id, credits FROM households").fetchall())
        finally:
            conn.close()

        for h in economy.households:
            assert abs(credits[h.household_id] - h.credits) < 1e-9

    def test_transfer_creates_stub_households(self, tmp_path):
        db_path = str(tmp_path / "stub.db")
        sink = SqliteMirrorSink(db_path)
        sink.record_transfer("x1", "x2", 5, True, "Donor", None)

        conn = sqlite3.connect(db_path)
        try:
            rows = dict(conn.execute("SELECT id, credits FROM households").fetchall())
        finally:
            conn.close()
        assert rows == {"x1": 95.0, "x2": 105.0}

    def test_failed_write_closes_connection(self, tmp_path, monkeypatch):
        opened = []
        real_connect = sqlite3.connect

        class TrackedConnection:
            def __init__(self, path):
                self.conn = real_connect(path)
                self.closed = False
                opened.append(self)

            def cursor(self):
                return self.conn.cursor()

            def commit(self):
                self.conn.commit()

            def close(self):
                self.closed = True
                self.conn.close()

        monkeypatch.setattr(db_writer.sqlite3, "connect", TrackedConnection)

        # no schema, so the insert fails
        with pytest.raises(sqlite3.OperationalError):
            db_writer.log_system_event(str(tmp_path / "bare.db"), "info", "lost")
        with pytest.raises(sqlite3.OperationalError):
            db_writer.log_transfer(str(tmp_path / "bare.db"), "a", "b", 5, False)

        assert len(opened) == 2
        assert all(conn.closed for conn in opened)


class TestHttpMirrorSink:
    """Test suite for the HTTP mirror"""

    def test_posts_camel_case_bodies(self):
        requests = []

        def handler(request):
            requests.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"ok": True})

        client = httpx.Client(transport=httpx.MockTransport(handler))
        sink = HttpMirrorSink("http://mirror.test/api/", client=client)
        sink.record_transfer("h2", "h5", 24, True, "Rajan Kumar", "Fatima Begum")
        sink.record_log("info", "hello")

        assert requests[0] == ("/api/transfers", {
            "fromId": "h2", "toId": "h5", "amount": 24, "aiSuggested": True,
            "fromName": "Rajan Kumar", "toName": "Fatima Begum",
        })
        assert requests[1] == ("/api/logs", {"type": "info", "message": "hello"})

    def test_server_error_counts_as_failure(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
        outbox = MirrorOutbox(HttpMirrorSink("http://mirror.test/api", client=client))
        outbox.emit("record_log", log_type="info", message="x")

        assert outbox.flush()
        assert outbox.failed == 1
