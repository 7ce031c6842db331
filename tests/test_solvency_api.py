"""Offline tests for the solvency HTTP surface.

The app runs against SQLite with no network dependency. Ledgers injected by
the fixtures use a manual clock.
"""
from __future__ import annotations

import logging
from dataclasses import replace

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from common.audit import recent_events
from solvency_ledger import LedgerSettings, SolvencyLedger
from solvency_ledger.api import SERVICE_NAME, create_app
from solvency_ledger.db import SqlHistorySink, load_history, make_engine

USD = 10**8
BASE = "/solvency/v1"


@pytest.fixture()
def settings(ledger_id) -> LedgerSettings:
    return LedgerSettings(
        ledger_id=ledger_id,
        owner="owner",
        oracles=("oracle",),
        max_history=10,
        min_interval_sec=60,
        db_url="sqlite://",
    )


@pytest.fixture()
def app(settings, clock):
    engine = make_engine(settings.db_url)
    ledger = SolvencyLedger.from_settings(
        settings, clock=clock, history_sink=SqlHistorySink(engine, settings.ledger_id)
    )
    return create_app(settings, ledger=ledger, engine=engine)


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


def _book(value: int, token: str = "0xa") -> dict:
    return {"tokens": [token], "amounts": [1], "values": [value]}


def _audit_actions(app) -> list:
    with Session(app.state.engine) as session:
        return [e.action for e in recent_events(session, service=SERVICE_NAME)]


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


def test_missing_token_is_401(client):
    r = client.get(f"{BASE}/verify")
    assert r.status_code == 401


def test_unknown_token_is_403(client):
    r = client.get(f"{BASE}/verify", headers={"Authorization": "Bearer nope"})
    assert r.status_code == 403


def test_non_oracle_cannot_update(client, app, auth):
    r = client.post(f"{BASE}/assets", json=_book(100), headers=auth("tester"))
    assert r.status_code == 403
    assert r.json()["detail"] == "unauthorized"
    assert app.state.ledger.get_protocol_assets().entries == ()
    assert _audit_actions(app) == ["UPDATE_REJECTED"]


def test_jwt_principal_is_subject(client):
    token = jwt.encode({"sub": "oracle"}, "testsecret", algorithm="HS256")
    r = client.post(
        f"{BASE}/assets", json=_book(100), headers={"Authorization": f"Bearer {token}"}
    )
    assert r.status_code == 200


def test_jwt_without_subject_is_rejected(client):
    token = jwt.encode({"role": "oracle"}, "testsecret", algorithm="HS256")
    r = client.get(f"{BASE}/verify", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 403


# ---------------------------------------------------------------------------
# Updates and reads
# ---------------------------------------------------------------------------


def test_update_flow(client, app, auth, clock):
    r = client.post(
        f"{BASE}/assets",
        json={
            "tokens": ["0xa", "0xb"],
            "amounts": [10, 20],
            "values": [4_000_000 * USD, 2_500_000 * USD],
        },
        headers=auth("oracle"),
    )
    assert r.status_code == 200
    body = r.json()
    assert body["side"] == "assets"
    assert body["timestamp"] == clock()
    assert body["ratio_bps"] == 20_000
    assert body["recorded"] is True
    assert body["alert"]["kind"] == "SOLVENCY_RESTORED"

    clock.advance(60)
    r = client.post(f"{BASE}/liabilities", json=_book(5_000_000 * USD), headers=auth("oracle"))
    assert r.status_code == 200
    assert r.json()["alert"]["kind"] == "WARNING"

    r = client.get(f"{BASE}/verify", headers=auth("tester"))
    assert r.json() == {"is_solvent": True, "ratio_bps": 13_000}

    r = client.get(f"{BASE}/ratio", headers=auth("tester"))
    assert r.json() == {"ratio_bps": 13_000}

    r = client.get(f"{BASE}/assets", headers=auth("tester"))
    assert r.json() == {
        "tokens": ["0xa", "0xb"],
        "amounts": [10, 20],
        "values": [4_000_000 * USD, 2_500_000 * USD],
        "timestamp": clock() - 60,
    }

    r = client.get(f"{BASE}/status", headers=auth("tester"))
    status = r.json()
    assert status["risk_level"] == "WARNING"
    assert status["total_liabilities"] == 5_000_000 * USD
    assert status["updated_at"] == clock()

    assert _audit_actions(app) == [
        "RISK_ALERT",
        "LIABILITIES_UPDATED",
        "RISK_ALERT",
        "ASSETS_UPDATED",
    ]


def test_audit_failure_does_not_fail_committed_update(client, app, auth, monkeypatch, caplog):
    def _broken_journal(**kwargs):
        raise SQLAlchemyError("journal unavailable")

    monkeypatch.setattr("solvency_ledger.api.log_event", _broken_journal)
    with caplog.at_level(logging.ERROR, logger="solvency_ledger.api"):
        r = client.post(f"{BASE}/assets", json=_book(100), headers=auth("oracle"))

    assert r.status_code == 200
    assert r.json()["ratio_bps"] == 20_000
    assert app.state.ledger.get_protocol_assets().values == (100,)
    assert "audit_write_failed" in [rec.getMessage() for rec in caplog.records]
    assert _audit_actions(app) == []


def test_uint256_values_survive_json(client, auth):
    big = 2**255
    r = client.post(f"{BASE}/assets", json=_book(big), headers=auth("oracle"))
    assert r.status_code == 200
    r = client.get(f"{BASE}/assets", headers=auth("oracle"))
    assert r.json()["values"] == [big]


@pytest.mark.parametrize(
    "payload",
    [
        {"tokens": ["0xa", "0xb"], "amounts": [1], "values": [1, 2]},
        {"tokens": ["0xa", "0xa"], "amounts": [1, 1], "values": [1, 2]},
        {"tokens": ["0xa"], "amounts": [-1], "values": [1]},
        {"tokens": ["0xa", "0xb"], "amounts": [1, 1], "values": [2**256 - 1, 1]},
    ],
)
def test_invalid_snapshot_is_400(client, auth, payload):
    r = client.post(f"{BASE}/assets", json=payload, headers=auth("oracle"))
    assert r.status_code == 400
    assert r.json()["detail"].startswith("invalid_snapshot")


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


def test_history_window_and_info(client, auth, clock):
    t0 = clock()
    for value in (300, 100, 200):
        client.post(f"{BASE}/assets", json=_book(value), headers=auth("oracle"))
        client.post(f"{BASE}/liabilities", json=_book(150, "0xd"), headers=auth("oracle"))
        clock.advance(60)

    r = client.get(f"{BASE}/history", headers=auth("tester"))
    body = r.json()
    assert body["timestamps"] == [t0, t0 + 60, t0 + 120]
    # the liabilities call in the same second was throttled
    assert body["ratios"] == [20_000, 6_666, 13_333]
    assert body["statuses"] == ["HEALTHY", "CRITICAL", "WARNING"]
    assert body["assets"][0]["values"] == [300]

    r = client.get(
        f"{BASE}/history", params={"start": t0 + 60, "end": t0 + 60}, headers=auth("tester")
    )
    assert r.json()["timestamps"] == [t0 + 60]

    r = client.get(
        f"{BASE}/history",
        params={"start": "2023-11-14T22:15:00Z"},  # t0 + 100
        headers=auth("tester"),
    )
    assert r.json()["timestamps"] == [t0 + 120]

    r = client.get(
        f"{BASE}/history", params={"start": t0 + 100, "end": t0}, headers=auth("tester")
    )
    assert r.json()["timestamps"] == []

    r = client.get(f"{BASE}/history/info", headers=auth("tester"))
    assert r.json() == {
        "total_entries": 3,
        "max_entries": 10,
        "oldest_timestamp": t0,
        "newest_timestamp": t0 + 120,
        "min_interval": 60,
    }


def test_history_bad_time_is_400(client, auth):
    r = client.get(f"{BASE}/history", params={"start": "yesterday"}, headers=auth("tester"))
    assert r.status_code == 400
    assert r.json()["detail"].startswith("invalid_time")


# ---------------------------------------------------------------------------
# Oracles and admin
# ---------------------------------------------------------------------------


def test_owner_manages_oracles(client, app, auth):
    r = client.get(f"{BASE}/oracles/tester", headers=auth("tester"))
    assert r.json() == {"principal": "tester", "authorized": False}

    r = client.put(f"{BASE}/oracles/tester", json={"authorized": True}, headers=auth("owner"))
    assert r.status_code == 200
    assert r.json() == {"principal": "tester", "authorized": True}

    r = client.post(f"{BASE}/assets", json=_book(100), headers=auth("tester"))
    assert r.status_code == 200

    r = client.put(f"{BASE}/oracles/tester", json={"authorized": False}, headers=auth("owner"))
    assert r.json()["authorized"] is False
    assert not app.state.ledger.is_oracle("tester")

    actions = _audit_actions(app)
    assert actions[0] == "ORACLE_REVOKED"
    assert "ORACLE_AUTHORIZED" in actions


def test_oracle_cannot_manage_oracles(client, auth):
    r = client.put(f"{BASE}/oracles/tester", json={"authorized": True}, headers=auth("oracle"))
    assert r.status_code == 403


def test_flush_persists_history(client, app, auth, clock, settings):
    client.post(f"{BASE}/assets", json=_book(100), headers=auth("oracle"))
    clock.advance(60)
    client.post(f"{BASE}/liabilities", json=_book(50, "0xd"), headers=auth("oracle"))

    assert client.post(f"{BASE}/admin/flush", headers=auth("oracle")).status_code == 403

    r = client.post(f"{BASE}/admin/flush", headers=auth("owner"))
    assert r.json() == {"written": 2}
    # already stored rows are not written twice
    assert client.post(f"{BASE}/admin/flush", headers=auth("owner")).json() == {"written": 0}

    with Session(app.state.engine) as session:
        rows = load_history(session, settings.ledger_id)
    assert [row.ratio for row in rows] == [20_000, 20_000]
    assert rows[1].liabilities.values == (50,)


def test_shutdown_closes_ledger(app, auth, clock, settings):
    with TestClient(app) as c:
        c.post(f"{BASE}/assets", json=_book(100), headers=auth("oracle"))
        assert c.get("/healthz").json() == {"ok": True, "ledger_id": settings.ledger_id}

    assert app.state.ledger.closed
    with Session(app.state.engine) as session:
        assert len(load_history(session, settings.ledger_id)) == 1


def test_restart_resumes_from_stored_history(settings, auth, tmp_path):
    settings = replace(settings, db_url=f"sqlite:///{tmp_path / 'solvency.db'}")

    first = create_app(settings)
    with TestClient(first) as c:
        r = c.post(f"{BASE}/assets", json=_book(300), headers=auth("oracle"))
        recorded_at = r.json()["timestamp"]
    assert first.state.ledger.closed

    second = create_app(settings)
    with TestClient(second) as c:
        r = c.get(f"{BASE}/history", headers=auth("tester"))
        assert r.json()["timestamps"] == [recorded_at]
        assert r.json()["ratios"] == [20_000]

        r = c.get(f"{BASE}/assets", headers=auth("tester"))
        assert r.json()["values"] == [300]
        assert r.json()["timestamp"] == recorded_at

        r = c.get(f"{BASE}/status", headers=auth("tester"))
        assert r.json()["risk_level"] == "HEALTHY"
        assert r.json()["updated_at"] == recorded_at

    # nothing new was written by the second run
    with Session(second.state.engine) as session:
        assert [e.timestamp for e in load_history(session, settings.ledger_id)] == [recorded_at]


def test_closed_ledger_is_503(app, auth):
    app.state.ledger.close()
    with TestClient(app) as c:
        r = c.post(f"{BASE}/assets", json=_book(100), headers=auth("oracle"))
    assert r.status_code == 503
    assert r.json()["detail"] == "ledger_closed"


def test_metrics_exposed(client, auth, settings):
    client.post(f"{BASE}/assets", json=_book(100), headers=auth("oracle"))
    r = client.get("/metrics/")
    assert r.status_code == 200
    assert f'solvency_ratio_bps{{ledger_id="{settings.ledger_id}"}} 20000.0' in r.text
    assert "solvency_updates_total" in r.text
