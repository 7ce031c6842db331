import uuid

import pytest

from common import secrets as secrets_module
from solvency_ledger import SolvencyLedger
from solvency_sim.clock import ManualClock

OWNER = "owner"
ORACLE = "oracle"

# principal -> bearer token
TOKENS = {
    "owner": "ownertoken",
    "oracle": "oracletoken",
    "tester": "testtoken",
}


# ---------------------------------------------------------------------------
# Default auth tokens for API tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _secrets() -> None:
    """Provide default secrets for tests via the secrets manager."""

    secrets_module.secrets.set_override(
        {"API_TOKENS": TOKENS, "JWT_SECRET": "testsecret"}
    )
    yield
    secrets_module.secrets.reset()


@pytest.fixture()
def auth():
    """Return Authorization headers for a known principal."""

    def _auth(principal: str) -> dict:
        return {"Authorization": f"Bearer {TOKENS[principal]}"}

    return _auth


# ---------------------------------------------------------------------------
# Ledger fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(start=1_700_000_000)


@pytest.fixture()
def ledger_id() -> str:
    # unique per test so Prometheus samples do not bleed between tests
    return f"test-{uuid.uuid4().hex[:8]}"


@pytest.fixture()
def make_ledger(clock, ledger_id):
    def _make(**kwargs) -> SolvencyLedger:
        kwargs.setdefault("oracles", (ORACLE,))
        kwargs.setdefault("max_entries", 5)
        kwargs.setdefault("min_interval", 60)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("ledger_id", ledger_id)
        return SolvencyLedger(OWNER, **kwargs)

    return _make


@pytest.fixture()
def ledger(make_ledger) -> SolvencyLedger:
    return make_ledger()
