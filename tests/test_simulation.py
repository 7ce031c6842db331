import json
import logging

import pytest

from solvency_ledger import SolvencyLedger
from solvency_sim import (ManualClock, MockPriceFeed, apply_market_crash,
                          run_market_crash, run_volatility_walk)
from solvency_sim.cli import main
from solvency_sim.price_feed import usd

ORACLE = "oracle"


@pytest.fixture(autouse=True)
def _restore_root_logger():
    # the CLI installs a stderr handler on the root logger
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture()
def feed():
    return MockPriceFeed()


@pytest.fixture()
def sim_ledger(clock, ledger_id):
    return SolvencyLedger(
        "owner", oracles=(ORACLE,), clock=clock, ledger_id=ledger_id
    )


def test_price_feed_values(feed):
    # 1 WETH (18 decimals) at $2000
    assert feed.value_of("WETH", 10**18) == usd(2_000)
    # 1 USDC (6 decimals) at $1
    assert feed.value_of("USDC", 10**6) == usd(1)

    tokens, amounts, values = feed.book((("WBTC", 2), ("USDC", 5)))
    assert tokens == [feed.address("WBTC"), feed.address("USDC")]
    assert amounts == [2 * 10**18, 5 * 10**6]
    assert values == [usd(70_000), usd(5)]


def test_price_feed_set_and_reset(feed):
    feed.set_price("WETH", usd(1_500))
    assert feed.get_price("WETH") == usd(1_500)
    with pytest.raises(ValueError):
        feed.set_price("WETH", -1)
    with pytest.raises(KeyError):
        feed.get_price("DOGE")
    feed.reset()
    assert feed.get_price("WETH") == usd(2_000)


def test_market_crash_prices(feed):
    apply_market_crash(feed)
    assert feed.get_price("WETH") == usd(1_000)
    assert feed.get_price("WBTC") == usd(21_000)
    assert feed.get_price("LP1") == usd(500)
    assert feed.get_price("PROT") == usd(1)


def test_manual_clock():
    clock = ManualClock(start=10)
    assert clock() == 10
    assert clock.advance(5) == 15
    with pytest.raises(ValueError):
        clock.advance(-1)
    clock.set(3)
    assert clock() == 3


def test_run_market_crash(sim_ledger, feed):
    summary = run_market_crash(sim_ledger, ORACLE, feed)

    assert summary["before"] == {"is_solvent": True, "ratio_bps": 20_000}
    assert summary["after"] == {"is_solvent": False, "ratio_bps": 3}
    assert summary["crash_alert"]["kind"] == "CRITICAL_SOLVENCY"
    assert summary["crash_alert"]["threshold"] == 10_500
    assert [a["kind"] for a in summary["alerts"]] == ["SOLVENCY_RESTORED", "CRITICAL_SOLVENCY"]


def test_volatility_walk_records_hourly_points(sim_ledger, feed, clock):
    summary = run_volatility_walk(sim_ledger, ORACLE, feed, clock, steps=5, spacing=3600)

    assert summary["record_count"] == 5
    assert summary["ratios"] == [20_000, 21_600, 21_800, 20_200, 18_400]
    assert summary["timestamps"] == [summary["start"] + 1 + 3600 * i for i in range(5)]
    assert all(p["recorded"] for p in summary["points"])


def test_volatility_walk_throttled_when_spacing_too_short(sim_ledger, feed, clock):
    summary = run_volatility_walk(sim_ledger, ORACLE, feed, clock, steps=7, spacing=600)
    # only the point a full hour after the seed survives the rate limit
    assert summary["record_count"] == 1
    assert [p["recorded"] for p in summary["points"]] == [False] * 5 + [True, False]


def test_cli_crash(capsys):
    assert main(["crash"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["after"]["ratio_bps"] == 3
    assert out["history_info"]["max_entries"] == 8760


def test_cli_volatility(capsys):
    assert main(["volatility", "--steps", "3", "--spacing", "3600"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["record_count"] == 3
    assert out["ratios"] == [20_000, 21_600, 21_800]
