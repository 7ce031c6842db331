import itertools
import threading

from solvency_ledger import SolvencyLedger, compute_ratio

WRITERS = 4
UPDATES_PER_WRITER = 50


def test_concurrent_updates_are_serialised(ledger_id):
    ticks = itertools.count(1_700_000_000)
    ledger = SolvencyLedger(
        "owner",
        oracles=("oracle",),
        max_entries=1_000,
        min_interval=0,
        clock=lambda: next(ticks),
        ledger_id=ledger_id,
    )
    errors = []
    stop = threading.Event()

    def writer(n: int) -> None:
        try:
            for i in range(UPDATES_PER_WRITER):
                value = 1_000 + n * 100 + i
                if n % 2:
                    ledger.update_liabilities("oracle", [f"0x{n}"], [1], [value])
                else:
                    # two tokens whose values always sum to 2 * value
                    ledger.update_assets("oracle", ["0xa", "0xb"], [1, 1], [value, value])
        except Exception as exc:  # pragma: no cover - surfaced below
            errors.append(exc)

    def reader() -> None:
        while not stop.is_set():
            status = ledger.get_status()
            if status.ratio_bps != compute_ratio(status.total_assets, status.total_liabilities):
                errors.append(AssertionError(f"torn read: {status}"))
            assets = ledger.get_protocol_assets()
            if assets.entries and assets.values[0] != assets.values[1]:
                errors.append(AssertionError(f"partial asset book: {assets}"))

    readers = [threading.Thread(target=reader) for _ in range(2)]
    writers = [threading.Thread(target=writer, args=(n,)) for n in range(WRITERS)]
    for t in readers + writers:
        t.start()
    for t in writers:
        t.join()
    stop.set()
    for t in readers:
        t.join()

    assert errors == []

    entries = ledger.history_entries()
    assert len(entries) == WRITERS * UPDATES_PER_WRITER
    timestamps = [e.timestamp for e in entries]
    assert timestamps == sorted(timestamps)
    assert len(set(timestamps)) == len(timestamps)
    for entry in entries:
        assert entry.ratio == compute_ratio(
            entry.assets.total_value, entry.liabilities.total_value
        )
