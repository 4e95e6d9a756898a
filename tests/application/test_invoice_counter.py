from __future__ import annotations

import asyncio

from pos_offline.application.invoice_counter import COUNTER_DOCUMENT, COUNTER_KEY, InvoiceCounter
from pos_offline.infrastructure.connectivity import ManualConnectivity


def test_next_number_is_local_and_monotonic(kv_store, remote) -> None:
    counter = InvoiceCounter(kv_store, remote, ManualConnectivity(False))

    assert [counter.next_number() for _ in range(3)] == [1, 2, 3]
    assert kv_store.get(COUNTER_KEY) == 3
    assert remote.calls == []


def test_next_number_mirrors_remote_in_background(kv_store, remote) -> None:
    counter = InvoiceCounter(kv_store, remote, ManualConnectivity(True))

    async def scenario() -> int:
        number = counter.next_number()
        await counter.drain()
        return number

    number = asyncio.run(scenario())

    assert number == 1
    assert remote.documents("counters") == [{"lastInvoiceNumber": 1, "id": COUNTER_DOCUMENT}]


def test_background_mirror_failure_does_not_break_numbering(kv_store, remote) -> None:
    connectivity = ManualConnectivity(True)
    remote.go_offline()
    counter = InvoiceCounter(kv_store, remote, connectivity)

    async def scenario() -> list[int]:
        numbers = [counter.next_number(), counter.next_number()]
        await counter.drain()
        return numbers

    assert asyncio.run(scenario()) == [1, 2]


def test_reseed_only_when_local_counter_is_missing(kv_store, remote) -> None:
    remote.seed("counters", COUNTER_DOCUMENT, {"lastInvoiceNumber": 120})
    counter = InvoiceCounter(kv_store, remote, ManualConnectivity(True))

    assert asyncio.run(counter.reseed_from_remote()) == 120
    assert counter.next_number() == 121

    remote.seed("counters", COUNTER_DOCUMENT, {"lastInvoiceNumber": 5})
    assert asyncio.run(counter.reseed_from_remote()) == 121
