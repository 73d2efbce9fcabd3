import threading

from bmn_indexer.state_machine import SwapStatus

from .fixtures import BASE, ETHERLINK, dst_created, src_created

PAIRS = 50


def _order_hash(i):
    return "0x" + format(i, "064x")


def _hashlock(i):
    return "0x" + format(i + 1000, "064x")


def _run_in_parallel(*streams):
    barrier = threading.Barrier(len(streams))
    errors = []

    def worker(handle, events):
        barrier.wait()
        try:
            for event in events:
                handle(event)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=stream) for stream in streams]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    assert not any(t.is_alive() for t in threads)
    assert errors == []


def test_both_chains_indexed_from_separate_threads(indexer):
    sources = [src_created(order_hash=_order_hash(i), hashlock=_hashlock(i), block=100 + i, tx=i) for i in range(PAIRS)]
    destinations = [
        dst_created(hashlock=_hashlock(i), escrow="0x" + format(i + 1, "040x"), block=500 + i, tx=PAIRS + i)
        for i in range(PAIRS)
    ]

    _run_in_parallel((indexer.handle, sources), (indexer.handle, destinations))

    swaps = indexer.db.rows("atomic_swap")
    assert len(swaps) == PAIRS
    for i in range(PAIRS):
        swap = indexer.db.find_swap_by_hashlock(_hashlock(i))
        assert swap.id == _order_hash(i)
        assert swap.status is SwapStatus.BOTH_CREATED
        assert swap.dst_escrow_address == "0x" + format(i + 1, "040x")

    assert indexer.stats.get(BASE).total_src_escrows == indexer.db.count("src_escrow") == PAIRS
    assert indexer.stats.get(ETHERLINK).total_dst_escrows == indexer.db.count("dst_escrow") == PAIRS
    assert indexer.stats.get(BASE).total_volume_locked == 100 * PAIRS
    assert indexer.stats.get(ETHERLINK).last_updated_block == 500 + PAIRS - 1
