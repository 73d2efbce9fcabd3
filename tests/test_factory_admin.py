from bmn_indexer.events import (
    AdminAdded,
    AdminRemoved,
    EmergencyPause,
    InteractionExecuted,
    InteractionFailed,
    MetricsUpdated,
    ResolverAdded,
    ResolverReactivated,
    ResolverRemoved,
    ResolverSuspended,
    ResolverWhitelisted,
    SwapCompleted,
    SwapInitiated,
)
from bmn_indexer.state_machine import SwapStatus

from .fixtures import (
    BASE,
    DEPLOYED_AT,
    ETHERLINK,
    FACTORY,
    MAKER,
    ORDER_HASH,
    cancellation,
    dst_created,
    src_created,
    src_escrow_address,
    tx_hash,
)

RESOLVER = "0x" + "44" * 20
OWNER = "0x" + "55" * 20
KEY = f"{BASE}-{RESOLVER}"
ADMIN = "0x" + "66" * 20
TARGET = "0x" + "77" * 20


def _position(block, tx=None):
    return dict(
        chain_id=BASE,
        address=FACTORY,
        block_number=block,
        block_timestamp=DEPLOYED_AT + block,
        transaction_hash=tx_hash(tx if tx is not None else block),
    )


def test_resolver_lifecycle(indexer):
    assert indexer.handle(ResolverAdded(resolver=RESOLVER, added_by=OWNER, **_position(10)))
    resolver = indexer.db.get("resolver", KEY)
    assert resolver.is_whitelisted and resolver.is_active
    assert resolver.added_by == OWNER
    assert resolver.added_at == DEPLOYED_AT + 10

    assert indexer.handle(ResolverSuspended(resolver=RESOLVER, until=DEPLOYED_AT + 500, reason="late", **_position(20)))
    resolver = indexer.db.get("resolver", KEY)
    assert not resolver.is_active
    assert resolver.suspended_until == DEPLOYED_AT + 500
    suspension = indexer.db.get("resolver_suspension", f"{KEY}-20")
    assert suspension.reason == "late"

    assert indexer.handle(ResolverReactivated(resolver=RESOLVER, **_position(30)))
    resolver = indexer.db.get("resolver", KEY)
    assert resolver.is_active
    assert resolver.suspended_until is None

    assert indexer.handle(ResolverRemoved(resolver=RESOLVER, **_position(40)))
    resolver = indexer.db.get("resolver", KEY)
    assert not resolver.is_whitelisted and not resolver.is_active
    assert resolver.block_number == 40


def test_whitelisted_keeps_first_adder(indexer):
    indexer.handle(ResolverAdded(resolver=RESOLVER, added_by=OWNER, **_position(10)))
    indexer.handle(ResolverRemoved(resolver=RESOLVER, **_position(20)))
    assert indexer.handle(ResolverWhitelisted(resolver=RESOLVER, **_position(30)))

    resolver = indexer.db.get("resolver", KEY)
    assert resolver.is_whitelisted
    assert resolver.added_by == OWNER


def test_replay_and_stale_events_are_ignored(indexer):
    added = ResolverAdded(resolver=RESOLVER, added_by=OWNER, **_position(10))
    removed = ResolverRemoved(resolver=RESOLVER, **_position(20))
    indexer.handle_all([added, removed])
    snapshot = indexer.db.snapshot()

    assert not indexer.handle(added)
    assert not indexer.handle(removed)
    assert not indexer.handle(ResolverReactivated(resolver=RESOLVER, **_position(15)))
    assert indexer.db.snapshot() == snapshot


def test_suspension_of_unknown_resolver_is_still_recorded(indexer):
    assert indexer.handle(ResolverSuspended(resolver=RESOLVER, until=1, **_position(5)))
    assert indexer.db.get("resolver", KEY) is None
    assert indexer.db.count("resolver_suspension") == 1


def test_emergency_pause_history(indexer):
    assert indexer.handle(EmergencyPause(paused=True, **_position(50)))
    assert indexer.handle(EmergencyPause(paused=False, **_position(60)))
    assert not indexer.handle(EmergencyPause(paused=True, **_position(50)))

    pauses = sorted(indexer.db.rows("emergency_pause"), key=lambda p: p.block_number)
    assert [p.is_paused for p in pauses] == [True, False]
    assert pauses[0].paused_at == DEPLOYED_AT + 50


def test_admin_lifecycle(indexer):
    key = f"{BASE}-{ADMIN}"
    assert indexer.handle(AdminAdded(admin=ADMIN, **_position(10)))
    admin = indexer.db.get("factory_admin", key)
    assert admin.is_active
    assert admin.added_at == DEPLOYED_AT + 10

    assert indexer.handle(AdminRemoved(admin=ADMIN, **_position(20)))
    admin = indexer.db.get("factory_admin", key)
    assert not admin.is_active
    assert admin.removed_at == DEPLOYED_AT + 20

    # stale re-add from before the removal
    assert not indexer.handle(AdminAdded(admin=ADMIN, **_position(15)))
    assert indexer.handle(AdminAdded(admin=ADMIN, **_position(30)))
    admin = indexer.db.get("factory_admin", key)
    assert admin.is_active
    assert admin.removed_at is None


def test_removal_of_unknown_admin_is_ignored(indexer):
    assert not indexer.handle(AdminRemoved(admin=ADMIN, **_position(10)))
    assert indexer.db.count("factory_admin") == 0


def _swap_initiated(block, tx=None, resolver=RESOLVER):
    return SwapInitiated(
        escrow_src="0x" + "e1" * 20,
        maker=MAKER,
        resolver=resolver,
        volume=1000,
        src_chain_id=BASE,
        dst_chain_id=ETHERLINK,
        **_position(block, tx),
    )


def test_swap_initiated_counts_resolver_activity(indexer):
    indexer.handle(ResolverAdded(resolver=RESOLVER, added_by=OWNER, **_position(10)))
    assert indexer.handle(_swap_initiated(40))
    assert indexer.handle(_swap_initiated(30, tx=31))
    assert not indexer.handle(_swap_initiated(40))

    resolver = indexer.db.get("resolver", KEY)
    assert resolver.total_transactions == 2
    assert resolver.last_activity_block == 40
    metric = indexer.db.get("swap_metrics", f"{BASE}-swap-initiated-{tx_hash(40)}")
    assert metric.status == "initiated"
    assert metric.volume == 1000
    assert metric.dst_chain_id == ETHERLINK


def test_swap_initiated_by_unknown_resolver_is_recorded(indexer):
    assert indexer.handle(_swap_initiated(40))
    assert indexer.db.count("swap_metrics") == 1
    assert indexer.db.get("resolver", KEY) is None


def test_activity_counters_survive_rewhitelisting(indexer):
    indexer.handle(ResolverAdded(resolver=RESOLVER, added_by=OWNER, **_position(10)))
    indexer.handle(_swap_initiated(20))
    indexer.handle(ResolverRemoved(resolver=RESOLVER, **_position(30)))
    indexer.handle(ResolverWhitelisted(resolver=RESOLVER, **_position(40)))

    resolver = indexer.db.get("resolver", KEY)
    assert resolver.is_whitelisted
    assert resolver.total_transactions == 1
    assert resolver.last_activity_block == 20


def _swap_completed(block):
    return SwapCompleted(order_hash=ORDER_HASH, resolver=RESOLVER, completion_time=120, gas_used=210_000, **_position(block))


def test_swap_completed_completes_atomic_swap(indexer):
    indexer.handle_all([src_created(), dst_created()])
    assert indexer.handle(_swap_completed(900))

    swap = indexer.db.get("atomic_swap", ORDER_HASH)
    assert swap.status is SwapStatus.COMPLETED
    assert swap.completed_at == DEPLOYED_AT + 900
    metric = indexer.db.get("swap_metrics", f"{BASE}-{ORDER_HASH}")
    assert metric.status == "completed"
    assert metric.gas_used == 210_000
    assert metric.completion_time == 120

    assert not indexer.handle(_swap_completed(900))


def test_swap_completed_does_not_override_cancellation(indexer):
    src = src_created()
    indexer.handle_all([src, dst_created(), cancellation(src_escrow_address(src), BASE)])
    assert indexer.handle(_swap_completed(900))

    swap = indexer.db.get("atomic_swap", ORDER_HASH)
    assert swap.status is SwapStatus.CANCELLED
    assert swap.completed_at is None
    assert indexer.db.get("swap_metrics", f"{BASE}-{ORDER_HASH}") is not None


def test_swap_completed_for_unknown_order_keeps_metric(indexer):
    assert indexer.handle(_swap_completed(900))
    assert indexer.db.count("atomic_swap") == 0
    assert indexer.db.count("swap_metrics") == 1


def test_interactions_are_tracked(indexer):
    indexer.handle(ResolverAdded(resolver=RESOLVER, added_by=OWNER, **_position(10)))
    interaction_hash = "0x" + "99" * 32
    executed = InteractionExecuted(
        order_maker=MAKER, interaction_target=TARGET, interaction_hash=interaction_hash, timestamp=DEPLOYED_AT + 21,
        **_position(20),
    )
    failed = InteractionFailed(
        order_maker=MAKER, interaction_target=TARGET, reason="out of gas", sender=RESOLVER, **_position(30)
    )
    assert indexer.handle(executed)
    assert indexer.handle(failed)
    assert not indexer.handle(executed)
    assert not indexer.handle(failed)

    row = indexer.db.get("interaction_tracking", f"{BASE}-{interaction_hash}")
    assert row.status == "executed"
    assert row.executed_at == DEPLOYED_AT + 21
    failures = indexer.db.rows("interaction_tracking", status="failed")
    assert len(failures) == 1
    assert failures[0].failure_reason == "out of gas"
    resolver = indexer.db.get("resolver", KEY)
    assert resolver.failed_transactions == 1
    assert resolver.total_transactions == 0


def test_metrics_updated_snapshots(indexer):
    assert indexer.handle(MetricsUpdated(total_volume=10**21, success_rate=9500, avg_completion_time=300, **_position(50)))
    assert indexer.handle(MetricsUpdated(total_volume=2 * 10**21, success_rate=9600, avg_completion_time=280, **_position(60)))
    assert not indexer.handle(MetricsUpdated(total_volume=1, success_rate=1, avg_completion_time=1, **_position(60)))

    latest = indexer.db.get("factory_metrics", f"{BASE}-60")
    assert latest.total_volume == 2 * 10**21
    assert latest.success_rate == 9600
    assert indexer.db.count("factory_metrics") == 2
