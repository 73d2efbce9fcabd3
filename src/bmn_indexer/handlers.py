"""
One handler per event kind. Each handler applies the state transition of its
event to the tables and reports whether anything changed; a replayed event
finds its rows already present and changes nothing, counters included.

Handlers run inside the unit of work opened by ``EscrowIndexer.handle`` and
never commit on their own.
"""

from typing import Optional, Union
import logging

from attr import dataclass

from . import events as ev
from .address_codec import compute_escrow_address, decode_packed_address
from .correlator import SwapCorrelator
from .db import (
    DstEscrow,
    EmergencyPause,
    EscrowCancellation,
    EscrowWithdrawal,
    FactoryAdmin,
    FactoryMetrics,
    FundsRescued,
    IndexerDb,
    InteractionTracking,
    Resolver,
    ResolverSuspension,
    SrcEscrow,
    SwapMetric,
    escrow_id,
)
from .registry import EscrowRegistry
from .state_machine import EscrowStatus, advance_escrow
from .statistics import StatisticsAggregator

log = logging.getLogger("handlers")


@dataclass
class HandlerContext:
    db: IndexerDb
    registry: EscrowRegistry
    correlator: SwapCorrelator
    stats: StatisticsAggregator
    src_implementation: str


def _register(ctx: HandlerContext, chain_id: int, address: str) -> None:
    if ctx.registry.track(chain_id, address):
        ctx.db.on_rollback(lambda: ctx.registry.discard(chain_id, address))


def _tracked_escrow(ctx: HandlerContext, event: ev.IndexedEvent) -> Optional[Union[SrcEscrow, DstEscrow]]:
    """The escrow row behind an escrow event, or None if the emitter is not one of ours."""
    if not ctx.registry.is_tracked(event.chain_id, event.address):
        log.debug(f"Ignoring {type(event).__name__} from untracked contract {event.address} on chain {event.chain_id}")
        return None
    key = escrow_id(event.chain_id, event.address)
    row = ctx.db.get("src_escrow", key) or ctx.db.get("dst_escrow", key)
    if row is None:
        log.warning(f"Escrow {key} is tracked but has no row, ignoring {type(event).__name__}")
    return row


def _escrow_table(row: Union[SrcEscrow, DstEscrow]) -> str:
    return "src_escrow" if isinstance(row, SrcEscrow) else "dst_escrow"


# ---------------------------------------------------------------------- factory events
def handle_src_escrow_created(ctx: HandlerContext, event: ev.SrcEscrowCreated) -> bool:
    src = event.src_immutables
    dst = event.dst_immutables_complement
    escrow_address = event.escrow or compute_escrow_address(event.address, ctx.src_implementation, src)

    _register(ctx, event.chain_id, escrow_address)
    row = SrcEscrow(
        id=escrow_id(event.chain_id, escrow_address),
        chain_id=event.chain_id,
        escrow_address=escrow_address,
        order_hash=src.order_hash,
        hashlock=src.hashlock,
        maker=decode_packed_address(src.maker),
        taker=decode_packed_address(src.taker),
        src_token=decode_packed_address(src.token),
        src_amount=src.amount,
        src_safety_deposit=src.safety_deposit,
        dst_maker=decode_packed_address(dst.maker),
        dst_token=decode_packed_address(dst.token),
        dst_amount=dst.amount,
        dst_safety_deposit=dst.safety_deposit,
        dst_chain_id=dst.chain_id,
        timelocks=src.timelocks,
        created_at=event.block_timestamp,
        block_number=event.block_number,
        transaction_hash=event.transaction_hash,
    )
    if not ctx.db.insert_if_absent("src_escrow", row):
        log.debug(f"Source escrow {row.id} already indexed")
        return False

    ctx.correlator.link_source(row)
    ctx.stats.record_src_escrow(event.chain_id, src.amount, event.block_number)
    return True


def handle_dst_escrow_created(ctx: HandlerContext, event: ev.DstEscrowCreated) -> bool:
    _register(ctx, event.chain_id, event.escrow)
    row = DstEscrow(
        id=escrow_id(event.chain_id, event.escrow),
        chain_id=event.chain_id,
        escrow_address=event.escrow,
        hashlock=event.hashlock,
        taker=decode_packed_address(event.taker),
        created_at=event.block_timestamp,
        block_number=event.block_number,
        transaction_hash=event.transaction_hash,
    )
    if not ctx.db.insert_if_absent("dst_escrow", row):
        log.debug(f"Destination escrow {row.id} already indexed")
        return False

    ctx.correlator.link_destination(row)
    ctx.stats.record_dst_escrow(event.chain_id, event.block_number)
    return True


# ---------------------------------------------------------------------- escrow events
def handle_escrow_withdrawal(ctx: HandlerContext, event: ev.EscrowWithdrawal) -> bool:
    escrow = _tracked_escrow(ctx, event)
    if escrow is None:
        return False
    if escrow.status.is_terminal:
        log.info(f"Escrow {escrow.id} already {escrow.status.value}, ignoring withdrawal in {event.transaction_hash}")
        return False

    record = EscrowWithdrawal(
        id=f"{escrow.id}-{event.transaction_hash}",
        chain_id=event.chain_id,
        escrow_address=escrow.escrow_address,
        secret=event.secret,
        withdrawn_at=event.block_timestamp,
        block_number=event.block_number,
        transaction_hash=event.transaction_hash,
    )
    if not ctx.db.insert_if_absent("escrow_withdrawal", record):
        return False
    ctx.db.update(_escrow_table(escrow), escrow.id, status=advance_escrow(escrow.status, EscrowStatus.WITHDRAWN))

    swap = ctx.correlator.record_withdrawal(escrow, event.secret, event.block_timestamp)
    if isinstance(escrow, SrcEscrow):
        amount = escrow.src_amount
    else:
        amount = swap.dst_amount if swap is not None and swap.dst_amount is not None else 0
    ctx.stats.record_withdrawal(event.chain_id, amount, event.block_number)
    return True


def handle_escrow_cancelled(ctx: HandlerContext, event: ev.EscrowCancelled) -> bool:
    escrow = _tracked_escrow(ctx, event)
    if escrow is None:
        return False
    if escrow.status.is_terminal:
        log.info(f"Escrow {escrow.id} already {escrow.status.value}, ignoring cancellation in {event.transaction_hash}")
        return False

    record = EscrowCancellation(
        id=f"{escrow.id}-{event.transaction_hash}",
        chain_id=event.chain_id,
        escrow_address=escrow.escrow_address,
        cancelled_at=event.block_timestamp,
        block_number=event.block_number,
        transaction_hash=event.transaction_hash,
    )
    if not ctx.db.insert_if_absent("escrow_cancellation", record):
        return False
    ctx.db.update(_escrow_table(escrow), escrow.id, status=advance_escrow(escrow.status, EscrowStatus.CANCELLED))

    ctx.correlator.record_cancellation(escrow, event.block_timestamp)
    ctx.stats.record_cancellation(event.chain_id, event.block_number)
    return True


def handle_funds_rescued(ctx: HandlerContext, event: ev.FundsRescued) -> bool:
    escrow = _tracked_escrow(ctx, event)
    if escrow is None:
        return False
    record = FundsRescued(
        id=f"{escrow.id}-{event.transaction_hash}-{event.log_index}",
        chain_id=event.chain_id,
        escrow_address=escrow.escrow_address,
        token=event.token,
        amount=event.amount,
        rescued_at=event.block_timestamp,
        block_number=event.block_number,
        transaction_hash=event.transaction_hash,
        log_index=event.log_index,
    )
    if not ctx.db.insert_if_absent("funds_rescued", record):
        return False
    ctx.stats.touch(event.chain_id, event.block_number)
    return True


# ---------------------------------------------------------------------- factory administration
def _resolver_key(event: ev.IndexedEvent, resolver: str) -> str:
    return f"{event.chain_id}-{resolver}"


def _whitelist(ctx: HandlerContext, event: ev.IndexedEvent, resolver: str, added_by: Optional[str]) -> bool:
    key = _resolver_key(event, resolver)
    current = ctx.db.get("resolver", key)
    if current is not None and current.block_number > event.block_number:
        return False
    changes = dict(
        is_whitelisted=True,
        is_active=True,
        added_at=event.block_timestamp,
        block_number=event.block_number,
        transaction_hash=event.transaction_hash,
    )
    if added_by is not None:
        changes["added_by"] = added_by
    if current is None:
        return ctx.db.insert_if_absent("resolver", Resolver(id=key, chain_id=event.chain_id, resolver=resolver, **changes))
    # activity counters survive a re-whitelisting
    return ctx.db.update("resolver", key, **changes) != current


def handle_resolver_whitelisted(ctx: HandlerContext, event: ev.ResolverWhitelisted) -> bool:
    return _whitelist(ctx, event, event.resolver, None)


def handle_resolver_added(ctx: HandlerContext, event: ev.ResolverAdded) -> bool:
    return _whitelist(ctx, event, event.resolver, event.added_by)


def _update_resolver(ctx: HandlerContext, event: ev.IndexedEvent, resolver: str, **changes) -> bool:
    key = _resolver_key(event, resolver)
    current = ctx.db.get("resolver", key)
    if current is None:
        log.warning(f"{type(event).__name__} for unknown resolver {key}")
        return False
    if current.block_number > event.block_number:
        return False
    updated = ctx.db.update(
        "resolver", key, block_number=event.block_number, transaction_hash=event.transaction_hash, **changes
    )
    return updated != current


def handle_resolver_removed(ctx: HandlerContext, event: ev.ResolverRemoved) -> bool:
    return _update_resolver(ctx, event, event.resolver, is_whitelisted=False, is_active=False)


def handle_resolver_suspended(ctx: HandlerContext, event: ev.ResolverSuspended) -> bool:
    recorded = ctx.db.insert_if_absent(
        "resolver_suspension",
        ResolverSuspension(
            id=f"{event.chain_id}-{event.resolver}-{event.block_number}",
            chain_id=event.chain_id,
            resolver=event.resolver,
            suspended_until=event.until,
            reason=event.reason,
            block_number=event.block_number,
            block_timestamp=event.block_timestamp,
            transaction_hash=event.transaction_hash,
        ),
    )
    updated = _update_resolver(ctx, event, event.resolver, is_active=False, suspended_until=event.until)
    return recorded or updated


def handle_resolver_reactivated(ctx: HandlerContext, event: ev.ResolverReactivated) -> bool:
    return _update_resolver(ctx, event, event.resolver, is_active=True, suspended_until=None)


def handle_emergency_pause(ctx: HandlerContext, event: ev.EmergencyPause) -> bool:
    return ctx.db.insert_if_absent(
        "emergency_pause",
        EmergencyPause(
            id=f"{event.chain_id}-{event.block_number}",
            chain_id=event.chain_id,
            is_paused=event.paused,
            paused_at=event.block_timestamp,
            block_number=event.block_number,
            transaction_hash=event.transaction_hash,
        ),
    )


def handle_admin_added(ctx: HandlerContext, event: ev.AdminAdded) -> bool:
    key = f"{event.chain_id}-{event.admin}"
    current = ctx.db.get("factory_admin", key)
    if current is not None and current.block_number > event.block_number:
        return False
    changes = dict(
        is_active=True,
        added_at=event.block_timestamp,
        removed_at=None,
        block_number=event.block_number,
        transaction_hash=event.transaction_hash,
    )
    if current is None:
        return ctx.db.insert_if_absent(
            "factory_admin", FactoryAdmin(id=key, chain_id=event.chain_id, admin=event.admin, **changes)
        )
    return ctx.db.update("factory_admin", key, **changes) != current


def handle_admin_removed(ctx: HandlerContext, event: ev.AdminRemoved) -> bool:
    key = f"{event.chain_id}-{event.admin}"
    current = ctx.db.get("factory_admin", key)
    if current is None:
        log.warning(f"AdminRemoved for unknown admin {key}")
        return False
    if current.block_number > event.block_number:
        return False
    updated = ctx.db.update(
        "factory_admin",
        key,
        is_active=False,
        removed_at=event.block_timestamp,
        block_number=event.block_number,
        transaction_hash=event.transaction_hash,
    )
    return updated != current


# ---------------------------------------------------------------------- factory metrics
def _bump_resolver(
    ctx: HandlerContext, chain_id: int, resolver: str, activity_block: Optional[int] = None, **increments: int
) -> None:
    key = f"{chain_id}-{resolver}"
    current = ctx.db.get("resolver", key)
    if current is None:
        log.debug(f"No whitelisted resolver {key}, activity not counted")
        return
    changes = {name: getattr(current, name) + delta for name, delta in increments.items()}
    if activity_block is not None:
        changes["last_activity_block"] = max(current.last_activity_block or 0, activity_block)
    ctx.db.update("resolver", key, **changes)


def handle_swap_initiated(ctx: HandlerContext, event: ev.SwapInitiated) -> bool:
    inserted = ctx.db.insert_if_absent(
        "swap_metrics",
        SwapMetric(
            id=f"{event.chain_id}-swap-initiated-{event.transaction_hash}",
            chain_id=event.chain_id,
            status="initiated",
            escrow_src=event.escrow_src,
            maker=event.maker,
            resolver=event.resolver,
            volume=event.volume,
            src_chain_id=event.src_chain_id,
            dst_chain_id=event.dst_chain_id,
            block_number=event.block_number,
            block_timestamp=event.block_timestamp,
            transaction_hash=event.transaction_hash,
        ),
    )
    if inserted:
        _bump_resolver(ctx, event.chain_id, event.resolver, activity_block=event.block_number, total_transactions=1)
    return inserted


def handle_swap_completed(ctx: HandlerContext, event: ev.SwapCompleted) -> bool:
    key = f"{event.chain_id}-{event.order_hash}"
    completion = dict(
        status="completed",
        resolver=event.resolver,
        completion_time=event.completion_time,
        gas_used=event.gas_used,
        block_number=event.block_number,
        block_timestamp=event.block_timestamp,
        transaction_hash=event.transaction_hash,
    )
    current = ctx.db.get("swap_metrics", key)
    if current is None:
        changed = ctx.db.insert_if_absent(
            "swap_metrics", SwapMetric(id=key, chain_id=event.chain_id, order_hash=event.order_hash, **completion)
        )
    else:
        changed = ctx.db.update("swap_metrics", key, **completion) != current

    swap = ctx.db.find_swap_by_order_hash(event.order_hash)
    if ctx.correlator.record_factory_completion(event.order_hash, event.block_timestamp) != swap:
        changed = True
    return changed


def handle_interaction_executed(ctx: HandlerContext, event: ev.InteractionExecuted) -> bool:
    return ctx.db.insert_if_absent(
        "interaction_tracking",
        InteractionTracking(
            id=f"{event.chain_id}-{event.interaction_hash}",
            chain_id=event.chain_id,
            order_maker=event.order_maker,
            interaction_target=event.interaction_target,
            interaction_hash=event.interaction_hash,
            status="executed",
            executed_at=event.timestamp,
            block_number=event.block_number,
            transaction_hash=event.transaction_hash,
        ),
    )


def handle_interaction_failed(ctx: HandlerContext, event: ev.InteractionFailed) -> bool:
    inserted = ctx.db.insert_if_absent(
        "interaction_tracking",
        InteractionTracking(
            id=f"{event.chain_id}-{event.transaction_hash}-{event.log_index}",
            chain_id=event.chain_id,
            order_maker=event.order_maker,
            interaction_target=event.interaction_target,
            interaction_hash="0x",
            status="failed",
            failure_reason=event.reason,
            executed_at=event.block_timestamp,
            block_number=event.block_number,
            transaction_hash=event.transaction_hash,
        ),
    )
    if inserted and event.sender is not None:
        _bump_resolver(ctx, event.chain_id, event.sender, failed_transactions=1)
    return inserted


def handle_metrics_updated(ctx: HandlerContext, event: ev.MetricsUpdated) -> bool:
    return ctx.db.insert_if_absent(
        "factory_metrics",
        FactoryMetrics(
            id=f"{event.chain_id}-{event.block_number}",
            chain_id=event.chain_id,
            total_volume=event.total_volume,
            success_rate=event.success_rate,
            avg_completion_time=event.avg_completion_time,
            block_number=event.block_number,
            block_timestamp=event.block_timestamp,
            transaction_hash=event.transaction_hash,
        ),
    )


HANDLERS = {
    "SrcEscrowCreated": handle_src_escrow_created,
    "DstEscrowCreated": handle_dst_escrow_created,
    "EscrowWithdrawal": handle_escrow_withdrawal,
    "EscrowCancelled": handle_escrow_cancelled,
    "FundsRescued": handle_funds_rescued,
    "ResolverWhitelisted": handle_resolver_whitelisted,
    "ResolverAdded": handle_resolver_added,
    "ResolverRemoved": handle_resolver_removed,
    "ResolverSuspended": handle_resolver_suspended,
    "ResolverReactivated": handle_resolver_reactivated,
    "AdminAdded": handle_admin_added,
    "AdminRemoved": handle_admin_removed,
    "EmergencyPause": handle_emergency_pause,
    "SwapInitiated": handle_swap_initiated,
    "SwapCompleted": handle_swap_completed,
    "InteractionExecuted": handle_interaction_executed,
    "InteractionFailed": handle_interaction_failed,
    "MetricsUpdated": handle_metrics_updated,
}
