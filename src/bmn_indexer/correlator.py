from typing import Any, Dict, Optional, Union
import logging

import attr

from .db import AtomicSwap, DstEscrow, IndexerDb, SrcEscrow, escrow_id, placeholder_swap_id
from .state_machine import CompletionPolicy, EscrowStatus, SwapStatus, creation_status, join_swap_status
from .timelocks import src_cancellation_timestamp


def _fill(current: AtomicSwap, values: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the values whose field is still unset on ``current``."""
    return {k: v for k, v in values.items() if getattr(current, k) is None}


class SwapCorrelator:
    """
    Folds the escrows of both chains into one AtomicSwap per hashlock.

    The source leg is keyed by order hash, the destination leg only carries
    the hashlock, so a destination escrow seen first is parked on a placeholder
    row keyed by hashlock and adopted by the source leg when it arrives.
    Merges are joins: set fields are never cleared, a linked escrow address is
    never replaced and status only moves forward. The source event owns the
    source leg and the destination terms it mirrors; the destination event owns
    where the destination escrow actually lives (chain, address, taker, time).
    Either arrival order therefore produces the same row.
    """

    def __init__(self, db: IndexerDb, policy: CompletionPolicy = CompletionPolicy.BOTH):
        self.db = db
        self.policy = policy
        self.log = logging.getLogger("Correlator")

    # ---------------------------------------------------------------- creation
    def link_source(self, src: SrcEscrow) -> Optional[AtomicSwap]:
        swap = self.db.find_swap_by_order_hash(src.order_hash)
        if swap is None:
            by_hashlock = self.db.find_swap_by_hashlock(src.hashlock)
            if by_hashlock is not None and not by_hashlock.is_placeholder:
                self.log.warning(
                    f"Hashlock {src.hashlock} already belongs to order {by_hashlock.order_hash}, "
                    f"not linking source escrow {src.escrow_address} of order {src.order_hash}"
                )
                return None
            if by_hashlock is not None:
                self.log.info(f"Source leg of order {src.order_hash} adopts pending swap {by_hashlock.id}")
                self.db.delete("atomic_swap", by_hashlock.id)
                swap = by_hashlock
        elif swap.src_escrow_address not in (None, src.escrow_address):
            self.log.warning(
                f"Order {src.order_hash} is linked to source escrow {swap.src_escrow_address}, "
                f"ignoring {src.escrow_address}"
            )
            orphan = self.db.find_swap_by_hashlock(src.hashlock)
            if orphan is not None and orphan.is_placeholder:
                # multi-fill orders reuse the order hash with a fresh hashlock per fill
                self.log.warning(
                    f"Pending swap {orphan.id} stays unlinked: its source leg {src.escrow_address} "
                    f"belongs to already linked order {src.order_hash}"
                )
            return swap

        source_fields = {
            "order_hash": src.order_hash,
            "src_chain_id": src.chain_id,
            "src_escrow_address": src.escrow_address,
            "src_maker": src.maker,
            "src_taker": src.taker,
            "src_token": src.src_token,
            "src_amount": src.src_amount,
            "src_safety_deposit": src.src_safety_deposit,
            "dst_maker": src.dst_maker,
            "dst_token": src.dst_token,
            "dst_amount": src.dst_amount,
            "dst_safety_deposit": src.dst_safety_deposit,
            "timelocks": src.timelocks,
            "src_created_at": src.created_at,
            # until the destination escrow shows up: same resolver on both chains
            "dst_chain_id": src.dst_chain_id,
            "dst_taker": src.taker,
        }
        if swap is None:
            merged = AtomicSwap(id=src.order_hash, hashlock=src.hashlock, status=SwapStatus.SRC_CREATED, **source_fields)
        else:
            merged = attr.evolve(swap, id=src.order_hash, **_fill(swap, source_fields))
            merged = attr.evolve(
                merged,
                status=join_swap_status(merged.status, creation_status(True, merged.dst_escrow_address is not None)),
            )
        self.db.upsert("atomic_swap", merged)
        self._propagate_src_deadline(merged)
        return merged

    def link_destination(self, dst: DstEscrow) -> AtomicSwap:
        swap = self.db.find_swap_by_hashlock(dst.hashlock)
        if swap is None:
            self.log.info(
                f"Destination escrow {dst.escrow_address} arrived before its source leg, "
                f"parking it on {placeholder_swap_id(dst.hashlock)}"
            )
            swap = AtomicSwap(
                id=placeholder_swap_id(dst.hashlock),
                hashlock=dst.hashlock,
                dst_chain_id=dst.chain_id,
                dst_escrow_address=dst.escrow_address,
                dst_taker=dst.taker,
                dst_created_at=dst.created_at,
                status=SwapStatus.DST_CREATED,
            )
            self.db.insert_if_absent("atomic_swap", swap)
            return swap

        if swap.dst_escrow_address not in (None, dst.escrow_address):
            self.log.warning(
                f"Hashlock {dst.hashlock} is linked to destination escrow {swap.dst_escrow_address}, "
                f"ignoring {dst.escrow_address}"
            )
            return swap

        merged = attr.evolve(
            swap,
            dst_chain_id=dst.chain_id,
            dst_escrow_address=dst.escrow_address,
            dst_taker=dst.taker,
            dst_created_at=dst.created_at,
            status=join_swap_status(swap.status, creation_status(swap.src_escrow_address is not None, True)),
        )
        self.db.upsert("atomic_swap", merged)
        self._propagate_src_deadline(merged)
        return merged

    def _propagate_src_deadline(self, swap: AtomicSwap) -> None:
        if swap.timelocks is None or swap.dst_escrow_address is None or swap.dst_chain_id is None:
            return
        key = escrow_id(swap.dst_chain_id, swap.dst_escrow_address)
        dst = self.db.get("dst_escrow", key)
        if dst is not None and dst.src_cancellation_timestamp == 0:
            self.db.update("dst_escrow", key, src_cancellation_timestamp=src_cancellation_timestamp(swap.timelocks))

    # ---------------------------------------------------------------- lookups
    def swap_for_escrow(self, escrow: Union[SrcEscrow, DstEscrow]) -> Optional[AtomicSwap]:
        """The swap this escrow is linked to, if it was linked at all."""
        if isinstance(escrow, SrcEscrow):
            swap = self.db.find_swap_by_order_hash(escrow.order_hash)
            if swap is not None and swap.src_escrow_address == escrow.escrow_address:
                return swap
            return None
        swap = self.db.find_swap_by_hashlock(escrow.hashlock)
        if swap is not None and swap.dst_escrow_address == escrow.escrow_address and swap.dst_chain_id == escrow.chain_id:
            return swap
        return None

    def _leg_withdrawn(self, table: str, chain_id: Optional[int], address: Optional[str]) -> bool:
        if chain_id is None or address is None:
            return False
        row = self.db.get(table, escrow_id(chain_id, address))
        return row is not None and row.status is EscrowStatus.WITHDRAWN

    # ---------------------------------------------------------------- settlement
    def record_withdrawal(self, escrow: Union[SrcEscrow, DstEscrow], secret: str, timestamp: int) -> Optional[AtomicSwap]:
        swap = self.swap_for_escrow(escrow)
        if swap is None:
            self.log.warning(f"Withdrawal from unlinked escrow {escrow.id}, swap left untouched")
            return None
        if self.policy is CompletionPolicy.ANY:
            completed = True
        else:
            completed = self._leg_withdrawn("src_escrow", swap.src_chain_id, swap.src_escrow_address) and \
                self._leg_withdrawn("dst_escrow", swap.dst_chain_id, swap.dst_escrow_address)
        changes: Dict[str, Any] = {}
        if swap.secret is None:
            changes["secret"] = secret
        if completed:
            status = join_swap_status(swap.status, SwapStatus.COMPLETED)
            if status is SwapStatus.COMPLETED and swap.completed_at is None:
                changes.update(status=status, completed_at=timestamp)
        if not changes:
            return swap
        return self.db.update("atomic_swap", swap.id, **changes)

    def record_cancellation(self, escrow: Union[SrcEscrow, DstEscrow], timestamp: int) -> Optional[AtomicSwap]:
        swap = self.swap_for_escrow(escrow)
        if swap is None:
            self.log.warning(f"Cancellation of unlinked escrow {escrow.id}, swap left untouched")
            return None
        status = join_swap_status(swap.status, SwapStatus.CANCELLED)
        if status is not SwapStatus.CANCELLED or swap.cancelled_at is not None:
            return swap
        return self.db.update("atomic_swap", swap.id, status=status, cancelled_at=timestamp)

    def record_factory_completion(self, order_hash: str, timestamp: int) -> Optional[AtomicSwap]:
        """SwapCompleted reported by the factory itself, independent of the escrow withdrawals."""
        swap = self.db.find_swap_by_order_hash(order_hash)
        if swap is None:
            self.log.warning(f"Factory reported completion of unknown order {order_hash}")
            return None
        status = join_swap_status(swap.status, SwapStatus.COMPLETED)
        if status is not SwapStatus.COMPLETED or swap.completed_at is not None:
            return swap
        return self.db.update("atomic_swap", swap.id, status=status, completed_at=timestamp)
