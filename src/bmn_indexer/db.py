from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
import logging
import threading

import attr
from attr import dataclass

from .errors import StorageError
from .state_machine import EscrowStatus, SwapStatus

log = logging.getLogger("IndexerDb")

PLACEHOLDER_PREFIX = "pending-"


def escrow_id(chain_id: int, escrow_address: str) -> str:
    return f"{chain_id}-{escrow_address}"


def placeholder_swap_id(hashlock: str) -> str:
    return f"{PLACEHOLDER_PREFIX}{hashlock}"


@dataclass(frozen=True)
class SrcEscrow:
    id: str
    chain_id: int
    escrow_address: str
    order_hash: str
    hashlock: str
    maker: str
    taker: str
    src_token: str
    src_amount: int
    src_safety_deposit: int
    dst_maker: str
    dst_token: str
    dst_amount: int
    dst_safety_deposit: int
    dst_chain_id: int
    timelocks: int
    created_at: int
    block_number: int
    transaction_hash: str
    status: EscrowStatus = EscrowStatus.CREATED


@dataclass(frozen=True)
class DstEscrow:
    id: str
    chain_id: int
    escrow_address: str
    hashlock: str
    taker: str
    created_at: int
    block_number: int
    transaction_hash: str
    src_cancellation_timestamp: int = 0  # filled once the source leg is known
    status: EscrowStatus = EscrowStatus.CREATED


@dataclass(frozen=True)
class EscrowWithdrawal:
    id: str
    chain_id: int
    escrow_address: str
    secret: str
    withdrawn_at: int
    block_number: int
    transaction_hash: str


@dataclass(frozen=True)
class EscrowCancellation:
    id: str
    chain_id: int
    escrow_address: str
    cancelled_at: int
    block_number: int
    transaction_hash: str


@dataclass(frozen=True)
class FundsRescued:
    id: str
    chain_id: int
    escrow_address: str
    token: str
    amount: int
    rescued_at: int
    block_number: int
    transaction_hash: str
    log_index: int


@dataclass(frozen=True)
class AtomicSwap:
    id: str  # order hash, or "pending-<hashlock>" until the source leg shows up
    hashlock: str
    order_hash: Optional[str] = None
    src_chain_id: Optional[int] = None
    dst_chain_id: Optional[int] = None
    src_escrow_address: Optional[str] = None
    dst_escrow_address: Optional[str] = None
    src_maker: Optional[str] = None
    src_taker: Optional[str] = None
    dst_maker: Optional[str] = None
    dst_taker: Optional[str] = None
    src_token: Optional[str] = None
    src_amount: Optional[int] = None
    dst_token: Optional[str] = None
    dst_amount: Optional[int] = None
    src_safety_deposit: Optional[int] = None
    dst_safety_deposit: Optional[int] = None
    timelocks: Optional[int] = None
    status: SwapStatus = SwapStatus.PENDING
    src_created_at: Optional[int] = None
    dst_created_at: Optional[int] = None
    completed_at: Optional[int] = None
    cancelled_at: Optional[int] = None
    secret: Optional[str] = None

    @property
    def is_placeholder(self) -> bool:
        return self.order_hash is None


@dataclass(frozen=True)
class ChainStatistics:
    id: str
    chain_id: int
    total_src_escrows: int = 0
    total_dst_escrows: int = 0
    total_withdrawals: int = 0
    total_cancellations: int = 0
    total_volume_locked: int = 0
    total_volume_withdrawn: int = 0
    last_updated_block: int = 0


@dataclass(frozen=True)
class Resolver:
    id: str
    chain_id: int
    resolver: str
    is_whitelisted: bool
    is_active: bool
    added_at: int
    block_number: int
    transaction_hash: str
    added_by: Optional[str] = None
    suspended_until: Optional[int] = None
    total_transactions: int = 0
    failed_transactions: int = 0
    last_activity_block: Optional[int] = None


@dataclass(frozen=True)
class ResolverSuspension:
    id: str
    chain_id: int
    resolver: str
    suspended_until: int
    reason: str
    block_number: int
    block_timestamp: int
    transaction_hash: str


@dataclass(frozen=True)
class EmergencyPause:
    id: str
    chain_id: int
    is_paused: bool
    paused_at: int
    block_number: int
    transaction_hash: str


@dataclass(frozen=True)
class FactoryAdmin:
    id: str
    chain_id: int
    admin: str
    is_active: bool
    added_at: int
    block_number: int
    transaction_hash: str
    removed_at: Optional[int] = None


@dataclass(frozen=True)
class SwapMetric:
    id: str  # "<chain>-swap-initiated-<tx>" or "<chain>-<orderHash>"
    chain_id: int
    status: str  # initiated | completed
    block_number: int
    block_timestamp: int
    transaction_hash: str
    order_hash: Optional[str] = None
    escrow_src: Optional[str] = None
    maker: Optional[str] = None
    resolver: Optional[str] = None
    volume: Optional[int] = None
    src_chain_id: Optional[int] = None
    dst_chain_id: Optional[int] = None
    completion_time: Optional[int] = None
    gas_used: Optional[int] = None


@dataclass(frozen=True)
class InteractionTracking:
    id: str
    chain_id: int
    order_maker: str
    interaction_target: str
    interaction_hash: str
    status: str  # executed | failed
    executed_at: int
    block_number: int
    transaction_hash: str
    failure_reason: Optional[str] = None


@dataclass(frozen=True)
class FactoryMetrics:
    id: str
    chain_id: int
    total_volume: int
    success_rate: int
    avg_completion_time: int
    block_number: int
    block_timestamp: int
    transaction_hash: str


TABLES: Dict[str, type] = {
    "src_escrow": SrcEscrow,
    "dst_escrow": DstEscrow,
    "escrow_withdrawal": EscrowWithdrawal,
    "escrow_cancellation": EscrowCancellation,
    "funds_rescued": FundsRescued,
    "atomic_swap": AtomicSwap,
    "chain_statistics": ChainStatistics,
    "resolver": Resolver,
    "resolver_suspension": ResolverSuspension,
    "emergency_pause": EmergencyPause,
    "factory_admin": FactoryAdmin,
    "swap_metrics": SwapMetric,
    "interaction_tracking": InteractionTracking,
    "factory_metrics": FactoryMetrics,
}

_MISSING = object()


class IndexerDb:
    """
    Keyed tables for every indexed entity. All writes go through a unit of
    work (``transaction()``); a failing unit of work is undone entry by entry
    from its journal, so either every write of an event lands or none does.

    Units of work are serialized by one re-entrant lock: the two chains may
    be indexed from different threads but never interleave inside a swap row.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._tables: Dict[str, Dict[str, Any]] = {name: {} for name in TABLES}
        self._swap_by_hashlock: Dict[str, str] = {}
        self._swap_by_order_hash: Dict[str, str] = {}
        self._journal: Optional[List[Tuple[str, str, Any]]] = None
        self._undo_hooks: List[Callable[[], None]] = []

    # ---------------------------------------------------------------- unit of work
    @contextmanager
    def transaction(self) -> Iterator["IndexerDb"]:
        with self._lock:
            if self._journal is not None:
                # nested units of work join the outer one
                yield self
                return
            self._journal = []
            self._undo_hooks = []
            try:
                yield self
            except BaseException:
                self._rollback()
                raise
            finally:
                self._journal = None
                self._undo_hooks = []

    @property
    def in_transaction(self) -> bool:
        return self._journal is not None

    def on_rollback(self, hook: Callable[[], None]) -> None:
        """Register an undo action for state living outside the tables."""
        self._require_transaction()
        self._undo_hooks.append(hook)

    def _rollback(self) -> None:
        journal = self._journal or []
        log.warning(f"Rolling back {len(journal)} write(s)")
        for table, key, previous in reversed(journal):
            self._put(table, key, previous)
        for hook in reversed(self._undo_hooks):
            hook()

    def _require_transaction(self) -> None:
        if self._journal is None:
            raise StorageError("writes must happen inside db.transaction()")

    # ---------------------------------------------------------------- raw access
    def _table(self, table: str) -> Dict[str, Any]:
        try:
            return self._tables[table]
        except KeyError:
            raise StorageError(f"Unknown table {table}") from None

    def _put(self, table: str, key: str, row: Any) -> None:
        rows = self._table(table)
        old = rows.get(key, _MISSING)
        if table == "atomic_swap":
            self._unindex_swap(key, old)
        if row is _MISSING:
            rows.pop(key, None)
        else:
            rows[key] = row
            if table == "atomic_swap":
                self._index_swap(row)

    def _write(self, table: str, key: str, row: Any) -> None:
        self._require_transaction()
        expected = TABLES[table] if table in TABLES else None
        if row is not _MISSING and expected is not None and not isinstance(row, expected):
            raise StorageError(f"{table} expects {expected.__name__}, got {type(row).__name__}")
        previous = self._table(table).get(key, _MISSING)
        self._journal.append((table, key, previous))  # type: ignore[union-attr]
        self._put(table, key, row)

    def _index_swap(self, swap: AtomicSwap) -> None:
        self._swap_by_hashlock[swap.hashlock] = swap.id
        if swap.order_hash is not None:
            self._swap_by_order_hash[swap.order_hash] = swap.id

    def _unindex_swap(self, key: str, old: Any) -> None:
        if old is _MISSING:
            return
        if self._swap_by_hashlock.get(old.hashlock) == key:
            del self._swap_by_hashlock[old.hashlock]
        if old.order_hash is not None and self._swap_by_order_hash.get(old.order_hash) == key:
            del self._swap_by_order_hash[old.order_hash]

    # ---------------------------------------------------------------- reads
    def get(self, table: str, key: str) -> Optional[Any]:
        with self._lock:
            return self._table(table).get(key)

    def rows(self, table: str, **where: Any) -> List[Any]:
        with self._lock:
            rows = list(self._table(table).values())
        if not where:
            return rows
        return [r for r in rows if all(getattr(r, k) == v for k, v in where.items())]

    def count(self, table: str, **where: Any) -> int:
        return len(self.rows(table, **where))

    def find_swap_by_hashlock(self, hashlock: str) -> Optional[AtomicSwap]:
        with self._lock:
            key = self._swap_by_hashlock.get(hashlock)
            return None if key is None else self._tables["atomic_swap"].get(key)

    def find_swap_by_order_hash(self, order_hash: str) -> Optional[AtomicSwap]:
        with self._lock:
            key = self._swap_by_order_hash.get(order_hash)
            return None if key is None else self._tables["atomic_swap"].get(key)

    def snapshot(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Plain-dict copy of every table, for comparisons and serving."""
        with self._lock:
            return {
                name: {key: attr.asdict(row) for key, row in rows.items()}
                for name, rows in self._tables.items()
            }

    # ---------------------------------------------------------------- writes
    def insert_if_absent(self, table: str, row: Any) -> bool:
        """Insert ``row`` unless its id is already present. Returns True if inserted."""
        self._require_transaction()
        if row.id in self._table(table):
            return False
        self._write(table, row.id, row)
        return True

    def upsert(self, table: str, row: Any) -> Any:
        self._write(table, row.id, row)
        return row

    def update(self, table: str, key: str, **changes: Any) -> Any:
        self._require_transaction()
        current = self._table(table).get(key)
        if current is None:
            raise StorageError(f"{table} row {key} not found")
        updated = attr.evolve(current, **changes)
        if updated != current:
            self._write(table, key, updated)
        return updated

    def delete(self, table: str, key: str) -> None:
        self._require_transaction()
        if key not in self._table(table):
            raise StorageError(f"{table} row {key} not found")
        self._write(table, key, _MISSING)
