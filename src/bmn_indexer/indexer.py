from typing import Any, Dict, Iterable, Mapping, Optional, Union
import logging

from .config import DEFAULT_SRC_IMPLEMENTATION
from .correlator import SwapCorrelator
from .db import IndexerDb
from .events import IndexedEvent, parse_event
from .handlers import HANDLERS, HandlerContext
from .registry import EscrowRegistry
from .state_machine import CompletionPolicy
from .statistics import StatisticsAggregator


class EscrowIndexer:
    """
    Applies decoded events, one at a time, to the escrow tables.

    Each event is one unit of work: the handler, the correlator and the
    statistics all write through the same transaction, so a failure leaves no
    trace of the event (registry additions included) and a replay of an
    already-applied event is a no-op.
    """

    def __init__(
        self,
        db: Optional[IndexerDb] = None,
        registry: Optional[EscrowRegistry] = None,
        completion_policy: CompletionPolicy = CompletionPolicy.BOTH,
        src_implementation: str = DEFAULT_SRC_IMPLEMENTATION,
        chain_ids: Iterable[int] = (),
    ):
        self.log = logging.getLogger("EscrowIndexer")
        self.db = db if db is not None else IndexerDb()
        self.registry = registry if registry is not None else EscrowRegistry.from_db(self.db)
        self.correlator = SwapCorrelator(self.db, completion_policy)
        self.stats = StatisticsAggregator(self.db)
        self.ctx = HandlerContext(
            db=self.db,
            registry=self.registry,
            correlator=self.correlator,
            stats=self.stats,
            src_implementation=src_implementation,
        )
        self.stats.seed(chain_ids)

    def handle(self, event: Union[IndexedEvent, Mapping[str, Any]]) -> bool:
        """
        Apply one event. Returns True if it changed state, False if it was
        filtered or already applied. Any exception rolls the event back and
        propagates to the caller.
        """
        if not isinstance(event, IndexedEvent):
            event = parse_event(dict(event))
        kind = event.kind  # type: ignore[attr-defined]
        handler = HANDLERS[kind]
        try:
            with self.db.transaction():
                applied = handler(self.ctx, event)
        except Exception:
            self.log.exception(
                f"Failed to apply {kind} from {event.address} at block {event.block_number} "
                f"(chain {event.chain_id}, tx {event.transaction_hash}, log {event.log_index})"
            )
            raise
        if applied:
            self.log.debug(f"Applied {kind} at block {event.block_number} on chain {event.chain_id}")
        return applied

    def handle_all(self, events: Iterable[Union[IndexedEvent, Mapping[str, Any]]]) -> int:
        return sum(1 for e in events if self.handle(e))

    def statistics(self) -> Dict[int, Any]:
        return {row.chain_id: row for row in self.db.rows("chain_statistics")}
