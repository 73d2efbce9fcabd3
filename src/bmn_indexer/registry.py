from typing import Dict, FrozenSet, Set
import logging

from .db import IndexerDb


class EscrowRegistry:
    """
    Escrow contracts known per chain. Escrows are clones deployed by the
    factory, so their addresses only become known from creation events; every
    follow-up event (withdrawal, cancellation, rescue) is checked against this
    set before it is treated as an escrow event.

    One registry belongs to one indexer instance. It is not persisted: replaying
    creation events, or ``from_db``, rebuilds it.
    """

    def __init__(self):
        self.log = logging.getLogger("EscrowRegistry")
        self._escrows: Dict[int, Set[str]] = {}

    @classmethod
    def from_db(cls, db: IndexerDb) -> "EscrowRegistry":
        registry = cls()
        for table in ("src_escrow", "dst_escrow"):
            for row in db.rows(table):
                registry._escrows.setdefault(row.chain_id, set()).add(row.escrow_address)
        registry.log.info(f"Rebuilt registry with {len(registry)} escrow(s)")
        return registry

    def track(self, chain_id: int, escrow_address: str) -> bool:
        """Record an escrow. Returns False if it was already known."""
        address = escrow_address.lower()
        chain_escrows = self._escrows.setdefault(chain_id, set())
        if address in chain_escrows:
            return False
        chain_escrows.add(address)
        self.log.info(f"Discovered new escrow contract on chain {chain_id}: {address}")
        return True

    def discard(self, chain_id: int, escrow_address: str) -> None:
        self._escrows.get(chain_id, set()).discard(escrow_address.lower())

    def is_tracked(self, chain_id: int, escrow_address: str) -> bool:
        return escrow_address.lower() in self._escrows.get(chain_id, ())

    def addresses(self, chain_id: int) -> FrozenSet[str]:
        return frozenset(self._escrows.get(chain_id, ()))

    def __len__(self) -> int:
        return sum(len(s) for s in self._escrows.values())
