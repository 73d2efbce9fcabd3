from typing import Iterable
import logging

from .db import ChainStatistics, IndexerDb


class StatisticsAggregator:
    """
    Running per-chain counters. Every method is a read-modify-write of one
    ChainStatistics row and must run inside the unit of work of the event it
    accounts for, so counters and entity rows commit or roll back together.
    """

    def __init__(self, db: IndexerDb):
        self.db = db
        self.log = logging.getLogger("Statistics")

    def seed(self, chain_ids: Iterable[int]) -> None:
        with self.db.transaction():
            for chain_id in chain_ids:
                if self.db.insert_if_absent("chain_statistics", ChainStatistics(id=str(chain_id), chain_id=chain_id)):
                    self.log.info(f"Initialized statistics for chain {chain_id}")

    def get(self, chain_id: int) -> ChainStatistics:
        return self.db.get("chain_statistics", str(chain_id)) or ChainStatistics(id=str(chain_id), chain_id=chain_id)

    def _bump(self, chain_id: int, block_number: int, **increments: int) -> ChainStatistics:
        current = self.get(chain_id)
        changes = {name: getattr(current, name) + delta for name, delta in increments.items()}
        changes["last_updated_block"] = max(current.last_updated_block, block_number)
        if self.db.get("chain_statistics", current.id) is None:
            self.db.insert_if_absent("chain_statistics", current)
        return self.db.update("chain_statistics", current.id, **changes)

    def record_src_escrow(self, chain_id: int, amount: int, block_number: int) -> ChainStatistics:
        return self._bump(chain_id, block_number, total_src_escrows=1, total_volume_locked=amount)

    def record_dst_escrow(self, chain_id: int, block_number: int) -> ChainStatistics:
        return self._bump(chain_id, block_number, total_dst_escrows=1)

    def record_withdrawal(self, chain_id: int, amount: int, block_number: int) -> ChainStatistics:
        return self._bump(chain_id, block_number, total_withdrawals=1, total_volume_withdrawn=amount)

    def record_cancellation(self, chain_id: int, block_number: int) -> ChainStatistics:
        return self._bump(chain_id, block_number, total_cancellations=1)

    def touch(self, chain_id: int, block_number: int) -> ChainStatistics:
        return self._bump(chain_id, block_number)
