import enum
from typing import Dict

from attr import dataclass

DEPLOYED_AT_OFFSET = 224
_STAGE_MASK = (1 << 32) - 1


class Stage(enum.IntEnum):
    SRC_WITHDRAWAL = 0
    SRC_PUBLIC_WITHDRAWAL = 1
    SRC_CANCELLATION = 2
    SRC_PUBLIC_CANCELLATION = 3
    DST_WITHDRAWAL = 4
    DST_PUBLIC_WITHDRAWAL = 5
    DST_CANCELLATION = 6


@dataclass(frozen=True)
class Timelocks:
    """
    Unpacked view of the uint256 timelocks word: one 32-bit offset (seconds
    after deployment) per stage, deployment timestamp in the top 32 bits.
    """
    deployed_at: int
    offsets: Dict[Stage, int]

    @staticmethod
    def decode(packed: int) -> "Timelocks":
        offsets = {stage: (packed >> (stage * 32)) & _STAGE_MASK for stage in Stage}
        return Timelocks(deployed_at=(packed >> DEPLOYED_AT_OFFSET) & _STAGE_MASK, offsets=offsets)

    @staticmethod
    def pack(deployed_at: int, offsets: Dict[Stage, int]) -> int:
        packed = (deployed_at & _STAGE_MASK) << DEPLOYED_AT_OFFSET
        for stage, offset in offsets.items():
            packed |= (offset & _STAGE_MASK) << (stage * 32)
        return packed

    def stage_time(self, stage: Stage) -> int:
        return self.deployed_at + self.offsets[stage]


def src_cancellation_timestamp(packed: int) -> int:
    return Timelocks.decode(packed).stage_time(Stage.SRC_CANCELLATION)
