import enum
import logging

log = logging.getLogger("FSM")


class EscrowStatus(str, enum.Enum):
    CREATED = "created"
    WITHDRAWN = "withdrawn"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not EscrowStatus.CREATED


class SwapStatus(str, enum.Enum):
    PENDING = "pending"
    SRC_CREATED = "src_created"
    DST_CREATED = "dst_created"
    BOTH_CREATED = "both_created"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def rank(self) -> int:
        return _RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self.rank == _RANK[SwapStatus.COMPLETED]


class CompletionPolicy(str, enum.Enum):
    BOTH = "both"  # completed once both legs are withdrawn
    ANY = "any"  # completed on the first withdrawal of either leg


_RANK = {
    SwapStatus.PENDING: 0,
    SwapStatus.SRC_CREATED: 1,
    SwapStatus.DST_CREATED: 1,
    SwapStatus.BOTH_CREATED: 2,
    SwapStatus.COMPLETED: 3,
    SwapStatus.CANCELLED: 3,
}


def advance_escrow(current: EscrowStatus, target: EscrowStatus) -> EscrowStatus:
    """created -> withdrawn | cancelled; terminal states never move."""
    if current.is_terminal:
        return current
    return target


def join_swap_status(current: SwapStatus, target: SwapStatus) -> SwapStatus:
    """
    Least upper bound of two swap statuses. Knowing one leg on each side
    joins to both_created; between the two terminal states the one already
    recorded wins, so status never moves backward or sideways.
    """
    if target.rank > current.rank:
        return target
    if target.rank < current.rank or target is current:
        return current
    if current.rank == 1:
        return SwapStatus.BOTH_CREATED
    log.debug(f"Keeping terminal status {current.value}, ignoring {target.value}")
    return current


def creation_status(has_src: bool, has_dst: bool) -> SwapStatus:
    if has_src and has_dst:
        return SwapStatus.BOTH_CREATED
    if has_src:
        return SwapStatus.SRC_CREATED
    if has_dst:
        return SwapStatus.DST_CREATED
    return SwapStatus.PENDING
