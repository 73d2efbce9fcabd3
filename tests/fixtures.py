from bmn_indexer.address_codec import compute_escrow_address
from bmn_indexer.config import DEFAULT_FACTORY_ADDRESS, DEFAULT_SRC_IMPLEMENTATION
from bmn_indexer.events import (
    DstEscrowCreated,
    DstImmutablesComplement,
    EscrowCancelled,
    EscrowWithdrawal,
    FundsRescued,
    Immutables,
    SrcEscrowCreated,
)
from bmn_indexer.timelocks import Stage, Timelocks

BASE = 8453
ETHERLINK = 42793
FACTORY = DEFAULT_FACTORY_ADDRESS

ORDER_HASH = "0x" + "aa" * 32
HASHLOCK = "0x" + "bb" * 32
SECRET = "0x" + "cc" * 32
DST_ESCROW = "0x" + "d1" * 20

MAKER = "0x" + "11" * 20
TAKER = "0x" + "22" * 20
TOKEN = "0x" + "33" * 20
# packed Address values carry flag bits above bit 160
MAKER_PACKED = (1 << 200) | int(MAKER, 16)
TAKER_PACKED = (1 << 255) | int(TAKER, 16)
TOKEN_PACKED = int(TOKEN, 16)

DEPLOYED_AT = 1_700_000_000
TIMELOCKS = Timelocks.pack(
    DEPLOYED_AT,
    {
        Stage.SRC_WITHDRAWAL: 60,
        Stage.SRC_PUBLIC_WITHDRAWAL: 600,
        Stage.SRC_CANCELLATION: 3600,
        Stage.SRC_PUBLIC_CANCELLATION: 7200,
        Stage.DST_WITHDRAWAL: 30,
        Stage.DST_PUBLIC_WITHDRAWAL: 300,
        Stage.DST_CANCELLATION: 1800,
    },
)


def tx_hash(n: int) -> str:
    return "0x" + format(n, "064x")


def src_immutables(order_hash=ORDER_HASH, hashlock=HASHLOCK, amount=100):
    return Immutables(
        order_hash=order_hash,
        hashlock=hashlock,
        maker=MAKER_PACKED,
        taker=TAKER_PACKED,
        token=TOKEN_PACKED,
        amount=amount,
        safety_deposit=10,
        timelocks=TIMELOCKS,
    )


def src_created(
    order_hash=ORDER_HASH,
    hashlock=HASHLOCK,
    amount=100,
    chain_id=BASE,
    dst_chain_id=ETHERLINK,
    block=100,
    timestamp=DEPLOYED_AT,
    tx=1,
    escrow=None,
):
    return SrcEscrowCreated(
        chain_id=chain_id,
        address=FACTORY,
        block_number=block,
        block_timestamp=timestamp,
        transaction_hash=tx_hash(tx),
        src_immutables=src_immutables(order_hash, hashlock, amount),
        dst_immutables_complement=DstImmutablesComplement(
            maker=MAKER_PACKED,
            amount=90,
            token=0,
            safety_deposit=5,
            chain_id=dst_chain_id,
        ),
        escrow=escrow,
    )


def src_escrow_address(event) -> str:
    return event.escrow or compute_escrow_address(FACTORY, DEFAULT_SRC_IMPLEMENTATION, event.src_immutables)


def dst_created(hashlock=HASHLOCK, escrow=DST_ESCROW, chain_id=ETHERLINK, block=500, timestamp=DEPLOYED_AT + 20, tx=2):
    return DstEscrowCreated(
        chain_id=chain_id,
        address=FACTORY,
        block_number=block,
        block_timestamp=timestamp,
        transaction_hash=tx_hash(tx),
        escrow=escrow,
        hashlock=hashlock,
        taker=TAKER_PACKED,
    )


def withdrawal(escrow, chain_id, secret=SECRET, block=600, timestamp=DEPLOYED_AT + 100, tx=3):
    return EscrowWithdrawal(
        chain_id=chain_id,
        address=escrow,
        block_number=block,
        block_timestamp=timestamp,
        transaction_hash=tx_hash(tx),
        secret=secret,
    )


def cancellation(escrow, chain_id, block=700, timestamp=DEPLOYED_AT + 4000, tx=4):
    return EscrowCancelled(
        chain_id=chain_id,
        address=escrow,
        block_number=block,
        block_timestamp=timestamp,
        transaction_hash=tx_hash(tx),
    )


def rescue(escrow, chain_id, log_index=0, amount=7, block=800, tx=5):
    return FundsRescued(
        chain_id=chain_id,
        address=escrow,
        block_number=block,
        block_timestamp=DEPLOYED_AT + 9000,
        transaction_hash=tx_hash(tx),
        log_index=log_index,
        token=TOKEN,
        amount=amount,
    )
