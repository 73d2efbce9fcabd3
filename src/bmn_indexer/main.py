from contextlib import asynccontextmanager
from typing import Any, List, Mapping, Optional, Union
import asyncio, logging

import attr
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from rich.logging import RichHandler
import uvicorn

from .config import Settings
from .db import escrow_id
from .errors import EventDecodeError
from .events import IndexedEvent
from .evm_watcher import EvmWatcher
from .indexer import EscrowIndexer


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)-12s %(levelname)-8s %(message)s",
        handlers=[RichHandler(rich_tracebacks=True)],
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    log = logging.getLogger("indexer")

    indexer = EscrowIndexer(
        completion_policy=settings.completion_policy,
        src_implementation=settings.src_implementation,
        chain_ids=settings.chain_ids,
    )
    app.state.indexer = indexer
    log.info(f"Swap completion policy: {settings.completion_policy.value}")

    watchers_task = asyncio.create_task(run_watchers(indexer, settings, log))
    try:
        yield
    finally:
        watchers_task.cancel()
        try:
            await watchers_task
        except asyncio.CancelledError:
            pass
        log.info("Shutting down the indexer")


def _describe(ev: Union[IndexedEvent, Mapping[str, Any]]) -> str:
    if isinstance(ev, IndexedEvent):
        return f"{type(ev).__name__} in tx {ev.transaction_hash}"
    return f"{ev.get('kind', 'untagged')} event"


async def apply_event(
    indexer: EscrowIndexer,
    ev: Union[IndexedEvent, Mapping[str, Any]],
    log: logging.Logger,
    retry_delay: float = 1.0,
    max_retry_delay: float = 60.0,
) -> bool:
    """
    Apply one event, retrying with backoff until it lands. Only a malformed
    event is dropped; anything else blocks the chain's stream rather than
    losing the event.
    """
    delay = retry_delay
    while True:
        try:
            return indexer.handle(ev)
        except EventDecodeError as e:
            log.error(f"{_describe(ev)} is malformed, skipped: {e}")
            return False
        except Exception:
            log.exception(f"Applying {_describe(ev)} failed, retrying in {delay:.1f}s")
            await asyncio.sleep(delay)
            delay = min(delay * 2, max_retry_delay)


async def consume(watcher: EvmWatcher, indexer: EscrowIndexer, log: logging.Logger, retry_delay: float = 1.0):
    # pulling the next event is the acknowledgement that lets the watcher move its cursor
    async for ev in watcher.watch_events():
        await apply_event(indexer, ev, log, retry_delay)


async def run_watchers(indexer: EscrowIndexer, settings: Settings, log: logging.Logger):
    consumers = []
    for chain in settings.chains:
        if not chain.rpc_url:
            log.warning(f"No RPC configured for {chain.name} ({chain.chain_id}), not indexing it")
            continue
        log.info(f"Initializing {chain.name} watcher...")
        watcher = EvmWatcher(
            chain, settings.factory_address, settings.poll_interval, is_tracked=indexer.registry.is_tracked
        )
        consumers.append(asyncio.create_task(consume(watcher, indexer, log)))
    if consumers:
        await asyncio.gather(*consumers)


app = FastAPI(lifespan=lifespan)
origins = [
    "*",
]


def _indexer(request: Request) -> EscrowIndexer:
    return request.app.state.indexer


def _row(row) -> dict:
    return attr.asdict(row)


@app.get("/health")
async def health(request: Request):
    indexer = _indexer(request)
    return {
        "status": "ok",
        "tracked_escrows": len(indexer.registry),
        "last_blocks": {str(s.chain_id): s.last_updated_block for s in indexer.db.rows("chain_statistics")},
    }


@app.get("/swaps")
async def list_swaps(request: Request, hashlock: Optional[str] = None, status: Optional[str] = None):
    db = _indexer(request).db
    if hashlock is not None:
        swap = db.find_swap_by_hashlock(hashlock.lower())
        swaps = [swap] if swap is not None else []
    else:
        swaps = db.rows("atomic_swap")
    if status is not None:
        swaps = [s for s in swaps if s.status.value == status]
    return [_row(s) for s in sorted(swaps, key=lambda s: s.id)]


@app.get("/swaps/{swap_id}")
async def get_swap(swap_id: str, request: Request):
    swap = _indexer(request).db.get("atomic_swap", swap_id.lower())
    if swap is None:
        raise HTTPException(status_code=404, detail=f"Swap {swap_id} not found")
    return _row(swap)


@app.get("/escrows/{chain_id}/{address}")
async def get_escrow(chain_id: int, address: str, request: Request):
    db = _indexer(request).db
    key = escrow_id(chain_id, address.lower())
    for table, leg in (("src_escrow", "src"), ("dst_escrow", "dst")):
        row = db.get(table, key)
        if row is not None:
            withdrawals: List = db.rows("escrow_withdrawal", chain_id=chain_id, escrow_address=row.escrow_address)
            cancellations: List = db.rows("escrow_cancellation", chain_id=chain_id, escrow_address=row.escrow_address)
            rescues: List = db.rows("funds_rescued", chain_id=chain_id, escrow_address=row.escrow_address)
            return {
                "leg": leg,
                "escrow": _row(row),
                "withdrawals": [_row(r) for r in withdrawals],
                "cancellations": [_row(r) for r in cancellations],
                "rescues": [_row(r) for r in rescues],
            }
    raise HTTPException(status_code=404, detail=f"Escrow {key} not found")


@app.get("/statistics")
async def list_statistics(request: Request):
    stats = _indexer(request).statistics()
    return [_row(stats[chain_id]) for chain_id in sorted(stats)]


@app.get("/statistics/{chain_id}")
async def get_statistics(chain_id: int, request: Request):
    stats = _indexer(request).db.get("chain_statistics", str(chain_id))
    if stats is None:
        raise HTTPException(status_code=404, detail=f"No statistics for chain {chain_id}")
    return _row(stats)


app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def run():
    uvicorn.run("bmn_indexer.main:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
