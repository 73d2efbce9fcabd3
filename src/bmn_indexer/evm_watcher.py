from typing import Any, AsyncIterator, Callable, Dict, List, Optional
import asyncio, logging

from eth_abi.exceptions import DecodingError
from web3 import Web3
from web3.exceptions import Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware

from .abi import ESCROW_ABI, FACTORY_ABI, event_signature
from .config import ChainSettings
from .errors import EventDecodeError
from .events import IndexedEvent, InteractionFailed, decode_log


class EvmWatcher:
    """
    Polls one chain for factory and escrow logs in bounded block ranges and
    yields them as typed events in (block, log index) order.

    Escrows are clones whose addresses are unknown up front, so escrow logs
    are fetched by topic only; logs from emitters that are neither the factory
    nor a tracked escrow are skipped when they do not decode.

    The cursor only moves past a range once the consumer has pulled, and so
    applied, every event of it. A range holding an undecodable factory or
    escrow log is retried instead of skipped.
    """

    def __init__(
        self,
        chain: ChainSettings,
        factory_address: str,
        poll_interval: float = 3.0,
        is_tracked: Optional[Callable[[int, str], bool]] = None,
    ):
        self.chain = chain
        self.w3 = Web3(Web3.HTTPProvider(chain.rpc_url, request_kwargs={"timeout": 60}))
        self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        self.factory_address = self.w3.to_checksum_address(factory_address)
        self.factory_events = self._contract_events(FACTORY_ABI)
        self.escrow_events = self._contract_events(ESCROW_ABI)
        self.is_tracked = is_tracked or (lambda chain_id, address: False)
        self.cursor = chain.start_block
        self.poll_interval = poll_interval
        self.log = logging.getLogger(f"EvmWatcher[{chain.name}]")

    def _contract_events(self, abi: List[Dict[str, Any]]) -> Dict[bytes, Any]:
        # one contract per fragment: the factory overloads SrcEscrowCreated
        events = {}
        for fragment in abi:
            contract = self.w3.eth.contract(abi=[fragment])
            events[bytes(Web3.keccak(text=event_signature(fragment)))] = getattr(contract.events, fragment["name"])()
        return events

    async def watch_events(self) -> AsyncIterator[IndexedEvent]:
        self.log.info(f"Starting log watch on chain {self.chain.chain_id} from block {self.cursor}...")
        while True:
            try:
                head = await asyncio.to_thread(lambda: self.w3.eth.block_number)
                safe_head = head - self.chain.finality_blocks
                if self.cursor > safe_head:
                    await asyncio.sleep(self.poll_interval)
                    continue
                to_block = min(self.cursor + self.chain.max_block_range - 1, safe_head)
                events = await asyncio.to_thread(self.fetch_range, self.cursor, to_block)
            except EventDecodeError as e:
                self.log.error(f"Holding cursor at block {self.cursor}: {e}")
                await asyncio.sleep(self.poll_interval)
                continue
            except Exception as e:
                self.log.error(f"Error fetching logs from block {self.cursor}: {e}")
                await asyncio.sleep(self.poll_interval)
                continue

            for event in events:
                yield event
            self.log.debug(f"Blocks {self.cursor}..{to_block}: {len(events)} event(s)")
            self.cursor = to_block + 1

    def fetch_range(self, from_block: int, to_block: int) -> List[IndexedEvent]:
        factory_logs = self.w3.eth.get_logs({
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": self.factory_address,
            "topics": [["0x" + t.hex() for t in self.factory_events]],
        })
        escrow_logs = self.w3.eth.get_logs({
            "fromBlock": from_block,
            "toBlock": to_block,
            "topics": [["0x" + t.hex() for t in self.escrow_events]],
        })
        logs = sorted(list(factory_logs) + list(escrow_logs), key=lambda l: (l["blockNumber"], l["logIndex"]))

        timestamps: Dict[int, int] = {}
        events: List[IndexedEvent] = []
        for raw in logs:
            block_number = raw["blockNumber"]
            if block_number not in timestamps:
                timestamps[block_number] = self.w3.eth.get_block(block_number)["timestamp"]
            event = self.decode(raw, timestamps[block_number])
            if isinstance(event, InteractionFailed) and event.sender is None:
                sender = self.w3.eth.get_transaction(raw["transactionHash"])["from"]
                event = event.model_copy(update={"sender": sender.lower()})
            if event is not None:
                events.append(event)
        return events

    def decode(self, raw: Any, block_timestamp: int) -> Optional[IndexedEvent]:
        """
        Typed event for one raw log, or None for logs that are not ours.
        Raises EventDecodeError when a factory or tracked escrow log does not
        decode.
        """
        topic = bytes(raw["topics"][0])
        emitter = raw["address"].lower()
        from_factory = emitter == self.factory_address.lower()
        contract_event = (self.factory_events if from_factory else self.escrow_events).get(topic)
        if contract_event is None:
            return None
        ours = from_factory or self.is_tracked(self.chain.chain_id, emitter)
        try:
            return decode_log(self.chain.chain_id, contract_event.process_log(raw), block_timestamp)
        except EventDecodeError:
            if ours:
                raise
        except (Web3Exception, DecodingError, ValueError, KeyError) as e:
            if ours:
                raise EventDecodeError(
                    f"undecodable log from {emitter} in {raw['transactionHash']!r}#{raw['logIndex']}: {e}"
                ) from e
        # some unrelated contract emitting a colliding topic with another layout
        self.log.debug(f"Skipping foreign log from {emitter} in {raw['transactionHash']!r}")
        return None
