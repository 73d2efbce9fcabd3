from typing import List, Optional
import os

import dotenv
from pydantic import BaseModel, ValidationError, field_validator

from .errors import ConfigError
from .state_machine import CompletionPolicy

BASE_CHAIN_ID = 8453
ETHERLINK_CHAIN_ID = 42793

DEFAULT_FACTORY_ADDRESS = "0x75ee15f6bfdd06aee499ed95e8d92a114659f4d1"
DEFAULT_SRC_IMPLEMENTATION = "0x77cc1a51dc5855bcf0d9f1c1fceaee7fb855a535"


def _address(v: str) -> str:
    body = v[2:] if v.startswith(("0x", "0X")) else v
    if len(body) != 40:
        raise ValueError(f"not a 20-byte address: {v}")
    int(body, 16)
    return "0x" + body.lower()


class ChainSettings(BaseModel):
    name: str
    chain_id: int
    rpc_url: str = ""
    start_block: int = 0
    # Etherlink RPCs reject eth_getLogs spans of 100 blocks or more
    max_block_range: int = 2000
    finality_blocks: int = 0


class Settings(BaseModel):
    chains: List[ChainSettings]
    factory_address: str = DEFAULT_FACTORY_ADDRESS
    src_implementation: str = DEFAULT_SRC_IMPLEMENTATION
    completion_policy: CompletionPolicy = CompletionPolicy.BOTH
    poll_interval: float = 3.0
    log_level: str = "INFO"

    @field_validator("factory_address", "src_implementation")
    @classmethod
    def _check_address(cls, v: str) -> str:
        return _address(v)

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {v}")
        return v

    @property
    def chain_ids(self) -> List[int]:
        return [c.chain_id for c in self.chains]

    def chain(self, chain_id: int) -> Optional[ChainSettings]:
        return next((c for c in self.chains if c.chain_id == chain_id), None)

    @staticmethod
    def from_env(load_dotenv: bool = True) -> "Settings":
        if load_dotenv:
            dotenv.load_dotenv()
        try:
            return Settings(
                chains=[
                    ChainSettings(
                        name="base",
                        chain_id=BASE_CHAIN_ID,
                        rpc_url=os.getenv("BASE_RPC", ""),
                        start_block=int(os.getenv("BASE_START_BLOCK", "33726385")),
                        max_block_range=int(os.getenv("BASE_MAX_BLOCK_RANGE", "5000")),
                    ),
                    ChainSettings(
                        name="etherlink",
                        chain_id=ETHERLINK_CHAIN_ID,
                        rpc_url=os.getenv("ETHERLINK_RPC", ""),
                        start_block=int(os.getenv("ETHERLINK_START_BLOCK", "22523319")),
                        max_block_range=int(os.getenv("ETHERLINK_MAX_BLOCK_RANGE", "95")),
                        finality_blocks=int(os.getenv("ETHERLINK_FINALITY_BLOCKS", "6")),
                    ),
                ],
                factory_address=os.getenv("FACTORY_ADDRESS", DEFAULT_FACTORY_ADDRESS),
                src_implementation=os.getenv("SRC_IMPLEMENTATION", DEFAULT_SRC_IMPLEMENTATION),
                completion_policy=os.getenv("SWAP_COMPLETION_POLICY", CompletionPolicy.BOTH.value).lower(),
                poll_interval=float(os.getenv("POLL_INTERVAL", "3")),
                log_level=os.getenv("LOG_LEVEL", "INFO"),
            )
        except (ValidationError, ValueError) as e:
            raise ConfigError(f"Invalid indexer configuration: {e}") from e
