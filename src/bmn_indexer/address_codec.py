from typing import Any, Tuple, Union
from hexbytes import HexBytes
from web3 import Web3
from eth_abi.abi import encode as abi_encode

UINT160_MAX = (1 << 160) - 1

# EIP-1167 minimal proxy, as deployed by the escrow factory through Clones.cloneDeterministic
CLONE_PROXY_PREFIX = bytes.fromhex("3d602d80600a3d3981f3363d3d373d3d3d363d73")
CLONE_PROXY_SUFFIX = bytes.fromhex("5af43d82803e903d91602b57fd5bf3")

BytesLike = Union[str, bytes]


def _to_bytes(value: BytesLike, size: int, name: str) -> bytes:
    try:
        raw = bytes(HexBytes(value))
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name} is not valid hex: {value!r}") from e
    if len(raw) != size:
        raise ValueError(f"{name} must be {size} bytes, got {len(raw)}")
    return raw


def decode_packed_address(value: int) -> str:
    """
    Address type of the 1inch contracts: an address packed into the low 160
    bits of a uint256. Anything above bit 160 (flags) is dropped.
    """
    return "0x" + format(value & UINT160_MAX, "040x")


def compute_deployment_address(factory: BytesLike, salt: BytesLike, init_code_hash: BytesLike) -> str:
    """
    CREATE2 address: keccak256(0xff ++ factory ++ salt ++ init_code_hash)[12:]
    """
    data = (
        b"\xff"
        + _to_bytes(factory, 20, "factory")
        + _to_bytes(salt, 32, "salt")
        + _to_bytes(init_code_hash, 32, "init_code_hash")
    )
    return "0x" + bytes(Web3.keccak(data)[12:]).hex()


def clone_init_code(implementation: BytesLike) -> bytes:
    return CLONE_PROXY_PREFIX + _to_bytes(implementation, 20, "implementation") + CLONE_PROXY_SUFFIX


def clone_init_code_hash(implementation: BytesLike) -> bytes:
    return bytes(Web3.keccak(clone_init_code(implementation)))


def immutables_words(immutables: Any) -> Tuple[Any, ...]:
    return (
        _to_bytes(immutables.order_hash, 32, "order_hash"),
        _to_bytes(immutables.hashlock, 32, "hashlock"),
        immutables.maker,
        immutables.taker,
        immutables.token,
        immutables.amount,
        immutables.safety_deposit,
        immutables.timelocks,
    )


def escrow_salt(immutables: Any) -> bytes:
    """
    Bytes-perfect mirror of ImmutablesLib.hash(): keccak256 over the eight
    32-byte words of the Immutables struct. Every member is a static 32-byte
    type, so abi.encode and the in-memory layout coincide.
    """
    encoded = abi_encode(
        ["bytes32", "bytes32", "uint256", "uint256", "uint256", "uint256", "uint256", "uint256"],
        list(immutables_words(immutables)),
    )
    return bytes(Web3.keccak(encoded))


def compute_escrow_address(factory: BytesLike, implementation: BytesLike, immutables: Any) -> str:
    return compute_deployment_address(
        factory, escrow_salt(immutables), clone_init_code_hash(implementation)
    )
