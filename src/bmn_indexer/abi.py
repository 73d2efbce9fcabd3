"""
Event fragments of the escrow factory and the escrow contracts. Only the
events the indexer consumes are listed; the rest of the ABI is irrelevant
for log decoding.
"""

def _event(name, *inputs):
    return {"anonymous": False, "name": name, "type": "event", "inputs": list(inputs)}


def _arg(name, type_, indexed=False, components=None):
    arg = {"indexed": indexed, "internalType": type_, "name": name, "type": type_}
    if components is not None:
        arg["components"] = components
    return arg


IMMUTABLES_COMPONENTS = [
    _arg("orderHash", "bytes32"),
    _arg("hashlock", "bytes32"),
    _arg("maker", "uint256"),
    _arg("taker", "uint256"),
    _arg("token", "uint256"),
    _arg("amount", "uint256"),
    _arg("safetyDeposit", "uint256"),
    _arg("timelocks", "uint256"),
]

DST_IMMUTABLES_COMPLEMENT_COMPONENTS = [
    _arg("maker", "uint256"),
    _arg("amount", "uint256"),
    _arg("token", "uint256"),
    _arg("safetyDeposit", "uint256"),
    _arg("chainId", "uint256"),
]

FACTORY_ABI = [
    _event(
        "SrcEscrowCreated",
        _arg("srcImmutables", "tuple", components=IMMUTABLES_COMPONENTS),
        _arg("dstImmutablesComplement", "tuple", components=DST_IMMUTABLES_COMPLEMENT_COMPONENTS),
    ),
    # enhanced factory: same name, escrow address first, so a different topic
    _event(
        "SrcEscrowCreated",
        _arg("escrow", "address", indexed=True),
        _arg("srcImmutables", "tuple", components=IMMUTABLES_COMPONENTS),
        _arg("dstImmutablesComplement", "tuple", components=DST_IMMUTABLES_COMPLEMENT_COMPONENTS),
    ),
    _event(
        "DstEscrowCreated",
        _arg("escrow", "address"),
        _arg("hashlock", "bytes32"),
        _arg("taker", "uint256"),
    ),
    _event("ResolverWhitelisted", _arg("resolver", "address", indexed=True)),
    _event("ResolverAdded", _arg("resolver", "address", indexed=True), _arg("addedBy", "address", indexed=True)),
    _event("ResolverRemoved", _arg("resolver", "address", indexed=True)),
    _event(
        "ResolverSuspended",
        _arg("resolver", "address", indexed=True),
        _arg("until", "uint256"),
        _arg("reason", "string"),
    ),
    _event("ResolverReactivated", _arg("resolver", "address", indexed=True)),
    _event("AdminAdded", _arg("admin", "address", indexed=True)),
    _event("AdminRemoved", _arg("admin", "address", indexed=True)),
    _event("EmergencyPause", _arg("paused", "bool")),
    _event(
        "SwapInitiated",
        _arg("escrowSrc", "address", indexed=True),
        _arg("maker", "address", indexed=True),
        _arg("resolver", "address", indexed=True),
        _arg("volume", "uint256"),
        _arg("srcChainId", "uint256"),
        _arg("dstChainId", "uint256"),
    ),
    _event(
        "SwapCompleted",
        _arg("orderHash", "bytes32", indexed=True),
        _arg("resolver", "address", indexed=True),
        _arg("completionTime", "uint256"),
        _arg("gasUsed", "uint256"),
    ),
    _event(
        "InteractionExecuted",
        _arg("orderMaker", "address", indexed=True),
        _arg("interactionTarget", "address", indexed=True),
        _arg("interactionHash", "bytes32"),
        _arg("timestamp", "uint256"),
    ),
    _event(
        "InteractionFailed",
        _arg("orderMaker", "address", indexed=True),
        _arg("interactionTarget", "address", indexed=True),
        _arg("reason", "string"),
    ),
    _event(
        "MetricsUpdated",
        _arg("totalVolume", "uint256"),
        _arg("successRate", "uint256"),
        _arg("avgCompletionTime", "uint256"),
    ),
]

ESCROW_ABI = [
    _event("EscrowWithdrawal", _arg("secret", "bytes32")),
    _event("EscrowCancelled"),
    _event("FundsRescued", _arg("token", "address"), _arg("amount", "uint256")),
]


def event_signature(fragment) -> str:
    def _type(arg):
        if arg["type"] == "tuple":
            return "(" + ",".join(_type(c) for c in arg["components"]) + ")"
        return arg["type"]

    return f"{fragment['name']}(" + ",".join(_type(a) for a in fragment["inputs"]) + ")"
