"""Event ABIs for the contracts indexed out of the box.

Only events are listed. Each list is versioned with the contract deployment it
was taken from; adding an event means adding it here and registering a handler
in ``event_indexer.handlers``.
"""

from typing import Any, Dict, List


ABI_VERSION = "2024.1"


def _event(name: str, *inputs: Any) -> Dict[str, Any]:
    return {
        "anonymous": False,
        "inputs": [{"indexed": indexed, "name": arg, "type": typ} for arg, typ, indexed in inputs],
        "name": name,
        "type": "event",
    }


PROPERTY_SHARE_ABI: List[Dict[str, Any]] = [
    _event(
        "PropertyCreated",
        ("tokenId", "uint256", True),
        ("name", "string", False),
        ("location", "string", False),
        ("totalShares", "uint256", False),
        ("pricePerShare", "uint256", False),
    ),
    _event(
        "SharesPurchased",
        ("tokenId", "uint256", True),
        ("buyer", "address", True),
        ("amount", "uint256", False),
        ("totalPrice", "uint256", False),
    ),
    _event(
        "TransferBatch",
        ("operator", "address", True),
        ("from", "address", True),
        ("to", "address", True),
        ("ids", "uint256[]", False),
        ("values", "uint256[]", False),
    ),
    _event(
        "TransferSingle",
        ("operator", "address", True),
        ("from", "address", True),
        ("to", "address", True),
        ("id", "uint256", False),
        ("value", "uint256", False),
    ),
]

REVENUE_SPLITTER_ABI: List[Dict[str, Any]] = [
    _event(
        "FundsDepositedByManager",
        ("tokenId", "uint256", True),
        ("manager", "address", True),
        ("netAmount", "uint256", False),
        ("grossRent", "uint256", False),
        ("miscellaneousFee", "uint256", False),
    ),
    _event(
        "PayoutTriggered",
        ("tokenId", "uint256", True),
        ("grossAmount", "uint256", False),
        ("platformFee", "uint256", False),
        ("netForDistribution", "uint256", False),
    ),
    _event(
        "RewardClaimed",
        ("tokenId", "uint256", True),
        ("holder", "address", True),
        ("amount", "uint256", False),
    ),
    _event(
        "PropertyManagerAssigned",
        ("tokenId", "uint256", True),
        ("manager", "address", True),
    ),
]

MARKETPLACE_ABI: List[Dict[str, Any]] = [
    _event(
        "ListingCreated",
        ("listingId", "uint256", True),
        ("seller", "address", True),
        ("tokenId", "uint256", False),
        ("amount", "uint256", False),
        ("pricePerShare", "uint256", False),
    ),
    _event(
        "PurchaseExecuted",
        ("listingId", "uint256", True),
        ("buyer", "address", True),
        ("seller", "address", True),
        ("tokenId", "uint256", False),
        ("amount", "uint256", False),
        ("totalPrice", "uint256", False),
    ),
    _event(
        "ListingCancelled",
        ("listingId", "uint256", True),
        ("seller", "address", True),
    ),
]

USER_REGISTRY_ABI: List[Dict[str, Any]] = [
    _event(
        "UserRegistered",
        ("user", "address", True),
        ("role", "uint8", False),
        ("name", "string", False),
    ),
    _event(
        "KYCSubmitted",
        ("user", "address", True),
        ("documentHash", "string", False),
    ),
    _event("KYCApproved", ("user", "address", True)),
    _event(
        "KYCRejected",
        ("user", "address", True),
        ("reason", "string", False),
    ),
]

IDENTITY_SBT_ABI: List[Dict[str, Any]] = [
    _event(
        "SbtMinted",
        ("user", "address", True),
        ("tokenId", "uint256", True),
        ("metadataURI", "string", False),
    ),
]

ZK_REGISTRY_ABI: List[Dict[str, Any]] = [
    _event(
        "ProofSubmitted",
        ("user", "address", True),
        ("proofHash", "bytes32", True),
        ("provider", "string", False),
        ("timestamp", "uint256", False),
        ("submittedBy", "address", True),
    ),
]

BUILTIN_ABIS: Dict[str, List[Dict[str, Any]]] = {
    "PropertyShare": PROPERTY_SHARE_ABI,
    "RevenueSplitter": REVENUE_SPLITTER_ABI,
    "Marketplace": MARKETPLACE_ABI,
    "UserRegistry": USER_REGISTRY_ABI,
    "IdentitySBT": IDENTITY_SBT_ABI,
    "ZKRegistry": ZK_REGISTRY_ABI,
}
