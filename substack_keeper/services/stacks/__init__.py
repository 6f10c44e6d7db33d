"""
Stacks wire layer: addresses, Clarity values, transactions and the HTTP API.

``api_client`` imports settings; import it from its module.
"""

from .c32 import c32_address, c32_address_decode
from .clarity import ClarityType, ClarityValue, deserialize, unwrap
from .transaction import StacksPrivateKey, ContractCallTransaction, make_contract_call

__all__ = [
    "c32_address",
    "c32_address_decode",
    "ClarityType",
    "ClarityValue",
    "deserialize",
    "unwrap",
    "StacksPrivateKey",
    "ContractCallTransaction",
    "make_contract_call",
]
