# -*- encoding: utf-8 -*-
"""
AA Onboard
aa_onboard.event_source module

Read-only access to EntryPoint UserOperationEvent logs over JSON-RPC.

Web3EventSource is the only component that talks to the chain for receipt
polling. It exposes the latest block number and a ranged log query filtered
on the indexed userOpHash topic. Every call is a non-mutating query, so one
instance can be shared across polling threads.

Reference:
  - EIP-4337 (EntryPoint.UserOperationEvent)
"""

import logging

from web3 import Web3

logger = logging.getLogger(__name__)

USER_OPERATION_EVENT_ABI = [
    {
        "type": "event",
        "name": "UserOperationEvent",
        "anonymous": False,
        "inputs": [
            {"name": "userOpHash", "type": "bytes32", "indexed": True},
            {"name": "sender", "type": "address", "indexed": True},
            {"name": "paymaster", "type": "address", "indexed": True},
            {"name": "nonce", "type": "uint256", "indexed": False},
            {"name": "success", "type": "bool", "indexed": False},
            {"name": "actualGasCost", "type": "uint256", "indexed": False},
            {"name": "actualGasUsed", "type": "uint256", "indexed": False},
        ],
    },
]


class ConfirmationEvent:
    """A decoded UserOperationEvent. Owned by the ledger; never mutated."""

    __slots__ = (
        "user_op_hash",
        "sender",
        "paymaster",
        "nonce",
        "success",
        "actual_gas_cost",
        "actual_gas_used",
        "transaction_hash",
        "block_number",
    )

    def __init__(
        self,
        user_op_hash,
        sender,
        paymaster,
        nonce,
        success,
        actual_gas_cost,
        actual_gas_used,
        transaction_hash,
        block_number,
    ):
        self.user_op_hash = user_op_hash
        self.sender = sender
        self.paymaster = paymaster
        self.nonce = nonce
        self.success = success
        self.actual_gas_cost = actual_gas_cost
        self.actual_gas_used = actual_gas_used
        self.transaction_hash = transaction_hash
        self.block_number = block_number

    @classmethod
    def from_log(cls, log):
        """Build from a web3 decoded event log (an AttributeDict)."""
        args = log["args"]
        return cls(
            user_op_hash=Web3.to_hex(args["userOpHash"]),
            sender=args["sender"],
            paymaster=args["paymaster"],
            nonce=args["nonce"],
            success=args["success"],
            actual_gas_cost=args["actualGasCost"],
            actual_gas_used=args["actualGasUsed"],
            transaction_hash=Web3.to_hex(log["transactionHash"]),
            block_number=log["blockNumber"],
        )

    def to_dict(self):
        return {name: getattr(self, name) for name in self.__slots__}


class Web3EventSource:
    """UserOperationEvent queries against one EntryPoint contract."""

    def __init__(self, w3, entry_point_address):
        """
        Args:
            w3: Web3 instance connected to the chain the EntryPoint lives on.
            entry_point_address: EntryPoint contract address.
        """
        self.w3 = w3
        self.entry_point_address = Web3.to_checksum_address(entry_point_address)
        self.contract = w3.eth.contract(
            address=self.entry_point_address,
            abi=USER_OPERATION_EVENT_ABI,
        )

    def get_block_number(self):
        """Return the latest block number."""
        return self.w3.eth.block_number

    def get_user_operation_events(self, user_op_hash, from_block, to_block):
        """Return UserOperationEvents for ``user_op_hash`` in [from_block, to_block].

        Args:
            user_op_hash: 0x-prefixed bytes32 hex string.
            from_block: first block to search (inclusive).
            to_block: last block to search (inclusive).

        Returns:
            list of ConfirmationEvent in the order the node returned them.
        """
        logs = self.contract.events.UserOperationEvent.get_logs(
            argument_filters={"userOpHash": Web3.to_bytes(hexstr=user_op_hash)},
            from_block=from_block,
            to_block=to_block,
        )
        events = [ConfirmationEvent.from_log(log) for log in logs]
        if events:
            logger.debug(
                "Found %d UserOperationEvent(s) for %s in blocks %d-%d",
                len(events), user_op_hash, from_block, to_block,
            )
        return events
