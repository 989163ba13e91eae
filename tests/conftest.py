# -*- encoding: utf-8 -*-
"""
AA Onboard Test Configuration

Shared pytest fixtures for the onboarding test suite.

Chain access goes through real web3.py objects backed by ScriptedProvider,
a JSON-RPC provider that answers from canned chain state instead of a
node. Contract calls and event logs are ABI-encoded with eth_abi so that
web3's own request formatting and log decoding run unmodified.

Polling tests use FakeClock, whose time only advances when the poller
sleeps, so timeouts are exact and the suite never waits on a real clock.

No mock library, no monkeypatching.
"""

import itertools

import pytest
from eth_abi import encode as abi_encode
from web3 import Web3
from web3.providers.base import BaseProvider

from aa_onboard.event_source import ConfirmationEvent
from aa_onboard.registry import AccountRegistry

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CHAIN_ID = 31337

# EntryPoint v0.6 and its SimpleAccountFactory, as deployed on public chains
ENTRY_POINT = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"
FACTORY = "0x9406Cc6185a346906296840746125a0E44976454"

USER_OP_HASH = "0x" + "ab" * 32
OTHER_USER_OP_HASH = "0x" + "cd" * 32
TX_HASH = "0x" + "11" * 32
SENDER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
PAYMASTER = "0x0000000000000000000000000000000000000000"

USER_OPERATION_EVENT_TOPIC = Web3.to_hex(Web3.keccak(
    text="UserOperationEvent(bytes32,address,address,uint256,bool,uint256,uint256)"
))


# ---------------------------------------------------------------------------
# Scripted JSON-RPC provider
# ---------------------------------------------------------------------------

def _topic_for_address(address):
    return "0x" + "00" * 12 + address[2:].lower()


def _as_int(value):
    return value if isinstance(value, int) else int(value, 16)


def _topic_matches(topic, want):
    if want is None:
        return True
    if isinstance(want, (list, tuple)):
        return any(_topic_matches(topic, w) for w in want)
    if isinstance(want, bytes):
        want = "0x" + want.hex()
    return topic.lower() == want.lower()


def encode_user_operation_log(
    user_op_hash=USER_OP_HASH,
    tx_hash=TX_HASH,
    block_number=150,
    sender=SENDER,
    paymaster=PAYMASTER,
    nonce=0,
    success=True,
    gas_cost=21_000_000,
    gas_used=105_000,
    log_index=0,
):
    """Return a raw eth_getLogs entry for a UserOperationEvent."""
    data = abi_encode(
        ["uint256", "bool", "uint256", "uint256"],
        [nonce, success, gas_cost, gas_used],
    )
    return {
        "address": ENTRY_POINT,
        "topics": [
            USER_OPERATION_EVENT_TOPIC,
            user_op_hash,
            _topic_for_address(sender),
            _topic_for_address(paymaster),
        ],
        "data": "0x" + data.hex(),
        "blockNumber": hex(block_number),
        "blockHash": "0x" + "22" * 32,
        "transactionHash": tx_hash,
        "transactionIndex": "0x0",
        "logIndex": hex(log_index),
        "removed": False,
    }


class ScriptedProvider(BaseProvider):
    """JSON-RPC provider answering from in-memory chain state.

    Attributes:
        block_number: value returned for eth_blockNumber.
        logs: raw log entries; eth_getLogs filters them by block range
            and topics the way a node would.
        accounts: maps owner address (lowercase) to the account address
            returned by the factory's getAddress().
        default_account: getAddress() result for owners not in ``accounts``.
        code: maps address (lowercase) to deployed bytecode hex.
        requests: every (method, params) seen, in order.
    """

    def __init__(self):
        super().__init__()
        self.block_number = 0
        self.logs = []
        self.accounts = {}
        self.default_account = None
        self.code = {}
        self.requests = []
        self._ids = itertools.count(1)

    def is_connected(self, show_traceback=False):
        return True

    def make_request(self, method, params):
        self.requests.append((method, params))
        handler = getattr(self, "_" + method, None)
        if handler is None:
            raise NotImplementedError(f"ScriptedProvider does not answer {method}")
        return {"jsonrpc": "2.0", "id": next(self._ids), "result": handler(params)}

    def _eth_chainId(self, params):
        return hex(CHAIN_ID)

    def _eth_blockNumber(self, params):
        return hex(self.block_number)

    def _eth_getCode(self, params):
        return self.code.get(params[0].lower(), "0x")

    def _eth_call(self, params):
        # getAddress(address,uint256): selector + owner word + salt word
        data = params[0].get("data") or params[0]["input"]
        owner = "0x" + data[10 + 24:10 + 64]
        account = self.accounts.get(owner.lower(), self.default_account)
        if account is None:
            raise KeyError(f"no account scripted for owner {owner}")
        return "0x" + abi_encode(["address"], [account]).hex()

    def _eth_getLogs(self, params):
        flt = params[0]
        lo = _as_int(flt["fromBlock"])
        hi = _as_int(flt["toBlock"])
        wanted = flt.get("topics") or []
        matched = []
        for log in self.logs:
            if not lo <= int(log["blockNumber"], 16) <= hi:
                continue
            if all(
                _topic_matches(log["topics"][i], want)
                for i, want in enumerate(wanted)
            ):
                matched.append(log)
        return matched

    def calls(self, method):
        return [params for m, params in self.requests if m == method]


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def w3(provider):
    """A real Web3 instance talking to ScriptedProvider."""
    return Web3(provider)


# ---------------------------------------------------------------------------
# Polling helpers
# ---------------------------------------------------------------------------

class FakeClock:
    """Monotonic clock that only moves when sleep() is called."""

    def __init__(self, start=1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedEventSource:
    """Event source with a scripted chain head and pluggable failures.

    Each get_block_number() call advances the head by ``blocks_per_call``.
    The confirmation event is visible once the head reaches
    ``confirm_at`` (None means never). ``fail`` makes every call raise.
    """

    def __init__(self, head=500, blocks_per_call=0, confirm_at=None,
                 event=None, fail=False):
        self.head = head
        self.blocks_per_call = blocks_per_call
        self.confirm_at = confirm_at
        self.event = event if event is not None else make_event()
        self.fail = fail
        self.block_number_calls = 0
        self.queries = []

    def get_block_number(self):
        self.block_number_calls += 1
        if self.fail:
            raise ConnectionError("RPC endpoint unreachable")
        self.head += self.blocks_per_call
        return self.head

    def get_user_operation_events(self, user_op_hash, from_block, to_block):
        self.queries.append((user_op_hash, from_block, to_block))
        if self.fail:
            raise ConnectionError("RPC endpoint unreachable")
        if self.confirm_at is not None and self.head >= self.confirm_at:
            return [self.event]
        return []

    @property
    def network_calls(self):
        return self.block_number_calls + len(self.queries)


def make_event(tx_hash=TX_HASH, user_op_hash=USER_OP_HASH, block_number=150, success=True):
    return ConfirmationEvent(
        user_op_hash=user_op_hash,
        sender=SENDER,
        paymaster=PAYMASTER,
        nonce=0,
        success=success,
        actual_gas_cost=21_000_000,
        actual_gas_used=105_000,
        transaction_hash=tx_hash,
        block_number=block_number,
    )


@pytest.fixture
def clock():
    return FakeClock()


# ---------------------------------------------------------------------------
# Registry fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def registry():
    """In-memory AccountRegistry."""
    return AccountRegistry()


@pytest.fixture
def registry_path(tmp_path):
    return tmp_path / "accounts.json"
