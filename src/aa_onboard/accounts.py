# -*- encoding: utf-8 -*-
"""
AA Onboard
aa_onboard.accounts module

Counterfactual ERC-4337 SimpleAccount addresses.

A SimpleAccount's address is fixed by the factory's CREATE2 parameters before
the account contract exists. The derivation itself is delegated to the
factory's getAddress(owner, salt) view, so this module never reimplements
the CREATE2 math. The owner is a plain secp256k1 key from eth_account.

SimpleAccount composes a resolver, an owner key and a ReceiptPoller behind
one object, giving callers the address and receipt lookups together.

Reference:
  - EIP-4337 (SimpleAccountFactory, initCode)
"""

import logging

from eth_account import Account
from web3 import Web3

from aa_onboard.receipts import (
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_TIMEOUT_MS,
    Found,
)

logger = logging.getLogger(__name__)

DEFAULT_SALT = 0

SIMPLE_ACCOUNT_FACTORY_ABI = [
    {
        "type": "function",
        "name": "getAddress",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "salt", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "type": "function",
        "name": "createAccount",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "salt", "type": "uint256"},
        ],
        "outputs": [{"name": "ret", "type": "address"}],
    },
]


def generate_owner():
    """Create a fresh random owner key.

    Returns:
        An eth_account LocalAccount. The caller is responsible for keeping
        the key; nothing here persists it.
    """
    return Account.create()


class AccountResolver:
    """Derives SimpleAccount addresses from a fixed EntryPoint and factory."""

    def __init__(self, w3, entry_point_address, factory_address, salt=DEFAULT_SALT):
        """
        Args:
            w3: Web3 instance.
            entry_point_address: EntryPoint the accounts are bound to.
            factory_address: SimpleAccountFactory address.
            salt: CREATE2 salt passed to the factory.
        """
        self.w3 = w3
        self.entry_point_address = Web3.to_checksum_address(entry_point_address)
        self.factory_address = Web3.to_checksum_address(factory_address)
        self.salt = salt
        self.factory = w3.eth.contract(
            address=self.factory_address,
            abi=SIMPLE_ACCOUNT_FACTORY_ABI,
        )

    def get_counterfactual_address(self, owner_address):
        """Return the checksummed address the owner's account will have."""
        owner = Web3.to_checksum_address(owner_address)
        address = self.factory.functions.getAddress(owner, self.salt).call()
        logger.debug("Owner %s maps to account %s", owner, address)
        return Web3.to_checksum_address(address)

    def get_init_code(self, owner_address):
        """Return initCode (factory address || createAccount calldata) as bytes."""
        owner = Web3.to_checksum_address(owner_address)
        calldata = self.factory.encode_abi("createAccount", args=[owner, self.salt])
        return Web3.to_bytes(hexstr=self.factory_address) + Web3.to_bytes(hexstr=calldata)

    def is_deployed(self, account_address):
        """True if contract code already exists at ``account_address``."""
        code = self.w3.eth.get_code(Web3.to_checksum_address(account_address))
        return len(code) > 0


class SimpleAccount:
    """An owner key bound to its counterfactual account and receipt lookups.

    Wraps the resolver and poller instead of patching either, so the
    receipt lookup can be swapped or tested independently of the chain.
    """

    def __init__(self, resolver, owner, poller):
        """
        Args:
            resolver: AccountResolver.
            owner: eth_account LocalAccount controlling the account.
            poller: ReceiptPoller used for UserOperation confirmations.
        """
        self.resolver = resolver
        self.owner = owner
        self.poller = poller
        self._address = None

    @property
    def owner_address(self):
        return self.owner.address

    @property
    def entry_point_address(self):
        return self.resolver.entry_point_address

    def get_counterfactual_address(self):
        """Return the account address, querying the factory once."""
        if self._address is None:
            self._address = self.resolver.get_counterfactual_address(self.owner.address)
        return self._address

    def get_user_op_receipt(
        self,
        user_op_hash,
        timeout_ms=DEFAULT_TIMEOUT_MS,
        poll_interval_ms=DEFAULT_POLL_INTERVAL_MS,
    ):
        """Wait for a UserOperation sent from this account to be executed.

        Returns:
            The transaction hash as a hex string, or None on timeout.
        """
        outcome = self.poller.await_receipt(user_op_hash, timeout_ms, poll_interval_ms)
        if isinstance(outcome, Found):
            return outcome.transaction_hash
        return None
