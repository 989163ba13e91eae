# -*- encoding: utf-8 -*-
"""
Tests for counterfactual account resolution and the SimpleAccount wrapper.

The factory's getAddress() view is answered by ScriptedProvider; the call
itself is encoded and decoded by web3.py.
"""

import pytest
from eth_account.signers.local import LocalAccount
from web3 import Web3

from aa_onboard.accounts import (
    AccountResolver,
    SimpleAccount,
    generate_owner,
)
from aa_onboard.receipts import ReceiptPoller
from tests.conftest import (
    ENTRY_POINT,
    FACTORY,
    TX_HASH,
    USER_OP_HASH,
    FakeClock,
    ScriptedEventSource,
)

ACCOUNT_ADDRESS = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"


@pytest.fixture
def owner():
    return generate_owner()


@pytest.fixture
def resolver(w3, provider, owner):
    provider.accounts[owner.address.lower()] = ACCOUNT_ADDRESS
    return AccountResolver(w3, ENTRY_POINT, FACTORY)


class TestGenerateOwner:

    def test_returns_local_account(self):
        assert isinstance(generate_owner(), LocalAccount)

    def test_keys_are_fresh(self):
        assert generate_owner().address != generate_owner().address


class TestAccountResolver:

    def test_counterfactual_address_from_factory(self, resolver, owner):
        assert resolver.get_counterfactual_address(owner.address) == ACCOUNT_ADDRESS

    def test_address_is_checksummed(self, resolver, owner):
        address = resolver.get_counterfactual_address(owner.address.lower())
        assert address == Web3.to_checksum_address(address)

    def test_call_targets_factory(self, resolver, provider, owner):
        resolver.get_counterfactual_address(owner.address)
        (params,) = provider.calls("eth_call")
        assert Web3.to_checksum_address(params[0]["to"]) == FACTORY

    def test_salt_is_encoded(self, w3, provider, owner):
        provider.accounts[owner.address.lower()] = ACCOUNT_ADDRESS
        AccountResolver(w3, ENTRY_POINT, FACTORY, salt=7).get_counterfactual_address(owner.address)
        (params,) = provider.calls("eth_call")
        data = params[0].get("data") or params[0]["input"]
        assert int(data[-64:], 16) == 7

    def test_init_code_starts_with_factory(self, resolver, owner):
        init_code = resolver.get_init_code(owner.address)
        assert init_code[:20] == Web3.to_bytes(hexstr=FACTORY)
        selector = Web3.keccak(text="createAccount(address,uint256)")[:4]
        assert init_code[20:24] == selector
        assert len(init_code) == 20 + 4 + 32 + 32

    def test_is_deployed(self, resolver, provider):
        assert resolver.is_deployed(ACCOUNT_ADDRESS) is False
        provider.code[ACCOUNT_ADDRESS.lower()] = "0x6080"
        assert resolver.is_deployed(ACCOUNT_ADDRESS) is True


class TestSimpleAccount:

    def _account(self, resolver, owner, source):
        clock = FakeClock()
        poller = ReceiptPoller(source, clock=clock, sleep=clock.sleep)
        return SimpleAccount(resolver, owner, poller)

    def test_exposes_owner_and_entry_point(self, resolver, owner):
        account = self._account(resolver, owner, ScriptedEventSource())
        assert account.owner_address == owner.address
        assert account.entry_point_address == ENTRY_POINT

    def test_counterfactual_address_cached(self, resolver, provider, owner):
        account = self._account(resolver, owner, ScriptedEventSource())
        assert account.get_counterfactual_address() == ACCOUNT_ADDRESS
        assert account.get_counterfactual_address() == ACCOUNT_ADDRESS
        assert len(provider.calls("eth_call")) == 1

    def test_receipt_returns_tx_hash(self, resolver, owner):
        account = self._account(resolver, owner, ScriptedEventSource(confirm_at=0))
        assert account.get_user_op_receipt(USER_OP_HASH) == TX_HASH

    def test_receipt_timeout_returns_none(self, resolver, owner):
        account = self._account(resolver, owner, ScriptedEventSource())
        assert account.get_user_op_receipt(USER_OP_HASH, 10000, 2000) is None
