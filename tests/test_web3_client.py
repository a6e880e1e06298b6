"""
Tests for proxy resolution and token metadata lookups (RPC calls stubbed).
"""

import pytest

from a1_triage.config import Config
from a1_triage.errors import ExternalServiceFailure
from a1_triage.web3_client import PROXY_SLOTS, Web3Client


PROXY = "0x1234567890abcdef1234567890abcdef12345678"
IMPLEMENTATION = "0x5615dEB798BB3E4dFa0139dFa1b3D433Cc23b72f"
EMPTY_SLOT = "0x" + "0" * 64


def client_with_storage(slots):
    client = Web3Client(Config())
    reads = []

    async def fake_storage(chain_id, address, slot, block_number=None):
        reads.append(slot)
        return slots.get(slot, EMPTY_SLOT)

    client.get_storage_at = fake_storage
    return client, reads


def padded(address):
    return "0x" + "0" * 24 + address[2:].lower()


@pytest.mark.asyncio
async def test_eip1967_slot_is_checked_first():
    client, reads = client_with_storage({PROXY_SLOTS["EIP-1967"]: padded(IMPLEMENTATION)})

    assert await client.resolve_proxy(1, PROXY, 18_000_000) == IMPLEMENTATION
    assert reads == [PROXY_SLOTS["EIP-1967"]]


@pytest.mark.asyncio
async def test_eip1822_slot_is_the_fallback():
    client, reads = client_with_storage({PROXY_SLOTS["EIP-1822"]: padded(IMPLEMENTATION)})

    assert await client.resolve_proxy(1, PROXY) == IMPLEMENTATION
    assert reads == [PROXY_SLOTS["EIP-1967"], PROXY_SLOTS["EIP-1822"]]


@pytest.mark.asyncio
async def test_plain_contract_is_not_a_proxy():
    client, _ = client_with_storage({})
    assert await client.resolve_proxy(1, PROXY) is None


@pytest.mark.asyncio
async def test_malformed_address_is_not_resolved():
    client, reads = client_with_storage({})
    assert await client.resolve_proxy(1, "0x1234") is None
    assert reads == []


@pytest.mark.asyncio
async def test_token_metadata_defaults_missing_fields():
    client = Web3Client(Config())
    client.connections[1] = object()

    async def fake_call(chain_id, address, abi, *args, **kwargs):
        if abi["name"] == "symbol":
            return "ODD"
        raise ExternalServiceFailure(f"{abi['name']} reverted")

    client.call_contract_function = fake_call

    metadata = await client.token_metadata(PROXY, 1)

    assert metadata.symbol == "ODD"
    assert metadata.decimals == 18
    assert metadata.name == "Unknown Token"


@pytest.mark.asyncio
async def test_token_metadata_on_unconfigured_chain_raises():
    client = Web3Client(Config())
    with pytest.raises(ExternalServiceFailure):
        await client.token_metadata(PROXY, 999)
