"""
Tests for the web3.py backend with the node replaced by mocks.

Checks the exception translation and the shape of what is sent to the
node; no network access is needed.
"""
import asyncio
import time
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, TimeExhausted

from ewaste_ledger.config import DEFAULT_DESCRIPTOR
from ewaste_ledger.ledger.backend import Receipt, load_descriptor
from ewaste_ledger.ledger.client import LedgerClient
from ewaste_ledger.ledger.errors import (
    ContractRejected, NodeTimeout, NodeUnreachable, RecordMissing,
)
from ewaste_ledger.ledger.web3_backend import Web3Backend, _translate

from conftest import CONTRACT, DEV_ADDRESS, make_settings

TX_HASH = bytes.fromhex("ab" * 32)


@pytest.fixture
def web3_backend():
    b = Web3Backend()
    b._w3 = MagicMock()
    b._contract = MagicMock()
    return b


@pytest.mark.parametrize("raised, expected", [
    (ContractLogicError("execution reverted: Item already recorded"), ContractRejected),
    (TimeExhausted("not mined"), NodeTimeout),
    (requests.exceptions.ReadTimeout("read timed out"), NodeTimeout),
    (requests.exceptions.ConnectionError("connection refused"), NodeUnreachable),
    (BadFunctionCallOutput("empty return data"), NodeUnreachable),
    (ValueError("malformed response"), NodeUnreachable),
    (OSError("network down"), NodeUnreachable),
])
def test_translate(raised, expected):
    with pytest.raises(expected):
        with _translate("op"):
            raise raised


def test_translate_passes_backend_errors_through():
    with pytest.raises(RecordMissing):
        with _translate("op"):
            raise RecordMissing("gone")


def test_connect_without_endpoint():
    with pytest.raises(NodeUnreachable):
        Web3Backend().connect("", 1.0)


def test_load_contract_requires_valid_address(web3_backend):
    with pytest.raises(NodeUnreachable):
        web3_backend.load_contract("", [])
    with pytest.raises(NodeUnreachable):
        web3_backend.load_contract("not-an-address", [])


def test_load_contract_checksums_address(web3_backend):
    web3_backend.load_contract(CONTRACT.lower(), [{"type": "function"}])
    kwargs = web3_backend._w3.eth.contract.call_args.kwargs
    assert kwargs["address"] == CONTRACT


def test_is_listening_before_connect():
    assert Web3Backend().is_listening() is False


def test_estimate_gas_from_signer(web3_backend):
    fn = web3_backend._contract.functions.recordWasteItem.return_value
    fn.estimate_gas.return_value = 42_000
    assert web3_backend.estimate_gas("recordWasteItem", ["abc123"], DEV_ADDRESS) == 42_000
    fn.estimate_gas.assert_called_once_with({"from": DEV_ADDRESS})


def test_estimate_gas_revert_is_rejected(web3_backend):
    fn = web3_backend._contract.functions.recordWasteItem.return_value
    fn.estimate_gas.side_effect = ContractLogicError("execution reverted")
    with pytest.raises(ContractRejected):
        web3_backend.estimate_gas("recordWasteItem", ["abc123"], DEV_ADDRESS)


def test_unknown_method_is_rejected(web3_backend):
    web3_backend._contract = SimpleNamespace(functions=SimpleNamespace())
    with pytest.raises(ContractRejected):
        web3_backend.estimate_gas("burnEverything", [], DEV_ADDRESS)


def test_send_transaction_signs_locally(web3_backend, signer):
    w3 = web3_backend._w3
    w3.eth.get_transaction_count.return_value = 3
    w3.eth.send_raw_transaction.return_value = TX_HASH

    def build(params):
        return {**params, "to": CONTRACT, "data": "0x", "value": 0,
                "gasPrice": 10 ** 9, "chainId": 1337}

    fn = web3_backend._contract.functions.recordWasteItem.return_value
    fn.build_transaction.side_effect = build

    tx_hash = web3_backend.send_transaction("recordWasteItem", ["abc123"], signer, 150_000)

    assert tx_hash == "0x" + "ab" * 32
    w3.eth.get_transaction_count.assert_called_once_with(DEV_ADDRESS, "pending")
    fn.build_transaction.assert_called_once_with(
        {"from": DEV_ADDRESS, "nonce": 3, "gas": 150_000})
    raw = w3.eth.send_raw_transaction.call_args.args[0]
    assert isinstance(raw, bytes) and len(raw) > 0


def test_wait_for_receipt(web3_backend):
    web3_backend._w3.eth.wait_for_transaction_receipt.return_value = {
        "status": 1, "blockNumber": 9}
    assert web3_backend.wait_for_receipt("0xab", 5.0) == Receipt(status=1, block_number=9)


def test_wait_for_receipt_timeout(web3_backend):
    web3_backend._w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("slow")
    with pytest.raises(NodeTimeout):
        web3_backend.wait_for_receipt("0xab", 0.1)


def test_call_revert_means_missing(web3_backend):
    fn = web3_backend._contract.functions.getWasteItemHistory.return_value
    fn.call.side_effect = ContractLogicError("execution reverted: Item not found")
    with pytest.raises(RecordMissing):
        web3_backend.call("getWasteItemHistory", ["never-submitted-id"])


def test_call_connection_error_is_unreachable(web3_backend):
    fn = web3_backend._contract.functions.getWasteItemHistory.return_value
    fn.call.side_effect = requests.exceptions.ConnectionError("refused")
    with pytest.raises(NodeUnreachable):
        web3_backend.call("getWasteItemHistory", ["abc123"])


def test_get_events_filters_on_item_id(web3_backend):
    item_hash = bytes.fromhex("cd" * 32)
    logs = [
        {"transactionHash": TX_HASH, "blockNumber": 5, "logIndex": 0,
         "args": {"itemId": item_hash, "status": 1}},
        {"transactionHash": TX_HASH, "blockNumber": 5, "logIndex": 1,
         "args": {"itemId": item_hash, "status": 2}},
    ]
    event = web3_backend._contract.events.WasteItemStatusUpdated.return_value
    event.get_logs.return_value = logs
    web3_backend._w3.eth.get_block.return_value = {"timestamp": 1700000000}

    records = web3_backend.get_events("WasteItemStatusUpdated", 0, {"itemId": "abc123"})

    event.get_logs.assert_called_once_with(from_block=0, argument_filters={"itemId": "abc123"})
    assert [r.log_index for r in records] == [0, 1]
    assert records[0].transaction_hash == "0x" + "ab" * 32
    assert records[0].block_timestamp == 1700000000
    assert records[1].args["status"] == 2
    web3_backend._w3.eth.get_block.assert_called_once_with(5)


def test_abi_indexes_item_id_on_history_events():
    abi = load_descriptor(DEFAULT_DESCRIPTOR)
    for name in ("WasteItemRecorded", "WasteItemStatusUpdated"):
        event = next(e for e in abi if e["type"] == "event" and e["name"] == name)
        assert event["inputs"][0] == {"name": "itemId", "type": "string", "indexed": True}


#  Nonce allocation

def _nonce_recording_backend(send_delay=0.0, pending=0):
    b = Web3Backend()
    b._w3 = MagicMock()
    b._contract = MagicMock()
    b._w3.eth.get_transaction_count.return_value = pending
    nonces = []

    def build(params):
        nonces.append(params["nonce"])
        return {**params, "to": CONTRACT, "data": "0x", "value": 0,
                "gasPrice": 10 ** 9, "chainId": 1337}

    def send(raw):
        # The node has not counted this send as pending when the next one asks.
        time.sleep(send_delay)
        return TX_HASH

    b._contract.functions.recordWasteItem.return_value.estimate_gas.return_value = 100_000
    b._contract.functions.recordWasteItem.return_value.build_transaction.side_effect = build
    b._w3.eth.send_raw_transaction.side_effect = send
    return b, nonces


def test_concurrent_sends_use_distinct_nonces(signer):
    backend, nonces = _nonce_recording_backend(send_delay=0.05)
    with ThreadPoolExecutor(max_workers=3) as pool:
        futures = [pool.submit(backend.send_transaction, "recordWasteItem",
                               [f"id{i}"], signer, 150_000) for i in range(3)]
        for f in futures:
            f.result()
    assert sorted(nonces) == [0, 1, 2]


def test_concurrent_writes_through_client_use_distinct_nonces(signer):
    backend, nonces = _nonce_recording_backend(send_delay=0.05)
    backend.connect = lambda endpoint, timeout: None
    backend.load_contract = lambda address, abi: None
    client = LedgerClient(make_settings(wait_for_receipt=False), backend=backend)

    async def scenario():
        return await asyncio.gather(*[
            client.submit_write("recordWasteItem", [f"id{i}", "Laptop", 3200, 1, "user1"], signer)
            for i in range(3)
        ])

    results = asyncio.run(scenario())
    assert all(r.ok for r in results)
    assert sorted(nonces) == [0, 1, 2]


def test_node_pending_count_ahead_of_local_nonce_wins(signer):
    backend, nonces = _nonce_recording_backend(pending=7)
    backend.send_transaction("recordWasteItem", ["a"], signer, 150_000)
    backend._w3.eth.get_transaction_count.return_value = 12
    backend.send_transaction("recordWasteItem", ["b"], signer, 150_000)
    assert nonces == [7, 12]


def test_failed_send_reseeds_nonce_from_node(signer):
    backend, nonces = _nonce_recording_backend(pending=3)
    backend.send_transaction("recordWasteItem", ["a"], signer, 150_000)
    backend._w3.eth.send_raw_transaction.side_effect = ValueError("nonce too low")
    with pytest.raises(NodeUnreachable):
        backend.send_transaction("recordWasteItem", ["b"], signer, 150_000)
    assert backend._next_nonce is None

    backend._w3.eth.send_raw_transaction.side_effect = None
    backend._w3.eth.send_raw_transaction.return_value = TX_HASH
    backend.send_transaction("recordWasteItem", ["c"], signer, 150_000)
    assert nonces == [3, 4, 3]


def test_close_forgets_connection(web3_backend):
    web3_backend.close()
    assert web3_backend.is_listening() is False
