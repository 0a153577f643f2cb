"""
Tests for SqliteRecordStore.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from ccip_relay.adapters.evm.codec import dns_encode
from ccip_relay.engine.exceptions import MalformedEncodingError
from ccip_relay.stores.records import SqliteRecordStore

ADDRESS = "0xabcd000000000000000000000000000000001234"
OTHER_ADDRESS = "0x000000000000000000000000000000000000beef"


@pytest.fixture
def store():
    store = SqliteRecordStore(":memory:")
    yield store
    store.close()


class TestRecordStore:

    def test_missing_name_and_address(self, store):
        assert store.get("alice.lisk.eth") is None
        assert store.lookup_by_address(ADDRESS) is None

    def test_upsert_and_get(self, store):
        store.upsert("alice.lisk.eth", ADDRESS)

        record = store.get("alice.lisk.eth")
        assert record.name == "alice.lisk.eth"
        assert record.dns_name == dns_encode("alice.lisk.eth")
        assert record.address.lower() == ADDRESS

    def test_wire_encoded_key(self, store):
        store.upsert(dns_encode("alice.lisk.eth"), ADDRESS)
        assert store.get("alice.lisk.eth") is not None

    def test_reverse_lookup_is_case_insensitive(self, store):
        store.upsert("alice.lisk.eth", ADDRESS)
        assert store.lookup_by_address(ADDRESS.upper().replace("0X", "0x")) == "alice.lisk.eth"
        assert store.lookup_by_address(ADDRESS) == "alice.lisk.eth"

    def test_repeated_write_is_idempotent(self, store):
        store.upsert("alice.lisk.eth", ADDRESS)
        first = store.get("alice.lisk.eth")
        store.upsert("alice.lisk.eth", ADDRESS)

        assert store.get("alice.lisk.eth") == first
        assert store.lookup_by_address(ADDRESS) == "alice.lisk.eth"

    def test_new_address_replaces_old(self, store):
        store.upsert("alice.lisk.eth", ADDRESS)
        store.upsert("alice.lisk.eth", OTHER_ADDRESS)

        assert store.get("alice.lisk.eth").address.lower() == OTHER_ADDRESS
        assert store.lookup_by_address(ADDRESS) is None
        assert store.lookup_by_address(OTHER_ADDRESS) == "alice.lisk.eth"

    def test_latest_name_wins_reverse_lookup(self, store):
        store.upsert("alice.lisk.eth", ADDRESS)
        store.upsert("bob.lisk.eth", ADDRESS)
        assert store.lookup_by_address(ADDRESS) == "bob.lisk.eth"

        store.upsert("alice.lisk.eth", ADDRESS)
        assert store.lookup_by_address(ADDRESS) == "alice.lisk.eth"

    def test_invalid_address(self, store):
        with pytest.raises(ValueError):
            store.upsert("alice.lisk.eth", "0x1234")

    def test_malformed_wire_name(self, store):
        with pytest.raises(MalformedEncodingError):
            store.upsert(b"\x09abc", ADDRESS)

    def test_trailing_bytes_do_not_create_a_second_key(self, store):
        with pytest.raises(MalformedEncodingError):
            store.upsert(dns_encode("alice.lisk.eth") + b"\xff\xee", ADDRESS)
        store.upsert("alice.lisk.eth", OTHER_ADDRESS)

        assert store.lookup_by_address(ADDRESS) is None
        assert store.lookup_by_address(OTHER_ADDRESS) == "alice.lisk.eth"

    def test_concurrent_upserts_to_different_names(self, tmp_path):
        store = SqliteRecordStore(str(tmp_path / "ens.db"))
        addresses = {f"user{i}.lisk.eth": f"0x{i + 1:040x}" for i in range(50)}
        try:
            with ThreadPoolExecutor(max_workers=8) as pool:
                list(pool.map(lambda item: store.upsert(*item), addresses.items()))

            for name, address in addresses.items():
                assert store.get(name).address.lower() == address
                assert store.lookup_by_address(address) == name
        finally:
            store.close()

    def test_persists_to_file(self, tmp_path):
        path = tmp_path / "records" / "ens.db"
        first = SqliteRecordStore(str(path))
        first.upsert("alice.lisk.eth", ADDRESS)
        first.close()

        second = SqliteRecordStore(str(path))
        try:
            assert second.lookup_by_address(ADDRESS) == "alice.lisk.eth"
        finally:
            second.close()
