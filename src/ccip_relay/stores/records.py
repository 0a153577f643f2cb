"""
SQLite-backed record store for resolved names.

Maps a DNS wire-encoded name to the address it last resolved to, with a
case-insensitive reverse index on the address. Writes are insert-or-replace
keyed by name; a store-wide ``seq`` counter orders writes so a reverse lookup
returns the name most recently written for an address.
"""

import logging
import os
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Optional, Union

from eth_utils import is_hex_address, to_checksum_address

from ..adapters.evm.codec import dns_decode, dns_encode
from ..engine.exceptions import RecordStoreError
from ..schemas.records import ResolutionRecord

logger = logging.getLogger(__name__)

NameLike = Union[str, bytes]


class SqliteRecordStore:
    """Thread-safe name -> address store.

    Args:
        db_path: sqlite file path or ``":memory:"``.
        table: Table name.
        journal_mode: SQLite journal mode, applied to on-disk databases.

    Example:
        >>> store = SqliteRecordStore(":memory:")
        >>> store.upsert("alice.lisk.eth", "0x000000000000000000000000000000000000abcd")
        >>> store.lookup_by_address("0x000000000000000000000000000000000000ABCD")
        'alice.lisk.eth'
    """

    def __init__(self, db_path: str = ":memory:", *, table: str = "ens_records", journal_mode: str = "WAL") -> None:
        self.db_path = str(db_path)
        self.table = table
        self.journal_mode = journal_mode
        self._lock = threading.RLock()
        self._conn = self._init_connection()

    def _init_connection(self) -> sqlite3.Connection:
        if self.db_path != ":memory:":
            self.db_path = os.path.abspath(os.path.expanduser(self.db_path))
            dir_path = os.path.dirname(self.db_path)
            if dir_path:
                os.makedirs(dir_path, exist_ok=True)

        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            if self.db_path != ":memory:":
                conn.execute(f"PRAGMA journal_mode={self.journal_mode}")
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {self.table} ("
                "name BLOB PRIMARY KEY, "
                "address TEXT NOT NULL, "
                "address_lc TEXT NOT NULL, "
                "seq INTEGER NOT NULL, "
                "updated_at REAL NOT NULL"
                ")"
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS {self.table}_address_idx ON {self.table}(address_lc, seq)"
            )
            conn.commit()
        except sqlite3.Error as e:
            raise RecordStoreError(f"Cannot open record store at {self.db_path}", detail=str(e)) from e
        return conn

    @staticmethod
    def _encode_name(name: NameLike) -> bytes:
        if isinstance(name, (bytes, bytearray, memoryview)):
            # Re-encode so every spelling of a name maps to one key.
            return dns_encode(dns_decode(bytes(name)))
        return dns_encode(name)

    def upsert(self, name: NameLike, address: str) -> None:
        """
        Insert or replace the record for ``name``.

        Repeating a write with the same arguments changes nothing observable;
        a different address for the same name replaces the old one.

        Args:
            name: Dotted name or its wire encoding.
            address: Address the name resolves to.

        Raises:
            ValueError: If ``address`` is not an EVM address.
            RecordStoreError: If the write fails.
        """
        if not is_hex_address(address):
            raise ValueError(f"Invalid EVM address: {address!r}")
        key = self._encode_name(name)
        checksum = to_checksum_address(address)
        now = datetime.now(timezone.utc).timestamp()

        with self._lock:
            try:
                current = self._conn.execute(
                    f"SELECT address_lc, seq FROM {self.table} WHERE name = ?", (key,)
                ).fetchone()
                if current is not None and current[0] == checksum.lower() and self._is_latest(current[0], current[1]):
                    return
                self._conn.execute(
                    f"INSERT OR REPLACE INTO {self.table} (name, address, address_lc, seq, updated_at) "
                    f"VALUES (?, ?, ?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM {self.table}), ?)",
                    (key, checksum, checksum.lower(), now),
                )
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise RecordStoreError("Failed to write record", detail=str(e)) from e
        logger.info("Stored record %s -> %s", dns_decode(key), checksum)

    def _is_latest(self, address_lc: str, seq: int) -> bool:
        row = self._conn.execute(
            f"SELECT MAX(seq) FROM {self.table} WHERE address_lc = ?", (address_lc,)
        ).fetchone()
        return row is not None and row[0] == seq

    def get(self, name: NameLike) -> Optional[ResolutionRecord]:
        """Return the record for ``name``, or None."""
        key = self._encode_name(name)
        with self._lock:
            try:
                row = self._conn.execute(
                    f"SELECT name, address, updated_at FROM {self.table} WHERE name = ?", (key,)
                ).fetchone()
            except sqlite3.Error as e:
                raise RecordStoreError("Failed to read record", detail=str(e)) from e
        if row is None:
            return None
        return self._to_record(row)

    def lookup_by_address(self, address: str) -> Optional[str]:
        """
        Reverse lookup: the name most recently written for ``address``.

        The match is case-insensitive. A miss returns None; only store
        failures raise.

        Raises:
            RecordStoreError: If the read fails.
        """
        with self._lock:
            try:
                row = self._conn.execute(
                    f"SELECT name FROM {self.table} WHERE address_lc = ? ORDER BY seq DESC LIMIT 1",
                    (address.lower(),),
                ).fetchone()
            except sqlite3.Error as e:
                raise RecordStoreError("Failed to read record", detail=str(e)) from e
        if row is None:
            return None
        return dns_decode(bytes(row[0]))

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @staticmethod
    def _to_record(row) -> ResolutionRecord:
        dns_name = bytes(row[0])
        return ResolutionRecord(
            name=dns_decode(dns_name),
            dns_name=dns_name,
            address=row[1],
            updated_at=datetime.fromtimestamp(row[2], tz=timezone.utc),
        )
