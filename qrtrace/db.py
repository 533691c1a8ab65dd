"""
Storage module for qrtrace.

Defines the storage boundary the core talks to and a SQLite implementation
holding products, master tokens and the two scan ledgers. Uses one
connection per thread and proper indexing for performance. Every sqlite3 failure
surfaces as StorageError.
"""

import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .errors import StorageError
from .records import Channel, MasterTokenRecord, ProductRecord, ScanEntry

_SCAN_TABLES = {
    Channel.CONSUMER: "consumer_scans",
    Channel.SELLER: "seller_scans",
}


class Storage(ABC):
    """
    Abstract storage boundary.

    Implementations must keep unitId and batchId unique and treat scan
    ledgers as append-only.
    """

    @abstractmethod
    def create_product(self, product: ProductRecord) -> None:
        pass

    @abstractmethod
    def find_products_by_batch(self, batch_id: str) -> List[ProductRecord]:
        """All products of a batch in creation order."""
        pass

    @abstractmethod
    def find_product_by_unit_id(self, unit_id: str) -> Optional[ProductRecord]:
        pass

    @abstractmethod
    def find_product_by_token(self, token: str) -> Optional[ProductRecord]:
        pass

    @abstractmethod
    def create_master_token(self, record: MasterTokenRecord) -> None:
        pass

    @abstractmethod
    def find_master_token_by_batch(self, batch_id: str) -> Optional[MasterTokenRecord]:
        pass

    @abstractmethod
    def find_master_token_by_value(self, token: str) -> Optional[MasterTokenRecord]:
        pass

    @abstractmethod
    def append_scan(self, channel: Channel, entry: ScanEntry) -> None:
        pass

    @abstractmethod
    def append_scans(self, channel: Channel, entries: Iterable[ScanEntry]) -> int:
        """Append several entries atomically. Returns the number written."""
        pass

    @abstractmethod
    def list_scans_for_product(
        self,
        channel: Channel,
        product_id: str,
        newest_first: bool = True
    ) -> List[ScanEntry]:
        pass

    def stats(self) -> Dict[str, int]:
        """Row counts for health reporting; empty when unsupported."""
        return {}


class SqliteStorage(Storage):
    """SQLite-backed storage with one connection per thread."""

    def __init__(self, db_path: Union[str, Path]):
        self._db_path = Path(db_path)
        self._connections: Dict[int, sqlite3.Connection] = {}
        self._lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get the calling thread's database connection.
        Connections are reused within the same thread for performance and
        registered so close() can reach every one of them.
        """
        # a finished thread's id may be reused; its connection carries over
        thread_id = threading.get_ident()
        conn = self._connections.get(thread_id)
        if conn is None:
            try:
                self._db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
                conn.execute("PRAGMA foreign_keys=ON;")
            except (sqlite3.Error, OSError) as e:
                raise StorageError(f"cannot open database {self._db_path}: {e}") from e
            conn.row_factory = sqlite3.Row
            with self._lock:
                self._connections[thread_id] = conn
        return conn

    @contextmanager
    def _transaction(self):
        """
        Context manager for database transactions.
        Automatically commits on success, rolls back on failure.
        """
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(str(e)) from e
        except Exception:
            conn.rollback()
            raise

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            return self._get_connection().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    def init(self) -> None:
        """
        Initialize database schema with indexes.
        Safe to call multiple times (uses IF NOT EXISTS).
        """
        with self._transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS products (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                unit_id TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                station_id TEXT NOT NULL,
                batch_id TEXT NOT NULL,
                signed_token TEXT NOT NULL UNIQUE,
                created_at INTEGER NOT NULL
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_products_batch
            ON products(batch_id);""")

            conn.execute("""
            CREATE TABLE IF NOT EXISTS master_tokens (
                batch_id TEXT PRIMARY KEY,
                token TEXT NOT NULL UNIQUE,
                created_at INTEGER NOT NULL
            );""")

            # Two ledgers, same shape, never merged
            for table in _SCAN_TABLES.values():
                conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    product_id TEXT NOT NULL REFERENCES products(unit_id),
                    latitude REAL NOT NULL,
                    longitude REAL NOT NULL,
                    location_name TEXT NOT NULL,
                    scanned_at INTEGER NOT NULL
                );""")
                conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_product
                ON {table}(product_id, scanned_at);""")

    # ------------------------------------------------------------
    # Products
    # ------------------------------------------------------------

    def create_product(self, product: ProductRecord) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO products(unit_id, name, station_id, batch_id, signed_token, created_at) "
                "VALUES(?,?,?,?,?,?)",
                (product.unit_id, product.name, product.station_id, product.batch_id,
                 product.signed_token, product.created_at)
            )

    def find_products_by_batch(self, batch_id: str) -> List[ProductRecord]:
        rows = self._query(
            "SELECT unit_id, name, station_id, batch_id, signed_token, created_at "
            "FROM products WHERE batch_id=? ORDER BY seq ASC",
            (batch_id,)
        )
        return [_product(row) for row in rows]

    def find_product_by_unit_id(self, unit_id: str) -> Optional[ProductRecord]:
        rows = self._query(
            "SELECT unit_id, name, station_id, batch_id, signed_token, created_at "
            "FROM products WHERE unit_id=?",
            (unit_id,)
        )
        return _product(rows[0]) if rows else None

    def find_product_by_token(self, token: str) -> Optional[ProductRecord]:
        rows = self._query(
            "SELECT unit_id, name, station_id, batch_id, signed_token, created_at "
            "FROM products WHERE signed_token=?",
            (token,)
        )
        return _product(rows[0]) if rows else None

    # ------------------------------------------------------------
    # Master tokens
    # ------------------------------------------------------------

    def create_master_token(self, record: MasterTokenRecord) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO master_tokens(batch_id, token, created_at) VALUES(?,?,?)",
                (record.batch_id, record.token, record.created_at)
            )

    def find_master_token_by_batch(self, batch_id: str) -> Optional[MasterTokenRecord]:
        rows = self._query(
            "SELECT batch_id, token, created_at FROM master_tokens WHERE batch_id=?",
            (batch_id,)
        )
        return _master(rows[0]) if rows else None

    def find_master_token_by_value(self, token: str) -> Optional[MasterTokenRecord]:
        rows = self._query(
            "SELECT batch_id, token, created_at FROM master_tokens WHERE token=?",
            (token,)
        )
        return _master(rows[0]) if rows else None

    # ------------------------------------------------------------
    # Scan ledgers
    # ------------------------------------------------------------

    def append_scan(self, channel: Channel, entry: ScanEntry) -> None:
        self.append_scans(channel, [entry])

    def append_scans(self, channel: Channel, entries: Iterable[ScanEntry]) -> int:
        table = _SCAN_TABLES[Channel(channel)]
        rows = [
            (e.product_id, e.latitude, e.longitude, e.location_name, e.scanned_at)
            for e in entries
        ]
        with self._transaction() as conn:
            conn.executemany(
                f"INSERT INTO {table}(product_id, latitude, longitude, location_name, scanned_at) "
                "VALUES(?,?,?,?,?)",
                rows
            )
        return len(rows)

    def list_scans_for_product(
        self,
        channel: Channel,
        product_id: str,
        newest_first: bool = True
    ) -> List[ScanEntry]:
        channel = Channel(channel)
        table = _SCAN_TABLES[channel]
        order = "DESC" if newest_first else "ASC"
        rows = self._query(
            f"SELECT id, product_id, latitude, longitude, location_name, scanned_at "
            f"FROM {table} WHERE product_id=? ORDER BY scanned_at {order}, id {order}",
            (product_id,)
        )
        return [
            ScanEntry(
                product_id=row["product_id"],
                latitude=row["latitude"],
                longitude=row["longitude"],
                location_name=row["location_name"],
                scanned_at=row["scanned_at"],
                channel=channel,
                scan_id=row["id"],
            )
            for row in rows
        ]

    # ------------------------------------------------------------
    # Metrics, test support, cleanup
    # ------------------------------------------------------------

    def stats(self) -> Dict[str, int]:
        """Row counts per table for health reporting."""
        stats = {}
        for table in ["products", "master_tokens", *_SCAN_TABLES.values()]:
            rows = self._query(f"SELECT COUNT(*) AS cnt FROM {table}")
            stats[f"{table}_count"] = rows[0]["cnt"]
        return stats

    def reset(self) -> None:
        """
        Reset the database for test isolation.
        Clears all tables but preserves schema.
        """
        with self._transaction() as conn:
            for table in _SCAN_TABLES.values():
                conn.execute(f"DELETE FROM {table}")
            conn.execute("DELETE FROM master_tokens")
            conn.execute("DELETE FROM products")

    def close(self) -> None:
        """Close every connection opened by any thread. Later calls reconnect."""
        with self._lock:
            conns = list(self._connections.values())
            self._connections.clear()
        for conn in conns:
            conn.close()


def _product(row: sqlite3.Row) -> ProductRecord:
    return ProductRecord(
        unit_id=row["unit_id"],
        name=row["name"],
        station_id=row["station_id"],
        batch_id=row["batch_id"],
        signed_token=row["signed_token"],
        created_at=row["created_at"],
    )


def _master(row: sqlite3.Row) -> MasterTokenRecord:
    return MasterTokenRecord(
        batch_id=row["batch_id"],
        token=row["token"],
        created_at=row["created_at"],
    )
