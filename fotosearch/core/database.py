# fotosearch/core/database.py

import json
import logging
import sqlite3
import threading
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from fotosearch.config import StoreConfig
from fotosearch.core.errors import StoreError, NotFound
from fotosearch.core.fingerprint import Fingerprint
from fotosearch.core.records import ImageRecord, generate_image_id

logger = logging.getLogger(__name__)

FingerprintBucket = List[ImageRecord]


class FingerprintStore:
    """
    SQLite store of image records, keyed two ways:

    - fingerprint_buckets: fingerprint -> ordered list of records sharing it
    - images: id -> record

    Each thread gets its own connection. An insert takes the database
    write lock up front (BEGIN IMMEDIATE), so a bucket's read, append and
    write-back are indivisible and concurrent inserts never lose records.

    SQLite allows one writer per database: inserts for different
    fingerprints wait on each other for the length of a transaction, up to
    busy_timeout. There is no application-level lock, and readers (bucket
    lookups, scans) never block on writers under WAL.
    """

    def __init__(self, config: StoreConfig = None, fingerprint_bits: int = 64):
        self.config = config or StoreConfig()
        self.db_path = self.config.database_path
        self.fingerprint_bits = fingerprint_bits

        if self.db_path == ":memory:":
            raise ValueError("FingerprintStore needs a file path; in-memory databases are per-connection")
        if self.config.scan_batch_size < 1:
            raise ValueError(f"scan_batch_size must be at least 1, got {self.config.scan_batch_size}")

        self._local = threading.local()
        self._connections = []
        self._connections_lock = threading.Lock()
        self._initialize_database()

    def _connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            try:
                conn = sqlite3.connect(self.db_path,
                                       timeout=self.config.busy_timeout,
                                       isolation_level=None,
                                       check_same_thread=False)
            except sqlite3.Error as e:
                raise StoreError(f"Could not open database {self.db_path}: {e}") from e
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    def _initialize_database(self):
        """Create database schema"""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = self._connection()

        try:
            conn.execute("PRAGMA journal_mode=WAL")

            # Id index
            conn.execute("""
                CREATE TABLE IF NOT EXISTS images (
                    id TEXT PRIMARY KEY,
                    fingerprint BLOB NOT NULL,
                    record TEXT NOT NULL,
                    created_at INTEGER NOT NULL
                )
            """)

            # Fingerprint buckets, append-only
            conn.execute("""
                CREATE TABLE IF NOT EXISTS fingerprint_buckets (
                    fingerprint BLOB PRIMARY KEY,
                    records TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS store_meta (
                    name TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_images_fingerprint ON images(fingerprint)
            """)

            conn.execute(
                "INSERT OR IGNORE INTO store_meta (name, value) VALUES ('fingerprint_bits', ?)",
                (str(self.fingerprint_bits),)
            )
            row = conn.execute(
                "SELECT value FROM store_meta WHERE name = 'fingerprint_bits'"
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Could not initialize database {self.db_path}: {e}") from e

        if int(row[0]) != self.fingerprint_bits:
            raise StoreError(
                f"Database {self.db_path} holds {row[0]} bit fingerprints, "
                f"configured for {self.fingerprint_bits}"
            )

    def _check_fingerprint(self, fingerprint: Fingerprint):
        if fingerprint.bits != self.fingerprint_bits:
            raise StoreError(
                f"Fingerprint has {fingerprint.bits} bits, store holds {self.fingerprint_bits}"
            )

    def insert(self, record: ImageRecord,
               id_factory: Callable[[], str] = generate_image_id) -> str:
        """
        Store a record, appending it to its fingerprint bucket

        The id row and the bucket append commit in one IMMEDIATE
        transaction, so the bucket read, append and write-back happen under
        the database write lock. An id that already exists is replaced with
        a fresh one from id_factory.

        Returns:
            The id the record was stored under
        """
        self._check_fingerprint(record.fingerprint)
        conn = self._connection()

        while True:
            try:
                conn.execute("BEGIN IMMEDIATE")

                try:
                    conn.execute("""
                        INSERT INTO images (id, fingerprint, record, created_at)
                        VALUES (?, ?, ?, ?)
                    """, (record.id, record.fingerprint.value,
                          json.dumps(record.to_storage()), record.created_at))
                except sqlite3.IntegrityError:
                    conn.rollback()
                    new_id = id_factory()
                    logger.debug(f"Image id {record.id} already taken, retrying as {new_id}")
                    record = replace(record, id=new_id)
                    continue

                self._append_to_bucket(conn, record)
                conn.execute("COMMIT")
            except (sqlite3.Error, TypeError, ValueError) as e:
                if conn.in_transaction:
                    conn.rollback()
                raise StoreError(f"Failed to insert image {record.id}: {e}") from e

            logger.info(f"Stored image {record.id} under fingerprint {record.fingerprint}")
            return record.id

    def _append_to_bucket(self, conn: sqlite3.Connection, record: ImageRecord):
        """Read-append-write of one bucket row; caller holds the write lock"""
        key = record.fingerprint.value

        row = conn.execute(
            "SELECT records FROM fingerprint_buckets WHERE fingerprint = ?",
            (key,)
        ).fetchone()

        bucket = json.loads(row[0]) if row is not None else []
        bucket.append(record.to_storage())

        conn.execute("""
            INSERT INTO fingerprint_buckets (fingerprint, records) VALUES (?, ?)
            ON CONFLICT(fingerprint) DO UPDATE SET records = excluded.records
        """, (key, json.dumps(bucket)))

    def get_by_id(self, image_id: str) -> ImageRecord:
        """Get a record by id, raising NotFound on a miss"""
        try:
            row = self._connection().execute(
                "SELECT record FROM images WHERE id = ?", (image_id,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read image {image_id}: {e}") from e

        if row is None:
            raise NotFound(image_id)

        return ImageRecord.from_storage(self._loads(row[0]))

    def bucket_for(self, fingerprint: Fingerprint) -> FingerprintBucket:
        """All records sharing exactly this fingerprint, in insertion order"""
        try:
            row = self._connection().execute(
                "SELECT records FROM fingerprint_buckets WHERE fingerprint = ?",
                (fingerprint.value,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read bucket {fingerprint}: {e}") from e

        if row is None:
            return []

        return self._decode_bucket(row[0])

    def iter_fingerprints(self, batch_size: Optional[int] = None
                          ) -> Iterator[Tuple[Fingerprint, FingerprintBucket]]:
        """
        Lazily walk every (fingerprint, bucket) pair

        Pages through the bucket table in key order. Each bucket is read
        as one row, so a bucket is never seen half-appended. Every call
        starts a fresh traversal.
        """
        if batch_size is None:
            batch_size = self.config.scan_batch_size
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        last_key = None

        while True:
            try:
                if last_key is None:
                    rows = self._connection().execute("""
                        SELECT fingerprint, records FROM fingerprint_buckets
                        ORDER BY fingerprint LIMIT ?
                    """, (batch_size,)).fetchall()
                else:
                    rows = self._connection().execute("""
                        SELECT fingerprint, records FROM fingerprint_buckets
                        WHERE fingerprint > ?
                        ORDER BY fingerprint LIMIT ?
                    """, (last_key, batch_size)).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to scan fingerprints: {e}") from e

            for key, records in rows:
                yield Fingerprint(bytes(key)), self._decode_bucket(records)

            if len(rows) < batch_size:
                return

            last_key = rows[-1][0]

    def stats(self) -> Dict:
        """Record and bucket counts"""
        conn = self._connection()
        try:
            records = conn.execute("SELECT COUNT(*) FROM images").fetchone()[0]
            buckets = conn.execute("SELECT COUNT(*) FROM fingerprint_buckets").fetchone()[0]
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read store statistics: {e}") from e

        return {
            'records': records,
            'buckets': buckets,
            'fingerprint_bits': self.fingerprint_bits,
            'database_path': self.db_path,
        }

    def __len__(self):
        return self.stats()['records']

    def _decode_bucket(self, records: str) -> FingerprintBucket:
        return [ImageRecord.from_storage(item) for item in self._loads(records)]

    @staticmethod
    def _loads(text: str):
        try:
            return json.loads(text)
        except ValueError as e:
            raise StoreError(f"Corrupt stored record: {e}") from e

    def close(self):
        """Close every database connection"""
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections = []
        self._local = threading.local()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
