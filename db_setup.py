import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from db_models import ContactRecord, LinkPrecedence

DB_NAME = "contacts.db"

logger = logging.getLogger(__name__)

# precedence sort key: primary rows rank 0, secondary rows rank 1
PRECEDENCE_RANK = "CASE linkPrecedence WHEN 'primary' THEN 0 ELSE 1 END"


def init_db(db_name: str = DB_NAME):
    conn = sqlite3.connect(db_name)
    cursor = conn.cursor()

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS Contact (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            phoneNumber TEXT,
            email TEXT,
            linkedId INTEGER,
            linkPrecedence TEXT CHECK(linkPrecedence IN ('secondary', 'primary')),
            createdAt DATETIME DEFAULT CURRENT_TIMESTAMP,
            updatedAt DATETIME DEFAULT CURRENT_TIMESTAMP,
            deletedAt DATETIME,
            FOREIGN KEY (linkedId) REFERENCES Contact (id)
        )
    ''')
    cursor.execute("CREATE INDEX IF NOT EXISTS emailIndex ON Contact (email, linkPrecedence, createdAt)")
    cursor.execute("CREATE INDEX IF NOT EXISTS phoneNumberIndex ON Contact (phoneNumber, linkPrecedence, createdAt)")
    cursor.execute("CREATE INDEX IF NOT EXISTS linkedIdIndex ON Contact (linkedId)")
    conn.commit()

    conn.close()
    logger.info("Contact table ready in %s", db_name)


def get_db_connection(db_name: str = DB_NAME):
    # autocommit; ContactStore.transaction() opens explicit transactions
    conn = sqlite3.connect(db_name, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def _to_stored(value: datetime) -> str:
    """Naive UTC at fixed precision, so stored timestamps compare as strings."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="microseconds")


def _now() -> str:
    return _to_stored(datetime.now(timezone.utc))


class ContactStore:
    """Storage collaborator for the resolver, one connection per instance."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    @classmethod
    def connect(cls, db_name: str = DB_NAME) -> "ContactStore":
        return cls(get_db_connection(db_name))

    def close(self):
        self.conn.close()

    @contextmanager
    def transaction(self) -> Iterator["ContactStore"]:
        """Run a block under BEGIN IMMEDIATE, serialising concurrent writers."""
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield self
            self.conn.execute("COMMIT")
        finally:
            # sqlite may already have rolled back on its own
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")

    def _fetch(self, query: str, params=()) -> List[ContactRecord]:
        rows = self.conn.execute(query, params).fetchall()
        return [ContactRecord(**dict(row)) for row in rows]

    def get(self, contact_id: int) -> Optional[ContactRecord]:
        found = self._fetch(
            "SELECT * FROM Contact WHERE id = ? AND deletedAt IS NULL", (contact_id,)
        )
        return found[0] if found else None

    def find_matching(self, email: Optional[str] = None, phone: Optional[str] = None) -> List[ContactRecord]:
        """Rows whose email or phone equals the supplied values.

        Only the supplied fields become predicates. Ordered primaries first,
        then most recently created first.
        """
        conditions = []
        params = []
        if phone:
            conditions.append("phoneNumber = ?")
            params.append(phone)
        if email:
            conditions.append("email = ?")
            params.append(email)
        if not conditions:
            return []

        query = f"""
            SELECT * FROM Contact
            WHERE deletedAt IS NULL
            AND ({' OR '.join(conditions)})
            ORDER BY {PRECEDENCE_RANK} ASC, createdAt DESC, id DESC
        """
        return self._fetch(query, params)

    def find_linked(self, primary_id: int, include_id: Optional[int] = None) -> List[ContactRecord]:
        """Rows with linkedId = primary_id, plus the row include_id if given."""
        if include_id is None:
            return self._fetch("""
                SELECT * FROM Contact
                WHERE linkedId = ? AND deletedAt IS NULL
                ORDER BY createdAt ASC, id ASC
            """, (primary_id,))
        return self._fetch("""
            SELECT * FROM Contact
            WHERE (linkedId = ? OR id = ?) AND deletedAt IS NULL
            ORDER BY createdAt ASC, id ASC
        """, (primary_id, include_id))

    def insert_contact(
        self,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        linked_id: Optional[int] = None,
        precedence: LinkPrecedence = LinkPrecedence.PRIMARY,
        contact_id: Optional[int] = None,
        created_at: Optional[datetime] = None,
    ) -> int:
        """Insert a row and return its id."""
        now = _now()
        created = _to_stored(created_at) if created_at else now
        precedence = LinkPrecedence(precedence).value

        if contact_id:
            self.conn.execute("""
                INSERT INTO Contact (id, phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (contact_id, phone, email, linked_id, precedence, created, now))
            return contact_id

        cursor = self.conn.execute("""
            INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (phone, email, linked_id, precedence, created, now))
        return cursor.lastrowid

    def update_link(self, contact_id: int, linked_id: Optional[int], precedence: LinkPrecedence):
        self.conn.execute("""
            UPDATE Contact
            SET linkedId = ?, linkPrecedence = ?, updatedAt = ?
            WHERE id = ?
        """, (linked_id, LinkPrecedence(precedence).value, _now(), contact_id))
