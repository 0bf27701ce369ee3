"""Database management module for Khata."""
import sqlite3
import pandas as pd
from datetime import datetime
from contextlib import contextmanager

from .config import DB_LOCK_TIMEOUT, TIMESTAMP_FORMAT
from .exceptions import ConflictOnUpdateError, TransactionError

CUSTOMER_COLUMNS = ("name", "phone", "address", "trust_score", "credit_limit")
LOAN_EDITABLE_COLUMNS = ("description", "due_date", "frequency", "interest_rate", "grace_days", "status")


def _now():
    return datetime.now().strftime(TIMESTAMP_FORMAT)


class DatabaseManager:
    """Handles all SQLite database operations.

    Every lookup of a customer, loan or repayment is scoped to the owner
    that issued it; rows of another owner behave as if they did not exist.
    """

    def __init__(self, db_name="khata.db", timeout=DB_LOCK_TIMEOUT):
        self.db_name = db_name
        self.conn = sqlite3.connect(db_name, timeout=timeout)
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._closed = False
        self._in_transaction = False
        self.create_tables()

    def close(self):
        """Close the database connection."""
        if self.conn and not self._closed:
            self.conn.close()
            self._closed = True

    def __del__(self):
        """Ensure connection is closed on garbage collection."""
        self.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @contextmanager
    def transaction(self):
        """Run a unit of work atomically.

        Takes the SQLite write lock up front so that concurrent writers
        queue behind each other instead of reading stale balances.

        Usage:
            with db.transaction():
                db.add_repayment(...)
                db.apply_loan_balance(...)

        If any exception occurs, the transaction is rolled back. Nested
        calls join the outer transaction.
        """
        if self._in_transaction:
            yield
            return

        try:
            self.conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise TransactionError(f"Could not start transaction: {str(e)}")

        self._in_transaction = True
        try:
            yield
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            raise TransactionError(f"Transaction failed: {str(e)}")
        except Exception:
            self.conn.rollback()
            raise
        finally:
            self._in_transaction = False

    @property
    def in_transaction(self):
        return self._in_transaction

    def _commit(self):
        """Commit unless an enclosing transaction() will do it."""
        if not self._in_transaction:
            self.conn.commit()

    def _fetch_one(self, query, params=()):
        cursor = self.conn.cursor()
        cursor.execute(query, params)
        row = cursor.fetchone()
        if row:
            cols = [description[0] for description in cursor.description]
            return dict(zip(cols, row))
        return None

    def _fetch_all(self, query, params=()):
        cursor = self.conn.cursor()
        cursor.execute(query, params)
        cols = [description[0] for description in cursor.description]
        return [dict(zip(cols, row)) for row in cursor.fetchall()]

    def create_tables(self):
        cursor = self.conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS owners (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                shop_name TEXT NOT NULL,
                phone TEXT,
                created_at TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS customers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                phone TEXT,
                address TEXT,
                trust_score REAL DEFAULT 0,
                credit_limit REAL DEFAULT 0,
                created_at TEXT,
                FOREIGN KEY(owner_id) REFERENCES owners(id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS loans (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id INTEGER NOT NULL,
                customer_id INTEGER NOT NULL,
                description TEXT NOT NULL,
                amount REAL NOT NULL CHECK (amount >= 0),
                remaining_amount REAL NOT NULL CHECK (remaining_amount >= 0),
                issue_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                frequency TEXT NOT NULL,
                interest_rate REAL DEFAULT 0,
                grace_days INTEGER DEFAULT 0,
                status TEXT DEFAULT 'pending',
                is_active INTEGER DEFAULT 1,
                paid_at TEXT,
                created_at TEXT,
                updated_at TEXT,
                CHECK (remaining_amount <= amount),
                FOREIGN KEY(owner_id) REFERENCES owners(id),
                FOREIGN KEY(customer_id) REFERENCES customers(id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS repayments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id INTEGER NOT NULL,
                loan_id INTEGER NOT NULL,
                customer_id INTEGER NOT NULL,
                amount REAL NOT NULL CHECK (amount > 0),
                payment_date TEXT NOT NULL,
                balance_after REAL NOT NULL,
                notes TEXT,
                created_at TEXT,
                FOREIGN KEY(owner_id) REFERENCES owners(id),
                FOREIGN KEY(loan_id) REFERENCES loans(id)
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_owner ON loans(owner_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_repayments_loan ON repayments(owner_id, loan_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_repayments_customer ON repayments(owner_id, customer_id)")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)
        self.conn.commit()

    # Owner operations
    def add_owner(self, name, shop_name, phone=""):
        cursor = self.conn.cursor()
        cursor.execute("INSERT INTO owners (name, shop_name, phone, created_at) VALUES (?, ?, ?, ?)",
                       (name, shop_name, phone, _now()))
        self._commit()
        return cursor.lastrowid

    def get_owner(self, owner_id):
        return self._fetch_one("SELECT * FROM owners WHERE id=?", (owner_id,))

    # Customer operations
    def add_customer(self, owner_id, name, phone="", address="", trust_score=0, credit_limit=0):
        cursor = self.conn.cursor()
        cursor.execute("""
            INSERT INTO customers (owner_id, name, phone, address, trust_score, credit_limit, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (owner_id, name, phone, address, trust_score, credit_limit, _now()))
        self._commit()
        return cursor.lastrowid

    def get_customer(self, owner_id, customer_id):
        return self._fetch_one("SELECT * FROM customers WHERE id=? AND owner_id=?", (customer_id, owner_id))

    def get_customers(self, owner_id):
        return self._fetch_all("SELECT * FROM customers WHERE owner_id=? ORDER BY name, id", (owner_id,))

    def update_customer(self, owner_id, customer_id, fields):
        """Update customer columns with parameterized queries (SQL injection safe)."""
        set_clauses = []
        params = []
        for column in CUSTOMER_COLUMNS:
            if column in fields:
                set_clauses.append(f"{column}=?")
                params.append(fields[column])
        if not set_clauses:
            return

        params.extend([customer_id, owner_id])
        query = f"UPDATE customers SET {', '.join(set_clauses)} WHERE id=? AND owner_id=?"
        self.conn.execute(query, tuple(params))
        self._commit()

    def delete_customer(self, owner_id, customer_id):
        self.conn.execute("DELETE FROM customers WHERE id=? AND owner_id=?", (customer_id, owner_id))
        self._commit()

    def count_customer_loans(self, owner_id, customer_id):
        cursor = self.conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM loans WHERE owner_id=? AND customer_id=?", (owner_id, customer_id))
        return cursor.fetchone()[0]

    # Loan operations
    def add_loan_record(self, owner_id, customer_id, description, amount, remaining_amount,
                        issue_date, due_date, frequency, interest_rate=0, grace_days=0,
                        status="pending", is_active=True, paid_at=None):
        timestamp = _now()
        cursor = self.conn.cursor()
        cursor.execute("""
            INSERT INTO loans (
                owner_id, customer_id, description, amount, remaining_amount,
                issue_date, due_date, frequency, interest_rate, grace_days,
                status, is_active, paid_at, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (owner_id, customer_id, description, amount, remaining_amount,
              issue_date, due_date, frequency, interest_rate, grace_days,
              status, int(is_active), paid_at, timestamp, timestamp))
        self._commit()
        return cursor.lastrowid

    def get_loan(self, owner_id, loan_id):
        return self._fetch_one("SELECT * FROM loans WHERE id=? AND owner_id=?", (loan_id, owner_id))

    def get_loans(self, owner_id, status=None, active_only=True):
        query = "SELECT * FROM loans WHERE owner_id = ?"
        params = [owner_id]

        if active_only:
            query += " AND is_active = 1"
        if status:
            query += " AND status = ?"
            params.append(status)

        query += " ORDER BY created_at DESC, id DESC"
        return self._fetch_all(query, tuple(params))

    def get_loans_df(self, owner_id):
        """All of an owner's loans, active and paid, as a DataFrame."""
        query = "SELECT * FROM loans WHERE owner_id = ? ORDER BY id"
        return pd.read_sql_query(query, self.conn, params=(owner_id,))

    def update_loan_details(self, owner_id, loan_id, fields):
        """Update editable loan terms; balance columns are never touched here."""
        set_clauses = []
        params = []
        for column in LOAN_EDITABLE_COLUMNS:
            if column in fields:
                set_clauses.append(f"{column}=?")
                params.append(fields[column])
        if not set_clauses:
            return

        set_clauses.append("updated_at=?")
        params.append(_now())
        params.extend([loan_id, owner_id])
        query = f"UPDATE loans SET {', '.join(set_clauses)} WHERE id=? AND owner_id=?"
        self.conn.execute(query, tuple(params))
        self._commit()

    def update_loan_status(self, owner_id, loan_id, status, is_active, paid_at=None):
        query = "UPDATE loans SET status=?, is_active=?, updated_at=?"
        params = [status, int(is_active), _now()]

        if paid_at is not None:
            query += ", paid_at=?"
            params.append(paid_at)

        query += " WHERE id=? AND owner_id=?"
        params.extend([loan_id, owner_id])
        self.conn.execute(query, tuple(params))
        self._commit()

    def apply_loan_balance(self, owner_id, loan_id, expected_remaining, new_remaining,
                           status, is_active, paid_at=None):
        """Set a loan's balance if it still holds ``expected_remaining``.

        Raises:
            ConflictOnUpdateError: If the stored balance moved in between.
        """
        cursor = self.conn.cursor()
        cursor.execute("""
            UPDATE loans
            SET remaining_amount=?, status=?, is_active=?, paid_at=COALESCE(?, paid_at), updated_at=?
            WHERE id=? AND owner_id=? AND remaining_amount=?
        """, (new_remaining, status, int(is_active), paid_at, _now(),
              loan_id, owner_id, expected_remaining))
        if cursor.rowcount != 1:
            raise ConflictOnUpdateError(loan_id, expected_remaining)
        self._commit()

    # Repayment operations
    def add_repayment(self, owner_id, loan_id, customer_id, amount, payment_date, balance_after, notes=None):
        cursor = self.conn.cursor()
        cursor.execute("""
            INSERT INTO repayments (
                owner_id, loan_id, customer_id, amount, payment_date, balance_after, notes, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (owner_id, loan_id, customer_id, amount, payment_date, balance_after, notes, _now()))
        self._commit()
        return cursor.lastrowid

    def get_repayment(self, owner_id, repayment_id):
        return self._fetch_one("SELECT * FROM repayments WHERE id=? AND owner_id=?", (repayment_id, owner_id))

    def get_repayments(self, owner_id, loan_id=None, customer_id=None):
        """Repayments of a loan or customer, latest payment first."""
        query = "SELECT * FROM repayments WHERE owner_id = ?"
        params = [owner_id]

        if loan_id is not None:
            query += " AND loan_id = ?"
            params.append(loan_id)
        if customer_id is not None:
            query += " AND customer_id = ?"
            params.append(customer_id)

        query += " ORDER BY payment_date DESC, id DESC"
        return self._fetch_all(query, tuple(params))

    def get_setting(self, key, default=None):
        """Get a setting value."""
        row = self._fetch_one("SELECT value FROM settings WHERE key=?", (key,))
        return row['value'] if row else default

    def set_setting(self, key, value):
        """Set a setting value."""
        self.conn.execute("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, str(value)))
        self._commit()
