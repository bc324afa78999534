"""Repository layer responsible for all database access."""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import closing, contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional, Sequence
from uuid import uuid4

from venue_waitlist.utils.config import Settings, get_settings
from venue_waitlist.utils.logger import get_logger
from venue_waitlist.utils.timeutils import to_timestamp, utc_now


logger = get_logger(__name__)


Filter = tuple[str, str, Any]
OrderBy = tuple[str, str]


_SCHEMA: dict[str, str] = {
    "spaces": """
        CREATE TABLE IF NOT EXISTS spaces (
            id TEXT PRIMARY KEY,
            nome TEXT NOT NULL,
            capacidade INTEGER NOT NULL DEFAULT 0 CHECK (capacidade >= 0),
            cidade TEXT,
            ativo INTEGER NOT NULL DEFAULT 1 CHECK (ativo IN (0,1)),
            created_at TEXT NOT NULL
        );
    """,
    "clients": """
        CREATE TABLE IF NOT EXISTS clients (
            id TEXT PRIMARY KEY,
            nome TEXT NOT NULL,
            email TEXT,
            telefone TEXT,
            origem TEXT,
            created_at TEXT NOT NULL
        );
    """,
    "reservations": """
        CREATE TABLE IF NOT EXISTS reservations (
            id TEXT PRIMARY KEY,
            kind TEXT NOT NULL CHECK (kind IN ('temporaria','confirmada')),
            space_id TEXT NOT NULL,
            client_id TEXT,
            vendedor_id TEXT,
            date_start TEXT NOT NULL,
            date_end TEXT NOT NULL,
            time_start TEXT,
            time_end TEXT,
            status TEXT NOT NULL
                CHECK (status IN ('ativa','convertida','liberada','expirada','cancelado')),
            expires_at TEXT,
            origin_id TEXT,
            descricao TEXT,
            valor_estimado REAL NOT NULL DEFAULT 0,
            observacoes TEXT,
            last_warning_hours INTEGER,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            CHECK (date_end >= date_start),
            CHECK (kind = 'confirmada' OR expires_at IS NOT NULL),
            FOREIGN KEY (space_id) REFERENCES spaces(id),
            FOREIGN KEY (client_id) REFERENCES clients(id),
            FOREIGN KEY (origin_id) REFERENCES reservations(id)
        );
    """,
    "blackout_periods": """
        CREATE TABLE IF NOT EXISTS blackout_periods (
            id TEXT PRIMARY KEY,
            space_id TEXT NOT NULL,
            date_start TEXT NOT NULL,
            date_end TEXT NOT NULL,
            time_start TEXT,
            time_end TEXT,
            reason TEXT,
            created_at TEXT NOT NULL,
            CHECK (date_end >= date_start),
            FOREIGN KEY (space_id) REFERENCES spaces(id)
        );
    """,
    "waitlist_entries": """
        CREATE TABLE IF NOT EXISTS waitlist_entries (
            id TEXT PRIMARY KEY,
            client_id TEXT NOT NULL,
            space_id TEXT NOT NULL,
            date_desejada TEXT NOT NULL,
            horario_preferencial TEXT,
            priority INTEGER NOT NULL CHECK (priority BETWEEN 1 AND 10),
            score INTEGER NOT NULL CHECK (score BETWEEN 0 AND 100),
            status TEXT NOT NULL
                CHECK (status IN ('ativo','notificado','atendido','cancelado')),
            valor_estimado_proposta REAL NOT NULL DEFAULT 0,
            origem TEXT,
            observacoes TEXT,
            solicitado_por TEXT,
            canal_notificacao TEXT,
            data_notificacao TEXT,
            atendido_por TEXT,
            data_atendimento TEXT,
            espaco_alternativo_id TEXT,
            data_cancelamento TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (client_id) REFERENCES clients(id),
            FOREIGN KEY (space_id) REFERENCES spaces(id)
        );
    """,
    "conversion_records": """
        CREATE TABLE IF NOT EXISTS conversion_records (
            id TEXT PRIMARY KEY,
            origin_type TEXT NOT NULL,
            origin_id TEXT NOT NULL,
            destination_type TEXT NOT NULL,
            destination_id TEXT NOT NULL,
            actor_id TEXT NOT NULL,
            reason TEXT NOT NULL,
            created_at TEXT NOT NULL
        );
    """,
    "notification_outbox": """
        CREATE TABLE IF NOT EXISTS notification_outbox (
            id TEXT PRIMARY KEY,
            template_name TEXT NOT NULL,
            recipient TEXT NOT NULL,
            payload TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pendente',
            created_at TEXT NOT NULL
        );
    """,
}

_INDEXES = (
    """
    CREATE INDEX IF NOT EXISTS idx_reservations_space_status_dates
    ON reservations(space_id, status, date_start, date_end);
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_reservations_status_expires
    ON reservations(status, expires_at);
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_blackouts_space_dates
    ON blackout_periods(space_id, date_start, date_end);
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_waitlist_space_date_status
    ON waitlist_entries(space_id, date_desejada, status);
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS ux_waitlist_one_active_entry
    ON waitlist_entries(client_id, space_id, date_desejada)
    WHERE status = 'ativo';
    """,
)

_OPERATORS = {
    "eq": "=",
    "neq": "!=",
    "lt": "<",
    "lte": "<=",
    "gt": ">",
    "gte": ">=",
}


class UnknownIdentifierError(ValueError):
    """Raised when a table or column name is not part of the schema."""


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic.

    Statements run in autocommit mode unless issued inside ``transaction()``,
    which opens ``BEGIN IMMEDIATE`` and routes every call made on the same
    thread through that single connection.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._columns: dict[str, frozenset[str]] = {}

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path, timeout=30.0, isolation_level=None)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        active = getattr(self._local, "connection", None)
        if active is not None:
            yield active
            return
        with closing(self._connect()) as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Iterator["DataRepository"]:
        """Serialize a read-then-write sequence; nested calls join the outer one."""
        if getattr(self._local, "connection", None) is not None:
            yield self
            return

        conn = self._connect()
        conn.execute("BEGIN IMMEDIATE;")
        self._local.connection = conn
        try:
            yield self
            conn.execute("COMMIT;")
        except BaseException:
            conn.execute("ROLLBACK;")
            raise
        finally:
            self._local.connection = None
            conn.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._session() as conn:
                for statement in _SCHEMA.values():
                    conn.execute(statement)
                for statement in _INDEXES:
                    conn.execute(statement)
                self._columns = {
                    table: frozenset(
                        str(row["name"])
                        for row in conn.execute(f"PRAGMA table_info({table});").fetchall()
                    )
                    for table in _SCHEMA
                }
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def _table_columns(self, table: str) -> frozenset[str]:
        if table not in _SCHEMA:
            raise UnknownIdentifierError(f"Unknown table: {table}")
        if table not in self._columns:
            with self._session() as conn:
                rows = conn.execute(f"PRAGMA table_info({table});").fetchall()
            self._columns[table] = frozenset(str(row["name"]) for row in rows)
        return self._columns[table]

    def _check_columns(self, table: str, names: Iterable[str]) -> None:
        known = self._table_columns(table)
        unknown = sorted(set(names) - known)
        if unknown:
            raise UnknownIdentifierError(f"Unknown column(s) for {table}: {', '.join(unknown)}")

    def _where_clause(self, table: str, filters: Sequence[Filter]) -> tuple[str, list[Any]]:
        self._check_columns(table, (name for name, _, _ in filters))
        clauses: list[str] = []
        params: list[Any] = []
        for name, op, value in filters:
            if op in _OPERATORS:
                clauses.append(f"{name} {_OPERATORS[op]} ?")
                params.append(value)
            elif op == "in":
                values = list(value)
                if not values:
                    clauses.append("0")
                    continue
                placeholders = ",".join("?" for _ in values)
                clauses.append(f"{name} IN ({placeholders})")
                params.extend(values)
            elif op == "is_null":
                clauses.append(f"{name} IS NULL" if value else f"{name} IS NOT NULL")
            else:
                raise UnknownIdentifierError(f"Unsupported filter operator: {op}")
        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    def query(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order_by: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[sqlite3.Row]:
        where, params = self._where_clause(table, filters)
        sql = f"SELECT * FROM {table}{where}"
        if order_by:
            self._check_columns(table, (name for name, _ in order_by))
            parts = []
            for name, direction in order_by:
                if direction.lower() not in {"asc", "desc"}:
                    raise UnknownIdentifierError(f"Unsupported sort direction: {direction}")
                parts.append(f"{name} {direction.upper()}")
            sql += " ORDER BY " + ", ".join(parts)
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
            if offset is not None:
                sql += " OFFSET ?"
                params.append(int(offset))
        with self._session() as conn:
            return conn.execute(sql + ";", params).fetchall()

    def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        where, params = self._where_clause(table, filters)
        with self._session() as conn:
            row = conn.execute(f"SELECT COUNT(*) AS count FROM {table}{where};", params).fetchone()
        return int(row["count"])

    def get(self, table: str, row_id: str) -> Optional[sqlite3.Row]:
        rows = self.query(table, [("id", "eq", row_id)], limit=1)
        return rows[0] if rows else None

    def insert(self, table: str, row: Mapping[str, Any]) -> sqlite3.Row:
        values = dict(row)
        values.setdefault("id", str(uuid4()))
        self._check_columns(table, values)
        columns = list(values)
        placeholders = ",".join("?" for _ in columns)
        with self._session() as conn:
            conn.execute(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders});",
                [values[column] for column in columns],
            )
            return conn.execute(f"SELECT * FROM {table} WHERE id = ?;", (values["id"],)).fetchone()

    def update(self, table: str, row_id: str, patch: Mapping[str, Any]) -> Optional[sqlite3.Row]:
        return self.update_where(table, row_id, patch)

    def update_where(
        self,
        table: str,
        row_id: str,
        patch: Mapping[str, Any],
        guards: Sequence[Filter] = (),
    ) -> Optional[sqlite3.Row]:
        """Apply ``patch`` only when the row still matches ``guards``.

        Returns the updated row, or ``None`` when the id is unknown or a guard
        (typically ``("status", "eq", "ativa")``) no longer holds.
        """
        if not patch:
            raise ValueError("patch must not be empty")
        self._check_columns(table, patch)
        assignments = ", ".join(f"{column} = ?" for column in patch)
        where, params = self._where_clause(table, [("id", "eq", row_id), *guards])
        with self._session() as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET {assignments}{where};",
                [*patch.values(), *params],
            )
            if cursor.rowcount != 1:
                return None
            return conn.execute(f"SELECT * FROM {table} WHERE id = ?;", (row_id,)).fetchone()

    def delete(self, table: str, row_id: str) -> bool:
        self._table_columns(table)
        with self._session() as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?;", (row_id,))
            return cursor.rowcount == 1

    def create_space(
        self,
        nome: str,
        capacidade: int = 0,
        cidade: Optional[str] = None,
        ativo: bool = True,
        space_id: Optional[str] = None,
    ) -> str:
        row = self.insert(
            "spaces",
            {
                "id": space_id or str(uuid4()),
                "nome": nome,
                "capacidade": capacidade,
                "cidade": cidade,
                "ativo": 1 if ativo else 0,
                "created_at": to_timestamp(utc_now()),
            },
        )
        return str(row["id"])

    def create_client(
        self,
        nome: str,
        email: Optional[str] = None,
        telefone: Optional[str] = None,
        origem: Optional[str] = None,
        created_at: Optional[datetime] = None,
        client_id: Optional[str] = None,
    ) -> str:
        row = self.insert(
            "clients",
            {
                "id": client_id or str(uuid4()),
                "nome": nome,
                "email": email,
                "telefone": telefone,
                "origem": origem,
                "created_at": to_timestamp(created_at or utc_now()),
            },
        )
        return str(row["id"])

    def enqueue_notification(
        self,
        template_name: str,
        recipient: str,
        payload: Mapping[str, Any],
    ) -> str:
        row = self.insert(
            "notification_outbox",
            {
                "template_name": template_name,
                "recipient": recipient,
                "payload": json.dumps(dict(payload), default=str, sort_keys=True),
                "created_at": to_timestamp(utc_now()),
            },
        )
        return str(row["id"])

    def seed_demo_data_if_empty(self) -> int:
        """Insert demo spaces and clients once; returns the number of rows added."""
        if self.count("spaces") > 0:
            logger.info("Demo data already present; skipping seed")
            return 0

        now = utc_now()
        spaces = [
            ("Salão Jardim", 250, "São Paulo"),
            ("Espaço Terraço", 120, "São Paulo"),
            ("Casarão Colonial", 400, "Campinas"),
        ]
        clients = [
            ("Mariana Alves", "mariana@example.com", "indicacao", 420),
            ("Rafael Souza", "rafael@example.com", "google", 200),
            ("Beatriz Lima", "beatriz@example.com", "facebook", 95),
            ("Eventos Prime Ltda", "contato@prime.example.com", "outro", 10),
        ]
        with self.transaction():
            for nome, capacidade, cidade in spaces:
                self.create_space(nome=nome, capacidade=capacidade, cidade=cidade)
            for nome, email, origem, tenure_days in clients:
                self.create_client(
                    nome=nome,
                    email=email,
                    origem=origem,
                    created_at=now - timedelta(days=tenure_days),
                )
        inserted = len(spaces) + len(clients)
        logger.info("Demo seed completed with %s records", inserted)
        return inserted
