"""Repository layer responsible for all ledger and catalog access."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Sequence
from uuid import uuid4

from transit_inventory.domain.constraints import normalize_share_of_voice, validate_pricing_config
from transit_inventory.domain.errors import (
    InvalidPricingConfigError,
    InvalidRequestError,
    LedgerBusyError,
    LedgerUnavailableError,
    ReservationNotFoundError,
)
from transit_inventory.domain.models import Corridor, PricingConfig, Reservation, Route
from transit_inventory.utils.config import Settings, get_settings
from transit_inventory.utils.logger import get_logger


logger = get_logger(__name__)


_RESERVATION_COLUMNS = """
    id,
    campaign_id,
    name,
    start_date,
    end_date,
    route_ids,
    dayparts,
    share_of_voice,
    pricing_snapshot,
    status
"""

DEMO_CORRIDORS = [
    ("corridor-ct-bellville", "Cape Town - Bellville", "Northern Suburbs", 50000),
    ("corridor-ct-khayelitsha", "Cape Town - Khayelitsha", "Cape Flats", 80000),
]

DEMO_ROUTES = [
    ("route-bell-ct", "BELL-CT", "Bellville to Cape Town", "tier_1_core", 12000, "corridor-ct-bellville"),
    ("route-khay-ct", "KHAY-CT", "Khayelitsha to Cape Town", "tier_1_core", 25000, "corridor-ct-khayelitsha"),
]

DEMO_PRICING_CONFIG = PricingConfig(
    config_id="pricing-2025-standard",
    name="2025 Standard Pricing",
    version=1,
    base_cpm={"tier_1_core": 150.0, "tier_2_strong": 100.0, "tier_3_longtail": 50.0},
    placement_multipliers={"portal_banner": 1.0, "full_screen": 2.0},
    daypart_multipliers={"morning_peak": 1.2, "evening_peak": 1.2, "daytime": 0.8},
    applicable_to="all",
    is_active=True,
    active_from=date(2025, 1, 1),
    active_to=date(2025, 12, 31),
)


def _is_busy(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


def _translate_sqlite_error(exc: sqlite3.Error, operation: str) -> LedgerUnavailableError:
    if isinstance(exc, sqlite3.OperationalError) and _is_busy(exc):
        return LedgerBusyError(f"Ledger busy during {operation}: {exc}")
    return LedgerUnavailableError(f"Ledger failure during {operation}: {exc}")


def _load_json(raw: Optional[str], default: Any) -> Any:
    if raw is None or raw == "":
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed JSON column value | value=%r", raw)
        return default


def _parse_date(raw: Optional[str]) -> Optional[date]:
    if not raw:
        return None
    return date.fromisoformat(str(raw).split("T")[0])


def resolve_share_of_voice(
    raw_value: Any,
    pricing_snapshot: Optional[dict[str, Any]],
    legacy_fallback: float,
    reservation_id: str = "",
) -> float:
    """Normalize a persisted SOV exactly once, including legacy encodings."""
    if raw_value is not None:
        try:
            return normalize_share_of_voice(raw_value, clamp=True)
        except InvalidRequestError:
            logger.warning(
                "Unreadable share_of_voice treated as 0 | reservation_id=%s | raw=%r",
                reservation_id,
                raw_value,
            )
            return 0.0

    snapshot = pricing_snapshot or {}
    if snapshot.get("shareOfVoice") is not None:
        try:
            return normalize_share_of_voice(snapshot["shareOfVoice"], clamp=True)
        except InvalidRequestError:
            return 0.0
    if snapshot:
        logger.warning(
            "Reservation has a pricing snapshot but no share_of_voice; using fallback | "
            "reservation_id=%s | fallback=%.2f",
            reservation_id,
            legacy_fallback,
        )
        return max(0.0, min(1.0, legacy_fallback))
    return 0.0


def _row_to_reservation(row: sqlite3.Row, legacy_fallback: float) -> Reservation:
    reservation_id = str(row["id"])
    snapshot = _load_json(row["pricing_snapshot"], None)
    if snapshot is not None and not isinstance(snapshot, dict):
        snapshot = None
    route_ids = _load_json(row["route_ids"], [])
    dayparts = _load_json(row["dayparts"], [])
    return Reservation(
        reservation_id=reservation_id,
        campaign_id=str(row["campaign_id"]),
        name=row["name"],
        start_date=_parse_date(row["start_date"]),
        end_date=_parse_date(row["end_date"]),
        route_ids=tuple(str(route_id) for route_id in route_ids) if isinstance(route_ids, list) else (),
        dayparts=tuple(str(daypart) for daypart in dayparts) if isinstance(dayparts, list) else (),
        share_of_voice=resolve_share_of_voice(
            row["share_of_voice"],
            snapshot,
            legacy_fallback,
            reservation_id,
        ),
        status=str(row["status"]),
        pricing_snapshot=snapshot,
    )


def _row_to_route(row: sqlite3.Row) -> Route:
    return Route(
        route_id=str(row["id"]),
        route_code=row["route_code"],
        name=str(row["name"]),
        tier=str(row["tier"]),
        estimated_daily_ridership=int(row["estimated_daily_ridership"]),
        corridor_id=row["corridor_id"],
    )


def _row_to_pricing_config(row: sqlite3.Row) -> PricingConfig:
    document = _load_json(row["config"], {})
    if not isinstance(document, dict):
        raise InvalidPricingConfigError(f"Pricing config {row['id']} is not a JSON object")
    multipliers = document.get("multipliers") or {}
    config = PricingConfig(
        config_id=str(row["id"]),
        name=str(row["name"]),
        version=int(row["version"]),
        pricing_type=str(row["pricing_type"]),
        applicable_to=str(row["applicable_to"]),
        is_active=bool(row["is_active"]),
        active_from=_parse_date(row["active_from"]),
        active_to=_parse_date(row["active_to"]),
        base_cpm=dict(document.get("base_cpm") or {}),
        placement_multipliers=dict(multipliers.get("placement") or {}),
        daypart_multipliers=dict(multipliers.get("daypart") or {}),
    )
    validate_pricing_config(config)
    return config


def _query_reservations(
    cursor: sqlite3.Cursor,
    *,
    statuses: Iterable[str],
    legacy_fallback: float,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    route_ids: Optional[Sequence[str]] = None,
    campaign_id: Optional[str] = None,
) -> list[Reservation]:
    status_list = sorted(set(statuses))
    if not status_list:
        return []
    clauses = [f"status IN ({','.join('?' for _ in status_list)})"]
    params: list[Any] = list(status_list)
    # Inclusive overlap: reservation.start <= window.end AND reservation.end >= window.start
    if end_date is not None:
        clauses.append("start_date <= ?")
        params.append(end_date.isoformat())
    if start_date is not None:
        clauses.append("end_date >= ?")
        params.append(start_date.isoformat())
    if campaign_id is not None:
        clauses.append("campaign_id = ?")
        params.append(campaign_id)

    cursor.execute(
        f"""
        SELECT {_RESERVATION_COLUMNS}
        FROM Reservations
        WHERE {' AND '.join(clauses)}
        ORDER BY start_date ASC, id ASC;
        """,
        tuple(params),
    )
    reservations = [
        _row_to_reservation(row, legacy_fallback)
        for row in cursor.fetchall()
    ]
    if route_ids:
        wanted = set(route_ids)
        reservations = [
            reservation
            for reservation in reservations
            if wanted.intersection(reservation.route_ids)
        ]
    return reservations


class LedgerTransaction:
    """Reads and writes bound to one open ``BEGIN IMMEDIATE`` transaction."""

    def __init__(self, connection: sqlite3.Connection, legacy_fallback: float) -> None:
        self._connection = connection
        self._legacy_fallback = legacy_fallback

    def list_reservations(
        self,
        *,
        statuses: Iterable[str],
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        route_ids: Optional[Sequence[str]] = None,
    ) -> list[Reservation]:
        return _query_reservations(
            self._connection.cursor(),
            statuses=statuses,
            legacy_fallback=self._legacy_fallback,
            start_date=start_date,
            end_date=end_date,
            route_ids=route_ids,
        )

    def list_campaign_reservations(
        self,
        campaign_id: str,
        statuses: Iterable[str],
    ) -> list[Reservation]:
        return _query_reservations(
            self._connection.cursor(),
            statuses=statuses,
            legacy_fallback=self._legacy_fallback,
            campaign_id=campaign_id,
        )

    def get_reservation(self, reservation_id: str) -> Reservation:
        cursor = self._connection.cursor()
        cursor.execute(
            f"SELECT {_RESERVATION_COLUMNS} FROM Reservations WHERE id = ?;",
            (reservation_id,),
        )
        row = cursor.fetchone()
        if row is None:
            raise ReservationNotFoundError(f"Reservation '{reservation_id}' was not found")
        return _row_to_reservation(row, self._legacy_fallback)

    def insert_reservation(self, reservation: Reservation) -> None:
        self._connection.execute(
            """
            INSERT INTO Reservations (
                id,
                campaign_id,
                name,
                start_date,
                end_date,
                route_ids,
                dayparts,
                share_of_voice,
                pricing_snapshot,
                status
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                reservation.reservation_id,
                reservation.campaign_id,
                reservation.name,
                reservation.start_date.isoformat(),
                reservation.end_date.isoformat(),
                json.dumps(list(reservation.route_ids)),
                json.dumps(list(reservation.dayparts)),
                reservation.share_of_voice,
                json.dumps(reservation.pricing_snapshot) if reservation.pricing_snapshot else None,
                reservation.status,
            ),
        )
        self._record_transition(reservation.reservation_id, None, reservation.status, "admitted")

    def update_reservation_status(
        self,
        reservation: Reservation,
        new_status: str,
        notes: Optional[str] = None,
    ) -> Reservation:
        self._connection.execute(
            """
            UPDATE Reservations
            SET status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ?;
            """,
            (new_status, reservation.reservation_id),
        )
        self._record_transition(reservation.reservation_id, reservation.status, new_status, notes)
        return replace(reservation, status=new_status)

    def _record_transition(
        self,
        reservation_id: str,
        from_status: Optional[str],
        to_status: str,
        notes: Optional[str],
    ) -> None:
        self._connection.execute(
            """
            INSERT INTO ReservationTransitions (reservation_id, from_status, to_status, notes)
            VALUES (?, ?, ?, ?);
            """,
            (reservation_id, from_status, to_status, notes),
        )


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self, autocommit: bool = False) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.ledger_busy_timeout_seconds,
            isolation_level=None if autocommit else "DEFERRED",
            check_same_thread=False,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _session(self, operation: str) -> Iterator[sqlite3.Connection]:
        try:
            connection = self._connect()
        except sqlite3.Error as exc:
            raise _translate_sqlite_error(exc, operation) from exc
        try:
            with connection:
                yield connection
        except sqlite3.Error as exc:
            logger.error("Ledger operation failed | operation=%s | error=%s", operation, exc)
            raise _translate_sqlite_error(exc, operation) from exc
        finally:
            connection.close()

    @contextmanager
    def admission_transaction(self) -> Iterator[LedgerTransaction]:
        """Hold SQLite's write lock across a read, decide, write sequence.

        ``BEGIN IMMEDIATE`` takes the reserved lock up front, so no other
        writer can commit between the availability read and the insert. Any
        exception, including a failed COMMIT, rolls the transaction back.
        """
        try:
            connection = self._connect(autocommit=True)
        except sqlite3.Error as exc:
            raise _translate_sqlite_error(exc, "admission connect") from exc
        try:
            connection.execute("BEGIN IMMEDIATE;")
        except sqlite3.Error as exc:
            connection.close()
            raise _translate_sqlite_error(exc, "admission begin") from exc

        try:
            try:
                yield LedgerTransaction(connection, self._settings.legacy_missing_sov_fallback)
            except BaseException:
                connection.execute("ROLLBACK;")
                raise
            try:
                connection.execute("COMMIT;")
            except sqlite3.Error as exc:
                if connection.in_transaction:
                    connection.execute("ROLLBACK;")
                raise _translate_sqlite_error(exc, "admission commit") from exc
        except sqlite3.Error as exc:
            raise _translate_sqlite_error(exc, "admission transaction") from exc
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Corridors (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        area_cluster TEXT,
                        estimated_daily_ridership INTEGER NOT NULL DEFAULT 0,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Routes (
                        id TEXT PRIMARY KEY,
                        route_code TEXT,
                        name TEXT NOT NULL,
                        tier TEXT NOT NULL,
                        estimated_daily_ridership INTEGER NOT NULL
                            CHECK (estimated_daily_ridership >= 0),
                        corridor_id TEXT,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (corridor_id) REFERENCES Corridors(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS PricingConfigs (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        version INTEGER NOT NULL DEFAULT 1,
                        pricing_type TEXT NOT NULL DEFAULT 'cpm',
                        applicable_to TEXT NOT NULL DEFAULT 'all',
                        config TEXT NOT NULL,
                        is_active INTEGER NOT NULL DEFAULT 0 CHECK (is_active IN (0,1)),
                        active_from TEXT,
                        active_to TEXT,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        UNIQUE (name, version)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Reservations (
                        id TEXT PRIMARY KEY,
                        campaign_id TEXT NOT NULL,
                        name TEXT,
                        start_date TEXT NOT NULL,
                        end_date TEXT NOT NULL,
                        route_ids TEXT NOT NULL,
                        dayparts TEXT NOT NULL DEFAULT '[]',
                        share_of_voice REAL,
                        pricing_snapshot TEXT,
                        status TEXT NOT NULL DEFAULT 'draft',
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ReservationTransitions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        reservation_id TEXT NOT NULL,
                        from_status TEXT,
                        to_status TEXT NOT NULL,
                        notes TEXT,
                        transitioned_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (reservation_id) REFERENCES Reservations(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_reservations_status_dates
                    ON Reservations(status, start_date, end_date);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_reservations_campaign
                    ON Reservations(campaign_id);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_routes_corridor
                    ON Routes(corridor_id);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise LedgerUnavailableError(f"Database initialization failed: {exc}") from exc

    def seed_demo_data(self) -> int:
        """Seed demo corridors, routes and pricing only when the catalog is empty."""
        with self._session("seed demo data") as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM Routes;")
            if int(cursor.fetchone()["count"]) > 0:
                logger.info("Route catalog already present; skipping seed")
                return 0

            cursor.executemany(
                """
                INSERT INTO Corridors (id, name, area_cluster, estimated_daily_ridership)
                VALUES (?, ?, ?, ?);
                """,
                DEMO_CORRIDORS,
            )
            cursor.executemany(
                """
                INSERT INTO Routes (
                    id, route_code, name, tier, estimated_daily_ridership, corridor_id
                )
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                DEMO_ROUTES,
            )
            cursor.execute("SELECT COUNT(*) AS count FROM PricingConfigs;")
            if int(cursor.fetchone()["count"]) == 0:
                self._insert_pricing_config(cursor, DEMO_PRICING_CONFIG)

        logger.info(
            "Demo seed completed | corridors=%s | routes=%s",
            len(DEMO_CORRIDORS),
            len(DEMO_ROUTES),
        )
        return len(DEMO_ROUTES)

    def create_corridor(
        self,
        name: str,
        area_cluster: Optional[str] = None,
        estimated_daily_ridership: int = 0,
        corridor_id: Optional[str] = None,
    ) -> str:
        new_id = corridor_id or uuid4().hex
        with self._session("create corridor") as conn:
            conn.execute(
                """
                INSERT INTO Corridors (id, name, area_cluster, estimated_daily_ridership)
                VALUES (?, ?, ?, ?);
                """,
                (new_id, name, area_cluster, estimated_daily_ridership),
            )
        return new_id

    def create_route(
        self,
        name: str,
        tier: str,
        estimated_daily_ridership: int,
        corridor_id: Optional[str] = None,
        route_code: Optional[str] = None,
        route_id: Optional[str] = None,
    ) -> str:
        new_id = route_id or uuid4().hex
        with self._session("create route") as conn:
            conn.execute(
                """
                INSERT INTO Routes (
                    id, route_code, name, tier, estimated_daily_ridership, corridor_id
                )
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (new_id, route_code, name, tier, estimated_daily_ridership, corridor_id),
            )
        return new_id

    def get_routes(self, route_ids: Sequence[str]) -> List[Route]:
        """Return routes in request order; unknown ids are simply absent."""
        unique_ids = list(dict.fromkeys(route_ids))
        if not unique_ids:
            return []
        placeholders = ",".join("?" for _ in unique_ids)
        with self._session("get routes") as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT id, route_code, name, tier, estimated_daily_ridership, corridor_id
                FROM Routes
                WHERE id IN ({placeholders});
                """,
                tuple(unique_ids),
            )
            by_id = {str(row["id"]): _row_to_route(row) for row in cursor.fetchall()}
        return [by_id[route_id] for route_id in unique_ids if route_id in by_id]

    def list_routes_by_corridors(self, corridor_ids: Sequence[str]) -> List[Route]:
        unique_ids = list(dict.fromkeys(corridor_ids))
        if not unique_ids:
            return []
        placeholders = ",".join("?" for _ in unique_ids)
        with self._session("list corridor routes") as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT id, route_code, name, tier, estimated_daily_ridership, corridor_id
                FROM Routes
                WHERE corridor_id IN ({placeholders})
                ORDER BY id ASC;
                """,
                tuple(unique_ids),
            )
            return [_row_to_route(row) for row in cursor.fetchall()]

    def list_corridors(self) -> List[Corridor]:
        with self._session("list corridors") as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT id, name, area_cluster, estimated_daily_ridership
                FROM Corridors
                ORDER BY name ASC;
                """
            )
            return [
                Corridor(
                    corridor_id=str(row["id"]),
                    name=str(row["name"]),
                    area_cluster=row["area_cluster"],
                    estimated_daily_ridership=int(row["estimated_daily_ridership"]),
                )
                for row in cursor.fetchall()
            ]

    def _insert_pricing_config(self, cursor: sqlite3.Cursor, config: PricingConfig) -> None:
        if config.is_active:
            cursor.execute("UPDATE PricingConfigs SET is_active = 0 WHERE is_active = 1;")
        cursor.execute(
            """
            INSERT INTO PricingConfigs (
                id,
                name,
                version,
                pricing_type,
                applicable_to,
                config,
                is_active,
                active_from,
                active_to
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                config.config_id,
                config.name,
                config.version,
                config.pricing_type,
                config.applicable_to,
                json.dumps(config.to_config_dict()),
                1 if config.is_active else 0,
                config.active_from.isoformat() if config.active_from else None,
                config.active_to.isoformat() if config.active_to else None,
            ),
        )

    def create_pricing_config(self, config: PricingConfig) -> PricingConfig:
        """Validate and store a config; an active config deactivates the others."""
        validate_pricing_config(config)
        try:
            with self._session("create pricing config") as conn:
                self._insert_pricing_config(conn.cursor(), config)
        except LedgerUnavailableError as exc:
            if isinstance(exc.__cause__, sqlite3.IntegrityError):
                raise InvalidPricingConfigError(
                    f"A pricing config named '{config.name}' version {config.version} already exists"
                ) from exc
            raise
        logger.info(
            "Pricing config stored | config_id=%s | name=%s | version=%s | active=%s",
            config.config_id,
            config.name,
            config.version,
            config.is_active,
        )
        return config

    def get_pricing_config(self, config_id: str) -> Optional[PricingConfig]:
        with self._session("get pricing config") as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM PricingConfigs WHERE id = ?;", (config_id,))
            row = cursor.fetchone()
            if row is None:
                return None
            return _row_to_pricing_config(row)

    def get_active_pricing_config(self) -> Optional[PricingConfig]:
        with self._session("get active pricing config") as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT * FROM PricingConfigs
                WHERE is_active = 1
                ORDER BY version DESC, created_at DESC
                LIMIT 1;
                """
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return _row_to_pricing_config(row)

    def list_reservations(
        self,
        *,
        statuses: Iterable[str],
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        route_ids: Optional[Sequence[str]] = None,
    ) -> list[Reservation]:
        """Reservations in ``statuses`` overlapping the optional inclusive window."""
        with self._session("list reservations") as conn:
            return _query_reservations(
                conn.cursor(),
                statuses=statuses,
                legacy_fallback=self._settings.legacy_missing_sov_fallback,
                start_date=start_date,
                end_date=end_date,
                route_ids=route_ids,
            )

    def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        with self._session("get reservation") as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {_RESERVATION_COLUMNS} FROM Reservations WHERE id = ?;",
                (reservation_id,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return _row_to_reservation(row, self._settings.legacy_missing_sov_fallback)

    def import_reservation(
        self,
        *,
        campaign_id: str,
        start_date: date,
        end_date: date,
        route_ids: Sequence[str],
        status: str,
        share_of_voice: Any = None,
        dayparts: Sequence[str] = (),
        pricing_snapshot: Optional[dict[str, Any]] = None,
        name: Optional[str] = None,
        reservation_id: Optional[str] = None,
    ) -> str:
        """Store a reservation row verbatim, bypassing admission control.

        Used for migrating historical flights, whose SOV may still be a legacy
        percentage or missing entirely; reads normalize it.
        """
        new_id = reservation_id or uuid4().hex
        with self._session("import reservation") as conn:
            conn.execute(
                """
                INSERT INTO Reservations (
                    id,
                    campaign_id,
                    name,
                    start_date,
                    end_date,
                    route_ids,
                    dayparts,
                    share_of_voice,
                    pricing_snapshot,
                    status
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    new_id,
                    campaign_id,
                    name,
                    start_date.isoformat(),
                    end_date.isoformat(),
                    json.dumps(list(route_ids)),
                    json.dumps(list(dayparts)),
                    share_of_voice,
                    json.dumps(pricing_snapshot) if pricing_snapshot is not None else None,
                    status,
                ),
            )
        return new_id

    def list_transitions(self, reservation_id: str) -> list[dict[str, Optional[str]]]:
        with self._session("list transitions") as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT from_status, to_status, notes
                FROM ReservationTransitions
                WHERE reservation_id = ?
                ORDER BY id ASC;
                """,
                (reservation_id,),
            )
            return [
                {
                    "from_status": row["from_status"],
                    "to_status": str(row["to_status"]),
                    "notes": row["notes"],
                }
                for row in cursor.fetchall()
            ]

    def count_reservations(self, statuses: Optional[Iterable[str]] = None) -> int:
        with self._session("count reservations") as conn:
            cursor = conn.cursor()
            if statuses is None:
                cursor.execute("SELECT COUNT(*) AS count FROM Reservations;")
            else:
                status_list = sorted(set(statuses))
                if not status_list:
                    return 0
                cursor.execute(
                    f"""
                    SELECT COUNT(*) AS count FROM Reservations
                    WHERE status IN ({','.join('?' for _ in status_list)});
                    """,
                    tuple(status_list),
                )
            return int(cursor.fetchone()["count"])
