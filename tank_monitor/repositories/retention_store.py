"""
Retention Store - Durable storage for tank readings and derived metrics

Tables:
    tank_logs            raw readings, unique (store_name, tank_id, recorded_at)
    processed_tank_data  one derived-metrics row per (store_name, tank_id)

Readings are append-only and idempotent; retention cleanup deletes rows older
than the configured age in short id-batched transactions. Timestamps are
stored as naive UTC and come back timezone-aware.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Double,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.dialects import mysql
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tank_monitor.errors import PersistenceError
from tank_monitor.models.tank_models import (
    DerivedMetrics,
    TankStatus,
    TelemetryReading,
    UpsertResult,
)
from tank_monitor.repositories.database import check_connection
from tank_monitor.timezone_utils import ensure_utc, to_naive_utc, utc_now

logger = logging.getLogger(__name__)

metadata = MetaData()

# SQLite only autoincrements INTEGER PRIMARY KEY
_PK = BigInteger().with_variant(Integer, "sqlite")
# Microsecond precision on MySQL, otherwise sub-second readings collide
_RECORDED_AT = DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql")

tank_logs = Table(
    "tank_logs",
    metadata,
    Column("id", _PK, primary_key=True, autoincrement=True),
    Column("store_name", String(100), nullable=False),
    Column("tank_id", Integer, nullable=False),
    Column("product", String(50), nullable=False, default="Unknown"),
    Column("volume", Double, nullable=False, default=0),
    Column("tc_volume", Double, nullable=False, default=0),
    Column("ullage", Double, nullable=False, default=0),
    Column("height", Double, nullable=False, default=0),
    Column("water", Double, nullable=False, default=0),
    Column("temp", Double, nullable=False, default=70),
    Column("recorded_at", _RECORDED_AT, nullable=False),
    Column("created_at", DateTime, nullable=False, default=func.now()),
    UniqueConstraint(
        "store_name", "tank_id", "recorded_at", name="uq_tank_logs_identity"
    ),
    Index("idx_tank_logs_recorded_at", "recorded_at"),
    Index("idx_tank_logs_store_tank", "store_name", "tank_id"),
)

processed_tank_data = Table(
    "processed_tank_data",
    metadata,
    Column("id", _PK, primary_key=True, autoincrement=True),
    Column("store_name", String(100), nullable=False),
    Column("tank_id", Integer, nullable=False),
    Column("run_rate", Double, nullable=False, default=0),
    Column("hours_to_critical", Double, nullable=True),
    Column("status", String(20), nullable=False, default=TankStatus.NORMAL.value),
    Column("capacity_percentage", Double, nullable=False, default=0),
    Column("predicted_critical_at", DateTime, nullable=True),
    Column("data_quality_score", Double, nullable=False, default=0),
    Column("available_ullage", Double, nullable=False, default=0),
    Column("qualifying_readings", Integer, nullable=False, default=0),
    Column("last_calculated", DateTime, nullable=False),
    UniqueConstraint("store_name", "tank_id", name="uq_processed_tank"),
)

IDENTITY_COLUMNS = ["store_name", "tank_id", "recorded_at"]
METRICS_KEY_COLUMNS = ["store_name", "tank_id"]


def _reading_row(reading: TelemetryReading) -> Dict[str, Any]:
    return {
        "store_name": reading.site_id,
        "tank_id": reading.tank_id,
        "product": reading.product,
        "volume": reading.volume,
        "tc_volume": reading.tc_volume,
        "ullage": reading.ullage,
        "height": reading.height,
        "water": reading.water,
        "temp": reading.temperature,
        "recorded_at": to_naive_utc(reading.recorded_at),
        "created_at": to_naive_utc(utc_now()),
    }


def _row_to_reading(row) -> TelemetryReading:
    return TelemetryReading(
        site_id=row.store_name,
        tank_id=row.tank_id,
        recorded_at=ensure_utc(row.recorded_at),
        product=row.product,
        volume=row.volume,
        tc_volume=row.tc_volume,
        ullage=row.ullage,
        height=row.height,
        water=row.water,
        temperature=row.temp,
    )


class RetentionStore:
    """Repository for tank_logs / processed_tank_data."""

    def __init__(self, engine: Engine, cleanup_batch_size: int = 1000):
        self.engine = engine
        self.cleanup_batch_size = cleanup_batch_size
        self.dialect = engine.dialect.name

    @contextmanager
    def _wrap(self, operation: str):
        """Translate driver errors into PersistenceError."""
        try:
            yield
        except SQLAlchemyError as e:
            logger.error(f"❌ Store {operation} failed: {e}")
            raise PersistenceError(f"{operation} failed: {e}") from e

    # ------------------------------------------------------------------
    # Schema / connectivity
    # ------------------------------------------------------------------

    def create_schema(self):
        with self._wrap("create_schema"):
            metadata.create_all(self.engine)
        logger.info("✅ tank_logs / processed_tank_data tables ready")

    def test_connectivity(self) -> bool:
        with self._wrap("test_connectivity"):
            return check_connection(self.engine)

    # ------------------------------------------------------------------
    # Readings
    # ------------------------------------------------------------------

    def _insert_ignore(self, conn, row: Dict[str, Any]) -> UpsertResult:
        if self.dialect == "mysql":
            stmt = tank_logs.insert().prefix_with("IGNORE")
        elif self.dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as sqlite_insert

            stmt = sqlite_insert(tank_logs).on_conflict_do_nothing(
                index_elements=IDENTITY_COLUMNS
            )
        elif self.dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as pg_insert

            stmt = pg_insert(tank_logs).on_conflict_do_nothing(
                index_elements=IDENTITY_COLUMNS
            )
        else:
            # Generic dialects: rely on the unique constraint
            try:
                with conn.begin_nested():
                    conn.execute(tank_logs.insert(), row)
                return UpsertResult.OK
            except IntegrityError:
                return UpsertResult.DUPLICATE

        result = conn.execute(stmt, row)
        return UpsertResult.OK if result.rowcount > 0 else UpsertResult.DUPLICATE

    def upsert_reading(self, reading: TelemetryReading) -> UpsertResult:
        """Insert a reading unless its identity already exists."""
        with self._wrap("upsert_reading"):
            with self.engine.begin() as conn:
                return self._insert_ignore(conn, _reading_row(reading))

    def upsert_readings(
        self, readings: Iterable[TelemetryReading], batch_size: int = 100
    ) -> Tuple[int, int]:
        """
        Idempotent bulk insert, one transaction per batch.

        Returns:
            (inserted, duplicates)
        """
        inserted = duplicates = 0
        batch: List[Dict[str, Any]] = []

        def flush():
            nonlocal inserted, duplicates
            with self._wrap("upsert_readings"):
                with self.engine.begin() as conn:
                    for row in batch:
                        if self._insert_ignore(conn, row) is UpsertResult.OK:
                            inserted += 1
                        else:
                            duplicates += 1
            batch.clear()

        for reading in readings:
            batch.append(_reading_row(reading))
            if len(batch) >= max(1, batch_size):
                flush()
        if batch:
            flush()

        return inserted, duplicates

    def recent_readings(
        self, site_id: str, tank_id: int, since: datetime
    ) -> List[TelemetryReading]:
        """Readings recorded at or after `since`, oldest first."""
        stmt = (
            select(tank_logs)
            .where(
                tank_logs.c.store_name == site_id,
                tank_logs.c.tank_id == tank_id,
                tank_logs.c.recorded_at >= to_naive_utc(since),
            )
            .order_by(tank_logs.c.recorded_at.asc())
        )
        with self._wrap("recent_readings"):
            with self.engine.connect() as conn:
                return [_row_to_reading(row) for row in conn.execute(stmt)]

    def count_readings(
        self, site_id: Optional[str] = None, tank_id: Optional[int] = None
    ) -> int:
        stmt = select(func.count()).select_from(tank_logs)
        if site_id is not None:
            stmt = stmt.where(tank_logs.c.store_name == site_id)
        if tank_id is not None:
            stmt = stmt.where(tank_logs.c.tank_id == tank_id)
        with self._wrap("count_readings"):
            with self.engine.connect() as conn:
                return int(conn.execute(stmt).scalar_one())

    def delete_older_than(
        self, max_age: timedelta, now: Optional[datetime] = None
    ) -> int:
        """
        Delete readings recorded before now - max_age.

        Each batch of ids is selected and deleted in its own short
        transaction so concurrent upserts are not held up.
        """
        cutoff = to_naive_utc((now or utc_now()) - max_age)
        batch_size = max(1, self.cleanup_batch_size)
        total = 0

        with self._wrap("delete_older_than"):
            while True:
                with self.engine.begin() as conn:
                    ids = (
                        conn.execute(
                            select(tank_logs.c.id)
                            .where(tank_logs.c.recorded_at < cutoff)
                            .order_by(tank_logs.c.id)
                            .limit(batch_size)
                        )
                        .scalars()
                        .all()
                    )
                    if not ids:
                        break
                    conn.execute(delete(tank_logs).where(tank_logs.c.id.in_(ids)))
                total += len(ids)
                if len(ids) < batch_size:
                    break

        if total:
            logger.info(f"🧹 Deleted {total} readings recorded before {cutoff} UTC")
        return total

    # ------------------------------------------------------------------
    # Derived metrics
    # ------------------------------------------------------------------

    def upsert_derived_metrics(
        self, site_id: str, tank_id: int, metrics: DerivedMetrics
    ) -> None:
        """Insert or overwrite the single metrics row for (site, tank)."""
        values = {
            "run_rate": metrics.run_rate,
            "hours_to_critical": metrics.hours_to_critical,
            "status": metrics.status.value,
            "capacity_percentage": metrics.capacity_percentage,
            "predicted_critical_at": (
                to_naive_utc(metrics.predicted_critical_at)
                if metrics.predicted_critical_at
                else None
            ),
            "data_quality_score": metrics.data_quality_score,
            "available_ullage": metrics.available_ullage,
            "qualifying_readings": metrics.qualifying_readings,
            "last_calculated": to_naive_utc(metrics.calculated_at or utc_now()),
        }
        row = {"store_name": site_id, "tank_id": tank_id, **values}

        with self._wrap("upsert_derived_metrics"):
            with self.engine.begin() as conn:
                if self.dialect == "mysql":
                    from sqlalchemy.dialects.mysql import insert as mysql_insert

                    stmt = mysql_insert(processed_tank_data).values(**row)
                    conn.execute(
                        stmt.on_duplicate_key_update(
                            **{key: stmt.inserted[key] for key in values}
                        )
                    )
                elif self.dialect in ("sqlite", "postgresql"):
                    if self.dialect == "sqlite":
                        from sqlalchemy.dialects.sqlite import insert as dialect_insert
                    else:
                        from sqlalchemy.dialects.postgresql import (
                            insert as dialect_insert,
                        )

                    stmt = dialect_insert(processed_tank_data).values(**row)
                    conn.execute(
                        stmt.on_conflict_do_update(
                            index_elements=METRICS_KEY_COLUMNS,
                            set_={key: stmt.excluded[key] for key in values},
                        )
                    )
                else:
                    result = conn.execute(
                        update(processed_tank_data)
                        .where(
                            processed_tank_data.c.store_name == site_id,
                            processed_tank_data.c.tank_id == tank_id,
                        )
                        .values(**values)
                    )
                    if result.rowcount == 0:
                        conn.execute(processed_tank_data.insert(), row)

    def latest_metrics(self, site_id: str, tank_id: int) -> Optional[DerivedMetrics]:
        """Last-known-good metrics for a tank, or None."""
        stmt = select(processed_tank_data).where(
            processed_tank_data.c.store_name == site_id,
            processed_tank_data.c.tank_id == tank_id,
        )
        with self._wrap("latest_metrics"):
            with self.engine.connect() as conn:
                row = conn.execute(stmt).first()

        if row is None:
            return None

        return DerivedMetrics(
            run_rate=row.run_rate,
            hours_to_critical=row.hours_to_critical,
            status=TankStatus(row.status),
            capacity_percentage=row.capacity_percentage,
            predicted_critical_at=ensure_utc(row.predicted_critical_at),
            data_quality_score=row.data_quality_score,
            available_ullage=row.available_ullage,
            qualifying_readings=row.qualifying_readings,
            calculated_at=ensure_utc(row.last_calculated),
        )
