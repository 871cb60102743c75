"""
Database Migration: Create tank_logs and processed_tank_data tables
═══════════════════════════════════════════════════════════════════════════════

tank_logs holds raw readings (unique per store/tank/timestamp, expired by the
retention cleanup). processed_tank_data holds one derived-metrics row per
store/tank.

MySQL only. Other dialects: `python tank_sync_service.py init-db`.

Run with: python3 migrations/001_create_tank_tables.py
"""

import sys
from pathlib import Path

from sqlalchemy import text

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from tank_monitor.repositories.database import create_store_engine
from tank_monitor.settings import StoreSettings


CREATE_TANK_LOGS_SQL = """
CREATE TABLE IF NOT EXISTS tank_logs (
    id BIGINT AUTO_INCREMENT PRIMARY KEY,
    store_name VARCHAR(100) NOT NULL,
    tank_id INT NOT NULL,
    product VARCHAR(50) NOT NULL DEFAULT 'Unknown',

    -- Measurements
    volume DOUBLE NOT NULL DEFAULT 0,
    tc_volume DOUBLE NOT NULL DEFAULT 0,
    ullage DOUBLE NOT NULL DEFAULT 0,
    height DOUBLE NOT NULL DEFAULT 0,
    water DOUBLE NOT NULL DEFAULT 0,
    temp DOUBLE NOT NULL DEFAULT 70,

    -- Timestamps (UTC)
    recorded_at DATETIME(6) NOT NULL,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,

    UNIQUE KEY uq_tank_logs_identity (store_name, tank_id, recorded_at),
    KEY idx_tank_logs_recorded_at (recorded_at),
    KEY idx_tank_logs_store_tank (store_name, tank_id)
) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci;
"""

CREATE_PROCESSED_SQL = """
CREATE TABLE IF NOT EXISTS processed_tank_data (
    id BIGINT AUTO_INCREMENT PRIMARY KEY,
    store_name VARCHAR(100) NOT NULL,
    tank_id INT NOT NULL,

    -- Derived metrics
    run_rate DOUBLE NOT NULL DEFAULT 0,
    hours_to_critical DOUBLE DEFAULT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'normal',
    capacity_percentage DOUBLE NOT NULL DEFAULT 0,
    predicted_critical_at DATETIME DEFAULT NULL,
    data_quality_score DOUBLE NOT NULL DEFAULT 0,
    available_ullage DOUBLE NOT NULL DEFAULT 0,
    qualifying_readings INT NOT NULL DEFAULT 0,
    last_calculated DATETIME NOT NULL,

    UNIQUE KEY uq_processed_tank (store_name, tank_id)
) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci;
"""


def run_migration():
    """Execute the migration"""
    print("🔧 Creating tank_logs / processed_tank_data tables...")

    settings = StoreSettings()
    if not settings.url.startswith("mysql"):
        print("❌ ERROR: STORE_URL is not a MySQL URL")
        print("   Use `python tank_sync_service.py init-db` for other databases")
        return False

    engine = create_store_engine(settings)

    try:
        with engine.connect() as conn:
            print("   Creating tank_logs...")
            conn.execute(text(CREATE_TANK_LOGS_SQL))
            conn.commit()
            print("   ✅ tank_logs created")

            print("   Creating processed_tank_data...")
            conn.execute(text(CREATE_PROCESSED_SQL))
            conn.commit()
            print("   ✅ processed_tank_data created")

            # Verify
            for table in ("tank_logs", "processed_tank_data"):
                count = conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar()
                print(f"   📊 {table}: {count} rows")

        print("✅ Migration complete")
        return True

    except Exception as e:
        print(f"❌ Migration failed: {e}")
        return False
    finally:
        engine.dispose()


if __name__ == "__main__":
    success = run_migration()
    sys.exit(0 if success else 1)
