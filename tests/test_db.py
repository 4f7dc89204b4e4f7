"""
Schema setup: connections are cheap to open, DDL runs once via init_db.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from absence_insights.db import connect, init_db

from conftest import scalar

TABLES_SQL = "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = ?"


class TestSchemaSetup:
    def test_connect_does_not_create_tables(self, tmp_path):
        conn = connect(tmp_path / "hr.db")
        assert scalar(conn, TABLES_SQL, ("absence_insights",)) == 0
        conn.close()

    def test_init_db_creates_tables(self, tmp_path):
        path = tmp_path / "nested" / "hr.db"
        init_db(path)
        conn = connect(path)
        for table in ("users", "leave_requests", "absence_insights", "absence_summaries",
                      "insight_review_history", "audit_logs"):
            assert scalar(conn, TABLES_SQL, (table,)) == 1
        conn.close()

    def test_init_db_keeps_existing_rows(self, tmp_path):
        path = tmp_path / "hr.db"
        init_db(path)
        conn = connect(path)
        conn.execute(
            "INSERT INTO users (id, tenant_id, full_name, role_name) VALUES (1, 1, 'Ada', 'Admin')"
        )
        conn.commit()
        conn.close()

        init_db(path)
        conn = connect(path)
        assert scalar(conn, "SELECT COUNT(*) FROM users") == 1
        conn.close()
