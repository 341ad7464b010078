from datetime import datetime
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, text

from reporting.core.config import Settings, get_settings
from reporting.db.base import Base
from reporting.db.models.user import User
from reporting.scripts import migrate
from reporting.scripts.seed_sample import seed_sample
from reporting.services.engine import ReportWorkflowEngine
from reporting.services.store import ReportStore

ROOT = Path(__file__).resolve().parents[1]


def test_settings_helpers():
    s = Settings(_env_file=None, NOTIFICATION_CHANNELS=" Email, SMS ,,push ", MAX_UPLOAD_MB=2)
    assert s.notification_channels() == ["email", "sms", "push"]
    assert s.max_upload_bytes == 2 * 1024 * 1024
    assert get_settings(_env_file=None, ENV="test").ENV == "test"


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///./other.db")
    monkeypatch.setenv("IN_APP_NOTIFICATIONS", "false")
    s = Settings(_env_file=None)
    assert s.DATABASE_URL == "sqlite:///./other.db"
    assert s.IN_APP_NOTIFICATIONS is False


def test_seed_sample_is_idempotent(session_factory):
    db = session_factory()
    try:
        assert seed_sample(db) == 11
        db.commit()
        assert seed_sample(db) == 0
        db.commit()
        usernames = {u.username for u in db.query(User).all()}
    finally:
        db.close()
    assert {"ps_staff", "ps_manager", "ba_manager", "gm"} <= usernames


def test_seeded_users_run_the_workflow(session_factory, settings):
    db = session_factory()
    try:
        seed_sample(db)
        db.commit()
        by_name = {u.username: u.id for u in db.query(User).all()}
    finally:
        db.close()

    engine = ReportWorkflowEngine(session_factory, settings)
    report = engine.create_report(by_name["qs_staff"], title="Cost report", content="Q3 figures")
    assert report["report_number"].startswith("QS-")
    engine.submit(report["id"], by_name["qs_staff"])
    engine.approve(report["id"], by_name["qs_manager"])
    assert engine.approve(report["id"], by_name["gm"])["status"] == "completed"


def test_next_report_number_counts_per_prefix(session_factory, settings, users):
    engine = ReportWorkflowEngine(session_factory, settings, clock=lambda: datetime(2026, 1, 5, 8, 0))
    engine.create_report(users["u1"], title="t", content="c")
    db = session_factory()
    try:
        store = ReportStore(db)
        dept = store.get_user(users["u1"]).department
        assert store.next_report_number(dept, 2026) == "PS-2026-0002"
        assert store.next_report_number(dept, 2027) == "PS-2027-0001"
    finally:
        db.close()


@pytest.fixture
def alembic_config(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'migrated.db'}")
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    return cfg


def test_migrations_upgrade_and_downgrade(alembic_config, tmp_path):
    command.upgrade(alembic_config, "head")
    engine = create_engine(f"sqlite:///{tmp_path / 'migrated.db'}")
    try:
        tables = set(inspect(engine).get_table_names())
        assert {
            "users",
            "reports",
            "report_signatures",
            "report_attachments",
            "audit_logs",
            "workflow_logs",
            "notifications",
        } <= tables

        command.downgrade(alembic_config, "base")
        assert set(inspect(engine).get_table_names()) <= {"alembic_version"}
    finally:
        engine.dispose()


def test_migrate_main_seeds_after_upgrade(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'boot.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("AUTO_SEED_SAMPLE", "true")
    calls = []

    def fake_run(cmd):
        calls.append(cmd)
        engine = create_engine(url)
        Base.metadata.create_all(engine)
        engine.dispose()
        return 0

    monkeypatch.setattr(migrate, "run", fake_run)
    assert migrate.main() == 0
    assert calls == [["alembic", "upgrade", "head"]]

    engine = create_engine(url)
    try:
        with engine.connect() as conn:
            assert conn.execute(text("SELECT COUNT(*) FROM users")).scalar() == 11
    finally:
        engine.dispose()


def test_migrate_main_stops_on_failed_upgrade(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'boot.db'}")
    monkeypatch.setattr(migrate, "run", lambda cmd: 3)
    assert migrate.main() == 3
