import logging

from sqlalchemy import text

from carebridge.database import build_engine, log_slow_queries


def test_slow_statements_are_logged(caplog):
    engine = build_engine("sqlite:///:memory:")
    log_slow_queries(engine, threshold_seconds=-1)

    with caplog.at_level(logging.WARNING, logger="carebridge.database"):
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    assert any("Slow query" in r.getMessage() and "SELECT 1" in r.getMessage() for r in caplog.records)


def test_fast_statements_are_not_logged(caplog):
    engine = build_engine("sqlite:///:memory:")
    log_slow_queries(engine, threshold_seconds=60)

    with caplog.at_level(logging.WARNING, logger="carebridge.database"):
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    assert not [r for r in caplog.records if "Slow query" in r.getMessage()]
