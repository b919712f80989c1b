"""
Tests for engine initialization and transactional scope.
"""

import pytest
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from supply_kernel.db.engine import (
    begin_snapshot_read,
    build_engine,
    create_tables,
    get_engine,
    get_session,
    is_postgres,
    reset_engine,
    session_scope,
)
from supply_kernel.services.sequence_service import SequenceCounter, SequenceService


class TestEngineLifecycle:

    def test_uninitialized_engine_raises(self):
        reset_engine()

        with pytest.raises(RuntimeError):
            get_engine()
        with pytest.raises(RuntimeError):
            get_session()

    def test_sqlite_enforces_foreign_keys(self):
        engine = build_engine("sqlite:///:memory:")
        with engine.connect() as conn:
            assert conn.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1
        assert not is_postgres(engine)
        engine.dispose()


class TestSessionScope:

    def test_commits_on_success(self, engine):
        with session_scope() as session:
            SequenceService(session).next_value("scope-test")

        with session_scope() as session:
            assert SequenceService(session).current_value("scope-test") == 1

    def test_rolls_back_on_error(self, engine):
        with pytest.raises(RuntimeError):
            with session_scope() as session:
                SequenceService(session).next_value("scope-test")
                raise RuntimeError("boom")

        with session_scope() as session:
            assert session.execute(select(SequenceCounter)).first() is None


class TestSqliteTransactions:

    @pytest.fixture
    def file_engine(self, tmp_path):
        engine = build_engine(f"sqlite:///{tmp_path / 'transactions.db'}")
        create_tables(engine)
        yield engine
        engine.dispose()

    def test_file_database_uses_wal(self, file_engine):
        with file_engine.connect() as conn:
            assert conn.exec_driver_sql("PRAGMA journal_mode").scalar() == "wal"

    def test_snapshot_read_alongside_open_writer(self, file_engine):
        factory = sessionmaker(bind=file_engine)
        writer, reader = factory(), factory()
        try:
            SequenceService(writer).next_value("held")

            begin_snapshot_read(reader)
            assert SequenceService(reader).current_value("held") is None
            reader.rollback()

            writer.commit()
            begin_snapshot_read(reader)
            assert SequenceService(reader).current_value("held") == 1
        finally:
            writer.close()
            reader.close()

    def test_snapshot_read_inside_open_transaction_is_noop(self, file_engine):
        session = sessionmaker(bind=file_engine)()
        try:
            SequenceService(session).next_value("held")
            begin_snapshot_read(session)

            assert SequenceService(session).current_value("held") == 1
        finally:
            session.close()
