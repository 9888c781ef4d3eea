"""
SQL-level checks for OrderStore statements (compiled, no database).
"""
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from fulfillment.services.order_store import (
    OrderStore,
    build_claim_statement,
    build_label_repair_statement,
    build_sweep_statement,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def compile_pg(stmt):
    compiled = stmt.compile(dialect=postgresql.dialect())
    return str(compiled), compiled.params


class TestClaimStatement:

    def test_claim_is_conditional_update(self):
        sql, params = compile_pg(build_claim_statement("L1", "W1", NOW))

        assert sql.startswith("UPDATE order_lines SET")
        assert "WHERE order_lines.unique_id = " in sql
        assert "AND order_lines.status = " in sql
        assert "unclaimed" in params.values()
        assert params["claimed_by"] == "W1"
        assert params["last_claimed_by"] == "W1"
        assert params["claimed_at"] == NOW

    @pytest.mark.asyncio
    async def test_claim_line_checks_rowcount(self, mock_db):
        store = OrderStore(mock_db)

        mock_db.execute.return_value = MagicMock(rowcount=1)
        assert await store.claim_line("L1", "W1", NOW) is True

        mock_db.execute.return_value = MagicMock(rowcount=0)
        assert await store.claim_line("L1", "W2", NOW) is False

        assert mock_db.execute.call_count == 2
        mock_db.commit.assert_not_called()


class TestSweepStatement:

    def test_sweep_is_single_update(self):
        sql, params = compile_pg(build_sweep_statement(NOW))

        assert sql.startswith("UPDATE order_lines SET")
        assert "order_lines.label_downloaded" in sql
        assert "order_lines.claimed_at < " in sql
        assert "claimed" in params.values()
        assert NOW in params.values()
        # last_claimed_* history is untouched
        assert "last_claimed_by" not in sql

    @pytest.mark.asyncio
    async def test_sweep_returns_rowcount(self, mock_db):
        mock_db.execute.return_value = MagicMock(rowcount=7)

        assert await OrderStore(mock_db).sweep_stale_claims(NOW) == 7
        mock_db.execute.assert_called_once()


class TestLabelRepairStatement:

    def test_repair_checks_for_usable_label(self):
        sql, params = compile_pg(build_label_repair_statement())

        assert sql.startswith("UPDATE order_lines SET label_downloaded=")
        assert "EXISTS" in sql
        assert "FROM labels" in sql
        assert "labels.order_id = order_lines.order_id" in sql
        assert "undefined" in str(params)


class TestUnmarkReady:

    @pytest.mark.asyncio
    async def test_only_ready_lines_of_the_order(self, mock_db):
        mock_db.execute.return_value = MagicMock(rowcount=1)

        assert await OrderStore(mock_db).unmark_ready("O5") == 1

        stmt = mock_db.execute.call_args.args[0]
        sql, params = compile_pg(stmt)
        assert sql.startswith("UPDATE order_lines SET status=")
        assert "order_lines.order_id = " in sql
        assert "O5" in params.values()
        assert "ready_for_handover" in params.values()
        assert "claimed" in params.values()
