"""Tests for the command line interface."""

import argparse
from unittest.mock import AsyncMock, MagicMock

import pytest

from logistics import __main__ as cli
from logistics.__main__ import EXIT_CODES, cmd_batch, cmd_steps, parse_args, positive_int
from logistics.models import CommonCode
from logistics_core.batch import BatchClassifier
from logistics_core.outcome import RunOutcome


class TestParseArgs:
    def test_run_options(self):
        args = parse_args(["run", "orders.xlsx", "--test-level", "22", "--batch", "2차", "--yes"])
        assert args.command == "run"
        assert args.file == "orders.xlsx"
        assert args.test_level == 22
        assert args.batch == "2차"
        assert args.yes is True

    def test_run_defaults(self):
        args = parse_args(["run", "orders.xlsx"])
        assert args.test_level is None
        assert args.batch is None
        assert args.yes is False
        assert args.verbose is False

    def test_zero_test_level_rejected(self):
        with pytest.raises(SystemExit):
            parse_args(["run", "orders.xlsx", "--test-level", "0"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])

    def test_sales_input(self):
        args = parse_args(["-v", "sales-input", "--batch", "막차"])
        assert args.command == "sales-input"
        assert args.batch == "막차"
        assert args.verbose is True

    @pytest.mark.parametrize("value", ["abc", "-1"])
    def test_positive_int(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            positive_int(value)


class TestBatchCommand:
    def test_lists_table(self, capsys):
        assert cmd_batch(parse_args(["batch"])) == 0
        out = capsys.readouterr().out
        assert "현재 배치" in out
        assert "18:00~23:00" in out

    def test_check_current_batch(self):
        current = BatchClassifier().classify_now()
        assert cmd_batch(parse_args(["batch", "--check", current])) == 0

    def test_check_unknown_batch(self, capsys):
        assert cmd_batch(parse_args(["batch", "--check", "9차"])) == 1
        assert "9차" in capsys.readouterr().out


class TestStepsCommand:
    @pytest.fixture
    def repo(self, monkeypatch):
        repo = MagicMock()
        repo.set_used = AsyncMock(return_value=True)
        repo.get_by_group = AsyncMock(return_value=[
            CommonCode(group_code="PG_PROC", code="READ_EXCEL", code_name="엑셀 파일 읽기", sort_order=10),
            CommonCode(group_code="PG_PROC", code="BOX_MARKING", code_name="박스 상품 표시", sort_order=80, is_used=False),
        ])
        monkeypatch.setattr(cli, "CommonCodeRepository", lambda: repo)
        return repo

    def test_enable_and_disable_are_exclusive(self):
        with pytest.raises(SystemExit):
            parse_args(["steps", "--enable", "A", "--disable", "B"])

    @pytest.mark.asyncio
    async def test_disable_step(self, repo, capsys):
        assert await cmd_steps(parse_args(["steps", "--disable", "BOX_MARKING"])) == 0

        repo.set_used.assert_awaited_once_with("PG_PROC", "BOX_MARKING", is_used=False)
        out = capsys.readouterr().out
        assert "BOX_MARKING: disabled" in out
        assert "READ_EXCEL" in out

    @pytest.mark.asyncio
    async def test_enable_step(self, repo):
        assert await cmd_steps(parse_args(["steps", "--enable", "BOX_MARKING"])) == 0
        repo.set_used.assert_awaited_once_with("PG_PROC", "BOX_MARKING", is_used=True)

    @pytest.mark.asyncio
    async def test_unknown_code(self, repo, capsys):
        repo.set_used.return_value = False
        assert await cmd_steps(parse_args(["steps", "--disable", "NOPE"])) == 1
        assert "NOPE" in capsys.readouterr().out
        repo.get_by_group.assert_not_called()


def test_exit_codes_cover_every_outcome():
    assert set(EXIT_CODES) == set(RunOutcome)
    assert EXIT_CODES[RunOutcome.SUCCESS] == 0
