"""Unit tests for the worker entrypoint."""

import sys
import types

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from durable_jobs.errors import RegistryError
from durable_jobs.models import DrainResult
from durable_jobs.registry import HandlerRegistry
from durable_jobs.worker_main import build_parser, load_registry, main, run_worker


@pytest.fixture
def registry():
    registry = HandlerRegistry(["reward_friend"])

    @registry.handler("reward_friend")
    async def reward_friend(payload, job_id, created_at):
        pass

    return registry


def test_build_parser_defaults():
    args = build_parser().parse_args([])

    assert args.worker_id is None
    assert args.once is False
    assert args.max_jobs is None
    assert args.poll_interval == 5.0
    assert args.exclude_stage == []


def test_build_parser_options():
    args = build_parser().parse_args(
        ["--worker-id", "w1", "--once", "--max-jobs", "20", "--exclude-stage", "s3", "--exclude-stage", "s4"]
    )

    assert args.worker_id == "w1"
    assert args.once is True
    assert args.max_jobs == 20
    assert args.exclude_stage == ["s3", "s4"]


def test_load_registry(monkeypatch, registry):
    module = types.ModuleType("fake_handlers")
    module.registry = registry
    monkeypatch.setitem(sys.modules, "fake_handlers", module)

    assert load_registry("fake_handlers") is registry


def test_load_registry_requires_module():
    with pytest.raises(RegistryError):
        load_registry(None)


def test_load_registry_requires_registry_attribute(monkeypatch):
    module = types.ModuleType("empty_handlers")
    monkeypatch.setitem(sys.modules, "empty_handlers", module)

    with pytest.raises(RegistryError, match="HandlerRegistry"):
        load_registry("empty_handlers")


@pytest.mark.asyncio
async def test_run_worker_once(config, registry):
    db_pool = MagicMock()
    expected = DrainResult(processed=2)

    with patch("durable_jobs.worker_main.JobRunner") as mock_runner_cls:
        mock_runner_cls.return_value.drain = AsyncMock(return_value=expected)
        result = await run_worker(
            worker_id="w1",
            config=config,
            db_pool=db_pool,
            registry=registry,
            once=True,
            max_jobs=4,
            exclude_stages=["s3"],
        )

    assert result is expected
    mock_runner_cls.return_value.drain.assert_awaited_once_with("w1", max_jobs=4, max_errors=None)
    assert mock_runner_cls.call_args.kwargs["exclude_stages"] == ["s3"]
    # caller-owned pool stays open
    db_pool.close.assert_not_called()


@pytest.mark.asyncio
async def test_run_worker_closes_pool_it_created(config, registry):
    pool = MagicMock()
    pool.close = AsyncMock()

    with patch("durable_jobs.worker_main.create_db_pool", AsyncMock(return_value=pool)):
        with patch("durable_jobs.worker_main.JobRunner") as mock_runner_cls:
            mock_runner_cls.return_value.drain = AsyncMock(return_value=DrainResult())
            await run_worker(worker_id="w1", config=config, registry=registry, once=True)

    pool.close.assert_awaited_once()


def test_main_exits_without_dsn(monkeypatch):
    monkeypatch.delenv("DURABLE_JOBS_DB_DSN", raising=False)

    with patch("durable_jobs.worker_main.setup_logging"):
        with pytest.raises(SystemExit) as exc_info:
            main(["--once"])

    assert exc_info.value.code == 1
