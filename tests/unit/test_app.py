"""Tests for the application root's exit-code and shutdown handling."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from ingress_bfe.app import IngressBfeApp
from ingress_bfe.controller.dataplane import classify_exit
from ingress_bfe.errors import DataPlaneStartError
from ingress_bfe.observability.logging import get_logger


def _app(run_result=None, run_error: Exception | None = None) -> IngressBfeApp:
    app = IngressBfeApp()
    app._log = get_logger("app")
    controller = MagicMock()
    controller.run = AsyncMock(return_value=run_result, side_effect=run_error)
    controller.stop = AsyncMock()
    app._controller = controller
    return app


class TestRunController:
    @pytest.mark.parametrize("returncode,expected", [(0, 0), (3, 1), (-9, 1)])
    async def test_exit_code_follows_data_plane(self, returncode: int, expected: int) -> None:
        app = _app(run_result=classify_exit(returncode))
        await app._run_controller()
        assert app.exit_code == expected
        await asyncio.wait_for(app.wait(), timeout=1.0)

    async def test_stopped_controller_exits_zero(self) -> None:
        app = _app(run_result=None)
        await app._run_controller()
        assert app.exit_code == 0

    async def test_start_failure_exits_non_zero(self) -> None:
        app = _app(run_error=DataPlaneStartError("no binary"))
        await app._run_controller()
        assert app.exit_code == 1

    async def test_crash_exits_non_zero(self) -> None:
        app = _app(run_error=RuntimeError("bug"))
        await app._run_controller()
        assert app.exit_code == 1


class TestStop:
    async def test_stop_is_shared_between_callers(self) -> None:
        app = _app()
        app._running = True
        await asyncio.gather(app.stop(), app.stop())
        app._controller.stop.assert_awaited_once()

    async def test_failing_component_stop_is_logged(self) -> None:
        app = _app()
        app._running = True
        app._controller.stop = AsyncMock(side_effect=RuntimeError("already stopping"))
        await app.stop()
        await asyncio.wait_for(app.wait(), timeout=1.0)

    async def test_stop_before_start_is_a_no_op(self) -> None:
        app = IngressBfeApp()
        await app.stop()
