# tests/test_browser_automation.py

from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from form_automation import browser_automation
from form_automation.browser_automation import PlaywrightSession


class _Page:
    def is_closed(self) -> bool:
        return False


class _Context:
    def __init__(self) -> None:
        self.closed = False

    async def new_page(self) -> _Page:
        return _Page()

    async def close(self) -> None:
        self.closed = True


class _Browser:
    def __init__(self) -> None:
        self.closed = False
        self.context = _Context()

    async def new_context(self, **kwargs) -> _Context:
        return self.context

    async def close(self) -> None:
        self.closed = True


class _Driver:
    """Stands in for the object returned by ``async_playwright().start()``."""

    def __init__(self, launch_error: Optional[Exception] = None) -> None:
        self.chromium = self
        self.launch_error = launch_error
        self.browser = _Browser()
        self.stop_count = 0

    async def launch(self, **kwargs) -> _Browser:
        if self.launch_error is not None:
            raise self.launch_error
        return self.browser

    async def stop(self) -> None:
        self.stop_count += 1


class _Starter:
    def __init__(self, driver: _Driver, gate: Optional[asyncio.Event] = None) -> None:
        self.driver = driver
        self.gate = gate

    async def start(self) -> _Driver:
        if self.gate is not None:
            await self.gate.wait()
        return self.driver


@pytest.fixture()
def install(monkeypatch):
    def _install(driver: _Driver, gate: Optional[asyncio.Event] = None) -> None:
        monkeypatch.setattr(browser_automation, "async_playwright", lambda: _Starter(driver, gate))

    return _install


@pytest.mark.asyncio
async def test_open_and_close_release_everything_once(install) -> None:
    driver = _Driver()
    install(driver)
    session = PlaywrightSession()

    await session.open()
    assert not session.is_closed()

    await session.close()
    await session.close()

    assert session.is_closed()
    assert driver.browser.context.closed
    assert driver.browser.closed
    assert driver.stop_count == 1


@pytest.mark.asyncio
async def test_failed_launch_stops_the_driver(install) -> None:
    driver = _Driver(launch_error=RuntimeError("Executable doesn't exist"))
    install(driver)
    session = PlaywrightSession()

    with pytest.raises(RuntimeError, match="Executable doesn't exist"):
        await session.open()

    assert driver.stop_count == 1
    assert session.is_closed()


@pytest.mark.asyncio
async def test_cancel_while_the_driver_starts_still_stops_it(install) -> None:
    gate = asyncio.Event()
    driver = _Driver()
    install(driver, gate)
    session = PlaywrightSession()

    opening = asyncio.ensure_future(session.open())
    await asyncio.sleep(0)
    opening.cancel()
    await asyncio.sleep(0)
    gate.set()

    with pytest.raises(asyncio.CancelledError):
        await opening

    assert driver.stop_count == 1
    assert session.playwright is None
    assert session.is_closed()
