"""
Pytest configuration and fixtures.

Checkers here answer instantly (or when a test releases them) so the geo
pipeline can be driven deterministically.
"""
from __future__ import annotations

import asyncio
import os
from typing import Callable

import pytest

# Settings() is built at import time of eudr_bot.config
os.environ.setdefault("BOT_TOKEN", "123456:test-token")

from eudr_bot.geo import GeoComplianceChecker, UploadLimits, GEO_EXTENSIONS
from eudr_bot.models import DeclarationType, GeoState, UploadedFile
from eudr_bot.wizard import WizardController


class ScriptedChecker(GeoComplianceChecker):
    """Fixed verdicts; optionally blocks each phase until ``release()``."""

    def __init__(self, geometry: bool = True, satellite: bool = True, gated: bool = False) -> None:
        self.geometry = geometry
        self.satellite = satellite
        self.gated = gated
        self.calls: list[tuple[str, str]] = []
        self._gate = asyncio.Event()

    def release(self) -> None:
        self._gate.set()

    async def _wait(self) -> None:
        if self.gated:
            await self._gate.wait()
        else:
            await asyncio.sleep(0)

    async def check_geometry(self, file: UploadedFile, declaration_type: DeclarationType) -> bool:
        self.calls.append(("geometry", file.name))
        await self._wait()
        return self.geometry

    async def check_satellite(self, file: UploadedFile, declaration_type: DeclarationType) -> bool:
        self.calls.append(("satellite", file.name))
        await self._wait()
        return self.satellite


@pytest.fixture
def geo_file() -> UploadedFile:
    return UploadedFile(name="plots.geojson", size=2048, ref="file-1")


@pytest.fixture
def evidence_file() -> UploadedFile:
    return UploadedFile(name="invoice.pdf", size=50_000, ref="file-2")


@pytest.fixture
def published() -> list[GeoState]:
    """Collects every state a pipeline or controller publishes."""
    return []


@pytest.fixture
def make_wizard(published: list[GeoState]) -> Callable[..., WizardController]:
    def _make(checker: GeoComplianceChecker | None = None, **kwargs) -> WizardController:
        kwargs.setdefault("geo_limits", UploadLimits(GEO_EXTENSIONS))
        return WizardController(
            checker or ScriptedChecker(),
            on_geo_change=published.append,
            **kwargs,
        )
    return _make


@pytest.fixture
def scripted() -> type[ScriptedChecker]:
    return ScriptedChecker
