"""Two-phase GeoJSON compliance check: geometry first, satellite second.

The pipeline never touches the draft.  It reports every state it enters
through the ``publish`` callback handed in by the wizard controller, and
each upload runs as one cancellable asyncio task.  A new upload cancels the
previous task and bumps a generation counter, so a late result from an
older file is dropped even if it slipped past cancellation.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Iterable, Mapping

from eudr_bot.errors import FileRejectedError
from eudr_bot.models import (
    DeclarationType,
    GeoCheckingGeometry,
    GeoCheckingSatellite,
    GeoCompliant,
    GeoGeometryFailed,
    GeoSatelliteFailed,
    GeoState,
    GeoUploaded,
    GEO_IDLE,
    UploadedFile,
)

logger = logging.getLogger(__name__)

MB = 1024 * 1024

GEO_EXTENSIONS = frozenset({".geojson", ".json"})
EVIDENCE_EXTENSIONS = frozenset(
    {".pdf", ".jpg", ".jpeg", ".png", ".doc", ".docx", ".txt", ".geojson", ".json"}
)


# ═══════════════════════════════════════════════════════════════
# File pre-checks
# ═══════════════════════════════════════════════════════════════

class UploadLimits:
    """Extension allow-list and size cap applied when a file is selected."""

    def __init__(self, extensions: Iterable[str], max_bytes: int = 10 * MB) -> None:
        self.extensions = frozenset(e.lower() if e.startswith(".") else f".{e.lower()}" for e in extensions)
        self.max_bytes = max_bytes

    def check(self, file: UploadedFile) -> None:
        if file.extension not in self.extensions:
            allowed = ", ".join(sorted(self.extensions))
            raise FileRejectedError(
                file.name,
                "unsupported_format",
                f"{file.name}: unsupported format (allowed: {allowed})",
            )
        if file.size > self.max_bytes:
            raise FileRejectedError(
                file.name,
                "file_too_large",
                f"{file.name}: too large (max {self.max_bytes // MB} MB)",
            )


# ═══════════════════════════════════════════════════════════════
# Checker strategies
# ═══════════════════════════════════════════════════════════════

class GeoComplianceChecker(ABC):
    """Answers the two compliance questions for an uploaded file."""

    @abstractmethod
    async def check_geometry(self, file: UploadedFile, declaration_type: DeclarationType) -> bool:
        """True when the polygons are structurally valid."""

    @abstractmethod
    async def check_satellite(self, file: UploadedFile, declaration_type: DeclarationType) -> bool:
        """True when imagery shows no deforestation inside the polygons."""


class SimulatedChecker(GeoComplianceChecker):
    """Waits a settle delay per phase, then returns a fixed verdict per type.

    The default verdicts pass outbound files and fail inbound ones.  Whether
    that is a business rule or a placeholder for a real service is still open,
    hence the explicit ``verdicts`` mapping.
    """

    BY_TYPE: Mapping[DeclarationType, bool] = {
        DeclarationType.OUTBOUND: True,
        DeclarationType.INBOUND: False,
    }

    def __init__(
        self,
        verdicts: Mapping[DeclarationType, bool] | None = None,
        geometry_delay: float = 1.5,
        satellite_delay: float = 2.0,
    ) -> None:
        self.verdicts = dict(verdicts if verdicts is not None else self.BY_TYPE)
        self.geometry_delay = geometry_delay
        self.satellite_delay = satellite_delay

    async def check_geometry(self, file: UploadedFile, declaration_type: DeclarationType) -> bool:
        await asyncio.sleep(self.geometry_delay)
        return self.verdicts[declaration_type]

    async def check_satellite(self, file: UploadedFile, declaration_type: DeclarationType) -> bool:
        await asyncio.sleep(self.satellite_delay)
        return self.verdicts[declaration_type]


POLICIES: dict[str, Mapping[DeclarationType, bool]] = {
    "by-type": SimulatedChecker.BY_TYPE,
    "always-pass": {DeclarationType.OUTBOUND: True, DeclarationType.INBOUND: True},
    "always-fail": {DeclarationType.OUTBOUND: False, DeclarationType.INBOUND: False},
}


def build_checker(policy: str, geometry_delay: float, satellite_delay: float) -> GeoComplianceChecker:
    try:
        verdicts = POLICIES[policy]
    except KeyError:
        raise ValueError(f"Unknown geo policy {policy!r} (expected one of {', '.join(POLICIES)})") from None
    return SimulatedChecker(verdicts, geometry_delay, satellite_delay)


# ═══════════════════════════════════════════════════════════════
# Pipeline
# ═══════════════════════════════════════════════════════════════

Publish = Callable[[GeoState], None]


class GeoValidationPipeline:
    """idle → uploaded → checking_geometry → geometry_failed | checking_satellite
    → satellite_failed | compliant.
    """

    def __init__(
        self,
        checker: GeoComplianceChecker,
        publish: Publish,
        limits: UploadLimits | None = None,
        phase_timeout: float = 30.0,
    ) -> None:
        self._checker = checker
        self._publish_cb = publish
        self.limits = limits or UploadLimits(GEO_EXTENSIONS)
        self.phase_timeout = phase_timeout
        self._generation = 0
        self._task: asyncio.Task | None = None
        self.state: GeoState = GEO_IDLE

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def upload(self, file: UploadedFile, declaration_type: DeclarationType) -> None:
        """Start a fresh check for ``file``, replacing any check in flight.

        Raises ``FileRejectedError`` before touching any state when the file
        fails the pre-checks.
        """
        self.limits.check(file)

        self.cancel()
        self._generation += 1
        generation = self._generation

        logger.info("GeoJSON %s uploaded (%d bytes), run #%d", file.name, file.size, generation)
        self._publish(GeoUploaded(file=file))
        self._publish(GeoCheckingGeometry(file=file))
        self._task = asyncio.get_running_loop().create_task(
            self._run(generation, file, declaration_type),
            name=f"geo-check-{generation}",
        )

    def cancel(self) -> None:
        """Drop the check in flight; its result will never be published."""
        if self._task is not None and not self._task.done():
            logger.debug("Cancelling geo run #%d", self._generation)
            self._task.cancel()
        self._task = None

    def reset(self) -> None:
        self.cancel()
        self._generation += 1
        self._publish(GEO_IDLE)

    async def wait(self) -> GeoState:
        """Block until no check is running (follows re-uploads)."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})
        return self.state

    # ── internals ────────────────────────────────────────────────

    def _publish(self, state: GeoState) -> None:
        self.state = state
        self._publish_cb(state)

    async def _phase(self, name: str, check: Awaitable[bool]) -> tuple[bool, str]:
        try:
            ok = await asyncio.wait_for(check, timeout=self.phase_timeout)
        except asyncio.TimeoutError:
            logger.warning("%s check timed out after %.1fs", name, self.phase_timeout)
            return False, f"{name} check timed out"
        except Exception as exc:
            logger.exception("%s check raised", name)
            return False, f"{name} check error: {exc}"
        return bool(ok), "" if ok else f"{name} check failed"

    async def _run(self, generation: int, file: UploadedFile, declaration_type: DeclarationType) -> None:
        geometry_ok, reason = await self._phase(
            "Geometry", self._checker.check_geometry(file, declaration_type),
        )
        if generation != self._generation:
            logger.debug("Discarding stale geometry result of run #%d", generation)
            return
        logger.info("Run #%d geometry: %s", generation, "valid" if geometry_ok else "invalid")
        if not geometry_ok:
            self._publish(GeoGeometryFailed(file=file, reason=reason))
            return

        self._publish(GeoCheckingSatellite(file=file))
        satellite_ok, reason = await self._phase(
            "Satellite", self._checker.check_satellite(file, declaration_type),
        )
        if generation != self._generation:
            logger.debug("Discarding stale satellite result of run #%d", generation)
            return
        logger.info("Run #%d satellite: %s", generation, "valid" if satellite_ok else "invalid")
        if satellite_ok:
            self._publish(GeoCompliant(file=file))
        else:
            self._publish(GeoSatelliteFailed(file=file, reason=reason))
