"""Geo validation pipeline and file pre-checks."""
from __future__ import annotations

import asyncio

import pytest

from eudr_bot.errors import FileRejectedError
from eudr_bot.geo import (
    MB,
    GEO_EXTENSIONS,
    GeoComplianceChecker,
    GeoValidationPipeline,
    SimulatedChecker,
    UploadLimits,
    build_checker,
)
from eudr_bot.models import DeclarationType, GeoPhase, UploadedFile


def _phases(states):
    return [s.phase for s in states]


class SlowChecker(GeoComplianceChecker):
    async def check_geometry(self, file, declaration_type):
        await asyncio.sleep(5)
        return True

    async def check_satellite(self, file, declaration_type):
        return True


class BrokenChecker(GeoComplianceChecker):
    async def check_geometry(self, file, declaration_type):
        raise RuntimeError("service unreachable")

    async def check_satellite(self, file, declaration_type):
        return True


# ── pre-checks ───────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "name, size, code",
    [
        ("plots.kml", 100, "unsupported_format"),
        ("plots", 100, "unsupported_format"),
        ("plots.geojson", 10 * MB + 1, "file_too_large"),
    ],
)
def test_limits_reject(name, size, code):
    with pytest.raises(FileRejectedError) as exc_info:
        UploadLimits(GEO_EXTENSIONS).check(UploadedFile(name=name, size=size))
    assert exc_info.value.reason_code == code
    assert exc_info.value.file_name == name


def test_limits_accept_case_insensitive_extension():
    UploadLimits(["geojson"]).check(UploadedFile(name="PLOTS.GeoJSON", size=10 * MB))


@pytest.mark.asyncio
async def test_rejected_file_changes_nothing(published):
    pipeline = GeoValidationPipeline(SimulatedChecker(geometry_delay=0, satellite_delay=0), published.append)
    with pytest.raises(FileRejectedError):
        pipeline.upload(UploadedFile(name="plots.shp", size=10), DeclarationType.OUTBOUND)
    assert published == []
    assert pipeline.state.phase is GeoPhase.IDLE
    assert not pipeline.running


# ── phase ordering ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_outbound_passes_both_phases(published, geo_file):
    pipeline = GeoValidationPipeline(SimulatedChecker(geometry_delay=0, satellite_delay=0), published.append)
    pipeline.upload(geo_file, DeclarationType.OUTBOUND)
    final = await pipeline.wait()

    assert _phases(published) == [
        GeoPhase.UPLOADED,
        GeoPhase.CHECKING_GEOMETRY,
        GeoPhase.CHECKING_SATELLITE,
        GeoPhase.COMPLIANT,
    ]
    assert final.phase is GeoPhase.COMPLIANT
    assert final.geometry_valid is True and final.satellite_valid is True


@pytest.mark.asyncio
async def test_inbound_fails_geometry_and_skips_satellite(published, geo_file):
    checker = SimulatedChecker(geometry_delay=0, satellite_delay=0)
    pipeline = GeoValidationPipeline(checker, published.append)
    pipeline.upload(geo_file, DeclarationType.INBOUND)
    final = await pipeline.wait()

    assert _phases(published) == [GeoPhase.UPLOADED, GeoPhase.CHECKING_GEOMETRY, GeoPhase.GEOMETRY_FAILED]
    assert final.geometry_valid is False
    assert final.satellite_valid is None


@pytest.mark.asyncio
async def test_satellite_failure(published, geo_file, scripted):
    checker = scripted(geometry=True, satellite=False)
    pipeline = GeoValidationPipeline(checker, published.append)
    pipeline.upload(geo_file, DeclarationType.OUTBOUND)
    final = await pipeline.wait()

    assert final.phase is GeoPhase.SATELLITE_FAILED
    assert final.geometry_valid is True and final.satellite_valid is False
    assert [c[0] for c in checker.calls] == ["geometry", "satellite"]


@pytest.mark.asyncio
async def test_state_is_checking_until_released(published, geo_file, scripted):
    checker = scripted(gated=True)
    pipeline = GeoValidationPipeline(checker, published.append)
    pipeline.upload(geo_file, DeclarationType.OUTBOUND)
    await asyncio.sleep(0)

    assert pipeline.running
    assert pipeline.state.is_checking

    checker.release()
    assert (await pipeline.wait()).phase is GeoPhase.COMPLIANT
    assert not pipeline.running


# ── re-upload and reset ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_reupload_discards_the_older_run(published, scripted):
    checker = scripted(gated=True)
    pipeline = GeoValidationPipeline(checker, published.append)
    first = UploadedFile(name="old.geojson", size=10)
    second = UploadedFile(name="new.geojson", size=10)

    pipeline.upload(first, DeclarationType.OUTBOUND)
    await asyncio.sleep(0)
    pipeline.upload(second, DeclarationType.OUTBOUND)
    checker.release()
    final = await pipeline.wait()

    assert final.phase is GeoPhase.COMPLIANT
    assert final.file == second
    restarted = max(i for i, s in enumerate(published) if s.phase is GeoPhase.UPLOADED)
    assert all(s.file == second for s in published[restarted:])


@pytest.mark.asyncio
async def test_reset_cancels_and_goes_idle(published, geo_file, scripted):
    checker = scripted(gated=True)
    pipeline = GeoValidationPipeline(checker, published.append)
    pipeline.upload(geo_file, DeclarationType.OUTBOUND)
    await asyncio.sleep(0)

    pipeline.reset()
    checker.release()
    await asyncio.sleep(0)

    assert not pipeline.running
    assert pipeline.state.phase is GeoPhase.IDLE
    assert published[-1].phase is GeoPhase.IDLE


# ── stuck or broken checkers ─────────────────────────────────────────

@pytest.mark.asyncio
async def test_phase_timeout_counts_as_failure(published, geo_file):
    pipeline = GeoValidationPipeline(SlowChecker(), published.append, phase_timeout=0.01)
    pipeline.upload(geo_file, DeclarationType.OUTBOUND)
    final = await pipeline.wait()

    assert final.phase is GeoPhase.GEOMETRY_FAILED
    assert "timed out" in final.reason


@pytest.mark.asyncio
async def test_checker_exception_counts_as_failure(published, geo_file):
    pipeline = GeoValidationPipeline(BrokenChecker(), published.append)
    pipeline.upload(geo_file, DeclarationType.OUTBOUND)
    final = await pipeline.wait()

    assert final.phase is GeoPhase.GEOMETRY_FAILED
    assert "service unreachable" in final.reason


# ── policies ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "policy, outbound, inbound",
    [("by-type", True, False), ("always-pass", True, True), ("always-fail", False, False)],
)
async def test_policies(policy, outbound, inbound, geo_file):
    checker = build_checker(policy, 0, 0)
    assert await checker.check_geometry(geo_file, DeclarationType.OUTBOUND) is outbound
    assert await checker.check_satellite(geo_file, DeclarationType.INBOUND) is inbound


def test_unknown_policy():
    with pytest.raises(ValueError):
        build_checker("coin-flip", 0, 0)
