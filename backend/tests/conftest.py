"""Shared test fixtures for backend tests.

Provides scanner fixtures (fake camera, scripted detectors, fake capture
sink) so tests run without a camera, GPU or model weights.
"""
from __future__ import annotations

from dataclasses import dataclass

import pytest

from scanner import ScanController
from tests.fakes import (
    FakeCaptureSink,
    FakeFrameSource,
    InlineExecutor,
    RecordingReporter,
    ScriptedDetector,
)


@dataclass
class ScannerRig:
    controller: ScanController
    source: FakeFrameSource
    objects: ScriptedDetector
    markers: ScriptedDetector
    sink: FakeCaptureSink
    reporter: RecordingReporter


# ---------- Scanner fixtures ----------

@pytest.fixture()
def scanner_factory():
    """Create a ScanController wired to fakes.

    Returns a factory accepting keyword overrides for any collaborator plus
    ``cooldown_seconds`` and ``inline`` (default True: worker jobs run on the
    calling thread). Automatically shuts down all created controllers on
    teardown.
    """
    created: list[ScanController] = []

    def _factory(
        source: FakeFrameSource | None = None,
        objects: ScriptedDetector | None = None,
        markers: ScriptedDetector | None = None,
        sink: FakeCaptureSink | None = None,
        reporter=None,
        cooldown_seconds: float = 0.05,
        inline: bool = True,
        **kwargs,
    ) -> ScannerRig:
        rig = ScannerRig(
            controller=None,
            source=source or FakeFrameSource(),
            objects=objects or ScriptedDetector(),
            markers=markers or ScriptedDetector(),
            sink=sink or FakeCaptureSink(),
            reporter=reporter or RecordingReporter(),
        )
        rig.controller = ScanController(
            frame_source=rig.source,
            object_detector=rig.objects,
            marker_detector=rig.markers,
            capture_sink=rig.sink,
            status_reporter=rig.reporter,
            cooldown_seconds=cooldown_seconds,
            executor=InlineExecutor() if inline else None,
            **kwargs,
        )
        created.append(rig.controller)
        return rig

    yield _factory

    for controller in created:
        controller.shutdown()


@pytest.fixture()
def api_client(monkeypatch, scanner_factory):
    """TestClient for api.app with the real camera/detector wiring replaced by fakes."""
    from fastapi.testclient import TestClient

    import api

    rigs: list[ScannerRig] = []

    def _fake_build(config, broadcaster):
        from streaming.status import CompositeStatusReporter

        rig = scanner_factory(reporter=CompositeStatusReporter([RecordingReporter(), broadcaster]))
        rigs.append(rig)
        return rig.controller

    monkeypatch.setattr(api, "build_controller", _fake_build)
    monkeypatch.setattr(api, "SCANNER_AUTOSTART", True)

    with TestClient(api.app) as client:
        client.rig = rigs[0]
        yield client
