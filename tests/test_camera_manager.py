"""Tests for camera acquisition, fallback and release."""

import sys

import cv2
import pytest

from facescan import camera_manager as cm
from facescan.camera_manager import CameraConstraints, CameraManager, SessionState, probe_open_failure
from facescan.errors import CameraError, CameraErrorKind
from tests.fakes import CaptureFactory, FakeCapture


def manager_for(*outcomes, probe_kind=CameraErrorKind.DEVICE_BUSY):
    factory = CaptureFactory(*outcomes)
    return CameraManager(capture_factory=factory, probe=lambda source: probe_kind), factory


class TestAcquire:

    @pytest.mark.asyncio
    async def test_preferred_constraints(self):
        capture = FakeCapture(width=1280, height=720)
        manager, factory = manager_for(capture)

        session = await manager.acquire(CameraConstraints())

        assert session.is_streaming
        assert session.resolution == (1280, 720)
        assert manager.active_session is session
        assert capture.props[cv2.CAP_PROP_FRAME_WIDTH] == 1280
        assert capture.props[cv2.CAP_PROP_BUFFERSIZE] == 1
        assert factory.calls == [0]

    @pytest.mark.asyncio
    async def test_falls_back_to_minimal_constraints(self):
        picky = FakeCapture(refuse_props=[cv2.CAP_PROP_FRAME_WIDTH])
        plain = FakeCapture()
        manager, factory = manager_for(picky, plain)

        session = await manager.acquire(CameraConstraints(source=2))

        assert session.constraints.is_minimal
        assert session.constraints.source == 2
        assert factory.calls == [2, 2]
        # the refused handle was not leaked
        assert picky.release_count == 1
        assert plain.release_count == 0

    @pytest.mark.asyncio
    async def test_permission_denied(self):
        manager, factory = manager_for(PermissionError("denied"))

        with pytest.raises(CameraError) as exc_info:
            await manager.acquire(CameraConstraints())

        assert exc_info.value.kind is CameraErrorKind.PERMISSION_DENIED
        assert exc_info.value.user_message == "Camera access denied. Please allow camera access and try again."
        assert len(factory.calls) == 2
        assert manager.active_session is None

    @pytest.mark.asyncio
    async def test_not_opened_uses_probe(self):
        capture = FakeCapture(opened=False)
        manager, _ = manager_for(capture, probe_kind=CameraErrorKind.DEVICE_NOT_FOUND)

        with pytest.raises(CameraError) as exc_info:
            await manager.acquire(CameraConstraints())

        assert exc_info.value.kind is CameraErrorKind.DEVICE_NOT_FOUND
        assert exc_info.value.user_message == "No camera found. Please connect a camera and try again."

    @pytest.mark.asyncio
    async def test_opened_without_frames_is_busy(self):
        capture = FakeCapture(frames=False)
        manager, _ = manager_for(capture)

        with pytest.raises(CameraError) as exc_info:
            await manager.acquire(CameraConstraints())

        assert exc_info.value.kind is CameraErrorKind.DEVICE_BUSY
        assert capture.release_count >= 1

    @pytest.mark.asyncio
    async def test_minimal_request_is_not_retried(self):
        manager, factory = manager_for(OSError("boom"))

        with pytest.raises(CameraError) as exc_info:
            await manager.acquire(CameraConstraints().minimal())

        assert exc_info.value.kind is CameraErrorKind.UNKNOWN
        assert len(factory.calls) == 1

    @pytest.mark.asyncio
    async def test_second_acquire_while_active(self):
        manager, _ = manager_for(FakeCapture())
        await manager.acquire(CameraConstraints())

        with pytest.raises(CameraError) as exc_info:
            await manager.acquire(CameraConstraints())

        assert exc_info.value.kind is CameraErrorKind.DEVICE_BUSY


class TestRelease:

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self):
        capture = FakeCapture()
        manager, _ = manager_for(capture)
        session = await manager.acquire(CameraConstraints())

        manager.release(session)
        manager.release(session)
        session.stop()

        assert capture.release_count == 1
        assert session.state is SessionState.STOPPED
        assert not session.is_streaming
        assert session.read() is None
        assert manager.active_session is None

    def test_release_none(self):
        manager, _ = manager_for(FakeCapture())
        manager.release(None)

    @pytest.mark.asyncio
    async def test_reacquire_after_release(self):
        manager, _ = manager_for(FakeCapture(), FakeCapture())
        first = await manager.acquire(CameraConstraints())
        manager.release(first)

        second = await manager.acquire(CameraConstraints())

        assert second is not first
        assert second.is_streaming

    @pytest.mark.asyncio
    async def test_release_error_is_swallowed_and_logged(self, caplog):
        capture = FakeCapture()

        def broken_release():
            raise RuntimeError("driver gone")

        capture.release = broken_release
        manager, _ = manager_for(capture)
        session = await manager.acquire(CameraConstraints())

        manager.release(session)

        assert session.state is SessionState.STOPPED
        assert "driver gone" in caplog.text


class TestProbe:

    def test_missing_file(self, tmp_path):
        assert probe_open_failure(str(tmp_path / "missing.mp4")) is CameraErrorKind.DEVICE_NOT_FOUND

    def test_stream_url(self):
        assert probe_open_failure("rtsp://10.0.0.1/stream") is CameraErrorKind.UNKNOWN

    def test_missing_device_node(self, monkeypatch):
        monkeypatch.setattr(sys, "platform", "linux")
        monkeypatch.setattr(cm.os.path, "exists", lambda path: False)
        assert probe_open_failure(3) is CameraErrorKind.DEVICE_NOT_FOUND

    def test_unreadable_device_node(self, monkeypatch):
        monkeypatch.setattr(sys, "platform", "linux")
        monkeypatch.setattr(cm.os.path, "exists", lambda path: True)
        monkeypatch.setattr(cm.os, "access", lambda path, mode: False)
        assert probe_open_failure(0) is CameraErrorKind.PERMISSION_DENIED
