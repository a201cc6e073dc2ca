#!/usr/bin/env python3
"""
Main Entry Point - Face Scan CLI

Runs one register or verify session against the local webcam. Keyboard
commands are read from stdin, one per line.

Usage:
    facescan register --output visitor.jpg     # Enroll a face
    facescan verify --reference visitor.jpg    # Verify against a file
    facescan verify --qr QR-2024-0001          # Verify a visit and mark it verified
    facescan --validate                        # Validate config only
"""

import asyncio
import os
import sys
import argparse
import logging
from datetime import datetime
from typing import Optional

from . import config as cfg
from .errors import FaceScanError
from .frame_capture import StillImage, decode_image
from .modes import RegisterMode, VerifyMode
from .scan_controller import EngineState, FaceScanController
from .settings import EngineSettings, load_settings, validate_settings
from .validation import ValidationResult
from .visits_client import VisitsAPI

logger = logging.getLogger("main")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 2

# =============================================================================
# LOGGING
# =============================================================================

def setup_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else cfg.LOG_LEVEL,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%H:%M:%S'
    )

# =============================================================================
# CONSOLE PRESENTATION
# =============================================================================

class ConsoleView:
    """Prints engine state and guidance messages, skipping repeats."""

    def __init__(self):
        self._last_message: Optional[str] = None

    def on_state(self, state: EngineState) -> None:
        print(f"[{state.value.upper()}]")

    def on_status(self, result: ValidationResult) -> None:
        if result.message and result.message != self._last_message:
            print(f"  {result.message}")
            self._last_message = result.message


def print_banner(title: str, commands) -> None:
    print("=" * 60)
    print(title)
    print("=" * 60)
    print("Commands:")
    for key, description in commands:
        print(f"  {key:<6} - {description}")
    print("=" * 60)


# =============================================================================
# SESSION RUNNER
# =============================================================================

async def run_session(controller: FaceScanController, handle_key) -> None:
    """
    Open the controller and feed it keyboard commands until it closes.

    Args:
        controller: Unopened controller
        handle_key: async callable(controller, key)
    """
    loop = asyncio.get_running_loop()
    keys: asyncio.Queue = asyncio.Queue()
    fd = sys.stdin.fileno()

    def on_input():
        line = sys.stdin.readline()
        # EOF behaves like quit
        keys.put_nowait(line.strip().lower() if line else "q")

    loop.add_reader(fd, on_input)
    try:
        await controller.open()
        if controller.state is EngineState.ERROR:
            return

        closed = asyncio.ensure_future(controller.wait_closed())
        while not closed.done():
            next_key = asyncio.ensure_future(keys.get())
            done, _ = await asyncio.wait({next_key, closed}, return_when=asyncio.FIRST_COMPLETED)
            if next_key in done:
                await handle_key(controller, next_key.result())
            else:
                next_key.cancel()
    finally:
        loop.remove_reader(fd)
        await controller.close()


async def handle_register_key(controller: FaceScanController, key: str) -> None:
    if key == "q":
        await controller.close()
    elif key == "":
        image = await controller.capture()
        if image is None:
            print(f"  Cannot capture: {controller.message or 'face not ready'}")
        else:
            print(f"  Captured {image.width}x{image.height}. 'y' to confirm, 'r' to retake")
    elif key == "r":
        controller.retake()
    elif key == "y":
        await controller.confirm()
    else:
        print(f"  Unknown command: {key!r}")


async def handle_verify_key(controller: FaceScanController, key: str) -> None:
    if key == "q":
        await controller.close()
    else:
        print("  Verification captures automatically. 'q' to quit")


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_register(args, settings: EngineSettings) -> int:
    output = args.output or f"face_{datetime.now().strftime('%Y%m%d_%H%M%S')}.jpg"
    saved = []

    def on_confirm(image: StillImage) -> None:
        with open(output, "wb") as f:
            f.write(image.to_jpeg(settings.capture.jpeg_quality))
        saved.append(output)
        print(f"✅ Saved {image.width}x{image.height} face to {output}")

    view = ConsoleView()
    controller = FaceScanController(
        RegisterMode(),
        settings=settings,
        on_confirm=on_confirm,
        on_status=view.on_status,
        on_state=view.on_state,
    )

    print_banner("FACE REGISTRATION", [
        ("ENTER", "Capture (face must be centered)"),
        ("r", "Retake"),
        ("y", "Confirm and save"),
        ("q", "Quit"),
    ])
    asyncio.run(run_session(controller, handle_register_key))

    if controller.error_message:
        print(f"ERROR: {controller.error_message}")
        return EXIT_ERROR
    return EXIT_OK if saved else EXIT_CANCELLED


def load_reference(args, api: Optional[VisitsAPI]):
    """Returns (reference image, visit id or None)."""
    if args.reference:
        with open(args.reference, "rb") as f:
            return decode_image(f.read()), None

    if not api.health_check():
        raise FaceScanError(f"Visits API not reachable at {api.base_url}")
    visit = api.get_visit(args.qr)
    if visit is None:
        raise FaceScanError(f"Visit {args.qr} not found")
    if visit.verified:
        print(f"Note: visit {visit.visit_id} is already verified")
    if visit.id_card is None:
        raise FaceScanError(f"Visit {visit.visit_id} has no id card image")
    print(f"Visitor: {visit.visitor_name} (visit #{visit.visit_id})")
    return visit.id_card, visit.visit_id


def cmd_verify(args, settings: EngineSettings) -> int:
    api = None
    if args.qr:
        api = VisitsAPI(settings.api.base_url, settings.api.session_token, settings.api.timeout)

    try:
        reference, visit_id = load_reference(args, api)
    except (OSError, ValueError, FaceScanError) as e:
        logger.error(f"Cannot load reference image: {e}")
        return EXIT_ERROR

    results = []

    def on_result(success: bool, score: float) -> None:
        results.append(success)
        if success:
            print(f"\n  ✅ VERIFIED (score {score:.3f})")
        else:
            print(f"\n  ❌ NOT VERIFIED (score {score:.3f}), hold still to retry")

    view = ConsoleView()
    controller = FaceScanController(
        VerifyMode(reference),
        settings=settings,
        on_result=on_result,
        on_status=view.on_status,
        on_state=view.on_state,
    )

    print_banner("FACE VERIFICATION", [("q", "Quit")])
    asyncio.run(run_session(controller, handle_verify_key))

    if controller.state is EngineState.CLOSED and any(results):
        if api is not None and visit_id is not None:
            response = api.mark_verified(visit_id)
            if not response.success:
                print(f"ERROR: could not mark visit verified: {response.message}")
                return EXIT_ERROR
        return EXIT_OK

    if controller.error_message:
        print(f"ERROR: {controller.error_message}")
        return EXIT_ERROR
    return EXIT_CANCELLED


def print_settings(settings: EngineSettings, config_path: Optional[str]) -> None:
    print(f"\nConfig: {config_path or 'built-in defaults'}")
    print(f"Camera: {settings.camera.source} "
          f"({settings.camera.preferred_width}x{settings.camera.preferred_height})")
    print(f"Detection: every {settings.detection.interval * 1000:.0f}ms, "
          f"center tolerance {settings.detection.center_tolerance_x:.2f} x "
          f"{settings.detection.center_tolerance_y:.2f}")
    print(f"Capture: aspect {settings.capture.target_aspect_ratio:.3f}, "
          f"auto-capture after {settings.capture.auto_capture_delay:.1f}s")
    print(f"Verification: {settings.comparison.model_name}, "
          f"threshold {settings.comparison.similarity_threshold}")
    print(f"API: {settings.api.base_url}")


def main():
    parser = argparse.ArgumentParser(
        prog="facescan",
        description="Face Scan - register or verify a visitor's face",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  facescan register --output visitor.jpg
  facescan verify --reference visitor.jpg
  facescan verify --qr QR-2024-0001
  facescan --validate
        """
    )
    parser.add_argument("--config", type=str, help="Path to facescan.yaml")
    parser.add_argument("--validate", action="store_true", help="Validate config and exit")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")

    register = subparsers.add_parser("register", help="Capture a reference face")
    register.add_argument("--output", "-o", type=str, help="Where to save the confirmed JPEG")

    verify = subparsers.add_parser("verify", help="Verify a live face against a reference")
    source = verify.add_mutually_exclusive_group(required=True)
    source.add_argument("--reference", type=str, help="Reference image file")
    source.add_argument("--qr", type=str, help="Visit QR code (reference = visitor id card)")

    args = parser.parse_args()
    setup_logging(args.debug)

    if args.config and not os.path.exists(args.config):
        logger.error(f"Configuration file not found: {args.config}")
        sys.exit(EXIT_ERROR)

    # Load configuration
    try:
        settings = load_settings(args.config)
    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        sys.exit(EXIT_ERROR)

    # Validate configuration
    errors = validate_settings(settings)
    if errors:
        logger.error("Configuration errors:")
        for err in errors:
            logger.error(f"  - {err}")
        sys.exit(EXIT_ERROR)

    # Handle --validate
    if args.validate:
        print("✅ Configuration is valid")
        print_settings(settings, args.config)
        sys.exit(EXIT_OK)

    if args.command is None:
        parser.print_help()
        sys.exit(EXIT_ERROR)

    try:
        if args.command == "register":
            code = cmd_register(args, settings)
        else:
            code = cmd_verify(args, settings)
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
        code = EXIT_CANCELLED

    sys.exit(code)


if __name__ == "__main__":
    main()
