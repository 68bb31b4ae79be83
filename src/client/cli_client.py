"""Realtime voice CLI client.

Connects to the realtime endpoint over WebRTC (microphone in, assistant audio
out), prints the assistant's streamed text, and lets the user drive
turn-taking from the keyboard.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from aiohttp.web import Application, AppRunner, TCPSite

from src.realtime.config import RealtimeConfig
from src.realtime.events import EventType, TransportEvent
from src.realtime.factory import create_realtime_transport
from src.realtime.health import setup_health_routes
from src.realtime.lifecycle import RealtimeWebRTCTransport
from src.realtime.signaling import HttpSignalingClient
from src.realtime.utils.logging import setup_logging

logger = logging.getLogger(__name__)

HELP_TEXT = """
Commands:
  /tap    - Manual turn-taking (end your turn with /reply)
  /auto   - Automatic turn-taking (server detects end of speech)
  /reply  - Commit your turn and ask for a reply (tap mode)
  /stop   - Interrupt the assistant
  /debug  - Toggle protocol tracing
  /health - Show connection health
  /quit   - Exit client
  /help   - Show this help
"""


class CLIClient:
    """Interactive client for a realtime voice session."""

    def __init__(self, config: RealtimeConfig, initial_mode: str = "tap") -> None:
        """Initialize CLI client.

        Args:
            config: Transport configuration
            initial_mode: Turn-taking mode applied once connected
        """
        self.config = config
        self.initial_mode = initial_mode
        self.running = True
        self.transport: RealtimeWebRTCTransport
        self.signaling: HttpSignalingClient
        self.transport, self.signaling = create_realtime_transport(
            config, on_event=self.handle_event
        )
        self._health_runner: AppRunner | None = None

    def handle_event(self, event: TransportEvent) -> None:
        """Print transport events."""
        if event.type == EventType.ASSISTANT_TEXT:
            print(event.text, end="", flush=True)
        elif event.type == EventType.CONNECTED:
            logger.info("Connected", extra={"stage": event.data.get("stage")})
        elif event.type == EventType.DISCONNECTED:
            print("\n[disconnected]")
            self.running = False
        elif event.type == EventType.STOP_SPEAKING:
            logger.info("Stopped speaking", extra=event.data)

    async def handle_command(self, line: str) -> None:
        """Handle one line of user input."""
        if not line.startswith("/"):
            print("\nAssistant: ", end="", flush=True)
            await self.transport.send_user_text(line)
            return

        command = line[1:].lower()
        if command == "quit":
            self.running = False
        elif command == "help":
            print(HELP_TEXT)
        elif command in ("tap", "auto"):
            result = self.transport.set_turn_taking(command)
            print(f"Mode: {command} ({result.value})")
        elif command == "reply":
            if self.transport.request_reply():
                print("\nAssistant: ", end="", flush=True)
            else:
                print("Reply not requested (tap mode only, one commit at a time)")
        elif command == "stop":
            await self.transport.stop_speaking()
        elif command == "debug":
            enabled = not self.transport.health["debug"]
            self.transport.set_debug(enabled)
            logging.getLogger("src.realtime").setLevel(
                logging.DEBUG if enabled else self.config.log_level
            )
            print(f"Debug: {'on' if enabled else 'off'}")
        elif command == "health":
            for key, value in self.transport.health.items():
                print(f"  {key}: {value}")
        else:
            print(f"Unknown command: {command}")
            print("Type /help for available commands")

    async def input_loop(self) -> None:
        """Read commands from stdin until quit or disconnect."""
        print("\n" + "=" * 60)
        print("Realtime Voice CLI Client")
        print("=" * 60)
        print(HELP_TEXT)

        loop = asyncio.get_running_loop()

        while self.running:
            try:
                line = await loop.run_in_executor(None, input, "You: ")
            except EOFError:
                break

            line = line.strip()
            if not line:
                continue

            try:
                await self.handle_command(line)
            except Exception as e:
                logger.error(f"Command failed: {e}")

    async def start_health_server(self) -> None:
        if not self.config.health.enabled:
            return
        app = Application()
        setup_health_routes(app, self.transport)
        self._health_runner = AppRunner(app)
        await self._health_runner.setup()
        site = TCPSite(self._health_runner, self.config.health.host, self.config.health.port)
        await site.start()
        logger.info(
            "Health server listening",
            extra={"host": self.config.health.host, "port": self.config.health.port},
        )

    async def run(self) -> None:
        """Connect, run the input loop, and always clean up."""
        loop = asyncio.get_running_loop()

        def signal_handler() -> None:
            self.running = False

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)

        try:
            await self.start_health_server()
            self.transport.set_turn_taking(self.initial_mode)
            await self.transport.connect()
            await self.input_loop()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            await self.transport.disconnect()
            await self.signaling.close()
            if self._health_runner is not None:
                await self._health_runner.cleanup()


def main() -> None:
    """Main entry point for CLI client."""
    parser = argparse.ArgumentParser(description="Realtime voice CLI client")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--api-base",
        type=str,
        default=None,
        help="Signaling backend base URL (overrides config)",
    )
    parser.add_argument(
        "--mode",
        choices=["tap", "auto"],
        default="tap",
        help="Initial turn-taking mode (default: tap)",
    )
    parser.add_argument(
        "--mic-device",
        type=str,
        default=None,
        help="Microphone capture device (overrides config)",
    )
    parser.add_argument(
        "--record",
        type=str,
        default=None,
        help="Write assistant audio to this file",
    )
    parser.add_argument(
        "--health-port",
        type=int,
        default=None,
        help="Serve health endpoints on this port",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging and protocol tracing",
    )

    args = parser.parse_args()

    config = RealtimeConfig.from_yaml_with_defaults(args.config)
    if args.api_base:
        config.signaling.api_base = args.api_base
    if args.mic_device:
        config.microphone.device = args.mic_device
    if args.record:
        config.remote_audio.record_path = args.record
    if args.health_port:
        config.health.enabled = True
        config.health.port = args.health_port
    if args.verbose:
        config.log_level = "DEBUG"
        config.debug = True

    setup_logging(config.log_level)

    client = CLIClient(config, initial_mode=args.mode)
    try:
        asyncio.run(client.run())
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Client error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
