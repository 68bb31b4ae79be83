"""Configuration schema for the realtime voice transport.

Defines Pydantic models for loading and validating transport configuration
from YAML files and environment variables.
"""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator


class SignalingConfig(BaseModel):
    """Offer/answer exchange endpoint configuration."""

    api_base: str = Field(
        default="http://localhost:3000",
        description="Base URL of the backend that brokers the SDP exchange",
    )
    session_path: str = Field(
        default="/api/realtime/webrtc/session",
        description="Path of the SDP exchange endpoint",
    )
    timeout_s: float = Field(
        default=15.0,
        gt=0,
        le=120.0,
        description="Total timeout for the offer/answer round-trip",
    )

    @property
    def session_url(self) -> str:
        """Full URL of the SDP exchange endpoint."""
        return f"{self.api_base.rstrip('/')}/{self.session_path.lstrip('/')}"


class TurnDetectionConfig(BaseModel):
    """Server-side voice activity detection parameters sent in session.update."""

    type: str = Field(default="server_vad", description="Turn detection strategy")
    threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Speech probability threshold",
    )
    prefix_padding_ms: int = Field(
        default=300,
        ge=0,
        description="Audio retained before detected speech start",
    )
    silence_duration_ms: int = Field(
        default=500,
        ge=0,
        description="Silence required before speech is considered stopped",
    )
    interrupt_response: bool = Field(
        default=True,
        description="Whether user speech interrupts an in-progress response",
    )


class TapCommitConfig(BaseModel):
    """Manual (tap) turn commit configuration."""

    timeout_ms: int = Field(
        default=1200,
        ge=100,
        le=30000,
        description="How long to wait for input_audio_buffer.committed before falling back",
    )


class MicrophoneConfig(BaseModel):
    """Local microphone capture configuration."""

    device: str = Field(default="default", description="Capture device name")
    format: str | None = Field(
        default="pulse",
        description="FFmpeg input format (pulse, alsa, avfoundation, dshow)",
    )
    options: dict[str, str] = Field(
        default_factory=dict,
        description="Extra FFmpeg options passed to the capture device",
    )


class MeterConfig(BaseModel):
    """Microphone level meter configuration."""

    enabled: bool = Field(default=True, description="Enable mic level metering")
    interval_ms: int = Field(default=100, ge=10, description="Metering interval")
    gain: float = Field(
        default=3.2,
        gt=0,
        description="Scale applied to RMS before clamping to [0, 1]",
    )


class RemoteAudioConfig(BaseModel):
    """Remote (assistant) audio sink configuration."""

    record_path: str | None = Field(
        default=None,
        description="Write remote audio to this file; discard it when unset",
    )


class HealthServerConfig(BaseModel):
    """HTTP health endpoint configuration."""

    enabled: bool = Field(default=False, description="Serve health endpoints")
    host: str = Field(default="127.0.0.1", description="Bind host address")
    port: int = Field(default=8081, ge=1024, le=65535, description="Bind port")


class RealtimeConfig(BaseModel):
    """Root realtime transport configuration."""

    signaling: SignalingConfig = Field(default_factory=SignalingConfig)
    turn_detection: TurnDetectionConfig = Field(default_factory=TurnDetectionConfig)
    tap_commit: TapCommitConfig = Field(default_factory=TapCommitConfig)
    microphone: MicrophoneConfig = Field(default_factory=MicrophoneConfig)
    meter: MeterConfig = Field(default_factory=MeterConfig)
    remote_audio: RemoteAudioConfig = Field(default_factory=RemoteAudioConfig)
    health: HealthServerConfig = Field(default_factory=HealthServerConfig)

    data_channel_label: str = Field(
        default="oai-events",
        min_length=1,
        description="Label of the control data channel",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    debug: bool = Field(default=False, description="Trace protocol events at DEBUG")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate logging level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @classmethod
    def from_yaml(cls, path: Path) -> "RealtimeConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import os

        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data: dict[str, Any] = yaml.safe_load(f) or {}

        if api_base := os.getenv("REALTIME_API_BASE"):
            data.setdefault("signaling", {})["api_base"] = api_base

        if mic_device := os.getenv("REALTIME_MIC_DEVICE"):
            data.setdefault("microphone", {})["device"] = mic_device

        if mic_format := os.getenv("REALTIME_MIC_FORMAT"):
            data.setdefault("microphone", {})["format"] = mic_format

        if log_level := os.getenv("REALTIME_LOG_LEVEL"):
            data["log_level"] = log_level

        if debug := os.getenv("REALTIME_DEBUG"):
            data["debug"] = debug.lower() in ("true", "1", "yes")

        return cls.model_validate(data)

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "RealtimeConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls()
