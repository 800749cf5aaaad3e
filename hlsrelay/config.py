"""
Configuration management for HLSRelay.

Handles loading, validation, and access to application configuration.
"""

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field

# Global configuration instance
_config: Optional["HLSRelayConfig"] = None


class ServerConfig(BaseModel):
    """HTTP server configuration."""
    host: str = "0.0.0.0"
    port: int = 3002
    log_level: str = "INFO"


class ChannelsConfig(BaseModel):
    """Channel layout: how many channels and where their UDP sources live."""
    count: int = Field(default=1, ge=0)
    source_host: str = "localhost"
    udp_base_port: int = Field(default=2220, ge=1, le=65535)
    udp_timeout_us: int = 60_000_000  # FFmpeg udp:// read timeout, microseconds


class PathsConfig(BaseModel):
    """Filesystem layout."""
    output_dir: str = "streams"
    log_dir: str = "logs"


class FFmpegConfig(BaseModel):
    """FFmpeg invocation settings."""
    path: str = "ffmpeg"
    log_level: Optional[str] = None  # None leaves FFmpeg's default (info)
    video_codec: str = "copy"
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"
    audio_sample_rate: int = 44100
    audio_channels: int = 2
    audio_filter: Optional[str] = "aresample=async=1:min_hard_comp=0.100000:first_pts=0"
    extra_flags: Optional[str] = None  # Appended before the output path


class HLSConfig(BaseModel):
    """HLS muxer settings."""
    time: int = 4
    list_size: int = 10
    flags: str = (
        "independent_segments+discont_start+split_by_time"
        "+delete_segments+append_list+program_date_time"
    )
    segment_type: str = "fmp4"
    segment_extensions: list[str] = Field(default_factory=lambda: [".m4s", ".ts", ".mp4"])


class SupervisorConfig(BaseModel):
    """Restart policy for channel supervisors."""
    backoff_base: float = Field(default=0.5, ge=0)
    backoff_max: float = Field(default=5.0, ge=0)
    stable_after: float = Field(default=30.0, ge=0)
    stop_timeout: float = Field(default=5.0, gt=0)


class EventsConfig(BaseModel):
    """Lifecycle event delivery settings."""
    inbox_size: int = Field(default=10, ge=1)
    keepalive_seconds: float = Field(default=15.0, gt=0)
    emit_started: bool = False
    report_errors: bool = False
    log_drops: bool = True  # DEBUG line per dropped event


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file: str = "logs/error.log"
    max_size: str = "10MB"
    backup_count: int = 5
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class HLSRelayConfig(BaseModel):
    """Main HLSRelay configuration."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    ffmpeg: FFmpegConfig = Field(default_factory=FFmpegConfig)
    hls: HLSConfig = Field(default_factory=HLSConfig)
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: Optional[str] = None) -> HLSRelayConfig:
    """
    Load configuration from file.

    Args:
        config_path: Path to config file. Defaults to config.yaml in the
            working directory or project root.

    Returns:
        Loaded and validated configuration.
    """
    global _config

    if config_path is None:
        possible_paths = [
            Path("config.yaml"),
            Path(__file__).parent.parent / "config.yaml",
        ]
        for path in possible_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data: dict[str, Any] = {}

    if config_path and Path(config_path).exists():
        with open(config_path) as f:
            config_data = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    env_overrides = _get_env_overrides()
    _deep_merge(config_data, env_overrides)

    _config = HLSRelayConfig(**config_data)
    return _config


def get_config() -> HLSRelayConfig:
    """
    Get the current configuration.

    Returns:
        Current configuration (loads default if not yet loaded).
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: HLSRelayConfig) -> HLSRelayConfig:
    """Replace the current configuration (CLI overrides, tests)."""
    global _config
    _config = config
    return _config


def reload_config() -> HLSRelayConfig:
    """Reload configuration from disk."""
    global _config
    _config = None
    return load_config()


def apply_overrides(config: HLSRelayConfig, overrides: dict[str, Any]) -> HLSRelayConfig:
    """
    Return a copy of config with dotted-path overrides applied.

    ``{"server.port": 8080}`` sets ``config.server.port``. ``None`` values
    are skipped so unset CLI flags leave the loaded value alone.
    """
    data = config.model_dump()
    for dotted, value in overrides.items():
        if value is None:
            continue
        _set_nested(data, tuple(dotted.split(".")), value)
    return HLSRelayConfig(**data)


def _get_env_overrides() -> dict[str, Any]:
    """Get configuration overrides from environment variables."""
    overrides: dict[str, Any] = {}

    env_map = {
        "HLSRELAY_HOST": ("server", "host"),
        "HLSRELAY_PORT": ("server", "port"),
        "HLSRELAY_CHANNEL_COUNT": ("channels", "count"),
        "HLSRELAY_SOURCE_HOST": ("channels", "source_host"),
        "HLSRELAY_UDP_BASE_PORT": ("channels", "udp_base_port"),
        "HLSRELAY_OUTPUT_DIR": ("paths", "output_dir"),
        "HLSRELAY_LOG_DIR": ("paths", "log_dir"),
        "HLSRELAY_FFMPEG_PATH": ("ffmpeg", "path"),
        "HLSRELAY_LOG_LEVEL": ("logging", "level"),
    }

    for env_var, path in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            _set_nested(overrides, path, _parse_env_value(value))

    return overrides


def _parse_env_value(value: str) -> Any:
    """Parse environment variable value to appropriate type."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def _set_nested(d: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    """Set a nested dictionary value from a path tuple."""
    for key in path[:-1]:
        d = d.setdefault(key, {})
    d[path[-1]] = value


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> None:
    """Deep merge override into base dictionary."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def parse_size(size: str, default: int = 10 * 1024 * 1024) -> int:
    """Parse a size string such as ``"10MB"`` into bytes."""
    size = size.strip().upper()
    units = {"GB": 1024 ** 3, "MB": 1024 ** 2, "KB": 1024}
    for suffix, multiplier in units.items():
        if size.endswith(suffix):
            try:
                return int(size[: -len(suffix)]) * multiplier
            except ValueError:
                return default
    try:
        return int(size)
    except ValueError:
        return default
