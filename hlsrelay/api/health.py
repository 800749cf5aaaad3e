"""Health check API endpoint for HLSRelay"""

import logging
import platform
import subprocess
from datetime import datetime
from typing import Any

import psutil
from fastapi import APIRouter, Request

from hlsrelay import __version__
from hlsrelay.streaming.supervisor import SupervisorState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


def check_ffmpeg(ffmpeg_path: str) -> dict[str, Any]:
    """Check FFmpeg installation and version."""
    try:
        result = subprocess.run(
            [ffmpeg_path, "-version"],
            check=False,
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            version_line = result.stdout.split("\n")[0]
            return {
                "status": "ok",
                "version": version_line,
                "path": ffmpeg_path,
            }
        return {
            "status": "error",
            "error": "FFmpeg returned non-zero exit code",
        }
    except FileNotFoundError:
        return {
            "status": "error",
            "error": f"FFmpeg not found at {ffmpeg_path}",
        }
    except subprocess.TimeoutExpired:
        return {
            "status": "error",
            "error": "FFmpeg check timed out",
        }
    except OSError as e:
        return {
            "status": "error",
            "error": str(e),
        }


@router.get("")
async def health(request: Request) -> dict[str, Any]:
    """Overall service health."""
    group = request.app.state.supervisors
    statuses = group.get_status()
    running = sum(1 for s in statuses if s["state"] == SupervisorState.RUNNING.value)

    return {
        "status": "healthy" if group.is_running else "stopped",
        "version": __version__,
        "timestamp": datetime.utcnow().isoformat(),
        "channels": len(statuses),
        "channels_running": running,
        "subscribers": request.app.state.bus.subscriber_count,
    }


@router.get("/ffmpeg")
def health_ffmpeg(request: Request) -> dict[str, Any]:
    """FFmpeg availability. Runs in the threadpool; the check blocks for up to 5s."""
    return check_ffmpeg(request.app.state.config.ffmpeg.path)


def _process_usage(pids: dict[int, int]) -> dict[str, Any]:
    """CPU and memory of running FFmpeg processes, keyed by channel index."""
    usage: dict[str, Any] = {}
    for channel_id, pid in sorted(pids.items()):
        try:
            proc = psutil.Process(pid)
            usage[str(channel_id)] = {
                "pid": pid,
                "cpu_percent": proc.cpu_percent(),
                "memory_mb": round(proc.memory_info().rss / (1024 * 1024), 1),
            }
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            # Exited between the lookup and the sample
            continue
    return usage


def _disk_usage(path: str) -> dict[str, Any]:
    try:
        disk = psutil.disk_usage(path)
    except OSError as e:
        return {"path": path, "error": str(e)}
    return {
        "path": path,
        "total_gb": round(disk.total / (1024**3), 1),
        "free_gb": round(disk.free / (1024**3), 1),
        "percent": disk.percent,
    }


@router.get("/system")
async def health_system(request: Request) -> dict[str, Any]:
    """Host resources plus per-channel FFmpeg usage."""
    config = request.app.state.config
    group = request.app.state.supervisors

    pids: dict[int, int] = {}
    for supervisor in group.supervisors:
        pid = supervisor.engine.running_pids().get(supervisor.channel_id)
        if pid is not None:
            pids[supervisor.channel_id] = pid

    memory = psutil.virtual_memory()
    return {
        "hostname": platform.node(),
        "cpu_count": psutil.cpu_count() or 1,
        "memory_percent": memory.percent,
        "output_disk": _disk_usage(config.paths.output_dir),
        "ffmpeg_processes": _process_usage(pids),
    }
