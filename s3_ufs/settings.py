from __future__ import annotations
"""Adapter settings persistence helpers."""

from dataclasses import asdict, dataclass, field, fields
import json
from pathlib import Path

MIB = 1024 * 1024
MIN_PART_SIZE = 5 * MIB
MAX_LISTING_PAGE_SIZE = 1000


@dataclass
class UfsSettings:
    """Every option the adapter recognizes."""

    multipart_upload_enabled: bool = False
    multipart_upload_threads: int = 20
    multipart_part_size: int = 64 * MIB
    read_chunk_size: int = 8 * MIB
    listing_page_size: int = MAX_LISTING_PAGE_SIZE
    connection_timeout_ms: int = 50_000
    socket_timeout_ms: int = 50_000
    max_connections: int = 1024
    retry_max_attempts: int = 3
    retry_base_delay_ms: int = 50
    retry_max_delay_ms: int = 3000
    tmp_dirs: list[str] = field(default_factory=list)


# name -> minimum accepted value
_INT_MINIMUMS = {
    "multipart_upload_threads": 1,
    "multipart_part_size": MIN_PART_SIZE,
    "read_chunk_size": 1,
    "listing_page_size": 1,
    "connection_timeout_ms": 1,
    "socket_timeout_ms": 1,
    "max_connections": 1,
    "retry_max_attempts": 1,
    "retry_base_delay_ms": 0,
    "retry_max_delay_ms": 0,
}
_INT_MAXIMUMS = {"listing_page_size": MAX_LISTING_PAGE_SIZE}


def _sanitize_int(name: str, value: object) -> int:
    default = getattr(UfsSettings, name)
    if isinstance(value, bool):
        return default
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if number < _INT_MINIMUMS[name] or number > _INT_MAXIMUMS.get(name, number):
        return default
    return number


def _sanitize_tmp_dirs(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, str) and entry]


def sanitize(data: dict) -> UfsSettings:
    """Build settings from raw values, replacing invalid entries with defaults."""

    values: dict[str, object] = {}
    for name in _INT_MINIMUMS:
        if name in data:
            values[name] = _sanitize_int(name, data[name])
    enabled = data.get("multipart_upload_enabled", UfsSettings.multipart_upload_enabled)
    values["multipart_upload_enabled"] = enabled if isinstance(enabled, bool) else UfsSettings.multipart_upload_enabled
    values["tmp_dirs"] = _sanitize_tmp_dirs(data.get("tmp_dirs", []))
    return UfsSettings(**values)  # type: ignore[arg-type]


class SettingsStorage:
    """JSON-backed persistence for :class:`UfsSettings`."""

    def __init__(self, storage_path: str | Path | None = None):
        if storage_path is None:
            storage_path = Path.home() / ".pys3ufs_settings.json"
        self._path = Path(storage_path)

    def load(self) -> UfsSettings:
        if not self._path.exists():
            return UfsSettings()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return UfsSettings()
        if not isinstance(data, dict):
            return UfsSettings()
        return sanitize(data)

    def save(self, settings: UfsSettings) -> None:
        payload = asdict(settings)
        for item in fields(UfsSettings):
            if item.name in _INT_MINIMUMS:
                number = max(int(payload[item.name]), _INT_MINIMUMS[item.name])
                payload[item.name] = min(number, _INT_MAXIMUMS.get(item.name, number))
        payload["multipart_upload_enabled"] = bool(settings.multipart_upload_enabled)
        payload["tmp_dirs"] = _sanitize_tmp_dirs(list(settings.tmp_dirs))
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError:
            # Persist best-effort; ignore filesystem issues.
            return
