from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path


def _expand(p: str) -> Path:
    return Path(os.path.expanduser(p)).resolve()


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Invalid integer for {name}: {raw!r}") from None


def _clamp(n: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, n))


@dataclass(frozen=True)
class Config:
    api_base_url: str
    auth_key: str | None

    thumb_max_long_edge: int
    thumb_quality: int

    request_timeout_seconds: int
    chunk_size: int

    log_dir: Path

    # Only used when signing upload targets locally (--local-sign)
    s3_bucket: str
    s3_endpoint_url: str | None
    presign_expiry_seconds: int

    @property
    def has_credential(self) -> bool:
        return bool(self.auth_key)


def load_config(
    *,
    api_base_url: str | None = None,
    auth_key: str | None = None,
    thumb_max_long_edge: int | None = None,
    thumb_quality: int | None = None,
    request_timeout_seconds: int | None = None,
    chunk_size: int | None = None,
    log_dir: str | None = None,
    s3_bucket: str | None = None,
    s3_endpoint_url: str | None = None,
    presign_expiry_seconds: int | None = None,
) -> Config:
    env = os.environ

    api_base_url = api_base_url or env.get("PHOTODROP_API_URL", "http://localhost:3000")
    auth_key = auth_key or env.get("PHOTODROP_AUTH_KEY", "").strip() or None

    thumb_max_long_edge = (
        thumb_max_long_edge
        if thumb_max_long_edge is not None
        else _env_int(env, "PHOTODROP_THUMB_MAX_LONG_EDGE", 800)
    )
    thumb_quality = (
        thumb_quality if thumb_quality is not None else _env_int(env, "PHOTODROP_THUMB_QUALITY", 80)
    )
    request_timeout_seconds = (
        request_timeout_seconds
        if request_timeout_seconds is not None
        else _env_int(env, "PHOTODROP_TIMEOUT_SECONDS", 60)
    )
    chunk_size = chunk_size if chunk_size is not None else _env_int(env, "PHOTODROP_CHUNK_SIZE", 256 * 1024)

    log_dir = log_dir or env.get("PHOTODROP_LOG_DIR", "~/.photodrop/logs")

    s3_bucket = s3_bucket or env.get("PHOTODROP_S3_BUCKET", "portfolio")
    s3_endpoint_url = s3_endpoint_url or env.get("PHOTODROP_S3_ENDPOINT_URL", "").strip() or None
    presign_expiry_seconds = (
        presign_expiry_seconds
        if presign_expiry_seconds is not None
        else _env_int(env, "PHOTODROP_PRESIGN_EXPIRY_SECONDS", 3600)
    )

    if thumb_max_long_edge < 1:
        raise ValueError(f"Invalid thumbnail size {thumb_max_long_edge} (must be >= 1)")
    if chunk_size < 1:
        raise ValueError(f"Invalid chunk size {chunk_size} (must be >= 1)")

    return Config(
        api_base_url=api_base_url.rstrip("/"),
        auth_key=auth_key,
        thumb_max_long_edge=thumb_max_long_edge,
        thumb_quality=_clamp(thumb_quality, 1, 100),
        request_timeout_seconds=request_timeout_seconds,
        chunk_size=chunk_size,
        log_dir=_expand(log_dir),
        s3_bucket=s3_bucket,
        s3_endpoint_url=s3_endpoint_url,
        presign_expiry_seconds=presign_expiry_seconds,
    )
