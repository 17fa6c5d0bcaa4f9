from __future__ import annotations

import os
from dataclasses import dataclass

import boto3
import httpx

from .config import Config, load_config
from .image_processing import webp_supported


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    message: str
    is_fatal: bool = False


def _check_auth_key(cfg: Config) -> CheckResult:
    if not cfg.has_credential:
        return CheckResult(
            "auth_key",
            False,
            "No auth key configured. Set PHOTODROP_AUTH_KEY or pass --auth-key.",
            is_fatal=True,
        )
    return CheckResult("auth_key", True, "Auth key present")


def _check_webp() -> CheckResult:
    if not webp_supported():
        return CheckResult(
            "webp",
            False,
            "Pillow was built without WebP support; previews cannot be rendered.",
            is_fatal=True,
        )
    return CheckResult("webp", True, "Pillow WebP encoder available")


def _check_log_dir(cfg: Config) -> CheckResult:
    try:
        cfg.log_dir.mkdir(parents=True, exist_ok=True)
        tmp = cfg.log_dir / ".photodrop_write_test.tmp"
        tmp.write_text("ok", encoding="utf-8")
        tmp.unlink()
        return CheckResult("log_dir", True, f"Writable: {cfg.log_dir}")
    except Exception as e:
        return CheckResult("log_dir", False, f"Log directory not writable: {e}", is_fatal=False)


def _check_backend(cfg: Config) -> CheckResult:
    url = f"{cfg.api_base_url}/api/collections"
    try:
        response = httpx.get(url, timeout=min(cfg.request_timeout_seconds, 10))
    except httpx.RequestError as e:
        return CheckResult("backend", False, f"Cannot reach {url}: {type(e).__name__}: {e}", is_fatal=False)
    if not response.is_success:
        return CheckResult("backend", False, f"GET {url} returned {response.status_code}", is_fatal=False)
    try:
        count = len(response.json())
    except (ValueError, TypeError):
        return CheckResult("backend", False, f"GET {url} did not return a JSON list", is_fatal=False)
    return CheckResult("backend", True, f"Backend OK: {count} collection(s) at {cfg.api_base_url}")


def _check_storage_credentials(cfg: Config) -> CheckResult:
    creds = boto3.Session().get_credentials()
    if creds is None:
        return CheckResult(
            "storage_credentials",
            False,
            "No storage credentials found for --local-sign (AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY).",
            is_fatal=False,
        )
    endpoint = cfg.s3_endpoint_url or "default S3 endpoint"
    return CheckResult("storage_credentials", True, f"Storage credentials found | Bucket: {cfg.s3_bucket} @ {endpoint}")


def run_doctor(
    *,
    api_base_url: str | None = None,
    auth_key: str | None = None,
    log_dir: str | None = None,
    skip_network: bool = False,
    local_sign: bool = False,
) -> tuple[int, list[CheckResult]]:
    cfg = load_config(api_base_url=api_base_url, auth_key=auth_key, log_dir=log_dir)

    results: list[CheckResult] = []
    results.append(
        CheckResult(
            "config",
            True,
            f"API: {cfg.api_base_url} | Preview: {cfg.thumb_max_long_edge}px q{cfg.thumb_quality}",
        )
    )
    results.append(_check_auth_key(cfg))
    results.append(_check_webp())
    results.append(_check_log_dir(cfg))
    if local_sign:
        results.append(_check_storage_credentials(cfg))
    if not skip_network:
        results.append(_check_backend(cfg))

    fatal = any((not r.ok) and r.is_fatal for r in results)
    rc = 2 if fatal else 0
    return rc, results


def format_results(results: list[CheckResult]) -> str:
    lines: list[str] = []
    for r in results:
        status = "OK" if r.ok else ("FAIL" if r.is_fatal else "WARN")
        lines.append(f"[{status}] {r.name}: {r.message}")
    return os.linesep.join(lines)
