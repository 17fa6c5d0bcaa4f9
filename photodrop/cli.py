from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from . import media
from .api import ApiError, GalleryApiClient
from .aws_boto3 import PresignedTargetIssuer
from .config import Config, load_config
from .doctor import format_results, run_doctor
from .logging_utils import setup_logging
from .models import FileSnapshot, FileStatus, RawFile
from .session import BatchRejectedError, IngestionSession


class _ProgressLogger:
    """Logs status changes, and upload progress in 25% steps, per file."""

    def __init__(self, logger: logging.Logger, step: float = 25.0) -> None:
        self._logger = logger
        self._step = step
        self._last: dict[str, tuple[FileStatus, int]] = {}

    def __call__(self, snap: FileSnapshot) -> None:
        bucket = int(snap.progress // self._step)
        prev = self._last.get(snap.file_id)
        self._last[snap.file_id] = (snap.status, bucket)
        if prev is not None and prev[0] == snap.status:
            if snap.status == FileStatus.UPLOADING and bucket > prev[1]:
                self._logger.debug(f"  {snap.name}: {snap.progress:.0f}%")
            return
        if snap.status == FileStatus.ERROR:
            self._logger.warning(f"  {snap.name}: error: {snap.error}")
        else:
            self._logger.debug(f"  {snap.name}: {snap.status.value}")


def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--api-url", default=None, help="Gallery backend base URL (default: http://localhost:3000)")
    p.add_argument("--auth-key", default=None, help="Admin API key (default: PHOTODROP_AUTH_KEY)")
    p.add_argument("--log-dir", default=None, help="Directory for photodrop.log (default: ~/.photodrop/logs)")
    p.add_argument("--quiet", action="store_true", help="Reduce log verbosity (INFO level only, no DEBUG)")


async def _resolve_collections(api: GalleryApiClient, wanted: list[str], logger: logging.Logger) -> list[str]:
    """
    Map --collection values (ids or display names) to collection ids.
    If the backend cannot list collections, values are used as ids unchanged.
    """
    try:
        known = await api.list_collections()
    except ApiError as e:
        logger.warning(f"Could not list collections ({e}); using given values as ids")
        return list(dict.fromkeys(wanted))

    by_id = {c.id: c.id for c in known}
    by_name = {c.name.casefold(): c.id for c in known}
    resolved: list[str] = []
    for value in wanted:
        cid = by_id.get(value) or by_name.get(value.casefold())
        if cid is None:
            available = ", ".join(sorted(by_id)) or "(none)"
            raise BatchRejectedError(f"Unknown collection '{value}'. Available: {available}")
        if cid not in resolved:
            resolved.append(cid)
    return resolved


def _load_raw_files(paths: list[Path], logger: logging.Logger) -> list[RawFile]:
    raws: list[RawFile] = []
    for p in paths:
        try:
            raws.append(RawFile.from_path(p))
        except OSError as e:
            logger.error(f"Cannot read {p}: {e}")
    return raws


async def _run_upload(cfg: Config, args: argparse.Namespace, paths: list[Path], logger: logging.Logger) -> int:
    async with GalleryApiClient(
        cfg.api_base_url, auth_key=cfg.auth_key, timeout=cfg.request_timeout_seconds
    ) as api:
        collection_ids = await _resolve_collections(api, args.collection, logger)

        if args.local_sign:
            targets = PresignedTargetIssuer(
                bucket=cfg.s3_bucket,
                expires_in_seconds=cfg.presign_expiry_seconds,
                endpoint_url=cfg.s3_endpoint_url,
            )
        else:
            targets = api

        async with IngestionSession(
            targets=targets,
            records=api,
            storage=api.http,
            max_long_edge=cfg.thumb_max_long_edge,
            quality=cfg.thumb_quality,
            chunk_size=cfg.chunk_size,
            on_change=_ProgressLogger(logger),
        ) as session:
            for cid in collection_ids:
                session.collections.select(cid)

            raws = _load_raw_files(paths, logger)
            session.add_files(raws)
            logger.info(f"Processing {len(raws)} file(s)...")
            await session.wait_for_derivations()
            logger.info(f"{session.eligible_count} of {len(raws)} file(s) ready to upload")

            result = await session.upload_batch()

            failed = [s for s in session.snapshot() if s.status in (FileStatus.ERROR, FileStatus.CANCELLED)]
            for snap in failed:
                print(f"FAILED {snap.name}: {snap.error}")
            print(f"Uploaded {len(result.done)} of {len(session.snapshot())} file(s)")
            return 0 if not failed else 1


def cmd_upload(args: argparse.Namespace) -> int:
    cfg = load_config(api_base_url=args.api_url, auth_key=args.auth_key, log_dir=args.log_dir)
    logger = setup_logging(log_dir=cfg.log_dir, verbose=not args.quiet)

    paths = media.iter_image_files([Path(p).expanduser() for p in args.paths])
    if not paths:
        logger.error("No image files found in the given paths.")
        return 2
    if not cfg.has_credential:
        logger.error("No auth key configured.\n  Set PHOTODROP_AUTH_KEY or pass --auth-key.")
        return 2

    try:
        return asyncio.run(_run_upload(cfg, args, paths, logger))
    except BatchRejectedError as e:
        logger.error(str(e))
        return 2
    except KeyboardInterrupt:
        logger.warning("Interrupted; files not yet uploaded were skipped.")
        return 130


async def _list_collections(cfg: Config) -> list[tuple[str, str]]:
    async with GalleryApiClient(cfg.api_base_url, timeout=cfg.request_timeout_seconds) as api:
        return [(c.id, c.name) for c in await api.list_collections()]


def cmd_collections(args: argparse.Namespace) -> int:
    cfg = load_config(api_base_url=args.api_url, auth_key=args.auth_key, log_dir=args.log_dir)
    logger = setup_logging(log_dir=None, verbose=not args.quiet)
    try:
        rows = asyncio.run(_list_collections(cfg))
    except ApiError as e:
        logger.error(str(e))
        return 2
    for cid, name in rows:
        print(f"{cid}\t{name}")
    return 0


def cmd_doctor(args: argparse.Namespace) -> int:
    rc, results = run_doctor(
        api_base_url=args.api_url,
        auth_key=args.auth_key,
        log_dir=args.log_dir,
        skip_network=args.skip_network,
        local_sign=args.local_sign,
    )
    print(format_results(results))
    return rc


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="photodrop", description="Upload photos to the gallery")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_up = sub.add_parser("upload", help="Derive previews and upload images into collections")
    _add_common_args(p_up)
    p_up.add_argument("paths", nargs="+", help="Image files or directories (searched recursively)")
    p_up.add_argument(
        "-c",
        "--collection",
        action="append",
        required=True,
        help="Destination collection id or name (repeatable)",
    )
    p_up.add_argument(
        "--local-sign",
        action="store_true",
        help="Presign upload targets locally with boto3 instead of asking the backend",
    )
    p_up.set_defaults(func=cmd_upload)

    p_col = sub.add_parser("collections", help="List collections")
    _add_common_args(p_col)
    p_col.set_defaults(func=cmd_collections)

    p_doc = sub.add_parser("doctor", help="Run environment checks (config, auth key, WebP, backend)")
    _add_common_args(p_doc)
    p_doc.add_argument("--skip-network", action="store_true", help="Skip backend reachability check")
    p_doc.add_argument("--local-sign", action="store_true", help="Also check local storage credentials")
    p_doc.set_defaults(func=cmd_doctor)

    return p


def main(argv: list[str] | None = None) -> None:
    argv = argv if argv is not None else sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(argv)
    rc = args.func(args)
    raise SystemExit(rc)
