import argparse
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

from . import config
from .core import PhotoCatalogApp
from .exceptions import PhotoCatalogError

def setup_logging(storage_root: Path, verbose: bool):
    """Sets up logging to both console and a file in the storage root."""
    log_level = logging.DEBUG if verbose else logging.INFO

    storage_root.mkdir(parents=True, exist_ok=True)
    log_file = storage_root / config.LOG_FILE_NAME

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ],
        force=True,
    )
    # Silence chatty libraries
    logging.getLogger("exifread").setLevel(logging.ERROR)
    logging.getLogger("PIL").setLevel(logging.WARNING)

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Photo Catalog: keep per-owner media catalogs in sync with disk")

    env_storage = os.environ.get(config.ENV_STORAGE)
    p.add_argument("--storage", type=Path, default=Path(env_storage) if env_storage else None,
                   help=f"Storage root holding one folder per owner (env: {config.ENV_STORAGE})")
    p.add_argument("--db", type=Path, default=None,
                   help=f"SQLite catalog path (env: {config.ENV_DB}, default: storage/{config.DEFAULT_DB_NAME})")
    p.add_argument("--workers", type=int, default=config.SCAN_WORKERS, help="Parallel timestamp inference workers")
    p.add_argument("--timeout", type=float, default=config.RESOLVE_TIMEOUT_SECONDS,
                   help="Seconds allowed per file before falling back")
    p.add_argument("--embedded-metadata", action="store_true", help="Also read EXIF/MediaInfo capture dates")
    p.add_argument("--progress", action="store_true", help="Show a progress bar while scanning")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("scan", help="Reconcile every owner's catalog with the filesystem")

    add = sub.add_parser("add-owner", help="Register an owner and create their folder")
    add.add_argument("login", help="Login name, also used as the folder name")
    add.add_argument("--name", default="", help="Display name")

    ls = sub.add_parser("list", help="List an owner's records, newest first")
    ls.add_argument("login")

    rep = sub.add_parser("report", help="Write a CSV of timestamp sources for an owner")
    rep.add_argument("login")
    rep.add_argument("--out", type=Path, default=Path("timestamp_report.csv"), help="Output CSV path")

    ex = sub.add_parser("exif", help="Print the EXIF tags of one record")
    ex.add_argument("login")
    ex.add_argument("record_id", type=int)

    args = p.parse_args(argv)
    if args.storage is None:
        p.error(f"--storage is required (or set {config.ENV_STORAGE})")
    return args

def resolve_db_path(args) -> Path:
    if args.db:
        return args.db
    env_db = os.environ.get(config.ENV_DB)
    if env_db:
        return Path(env_db)
    return args.storage / config.DEFAULT_DB_NAME

def print_records(records):
    print("id                   | created             | size       | path")
    print("---------------------+---------------------+------------+------")
    for r in records:
        created = datetime.fromtimestamp(r.created_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")
        print(f"{r.id:<20d} | {created} | {r.size_bytes:>10d} | {r.full_name}")

def main(argv=None):
    args = parse_args(argv)

    storage_root = args.storage.resolve()
    setup_logging(storage_root, args.verbose)

    db_path = resolve_db_path(args)
    logging.info("=== Photo Catalog Started ===")
    logging.info(f"Storage: {storage_root}")
    logging.info(f"DB:      {db_path}")

    app = PhotoCatalogApp(
        db_path=db_path,
        storage_root=storage_root,
        max_workers=args.workers,
        timeout=args.timeout,
        use_embedded_metadata=args.embedded_metadata,
        show_progress=args.progress,
    )

    try:
        with app:
            if args.command == "scan":
                results = app.startup_scan()
                if any(not r.ok for r in results):
                    sys.exit(2)
            elif args.command == "add-owner":
                owner = app.add_owner(args.login, args.name)
                print(f"Added owner {owner.login} (id {owner.id})")
            elif args.command == "list":
                print_records(app.records(args.login))
            elif args.command == "report":
                rows = app.timestamp_report(args.login, args.out)
                print(f"Wrote {rows} rows to {args.out}")
            elif args.command == "exif":
                for tag, value in sorted(app.exif(args.login, args.record_id).items()):
                    print(f"{tag}: {value}")
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        sys.exit(1)
    except (PhotoCatalogError, ValueError) as e:
        logging.error(str(e))
        sys.exit(1)

if __name__ == "__main__":
    main()
