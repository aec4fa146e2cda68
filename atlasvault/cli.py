# -*- coding: utf-8 -*-
"""
Maintenance CLI for the encrypted store.

Usage:
    atlasvault ensure-key
    atlasvault stats
    atlasvault seed-demo
    atlasvault reclaim
    atlasvault reset --yes [--forget-key]
    atlasvault serve [--host HOST] [--port PORT]
"""

from __future__ import annotations

import argparse
import logging
from collections import Counter
from pathlib import Path
from typing import List, Optional

from .config import settings
from .errors import StoreError


def _repository(args: argparse.Namespace):
    from .clinical.repository import AppRepository
    from .storage.file_store import EncryptedFileStore

    root = Path(args.data_root) if args.data_root else settings.data_root
    return AppRepository(EncryptedFileStore(root=root))


def cmd_ensure_key(args: argparse.Namespace) -> int:
    """Create the encryption key if this installation has none yet."""
    from .security.crypto import CryptoService

    CryptoService().ensure_key()
    print(f"Encryption key ready ({settings.keychain_service} / {settings.key_account})")
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    """Show record counts (never record contents)."""
    from .clinical.models import audit_label

    repo = _repository(args)
    db = repo.db
    print(f"Data root: {repo.file_store.root}")
    print(f"Patients:  {len(db.patients)}")
    print(f"Cases:     {len(db.cases)}")
    print(f"Reminders: {len(db.reminders)}")
    print(f"Consents:  {len(db.consents)}")
    print(f"Audit:     {len(db.audit_events)}")
    for event_type, count in Counter(e.type for e in db.audit_events).most_common():
        print(f"  {audit_label(event_type)}: {count}")
    print(f"Blobs:     {len(repo.file_store.list_blobs())}")
    return 0


def cmd_seed_demo(args: argparse.Namespace) -> int:
    repo = _repository(args)
    scase = repo.seed_sample_case()
    print(f"Created sample case {scase.id} ({scase.title})")
    return 0 if repo.last_save_error is None else 1


def cmd_reclaim(args: argparse.Namespace) -> int:
    """Delete blobs left behind by replaced photos."""
    repo = _repository(args)
    removed = repo.reclaim_orphaned_blobs()
    for logical in removed:
        print(f"removed {logical}")
    print(f"Reclaimed {len(removed)} blob(s)")
    return 0


def cmd_reset(args: argparse.Namespace) -> int:
    repo = _repository(args)
    if not args.yes:
        confirm = input("This permanently deletes all patients, photos and audit history. Continue? [y/N] ")
        if confirm.lower() != "y":
            print("Cancelled.")
            return 0
    repo.reset(forget_key=args.forget_key)
    print("Store reset." if not args.forget_key else "Store reset; encryption key removed.")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .api import create_app

    if args.data_root:
        settings.data_root = Path(args.data_root).expanduser()
    uvicorn.run(create_app(), host=args.host, port=args.port, reload=False)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Atlas Vault encrypted store CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--data-root",
        help=f"Private data directory (default: {settings.data_root})",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("ensure-key", help="Create the encryption key if missing")
    subparsers.add_parser("stats", help="Show record counts")
    subparsers.add_parser("seed-demo", help="Create a sample patient and case")
    subparsers.add_parser("reclaim", help="Delete orphaned photo/signature blobs")

    reset_parser = subparsers.add_parser("reset", help="Delete all data (keeps the key unless --forget-key)")
    reset_parser.add_argument(
        "-y", "--yes",
        action="store_true",
        help="Skip confirmation",
    )
    reset_parser.add_argument(
        "--forget-key",
        action="store_true",
        help="Also remove the encryption key from the keychain",
    )

    serve_parser = subparsers.add_parser("serve", help="Run the local HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "ensure-key": cmd_ensure_key,
        "stats": cmd_stats,
        "seed-demo": cmd_seed_demo,
        "reclaim": cmd_reclaim,
        "reset": cmd_reset,
        "serve": cmd_serve,
    }

    try:
        return commands[args.command](args)
    except StoreError as exc:
        print(f"Error: {exc.__class__.__name__}: {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
