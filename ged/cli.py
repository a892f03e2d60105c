"""
GED CLI — Bootstrap and administration commands.

Commands:
- ged init           — Create tables, seed the admin user and system folders
- ged tree           — Print the folder tree
- ged responsible    — Show / set / clear the mail responsible
- ged repair-icons   — Replace unusable folder icons
- ged logs-cleanup   — Apply audit log retention (delete / gzip old files)
"""

from __future__ import annotations

import argparse
import logging
from typing import TYPE_CHECKING, Optional, Tuple

from sqlalchemy import select

from ged.engine.config import CONFIG_FILENAME, PlatformConfig, load_config
from ged.engine.context import AUTHORITY_ADMIN, ActingUser
from ged.engine.errors import GedError

if TYPE_CHECKING:
    from ged.db.session import Database
    from ged.engine.logging import AsyncLogQueue

logger = logging.getLogger("ged.cli")

ADMIN_CODE = "admin"


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="ged",
        description="GED — Document, folder and mail management",
    )
    parser.add_argument(
        "--config", default=None, help=f"Path to {CONFIG_FILENAME} (default: auto-discover)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ged init
    init_parser = subparsers.add_parser("init", help="Create tables and seed system data")
    init_parser.add_argument("--admin-name", default="Administrateur", help="Admin last name")
    init_parser.add_argument("--admin-email", default=None, help="Admin email")

    # ged tree
    tree_parser = subparsers.add_parser("tree", help="Print the folder tree")
    tree_parser.add_argument(
        "--all", action="store_true", help="Include the confidential folder"
    )

    # ged responsible
    resp_parser = subparsers.add_parser("responsible", help="Show or change the mail responsible")
    group = resp_parser.add_mutually_exclusive_group()
    group.add_argument("--set", type=int, dest="user_id", metavar="USER_ID", help="New responsible user id")
    group.add_argument("--clear", action="store_true", help="Remove the current responsible")

    # ged repair-icons
    subparsers.add_parser("repair-icons", help="Fix folders with missing or broken icons")

    # ged logs-cleanup
    subparsers.add_parser("logs-cleanup", help="Delete / compress old audit log files")

    args = parser.parse_args(argv)

    if args.command == "init":
        return cmd_init(args)
    elif args.command == "tree":
        return cmd_tree(args)
    elif args.command == "responsible":
        return cmd_responsible(args)
    elif args.command == "repair-icons":
        return cmd_repair_icons(args)
    elif args.command == "logs-cleanup":
        return cmd_logs_cleanup(args)
    else:
        parser.print_help()
        return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _load(args: argparse.Namespace) -> Optional[PlatformConfig]:
    try:
        config = load_config(args.config)
    except GedError as e:
        print(f"[ERROR] {e.message}")
        return None
    logging.basicConfig(
        level=getattr(logging, config.logging.level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return config


def _open(config: PlatformConfig) -> Tuple["Database", "AsyncLogQueue"]:
    from ged.db.session import Database
    from ged.engine.logging import init_audit_queue

    db = Database.from_config(config.database)
    queue_cfg = config.logging.async_queue
    audit = init_audit_queue(
        config.logging.directory,
        flush_interval_ms=queue_cfg.flush_interval_ms,
        flush_batch_size=queue_cfg.flush_batch_size,
        max_queue_size=queue_cfg.max_queue_size,
    )
    return db, audit


def _cli_actor(db: "Database") -> ActingUser:
    """The seeded admin, acting for CLI commands."""
    from ged.db.models import User

    with db.session_scope() as session:
        admin = session.scalars(select(User).where(User.code == ADMIN_CODE)).first()
        if admin is None:
            raise GedError("Admin user missing; run 'ged init' first", entity="user")
        actor = ActingUser(
            user_id=admin.id,
            username=admin.code,
            authority_level=admin.authority_level,
            role=admin.role,
            full_name=admin.full_name,
        )
    if not actor.is_admin:
        raise GedError(
            f"User '{ADMIN_CODE}' is no longer level 0; restore it before running admin commands",
            entity="user",
            entity_id=actor.user_id,
        )
    logger.debug(f"CLI acting as {actor.to_dict()}")
    return actor


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_init(args: argparse.Namespace) -> int:
    """
    Bootstrap the GED database:
    1. Load config
    2. Check the connection and create all tables
    3. Create the admin user (level 0) if missing
    4. Seed the configured system folders (idempotent)
    """
    print("=" * 60)
    print("  GED Initialization")
    print("=" * 60)

    config = _load(args)
    if config is None:
        return 1
    print(f"[OK] Loaded config ({config.name} {config.version}, {config.environment})")

    from ged.db.models import User
    from ged.documents.folders import FolderTree
    from ged.engine.logging import emit, log_system_event

    db, audit = _open(config)
    try:
        if not db.health_check():
            print(f"[ERROR] Database connection failed: {db.engine.url!r}")
            return 1
        db.create_all()
        print("[OK] Database tables created")

        with db.session_scope() as session:
            admin = session.scalars(select(User).where(User.code == ADMIN_CODE)).first()
            if admin is None:
                session.add(User(
                    code=ADMIN_CODE,
                    last_name=args.admin_name,
                    first_name="",
                    email=args.admin_email,
                    authority_level=AUTHORITY_ADMIN,
                    role="admin",
                    is_active=True,
                ))
                print(f"[OK] Created admin user: '{ADMIN_CODE}'")
            else:
                print(f"[INFO] Admin user '{ADMIN_CODE}' already exists")

        actor = _cli_actor(db)
        folders = FolderTree(db, config.folders, audit)
        created = folders.ensure_system_folders(actor)
        for folder in created:
            print(f"[OK] System folder {folder.icon} {folder.code} ({folder.name})")
        if not created:
            print("[INFO] System folders already present")

        emit(audit, log_system_event("ged_initialized", f"{len(created)} system folder(s) seeded"))
        print("=" * 60)
        return 0
    except GedError as e:
        print(f"[ERROR] {e.message}")
        return 1
    finally:
        audit.stop()
        db.dispose()


def cmd_tree(args: argparse.Namespace) -> int:
    """Print the folder tree, one indented line per folder."""
    config = _load(args)
    if config is None:
        return 1

    from ged.documents.folders import FolderTree

    db, audit = _open(config)
    try:
        folders = FolderTree(db, config.folders, audit)
        viewer = None if args.all else ActingUser(user_id=0, username="viewer", authority_level=99)
        root = folders.build_tree(viewer)
        _print_node(root, 0)
        return 0
    except GedError as e:
        print(f"[ERROR] {e.message}")
        return 1
    finally:
        audit.stop()
        db.dispose()


def _print_node(node, depth: int) -> None:
    print(f"{'  ' * depth}{node.icon or ''} {node.code}  {node.name}")
    for child in node.children:
        _print_node(child, depth + 1)


def cmd_responsible(args: argparse.Namespace) -> int:
    """Show, set (--set USER_ID) or clear (--clear) the mail responsible."""
    config = _load(args)
    if config is None:
        return 1

    from ged.mail.notifications import NotificationRouter

    db, audit = _open(config)
    try:
        router = NotificationRouter(db, audit)
        if args.user_id is not None:
            router.set_responsible(args.user_id, _cli_actor(db))
            print(f"[OK] Responsible set to user {args.user_id}")
        elif args.clear:
            if router.remove_responsible(_cli_actor(db)):
                print("[OK] Responsible removed")
            else:
                print("[INFO] No responsible was set")
            return 0

        current = router.get_responsible()
        if current is None:
            print("No mail responsible set")
        else:
            print(f"Mail responsible: {current.full_name} (id={current.id}, code={current.code})")
        return 0
    except GedError as e:
        print(f"[ERROR] {e.message}")
        return 1
    finally:
        audit.stop()
        db.dispose()


def cmd_repair_icons(args: argparse.Namespace) -> int:
    config = _load(args)
    if config is None:
        return 1

    from ged.documents.folders import FolderTree

    db, audit = _open(config)
    try:
        fixed = FolderTree(db, config.folders, audit).repair_icons(_cli_actor(db))
        print(f"[OK] {fixed} folder icon(s) repaired")
        return 0
    except GedError as e:
        print(f"[ERROR] {e.message}")
        return 1
    finally:
        audit.stop()
        db.dispose()


def cmd_logs_cleanup(args: argparse.Namespace) -> int:
    config = _load(args)
    if config is None:
        return 1

    from ged.engine.logging import LogRetentionManager

    manager = LogRetentionManager(
        log_dir=config.logging.directory,
        retention_days=config.logging.retention_days,
        compress_after_days=config.logging.compress_after_days,
    )
    result = manager.cleanup()
    print(f"[OK] Deleted {result['deleted']} file(s), compressed {result['compressed']}")
    return 0
