"""
DMS CLI — Database bootstrap and maintenance commands.

Commands:
- dms init               — Create the DMS tables (optionally seed a project)
- dms tree <project_id>  — Print the visible folder/file hierarchy
- dms trash <project_id> — List soft-deleted folders, files and links
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

logger = logging.getLogger("dms.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="dms",
        description="DMS — Document management core",
    )
    parser.add_argument(
        "--config", default=None, help="Path to dms.yaml (default: discovered from the CWD)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # dms init
    init_parser = subparsers.add_parser("init", help="Create the DMS database tables")
    init_parser.add_argument("--project", help="Seed a project with this name")
    init_parser.add_argument("--identifier", help="Identifier of the seeded project")

    # dms tree
    tree_parser = subparsers.add_parser("tree", help="Print the visible hierarchy of a project")
    tree_parser.add_argument("project_id", type=int, help="Project id")

    # dms trash
    trash_parser = subparsers.add_parser("trash", help="List soft-deleted entries of a project")
    trash_parser.add_argument("project_id", type=int, help="Project id")

    args = parser.parse_args(argv)

    if args.command == "init":
        return cmd_init(args)
    elif args.command == "tree":
        return cmd_tree(args)
    elif args.command == "trash":
        return cmd_trash(args)
    else:
        parser.print_help()
        return 0


def _bootstrap(args: argparse.Namespace, create_tables: bool = False):
    """Load dms.yaml, set up logging and initialise the database."""
    from dms.db.session import init_db
    from dms.engine.config import load_config
    from dms.engine.logging import init_logging

    config = load_config(args.config)
    logging.basicConfig(level=config.logging.level, format="%(levelname)s %(name)s: %(message)s")
    init_logging(config.logging.directory, config.logging.level)
    init_db(
        config.database.url,
        create_tables=create_tables,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
        pool_pre_ping=config.database.pool_pre_ping,
    )
    return config


def _store(config, session):
    from dms.documents.storage import LocalStorageBackend
    from dms.documents.store import EntityStore

    return EntityStore(session, LocalStorageBackend(config.storage.directory))


def cmd_init(args: argparse.Namespace) -> int:
    """Create tables and, with --project, one project with the documents module enabled."""
    from dms.db.models import DOCUMENTS_MODULE, Project
    from dms.db.session import session_scope
    from dms.engine.errors import DMSConfigError

    try:
        config = _bootstrap(args, create_tables=True)
    except DMSConfigError as e:
        print(f"[ERROR] {e.message}")
        return 1
    print(f"[OK] Database tables created ({config.database.url})")

    if args.project:
        identifier = args.identifier or args.project.lower().replace(" ", "-")
        with session_scope() as session:
            project = Project(
                name=args.project,
                identifier=identifier,
                notification=False,
                enabled_modules=[DOCUMENTS_MODULE],
            )
            session.add(project)
            session.flush()
            print(f"[OK] Project '{project.name}' created with id {project.id}")
    return 0


def _tree_lines(store, project_id: int) -> List[str]:
    """Depth-first listing: a folder line, its files and links, then its subfolders."""
    lines: List[str] = []
    stack = [(None, -1)]
    while stack:
        folder, depth = stack.pop()
        if folder is not None:
            lines.append(f"{'  ' * depth}{folder.title}/")
        listing = store.list_visible(project_id, folder)
        indent = "  " * (depth + 1)
        for file in listing.files:
            revision = file.last_revision
            version = f" (v{revision.version})" if revision else ""
            lines.append(f"{indent}{file.name}{version}")
        for link in listing.links:
            lines.append(f"{indent}{link.title} -> {link.kind}")
        for sub in reversed(listing.folders):
            stack.append((sub, depth + 1))
    return lines


def cmd_tree(args: argparse.Namespace) -> int:
    from dms.db.session import session_scope
    from dms.engine.errors import DMSError

    try:
        config = _bootstrap(args)
        with session_scope() as session:
            store = _store(config, session)
            project = store.find_project(args.project_id)
            print(f"{project.name} ({project.identifier})")
            for line in _tree_lines(store, project.id):
                print(f"  {line}")
    except DMSError as e:
        print(f"[ERROR] {e.message}")
        return 1
    return 0


def cmd_trash(args: argparse.Namespace) -> int:
    from dms.db.session import session_scope
    from dms.engine.errors import DMSError

    try:
        config = _bootstrap(args)
        with session_scope() as session:
            store = _store(config, session)
            project = store.find_project(args.project_id)
            listing = store.list_trash(project.id)
            if not len(listing):
                print(f"Trash of '{project.name}' is empty")
                return 0
            for folder in listing.folders:
                print(f"folder-{folder.id}\t{folder.title}\t{folder.deleted_at:%Y-%m-%d %H:%M}")
            for file in listing.files:
                print(f"file-{file.id}\t{file.name}\t{file.deleted_at:%Y-%m-%d %H:%M}")
            for link in listing.links:
                print(f"{link.kind}-{link.id}\t{link.title}\t{link.deleted_at:%Y-%m-%d %H:%M}")
    except DMSError as e:
        print(f"[ERROR] {e.message}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
