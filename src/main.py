"""Command-line entry point for GradeJournal.

Provides maintenance commands on the local gradebook: show sync status, run a
sync, write or restore a JSON backup, and print attendance statistics.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from core.exceptions import GradebookError
from core.logging_config import setup_logging
from utils.gradebook_manager import GradebookManager
from utils.session_manager import GradebookSession, create_session

logger = logging.getLogger(__name__)


def print_banner() -> None:
    """Print program banner."""
    print("=" * 70)
    print("  GradeJournal")
    print("=" * 70)
    print()


def print_stats(manager: GradebookManager, classroom_id: str) -> None:
    """Print per-student attendance rates for a classroom."""
    analytics = manager.class_analytics(classroom_id)
    classroom = manager.require_classroom(classroom_id)
    print(f"{classroom.name}: {analytics['student_count']} students, {analytics['lesson_count']} lessons")
    print(f"Average attendance: {analytics['avg_rate']}%")
    print()
    for row in analytics["rows"]:
        print(
            f"  {row['name']:<30} {row['rate']:>3}%  "
            f"present {row['present']}  late {row['late']}  absent {row['absent']}  / {row['total']}"
        )


async def run_command(session: GradebookSession, args: argparse.Namespace) -> int:
    await session.load()
    try:
        if args.command == "status":
            state = session.controller.state()
            print(f"Classrooms:      {len(session.document.classrooms)}")
            print(f"Sync status:     {state.status.value}")
            print(f"Last sync:       {state.last_sync or 'never'}")
            print(f"Pending changes: {state.pending_changes}")
            print(f"Remote-backed:   {'yes' if state.remote_backed else 'no'}")
        elif args.command == "sync":
            if not session.controller.can_sync():
                print("Not signed in to a cloud account; nothing to sync.")
                return 1
            ok = await session.controller.sync_with_cloud()
            print("Sync completed." if ok else f"Sync failed: {session.controller.last_error}")
            return 0 if ok else 1
        elif args.command == "backup":
            Path(args.file).write_text(session.backup_json(), encoding="utf-8")
            print(f"Backup written to {args.file}")
        elif args.command == "restore":
            text = Path(args.file).read_text(encoding="utf-8")
            await session.restore_json(text)
            print(f"Restored {len(session.document.classrooms)} classrooms from {args.file}")
        elif args.command == "stats":
            print_stats(session.manager, args.classroom_id)
        return 0
    finally:
        await session.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gradejournal", description="GradeJournal maintenance commands")
    parser.add_argument("--log-level", default=None, help="Log level (default from LOG_LEVEL)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Show sync status")
    subparsers.add_parser("sync", help="Sync with the cloud now")

    backup = subparsers.add_parser("backup", help="Write a JSON backup")
    backup.add_argument("file")

    restore = subparsers.add_parser("restore", help="Replace all data with a JSON backup")
    restore.add_argument("file")

    stats = subparsers.add_parser("stats", help="Attendance statistics of a classroom")
    stats.add_argument("classroom_id")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    print_banner()
    session = create_session(auto_sync=False)
    try:
        return asyncio.run(run_command(session, args))
    except (GradebookError, OSError) as e:
        logger.error("Command failed: %s", e)
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
