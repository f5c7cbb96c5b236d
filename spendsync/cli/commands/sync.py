"""Sync commands for spendsync CLI: pull/merge/push against the backend."""

import asyncio
import json
import logging
import sys
from typing import Optional

from spendsync.config import SyncSettings
from spendsync.identity import CredentialsIdentity, StaticIdentity
from spendsync.protocols import DocumentStore, SpendSyncError
from spendsync.storage.cloud import HttpDocumentStore
from spendsync.storage.sqlite import SQLiteStore
from spendsync.sync.connectivity import ConnectivityMonitor
from spendsync.sync.orchestrator import SyncOrchestrator
from spendsync.sync.state import SyncPhase

logger = logging.getLogger(__name__)


def build_orchestrator(
    settings: SyncSettings, remote: Optional[DocumentStore] = None
) -> SyncOrchestrator:
    """Wire the SQLite store, remote store, identity and connectivity together."""
    store = SQLiteStore(settings.database_path)
    if remote is None:
        remote = HttpDocumentStore.from_settings(settings)
        identity = CredentialsIdentity(settings)

        async def probe() -> bool:
            health = await remote.health_check(timeout=settings.health_timeout)
            return health["healthy"]

        connectivity = ConnectivityMonitor(probe=probe)
    else:
        identity = StaticIdentity(settings.user_id)
        connectivity = ConnectivityMonitor()
    return SyncOrchestrator(
        store, remote, identity, connectivity=connectivity, settings=settings
    )


def _require_backend(settings: SyncSettings) -> None:
    if not settings.backend_url:
        print("✗ Backend not configured")
        print("  Set SPENDSYNC_BACKEND_URL or add backend_url to credentials.json")
        sys.exit(1)
    if not settings.auth_token or not settings.user_id:
        print("✗ Not authenticated")
        print("  Set SPENDSYNC_AUTH_TOKEN and SPENDSYNC_USER_ID")
        sys.exit(1)


async def _run_sync(orchestrator: SyncOrchestrator, force: bool):
    if isinstance(orchestrator.connectivity, ConnectivityMonitor):
        await orchestrator.connectivity.check()
    if force:
        return await orchestrator.force_refresh()
    return await orchestrator.sync_now()


def cmd_sync(args, settings: SyncSettings, remote: Optional[DocumentStore] = None):
    """Run one full sync and print the report."""
    if remote is None:
        _require_backend(settings)
    orchestrator = build_orchestrator(settings, remote)
    report = asyncio.run(_run_sync(orchestrator, getattr(args, "force", False)))
    snapshot = orchestrator.snapshot

    if args.json:
        print(
            json.dumps(
                {
                    "report": report.to_dict() if report else None,
                    "state": snapshot.to_dict(),
                },
                indent=2,
                default=str,
            )
        )
    elif report is not None:
        print(f"✓ Sync complete in {report.duration:.2f}s")
        print(f"  Downloaded: {report.downloaded}")
        print(f"  Uploaded: {report.uploaded}")
        if report.conflict_count:
            print(f"  Conflicts resolved: {report.conflict_count}")
        if report.skipped:
            print(f"⚠️  Skipped {report.skipped} malformed remote records")
    else:
        print(f"✗ {snapshot.display_text}")

    if snapshot.phase in (SyncPhase.ERROR, SyncPhase.WAITING_FOR_NETWORK):
        sys.exit(1)


def cmd_status(args, settings: SyncSettings):
    """Show pending changes and the last sync time."""
    store = SQLiteStore(settings.database_path)
    pending = store.pending_count()
    last_sync = store.get_sync_meta(SyncOrchestrator.LAST_SYNC_KEY)
    initial = store.get_sync_meta(SyncOrchestrator.INITIAL_SYNC_KEY) == "1"

    status = {
        "pending_changes_count": pending,
        "last_sync_date": last_sync,
        "has_completed_initial_sync": initial,
        "backend_url": settings.backend_url,
        "user_id": settings.user_id,
    }
    if args.json:
        print(json.dumps(status, indent=2, default=str))
        return

    print("Sync Status")
    print("=" * 50)
    print(f"Backend: {settings.backend_url or 'not configured'}")
    if settings.user_id:
        print(f"User: {settings.user_id}")
    print(f"Pending changes: {pending}")
    print(f"Last sync: {last_sync or 'Never'}")
    print(f"Initial sync completed: {'yes' if initial else 'no'}")
    if pending > 0:
        print()
        print("💡 Run `spendsync push` to upload pending changes")


def cmd_push(args, settings: SyncSettings, remote: Optional[DocumentStore] = None):
    """Upload unsynced local records without pulling."""
    if remote is None:
        _require_backend(settings)
    orchestrator = build_orchestrator(settings, remote)
    try:
        uploaded = asyncio.run(orchestrator.push_pending())
    except SpendSyncError as e:
        if args.json:
            print(json.dumps({"uploaded": 0, "error": e.user_message}, indent=2))
        else:
            print(f"✗ {e.user_message}")
        sys.exit(1)

    if args.json:
        print(json.dumps({"uploaded": uploaded}, indent=2))
    elif uploaded:
        print(f"✓ Pushed {uploaded} changes")
    else:
        print("✓ No pending changes to push")
