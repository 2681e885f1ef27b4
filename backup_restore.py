#!/usr/bin/env python3
"""
Backup and Restore Helper for the Asterisk configuration files
"""

import sys
from typing import Dict, Optional

from config import ASTERISK_PJSIP_CONFIG, ASTERISK_EXTENSIONS_CONFIG
from apps.reconcile.config_store import ConfigStore
from apps.reconcile.reload import ReloadCoordinator
from shared.exceptions import ReconcileError
from shared.utils import list_backups, find_backup

# config name -> reload scope
SCOPES = {"pjsip": "pjsip", "extensions": "dialplan"}


def default_stores() -> Dict[str, ConfigStore]:
    return {
        "pjsip": ConfigStore(ASTERISK_PJSIP_CONFIG, backup_prefix="manual"),
        "extensions": ConfigStore(ASTERISK_EXTENSIONS_CONFIG, backup_prefix="manual"),
    }


def show_backups(store: ConfigStore) -> None:
    """Display available backups"""
    backups = list_backups(store.path, store.backup_dir)

    if not backups:
        print("No backups found")
        return

    print(f"\nAvailable Backups for {store.path}:")
    print("=" * 60)
    for i, backup in enumerate(backups, 1):
        print(f"{i:2d}. {backup['filename']}")
        print(f"    Created: {backup['created'].strftime('%Y-%m-%d %H:%M:%S')}")
        print(f"    Size: {backup['size']} bytes")
        print()


def restore_backup(store: ConfigStore, scope: str, filename: Optional[str] = None,
                   reloader: Optional[ReloadCoordinator] = None) -> bool:
    """Restore a backup (the latest when no filename is given) and reload"""
    backup_path = find_backup(store.path, filename, store.backup_dir)
    if backup_path is None:
        print(f"Backup file not found: {filename}" if filename else "No backups found")
        return False

    try:
        store.restore(backup_path)
    except ReconcileError as e:
        print(f"Failed to restore backup: {e}")
        return False
    print(f"Restored: {backup_path} -> {store.path}")

    print(f"Reloading Asterisk {scope} configuration...")
    result = (reloader or ReloadCoordinator()).reload(scope)
    if not result.success:
        print(f"Reload failed: {result.error}")
        return False
    print(f"Reloaded via {result.method}")
    return True


def create_manual_backup(store: ConfigStore) -> bool:
    try:
        backup_path = store.backup()
    except ReconcileError as e:
        print(f"Failed to create backup: {e}")
        return False
    if not backup_path:
        print(f"No configuration file found at {store.path}")
        return False
    print(f"Manual backup created: {backup_path}")
    return True


def show_current_config(store: ConfigStore) -> None:
    """Show the managed blocks and the start of the file"""
    try:
        content = store.read_text()
        labels = store.managed_labels()
    except ReconcileError as e:
        print(f"Failed to read config: {e}")
        return

    print(f"\nCurrent Configuration ({store.path}):")
    print("=" * 60)
    print(f"Managed blocks: {', '.join(labels) or 'none'}")
    print(content[:1000] + "..." if len(content) > 1000 else content)


def usage() -> None:
    print("Asterisk Configuration Backup/Restore Tool")
    print("=" * 42)
    print("Usage:")
    print("  python backup_restore.py list [config]                - List available backups")
    print("  python backup_restore.py show [config]                - Show current config")
    print("  python backup_restore.py backup [config]              - Create manual backup")
    print("  python backup_restore.py restore <filename> [config]  - Restore specific backup")
    print("  python backup_restore.py latest [config]              - Restore latest backup")
    print()
    print("config is pjsip (default) or extensions")


def main(argv=None, stores: Optional[Dict[str, ConfigStore]] = None,
         reloader: Optional[ReloadCoordinator] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        usage()
        return 1

    command = args.pop(0).lower()
    filename = None
    if command == "restore":
        if not args:
            print("Please specify backup filename")
            print("Use 'python backup_restore.py list' to see available backups")
            return 1
        filename = args.pop(0)

    config_name = args[0].lower() if args else "pjsip"
    stores = stores or default_stores()
    if config_name not in stores:
        print(f"Unknown config: {config_name}")
        return 1
    store = stores[config_name]

    if command == "list":
        show_backups(store)
    elif command == "show":
        show_current_config(store)
    elif command == "backup":
        return 0 if create_manual_backup(store) else 1
    elif command in ("restore", "latest"):
        return 0 if restore_backup(store, SCOPES[config_name], filename, reloader) else 1
    else:
        print(f"Unknown command: {command}")
        print("Use 'python backup_restore.py' to see usage")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
