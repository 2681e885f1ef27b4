# ============================================================================
# shared/utils.py - Common utilities
# ============================================================================

import subprocess
import os
import shutil
from datetime import datetime
from pathlib import Path
import logging
from typing import List, Optional, Tuple

from config import (
    ASTERISK_USER, ASTERISK_BACKUP_PATH, ASTERISK_BINARY, ASTERISK_CLI_TIMEOUT
)

logger = logging.getLogger(__name__)


def build_asterisk_command(command: str, binary: str = ASTERISK_BINARY,
                           user: str = ASTERISK_USER) -> List[str]:
    """Build the argument vector for an Asterisk CLI command"""
    argv = [binary, "-rx", command]
    if user:
        argv = ["sudo", "-u", user] + argv
    return argv


def execute_asterisk_command(command: str, timeout: int = ASTERISK_CLI_TIMEOUT,
                             binary: str = ASTERISK_BINARY,
                             user: str = ASTERISK_USER) -> Tuple[bool, str]:
    """Execute Asterisk CLI command"""
    try:
        full_command = build_asterisk_command(command, binary=binary, user=user)
        result = subprocess.run(
            full_command,
            capture_output=True,
            text=True,
            timeout=timeout
        )

        success = result.returncode == 0
        output = result.stdout if success else (result.stderr or result.stdout)

        logger.info(f"Asterisk command '{command}' - Success: {success}")
        return success, output

    except subprocess.TimeoutExpired:
        logger.error(f"Asterisk command '{command}' timed out")
        return False, "Command timed out"
    except OSError as e:
        logger.error(f"Failed to execute command '{command}': {e}")
        return False, str(e)


def create_backup(config_path: str, backup_prefix: str = "config",
                  backup_dir: str = ASTERISK_BACKUP_PATH) -> str:
    """Create backup of configuration file"""
    Path(backup_dir).mkdir(parents=True, exist_ok=True)

    if not os.path.exists(config_path):
        logger.warning(f"Config file {config_path} does not exist")
        return ""

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    config_name = Path(config_path).stem
    backup_path = os.path.join(backup_dir, f"{backup_prefix}_{config_name}_{timestamp}.conf")

    shutil.copy2(config_path, backup_path)
    logger.info(f"Backup created: {backup_path}")
    return backup_path


def list_backups(config_path: str, backup_dir: str = ASTERISK_BACKUP_PATH) -> List[dict]:
    """List backups of a configuration file, newest first"""
    if not os.path.exists(backup_dir):
        return []

    config_name = Path(config_path).stem
    backups = []
    for file in os.listdir(backup_dir):
        if f"_{config_name}_" in file and file.endswith(".conf"):
            file_path = os.path.join(backup_dir, file)
            stat = os.stat(file_path)
            backups.append({
                'filename': file,
                'path': file_path,
                'size': stat.st_size,
                'created': datetime.fromtimestamp(stat.st_mtime)
            })

    backups.sort(key=lambda x: (x['created'], x['filename']), reverse=True)
    return backups


def find_backup(config_path: str, filename: Optional[str] = None,
                backup_dir: str = ASTERISK_BACKUP_PATH) -> Optional[str]:
    """Resolve a backup by filename, or the latest one when no name is given"""
    backups = list_backups(config_path, backup_dir)
    if filename is None:
        return backups[0]['path'] if backups else None
    for backup in backups:
        if backup['filename'] == filename:
            return backup['path']
    return None


def ensure_directories(*dirs: str) -> None:
    """Ensure directories exist"""
    for directory in dirs:
        Path(directory).mkdir(parents=True, exist_ok=True)
