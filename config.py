# ============================================================================
# config.py - Environment driven settings
# ============================================================================

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Application settings
APP_NAME = "PBX Reconciliation Service"
APP_VERSION = "1.0.0"
APP_DESCRIPTION = "Keeps the PBX database model and the Asterisk configuration files in sync"

# Asterisk configuration files
ASTERISK_CONFIG_PATH = os.getenv("ASTERISK_CONFIG_PATH", "/etc/asterisk/")
ASTERISK_PJSIP_CONFIG = os.getenv(
    "ASTERISK_PJSIP_CONFIG", os.path.join(ASTERISK_CONFIG_PATH, "pjsip.conf")
)
ASTERISK_EXTENSIONS_CONFIG = os.getenv(
    "ASTERISK_EXTENSIONS_CONFIG", os.path.join(ASTERISK_CONFIG_PATH, "extensions.conf")
)
ASTERISK_BACKUP_PATH = os.getenv("ASTERISK_BACKUP_PATH", "/etc/asterisk/backups/")

# Asterisk CLI (fallback reload path)
ASTERISK_BINARY = os.getenv("ASTERISK_BINARY", "asterisk")
ASTERISK_USER = os.getenv("ASTERISK_USER", "")  # empty: run without sudo
ASTERISK_CLI_TIMEOUT = int(os.getenv("ASTERISK_CLI_TIMEOUT", 30))

# Asterisk Manager Interface
AMI_ENABLED = os.getenv("AMI_ENABLED", "true").lower() == "true"
AMI_HOST = os.getenv("AMI_HOST", "127.0.0.1")
AMI_PORT = int(os.getenv("AMI_PORT", 5038))
AMI_USERNAME = os.getenv("AMI_USERNAME", "admin")
AMI_SECRET = os.getenv("AMI_SECRET", "")

# SIP settings
SIP_REALM = os.getenv("SIP_REALM", "asterisk")
OUTBOUND_ROUTES_CONTEXT = os.getenv("OUTBOUND_ROUTES_CONTEXT", "from-internal")

# Reconciliation
AUTO_SYNC_ON_STARTUP = os.getenv("AUTO_SYNC_ON_STARTUP", "true").lower() == "true"
AUTO_SYNC_COOLDOWN = int(os.getenv("AUTO_SYNC_COOLDOWN", 60))

# Database configuration
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_USER = os.getenv("DB_USER", "pbxadmin")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")
DB_NAME = os.getenv("DB_NAME", "pbx")

# Construct DATABASE_URL with SYNC driver (pymysql)
if DB_PASSWORD:
    DATABASE_URL = f"mysql+pymysql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}/{DB_NAME}"
else:
    DATABASE_URL = f"mysql+pymysql://{DB_USER}@{DB_HOST}/{DB_NAME}"

# Override with direct DATABASE_URL if provided
DATABASE_URL = os.getenv("DATABASE_URL", DATABASE_URL)
DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() == "true"

# Security
API_KEY = os.getenv("API_KEY", "your-secure-api-key-here")
API_KEY_FILE = os.getenv("API_KEY_FILE")

# Load API key from file if specified
if API_KEY_FILE and Path(API_KEY_FILE).exists():
    with open(API_KEY_FILE, 'r') as f:
        API_KEY = f.read().strip()

# Server settings
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "info")
LOG_DIR = os.getenv("LOG_DIR", "logs")

# CORS settings
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

# Apps configuration
ENABLED_APPS = ["extensions", "trunks", "dialplan", "sync", "system"]
