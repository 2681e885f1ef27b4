# ============================================================================
# shared/ami.py - Asterisk Manager Interface client and endpoint status cache
# ============================================================================

import logging
import re
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import asterisk.manager

from config import AMI_HOST, AMI_PORT, AMI_USERNAME, AMI_SECRET
from shared.exceptions import EngineUnreachable

logger = logging.getLogger(__name__)

AMI_ERRORS = (
    asterisk.manager.ManagerSocketException,
    asterisk.manager.ManagerAuthException,
    asterisk.manager.ManagerException,
    OSError,
)

ENDPOINT_LINE = re.compile(r'^\s*Endpoint:\s+(\S+)\s+(.*?)\s+(\d+)\s+of\s+(\S+)\s*$')
CONTACT_LINE = re.compile(r'^\s*Contact:\s+(\S+)\s+\S+\s+(\S+)')
UNAVAILABLE_STATES = ("Unavailable", "Invalid")


class AsteriskAMI:
    """Synchronous wrapper around a pyst2 manager connection"""

    def __init__(self, host: str = AMI_HOST, port: int = AMI_PORT,
                 username: str = AMI_USERNAME, secret: str = AMI_SECRET,
                 manager_factory: Callable = asterisk.manager.Manager):
        self.host = host
        self.port = int(port)
        self.username = username
        self.secret = secret
        self.manager_factory = manager_factory
        self.manager = None

    def connect(self):
        """Connect and log in, raising EngineUnreachable on failure"""
        if self.manager is not None:
            return self.manager
        manager = self.manager_factory()
        try:
            manager.connect(host=self.host, port=self.port)
            manager.login(username=self.username, secret=self.secret)
        except asterisk.manager.ManagerAuthException as e:
            logger.error(f"Authentication failed for Asterisk AMI: {str(e)}")
            self._close(manager)
            raise EngineUnreachable(f"AMI authentication failed: {e}") from e
        except AMI_ERRORS as e:
            logger.error(f"Failed to connect to Asterisk AMI at {self.host}:{self.port}: {str(e)}")
            self._close(manager)
            raise EngineUnreachable(f"AMI connection failed: {e}") from e

        logger.info(f"Connected to Asterisk AMI at {self.host}:{self.port}")
        self.manager = manager
        return manager

    def disconnect(self) -> None:
        """Disconnect from Asterisk AMI"""
        if self.manager is not None:
            self._close(self.manager)
            self.manager = None
            logger.debug("Disconnected from Asterisk AMI")

    @staticmethod
    def _close(manager) -> None:
        try:
            manager.close()
        except AMI_ERRORS as e:
            logger.warning(f"Error disconnecting from Asterisk AMI: {str(e)}")

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()
        return False

    def send_action(self, action: Dict[str, str]):
        """Send a manager action and return the response message"""
        manager = self.connect()
        try:
            return manager.send_action(action)
        except AMI_ERRORS as e:
            self.disconnect()
            raise EngineUnreachable(f"AMI action {action.get('Action')} failed: {e}") from e

    def command(self, command: str) -> str:
        """Run a CLI command through the manager and return its text output"""
        manager = self.connect()
        try:
            response = manager.command(command)
        except AMI_ERRORS as e:
            self.disconnect()
            raise EngineUnreachable(f"AMI command '{command}' failed: {e}") from e
        return response.data or ""


def parse_endpoint_list(output: str) -> Dict[str, Dict[str, Any]]:
    """Parse `pjsip show endpoints` output into per-endpoint state"""
    endpoints: Dict[str, Dict[str, Any]] = {}
    current = None
    for line in output.splitlines():
        if '<' in line:
            # column legend
            continue
        match = ENDPOINT_LINE.match(line)
        if match:
            name = match.group(1).split('/')[0]
            current = {
                'state': match.group(2).strip(),
                'channels': int(match.group(3)),
                'contacts': [],
            }
            endpoints[name] = current
            continue
        match = CONTACT_LINE.match(line)
        if match and current is not None:
            current['contacts'].append({'uri': match.group(1), 'status': match.group(2)})

    for info in endpoints.values():
        info['registered'] = bool(info['contacts']) and info['state'] not in UNAVAILABLE_STATES
    return endpoints


class EndpointStatusService:
    """Cached view of endpoint registration state.

    A fresh snapshot is served from cache for `ttl` seconds. When the manager
    cannot be reached the last snapshot is returned flagged `stale`; with no
    snapshot at all the status is `unknown`.
    """

    def __init__(self, ami: Optional[AsteriskAMI] = None, ttl: float = 30.0,
                 clock: Callable[[], float] = time.monotonic):
        self.ami = ami or AsteriskAMI()
        self.ttl = ttl
        self.clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[Dict[str, Dict[str, Any]]] = None
        self._fetched_at: Optional[float] = None
        self._fetched_wall: Optional[datetime] = None

    def list_endpoints(self) -> Dict[str, Any]:
        with self._lock:
            now = self.clock()
            if self._snapshot is not None and now - self._fetched_at < self.ttl:
                return self._result("live")
            try:
                with self.ami:
                    output = self.ami.command("pjsip show endpoints")
            except EngineUnreachable as e:
                logger.warning(f"Endpoint status unavailable: {e}")
                if self._snapshot is None:
                    return {"status": "unknown", "endpoints": {}, "checked_at": None}
                return self._result("stale")

            self._snapshot = parse_endpoint_list(output)
            self._fetched_at = now
            self._fetched_wall = datetime.now()
            return self._result("live")

    def _result(self, status: str) -> Dict[str, Any]:
        return {
            "status": status,
            "endpoints": self._snapshot,
            "checked_at": self._fetched_wall.isoformat() if self._fetched_wall else None,
        }

    def endpoint_detail(self, name: str) -> Dict[str, Any]:
        """Raw `pjsip show endpoint` output plus the parsed summary"""
        try:
            with self.ami:
                output = self.ami.command(f"pjsip show endpoint {name}")
        except EngineUnreachable as e:
            cached = (self._snapshot or {}).get(name)
            return {"status": "stale" if cached else "unknown", "endpoint": name,
                    "summary": cached, "output": None, "error": str(e)}

        if "Unable to find object" in output or "Not found" in output:
            return {"status": "live", "endpoint": name, "summary": None,
                    "output": output, "error": "Endpoint not found"}
        summary = parse_endpoint_list(output).get(name)
        return {"status": "live", "endpoint": name, "summary": summary,
                "output": output, "error": None}

    def registration_map(self) -> Dict[str, Optional[bool]]:
        """Map endpoint name to registered flag; empty when the state is unknown"""
        result = self.list_endpoints()
        return {name: info['registered'] for name, info in (result['endpoints'] or {}).items()}

    def invalidate(self) -> None:
        with self._lock:
            self._fetched_at = None if self._snapshot is None else float('-inf')

