# ============================================================================
# apps/reconcile/reload.py - Ask the running Asterisk to re-read its configuration
# ============================================================================

import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from config import (
    AMI_ENABLED, ASTERISK_PJSIP_CONFIG, ASTERISK_EXTENSIONS_CONFIG, ASTERISK_CLI_TIMEOUT
)
from shared.ami import AsteriskAMI
from shared.exceptions import EngineUnreachable
from shared.utils import execute_asterisk_command
from .config_store import locked_files

logger = logging.getLogger(__name__)

# scope -> (manager Reload module, CLI command)
RELOAD_SCOPES: Dict[str, Tuple[Optional[str], str]] = {
    "pjsip": ("res_pjsip.so", "pjsip reload"),
    "dialplan": ("pbx_config.so", "dialplan reload"),
    "all": (None, "core reload"),
}


class ReloadResult(BaseModel):
    success: bool
    scope: str = "all"
    method: Optional[str] = None
    output: Optional[str] = None
    error: Optional[str] = None


def _check_scope(scope: str) -> None:
    if scope not in RELOAD_SCOPES:
        raise ValueError(f"Unknown reload scope '{scope}'")


class AmiReloadStrategy:
    """Reload through a manager `Reload` action"""

    name = "ami"

    def __init__(self, ami_factory: Callable[[], AsteriskAMI] = AsteriskAMI, enabled: bool = AMI_ENABLED):
        self.ami_factory = ami_factory
        self.enabled = enabled

    def available(self) -> bool:
        return self.enabled

    def reload(self, scope: str) -> ReloadResult:
        module, _ = RELOAD_SCOPES[scope]
        action = {"Action": "Reload"}
        if module:
            action["Module"] = module

        with self.ami_factory() as ami:
            response = ami.send_action(action)

        status = response.get_header("Response", "") if response is not None else ""
        message = response.get_header("Message", "") if response is not None else ""
        if status == "Success":
            return ReloadResult(success=True, scope=scope, method=self.name, output=message or status)
        return ReloadResult(success=False, scope=scope, method=self.name,
                            error=message or f"Manager answered '{status or 'nothing'}'")


class CliReloadStrategy:
    """Reload by running `asterisk -rx <command>`"""

    name = "cli"

    def __init__(self, runner: Callable[..., Tuple[bool, str]] = execute_asterisk_command,
                 timeout: int = ASTERISK_CLI_TIMEOUT):
        self.runner = runner
        self.timeout = timeout

    def available(self) -> bool:
        return True

    def reload(self, scope: str) -> ReloadResult:
        _, command = RELOAD_SCOPES[scope]
        success, output = self.runner(command, timeout=self.timeout)
        if success and "Unable to connect" not in output:
            return ReloadResult(success=True, scope=scope, method=self.name, output=output)
        raise EngineUnreachable(f"'{command}' failed: {output.strip() or 'no output'}")


class ReloadCoordinator:
    """Tries each strategy in order until one reloads the requested scope.

    Reloads of a scope hold the lock of the file that scope reads, so a reload
    never overlaps a write to that file or another reload of the same scope.
    """

    def __init__(self, strategies: Optional[List] = None,
                 scope_paths: Optional[Dict[str, List[str]]] = None):
        self.strategies = strategies if strategies is not None else [AmiReloadStrategy(), CliReloadStrategy()]
        if scope_paths is None:
            scope_paths = {
                "pjsip": [ASTERISK_PJSIP_CONFIG],
                "dialplan": [ASTERISK_EXTENSIONS_CONFIG],
                "all": [ASTERISK_PJSIP_CONFIG, ASTERISK_EXTENSIONS_CONFIG],
            }
        self.scope_paths = scope_paths

    def reload(self, scope: str = "all") -> ReloadResult:
        _check_scope(scope)
        errors = []
        with locked_files(self.scope_paths.get(scope, [])):
            for strategy in self.strategies:
                if not strategy.available():
                    continue
                try:
                    result = strategy.reload(scope)
                except EngineUnreachable as e:
                    logger.warning(f"Reload {scope} via {strategy.name} failed: {e}")
                    errors.append(f"{strategy.name}: {e}")
                    continue
                if result.success:
                    logger.info(f"Reloaded {scope} via {strategy.name}")
                    return result
                logger.warning(f"Reload {scope} via {strategy.name} rejected: {result.error}")
                errors.append(f"{strategy.name}: {result.error}")

        logger.error(f"Reload {scope} failed: {'; '.join(errors) or 'no reload method available'}")
        return ReloadResult(success=False, scope=scope,
                            error="; ".join(errors) or "No reload method available")

    def reload_scopes(self, scopes: Iterable[str]) -> ReloadResult:
        """Reload several scopes, succeeding only when all of them do"""
        results = [self.reload(scope) for scope in dict.fromkeys(scopes)]
        if not results:
            return ReloadResult(success=True, scope="none", output="Nothing to reload")
        outputs = [f"{r.scope}: {r.output.strip()}" for r in results if r.output]
        errors = [f"{r.scope}: {r.error}" for r in results if r.error]
        return ReloadResult(
            success=all(r.success for r in results),
            scope=",".join(r.scope for r in results),
            method=",".join(sorted({r.method for r in results if r.method})) or None,
            output="\n".join(outputs) or None,
            error="; ".join(errors) or None,
        )
