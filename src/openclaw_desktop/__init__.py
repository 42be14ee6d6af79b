"""openclaw-desktop: local control plane for the OpenClaw desktop companion.

Persists integration state, projects it into a secret-free gateway config,
keeps an audit trail, runs the Gmail OAuth handshake and wraps the
``openclaw gateway`` CLI.
"""

from .version import __version__
from .audit import AuditLog
from .catalog import PERMISSION_CATALOG_V1, PermissionDef
from .config import ManagerConfig, ManagerConfigError, load_manager_config
from .gateway import GatewayState, GatewayStatusController
from .manager import ManagerService
from .oauth import GmailOAuthHandshake, PendingOAuthSlot
from .projector import project
from .state.store import StateStore

__all__ = [
    "__version__",
    "AuditLog",
    "PERMISSION_CATALOG_V1",
    "PermissionDef",
    "ManagerConfig",
    "ManagerConfigError",
    "load_manager_config",
    "GatewayState",
    "GatewayStatusController",
    "ManagerService",
    "GmailOAuthHandshake",
    "PendingOAuthSlot",
    "project",
    "StateStore",
]
