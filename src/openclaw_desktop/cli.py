"""
CLI entry point for the ``openclaw-desktop`` command.

Thin dispatch over :class:`~openclaw_desktop.manager.ManagerService`; every
command prints JSON to stdout.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from .config import ManagerConfigError, load_manager_config
from .manager import ManagerService
from .paths import DATA_DIR_ENV
from .version import __version__

_ON_OFF = {"on": True, "off": False, "true": True, "false": False}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="openclaw-desktop",
        description="Local control plane for the OpenClaw desktop companion",
    )
    parser.add_argument("--data-dir", help="Override the data directory")
    parser.add_argument("--config", help="Path to manager YAML config file")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: from config, WARNING)",
    )
    parser.add_argument("--version", action="version", version=f"openclaw-desktop {__version__}")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Gateway and integration status")

    gw = sub.add_parser("gateway", help="Control the OpenClaw gateway")
    gw.add_argument("action", choices=["status", "start", "stop", "restart"])

    perms = sub.add_parser("permissions", help="Show or change permissions")
    perms_sub = perms.add_subparsers(dest="perm_action", required=True)
    perms_sub.add_parser("list")
    perm_set = perms_sub.add_parser("set")
    perm_set.add_argument("id")
    perm_set.add_argument("value", choices=sorted(_ON_OFF))
    perms_sub.add_parser("reset")

    policy = sub.add_parser("policy", help="Confirm-before-send policy")
    policy_sub = policy.add_subparsers(dest="policy_action", required=True)
    policy_sub.add_parser("show")
    policy_set = policy_sub.add_parser("set")
    policy_set.add_argument("integration")
    policy_set.add_argument("value", choices=sorted(_ON_OFF))

    audit = sub.add_parser("audit", help="Recent audit events")
    audit.add_argument("--lines", type=int, default=200)

    sub.add_parser("diagnostics", help="Run local diagnostics")
    sub.add_parser("regenerate", help="Rewrite openclaw.generated.json from state")
    return parser


async def _dispatch(service: ManagerService, args: argparse.Namespace) -> dict:
    if args.command == "status":
        return (await service.status()).to_dict()

    if args.command == "gateway":
        if args.action == "status":
            state = await service.gateway.status()
        elif args.action == "start":
            state = await service.start_gateway()
        elif args.action == "stop":
            state = await service.stop_gateway()
        else:
            state = await service.restart_gateway()
        return {"gateway": state.to_dict()}

    if args.command == "permissions":
        if args.perm_action == "set":
            perms = await service.set_permission(args.id, _ON_OFF[args.value])
        elif args.perm_action == "reset":
            perms = await service.reset_permissions()
        else:
            perms = await service.get_permissions()
        return {"permissions": perms.to_dict()}

    if args.command == "policy":
        if args.policy_action == "set":
            policy = await service.set_confirm_before_send_policy(
                args.integration, _ON_OFF[args.value],
            )
        else:
            policy = await service.get_confirm_before_send_policy()
        return {"policies": {"confirmBeforeSend": policy.to_dict()}}

    if args.command == "audit":
        recent = await service.recent_audit(args.lines)
        return {
            "audit": {
                "file": str(service.audit.file_path),
                "events": recent.events,
                "truncated": recent.truncated,
            },
        }

    if args.command == "diagnostics":
        return (await service.run_diagnostics()).to_dict()

    path = await service.store.regenerate_config()
    return {"generated": str(path)}


def main(argv=None) -> int:
    """Entry point for ``openclaw-desktop``."""
    args = _build_parser().parse_args(argv)

    env = dict(os.environ)
    if args.data_dir:
        env[DATA_DIR_ENV] = args.data_dir

    try:
        config = load_manager_config(args.config, environ=env)
    except ManagerConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    if args.data_dir:
        config.data_dir = Path(args.data_dir).expanduser()

    logging.basicConfig(
        level=args.log_level or config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    service = ManagerService.from_config(config, actor="cli")
    try:
        result = asyncio.run(_dispatch(service, args))
    except ValueError as e:
        print(json.dumps({"ok": False, "error": str(e)}))
        return 1

    print(json.dumps({"ok": True, **result}, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
