"""Launch a plugin executable once and report its handshake."""

from __future__ import annotations

import json
import sys

from plughost.cli.shared.logging_utils import configure_cli_logging
from plughost.launcher import LaunchOptions, launch_plugin
from plughost.utils.exceptions import PlughostError


def main() -> int:
    if len(sys.argv) < 2:
        print("usage: handshake_smoke.py <executable> [args...]")
        return 2
    configure_cli_logging("DEBUG")
    try:
        with launch_plugin(sys.argv[1], sys.argv[2:], options=LaunchOptions(startup_timeout_seconds=5.0)) as plugin:
            print(json.dumps({"ok": True, "pid": plugin.pid, **plugin.handshake.as_dict()}))
    except PlughostError as exc:
        print(json.dumps({"ok": False, **exc.to_dict()}))
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
