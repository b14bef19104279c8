from __future__ import annotations

import sys

try:
    # Normal package import path.
    from .cli import main as _cli_main
except ImportError:
    # Script entrypoint path.
    from hostpulse_app.cli import main as _cli_main


_COMMANDS = ("serve", "snapshot", "info")
_PASSTHROUGH = ("-h", "--help", "--version")


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if not any(a in _COMMANDS or a in _PASSTHROUGH for a in args):
        # Global flags alone start the daemon.
        return int(_cli_main([*args, "serve"]))
    return int(_cli_main(args))


if __name__ == "__main__":
    raise SystemExit(main())
