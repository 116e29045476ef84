"""dummyfiles entrypoint (minimal launcher only).

Core implementation lives in:
  * dummyfiles_core.py  - argument splitting, application registry, dispatch
  * dummyfiles_apps.py  - the mirror / restore / report applications

Usage: dummyfiles [--config FILE] [--json-logs] <application> [options ...]

This file only turns the status computed by the core into the process exit
code. For programmatic use, import `run` from dummyfiles_core.
"""
from __future__ import annotations

import sys
from dummyfiles_core import run


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    return run(args)


if __name__ == '__main__':  # pragma: no cover
    raise SystemExit(main())
