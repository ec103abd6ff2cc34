# -*- coding: utf-8 -*-
"""Dynaform entrypoint.

Intentionally minimal:
- runtime dependency pre-check
- bootstrap (paths, logging)
- maintenance commands (``check``, ``--repair``)
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional


def _build_parser() -> argparse.ArgumentParser:
    from dynaform.version import get_version

    parser = argparse.ArgumentParser(prog="dynaform", description="Declarative report and entry-workflow engine.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {get_version()}")
    parser.add_argument("--repair", action="store_true", help="reset per-user settings to defaults")
    sub = parser.add_subparsers(dest="command")
    check = sub.add_parser("check", help="validate a page configuration file")
    check.add_argument("page", type=Path, help="page configuration (JSON)")
    check.add_argument("--json", action="store_true", dest="as_json", help="print issues as JSON")
    return parser


def _check(path: Path, as_json: bool) -> int:
    from core.validators.page import has_errors, validate_page
    from services.validation_service import issue_to_dict

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        print(f"Cannot read {path}: {exc}", file=sys.stderr)
        return 2

    issues = validate_page(data)
    if as_json:
        print(json.dumps([issue_to_dict(it) for it in issues], ensure_ascii=False, indent=2))
    elif not issues:
        print(f"{path}: OK")
    else:
        for it in issues:
            d = issue_to_dict(it)
            print(f"{path}: {d['level']}: {d['code']} {d['msg']} ({d['context']})")
    return 1 if has_errors(issues) else 0


def main(argv: Optional[List[str]] = None) -> int:
    from app.deps import ensure_runtime_deps

    try:
        ensure_runtime_deps()
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    from app.bootstrap import bootstrap
    from infra.settings import repair_user_space

    args = _build_parser().parse_args(argv)
    bootstrap()

    if args.repair:
        repair_user_space()
        print("Repair completed: settings reset to defaults.")
        return 0

    if args.command == "check":
        return _check(args.page, args.as_json)

    _build_parser().print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
