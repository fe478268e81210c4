#!/usr/bin/env python3
"""
Parse a CTP configuration file and print what was understood.

    python -m ctp.tools.show_config cfg.txt                 # inferred sections
    python -m ctp.tools.show_config cfg.txt --explicit      # PARTITION:/INPUTS:/... format
    python -m ctp.tools.show_config cfg.txt --json

Exit code 1 when an explicit-section file is rejected.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from ctp.config_loader import get_log_level
from ctp.detectors import default_registry
from ctp.explicit_parser import parse_explicit
from ctp.inferred_parser import parse_inferred


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="CTP configuration viewer")
    p.add_argument("path", type=Path, help="configuration text file")
    p.add_argument("--explicit", action="store_true", help="explicit-section format (default: inferred)")
    p.add_argument("--json", action="store_true", help="print JSON instead of the text listing")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, get_log_level("WARNING"), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    text = args.path.read_text(encoding="utf-8")
    registry = default_registry()
    result = parse_explicit(text, registry) if args.explicit else parse_inferred(text, registry)

    if not result.ok:
        err = result.error
        print(f"REJECTED line {err.line_no}: {err.reason}\n  {err.line}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(result.config.to_dict(), indent=2))
    else:
        sys.stdout.write(result.config.dump())
    for issue in result.issues:
        print(f"skipped line {issue.line_no}: {issue.reason}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
