# fhirrag_sdk/cli.py
# SPDX-License-Identifier: Apache-2.0
"""
FhirRag SDK CLI

    fhirrag-sdk health                 check Bedrock, S3/DynamoDB and SQS
    fhirrag-sdk test [component ...]   run the test suites for components
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import time
from typing import Dict, List, Optional

try:
    import pytest
except ImportError:  # pragma: no cover
    pytest = None  # type: ignore[assignment]


COMPONENT_PATHS: Dict[str, str] = {
    "core": "tests/core",
    "llm": "tests/llm",
    "storage": "tests/storage",
    "orchestration": "tests/orchestration",
    "telemetry": "tests/telemetry",
    "embedding": "tests/embedding",
}

PYTEST_EXTRA_ARGS = os.environ.get("PYTEST_ARGS", "").split()


# --------------------------------------------------------------------------- #
# Internal helpers
# --------------------------------------------------------------------------- #

def _ensure_pytest() -> None:
    if pytest is None:  # pragma: no cover
        print(
            "error: pytest is required to run the test suites.\n"
            "Install test dependencies via:\n"
            "    pip install .[test]",
            file=sys.stderr,
        )
        raise SystemExit(1)


def _repo_root() -> str:
    """Best-effort guess of repo root."""
    here = os.path.abspath(os.path.dirname(__file__))
    return os.path.dirname(here)


def _run_tests(components: List[str], passthrough: List[str], quiet: bool) -> int:
    _ensure_pytest()
    unknown = [c for c in components if c not in COMPONENT_PATHS]
    if unknown:
        print(f"error: unknown component(s): {', '.join(unknown)}", file=sys.stderr)
        print(f"   choose from: {', '.join(COMPONENT_PATHS)}", file=sys.stderr)
        return 2

    os.chdir(_repo_root())
    paths = [COMPONENT_PATHS[c] for c in (components or list(COMPONENT_PATHS))]
    missing = [p for p in paths if not os.path.isdir(p)]
    if missing:
        print(f"error: test path does not exist: {', '.join(missing)}", file=sys.stderr)
        return 2

    args = [*paths, *PYTEST_EXTRA_ARGS, *passthrough, "-q" if quiet else "-v"]
    start = time.time()
    rc = int(pytest.main(args))
    if rc == 0:
        print(f"All selected suites passed in {time.time() - start:.1f}s")
    return rc


def _run_health(timeout_s: float) -> int:
    from fhirrag_sdk.health import check_health, service_checks
    from fhirrag_sdk.services import build_services

    async def _go() -> dict:
        async with build_services() as services:
            return await check_health(service_checks(services), timeout_s=timeout_s)

    report = asyncio.run(_go())
    print(json.dumps(report, indent=2, sort_keys=True))
    return 0 if report["ok"] else 1


# --------------------------------------------------------------------------- #
# Entry point
# --------------------------------------------------------------------------- #

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="fhirrag-sdk",
        description="FhirRag infrastructure SDK utilities",
    )
    parser.add_argument("--log-level", default=os.environ.get("FHIRRAG_LOG_LEVEL", "WARNING"))
    sub = parser.add_subparsers(dest="command", required=True)

    health = sub.add_parser("health", help="Check configured AWS dependencies")
    health.add_argument("--timeout", type=float, default=30.0, help="Per-check timeout in seconds")

    test = sub.add_parser("test", help="Run test suites")
    test.add_argument("components", nargs="*", help=f"Any of: {', '.join(COMPONENT_PATHS)}")
    test.add_argument("-q", "--quiet", action="store_true")

    args, passthrough = parser.parse_known_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "health":
        return _run_health(args.timeout)
    return _run_tests(args.components, passthrough, args.quiet)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
