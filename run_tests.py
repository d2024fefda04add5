#!/usr/bin/env python3
"""
Test runner script for the PTCG inventory API.

Wraps pytest with the suites this project ships (unit, integration) and
optional coverage reporting.
"""

import argparse
import subprocess
import sys
import time
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent

SUITES = {
    "unit": "tests/unit/",
    "integration": "tests/integration/",
    "all": "tests/",
}


def run_pytest(target, verbose=False, coverage=False):
    """Run pytest on a target path and return its exit code."""
    command = [sys.executable, "-m", "pytest", target]

    if verbose:
        command.append("-v")

    if coverage:
        command.extend([
            "--cov=ptcgapi",
            "--cov-report=term-missing",
            "--cov-report=html:tests/coverage/html",
        ])

    print(f"\n{'='*60}")
    print(f"Running: {' '.join(command)}")
    print(f"{'='*60}")

    start_time = time.time()
    result = subprocess.run(command, cwd=PROJECT_ROOT, check=False)
    print(f"Duration: {time.time() - start_time:.2f}s, exit code {result.returncode}")

    return result.returncode


def main():
    parser = argparse.ArgumentParser(description="PTCG inventory API test runner")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--unit", action="store_true", help="Run unit tests")
    group.add_argument("--integration", action="store_true", help="Run integration tests")
    group.add_argument("--test", metavar="PATH", help="Run a specific test file or node id")
    parser.add_argument("--coverage", action="store_true", help="Report coverage (needs pytest-cov)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args()

    if args.test:
        target = args.test
    elif args.unit:
        target = SUITES["unit"]
    elif args.integration:
        target = SUITES["integration"]
    else:
        target = SUITES["all"]

    sys.exit(run_pytest(target, verbose=args.verbose, coverage=args.coverage))


if __name__ == "__main__":
    main()
