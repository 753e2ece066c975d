"""
Demo command line - run a medical analysis tool through the code executor

Usage:
    angstrom-demo [voe-risk|lab-trends] [--data JSON | --data-file FILE]

Examples:
    # VOE risk analysis with the built-in sample patient
    angstrom-demo voe-risk

    # Lab trends for your own records
    angstrom-demo lab-trends --data-file labs.json

Uses E2B_API_KEY / SANDBOX_BACKEND from the environment (or .env). Without
E2B_API_KEY the run reports a failed result.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, List, Optional

from .core.backends import get_backend
from .core.config import Settings
from .core.exceptions import AngstromException
from .core.executor import CodeExecutorService
from .core.logging_config import setup_logging

logger = logging.getLogger(__name__)

# CLI alias -> registry key
DEMO_TOOLS = {
    "voe-risk": "voe_risk_analysis",
    "lab-trends": "lab_trend_analysis",
}

SAMPLE_DATA = {
    "voe-risk": {"age": 12, "hbf_level": 3.2, "hemoglobin": 6.8},
    "lab-trends": [
        {"test_date": "2025-01-10", "hemoglobin": 7.9, "hbf_level": 8.1, "lactate_dehydrogenase": 310},
        {"test_date": "2025-03-14", "hemoglobin": 7.4, "hbf_level": 9.0, "lactate_dehydrogenase": 295},
        {"test_date": "2025-05-20", "hemoglobin": 8.2, "hbf_level": 10.4, "lactate_dehydrogenase": 270},
    ],
}


def load_data(args: argparse.Namespace) -> Any:
    """Input data from --data, --data-file, or the tool's sample"""
    if args.data is not None:
        return json.loads(args.data)
    if args.data_file is not None:
        with open(args.data_file, "r") as f:
            return json.load(f)
    return SAMPLE_DATA[args.tool]


async def run_demo(tool_alias: str, data: Any, settings: Settings) -> int:
    """
    Run one tool and print the result as JSON.

    Returns:
        Process exit code (0 when the execution completed)
    """
    executor = CodeExecutorService(settings=settings, backend=get_backend(settings))
    tool = executor.tools.lookup(DEMO_TOOLS[tool_alias])

    print(f"Running {tool.tool_name} ({executor.backend.name} backend)...", file=sys.stderr)
    try:
        result = await executor.execute_medical_analysis(tool, data)
    finally:
        await executor.cleanup()

    print(result.model_dump_json(indent=2))
    return 0 if result.status == "completed" else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="angstrom-demo",
        description="Run an AngstromSCD medical analysis tool in the code sandbox",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "tool",
        nargs="?",
        choices=sorted(DEMO_TOOLS),
        default="voe-risk",
        help="Analysis tool to run (default: voe-risk)"
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--data", help="Input data as a JSON string", default=None)
    source.add_argument("--data-file", help="Load input data from a JSON file", default=None)
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level)

    try:
        data = load_data(args)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Could not load input data: {e}", file=sys.stderr)
        return 2

    try:
        return asyncio.run(run_demo(args.tool, data, Settings.from_env()))
    except AngstromException as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
