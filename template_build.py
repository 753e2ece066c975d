#!/usr/bin/env python3
"""
Build script for the AngstromSCD E2B analysis template (Build System 2.0).

Creates a custom sandbox with the packages the medical analysis tools use
pre-installed, so tool runs skip the per-execution pip install:
- pandas, numpy (data analysis)
- matplotlib, seaborn (plots)
- nodejs, r-base, sqlite3 (non-Python languages)

Usage:
    python3 template_build.py [alias]

Then set E2B_TEMPLATE_ID=<alias> and SANDBOX_BACKEND=e2b.
"""

import os
import sys

from dotenv import load_dotenv

TEMPLATE_ALIAS = "angstrom-analysis"

# Exact versions so tool output is reproducible across sandboxes
PIP_PACKAGES = [
    "pandas==2.2.3",
    "numpy==2.1.3",
    "matplotlib==3.9.2",
    "seaborn==0.13.2",
]

APT_PACKAGES = ["nodejs", "r-base", "sqlite3"]


def build_analysis_template():
    """Template definition: python 3.12 base plus analysis packages"""
    from e2b import Template

    return (
        Template()
        .from_image("python:3.12")
        .set_user("root")
        .set_workdir("/")
        .set_envs({
            "PIP_DEFAULT_TIMEOUT": "100",
            "PIP_DISABLE_PIP_VERSION_CHECK": "1",
            "PIP_NO_CACHE_DIR": "1",
            "MPLBACKEND": "Agg",
        })
        .apt_install(APT_PACKAGES)
        .pip_install(PIP_PACKAGES)
        # Uploads land in /home/user/uploads
        .set_user("user")
        .set_workdir("/home/user")
    )


def main(argv=None) -> int:
    load_dotenv()
    argv = sys.argv[1:] if argv is None else argv
    alias = argv[0] if argv else TEMPLATE_ALIAS

    if not os.getenv("E2B_API_KEY"):
        print("E2B_API_KEY not found in environment", file=sys.stderr)
        print("  export E2B_API_KEY=e2b_your_key_here", file=sys.stderr)
        return 1

    from e2b import Template, default_build_logger

    print(f"Building template '{alias}'...")
    print("Packages to install:")
    for package in PIP_PACKAGES + APT_PACKAGES:
        print(f"  - {package}")

    Template.build(
        build_analysis_template(),
        alias=alias,
        cpu_count=2,
        memory_mb=2048,
        on_build_logs=default_build_logger(),
    )

    print(f"\nTemplate built. Use it with:\n  E2B_TEMPLATE_ID={alias}\n  SANDBOX_BACKEND=e2b")
    return 0


if __name__ == "__main__":
    sys.exit(main())
