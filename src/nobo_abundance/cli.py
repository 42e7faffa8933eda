"""
Command Line Interface
======================

Runs one pathway end to end.

Usage:
    nobo-abundance acoustic --config config.yaml
    nobo-abundance point-count --prepare-only
    nobo-abundance point-count --workdir ./jags_runs

Exit codes:
    0   run finished (a provisional summary still exits 0)
    1   input, sampler or output error
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from nobo_abundance.config import load_config, setup_logging
from nobo_abundance.errors import NoboAbundanceError
from nobo_abundance.inference.jags import JagsEngine
from nobo_abundance.workflows import acoustic, point_count


logger = logging.getLogger(__name__)

PATHWAYS = {
    "acoustic": acoustic,
    "point-count": point_count,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nobo-abundance",
        description="Bobwhite abundance estimation from acoustic or point-count data",
    )
    parser.add_argument(
        "pathway",
        choices=sorted(PATHWAYS),
        help="Data source to model",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config.yaml (default: search working directory)",
    )
    parser.add_argument(
        "--prepare-only",
        action="store_true",
        help="Build and validate the model data, print its dimensions, and stop",
    )
    parser.add_argument(
        "--workdir",
        type=str,
        default=None,
        help="Keep JAGS chain directories here instead of a temporary directory",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    workflow = PATHWAYS[args.pathway]

    try:
        settings = load_config(args.config)
        setup_logging(settings)

        prepared = workflow.prepare(settings)
        if args.prepare_only:
            print(json.dumps(prepared.bundle.describe(), indent=2, default=str))
            return 0

        engine = JagsEngine.from_settings(
            settings,
            workdir=Path(args.workdir) if args.workdir else None,
        )
        outcome = workflow.run(settings, engine, prepared=prepared)
    except (NoboAbundanceError, ValidationError, FileNotFoundError, FileExistsError) as e:
        logger.error(f"{args.pathway} run failed: {e}")
        return 1

    status = "provisional" if outcome.provisional else "converged"
    logger.info(f"{args.pathway} run finished ({status}); artifacts in {settings.run.output_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
