"""
Output Artifacts
================

Write-once CSV tables and a JSON run report per model label.

Files are opened in exclusive-create mode, so an existing artifact is never
overwritten or appended to. A run checks every target up front and refuses
to start writing if any of them exists.

Layout:
    <output_dir>/<model_slug>_parameters.csv
    <output_dir>/<model_slug>_betas.csv
    <output_dir>/<model_slug>_density.csv
    <output_dir>/<model_slug>_effect_<covariate>.csv
    <output_dir>/<model_slug>_interaction.csv
    <output_dir>/<model_slug>_report.json
"""

import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Mapping

import numpy as np
import pandas as pd


logger = logging.getLogger(__name__)


def slugify(label: str) -> str:
    """'AV Bnet' -> 'AV_Bnet', 'Temp.deg.F' -> 'Temp_deg_F'."""
    return re.sub(r"[^A-Za-z0-9]+", "_", label).strip("_")


def _json_default(value: object) -> object:
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return None if np.isnan(value) else float(value)
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


class ArtifactWriter:
    """
    Writes one model's artifacts into an output directory.

    Attributes:
        output_dir: Destination directory (created if needed)
        model_name: Model label used as file prefix

    Example:
        writer = ArtifactWriter("./output", "PC HDS")
        paths = writer.write_all({"parameters": table}, report)
    """

    def __init__(self, output_dir: str, model_name: str) -> None:
        self.output_dir = Path(output_dir)
        self.model_name = model_name
        self.prefix = slugify(model_name)

    def path_for(self, name: str, suffix: str = ".csv") -> Path:
        return self.output_dir / f"{self.prefix}_{slugify(name)}{suffix}"

    def check_available(self, names: List[str], suffix: str = ".csv") -> None:
        """
        Raises:
            FileExistsError: If any target artifact already exists
        """
        existing = [str(p) for p in (self.path_for(n, suffix) for n in names) if p.exists()]
        if existing:
            raise FileExistsError(f"Refusing to overwrite existing artifacts: {existing}")

    def write_table(self, name: str, table: pd.DataFrame) -> Path:
        """Write one CSV table; fails if the file exists."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(name)
        with open(path, "x", newline="") as f:
            table.to_csv(f, index=False)
        logger.info(f"Wrote {path} ({len(table)} rows)")
        return path

    def write_report(self, report: Mapping[str, object]) -> Path:
        """Write the JSON run report; fails if the file exists."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for("report", ".json")
        with open(path, "x") as f:
            json.dump(report, f, indent=2, default=_json_default)
        logger.info(f"Wrote {path}")
        return path

    def write_all(self, tables: Mapping[str, pd.DataFrame], report: Mapping[str, object]) -> Dict[str, Path]:
        """Write every table plus the report, after checking none exists."""
        self.check_available(list(tables))
        self.check_available(["report"], ".json")
        paths = {name: self.write_table(name, table) for name, table in tables.items()}
        paths["report"] = self.write_report(report)
        return paths


def write_model_text(model_dir: str, filename: str, text: str) -> Path:
    """
    Save a rendered model text.

    An existing file with identical content is left alone; a different one
    is never replaced.

    Raises:
        FileExistsError: If a different model text already has this name
    """
    directory = Path(model_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / filename
    if path.exists():
        if path.read_text() == text:
            logger.info(f"Model text unchanged: {path}")
            return path
        raise FileExistsError(f"A different model text already exists at {path}")
    with open(path, "x") as f:
        f.write(text)
    logger.info(f"Wrote model text {path}")
    return path
