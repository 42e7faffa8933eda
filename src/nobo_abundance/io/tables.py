"""
Table Loading
=============

Reads input CSV files with pandas and checks them against their schemas.

Checks on load:
    - every required declared column is present
    - undeclared columns are rejected unless the schema allows extras
      (allowed extras are dropped)
    - identifier columns hold integers
    - continuous columns hold numbers (blank / NA cells are fine)

A leading unnamed column (the row-name column written by R's write.csv) is
dropped before the header is checked.
"""

import logging
from pathlib import Path
from typing import Dict, List, Mapping

import numpy as np
import pandas as pd

from nobo_abundance.config import AcousticConfig, PointCountConfig
from nobo_abundance.errors import SchemaError
from nobo_abundance.models.schema import (
    ColumnSpec,
    ScalingPolicy,
    SemanticType,
    TableSchema,
)


logger = logging.getLogger(__name__)

DOY_COLUMN = "DOY"


def _drop_row_names(df: pd.DataFrame) -> pd.DataFrame:
    if len(df.columns) and str(df.columns[0]).startswith("Unnamed: 0"):
        return df.drop(columns=df.columns[0])
    return df


def check_types(df: pd.DataFrame, schema: TableSchema) -> None:
    """
    Raises:
        SchemaError: If an identifier or continuous column holds bad values
    """
    for spec in schema.columns:
        if spec.name not in df.columns:
            continue
        column = df[spec.name]
        if spec.kind == SemanticType.IDENTIFIER:
            numeric = pd.to_numeric(column, errors="coerce")
            bad = column.notna() & (numeric.isna() | (numeric % 1 != 0))
            if bad.any():
                raise SchemaError(
                    f"{schema.name}: {spec.name} must hold integers, "
                    f"got {column[bad].iloc[0]!r} at row {int(np.flatnonzero(bad)[0]) + 1}"
                )
        elif spec.kind == SemanticType.CONTINUOUS:
            numeric = pd.to_numeric(column, errors="coerce")
            blank = column.isna() | column.astype(str).str.strip().isin(["", "NA"])
            bad = numeric.isna() & ~blank
            if bad.any():
                raise SchemaError(
                    f"{schema.name}: {spec.name} must be numeric, got {column[bad].iloc[0]!r}"
                )


def load_table(path: str, schema: TableSchema) -> pd.DataFrame:
    """
    Load a CSV and validate it against a schema.

    Returns:
        DataFrame with only the declared columns that are present

    Raises:
        FileNotFoundError: If the file does not exist
        SchemaError: If the header or column types disagree with the schema
    """
    if not Path(path).exists():
        raise FileNotFoundError(f"Input table not found: {path}")

    df = _drop_row_names(pd.read_csv(path))
    extra = schema.validate_columns([str(c) for c in df.columns])
    if extra:
        logger.info(f"{schema.name}: ignoring undeclared columns {extra}")
        df = df.drop(columns=extra)
    check_types(df, schema)

    logger.info(f"Loaded {schema.name} from {path}: {len(df)} rows")
    return df


def load_validation_matrix(path: str, n_occasions: int, label: str) -> Dict[int, List[float]]:
    """
    Load a wide validated-calls table.

    The first column is the site number; the remaining columns are the
    occasions in calendar order. Blank cells are read as NaN.

    Returns:
        site number -> one value per occasion

    Raises:
        SchemaError: On a wrong number of occasion columns or bad site numbers
    """
    if not Path(path).exists():
        raise FileNotFoundError(f"Validation table not found: {path}")

    df = pd.read_csv(path)
    if df.shape[1] != n_occasions + 1:
        raise SchemaError(
            f"{label}: expected a site column plus {n_occasions} occasion columns, "
            f"got {df.shape[1]} columns"
        )
    site_column = df.columns[0]
    schema = TableSchema(
        name=label,
        columns=[ColumnSpec(name=str(site_column), kind=SemanticType.IDENTIFIER)],
        allow_extra=True,
    )
    check_types(df, schema)
    if df[site_column].isna().any():
        raise SchemaError(f"{label}: blank site number")
    if df[site_column].duplicated().any():
        raise SchemaError(f"{label}: duplicated site numbers")

    values = df.iloc[:, 1:].apply(pd.to_numeric, errors="coerce")
    rows = {
        int(site): values.iloc[i].to_numpy(dtype=float).tolist()
        for i, site in enumerate(df[site_column])
    }
    logger.info(f"Loaded {label} from {path}: {len(rows)} validated sites")
    return rows


def add_day_of_year(df: pd.DataFrame, date_column: str, date_format: str) -> pd.DataFrame:
    """Copy of df with a DOY column derived from the survey date (NaN if unparseable)."""
    out = df.copy()
    parsed = pd.to_datetime(out[date_column], format=date_format, errors="coerce")
    out[DOY_COLUMN] = parsed.dt.dayofyear.astype(float)
    return out


def broadcast_to_sites(df: pd.DataFrame, site_column: str, n_sites: int) -> pd.DataFrame:
    """
    Repeat site-less rows for every site 1..n_sites.

    Tables that already carry the site column are returned unchanged.
    """
    if site_column in df.columns:
        return df
    sites = pd.DataFrame({site_column: np.arange(1, n_sites + 1)})
    out = df.merge(sites, how="cross")
    logger.info(f"Broadcast {len(df)} rows without {site_column} to {n_sites} sites")
    return out


def records(df: pd.DataFrame) -> List[Mapping[str, object]]:
    """Rows as plain dicts for the record normalizer."""
    return df.to_dict("records")


# =============================================================================
# Schemas built from configuration
# =============================================================================

def acoustic_detection_schema(cfg: AcousticConfig) -> TableSchema:
    # BirdNET exports carry a variable set of metadata columns.
    return TableSchema(
        name="birdnet_detections",
        columns=[
            ColumnSpec(name=cfg.site_column, kind=SemanticType.IDENTIFIER),
            ColumnSpec(name=cfg.date_column, kind=SemanticType.DATE),
        ],
        allow_extra=True,
    )


def acoustic_weather_schema(cfg: AcousticConfig) -> TableSchema:
    columns = [
        ColumnSpec(name=cfg.date_column, kind=SemanticType.DATE),
        ColumnSpec(name=cfg.site_column, kind=SemanticType.IDENTIFIER, required=False),
    ]
    columns += list(cfg.weather_covariates)
    columns.append(ColumnSpec(name="Sky_Condition", kind=SemanticType.METADATA, required=False))
    return TableSchema(name="aru_weather", columns=columns, allow_extra=not cfg.strict_columns)


def point_count_schema(cfg: PointCountConfig) -> TableSchema:
    columns = [
        ColumnSpec(name=cfg.site_column, kind=SemanticType.IDENTIFIER),
        ColumnSpec(name=cfg.survey_column, kind=SemanticType.IDENTIFIER),
        ColumnSpec(name=cfg.date_column, kind=SemanticType.DATE),
        # Surveys without a bird have no distance bin.
        ColumnSpec(name=cfg.distance_column, kind=SemanticType.METADATA),
    ]
    columns += list(cfg.survey_covariates)
    return TableSchema(name="point_counts", columns=columns, allow_extra=not cfg.strict_columns)


def doy_column_spec() -> ColumnSpec:
    return ColumnSpec(name=DOY_COLUMN, kind=SemanticType.CONTINUOUS, scaling=ScalingPolicy.ZSCORE)
