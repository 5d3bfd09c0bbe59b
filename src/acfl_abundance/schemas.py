"""
Schema validation for survey tables and canonical outputs.

Raw survey records are validated on read and every tabular output is
validated before it is written. Schema drift is a hard failure.
"""

from dataclasses import dataclass

import pandas as pd


class SchemaValidationError(Exception):
    """Raised when data does not conform to expected schema."""
    pass


@dataclass
class ColumnSpec:
    """Expected dtype and constraints for a single column."""
    name: str
    dtype: str  # "int64", "float64", "object", or "any"
    required: bool = True
    nullable: bool = False
    description: str = ""


@dataclass
class TableSchema:
    """Schema definition for a table."""
    name: str
    description: str
    columns: list[ColumnSpec]

    def required_columns(self) -> list[str]:
        """Get list of required column names."""
        return [c.name for c in self.columns if c.required]

    def all_columns(self) -> list[str]:
        """Get list of all column names."""
        return [c.name for c in self.columns]


# =============================================================================
# Schema definitions
# =============================================================================

OCCASION_COLUMNS = [
    ColumnSpec("TransectName", "any", description="Transect identifier"),
    ColumnSpec("Point", "any", description="Point identifier within transect"),
    ColumnSpec("Year", "int64", description="Survey year"),
    ColumnSpec("DOY", "int64", description="Day of year of the survey"),
    ColumnSpec("Habitat", "object", description="Habitat category of the point"),
]

SCHEMA_SURVEY_RECORDS = TableSchema(
    name="survey_records",
    description="Raw ACFL point-count records, one row per distance/time bin",
    columns=OCCASION_COLUMNS + [
        ColumnSpec("DistanceBin", "object", description="Distance bin label (L25 / G25)"),
        ColumnSpec("TimeBin", "any", description="Cumulative minute label (3 / 5 / 10)"),
        ColumnSpec("Count", "float64", nullable=True,
                   description="Birds detected; missing means zero"),
    ]
)

SCHEMA_DISTANCE_SUMMARY = TableSchema(
    name="distance_summary",
    description="Counts per survey occasion and distance bin",
    columns=OCCASION_COLUMNS + [
        ColumnSpec("dist25", "int64", description="Detections within 25 m"),
        ColumnSpec("dist50", "int64", description="Detections 25-50 m"),
    ]
)

SCHEMA_REMOVAL_SUMMARY = TableSchema(
    name="removal_summary",
    description="Counts per survey occasion and removal period",
    columns=OCCASION_COLUMNS + [
        ColumnSpec("per3", "int64", description="First detections in minutes 0-3"),
        ColumnSpec("per5", "int64", description="First detections in minutes 3-5"),
        ColumnSpec("per10", "int64", description="First detections in minutes 5-10"),
    ]
)

SCHEMA_MODEL_SELECTION = TableSchema(
    name="model_selection",
    description="AIC model selection table",
    columns=[
        ColumnSpec("model", "object"),
        ColumnSpec("n_params", "int64"),
        ColumnSpec("aic", "float64"),
        ColumnSpec("delta", "float64"),
        ColumnSpec("weight", "float64"),
        ColumnSpec("cum_weight", "float64"),
    ]
)

SCHEMA_COEFFICIENTS = TableSchema(
    name="coefficients",
    description="Coefficient estimates of fitted models",
    columns=[
        ColumnSpec("model", "object", required=False),
        ColumnSpec("submodel", "object"),
        ColumnSpec("term", "object"),
        ColumnSpec("estimate", "float64"),
        ColumnSpec("se", "float64", nullable=True),
        ColumnSpec("z", "float64", nullable=True),
        ColumnSpec("p_value", "float64", nullable=True),
    ]
)

SCHEMA_PREDICTIONS = TableSchema(
    name="predictions",
    description="Natural-scale predictions with confidence limits",
    columns=[
        ColumnSpec("Predicted", "float64"),
        ColumnSpec("SE", "float64", nullable=True),
        ColumnSpec("lower", "float64", nullable=True),
        ColumnSpec("upper", "float64", nullable=True),
    ]
)

SCHEMA_POWER = TableSchema(
    name="power_analysis",
    description="Simulation-based power per coefficient",
    columns=[
        ColumnSpec("submodel", "object"),
        ColumnSpec("term", "object"),
        ColumnSpec("effect", "float64"),
        ColumnSpec("power", "float64"),
    ]
)

SCHEMA_CITATIONS = TableSchema(
    name="citation_history",
    description="Citations per year of a Google Scholar publication",
    columns=[
        ColumnSpec("year", "int64"),
        ColumnSpec("cites", "int64"),
    ]
)

SCHEMA_REGISTRY: dict[str, TableSchema] = {
    schema.name: schema for schema in [
        SCHEMA_SURVEY_RECORDS,
        SCHEMA_DISTANCE_SUMMARY,
        SCHEMA_REMOVAL_SUMMARY,
        SCHEMA_MODEL_SELECTION,
        SCHEMA_COEFFICIENTS,
        SCHEMA_PREDICTIONS,
        SCHEMA_POWER,
        SCHEMA_CITATIONS,
    ]
}


# =============================================================================
# Validation functions
# =============================================================================

_COMPATIBLE_DTYPES = {
    "object": ("object", "string", "str", "category"),
    "int64": ("int64", "int32", "int16", "int8", "Int64", "Int32"),
    "float64": ("float64", "float32", "Float64", "int64", "int32", "Int64"),
}


def validate_schema(
    df: pd.DataFrame,
    schema: TableSchema | str,
    strict: bool = False,
) -> list[str]:
    """
    Validate a DataFrame against a schema.

    Args:
        df: DataFrame to validate.
        schema: TableSchema object or schema name from registry.
        strict: If True, fail on extra columns not in schema.

    Returns:
        Empty list when the table is valid.

    Raises:
        SchemaValidationError: If validation fails.
    """
    if isinstance(schema, str):
        schema = get_schema(schema)

    errors = []

    for col in schema.columns:
        if col.required and col.name not in df.columns:
            errors.append(f"Missing required column: {col.name}")

    if strict:
        extra_cols = set(df.columns) - set(schema.all_columns())
        if extra_cols:
            errors.append(f"Unexpected columns: {sorted(extra_cols)}")

    for col in schema.columns:
        if col.name not in df.columns:
            continue

        series = df[col.name]

        if not col.nullable and series.isna().any():
            null_count = series.isna().sum()
            errors.append(f"Column '{col.name}' has {null_count} null values but is not nullable")

        if col.dtype == "any":
            continue

        actual_dtype = str(series.dtype)
        if actual_dtype not in _COMPATIBLE_DTYPES.get(col.dtype, (col.dtype,)):
            errors.append(f"Column '{col.name}' has dtype '{actual_dtype}', expected '{col.dtype}'")

    if errors:
        error_msg = f"Schema validation failed for '{schema.name}':\n" + "\n".join(f"  - {e}" for e in errors)
        raise SchemaValidationError(error_msg)

    return errors


def get_schema(name: str) -> TableSchema:
    """
    Get a schema by name from the registry.

    Raises:
        ValueError: If schema not found.
    """
    if name not in SCHEMA_REGISTRY:
        raise ValueError(f"Unknown schema: {name}. Available: {list(SCHEMA_REGISTRY.keys())}")
    return SCHEMA_REGISTRY[name]
