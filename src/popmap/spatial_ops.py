"""
Filter expressions and spatial queries for the map's feature layer.

This module builds the definition expression that restricts the feature
layer to a population range, evaluates such expressions against local
GeoDataFrames, and answers hit tests against rendered features.
"""

import operator
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence

import geopandas as gpd
import numpy as np
from shapely.geometry import Point


WGS84 = "EPSG:4326"
WEB_MERCATOR = "EPSG:3857"

POPULATION_MIN = 0
POPULATION_MAX = 300000


class InvalidRangeError(ValueError):
    """Raised when a population range is malformed or out of bounds."""


@dataclass(frozen=True)
class PopulationRange:
    """An ordered pair of integers bounding the population filter.

    Attributes:
        minimum: Lower bound (inclusive)
        maximum: Upper bound (inclusive)
    """
    minimum: int = POPULATION_MIN
    maximum: int = POPULATION_MAX

    @classmethod
    def from_value(
        cls,
        value: Sequence,
        lower: int = POPULATION_MIN,
        upper: int = POPULATION_MAX
    ) -> "PopulationRange":
        """Validate a slider value and build a range from it.

        Args:
            value: Two-element sequence ``[min, max]``
            lower: Smallest accepted bound
            upper: Largest accepted bound

        Returns:
            Validated PopulationRange

        Raises:
            InvalidRangeError: If the value is not a valid range
        """
        if isinstance(value, (str, bytes)) or len(value) != 2:
            raise InvalidRangeError(f"Expected [min, max], got {value!r}")

        bounds = []
        for bound in value:
            if isinstance(bound, bool):
                raise InvalidRangeError(f"Range bounds must be integers, got {value!r}")
            if isinstance(bound, float) and bound.is_integer():
                bound = int(bound)
            if not isinstance(bound, (int, np.integer)):
                raise InvalidRangeError(f"Range bounds must be integers, got {value!r}")
            bounds.append(int(bound))

        minimum, maximum = bounds
        if minimum > maximum:
            raise InvalidRangeError(f"Range minimum {minimum} exceeds maximum {maximum}")
        if minimum < lower or maximum > upper:
            raise InvalidRangeError(
                f"Range {minimum}-{maximum} outside allowed bounds [{lower}, {upper}]"
            )
        return cls(minimum, maximum)

    def as_list(self) -> List[int]:
        return [self.minimum, self.maximum]


def build_definition_expression(field: str, population_range: PopulationRange) -> str:
    """Build the filter expression for a population range.

    Example:
        >>> build_definition_expression("POP2000", PopulationRange(50000, 120000))
        'POP2000 >= 50000 AND POP2000 <= 120000'
    """
    return (
        f"{field} >= {population_range.minimum} "
        f"AND {field} <= {population_range.maximum}"
    )


_OPERATORS: Dict[str, Callable] = {
    ">=": operator.ge,
    "<=": operator.le,
    "<>": operator.ne,
    "!=": operator.ne,
    "=": operator.eq,
    ">": operator.gt,
    "<": operator.lt,
}

_COMPARISON = re.compile(
    r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*(>=|<=|<>|!=|=|>|<)\s*(-?\d+(?:\.\d+)?)\s*$"
)
_TAUTOLOGY = re.compile(r"^\s*1\s*=\s*1\s*$")
_AND = re.compile(r"\s+AND\s+", re.IGNORECASE)


@dataclass(frozen=True)
class Comparison:
    """One ``field op number`` clause of a definition expression."""
    field: str
    op: str
    value: float


def parse_definition_expression(expression: str) -> List[Comparison]:
    """Parse a conjunction of numeric comparisons.

    Only ``AND``-joined clauses of the form ``FIELD OP NUMBER`` are
    supported, plus the ``1=1`` tautology.

    Raises:
        ValueError: If the expression uses unsupported syntax
    """
    clauses = []
    for part in _AND.split(expression.strip()):
        if _TAUTOLOGY.match(part):
            continue
        match = _COMPARISON.match(part)
        if match is None:
            raise ValueError(f"Unsupported clause in definition expression: {part!r}")
        name, op, number = match.groups()
        clauses.append(Comparison(name, op, float(number)))
    return clauses


def apply_definition_expression(
    data: gpd.GeoDataFrame,
    expression: str
) -> gpd.GeoDataFrame:
    """Filter a GeoDataFrame with a definition expression.

    Field names are matched case-insensitively, as feature services do.

    Raises:
        KeyError: If a referenced field is missing
        ValueError: If the expression cannot be parsed
    """
    columns = {str(c).lower(): c for c in data.columns}
    mask = np.ones(len(data), dtype=bool)
    for clause in parse_definition_expression(expression):
        column = columns.get(clause.field.lower())
        if column is None:
            raise KeyError(f"Field '{clause.field}' not found in {list(data.columns)}")
        values = data[column].to_numpy(dtype=float, na_value=np.nan)
        with np.errstate(invalid="ignore"):
            mask &= _OPERATORS[clause.op](values, clause.value)
    return data[mask]


def meters_per_pixel(scale: float, dpi: int = 96) -> float:
    """Ground resolution of a map at a given scale denominator."""
    return scale * 0.0254 / dpi


def hit_test_features(
    features: gpd.GeoDataFrame,
    latitude: float,
    longitude: float,
    tolerance: float
) -> gpd.GeoDataFrame:
    """Find the features within a tolerance of a map point.

    Args:
        features: Features as rendered on the map
        latitude: Latitude of the pointer
        longitude: Longitude of the pointer
        tolerance: Search radius in Web Mercator meters

    Returns:
        Matching features, nearest first
    """
    if features.empty:
        return features

    if features.crs is None:
        features = features.set_crs(WGS84)
    projected = features.to_crs(WEB_MERCATOR)

    target = gpd.GeoSeries([Point(longitude, latitude)], crs=WGS84).to_crs(WEB_MERCATOR).iloc[0]
    positions = projected.sindex.query(target.buffer(tolerance), predicate="intersects")
    if len(positions) == 0:
        return features.iloc[0:0]

    distances = projected.geometry.iloc[positions].distance(target).to_numpy()
    order = positions[np.argsort(distances, kind="stable")]
    return features.iloc[order]
