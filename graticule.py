"""
Graticule Builder

A single-file Python tool that lays a regular tessellation of rectangles,
triangles or hexagons over a polygonal study area, rotates the lattice about
the study area's centroid and keeps only the cells that overlap the area.
Geometry primitives are delegated to shapely; optional PNG previews are drawn
with Pillow.

Usage:
    python graticule.py --wkt area.wkt --cell_width 5 --cell_height 5
    python graticule.py --wkt area.wkt --shape hexagon --radius 1 --angle 30 --debug
    python graticule.py --wkt area.wkt --format tagged --output grid.txt --image grid.png
    python graticule.py --interactive
"""

import argparse
import enum
import json
import math
import numbers
import os
import re
import sys
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

import shapely
from PIL import Image, ImageColor, ImageDraw
from shapely import affinity, wkt
from shapely.errors import ShapelyError
from shapely.geometry import GeometryCollection, Polygon, box
from shapely.geometry.base import BaseGeometry
from shapely.prepared import prep


Point2D = Tuple[float, float]
Ring = List[Point2D]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class GraticuleError(Exception):
    """Base class for every error raised by the graticule core."""


class InvalidInputError(GraticuleError, ValueError):
    """A build parameter is missing, out of range or of the wrong kind."""


class DegenerateGeometryError(GraticuleError, ValueError):
    """The study area cannot be enclosed by a circle of non-zero radius."""


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------
class ShapeKind(enum.Enum):
    """The cell shape a lattice is built from."""

    RECTANGLE = "rectangle"
    TRIANGLE = "triangle"
    HEXAGON = "hexagon"

    @classmethod
    def parse(cls, value: object) -> "ShapeKind":
        """Resolve a shape name (or an existing ShapeKind) to a ShapeKind.

        Args:
            value: A ShapeKind or one of 'rectangle', 'triangle', 'hexagon'.
                Case and surrounding whitespace are ignored.

        Returns:
            The matching ShapeKind.

        Raises:
            InvalidInputError: If the value names no known shape.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        names = ", ".join(kind.value for kind in cls)
        raise InvalidInputError(f"Unrecognised shape kind {value!r}; expected one of: {names}")


class Cell(NamedTuple):
    """One tessellation unit: a closed polygon tagged with its lattice indices.

    Attributes:
        col: 1-based lattice column index.
        row: 1-based lattice row index.
        polygon: The cell geometry.
    """

    col: int
    row: int
    polygon: Polygon

    @property
    def tag(self) -> str:
        """Return the '<col> - <row>' label of the cell."""
        return f"{self.col} - {self.row}"

    @property
    def vertices(self) -> Ring:
        """Return the closed vertex ring (first vertex repeated as last)."""
        return [(float(x), float(y)) for x, y in self.polygon.exterior.coords]

    def with_polygon(self, polygon: Polygon) -> "Cell":
        """Return a copy of this cell carrying a different geometry."""
        return self._replace(polygon=polygon)


class BoundingArea(NamedTuple):
    """Square envelope of the study area's minimum enclosing circle.

    Attributes:
        center: Centre of the enclosing circle.
        radius: Radius R of the enclosing circle.
        boundary: The square's four corners as a closed ring.
    """

    center: Point2D
    radius: float
    boundary: Ring


class BuildStage(enum.Enum):
    """Linear stages a GraticuleBuilder passes through."""

    INIT = "init"
    BOUNDING_AREA_COMPUTED = "bounding_area_computed"
    ORIGIN_COMPUTED = "origin_computed"
    LATTICE_GENERATED = "lattice_generated"
    ROTATED = "rotated"
    FILTERED = "filtered"
    DONE = "done"


# ---------------------------------------------------------------------------
# GeometryEngine
# ---------------------------------------------------------------------------
class GeometryEngine:
    """Primitive geometry operations backed by shapely.

    The lattice pipeline reaches shapely only through this adapter. Errors
    raised by shapely propagate unchanged.
    """

    def minimum_enclosing_circle(self, geometry: BaseGeometry) -> BoundingArea:
        """Compute the minimum enclosing circle and its square envelope.

        Args:
            geometry: The geometry to enclose.

        Returns:
            A BoundingArea with the circle's centre, radius and square boundary.

        Raises:
            DegenerateGeometryError: If the geometry is empty or its enclosing
                circle has no extent.
        """
        if geometry.is_empty:
            raise DegenerateGeometryError("Cannot enclose an empty geometry")
        radius = float(shapely.minimum_bounding_radius(geometry))
        if not math.isfinite(radius) or radius <= 0.0:
            raise DegenerateGeometryError(
                f"Minimum enclosing circle has no extent (radius {radius})"
            )
        min_x, min_y, max_x, max_y = shapely.minimum_bounding_circle(geometry).bounds
        cx = (min_x + max_x) / 2.0
        cy = (min_y + max_y) / 2.0
        square = box(cx - radius, cy - radius, cx + radius, cy + radius)
        boundary = [(float(x), float(y)) for x, y in square.exterior.coords]
        return BoundingArea(center=(cx, cy), radius=radius, boundary=boundary)

    def centroid(self, geometry: BaseGeometry) -> Point2D:
        """Return the centroid of a geometry as an (x, y) tuple."""
        c = geometry.centroid
        return (c.x, c.y)

    def intersects(self, a, b: BaseGeometry) -> bool:
        """Return True when the geometries share at least one point.

        ``a`` may be a plain or a prepared geometry.
        """
        return bool(a.intersects(b))

    def prepare(self, geometry: BaseGeometry):
        """Return a prepared geometry for repeated predicate evaluation."""
        return prep(geometry)

    def rotate(
        self,
        geometries: Sequence[BaseGeometry],
        angle_radians: float,
        pivot_x: float,
        pivot_y: float,
    ) -> List[BaseGeometry]:
        """Rotate every geometry counter-clockwise about a pivot point.

        Args:
            geometries: Geometries to rotate; order is preserved.
            angle_radians: Rotation angle in radians.
            pivot_x: X coordinate of the pivot.
            pivot_y: Y coordinate of the pivot.

        Returns:
            A new list of rotated geometries.
        """
        return [
            affinity.rotate(g, angle_radians, origin=(pivot_x, pivot_y), use_radians=True)
            for g in geometries
        ]

    def polygon(self, vertices: Sequence[Point2D]) -> Polygon:
        """Build a polygon from a vertex ring."""
        return Polygon(vertices)


# ---------------------------------------------------------------------------
# Cell shapes
# ---------------------------------------------------------------------------
# Each function takes a cell envelope and returns a closed vertex ring.

def rectangle_ring(min_x: float, min_y: float, max_x: float, max_y: float) -> Ring:
    """Axis-aligned rectangle filling the envelope, starting at its lower-left corner."""
    return [
        (min_x, min_y),
        (max_x, min_y),
        (max_x, max_y),
        (min_x, max_y),
        (min_x, min_y),
    ]


def triangle_ring(min_x: float, min_y: float, max_x: float, max_y: float) -> Ring:
    """Upward triangle: flat base along the bottom, apex centred on the top edge."""
    width = max_x - min_x
    return [
        (min_x, min_y),
        (max_x, min_y),
        (max_x - width / 2.0, max_y),
        (min_x, min_y),
    ]


def inverted_triangle_ring(min_x: float, min_y: float, max_x: float, max_y: float) -> Ring:
    """Downward triangle: flat edge along the top, apex centred on the bottom edge."""
    width = max_x - min_x
    return [
        (min_x, max_y),
        (min_x + width / 2.0, min_y),
        (max_x, max_y),
        (min_x, max_y),
    ]


def hexagon_ring(
    min_x: float, min_y: float, max_x: float, max_y: float, radius: float
) -> Ring:
    """Flat-top hexagon inscribed in the envelope.

    The top and bottom edges are inset horizontally by ``radius`` on both
    sides, so their length is ``width - 2 * radius``; the left and right tips
    touch the envelope at half height.

    Args:
        min_x: Envelope minimum X.
        min_y: Envelope minimum Y.
        max_x: Envelope maximum X.
        max_y: Envelope maximum Y.
        radius: Horizontal inset of the top and bottom edges.

    Returns:
        Seven (x, y) tuples: six corners counter-clockwise plus the closing vertex.
    """
    mid_y = min_y + (max_y - min_y) / 2.0
    return [
        (min_x + radius, min_y),
        (max_x - radius, min_y),
        (max_x, mid_y),
        (max_x - radius, max_y),
        (min_x + radius, max_y),
        (min_x, mid_y),
        (min_x + radius, min_y),
    ]


# ---------------------------------------------------------------------------
# BoundingAreaCalculator
# ---------------------------------------------------------------------------
class BoundingAreaCalculator:
    """Sizes the oversized square the lattice is laid out over.

    The lattice spans ``DIAMETER_FACTOR * R`` per side, twice the diameter
    of the study area's minimum enclosing circle.
    """

    DIAMETER_FACTOR: float = 4.0

    def __init__(self, engine: GeometryEngine) -> None:
        self._engine = engine

    def compute(
        self, study_area: BaseGeometry, cell_width: float, cell_height: float
    ) -> Tuple[BoundingArea, int, int]:
        """Compute the bounding area and the lattice column/row counts.

        Args:
            study_area: The region of interest.
            cell_width: Cell width (> 0).
            cell_height: Cell height (> 0).

        Returns:
            A tuple of (BoundingArea, num_cols, num_rows) where
            num_cols = floor(4R / cell_width) and num_rows = floor(4R / cell_height).
        """
        area = self._engine.minimum_enclosing_circle(study_area)
        diameter = area.radius * self.DIAMETER_FACTOR
        num_cols = int(math.floor(diameter / cell_width))
        num_rows = int(math.floor(diameter / cell_height))
        return area, num_cols, num_rows


# ---------------------------------------------------------------------------
# OriginLocator
# ---------------------------------------------------------------------------
class OriginLocator:
    """Finds the lower-left anchor of the bounding area."""

    def locate(self, boundary: Iterable[Point2D]) -> Point2D:
        """Return (minimum X, minimum Y) over all boundary vertices.

        Args:
            boundary: The bounding area's vertices.

        Returns:
            The origin point every lattice cell is positioned from.

        Raises:
            DegenerateGeometryError: If the boundary has no vertices.
        """
        min_x = math.inf
        min_y = math.inf
        for x, y in boundary:
            if x < min_x:
                min_x = x
            if y < min_y:
                min_y = y
        if min_x == math.inf or min_y == math.inf:
            raise DegenerateGeometryError("Bounding area has no vertices")
        return (float(min_x), float(min_y))


# ---------------------------------------------------------------------------
# LatticeGenerator
# ---------------------------------------------------------------------------
class LatticeGenerator:
    """Lays out tagged cells over the bounding area, anchored at the origin.

    Rectangles use one cell per (col, row). Triangles and hexagons use twice
    as many columns: odd columns hold the offset cells (inverted triangles,
    half-height-shifted hexagons) and even columns the regular ones.
    """

    def __init__(
        self,
        engine: GeometryEngine,
        origin: Point2D,
        cell_width: float,
        cell_height: float,
    ) -> None:
        self._engine = engine
        self._origin = origin
        self._cell_width = cell_width
        self._cell_height = cell_height

    def generate(
        self, shape: ShapeKind, num_cols: int, num_rows: int, radius: float = 0.0
    ) -> List[Cell]:
        """Generate the lattice for a shape kind.

        Args:
            shape: Which cell shape to lay out.
            num_cols: Number of lattice columns.
            num_rows: Number of lattice rows.
            radius: Hexagon inset; ignored for other shapes.

        Returns:
            The cells in generation order (column-major).
        """
        if shape is ShapeKind.RECTANGLE:
            return self.rectangles(num_cols, num_rows)
        if shape is ShapeKind.TRIANGLE:
            return self.triangles(num_cols, num_rows)
        if shape is ShapeKind.HEXAGON:
            return self.hexagons(num_cols, num_rows, radius)
        raise InvalidInputError(f"Unsupported shape kind: {shape!r}")

    def rectangles(self, num_cols: int, num_rows: int) -> List[Cell]:
        """Generate ``num_cols * num_rows`` axis-aligned rectangles.

        Cell (i, j) has its lower-left corner at
        ``origin + ((i - 1) * cell_width, (j - 1) * cell_height)``.
        """
        ox, oy = self._origin
        w, h = self._cell_width, self._cell_height
        cells: List[Cell] = []
        for i in range(1, num_cols + 1):
            x = ox + (i - 1) * w
            for j in range(1, num_rows + 1):
                y = oy + (j - 1) * h
                cells.append(self._cell(i, j, rectangle_ring(x, y, x + w, y + h)))
        return cells

    def triangles(self, num_cols: int, num_rows: int) -> List[Cell]:
        """Generate ``2 * num_cols * num_rows`` alternating triangles.

        Each up/inverted pair fills one cell_width x cell_height slot; the
        inverted triangle of a pair is shifted half a cell to the left of the
        up triangle that follows it.
        """
        ox, oy = self._origin
        w, h = self._cell_width, self._cell_height
        cells: List[Cell] = []
        x = ox - w
        for i in range(1, 2 * num_cols + 1):
            for j in range(1, num_rows + 1):
                y = oy + (j - 1) * h
                if i % 2 == 0:
                    ring = triangle_ring(x, y, x + w, y + h)
                else:
                    ring = inverted_triangle_ring(x + w / 2.0, y, x + 1.5 * w, y + h)
                cells.append(self._cell(i, j, ring))
            if i % 2 != 0:
                x += w
        return cells

    def hexagons(self, num_cols: int, num_rows: int, radius: float) -> List[Cell]:
        """Generate ``2 * num_cols * num_rows`` hexagons in a honeycomb.

        Odd columns are offset by ``(cell_width - radius, cell_height / 2)``
        so their slanted sides meet the neighbouring even columns; the column
        pitch per odd/even pair is ``cell_width + (cell_width - 2 * radius)``.
        """
        ox, oy = self._origin
        w, h = self._cell_width, self._cell_height
        cells: List[Cell] = []
        x = ox - w
        for i in range(1, 2 * num_cols + 1):
            for j in range(1, num_rows + 1):
                y = oy + (j - 1) * h
                if i % 2 == 0:
                    ring = hexagon_ring(x, y, x + w, y + h, radius)
                else:
                    left = x + (w - radius)
                    bottom = y + h / 2.0
                    ring = hexagon_ring(left, bottom, left + w, bottom + h, radius)
                cells.append(self._cell(i, j, ring))
            if i % 2 != 0:
                x += w + (w - 2 * radius)
        return cells

    def _cell(self, col: int, row: int, ring: Ring) -> Cell:
        return Cell(col=col, row=row, polygon=self._engine.polygon(ring))


# ---------------------------------------------------------------------------
# GridRotator
# ---------------------------------------------------------------------------
class GridRotator:
    """Rotates a lattice about the study area's centroid."""

    def __init__(self, engine: GeometryEngine) -> None:
        self._engine = engine

    def rotate(
        self, cells: Sequence[Cell], study_area: BaseGeometry, angle_degrees: float
    ) -> List[Cell]:
        """Apply a pure rotation to every cell, preserving order and tags.

        Args:
            cells: The lattice to rotate.
            study_area: The region whose centroid is the pivot.
            angle_degrees: Counter-clockwise angle in degrees; any value.

        Returns:
            The rotated cells.
        """
        pivot_x, pivot_y = self._engine.centroid(study_area)
        rotated = self._engine.rotate(
            [cell.polygon for cell in cells], math.radians(angle_degrees), pivot_x, pivot_y
        )
        return [cell.with_polygon(polygon) for cell, polygon in zip(cells, rotated)]


# ---------------------------------------------------------------------------
# GridFilter
# ---------------------------------------------------------------------------
class GridFilter:
    """Keeps the cells that intersect the study area."""

    def __init__(self, engine: GeometryEngine) -> None:
        self._engine = engine

    def filter(self, cells: Sequence[Cell], study_area: BaseGeometry) -> List[Cell]:
        """Return the cells intersecting (or touching) the study area, in order."""
        prepared = self._engine.prepare(study_area)
        return [cell for cell in cells if self._engine.intersects(prepared, cell.polygon)]


# ---------------------------------------------------------------------------
# Parameter validation
# ---------------------------------------------------------------------------
def _require_number(value: object, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise InvalidInputError(f"{name} must be a number, got {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise InvalidInputError(f"{name} must be finite, got {value!r}")
    return number


def _require_positive(value: object, name: str) -> float:
    number = _require_number(value, name)
    if number <= 0:
        raise InvalidInputError(f"{name} must be greater than zero, got {value!r}")
    return number


# ---------------------------------------------------------------------------
# GraticuleBuilder
# ---------------------------------------------------------------------------
class GraticuleBuilder:
    """Builds a rotated, clipped tessellation over a study area.

    Parameters are validated on construction. ``build()`` then runs the
    pipeline exactly once:

        INIT -> BOUNDING_AREA_COMPUTED -> ORIGIN_COMPUTED -> LATTICE_GENERATED
             -> ROTATED -> FILTERED -> DONE

    A new build needs a new builder. Results are exposed as tuples once the
    builder reaches DONE.

    Attributes:
        DEFAULT_MAX_CELLS: Upper bound on the unfiltered cell count.
    """

    DEFAULT_MAX_CELLS: int = 1_000_000

    def __init__(
        self,
        study_area,
        cell_width: float,
        cell_height: float,
        shape="rectangle",
        angle: float = 0,
        radius: float = 0,
        max_cells: int = DEFAULT_MAX_CELLS,
        engine: Optional[GeometryEngine] = None,
    ) -> None:
        """Validate the build parameters.

        Args:
            study_area: A polygonal shapely geometry, or a sequence of (x, y)
                vertices forming a ring.
            cell_width: Cell width, > 0.
            cell_height: Cell height, > 0.
            shape: A ShapeKind or its name.
            angle: Rotation angle in degrees; any finite value.
            radius: Hexagon inset, 0 <= radius < cell_width / 2. Ignored for
                rectangles and triangles.
            max_cells: Largest unfiltered lattice the builder will generate.
            engine: Geometry engine; a shapely-backed one by default.

        Raises:
            InvalidInputError: If a numeric parameter or the shape is invalid.
            DegenerateGeometryError: If the study area has no area.
        """
        self._engine = engine if engine is not None else GeometryEngine()
        self._cell_width = _require_positive(cell_width, "cell_width")
        self._cell_height = _require_positive(cell_height, "cell_height")
        self._shape = ShapeKind.parse(shape)
        self._angle = _require_number(angle, "angle")
        radius = _require_number(radius, "radius")
        self._radius = 0.0
        if self._shape is ShapeKind.HEXAGON:
            self._radius = radius
            if not 0 <= self._radius < self._cell_width / 2.0:
                raise InvalidInputError(
                    f"radius must satisfy 0 <= radius < cell_width / 2 "
                    f"({self._cell_width / 2.0:g}), got {radius!r}"
                )
        if isinstance(max_cells, bool) or not isinstance(max_cells, numbers.Integral) or max_cells <= 0:
            raise InvalidInputError(f"max_cells must be a positive integer, got {max_cells!r}")
        self._max_cells = int(max_cells)
        self._study_area = self._check_study_area(study_area)

        self._stage = BuildStage.INIT
        self._bounding_area: Optional[BoundingArea] = None
        self._origin: Optional[Point2D] = None
        self._num_cols = 0
        self._num_rows = 0
        self._big_grid: Tuple[Cell, ...] = ()
        self._filtered_grid: Tuple[Cell, ...] = ()

    def _check_study_area(self, study_area) -> BaseGeometry:
        if not isinstance(study_area, BaseGeometry):
            try:
                study_area = self._engine.polygon(study_area)
            except (TypeError, ValueError, ShapelyError) as e:
                raise DegenerateGeometryError(f"Study area is not a valid polygon ring: {e}") from e
        if study_area.is_empty:
            raise DegenerateGeometryError("Study area is empty")
        if study_area.geom_type not in ("Polygon", "MultiPolygon"):
            raise DegenerateGeometryError(
                f"Study area must be a Polygon or MultiPolygon, got {study_area.geom_type}"
            )
        if study_area.area <= 0:
            raise DegenerateGeometryError("Study area has zero area")
        return study_area

    # -- pipeline --

    def build(self) -> "GraticuleBuilder":
        """Run the full pipeline once.

        Returns:
            This builder, now in the DONE stage.

        Raises:
            GraticuleError: If the builder has already been run.
            InvalidInputError: If the lattice would exceed ``max_cells``.
            DegenerateGeometryError: If no enclosing circle can be computed.
        """
        if self._stage is not BuildStage.INIT:
            raise GraticuleError(
                f"build() already ran (stage '{self._stage.value}'); create a new GraticuleBuilder"
            )

        calculator = BoundingAreaCalculator(self._engine)
        self._bounding_area, self._num_cols, self._num_rows = calculator.compute(
            self._study_area, self._cell_width, self._cell_height
        )
        self._check_cell_budget()
        self._stage = BuildStage.BOUNDING_AREA_COMPUTED

        self._origin = OriginLocator().locate(self._bounding_area.boundary)
        self._stage = BuildStage.ORIGIN_COMPUTED

        generator = LatticeGenerator(self._engine, self._origin, self._cell_width, self._cell_height)
        lattice = generator.generate(self._shape, self._num_cols, self._num_rows, self._radius)
        self._stage = BuildStage.LATTICE_GENERATED

        rotator = GridRotator(self._engine)
        self._big_grid = tuple(rotator.rotate(lattice, self._study_area, self._angle))
        self._stage = BuildStage.ROTATED

        grid_filter = GridFilter(self._engine)
        self._filtered_grid = tuple(grid_filter.filter(self._big_grid, self._study_area))
        self._stage = BuildStage.FILTERED

        self._stage = BuildStage.DONE
        return self

    def _check_cell_budget(self) -> None:
        total = self.expected_cell_count
        if total > self._max_cells:
            raise InvalidInputError(
                f"Lattice of {self._num_cols} x {self._num_rows} {self._shape.value} slots "
                f"would generate {total} cells, more than max_cells={self._max_cells}; "
                f"use a larger cell size"
            )

    def _require_done(self) -> None:
        if self._stage is not BuildStage.DONE:
            raise GraticuleError(
                f"Results are not available in stage '{self._stage.value}'; call build() first"
            )

    # -- results --

    @property
    def stage(self) -> BuildStage:
        """Return the current pipeline stage."""
        return self._stage

    @property
    def study_area(self) -> BaseGeometry:
        """Return the study area the grid is clipped to."""
        return self._study_area

    @property
    def shape(self) -> ShapeKind:
        """Return the cell shape of the lattice."""
        return self._shape

    @property
    def bounding_area(self) -> BoundingArea:
        """Return the enclosing circle and its square envelope."""
        self._require_done()
        return self._bounding_area

    @property
    def origin(self) -> Point2D:
        """Return the lower-left corner the lattice is laid out from."""
        self._require_done()
        return self._origin

    @property
    def num_cols(self) -> int:
        """Return the number of lattice columns (0 before build)."""
        return self._num_cols

    @property
    def num_rows(self) -> int:
        """Return the number of lattice rows (0 before build)."""
        return self._num_rows

    @property
    def expected_cell_count(self) -> int:
        """Return the unfiltered cell count implied by the current column/row counts."""
        per_slot = 1 if self._shape is ShapeKind.RECTANGLE else 2
        return per_slot * self._num_cols * self._num_rows

    @property
    def big_grid(self) -> Tuple[Cell, ...]:
        """Return the rotated, unfiltered lattice in generation order."""
        self._require_done()
        return self._big_grid

    @property
    def filtered_grid(self) -> Tuple[Cell, ...]:
        """Return the rotated cells that intersect the study area, in generation order."""
        self._require_done()
        return self._filtered_grid


def build_graticule(
    study_area,
    cell_width: float,
    cell_height: float,
    shape="rectangle",
    angle: float = 0,
    radius: float = 0,
    max_cells: int = GraticuleBuilder.DEFAULT_MAX_CELLS,
) -> GraticuleBuilder:
    """Construct a GraticuleBuilder and run it.

    Returns:
        The builder in the DONE stage.
    """
    return GraticuleBuilder(
        study_area, cell_width, cell_height,
        shape=shape, angle=angle, radius=radius, max_cells=max_cells,
    ).build()


# ---------------------------------------------------------------------------
# WKT input / output
# ---------------------------------------------------------------------------
def read_study_area(path: str) -> BaseGeometry:
    """Read the first geometry from a WKT file.

    The whole file is parsed first; if it holds several geometries, its first
    non-blank line is used instead.

    Args:
        path: Path to a text file containing WKT.

    Returns:
        The parsed geometry.

    Raises:
        FileNotFoundError: If the file does not exist.
        InvalidInputError: If the file is not UTF-8 text or no geometry can
            be parsed.
    """
    with open(path, "r", encoding="utf-8") as fh:
        try:
            text = fh.read().strip()
        except UnicodeDecodeError as e:
            raise InvalidInputError(f"WKT file is not valid UTF-8 text: '{path}'") from e
    if not text:
        raise InvalidInputError(f"WKT file is empty: '{path}'")
    try:
        return wkt.loads(text)
    except ShapelyError:
        pass
    first_line = next(line.strip() for line in text.splitlines() if line.strip())
    try:
        return wkt.loads(first_line)
    except ShapelyError as e:
        raise InvalidInputError(f"Cannot parse WKT in '{path}': {e}") from e


def grid_to_wkt(cells: Iterable[Cell]) -> str:
    """Return the cells as a single GEOMETRYCOLLECTION in WKT."""
    return GeometryCollection([cell.polygon for cell in cells]).wkt


def grid_to_tagged_lines(cells: Iterable[Cell]) -> List[str]:
    """Return one '<col> - <row><TAB><WKT>' line per cell."""
    return [f"{cell.tag}\t{cell.polygon.wkt}" for cell in cells]


# ---------------------------------------------------------------------------
# Colours
# ---------------------------------------------------------------------------
_RGB_TRIPLE = re.compile(r"^\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*$")


def parse_color(text: str) -> Tuple[int, int, int]:
    """Return the (R, G, B) of a CSS name, a hex code or a bare 'R,G,B' triple.

    Raises:
        ValueError: If Pillow does not recognise the colour or a component
            is above 255.
    """
    triple = _RGB_TRIPLE.match(text)
    spec = f"rgb({','.join(triple.groups())})" if triple else text.strip()
    try:
        rgb = ImageColor.getrgb(spec)
    except ValueError as e:
        raise ValueError(f"Invalid color specification: '{text}'") from e
    if max(rgb[:3]) > 255:
        raise ValueError(f"RGB components must be in [0, 255]: '{text}'")
    return (rgb[0], rgb[1], rgb[2])


# ---------------------------------------------------------------------------
# GridRenderer
# ---------------------------------------------------------------------------
class GridRenderer:
    """Draws a grid and its study area into a PNG-ready Pillow image.

    World coordinates are fitted (y up, with padding) to the canvas. The
    drawing is supersampled by the anti-alias factor and downsampled with
    LANCZOS.
    """

    _AA_SCALES: Dict[str, int] = {
        "off": 1,
        "low": 2,
        "medium": 4,
        "high": 8,
    }

    # Fraction of the canvas left empty on each side.
    _PADDING: float = 0.05

    def render(
        self,
        cells: Sequence[Cell],
        study_area: BaseGeometry,
        width: int,
        height: int,
        line_width: int,
        color_fill: Tuple[int, int, int],
        color_line: Tuple[int, int, int],
        color_background: Tuple[int, int, int],
        color_study_area: Tuple[int, int, int],
        antialias: str,
    ) -> Tuple[Image.Image, int]:
        """Render the cells and the study-area outline.

        Args:
            cells: Cells to draw, filled and outlined.
            study_area: Region whose outline is drawn on top.
            width: Image width in pixels.
            height: Image height in pixels.
            line_width: Cell outline width in pixels (0 = no outline).
            color_fill: Cell fill colour.
            color_line: Cell outline colour.
            color_background: Background colour.
            color_study_area: Study-area outline colour.
            antialias: 'off', 'low', 'medium' or 'high'.

        Returns:
            A tuple of (image at the requested size, number of cells drawn).
        """
        k = self._AA_SCALES.get(antialias, 1)
        sw, sh = width * k, height * k
        s_lw = line_width * k

        img = Image.new("RGB", (sw, sh), color_background)
        draw = ImageDraw.Draw(img)
        to_pixel = self._fit(cells, study_area, sw, sh)

        polygon_count = 0
        for cell in cells:
            points = [to_pixel(x, y) for x, y in cell.polygon.exterior.coords]
            if s_lw > 0:
                draw.polygon(points, fill=color_fill, outline=color_line, width=s_lw)
            else:
                draw.polygon(points, fill=color_fill)
            polygon_count += 1

        outline_width = max(s_lw, k) * 2
        for ring in self._rings(study_area):
            draw.line([to_pixel(x, y) for x, y in ring], fill=color_study_area,
                      width=outline_width, joint="curve")

        if k > 1:
            img = img.resize((width, height), Image.LANCZOS)
        return img, polygon_count

    def _fit(
        self, cells: Sequence[Cell], study_area: BaseGeometry, sw: int, sh: int
    ) -> Callable[[float, float], Point2D]:
        min_x, min_y, max_x, max_y = study_area.bounds
        for cell in cells:
            c_min_x, c_min_y, c_max_x, c_max_y = cell.polygon.bounds
            min_x, min_y = min(min_x, c_min_x), min(min_y, c_min_y)
            max_x, max_y = max(max_x, c_max_x), max(max_y, c_max_y)

        span_x = max(max_x - min_x, 1e-12)
        span_y = max(max_y - min_y, 1e-12)
        usable = 1.0 - 2.0 * self._PADDING
        scale = min(sw * usable / span_x, sh * usable / span_y)
        cx = (min_x + max_x) / 2.0
        cy = (min_y + max_y) / 2.0

        def to_pixel(x: float, y: float) -> Point2D:
            return (sw / 2.0 + (x - cx) * scale, sh / 2.0 - (y - cy) * scale)

        return to_pixel

    def _rings(self, geometry: BaseGeometry) -> List[List[Point2D]]:
        rings: List[List[Point2D]] = []
        for polygon in getattr(geometry, "geoms", [geometry]):
            rings.append(list(polygon.exterior.coords))
            rings.extend(list(interior.coords) for interior in polygon.interiors)
        return rings


# ---------------------------------------------------------------------------
# SettingsManager
# ---------------------------------------------------------------------------
class SettingsManager:
    """JSON import/export of build parameters.

    Precedence when importing: argparse defaults < JSON values < arguments
    given explicitly on the command line.
    """

    # Persisted key -> expected type. Keys in _OPTIONAL_KEYS may also be null.
    _PERSISTED_TYPES: Dict[str, type] = {
        "wkt": str, "cell_width": int, "cell_height": int, "shape": str,
        "angle": int, "radius": int, "max_cells": int, "output": str,
        "format": str, "image": str, "width": int, "height": int,
        "line_width": int, "color_fill": str, "color_line": str,
        "color_background": str, "color_study_area": str, "antialias": str,
        "debug": bool,
    }
    _OPTIONAL_KEYS = {"wkt", "output", "image"}

    def export_settings(self, params: argparse.Namespace, path: str) -> None:
        """Write the persisted parameters to a JSON file.

        Raises:
            OSError: If the file cannot be written.
        """
        data = {key: getattr(params, key, None) for key in self._PERSISTED_TYPES}
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def import_settings(self, path: str) -> Dict:
        """Load a JSON settings file.

        Raises:
            FileNotFoundError: If the file does not exist.
            json.JSONDecodeError: If the file is not valid JSON.
            ValueError: If the JSON document is not an object.
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Settings file must hold a JSON object: '{path}'")
        return data

    def merge_settings(
        self,
        args: argparse.Namespace,
        json_settings: Dict,
        explicit_keys: set,
    ) -> argparse.Namespace:
        """Apply JSON values to every persisted key not given on the command line.

        Raises:
            ValueError: If a value does not have the key's expected type.
        """
        for key, kind in self._PERSISTED_TYPES.items():
            if key in json_settings and key not in explicit_keys:
                setattr(args, key, self._coerce(key, kind, json_settings[key]))
        return args

    def _coerce(self, key: str, kind: type, value: object) -> object:
        if value is None and key in self._OPTIONAL_KEYS:
            return None
        if kind is bool and isinstance(value, bool):
            return value
        if kind is str and isinstance(value, str):
            return value
        if kind is int and not isinstance(value, bool):
            if isinstance(value, numbers.Integral):
                return int(value)
            if isinstance(value, float) and value.is_integer():
                return int(value)
            if isinstance(value, str):
                try:
                    return int(value.strip())
                except ValueError:
                    pass
        raise ValueError(f"'{key}' must be {kind.__name__}, got {value!r}")


# ---------------------------------------------------------------------------
# InteractiveShell
# ---------------------------------------------------------------------------
class InteractiveShell:
    """Console loop that prompts for build parameters and prints grids as WKT.

    Unparseable or out-of-range answers are asked again. After each grid the
    user can start over with a different one.
    """

    def __init__(
        self,
        input_fn: Callable[[str], str] = input,
        output_fn: Callable[[str], None] = print,
        error_fn: Optional[Callable[[str], None]] = None,
        max_cells: int = GraticuleBuilder.DEFAULT_MAX_CELLS,
    ) -> None:
        self._input = input_fn
        self._output = output_fn
        self._error = error_fn if error_fn is not None else output_fn
        self._max_cells = max_cells

    def run(self) -> int:
        """Prompt, build and print grids until the user declines to continue.

        Returns:
            The number of grids successfully built.
        """
        built = 0
        while True:
            study_area = self._ask_study_area()
            cell_width = self._ask_int(
                "Insert an integer (and reasonable) cell width:", lambda v: v > 0)
            cell_height = self._ask_int(
                "Insert an integer (and reasonable) cell height:", lambda v: v > 0)
            shape = self._ask_shape()
            angle = self._ask_int("Insert an integer rotation angle (0-360º) :")
            radius = 0
            if shape is ShapeKind.HEXAGON:
                radius = self._ask_int(
                    "Insert an integer (and reasonable) radius:",
                    lambda v: 0 <= v < cell_width / 2.0,
                )

            try:
                builder = build_graticule(
                    study_area, cell_width, cell_height, shape=shape,
                    angle=angle, radius=radius, max_cells=self._max_cells,
                )
            except GraticuleError as e:
                self._error(f"Error: {e}")
            else:
                self._output(grid_to_wkt(builder.filtered_grid))
                built += 1

            if not self._ask_continue():
                return built

    def _ask_study_area(self) -> BaseGeometry:
        while True:
            path = self._input("Insert a wkt file:").strip()
            try:
                return read_study_area(path)
            except (OSError, InvalidInputError) as e:
                self._error(f"Error: {e}")

    def _ask_int(self, prompt: str, accept: Optional[Callable[[int], bool]] = None) -> int:
        while True:
            answer = self._input(prompt).strip()
            try:
                value = int(answer)
            except ValueError:
                continue
            if accept is None or accept(value):
                return value

    def _ask_shape(self) -> ShapeKind:
        while True:
            answer = self._input("Insert Shape Type (rectangle, triangle or hexagon):")
            try:
                return ShapeKind.parse(answer)
            except InvalidInputError:
                continue

    def _ask_continue(self) -> bool:
        while True:
            answer = self._input("Do you want to calculate a different grid? (y/n)").strip().lower()
            if answer == "y":
                return True
            if answer == "n":
                return False


# ---------------------------------------------------------------------------
# Version helper
# ---------------------------------------------------------------------------
_RELEASE_HEADING = re.compile(r"^## \[(\d+\.\d+\.\d+)\]", re.MULTILINE)


def _release_version(fallback: str) -> str:
    """Return the newest release listed in CHANGELOG.md, or *fallback*."""
    changelog = os.path.join(os.path.dirname(os.path.abspath(__file__)), "CHANGELOG.md")
    if not os.path.isfile(changelog):
        return fallback
    with open(changelog, "r", encoding="utf-8") as fh:
        match = _RELEASE_HEADING.search(fh.read())
    return match.group(1) if match else fallback


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------
class Application:
    """Command-line entry point for the Graticule Builder.

    Orchestrates argument parsing, settings import/export, the build, grid
    output, the optional PNG preview and the debug report.
    """

    VERSION:      str = _release_version("1.0.0")
    BUILD_DATE:   str = "2026-10-19"
    TITLE:        str = "Graticule Builder"
    BANNER_WIDTH: int = 60

    _VALID_AA = {"off", "low", "medium", "high"}
    _VALID_FORMATS = {"wkt", "tagged"}

    def run(self, argv: Optional[List[str]] = None) -> None:
        """Execute the full application pipeline.

        Args:
            argv: Command-line arguments; ``sys.argv[1:]`` when None.

        Returns:
            None
        """
        # Step 1: Parse CLI arguments and detect explicit keys
        args, explicit_keys = self._parse_args(argv)

        # Step 2: Import settings if requested
        if args.import_settings:
            import_path = self._with_extension(args.import_settings, ".json")
            try:
                manager = SettingsManager()
                json_data = manager.import_settings(import_path)
                args = manager.merge_settings(args, json_data, explicit_keys)
            except FileNotFoundError:
                self._fail(f"Settings file not found: '{import_path}'")
            except ValueError as e:
                self._fail(f"Invalid settings file '{import_path}': {e}")

        # Step 3: Export settings if requested
        export_path = None
        if args.export_settings:
            export_path = self._with_extension(args.export_settings, ".json")
            try:
                SettingsManager().export_settings(args, export_path)
            except OSError as e:
                self._fail(f"Cannot write settings file: {e}")

        # Step 4: Interactive mode hands the console over to the shell
        if args.interactive:
            self._print_banner(sys.stdout)
            shell = InteractiveShell(
                error_fn=lambda msg: print(msg, file=sys.stderr),
                max_cells=args.max_cells,
            )
            try:
                shell.run()
            except (EOFError, KeyboardInterrupt):
                print()
            return

        # Step 5: Validate output options before doing any geometry work
        if args.format not in self._VALID_FORMATS:
            self._fail(f"Invalid format '{args.format}'. "
                       f"Must be one of: {', '.join(sorted(self._VALID_FORMATS))}")
        colors = None
        if args.image:
            if args.antialias not in self._VALID_AA:
                self._fail(f"Invalid antialias level '{args.antialias}'. "
                           f"Must be one of: {', '.join(sorted(self._VALID_AA))}")
            color_keys = ("color_fill", "color_line", "color_background", "color_study_area")
            try:
                colors = {key: parse_color(getattr(args, key)) for key in color_keys}
            except ValueError as e:
                self._fail(str(e))

        # Step 6: Read the study area
        if not args.wkt:
            self._fail("A study area is required: pass --wkt FILE or use --interactive")
        try:
            study_area = read_study_area(args.wkt)
        except FileNotFoundError:
            self._fail(f"WKT file not found: '{args.wkt}'")
        except (OSError, InvalidInputError) as e:
            self._fail(str(e))

        # Step 7: Build the graticule
        try:
            builder = build_graticule(
                study_area,
                args.cell_width,
                args.cell_height,
                shape=args.shape,
                angle=args.angle,
                radius=args.radius,
                max_cells=args.max_cells,
            )
        except GraticuleError as e:
            self._fail(str(e))

        # Step 8: Write the filtered grid
        if args.format == "tagged":
            text = "\n".join(grid_to_tagged_lines(builder.filtered_grid))
        else:
            text = grid_to_wkt(builder.filtered_grid)
        saved: List[str] = []
        if args.output:
            try:
                with open(args.output, "w", encoding="utf-8") as fh:
                    fh.write(text + "\n")
            except OSError as e:
                self._fail(f"Cannot write grid file: {e}")
            saved.append(args.output)
        else:
            print(text)

        # Step 9: Optional PNG preview
        polygon_count = 0
        image_path = None
        if args.image:
            image_path = self._with_extension(args.image, ".png")
            img, polygon_count = GridRenderer().render(
                builder.filtered_grid,
                builder.study_area,
                width=args.width,
                height=args.height,
                line_width=args.line_width,
                antialias=args.antialias,
                **colors,
            )
            img.save(image_path, "PNG")
            saved.append(image_path)
        if export_path:
            saved.append(export_path)

        # Banner and report go to stderr when stdout carries the grid
        report = sys.stdout if args.output else sys.stderr
        self._print_banner(report)
        for path in saved:
            print(f"  Saved: {path} ({os.path.getsize(path)} bytes)", file=report)

        # Step 10: Debug output
        if args.debug:
            self._print_debug(args, builder, polygon_count, report)
        print(file=report)

    def _fail(self, message: str) -> None:
        print(f"Error: {message}", file=sys.stderr)
        sys.exit(1)

    def _with_extension(self, path: str, extension: str) -> str:
        if not path.lower().endswith(extension):
            path += extension
        return path

    def _parse_args(self, argv: Optional[List[str]]) -> Tuple[argparse.Namespace, set]:
        """Parse CLI arguments and detect which were explicitly provided.

        Returns:
            A tuple of (parsed Namespace, set of explicitly-provided key names).
        """
        args = self._build_parser().parse_args(argv)

        # Second parse with SUPPRESS defaults to detect explicit keys
        explicit_args = self._build_parser(suppress_defaults=True).parse_args(argv)
        explicit_keys = set(vars(explicit_args).keys())

        return args, explicit_keys

    def _build_parser(self, suppress_defaults: bool = False) -> argparse.ArgumentParser:
        """Build the argparse ArgumentParser.

        Args:
            suppress_defaults: If True, every default is SUPPRESS so that only
                explicitly-provided arguments appear in the Namespace.

        Returns:
            A configured ArgumentParser.
        """
        banner = self._banner_text()

        class _BannerParser(argparse.ArgumentParser):
            """ArgumentParser that prints the banner before help text."""

            def print_help(self, file=None):
                if file is None:
                    file = sys.stdout
                file.write(banner + "\n\n")
                super().print_help(file)

        def default(value):
            return argparse.SUPPRESS if suppress_defaults else value

        parser = _BannerParser(
            description="Graticule Builder: clip a rotated rectangle, triangle or "
                        "hexagon tessellation to a study area.",
        )
        parser.add_argument("--wkt", type=str, default=default(None),
                            help="WKT file holding the study-area polygon")
        parser.add_argument("--cell_width", type=int, default=default(10),
                            help="Cell width (default: 10)")
        parser.add_argument("--cell_height", type=int, default=default(10),
                            help="Cell height (default: 10)")
        parser.add_argument("--shape", type=str, default=default("rectangle"),
                            help="Cell shape: rectangle, triangle, hexagon (default: rectangle)")
        parser.add_argument("--angle", type=int, default=default(0),
                            help="Rotation angle in degrees (default: 0)")
        parser.add_argument("--radius", type=int, default=default(0),
                            help="Hexagon inset, 0 <= radius < cell_width/2 (default: 0)")
        parser.add_argument("--max_cells", type=int,
                            default=default(GraticuleBuilder.DEFAULT_MAX_CELLS),
                            help=f"Largest unfiltered lattice to generate "
                                 f"(default: {GraticuleBuilder.DEFAULT_MAX_CELLS})")
        parser.add_argument("--output", type=str, default=default(None),
                            help="Write the grid to this file instead of stdout")
        parser.add_argument("--format", type=str, default=default("wkt"),
                            help="Grid output format: wkt, tagged (default: wkt)")
        parser.add_argument("--image", type=str, default=default(None),
                            help="Also render a PNG preview to this file")
        parser.add_argument("--width", type=int, default=default(1024),
                            help="Preview width in pixels (default: 1024)")
        parser.add_argument("--height", type=int, default=default(768),
                            help="Preview height in pixels (default: 768)")
        parser.add_argument("--line_width", type=int, default=default(1),
                            help="Cell outline width in pixels, 0 = no outline (default: 1)")
        parser.add_argument("--color_fill", type=str, default=default("lightgrey"),
                            help="Cell fill colour (default: lightgrey)")
        parser.add_argument("--color_line", type=str, default=default("black"),
                            help="Cell outline colour (default: black)")
        parser.add_argument("--color_background", type=str, default=default("white"),
                            help="Background colour (default: white)")
        parser.add_argument("--color_study_area", type=str, default=default("red"),
                            help="Study-area outline colour (default: red)")
        parser.add_argument("--antialias", type=str, default=default("medium"),
                            help="Anti-alias level: off, low, medium, high (default: medium)")
        parser.add_argument("--debug", action="store_true", default=default(False),
                            help="Print the build parameters and intermediate results")
        parser.add_argument("--interactive", action="store_true", default=default(False),
                            help="Prompt for parameters on the console")
        parser.add_argument("--export_settings", type=str, default=None,
                            help="Export parameters to a JSON file")
        parser.add_argument("--import_settings", type=str, default=None,
                            help="Import parameters from a JSON file")

        return parser

    def _banner_text(self) -> str:
        w = self.BANNER_WIDTH
        inner = w - 2
        lines = [
            "┌" + "─" * inner + "┐",
            f"│{'  Program:    ' + self.TITLE:<{inner}}│",
            f"│{'  Version:    ' + self.VERSION:<{inner}}│",
            f"│{'  Build Date: ' + self.BUILD_DATE:<{inner}}│",
            "└" + "─" * inner + "┘",
        ]
        return "\n".join(lines)

    def _print_banner(self, stream) -> None:
        print(self._banner_text(), file=stream)

    def _print_debug(
        self,
        args: argparse.Namespace,
        builder: GraticuleBuilder,
        polygon_count: int,
        stream,
    ) -> None:
        """Print the build parameters and intermediate results.

        Args:
            args: The resolved parameters.
            builder: The finished builder.
            polygon_count: Cells drawn into the preview (0 without --image).
            stream: Where to print.

        Returns:
            None
        """
        area = builder.bounding_area
        ox, oy = builder.origin
        cx, cy = area.center
        radius_str = f"{args.radius}" if builder.shape is ShapeKind.HEXAGON else "n/a"
        print(f"\n  Study area:       {args.wkt}", file=stream)
        print(f"  Cell size:        {args.cell_width} x {args.cell_height}", file=stream)
        print(f"  Shape:            {builder.shape.value}", file=stream)
        print(f"  Angle:            {args.angle}", file=stream)
        print(f"  Radius:           {radius_str}", file=stream)
        print(f"  Circle centre:    ({cx:.6f}, {cy:.6f})", file=stream)
        print(f"  Circle radius:    {area.radius:.6f}", file=stream)
        print(f"  Lattice:          {builder.num_cols} cols x {builder.num_rows} rows", file=stream)
        print(f"  Origin:           ({ox:.6f}, {oy:.6f})", file=stream)
        print(f"  Cells generated:  {len(builder.big_grid)}", file=stream)
        print(f"  Cells kept:       {len(builder.filtered_grid)}", file=stream)
        if args.image:
            print(f"  Polygons drawn:   {polygon_count}", file=stream)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def main() -> None:
    """Main entry point for the Graticule Builder."""
    for stream in (sys.stdout, sys.stderr):
        if stream and hasattr(stream, "reconfigure"):
            stream.reconfigure(encoding="utf-8", errors="replace")
    app = Application()
    app.run()


if __name__ == "__main__":
    main()
