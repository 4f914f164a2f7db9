"""Block-structured mesh hierarchy.

Each level holds a single rectangular box of cells in its own index space
(level 0 spans the whole domain). Work inside a level is split into tiles
that can be processed independently.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable, List, Sequence, Tuple

import numpy as np

from ..errors import GeometryError

log = logging.getLogger(__name__)

SPACEDIM = 3


@dataclass(frozen=True)
class Box:
    """Cell box with inclusive ``lo`` and exclusive ``hi`` corners."""

    lo: Tuple[int, int, int]
    hi: Tuple[int, int, int]

    @classmethod
    def from_shape(cls, shape, lo=(0, 0, 0)):
        return cls(tuple(lo), tuple(l + n for l, n in zip(lo, shape)))

    @property
    def shape(self) -> Tuple[int, int, int]:
        return tuple(h - l for l, h in zip(self.lo, self.hi))

    @property
    def numpts(self) -> int:
        return int(np.prod(self.shape))

    def ok(self) -> bool:
        return all(n > 0 for n in self.shape)

    def grow(self, n: int) -> "Box":
        return Box(tuple(l - n for l in self.lo), tuple(h + n for h in self.hi))

    def refine(self, ratio: int) -> "Box":
        return Box(tuple(l * ratio for l in self.lo), tuple(h * ratio for h in self.hi))

    def coarsen(self, ratio: int) -> "Box":
        return Box(
            tuple(l // ratio for l in self.lo),
            tuple(-(-h // ratio) for h in self.hi),
        )

    def contains(self, other: "Box") -> bool:
        return all(
            sl <= ol and oh <= sh
            for sl, sh, ol, oh in zip(self.lo, self.hi, other.lo, other.hi)
        )

    def bdry_lo(self, direction: int, width: int = 1) -> "Box":
        """Slab of ``width`` cells just below the low face in ``direction``."""
        lo = list(self.lo)
        hi = list(self.hi)
        hi[direction] = self.lo[direction]
        lo[direction] = self.lo[direction] - width
        slab = Box(tuple(lo), tuple(hi))
        if not slab.ok():
            raise GeometryError(f"Bad box extracted below {self} in direction {direction}")
        return slab

    def bdry_hi(self, direction: int, width: int = 1) -> "Box":
        """Slab of ``width`` cells just above the high face in ``direction``."""
        lo = list(self.lo)
        hi = list(self.hi)
        lo[direction] = self.hi[direction]
        hi[direction] = self.hi[direction] + width
        slab = Box(tuple(lo), tuple(hi))
        if not slab.ok():
            raise GeometryError(f"Bad box extracted above {self} in direction {direction}")
        return slab

    def slices(self, origin: Sequence[int]) -> Tuple[slice, slice, slice]:
        """Array slices of this box inside an array whose first cell is ``origin``."""
        return tuple(slice(l - o, h - o) for l, h, o in zip(self.lo, self.hi, origin))


@dataclass(frozen=True)
class Geometry:
    """Physical extent and periodicity of one level's index space."""

    prob_lo: Tuple[float, float, float]
    prob_hi: Tuple[float, float, float]
    domain: Box
    is_periodic: Tuple[bool, bool, bool]

    @property
    def cell_size(self) -> Tuple[float, float, float]:
        return tuple(
            (hi - lo) / n for lo, hi, n in zip(self.prob_lo, self.prob_hi, self.domain.shape)
        )

    @property
    def inv_cell_size(self) -> Tuple[float, float, float]:
        return tuple(1.0 / h for h in self.cell_size)

    @property
    def cell_volume(self) -> float:
        return float(np.prod(self.cell_size))

    def refine(self, ratio: int) -> "Geometry":
        return Geometry(self.prob_lo, self.prob_hi, self.domain.refine(ratio), self.is_periodic)


@dataclass(frozen=True)
class Level:
    lev: int
    geom: Geometry
    box: Box

    def touches_domain_lo(self, direction: int, box: Box = None) -> bool:
        box = self.box if box is None else box
        return box.lo[direction] == self.geom.domain.lo[direction]

    def touches_domain_hi(self, direction: int, box: Box = None) -> bool:
        box = self.box if box is None else box
        return box.hi[direction] == self.geom.domain.hi[direction]

    def cell_centers(self, direction: int) -> np.ndarray:
        dx = self.geom.cell_size[direction]
        idx = np.arange(self.box.lo[direction], self.box.hi[direction])
        return self.geom.prob_lo[direction] + (idx + 0.5) * dx

    def meshgrid(self):
        return np.meshgrid(*(self.cell_centers(d) for d in range(SPACEDIM)), indexing="ij")


class MeshHierarchy:
    """Ordered collection of levels, coarsest first.

    Parameters
    ----------
    n_cell : tuple of int
        Number of cells of level 0 in each direction.
    prob_lo, prob_hi : tuple of float
        Physical domain extent.
    is_periodic : tuple of bool
        Periodicity per direction.
    fine_boxes : list of Box, optional
        One box per refined level, given in that level's index space.
    ref_ratio : int
        Refinement ratio between consecutive levels.
    """

    def __init__(
        self,
        n_cell=(16, 16, 16),
        prob_lo=(0.0, 0.0, 0.0),
        prob_hi=(1.0, 1.0, 1.0),
        is_periodic=(True, True, True),
        fine_boxes: Sequence[Box] = (),
        ref_ratio: int = 2,
    ):
        self.ref_ratio = int(ref_ratio)
        geom = Geometry(
            tuple(float(x) for x in prob_lo),
            tuple(float(x) for x in prob_hi),
            Box.from_shape(tuple(int(n) for n in n_cell)),
            tuple(bool(p) for p in is_periodic),
        )
        self.levels: List[Level] = [Level(0, geom, geom.domain)]
        for box in fine_boxes:
            self._add_level(Box(tuple(box.lo), tuple(box.hi)))

    def _add_level(self, box: Box):
        parent = self.levels[-1]
        r = self.ref_ratio
        if any(l % r or h % r for l, h in zip(box.lo, box.hi)):
            raise GeometryError(f"Level box {box} is not aligned with refinement ratio {r}")
        geom = parent.geom.refine(r)
        if not box.ok() or not parent.box.contains(box.coarsen(r)):
            raise GeometryError(f"Level box {box} is not nested in {parent.box.refine(r)}")
        self.levels.append(Level(parent.lev + 1, geom, box))

    def num_active_levels(self) -> int:
        return len(self.levels)

    def __getitem__(self, lev: int) -> Level:
        return self.levels[lev]

    def __iter__(self):
        return iter(self.levels)

    def Geom(self, lev: int) -> Geometry:
        return self.levels[lev].geom

    def tiles(self, lev: int, tile_size=(32, 32, 32)) -> List[Box]:
        """Split the level box into tiles of at most ``tile_size`` cells."""
        box = self.levels[lev].box
        edges = [
            list(range(l, h, max(1, t))) + [h]
            for l, h, t in zip(box.lo, box.hi, tile_size)
        ]
        tiles = []
        for i0, i1 in zip(edges[0][:-1], edges[0][1:]):
            for j0, j1 in zip(edges[1][:-1], edges[1][1:]):
                for k0, k1 in zip(edges[2][:-1], edges[2][1:]):
                    tiles.append(Box((i0, j0, k0), (i1, j1, k1)))
        return tiles


def for_each_tile(func: Callable[[Box], None], tiles: Iterable[Box], n_workers: int = 1):
    """Apply ``func`` to every tile, optionally on a thread pool.

    Exceptions raised by any tile propagate to the caller.
    """
    tiles = list(tiles)
    if n_workers <= 1 or len(tiles) <= 1:
        for tile in tiles:
            func(tile)
        return
    with ThreadPoolExecutor(max_workers=n_workers) as pool:
        for _ in pool.map(func, tiles):
            pass
