"""
Packed R-tree over the bounding boxes of a geometry array.

The tree is bulk-loaded with the sort-tile-recursive algorithm and stored as
flat numpy arrays, one per level, instead of linked node objects: node ``j``
of level ``k`` covers the contiguous range ``starts[j]:stops[j]`` of level
``k - 1`` (of the sorted entries for ``k == 0``). The tree is read-only once
built and can be queried concurrently; ``rebuild`` returns a new index.

Range queries compare bounding boxes only, so they can return rows whose
geometry does not itself touch the query box.
"""
import heapq
import logging
import math

import numpy as np

from . import algorithms
from .config import get_settings
from .errors import DegenerateInputError, EmptyIndexError
from .geometry import Point

logger = logging.getLogger(__name__)


def _str_order(boxes, capacity):
    """Sort-tile-recursive order: consecutive runs of ``capacity`` entries
    form the nodes of the next level."""
    n = len(boxes)
    cx = (boxes[:, 0] + boxes[:, 2]) / 2
    cy = (boxes[:, 1] + boxes[:, 3]) / 2
    n_nodes = math.ceil(n / capacity)
    slab = math.ceil(math.sqrt(n_nodes)) * capacity
    order = np.argsort(cx, kind="stable")
    for start in range(0, n, slab):
        seg = order[start : start + slab]
        order[start : start + slab] = seg[np.argsort(cy[seg], kind="stable")]
    return order


def _group(boxes, capacity):
    starts = np.arange(0, len(boxes), capacity)
    stops = np.minimum(starts + capacity, len(boxes))
    node_boxes = np.column_stack(
        (
            np.minimum.reduceat(boxes[:, 0], starts),
            np.minimum.reduceat(boxes[:, 1], starts),
            np.maximum.reduceat(boxes[:, 2], starts),
            np.maximum.reduceat(boxes[:, 3], starts),
        )
    )
    return node_boxes, starts, stops


def _hits(boxes, query):
    xmin, ymin, xmax, ymax = query
    return np.nonzero(
        (boxes[:, 0] <= xmax)
        & (boxes[:, 2] >= xmin)
        & (boxes[:, 1] <= ymax)
        & (boxes[:, 3] >= ymin)
    )[0]


def _box_distances(boxes, x, y):
    dx = np.maximum(np.maximum(boxes[:, 0] - x, 0.0), x - boxes[:, 2])
    dy = np.maximum(np.maximum(boxes[:, 1] - y, 0.0), y - boxes[:, 3])
    return np.hypot(dx, dy)


def _as_box(bbox):
    xmin, ymin, xmax, ymax = (float(v) for v in bbox)
    if xmin > xmax or ymin > ymax:
        raise ValueError(f"invalid bounding box {bbox!r}")
    return xmin, ymin, xmax, ymax


class SpatialIndex:
    """R-tree over a geometry array, use ``SpatialIndex.build``.

    The index keeps a reference to the array it was built from to compute
    exact nearest-neighbour distances, and must not outlive it.
    """

    def __init__(self, array, entry_boxes, rows, levels, node_capacity):
        self._array = array
        self._entry_boxes = entry_boxes
        self._rows = rows
        self._levels = levels
        self.node_capacity = node_capacity
        for buf in [entry_boxes, rows] + [b for level in levels for b in level]:
            buf.setflags(write=False)

    @classmethod
    def build(cls, array, node_capacity=None):
        capacity = node_capacity or get_settings().node_capacity
        if capacity < 2:
            raise ValueError("node capacity must be at least 2")

        bounds = array.bounds()
        # null and empty rows have NaN bounds and are left out
        rows = np.nonzero(~np.isnan(bounds).any(axis=1))[0]
        boxes = bounds[rows]
        levels = []
        if len(rows):
            order = _str_order(boxes, capacity)
            boxes, rows = boxes[order], rows[order]
            current = boxes
            while True:
                node_boxes, starts, stops = _group(current, capacity)
                if len(node_boxes) == 1:
                    levels.append((node_boxes, starts, stops))
                    break
                order = _str_order(node_boxes, capacity)
                levels.append((node_boxes[order], starts[order], stops[order]))
                current = node_boxes[order]

        logger.debug(
            "built R-tree over %d of %d rows, %d levels",
            len(rows),
            len(array),
            len(levels),
        )
        return cls(array, boxes, rows, levels, capacity)

    def rebuild(self, array=None):
        """Build a new index, leaving this one untouched."""
        return type(self).build(
            self._array if array is None else array, self.node_capacity
        )

    def __len__(self):
        return len(self._rows)

    @property
    def height(self):
        return len(self._levels)

    @property
    def bounds(self):
        if not self._levels:
            raise EmptyIndexError("index holds no geometries")
        return tuple(self._levels[-1][0][0].tolist())

    def _children(self, level, node):
        _, starts, stops = self._levels[level]
        start, stop = int(starts[node]), int(stops[node])
        if level == 0:
            return start, self._entry_boxes[start:stop]
        return start, self._levels[level - 1][0][start:stop]

    def query_intersecting(self, bbox):
        """Lazily yield the rows whose bounding box intersects ``bbox``
        (``xmin, ymin, xmax, ymax``, boundaries included), in tree order."""
        query = _as_box(bbox)
        if not self._levels:
            logger.debug("query against an empty index")
            return iter(())
        return self._query(query)

    def _query(self, query):
        stack = [(len(self._levels) - 1, 0)]
        while stack:
            level, node = stack.pop()
            start, boxes = self._children(level, node)
            hits = _hits(boxes, query) + start
            if level == 0:
                yield from self._rows[hits].tolist()
            else:
                stack.extend((level - 1, int(j)) for j in hits[::-1])

    def nearest(self, point, k=1):
        """The ``k`` rows nearest to ``point`` as ``[(row, distance)]``,
        closest first.

        Distances are exact geometry distances. Subtrees are visited best
        first and pruned once their box is farther than the current k-th
        best distance.

        Raises ``DegenerateInputError`` for an empty query point.
        """
        if isinstance(point, Point):
            x, y = point.x, point.y
        else:
            x, y = (float(v) for v in point[:2])
        if x is None or math.isnan(x) or math.isnan(y):
            raise DegenerateInputError("nearest to an empty point is undefined")
        if k <= 0 or not self._levels:
            return []
        target = Point((x, y))

        counter = 0
        heap = [(0.0, counter, len(self._levels) - 1, 0)]
        kbest = []  # max-heap of the k best exact distances, negated
        radius = math.inf
        results = []
        while heap and len(results) < k:
            dist, _, level, item = heapq.heappop(heap)
            if dist > radius:
                break
            if level < 0:
                results.append((item, dist))
                continue
            start, boxes = self._children(level, item)
            box_dist = _box_distances(boxes, x, y)
            for j in np.nonzero(box_dist <= radius)[0]:
                counter += 1
                if level == 0:
                    row = int(self._rows[start + j])
                    exact = algorithms.distance(target, self._array[row])
                    if exact > radius:
                        continue
                    heapq.heappush(heap, (exact, counter, -1, row))
                    heapq.heappush(kbest, -exact)
                    if len(kbest) > k:
                        heapq.heappop(kbest)
                    if len(kbest) == k:
                        radius = -kbest[0]
                else:
                    heapq.heappush(
                        heap, (float(box_dist[j]), counter, level - 1, start + int(j))
                    )
        return results
