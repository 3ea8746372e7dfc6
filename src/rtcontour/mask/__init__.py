"""Module for connected component labeling and Post-Processing of masks."""

from rtcontour.mask.connected_components import find_connected_components_3d
from rtcontour.mask.mask_processor import MaskPostProcessor
from rtcontour.mask.union_find import UnionFind

__all__ = ["UnionFind", "find_connected_components_3d", "MaskPostProcessor"]
