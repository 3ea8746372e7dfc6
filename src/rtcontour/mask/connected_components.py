"""3D connected component labelling with face (6-) connectivity."""

import logging
from typing import List, Tuple

import numpy as np

from rtcontour.contours.types import ComponentStatistics
from rtcontour.errors import ComponentOverflow, InvalidInput
from rtcontour.mask.union_find import UnionFind

logger = logging.getLogger(__name__)


def _equal_neighbour_pairs(volume: np.ndarray, foreground: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Flat indices of foreground voxels paired with their up, north and west neighbour of equal value.

    Only already-scanned neighbours are paired; together they cover every face
    adjacency once.
    """
    depth, height, width = volume.shape
    flat_index = np.arange(volume.size, dtype=np.int64).reshape(volume.shape)
    current, neighbour = [], []

    for axis, stride in ((0, height * width), (1, width), (2, 1)):
        if volume.shape[axis] < 2:
            continue
        here = [slice(None)] * 3
        before = [slice(None)] * 3
        here[axis] = slice(1, None)
        before[axis] = slice(None, -1)
        here, before = tuple(here), tuple(before)

        same = (volume[here] == volume[before]) & foreground[here]
        indices = flat_index[here][same]
        current.append(indices)
        neighbour.append(indices - stride)

    if not current:
        empty = np.empty(0, dtype=np.int64)
        return empty, empty
    return np.concatenate(current), np.concatenate(neighbour)


def find_connected_components_3d(
    volume: np.ndarray,
    background: int = 0,
    background_label: int = 0,
    output_dtype=np.uint16,
) -> Tuple[np.ndarray, List[ComponentStatistics]]:
    """Label every maximal face-connected run of equal non-background values.

    Ids are handed out in scan order (z, then y, then x) starting at 0 and
    skipping ``background_label``; background voxels receive
    ``background_label``.

    :param np.ndarray volume: 3D integer array in (z, y, x) order.
    :param int background: Input value treated as background, defaults to 0
    :param int background_label: Output id reserved for background, defaults to 0
    :param output_dtype: Integer dtype of the label array, defaults to np.uint16
    :raises InvalidInput: If the volume is not 3D or the output type cannot hold the background id.
    :raises ComponentOverflow: If the components do not fit in ``output_dtype``.
    :return Tuple[np.ndarray, List[ComponentStatistics]]: The label array and the
        statistics list, indexed by id. The background record, when its id lies
        within the list, counts the background voxels.
    """
    if volume is None:
        raise InvalidInput("The volume is None")
    volume = np.asarray(volume)
    if volume.ndim != 3:
        raise InvalidInput(f"Expected a 3D volume, got {volume.ndim} dimensions")

    output_dtype = np.dtype(output_dtype)
    if output_dtype.kind not in "iu":
        raise InvalidInput(f"Output type must be an integer type, got {output_dtype}")
    max_id = int(np.iinfo(output_dtype).max)
    if not 0 <= background_label <= max_id:
        raise InvalidInput(f"Background label {background_label} does not fit into {output_dtype}")

    foreground = volume != background
    foreground_indices = np.flatnonzero(foreground)
    node_count = foreground_indices.size

    # Nodes only exist for foreground voxels, numbered in scan order.
    node_of_voxel = np.full(volume.size, -1, dtype=np.int64)
    node_of_voxel[foreground_indices] = np.arange(node_count, dtype=np.int64)

    forest = UnionFind(node_count)
    current, neighbour = _equal_neighbour_pairs(volume, foreground)
    for a, b in zip(node_of_voxel[current].tolist(), node_of_voxel[neighbour].tolist()):
        forest.union(a, b)

    roots = forest.roots()
    unique_roots, first_seen = np.unique(roots, return_index=True)
    roots_in_scan_order = unique_roots[np.argsort(first_seen, kind="stable")]
    component_count = roots_in_scan_order.size

    candidates = np.arange(component_count + 1, dtype=np.int64)
    ids = candidates[candidates != background_label][:component_count]
    if component_count and ids[-1] > max_id:
        raise ComponentOverflow(
            f"Too many components during connected component analysis: {component_count} do not fit into {output_dtype}"
        )

    for root, component_id in zip(roots_in_scan_order.tolist(), ids.tolist()):
        forest.assign_label(root, component_id)

    node_ids = np.asarray(forest.label, dtype=np.int64)[roots] if node_count else np.empty(0, dtype=np.int64)
    labels = np.full(volume.size, background_label, dtype=output_dtype)
    labels[foreground_indices] = node_ids
    labels = labels.reshape(volume.shape)

    size = int(ids[-1]) + 1 if component_count else 0
    size = max(size, background_label + 1) if background_label <= size else size
    counts = np.bincount(node_ids, minlength=size)
    input_labels = np.full(size, background, dtype=np.int64)
    flat_volume = volume.ravel()
    first_voxels = foreground_indices[first_seen[np.argsort(first_seen, kind="stable")]]
    input_labels[ids] = flat_volume[first_voxels]

    statistics = []
    for component_id in range(size):
        if component_id == background_label:
            statistics.append(ComponentStatistics(component_id, int(background), int(volume.size - node_count)))
        else:
            statistics.append(ComponentStatistics(component_id, int(input_labels[component_id]), int(counts[component_id])))

    logger.debug(f"Found {component_count} connected components in volume of shape {volume.shape}")
    return labels, statistics
