"""
Conversion between segmentation label volumes and RT structure contours.

This package traces the regions of each slice of a label volume into
polygons, smooths them, fills polygons back into label grids to verify the
result, and reads and writes the contours as RTSTRUCT ROIs.
"""
