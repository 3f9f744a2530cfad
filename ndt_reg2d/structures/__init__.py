"""
Spatial structures built from a point cloud at one resolution.

- distribution_grid.py: voxel Gaussian cells with nearest-cell queries
- lookup_table.py: rasterized likelihood field used for verification and correlative search
"""

__all__ = [
    "DistributionCell",
    "DistributionGrid",
    "LikelihoodLookupTable",
]


def __getattr__(name):
    if name in ("DistributionCell", "DistributionGrid"):
        from ndt_reg2d.structures import distribution_grid
        return getattr(distribution_grid, name)
    elif name == "LikelihoodLookupTable":
        from ndt_reg2d.structures.lookup_table import LikelihoodLookupTable
        return LikelihoodLookupTable
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
