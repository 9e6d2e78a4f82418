"""
Census Atlas

Small-area census statistics for northern Osaka (茨木市, 高槻市, 吹田市,
豊中市) joined to e-Stat town-block polygons, plus restaurant points and a
heatmap grid, written as files any map renderer can consume.

Core modules:
    - keys: Area key normalization and composite key resolution
    - encoding: UTF-8 / cp932 detection for census CSVs
    - csv_loader: Header detection and strings-only CSV parsing
    - features: Per-mode value maps and join reports
    - placement: Station-distance point placement
    - grid: Fixed-size heatmap binning
    - shapes: Polygons, boundaries, centroids, rail overlay
    - acquire: Concurrent loading of every data source
    - geocode: Rate-limited GSI address geocoding
    - pipeline: Snapshot + selection -> view model
"""

__version__ = "0.1.0"
__author__ = "Census Atlas Team"
