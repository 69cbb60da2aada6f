"""Relief Maps: shaded-relief and TopoJSON asset generation service.

Accepts a country/continent selection plus a bounding window, drives a
chain of GDAL / ImageMagick / topojson command-line tools over a
per-request workspace, and publishes a relief image and two TopoJSON
layers (land boundaries, river centerlines) for a web map.
"""

__version__ = "0.1.0"
