"""Map-generation pipeline.

Manages the end-to-end workflow for one request:
1. Reset an isolated workspace from the pristine source data
2. Run the fifteen stages in order (GDAL, ImageMagick, geo2topo)
3. Rewrite boundary properties and publish the final artifacts
"""
