"""Batch conversion of vector datasets with GDAL's ogr2ogr."""
