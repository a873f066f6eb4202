"""AOI geometry pipeline.

- engines: injectable geometry capability set and pyproj/shapely defaults
- service: remote geometry service client (areasAndLengths)
- aoi: reprojection, area measurement, validation, serialization
"""
