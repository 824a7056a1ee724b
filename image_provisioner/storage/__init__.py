"""Filesystem-level building blocks for the image pipeline.

Modules:
    - workspace: per-run temporary staging directory with guaranteed cleanup
    - sparse: hole-preserving file and byte-range copies
    - compression: codec detection, compress/decompress via external tools
    - bmap: block map generation via bmaptool
    - partitions: partition table access (sfdisk)
    - file_ops: copy files into/out of image partitions
    - exceptions: error hierarchy
"""
