"""cudascope: CUDA toolkit compatibility detection and reporting."""

__version__ = "0.1.0"
