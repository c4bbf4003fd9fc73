"""sea-builder.

Build Node.js single-executable applications (SEA) for one or more
``<os>-<arch>`` targets from a single JavaScript entry point.
"""

__all__: list[str] = ["__version__"]

__version__: str = "0.1.0"
