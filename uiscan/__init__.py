"""uiscan: static analysis and codegen for component-based UI sources."""

__version__ = "0.1.0"
