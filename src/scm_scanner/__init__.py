"""SCM Scanner - incremental commit and merge request scanning."""

__version__ = "0.1.0"
