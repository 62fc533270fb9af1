"""HTTP file-exchange service: upload, list, download and delete files in one directory."""

__version__ = "0.1.0"
