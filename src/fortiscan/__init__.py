"""FortiScan: pre-install security scanning for PHP plugin packages."""

__version__ = "0.1.0"
