"""Exporter SPI and implementations."""

from .base import BaseExporter
from .file_exporter import SUPPORTED_FORMATS, FileExporter

__all__ = ["BaseExporter", "FileExporter", "SUPPORTED_FORMATS"]
