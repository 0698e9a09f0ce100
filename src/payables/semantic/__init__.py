"""Semantic understanding module using LLM inference."""

from .detection import InvoiceDataExtractor
from .inference import ExtractionClient, StructuredExtractor
from .tracing import LangfuseTraceSink, LoggingTraceSink, NullTraceSink, TraceSink, safe_flush

__all__ = [
    "ExtractionClient",
    "StructuredExtractor",
    "InvoiceDataExtractor",
    "TraceSink",
    "NullTraceSink",
    "LoggingTraceSink",
    "LangfuseTraceSink",
    "safe_flush",
]
