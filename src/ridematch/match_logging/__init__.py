from .context import ContextFilter, get_log_context, log_context, log_job_context
from .filters import DefaultCorrelationFilter, PIIFilter
from .formatters import DevFormatter, JSONFormatter
from .setup import setup_logging

__all__ = [
    "ContextFilter",
    "DefaultCorrelationFilter",
    "DevFormatter",
    "JSONFormatter",
    "PIIFilter",
    "get_log_context",
    "log_context",
    "log_job_context",
    "setup_logging",
]
