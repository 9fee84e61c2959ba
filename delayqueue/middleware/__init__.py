# delayqueue/middleware/__init__.py
"""delayqueue Middleware Package"""

from .correlation import (
    CorrelationIdFilter,
    CorrelationIdMiddleware,
    bind_correlation_id,
    correlation_id_var,
    get_correlation_id,
    task_context,
)

__all__ = [
    "CorrelationIdFilter",
    "CorrelationIdMiddleware",
    "bind_correlation_id",
    "correlation_id_var",
    "get_correlation_id",
    "task_context",
]
