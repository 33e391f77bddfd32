"""
Core library: Reusable, infrastructure-agnostic components.

Modules:
    resilience  - Retry with exponential backoff
    logging     - Structured JSON logging with message context
    errors      - Error classification and exception hierarchy
    utils       - JSON serialization and worker identifiers

Design Principles:
    - No dependencies on Kafka, the relational store or Redis
    - All modules are independently testable
    - Async-first where applicable
"""

from .types import ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
]
