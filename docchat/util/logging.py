"""
Structured logging for indexing, retrieval and agent runs.
"""

import logging
from typing import Any, Dict


class StructuredLogger:
    """Structured logger for vector, embedding, rerank and ReAct operations."""

    def __init__(self, name: str = "docchat"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        if status in ("failed", "error"):
            self.logger.error(message)
        elif status in ("degraded", "retry", "timeout"):
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_vector_operation(self, operation: str, namespace: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a vector store operation."""
        log_details = {"namespace": namespace}
        if details:
            log_details.update(details)

        self.log_operation(f"vector.{operation}", status, log_details)

    def log_embedding_batch(self, batch_index: int, batch_count: int, size: int, status: str = "success", details: Dict[str, Any] = None):
        """Log one embedding batch."""
        log_details = {"batch": f"{batch_index + 1}/{batch_count}", "size": size}
        if details:
            log_details.update(details)

        self.log_operation("embedding.batch", status, log_details)

    def log_rerank(self, provider: str, documents: int, status: str = "success", details: Dict[str, Any] = None):
        """Log a rerank call or its fallback."""
        log_details = {"provider": provider, "documents": documents}
        if details:
            log_details.update(details)

        self.log_operation("rerank", status, log_details)

    def log_react_event(self, event: str, step: int, details: Dict[str, Any] = None, status: str = "success"):
        """Log a ReAct engine lifecycle event."""
        log_details = {"step": step}
        if details:
            # Keep prompts and observations out of the log line
            for k, v in details.items():
                if isinstance(v, str) and len(v) > 100:
                    log_details[k] = v[:97] + "..."
                else:
                    log_details[k] = v

        self.log_operation(f"react.{event}", status, log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()
