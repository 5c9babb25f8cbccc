"""
Lightup Service Base

Services share a ServiceContext (config plus the caller's request id) and a
class-named logger.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from lightup.config import Config
from lightup.logging import get_logger, log_extra


@dataclass
class ServiceContext:
    config: Config
    request_id: Optional[str] = None


class Service:
    """Base class for Lightup services."""

    def __init__(self, context: ServiceContext) -> None:
        self.context = context
        self.config = context.config
        self.logger = get_logger(f"lightup.{self.__class__.__name__}")

    def log_extra(self, **fields: Any) -> Dict[str, Any]:
        """`extra=` fields for this service's log lines, tagged with the request id."""
        return log_extra(request_id=self.context.request_id, **fields)
