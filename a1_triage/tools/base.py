"""
Base classes for pipeline tools
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Any, Optional
import logging


class BaseTool(ABC):
    """Base class for all triage tools"""

    def __init__(self, config=None):
        self.config = config
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    def get_name(self) -> str:
        """Get tool name"""
        pass

    @abstractmethod
    def get_description(self) -> str:
        """Get tool description"""
        pass

    async def get_status(self) -> Dict[str, Any]:
        """
        Report tool health for status endpoints

        Override to add tool-specific checks (external binaries, RPC reachability).
        """
        return self._status("operational")

    def _status(self, status: str, error: Optional[str] = None, **extra) -> Dict[str, Any]:
        """Helper to create a standardized status payload"""
        payload = {
            "tool": self.get_name(),
            "status": status,
            "last_check": datetime.now(timezone.utc).isoformat(),
        }
        if error:
            payload["error"] = error
        payload.update(extra)
        return payload
