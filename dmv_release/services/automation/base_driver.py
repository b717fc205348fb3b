"""
Abstract base class for automation drivers

Defines the step primitives the release sequencer is allowed to use. Any
headless-browser backend that implements them can drive the release form.
Every primitive takes a timeout in seconds; exceeding it raises
StepTimeoutError.
"""

from abc import ABC, abstractmethod
from typing import Sequence


class AutomationDriver(ABC):
    """One short-lived browser session, owned by a single vehicle job"""

    screenshot_mime = "image/png"

    @abstractmethod
    async def start(self) -> None:
        """Acquire the browser session"""

    @abstractmethod
    async def navigate(self, url: str, timeout: float) -> None:
        """Load a URL and wait until the document is interactive"""

    @abstractmethod
    async def fill(self, selectors: Sequence[str], value: str, field: str, timeout: float) -> None:
        """Replace the value of the first visible field matching any selector"""

    @abstractmethod
    async def select(self, selectors: Sequence[str], value: str, field: str, timeout: float) -> None:
        """Choose an option of a dropdown or radio group by its value"""

    @abstractmethod
    async def click(self, selectors: Sequence[str], field: str, timeout: float) -> None:
        """Click the first visible element matching any selector"""

    @abstractmethod
    async def wait_for_settle(self, timeout: float) -> None:
        """Wait for the current page to stop loading"""

    @abstractmethod
    async def read_text(self, timeout: float) -> str:
        """Visible text content of the current page"""

    @abstractmethod
    async def screenshot(self, timeout: float) -> bytes:
        """Full-page image of the current page"""

    @abstractmethod
    async def close(self) -> None:
        """Release the browser session; safe to call more than once"""

    @abstractmethod
    def get_backend_name(self) -> str:
        """Get the name of this backend"""
