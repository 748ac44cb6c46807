"""
Browser and DOM service contracts.

A Browser is stateful with a single active page per instance. The engine
only drives launch/close and reads URL/title/content; concrete actions
are issued by the executor through the same object.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from browseflow.domain.models.page_state import DomElement


class IBrowser(ABC):
    """Opaque browser capability."""

    @abstractmethod
    async def launch(self, url: str) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    def get_page_url(self) -> str:
        pass

    @abstractmethod
    async def get_title(self) -> str:
        pass

    @abstractmethod
    async def go_to_url(self, url: str) -> None:
        pass

    @abstractmethod
    async def go_back(self) -> None:
        pass

    @abstractmethod
    async def mouse_click(self, x: float, y: float) -> None:
        pass

    @abstractmethod
    async def fill_input(self, text: str, x: float, y: float) -> None:
        pass

    @abstractmethod
    async def scroll_down(self) -> None:
        pass

    @abstractmethod
    async def scroll_up(self) -> None:
        pass

    @abstractmethod
    async def hover(self, x: float, y: float) -> None:
        pass

    @abstractmethod
    async def select_option(self, selector: str, value: str) -> None:
        pass

    @abstractmethod
    async def wait_for_element(self, selector: str, condition: str = "visible",
                               timeout_ms: int = 5000) -> bool:
        pass

    @abstractmethod
    async def extract_content(self) -> str:
        """Page content as text/markdown."""
        pass

    @abstractmethod
    async def screenshot(self) -> Optional[str]:
        """Base64 screenshot of the viewport, if available."""
        pass


class IDomService(ABC):
    """Interactive-element enumeration and screenshots for agents."""

    @abstractmethod
    async def get_interactive_elements(self) -> List[DomElement]:
        pass

    @abstractmethod
    async def get_pristine_screenshot(self) -> Optional[str]:
        pass

    @abstractmethod
    async def get_highlighted_screenshot(self) -> Optional[str]:
        """Screenshot with interactive elements outlined and indexed."""
        pass
