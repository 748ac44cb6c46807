"""
Page state snapshots.

A PageState is the semantic view of the live page the planner, executor
and evaluator reason about: URL, title, high-level sections, affordances
and any extracted data.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class DomElement:
    """An interactive element enumerated by the DOM service."""
    tag_name: str
    selector: str = ""
    text: Optional[str] = None
    attributes: Dict[str, str] = field(default_factory=dict)
    index: int = 0
    is_visible: bool = True
    is_interactable: bool = True
    role: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag_name": self.tag_name,
            "selector": self.selector,
            "text": self.text,
            "attributes": dict(self.attributes),
            "index": self.index,
            "is_visible": self.is_visible,
            "is_interactable": self.is_interactable,
            "role": self.role,
        }


@dataclass
class PageState:
    """Semantic snapshot of the page at one moment."""
    url: str
    title: str = ""
    visible_sections: List[str] = field(default_factory=list)
    available_actions: List[str] = field(default_factory=list)
    extracted_data: Optional[Dict[str, Any]] = None
    elements: List[DomElement] = field(default_factory=list)
    screenshot: Optional[str] = None
    pristine_screenshot: Optional[str] = None
    captured_at: datetime = field(default_factory=datetime.now)

    def has_extracted_data(self) -> bool:
        return bool(self.extracted_data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "visible_sections": list(self.visible_sections),
            "available_actions": list(self.available_actions),
            "extracted_data": self.extracted_data,
            "captured_at": self.captured_at.isoformat(),
        }
