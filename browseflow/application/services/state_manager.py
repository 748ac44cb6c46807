"""
StateManager - page-state snapshots, change detection and extracted data.

Section and action detection are heuristics over the DOM service's
interactive elements. Change detection compares URL, then the Jaccard
distance of section and action sets against a tunable threshold.

Usage:
    state_manager = StateManager(browser, dom_service)
    before = await state_manager.capture_state()
    ...
    after = await state_manager.capture_state()
    if state_manager.has_state_changed(before, after):
        ...
"""

from copy import deepcopy
from typing import Any, Callable, Dict, Iterable, List, Optional, Set
import logging

from browseflow.domain.interfaces.browser import IBrowser, IDomService
from browseflow.domain.models import DomElement, PageState
from browseflow.infrastructure.events.event_bus import LegacyEventEmitter

logger = logging.getLogger(__name__)

DEFAULT_CHANGE_THRESHOLD = 0.5
DEFAULT_CHECKPOINTS_KEPT = 5


def jaccard_distance(first: Iterable[str], second: Iterable[str]) -> float:
    """1 - |A ∩ B| / |A ∪ B|; two empty sets are identical."""
    a, b = set(first), set(second)
    union = a | b
    if not union:
        return 0.0
    return 1 - len(a & b) / len(union)


def deep_merge(target: Dict[str, Any], source: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge `source` into `target`; later values win."""
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            deep_merge(target[key], value)
        else:
            target[key] = deepcopy(value)
    return target


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


# ═══════════════════════════════════════════════════════════════════════════════
# Element heuristics
# ═══════════════════════════════════════════════════════════════════════════════


def _attr(el: DomElement, name: str) -> str:
    return (el.attributes.get(name) or "").lower()


def _text(el: DomElement) -> str:
    return (el.text or "").lower()


def _input_type(el: DomElement) -> str:
    return _attr(el, "type") if el.tag_name.lower() == "input" else ""


def _is_input(el: DomElement) -> bool:
    return el.tag_name.lower() == "input"


def _is_button(el: DomElement) -> bool:
    return el.tag_name.lower() == "button" or _input_type(el) in ("submit", "button")


def _any(elements: List[DomElement], predicate: Callable[[DomElement], bool]) -> bool:
    return any(predicate(el) for el in elements)


def _mentions(el: DomElement, words: Iterable[str], attrs: Iterable[str] = ()) -> bool:
    haystacks = [_text(el)] + [_attr(el, a) for a in attrs]
    return any(word in hay for word in words for hay in haystacks)


def _has_search(elements):
    return _any(elements, lambda el: _is_input(el) and (
        "search" in _attr(el, "placeholder") or "search" in _attr(el, "name")
        or "search" in _attr(el, "id") or _input_type(el) == "search"))


def _has_filters(elements):
    return _any(elements, lambda el: el.tag_name.lower() == "select"
                or _input_type(el) == "checkbox" or "filter" in _text(el))


def _has_results(elements):
    return _any(elements, lambda el: _mentions(el, ("product", "item", "result", "listing"),
                                               ("class", "id")))


def _has_login(elements):
    has_user = _any(elements, lambda el: _is_input(el) and (
        _input_type(el) == "email" or "email" in _attr(el, "name") or "username" in _attr(el, "name")))
    has_password = _any(elements, lambda el: _input_type(el) == "password")
    return has_user and has_password


def _has_navigation(elements):
    return _any(elements, lambda el: any(
        word in el.tag_name.lower() or word in (el.role or "").lower()
        for word in ("nav", "menu", "header")))


def _has_cart(elements):
    return _any(elements, lambda el: _mentions(el, ("cart", "basket", "bag"), ("aria-label",)))


def _has_product_details(elements):
    indicators = ("price", "description", "specifications", "reviews")
    found = [i for i in indicators if _any(elements, lambda el: _mentions(el, (i,), ("class",)))]
    return len(found) >= 2


def _has_checkout(elements):
    return _any(elements, lambda el: _mentions(el, ("checkout", "payment", "billing", "shipping"), ("id",)))


def _has_profile(elements):
    return _any(elements, lambda el: _mentions(el, ("profile", "account", "settings"), ("href",)))


SECTION_DETECTORS: Dict[str, Callable[[List[DomElement]], bool]] = {
    "search": _has_search,
    "filtering": _has_filters,
    "results": _has_results,
    "authentication": _has_login,
    "navigation": _has_navigation,
    "cart": _has_cart,
    "product details": _has_product_details,
    "checkout": _has_checkout,
    "user profile": _has_profile,
}

ACTION_DETECTORS: Dict[str, Callable[[List[DomElement]], bool]] = {
    "search for products": lambda els: _has_search(els) and _any(els, _is_button),
    "apply filters": _has_filters,
    "sort results": lambda els: _any(els, lambda el: _mentions(el, ("sort", "order by"), ("aria-label",))),
    "navigate to other pages": lambda els: _any(els, lambda el: el.tag_name.lower() == "a"),
    "add items to cart": lambda els: _any(els, lambda el: _mentions(el, ("add to cart", "add to bag", "buy now"))),
    "login to account": lambda els: _has_login(els) and _any(
        els, lambda el: _is_button(el) and _mentions(el, ("login", "log in", "sign in"))),
    "proceed to checkout": lambda els: _has_checkout(els) or _any(
        els, lambda el: _mentions(el, ("checkout", "proceed to"))),
    "view product details": lambda els: _any(els, lambda el: _mentions(el, ("view details", "more info"))),
    "compare products": lambda els: _any(els, lambda el: _mentions(el, ("compare",))),
}


def identify_sections(elements: List[DomElement]) -> List[str]:
    return [name for name, detect in SECTION_DETECTORS.items() if detect(elements)]


def identify_actions(elements: List[DomElement]) -> List[str]:
    return [name for name, detect in ACTION_DETECTORS.items() if detect(elements)]


# ═══════════════════════════════════════════════════════════════════════════════
# StateManager
# ═══════════════════════════════════════════════════════════════════════════════


class StateManager:
    """
    Captures PageStates and accumulates extracted data for one workflow run.

    Emits `state:captured`, `checkpoint:created` and `data:extracted`.
    """

    def __init__(
        self,
        browser: IBrowser,
        dom_service: IDomService,
        emitter: Optional[LegacyEventEmitter] = None,
        change_threshold: float = DEFAULT_CHANGE_THRESHOLD,
    ):
        self._browser = browser
        self._dom_service = dom_service
        self._emitter = emitter or LegacyEventEmitter()
        self.change_threshold = change_threshold

        self._current: Optional[PageState] = None
        self._history: List[PageState] = []
        self._extracted: Dict[str, Any] = {}
        self._persistent: Dict[str, Any] = {}
        self._checkpoints: Dict[str, PageState] = {}

    # ═══════════════════════════════════════════════════════════════
    # Capture
    # ═══════════════════════════════════════════════════════════════

    async def capture_state(self) -> PageState:
        """Snapshot the live page; the prior snapshot becomes `previous`."""
        elements = await self._dom_service.get_interactive_elements()
        state = PageState(
            url=self._browser.get_page_url(),
            title=await self._browser.get_title(),
            visible_sections=identify_sections(elements),
            available_actions=identify_actions(elements),
            extracted_data=deepcopy(self._extracted) or None,
            elements=elements,
            screenshot=await self._dom_service.get_highlighted_screenshot(),
            pristine_screenshot=await self._dom_service.get_pristine_screenshot(),
        )
        self._set_current(state)
        return state

    async def capture_state_with_data(self, extracted_data: Dict[str, Any]) -> PageState:
        self.merge_extracted_data(extracted_data)
        return await self.capture_state()

    def record_state(self, state: PageState) -> PageState:
        """Adopt a snapshot produced elsewhere (e.g. the executor's final state)."""
        if state.extracted_data:
            self.merge_extracted_data(state.extracted_data)
        self._set_current(state)
        return state

    def _set_current(self, state: PageState) -> None:
        self._history.append(state)
        self._current = state
        self._emitter.emit("state:captured", {
            "url": state.url,
            "visible_sections": list(state.visible_sections),
            "available_actions": list(state.available_actions),
        })

    def has_state_changed(self, previous: PageState, current: PageState) -> bool:
        """
        True if the URL differs or more than `change_threshold` of the
        sections or actions changed (Jaccard distance).
        """
        if previous.url != current.url:
            return True
        if jaccard_distance(previous.visible_sections, current.visible_sections) > self.change_threshold:
            return True
        return jaccard_distance(previous.available_actions, current.available_actions) > self.change_threshold

    # ═══════════════════════════════════════════════════════════════
    # Extracted data
    # ═══════════════════════════════════════════════════════════════

    def add_extracted_data(self, key: str, value: Any) -> None:
        """Store one value; None and empty strings are ignored."""
        if _is_empty(value):
            return
        self._extracted[key] = deepcopy(value)
        self._persistent[key] = deepcopy(value)
        self._emitter.emit("data:extracted", {"keys": [key]})

    def merge_extracted_data(self, data: Dict[str, Any]) -> None:
        """Deep-merge new data; later writes to the same key win."""
        accepted = {k: v for k, v in (data or {}).items() if not _is_empty(v)}
        if not accepted:
            return
        deep_merge(self._extracted, accepted)
        deep_merge(self._persistent, accepted)
        logger.debug(f"Merged extracted data keys: {sorted(accepted)}")
        self._emitter.emit("data:extracted", {"keys": sorted(accepted)})

    def get_extracted_data(self, key: str) -> Any:
        return self._extracted.get(key)

    def get_all_extracted_data(self) -> Dict[str, Any]:
        merged = deepcopy(self._persistent)
        return deep_merge(merged, self._extracted)

    def get_persistent_data(self) -> Dict[str, Any]:
        """Data that survives clear_extracted_data()."""
        return deepcopy(self._persistent)

    def clear_extracted_data(self) -> None:
        self._extracted.clear()

    def clear_all_extracted_data(self) -> None:
        self._extracted.clear()
        self._persistent.clear()

    # ═══════════════════════════════════════════════════════════════
    # Checkpoints and history
    # ═══════════════════════════════════════════════════════════════

    def create_checkpoint(self, name: str) -> bool:
        """
        Snapshot current state plus all extracted data under `name`.

        Returns:
            False if there is no current state yet
        """
        if self._current is None:
            return False
        snapshot = deepcopy(self._current)
        snapshot.extracted_data = self.get_all_extracted_data()
        self._checkpoints[name] = snapshot
        self._emitter.emit("checkpoint:created", {"name": name, "url": snapshot.url})
        return True

    def get_checkpoint(self, name: str) -> Optional[PageState]:
        return self._checkpoints.get(name)

    def get_checkpoint_names(self) -> List[str]:
        return list(self._checkpoints)

    def clear_old_checkpoints(self, keep_last: int = DEFAULT_CHECKPOINTS_KEPT) -> int:
        names = self.get_checkpoint_names()
        stale = names[:max(0, len(names) - keep_last)]
        for name in stale:
            del self._checkpoints[name]
        return len(stale)

    def get_state_history(self) -> List[PageState]:
        return list(self._history)

    def get_current_state(self) -> Optional[PageState]:
        return self._current

    def get_previous_state(self) -> Optional[PageState]:
        return self._history[-2] if len(self._history) > 1 else None

    def clear_history(self) -> None:
        self._history.clear()
        self._current = None

    def get_visible_sections(self) -> Set[str]:
        return set(self._current.visible_sections) if self._current else set()
