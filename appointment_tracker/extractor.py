"""Appointment count extraction with selector fallback strategies."""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from bs4 import BeautifulSoup, NavigableString, Tag

from .config import DEFAULT_DEBUG_DIR
from .debug import save_debug_html
from .models import UNKNOWN, Target, TargetSite

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectorStrategy:
    """Locate a title element, then a count element next to it."""
    name: str
    title_selector: str
    count_selectors: tuple[str, ...]
    # None accepts any element matched by title_selector
    title_text: Optional[str] = None


def _strategies(card_title: str, service: str) -> list[SelectorStrategy]:
    return [
        SelectorStrategy(
            name="Primary Strategy",
            title_selector="span.text-black.text-uppercase.cardButtonTitle",
            title_text=card_title,
            count_selectors=("span.text-black.cardButtonCount",),
        ),
        SelectorStrategy(
            name="Fallback Strategy",
            title_selector=".card-body h3",
            title_text=card_title,
            count_selectors=(".appointment-count", ".card-count"),
        ),
        SelectorStrategy(
            name="Last Resort Strategy",
            title_selector=f'[data-service="{service}"]',
            count_selectors=(".count", ".number", ".appointments"),
        ),
    ]


# Site-specific strategies, tried in order before the text scan
SELECTOR_STRATEGIES: dict[Target, list[SelectorStrategy]] = {
    Target.REGULAR: _strategies("REAL ID", "real-id"),
    Target.MOBILE: _strategies("REAL ID - MOBILE", "real-id-mobile"),
}

# Text scan fallback
CARD_CONTAINER_CLASSES = ["overlay-card", "cardButton", "card"]
AVAILABLE_PATTERN = re.compile(r"(\d+)\s*Appointments?\s*Available", re.IGNORECASE)

# Structure checks
EXPECTED_TITLE_KEYWORDS = ("appointment", "njmvc", "telegov")
EXPECTED_CONTAINER = "#mainContent"
EXPECTED_CARD_SELECTOR = ".cardButton, .cardButtonTitle, .cardButtonCount"

_INTEGER = re.compile(r"\d+")


def first_integer(text: str) -> Optional[int]:
    """Return the first run of digits in text as an int."""
    if not text:
        return None
    match = _INTEGER.search(text)
    return int(match.group(0)) if match else None


def find_by_label(soup: Tag, selector: str, label: Optional[str]) -> Optional[Tag]:
    """First element matching selector whose stripped text equals label."""
    for element in soup.select(selector):
        if label is None or element.get_text(strip=True) == label:
            return element
    return None


def find_count_element(title: Tag, selectors: tuple[str, ...]) -> Optional[Tag]:
    """Search the title's parent for the first selector that matches."""
    scope = title.parent if title.parent is not None else title
    for selector in selectors:
        element = scope.select_one(selector)
        if element is not None:
            return element
    return None


def _apply_strategy(soup: BeautifulSoup, strategy: SelectorStrategy, target: str) -> Optional[int]:
    title = find_by_label(soup, strategy.title_selector, strategy.title_text)
    if title is None:
        return None

    count_element = find_count_element(title, strategy.count_selectors)
    if count_element is None:
        logger.warning(f"Count element not found using {strategy.name} for {target}")
        return None

    count_text = count_element.get_text(strip=True)
    logger.debug(f'Found count text: "{count_text}" using {strategy.name} for {target}')
    count = first_integer(count_text)
    if count is None:
        logger.warning(f'Failed to parse count from text: "{count_text}" ({strategy.name}, {target})')
    return count


def scan_text_for_count(soup: BeautifulSoup, label: str) -> Optional[int]:
    """
    Find text containing label, climb to its card and read "N Appointments Available".

    Exact label matches are tried before partial ones so "REAL ID" does not
    pick up the "REAL ID - MOBILE" card when both are on the page.
    """
    matches = [s for s in soup.find_all(string=True) if label in s]
    matches.sort(key=lambda s: s.strip() != label)

    for text in matches:
        if not isinstance(text, NavigableString):
            continue
        card = text.find_parent(class_=CARD_CONTAINER_CLASSES)
        if card is None:
            continue
        found = AVAILABLE_PATTERN.search(card.get_text(" ", strip=True))
        if found:
            return int(found.group(1))
    return None


class Extractor:
    """
    Pulls the REAL ID appointment count out of a fetched page.

    Strategies are tried in order; the first that finds the card title and
    parses an integer wins. If none does, the page is saved to debug_dir and
    UNKNOWN is returned.
    """

    def __init__(
        self,
        debug_dir: Path = Path(DEFAULT_DEBUG_DIR),
        strategies: Optional[dict[Target, list[SelectorStrategy]]] = None,
    ):
        self.debug_dir = Path(debug_dir)
        self.strategies = strategies or SELECTOR_STRATEGIES
        self.last_debug_path: Optional[Path] = None

    def extract(self, html: str, site: TargetSite) -> int:
        """Return the appointment count for site, or UNKNOWN."""
        target = site.target.value
        soup = BeautifulSoup(html, "html.parser")

        for strategy in self.strategies.get(site.target, []):
            logger.debug(f"Trying {strategy.name} for {target} site")
            count = _apply_strategy(soup, strategy, target)
            if count is not None:
                logger.debug(f"Parsed {target} site using {strategy.name}: {count}")
                return count

        logger.info(f"Trying text scan extraction for {target} site")
        count = scan_text_for_count(soup, site.card_title)
        if count is not None:
            logger.info(f"Extracted count using text scan: {count}")
            return count

        logger.warning(f"Failed to parse {target} site with all strategies")
        self.last_debug_path = save_debug_html(self.debug_dir, target, "parse-failed", html)
        return UNKNOWN

    def detect_structure_change(self, html: str) -> list[str]:
        """List the ways a page differs from the expected appointment page."""
        soup = BeautifulSoup(html, "html.parser")
        problems = []

        title = soup.title.get_text(strip=True).lower() if soup.title else ""
        if not any(keyword in title for keyword in EXPECTED_TITLE_KEYWORDS):
            problems.append(f"Website title changed: {title!r}")
        if soup.select_one(EXPECTED_CONTAINER) is None:
            problems.append("Main content element not found")
        if not soup.select(EXPECTED_CARD_SELECTOR):
            problems.append("No card elements found on page")
        return problems

    def check_structure(self, html: str, site: TargetSite) -> bool:
        """Warn (non-fatal) and keep a snapshot if the page looks different."""
        problems = self.detect_structure_change(html)
        if not problems:
            return False
        target = site.target.value
        logger.warning(
            f"Possible website structure change detected for {target} site: "
            + "; ".join(problems)
        )
        save_debug_html(self.debug_dir, target, "structure-change", html)
        return True
