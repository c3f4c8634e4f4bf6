"""Unit tests for appointment count extraction."""

import sys
from pathlib import Path

import pytest
from bs4 import BeautifulSoup

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from appointment_tracker.config import Settings
from appointment_tracker.extractor import Extractor, find_by_label, first_integer
from appointment_tracker.models import UNKNOWN, Target

SETTINGS = Settings()
REGULAR = SETTINGS.site(Target.REGULAR)
MOBILE = SETTINGS.site(Target.MOBILE)


def page(body: str, title: str = "NJ MVC | Appointment Wizard") -> str:
    return f"<html><head><title>{title}</title></head><body><div id='mainContent'>{body}</div></body></html>"


PRIMARY_PAGE = page("""
<div class="cardButton">
  <span class="text-black text-uppercase cardButtonTitle">REAL ID</span>
  <span class="text-black cardButtonCount">12 Appointments Available</span>
</div>
<div class="cardButton">
  <span class="text-black text-uppercase cardButtonTitle">REAL ID - MOBILE</span>
  <span class="text-black cardButtonCount">3 Appointments Available</span>
</div>
""")


@pytest.fixture
def extractor(tmp_path):
    return Extractor(debug_dir=tmp_path / "debug")


class TestHelpers:
    """Tests for the pure parsing helpers."""

    @pytest.mark.parametrize("text,expected", [
        ("12 Appointments Available", 12),
        ("Available: 0", 0),
        ("No appointments", None),
        ("", None),
        ("1,204 slots", 1),
    ])
    def test_first_integer(self, text, expected):
        assert first_integer(text) == expected

    def test_find_by_label_requires_exact_text(self):
        soup = BeautifulSoup(PRIMARY_PAGE, "html.parser")
        element = find_by_label(soup, "span.cardButtonTitle", "REAL ID")
        assert element is not None
        assert element.get_text(strip=True) == "REAL ID"

    def test_find_by_label_missing(self):
        soup = BeautifulSoup(PRIMARY_PAGE, "html.parser")
        assert find_by_label(soup, "span.cardButtonTitle", "KNOWLEDGE TEST") is None


class TestStrategies:
    """Tests for the ordered selector strategies."""

    def test_primary_strategy(self, extractor):
        assert extractor.extract(PRIMARY_PAGE, REGULAR) == 12
        assert extractor.extract(PRIMARY_PAGE, MOBILE) == 3

    def test_zero_count(self, extractor):
        html = PRIMARY_PAGE.replace("12 Appointments", "0 Appointments")
        assert extractor.extract(html, REGULAR) == 0

    def test_fallback_strategy(self, extractor):
        html = page("""
        <div class="card-body">
          <h3>REAL ID</h3>
          <div class="card-count">Slots: 8</div>
        </div>
        """)
        assert extractor.extract(html, REGULAR) == 8

    def test_only_third_strategy_matches(self, extractor):
        """Markup that only the last selector strategy understands."""
        html = page("""
        <div>
          <span data-service="real-id-mobile">Mobile REAL ID service</span>
          <span class="appointments">5 open</span>
        </div>
        """)
        assert extractor.extract(html, MOBILE) == 5
        assert extractor.last_debug_path is None

    def test_primary_title_without_number_falls_through(self, extractor):
        """A title with an unparsable count does not stop later strategies."""
        html = page("""
        <div class="cardButton">
          <span class="text-black text-uppercase cardButtonTitle">REAL ID</span>
          <span class="text-black cardButtonCount">Loading...</span>
        </div>
        <div class="card-body"><h3>REAL ID</h3><span class="appointment-count">4</span></div>
        """)
        assert extractor.extract(html, REGULAR) == 4

    def test_text_scan(self, extractor):
        html = page("""
        <div class="overlay-card">
          <p>REAL ID - MOBILE</p>
          <div><em>9 Appointments Available</em></div>
        </div>
        """)
        assert extractor.extract(html, MOBILE) == 9

    def test_text_scan_prefers_exact_label(self, extractor):
        """'REAL ID' must not pick up the mobile card listed first."""
        html = page("""
        <div class="card"><p>REAL ID - MOBILE</p><p>2 Appointments Available</p></div>
        <div class="card"><p>REAL ID</p><p>6 Appointments Available</p></div>
        """)
        assert extractor.extract(html, REGULAR) == 6


class TestFailures:
    """Unparsable pages return UNKNOWN and leave a debug snapshot."""

    def test_no_match_returns_unknown_and_saves_html(self, extractor, tmp_path):
        html = page("<p>Site under maintenance</p>")
        assert extractor.extract(html, REGULAR) == UNKNOWN

        path = extractor.last_debug_path
        assert path is not None
        assert path.exists()
        assert path.parent == tmp_path / "debug"
        assert path.name.startswith("regular-parse-failed-")
        assert path.read_text() == html

    def test_title_found_but_no_integer(self, extractor):
        html = page("""
        <div class="cardButton">
          <span class="text-black text-uppercase cardButtonTitle">REAL ID</span>
          <span class="text-black cardButtonCount">None</span>
        </div>
        """)
        assert extractor.extract(html, REGULAR) == UNKNOWN
        assert extractor.last_debug_path is not None


class TestStructureCheck:
    """Tests for the page-structure heuristic."""

    def test_expected_page_has_no_problems(self, extractor):
        assert extractor.detect_structure_change(PRIMARY_PAGE) == []
        assert extractor.check_structure(PRIMARY_PAGE, REGULAR) is False

    def test_changed_page_is_reported(self, extractor, tmp_path, caplog):
        html = "<html><head><title>Welcome</title></head><body><p>hi</p></body></html>"
        problems = extractor.detect_structure_change(html)
        assert len(problems) == 3

        assert extractor.check_structure(html, MOBILE) is True
        assert "structure change" in caplog.text
        snapshots = list((tmp_path / "debug").glob("mobile-structure-change-*.html"))
        assert len(snapshots) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
