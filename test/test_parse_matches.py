"""
Test suite for parse_match and the HTML row helpers.

Run with: pytest test/test_parse_matches.py
     or: python test/test_parse_matches.py
"""

import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add parent directory to path so the package imports without installation
sys.path.insert(0, str(Path(__file__).parent.parent))

from wrestling_ratings.models import MatchRecord, MatchResult, Wrestler
from wrestling_ratings.parse_matches import (
    extract_event_rows,
    extract_match_rows,
    parse_event_date,
    parse_match,
    validate_match,
)


class ParseCase:
    def __init__(self, name: str, input_text: str, expected: Optional[Dict[str, Any]]):
        self.name = name
        self.input_text = input_text
        self.expected = expected


def flatten(record: Optional[MatchRecord]) -> Optional[Dict[str, Any]]:
    if record is None:
        return None
    return {
        "round": record.tournament_round,
        "winner_first": record.winner.first_name,
        "winner_last": record.winner.last_name,
        "winner_school": record.winner.school,
        "loser_first": record.loser.first_name,
        "loser_last": record.loser.last_name,
        "loser_school": record.loser.school,
        "type": record.result.type,
        "score": record.result.score,
        "time": record.result.time,
    }


# Define test cases with expected outputs (None = not a match)
TEST_CASES = [
    ParseCase(
        name="Plain fall",
        input_text="John Smith (Utah High) over Mike Johnson (Utah High) (Fall 1:30)",
        expected={
            "round": None,
            "winner_first": "John",
            "winner_last": "Smith",
            "winner_school": "Utah High",
            "loser_first": "Mike",
            "loser_last": "Johnson",
            "loser_school": "Utah High",
            "type": "fall",
            "time": "1:30",
        }
    ),

    ParseCase(
        name="Round prefix with major decision",
        input_text="Cons. Semis - Logan McNally (Wasatch) over Adam Mitchell (Cedar Valley) (MD 9-1)",
        expected={
            "round": "Cons. Semis",
            "winner_first": "Logan",
            "winner_last": "McNally",
            "winner_school": "Wasatch",
            "loser_first": "Adam",
            "loser_last": "Mitchell",
            "loser_school": "Cedar Valley",
            "type": "major-decision",
            "score": "9-1",
            "time": None,
        }
    ),

    ParseCase(
        name="Tech fall with nested score and bracket records",
        input_text="Quarterfinal - Taylor Misuna (Grassfield High School) 3-0 won by tech fall over Kenneth Hamilton (Gloucester) 1-3 (TF-1.5 4:26 (18-3))",
        expected={
            "round": "Quarterfinal",
            "winner_first": "Taylor",
            "winner_last": "Misuna",
            "winner_school": "Grassfield High School",
            "loser_first": "Kenneth",
            "loser_last": "Hamilton",
            "loser_school": "Gloucester",
            "type": "technical-fall",
            "score": "18-3",
            "time": "4:26",
        }
    ),

    ParseCase(
        name="Tech fall with plain token",
        input_text="Semifinal - Ana Ruiz (Layton) over Beth Cole (Syracuse) (TF 17-2 3:58)",
        expected={
            "round": "Semifinal",
            "type": "technical-fall",
            "score": "17-2",
            "time": "3:58",
        }
    ),

    ParseCase(
        name="Decision, 'Jr HS' suffix removed from schools",
        input_text="Round 1 - Tom Wilson (Lincoln Jr HS) 7-2 won by decision over Sam Davis (Jefferson Jr HS) 4-3 (Dec 8-4)",
        expected={
            "round": "Round 1",
            "winner_first": "Tom",
            "winner_last": "Wilson",
            "winner_school": "Lincoln",
            "loser_first": "Sam",
            "loser_last": "Davis",
            "loser_school": "Jefferson",
            "type": "decision",
            "score": "8-4",
        }
    ),

    ParseCase(
        name="'HS' suffix removed from school",
        input_text="Aubrey Hastings (Cumberland HS) over Jillian Boncore (Alvirne) (Fall 3:47)",
        expected={
            "winner_school": "Cumberland",
            "loser_school": "Alvirne",
            "type": "fall",
            "time": "3:47",
        }
    ),

    ParseCase(
        name="Nickname in parentheses",
        input_text="Cons. Round 2 - Bilegt (Billy) Arslan (Mclean ) 2-1 won by decision over Collin Carr (Heritage-Leesburg) 1-2 (Dec 4-0)",
        expected={
            "round": "Cons. Round 2",
            "winner_first": "Bilegt",
            "winner_last": "(Billy) Arslan",
            "winner_school": "Mclean",
            "loser_first": "Collin",
            "loser_last": "Carr",
            "loser_school": "Heritage-Leesburg",
            "type": "decision",
            "score": "4-0",
        }
    ),

    ParseCase(
        name="Hyphen in name with bare result token",
        input_text="Jamil Reyes (Osbourn) over Jadin Sampson - Johnson (Chancellor) Fall 3:34",
        expected={
            "round": None,
            "winner_first": "Jamil",
            "winner_last": "Reyes",
            "winner_school": "Osbourn",
            "loser_first": "Jadin",
            "loser_last": "Sampson - Johnson",
            "loser_school": "Chancellor",
            "type": "fall",
            "time": "3:34",
        }
    ),

    ParseCase(
        name="Forfeit counts as decision without score",
        input_text="Cody Lee (Bear River) over Sam Ortiz (Logan) (Forfeit)",
        expected={
            "type": "decision",
            "score": None,
            "time": None,
        }
    ),

    ParseCase(
        name="Unrecognized token defaults to decision",
        input_text="Cody Lee (Bear River) over Sam Ortiz (Logan) (SV-1 5-3)",
        expected={
            "type": "decision",
            "score": None,
        }
    ),

    ParseCase(
        name="Single-word name gets Unknown last name",
        input_text="Cody Lee (Bear River) over Ortiz (Logan) (Dec 3-2)",
        expected={
            "loser_first": "Ortiz",
            "loser_last": "Unknown",
            "loser_school": "Logan",
            "type": "decision",
            "score": "3-2",
        }
    ),

    ParseCase(
        name="'-Forfeit' suffix removed from name",
        input_text="Keyanta Robinson-Forfeit (Kellam) over Joe Park (Ocean Lakes) (Dec 5-1)",
        expected={
            "winner_first": "Keyanta",
            "winner_last": "Robinson",
        }
    ),

    ParseCase(
        name="Forfeit Bye opponent is not a match",
        input_text="Quarterfinal - Taylor Misuna (Grassfield High School) 3-0 won by tech fall over Forfeit Bye (Hanover High School) 1-3 (TF-1.5 4:26 (18-3))",
        expected=None,
    ),

    ParseCase(
        name="Empty opponent is not a match",
        input_text="Champ. Round 1 - Aiden Blackwelder (Glen Allen) 9-6 won by forfeit over () (For.)",
        expected=None,
    ),

    ParseCase(
        name="Double forfeit has no winner",
        input_text="Round 5 - Cooper Green (CATHOLIC) 2-3 and Daniel Hasbun (HICKORY) 2-3 (DFF)",
        expected=None,
    ),

    ParseCase(
        name="Missing result token",
        input_text="Cody Lee (Bear River) over Sam Ortiz (Logan) 12-3",
        expected=None,
    ),

    ParseCase(
        name="Too short",
        input_text="a over b",
        expected=None,
    ),
]


def compare_results(actual: Optional[Dict[str, Any]], expected: Optional[Dict[str, Any]]) -> tuple:
    """Compare actual and expected results, return (success, differences)."""
    if expected is None or actual is None:
        if expected is None and actual is None:
            return True, []
        return False, [f"  expected {expected!r}, got {actual!r}"]
    differences: List[str] = []
    for key, expected_value in expected.items():
        actual_value = actual.get(key)
        if expected_value != actual_value:
            differences.append(f"  {key}: expected {expected_value!r}, got {actual_value!r}")
    return len(differences) == 0, differences


@pytest.mark.parametrize("case", TEST_CASES, ids=[c.name for c in TEST_CASES])
def test_parse_match_cases(case: ParseCase):
    actual = flatten(parse_match(case.input_text, "145"))
    success, differences = compare_results(actual, case.expected)
    assert success, "\n".join(differences)


def test_weight_class_date_and_raw_text_carried():
    d = date(2025, 1, 18)
    rec = parse_match("  John  Smith (Utah High)\xa0over Mike Johnson (Utah High) (Fall 1:30) ", " 145 ", d)
    assert rec is not None
    assert rec.weight_class == "145"
    assert rec.event_date == d
    assert rec.raw_text == "John Smith (Utah High) over Mike Johnson (Utah High) (Fall 1:30)"
    assert rec.result.raw == "Fall 1:30"


@pytest.mark.parametrize("bad", [None, "", "short", 12345, ["list"], "no grammar here at all"])
def test_parse_match_never_raises(bad):
    assert parse_match(bad, "145") is None


def test_unrecognized_token_is_logged(caplog):
    with caplog.at_level(logging.DEBUG, logger="wrestling_ratings.parse_matches"):
        rec = parse_match("Cody Lee (Bear River) over Sam Ortiz (Logan) (Inj. 2:10)", "152")
    assert rec is not None and rec.result.type == "decision"
    assert any("unrecognized result token" in r.getMessage() for r in caplog.records)


def test_validate_match():
    good = parse_match("John Smith (Utah High) over Mike Johnson (Utah High) (Fall 1:30)", "145")
    assert validate_match(good)
    assert not validate_match(None)

    no_first = MatchRecord("145", Wrestler("", "Smith"), Wrestler("Mike", "Johnson"), MatchResult("fall", "Fall"))
    assert not validate_match(no_first)
    blank_last = MatchRecord("145", Wrestler("John", "Smith"), Wrestler("Mike", "  "), MatchResult("fall", "Fall"))
    assert not validate_match(blank_last)
    bad_type = MatchRecord("145", Wrestler("John", "Smith"), Wrestler("Mike", "Johnson"), MatchResult("pin", "Pin"))
    assert not validate_match(bad_type)
    no_type = MatchRecord("145", Wrestler("John", "Smith"), Wrestler("Mike", "Johnson"), MatchResult("", "?"))
    assert not validate_match(no_type)


@pytest.mark.parametrize("text,expected", [
    ("12/06 - 12/07/2024", date(2024, 12, 6)),
    ("01/15/2025", date(2025, 1, 15)),
    ("1/4/2025", date(2025, 1, 4)),
    ("2025-01-15", date(2025, 1, 15)),
    ("Jan 15, 2025", date(2025, 1, 15)),
    ("January 15, 2025", date(2025, 1, 15)),
    ("Sept. 30, 2024", date(2024, 9, 30)),
    ("TBD", None),
    ("", None),
    (None, None),
    ("13/45/2025", None),
])
def test_parse_event_date(text, expected):
    assert parse_event_date(text) == expected


EVENTS_HTML = """
<table class="dataGrid">
  <tr class="dataGridHeader"><td></td><td>Date</td><td>Event</td></tr>
  <tr class="dataGridRow">
    <td>1</td><td>12/06 - 12/07/2024</td>
    <td><a href="javascript:openEvent(111)" onclick="javascript:openEvent(111)">Tooele Invitational</a></td>
  </tr>
  <tr class="dataGridRow">
    <td>2</td><td>01/10/2025</td>
    <td><a href="javascript:openEvent(222)">Box Elder vs Logan</a> <a href="#">  </a></td>
  </tr>
  <tr class="dataGridRow"><td>only two</td><td>cells</td></tr>
</table>
"""


def test_extract_event_rows():
    rows = extract_event_rows(EVENTS_HTML)
    assert [r["text"] for r in rows] == ["Tooele Invitational", "Box Elder vs Logan"]
    assert rows[0]["date_text"] == "12/06 - 12/07/2024"
    assert rows[0]["locator"] == "javascript:openEvent(111)"
    assert rows[1]["locator"] == "javascript:openEvent(222)"
    assert rows[1]["index"] == 1


MATCHES_GRID_HTML = """
<table class="dataGrid">
  <tr class="dataGridRow"><td>1</td><td>145</td><td>John Smith (Utah High) over Mike Johnson (Utah High) (Fall 1:30)</td></tr>
  <tr class="dataGridRow"><td>2</td><td>152</td><td>Bye</td></tr>
  <tr class="dataGridRow"><td>3</td><td>160&nbsp;</td><td>Cody Lee (Bear River)   over Sam Ortiz (Logan) (Dec 3-2)</td></tr>
</table>
"""

ROUND_LIST_HTML = """
<section class="tw-list">
  <h2>106</h2>
  <ul>
    <li>Round 1 - A Able (X) over B Baker (Y) (Dec 4-2)</li>
    <li>Round 1 - C Cole (Z) received a bye</li>
  </ul>
  <h2>113</h2>
  <ul><li>Final - D Dunn (X) over E Eng (Y) (Fall 0:45)</li></ul>
</section>
"""


def test_extract_match_rows_from_grid():
    rows = extract_match_rows(MATCHES_GRID_HTML)
    assert [(r.weight_class, r.text) for r in rows] == [
        ("145", "John Smith (Utah High) over Mike Johnson (Utah High) (Fall 1:30)"),
        ("160", "Cody Lee (Bear River) over Sam Ortiz (Logan) (Dec 3-2)"),
    ]


def test_extract_match_rows_from_round_list():
    rows = extract_match_rows(ROUND_LIST_HTML)
    assert [(r.weight_class, r.text) for r in rows] == [
        ("106", "Round 1 - A Able (X) over B Baker (Y) (Dec 4-2)"),
        ("113", "Final - D Dunn (X) over E Eng (Y) (Fall 0:45)"),
    ]


def run_tests():
    """Run all table cases and report results."""
    passed = 0
    failed = 0
    print(f"Running {len(TEST_CASES)} test cases...\n")
    for i, case in enumerate(TEST_CASES, 1):
        actual = flatten(parse_match(case.input_text, "145"))
        success, differences = compare_results(actual, case.expected)
        if success:
            print(f"[{i}/{len(TEST_CASES)}] PASSED {case.name}")
            passed += 1
        else:
            print(f"[{i}/{len(TEST_CASES)}] FAILED {case.name}")
            for diff in differences:
                print(diff)
            failed += 1
    print(f"\nResults: {passed} passed, {failed} failed out of {len(TEST_CASES)} tests")
    return 0 if failed == 0 else 1


if __name__ == "__main__":
    raise SystemExit(run_tests())
