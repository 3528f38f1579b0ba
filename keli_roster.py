import os
import re
import yaml
from bs4 import BeautifulSoup

from lesson_manager import LaunchIds, LessonRecord, count_completed

# --- CONFIGURATION ---
CONFIG_FILE = "config.yaml"

DEFAULT_CONFIG = {
    "base_url": "https://www.keli.kr",
    "classroom_id": "APL00000000000503603",
    "repeat_count": 50,
    "delay_between_requests_ms": 10,
    "popup_settle_ms": 2000,
    "return_settle_ms": 2000,
    "navigation_timeout_ms": 30000,
    "return_timeout_ms": 90000,
    "api_ready_timeout_ms": 30000,
    "popup_width": 1300,
    "popup_height": 800,
    "close_lesson_popup": False,
    "headless": False,
    "cdp_url": None,
}

# Roster markup as rendered by the classroom main page
ROSTER_SCHEMA = {
    "row": "table.tbl_col tbody tr",
    "group_header": "th.group",
    "title": "td.al .td",
    "cell_value": ".td",
    "study_button": "a.c_btn.sm.blue",
}
PROGRESS_CELL = 2  # 0-based position among the row's <td>s
STATUS_CELL = 4
COMPLETION_MARKER = "학습완료"
DEFAULT_PROGRESS = "0%"

# Known shapes of the study button's onclick, newest last.
# A pattern must capture (contentId, batchId) in groups 1 and 2.
LAUNCH_DIRECTIVE_PATTERNS = [
    ("studyCntsStart/v1", re.compile(r"REQ\.studyCntsStart\('([^']+)','([^']+)',")),
    ("studyCntsStart/v2", re.compile(r"REQ\.studyCntsStart\(\s*[\"']([^\"']+)[\"']\s*,\s*[\"']([^\"']+)[\"']\s*,")),
]


def load_config(path=CONFIG_FILE):
    """Loads config.yaml on top of DEFAULT_CONFIG. Missing or broken file -> defaults."""
    config = dict(DEFAULT_CONFIG)
    if not os.path.exists(path):
        return config
    try:
        with open(path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        print(f"⚠️  Could not read {path}, using defaults: {e}")
        return config

    if not isinstance(loaded, dict):
        print(f"⚠️  {path} is not a mapping, using defaults.")
        return config

    unknown = sorted(set(loaded) - set(DEFAULT_CONFIG))
    if unknown:
        print(f"⚠️  Ignoring unknown config keys: {unknown}")
    for key, value in loaded.items():
        if key not in DEFAULT_CONFIG:
            continue
        try:
            config[key] = _coerce_setting(key, value)
        except (TypeError, ValueError):
            print(f"⚠️  Bad value for {key!r} ({value!r}), keeping {DEFAULT_CONFIG[key]!r}")
    return config


def _coerce_setting(key, value):
    """Matches a YAML value to the type of its default ("50" -> 50)."""
    default = DEFAULT_CONFIG[key]
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        raise ValueError(key)
    if isinstance(default, int):
        if isinstance(value, bool):
            raise ValueError(key)
        return int(value)
    # str settings, plus cdp_url which may stay null
    if value is None and default is None:
        return None
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        return str(value)
    raise ValueError(key)


def roster_url(config):
    return f"{config['base_url']}/user/study/classroom/main.do?crsAplcntId={config['classroom_id']}"


def parse_launch_directive(onclick):
    """
    Recovers (contentId, batchId) from a study button's onclick.
    Returns LaunchIds, or None when no known pattern matches.
    """
    if not onclick:
        return None
    for _, pattern in LAUNCH_DIRECTIVE_PATTERNS:
        match = pattern.search(onclick)
        if match:
            return LaunchIds(match.group(1), match.group(2))
    return None


def _cell_text(cells, position):
    if position >= len(cells):
        return None
    value = cells[position].select_one(ROSTER_SCHEMA["cell_value"])
    if value is None:
        return None
    return value.get_text().strip()


def parse_lessons(html):
    """
    Turns the classroom page markup into LessonRecords, in document order.
    Group headers and rows without a title or study button are skipped.
    """
    soup = BeautifulSoup(html, "html.parser")
    lessons = []

    for row in soup.select(ROSTER_SCHEMA["row"]):
        if row.select_one(ROSTER_SCHEMA["group_header"]):
            continue

        title_div = row.select_one(ROSTER_SCHEMA["title"])
        study_btn = row.select_one(ROSTER_SCHEMA["study_button"])
        if title_div is None or study_btn is None:
            continue

        cells = row.find_all("td")
        progress = _cell_text(cells, PROGRESS_CELL) or DEFAULT_PROGRESS
        status = _cell_text(cells, STATUS_CELL) or ""

        lessons.append(LessonRecord.from_row(
            title=title_div.get_text().strip(),
            progress_label=progress,
            completed=COMPLETION_MARKER in status,
            launch_ids=parse_launch_directive(study_btn.get("onclick")),
        ))

    return lessons


def read_roster(page):
    """Parses the roster currently rendered in the main tab."""
    return parse_lessons(page.content())


def print_roster(lessons):
    print(f"\nFound {len(lessons)} lessons:")
    for i, lesson in enumerate(lessons, 1):
        status = "✓" if lesson.completed else "✗"
        print(f"{status} {i}. {lesson.title} ({lesson.progress_label})")
    print(f"\nCompleted: {count_completed(lessons)}/{len(lessons)} lessons")
