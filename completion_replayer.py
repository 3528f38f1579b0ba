import time
import urllib.parse
from playwright.sync_api import Error as PlaywrightError

from lesson_manager import ReplayOutcome

# --- CONFIGURATION ---
COMMIT_PATH = "/cmmn/study/cnts/commit.do"
COMMIT_URL = "https://www.keli.kr" + COMMIT_PATH
REPEAT_COUNT = 50
DELAY_BETWEEN_REQUESTS = 10  # ms
PROGRESS_LOG_EVERY = 10

COMMIT_HEADERS = {
    "Accept": "application/json, text/javascript, */*; q=0.01",
    "Content-Type": "application/x-www-form-urlencoded",
    "X-Requested-With": "XMLHttpRequest",
}

# Literal fields reported as a finished, passed lesson
COMPLETION_FIELDS = [
    ("studyTime", "99999999"),
    ("cmi.completion_status", "complete"),
    ("cmi.progress_measure", "1.0"),
    ("save_progress_measure", "1.0"),
    ("content_progress_measure", "1.0"),
    ("cmi.success_status", "passed"),
    ("cmi.score_scaled", "100"),
]

READ_LEARNING_DATA_JS = """() => {
    const data = (window.API && window.API.learningData) || {};
    return { cntsId: data.cntsId || '', refSylbId: data.refSylbId || '' };
}"""

# Runs inside the lesson popup so the session cookie rides along
COMMIT_JS = """async ([url, headers, body]) => {
    const response = await fetch(url, {
        method: 'POST',
        credentials: 'include',
        headers: headers,
        body: body,
    });
    const text = await response.text();
    return { status: response.status, ok: response.ok, text: text };
}"""


def read_learning_data(lesson_page):
    """Reads cntsId / refSylbId off the popup's live API object ('' when missing)."""
    data = lesson_page.evaluate(READ_LEARNING_DATA_JS) or {}
    return {
        "cntsId": data.get("cntsId") or "",
        "refSylbId": data.get("refSylbId") or "",
    }


def build_request_body(lesson_page):
    data = read_learning_data(lesson_page)
    fields = [("cntsId", data["cntsId"]), ("refSylbId", data["refSylbId"])] + COMPLETION_FIELDS
    return urllib.parse.urlencode(fields)


def replay_completion(lesson_page, request_body, repeat_count=REPEAT_COUNT,
                      delay_ms=DELAY_BETWEEN_REQUESTS, commit_url=COMMIT_URL):
    """
    Sends the same completion body `repeat_count` times from inside the lesson popup.
    Requests are strictly sequential; each one is followed by `delay_ms`.
    A failed attempt is logged and counted, never fatal.
    """
    print(f"🚀 Starting automation ({repeat_count} requests)...")
    outcome = ReplayOutcome()

    for i in range(1, repeat_count + 1):
        outcome.attempted += 1
        try:
            print(f"[{i}/{repeat_count}] 📤 Sending request...")
            response = lesson_page.evaluate(COMMIT_JS, [commit_url, COMMIT_HEADERS, request_body]) or {}
            print(f"[{i}/{repeat_count}] 📥 Response ({response.get('status')}): {response.get('text', '')}")
            if response.get("ok"):
                outcome.succeeded += 1
        except PlaywrightError as e:
            print(f"  ❌ Request {i} failed: {e}")

        if i % PROGRESS_LOG_EVERY == 0:
            print(f"  ✅ Progress: {i}/{repeat_count} (Success: {outcome.succeeded})")

        time.sleep(delay_ms / 1000)

    print(f"✔️ Automation complete! (Success: {outcome.succeeded}/{outcome.attempted})")
    return outcome
