import os
import sys
import time
import argparse
import getpass
from playwright.sync_api import sync_playwright
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from plyer import notification

from completion_replayer import COMMIT_PATH, build_request_body, replay_completion
from keli_roster import CONFIG_FILE, ROSTER_SCHEMA, load_config, print_roster, read_roster, roster_url
from lesson_manager import select_next_lesson

# --- CONFIGURATION ---
LOGIN_PATH = "/cmmn/login.do"
SESSION_COOKIE = "JSESSIONID"
POPUP_POLL_INTERVAL = 0.25  # seconds between window-list checks

LAUNCH_JS = """([contentId, batchId, width, height]) => {
    window.REQ.studyCntsStart(contentId, batchId, width, height);
}"""
API_READY_JS = "() => typeof window.API !== 'undefined'"

# Suppress Playwright/Node deprecation warnings
os.environ["NODE_OPTIONS"] = "--no-deprecation"


class PopupNotFound(Exception):
    pass


class LoginFailed(Exception):
    pass


def notify(message):
    try:
        notification.notify(title="KELI Autopilot", message=message)
    except Exception as e:
        print(f"   └── (notification unavailable: {e})")


def login(page, username, password, config):
    login_url = f"{config['base_url']}{LOGIN_PATH}"
    print(f"\nNavigating to {login_url}...")
    page.goto(login_url, wait_until="networkidle", timeout=config["navigation_timeout_ms"])

    page.fill('input[name="id"]', username)
    page.fill('input[name="password"]', password)
    with page.expect_navigation(wait_until="networkidle", timeout=config["navigation_timeout_ms"]):
        page.click("a.enter")

    # A rejected login lands back on the form
    if LOGIN_PATH in page.url and page.locator('input[name="password"]').count() > 0:
        raise LoginFailed("Still on the login form after submitting. Check id/password.")
    print("Login successful!")


def open_roster(page, config, timeout_ms):
    page.goto(roster_url(config), wait_until="networkidle", timeout=timeout_ms)


def wait_for_roster(page, timeout_ms):
    """Bounded wait for the roster table to render. Empty rosters just time out."""
    try:
        page.wait_for_selector(ROSTER_SCHEMA["row"], state="attached", timeout=timeout_ms)
    except PlaywrightTimeoutError:
        print(f"   └── ⚠️ No roster rows after {timeout_ms}ms, parsing anyway.")


def get_session_cookie(context, name=SESSION_COOKIE):
    for cookie in context.cookies():
        if cookie.get("name") == name:
            return cookie.get("value")
    return None


def wait_for_popup(page, known_pages, timeout_ms):
    """
    Polls the window list for the lesson popup spawned from `page`.
    Windows opened after the launch (and by `page`) win; if none show up within
    `timeout_ms`, the most recently opened non-main window is used.
    Total sleeping never exceeds `timeout_ms`.
    """
    remaining = max(0, timeout_ms) / 1000
    while True:
        fresh = [p for p in page.context.pages if p not in known_pages and not p.is_closed()]
        if fresh:
            ours = [p for p in fresh if p.opener() == page]
            return (ours or fresh)[-1]
        if remaining <= 0:
            break
        step = min(POPUP_POLL_INTERVAL, remaining)
        time.sleep(step)
        remaining -= step

    others = [p for p in page.context.pages if p is not page and not p.is_closed()]
    if others:
        print("   └── ⚠️ No new window appeared; using the most recently opened one.")
        return others[-1]
    return None


def launch_lesson(page, selected, config):
    """Starts the lesson from the roster tab and returns its popup once window.API exists."""
    lesson = selected.lesson
    known_pages = list(page.context.pages)

    print("Calling REQ.studyCntsStart...")
    page.evaluate(LAUNCH_JS, [lesson.content_id, lesson.batch_id,
                              config["popup_width"], config["popup_height"]])

    lesson_page = wait_for_popup(page, known_pages, config["popup_settle_ms"])
    if lesson_page is None:
        raise PopupNotFound(f"No lesson window opened for '{lesson.title}'")

    print("Popup opened, waiting for API...")
    lesson_page.wait_for_function(API_READY_JS, timeout=config["api_ready_timeout_ms"])
    print("✅ API loaded")
    return lesson_page


def close_quietly(target):
    try:
        target.close()
    except PlaywrightError as e:
        print(f"   └── ⚠️ Close failed: {e}")


def run_session(page, config, test_mode=False):
    """
    Works through the roster until every lesson is complete.
    Returns ("DONE" | "ABORTED", processed_count). Browser errors propagate.
    """
    processed_count = 0

    while True:
        print("\n📋 Parsing lesson table...")
        lessons = read_roster(page)
        print_roster(lessons)

        if test_mode and processed_count >= 1:
            print("\n[TEST MODE] Completed 1 lesson, stopping")
            return "DONE", processed_count

        selected = select_next_lesson(lessons, force_first_when_all_complete=test_mode)
        if test_mode and selected is not None and selected.lesson.completed:
            print("\n[TEST MODE] All lessons completed, forcing first lesson")

        if selected is None:
            print("\n✅ All lessons completed! 🎉")
            return "DONE", processed_count

        lesson = selected.lesson
        if not lesson.launchable:
            print(f"\n⚠️ Next lesson missing IDs: {lesson.title}")
            return "ABORTED", processed_count

        print(f"\n🎯 Starting lesson #{selected.index}: {lesson.title}")
        print(f"Content ID: {lesson.content_id}")
        print(f"Batch ID: {lesson.batch_id}")

        try:
            lesson_page = launch_lesson(page, selected, config)
        except PopupNotFound as e:
            print(f"❌ Failed to find lesson popup window ({e})")
            continue

        request_body = build_request_body(lesson_page)
        print(f"📝 Request body: {request_body}")

        outcome = replay_completion(
            lesson_page,
            request_body,
            repeat_count=config["repeat_count"],
            delay_ms=config["delay_between_requests_ms"],
            commit_url=config["base_url"] + COMMIT_PATH,
        )
        print(f"✅ Lesson \"{lesson.title}\" done ({outcome.succeeded}/{outcome.attempted} accepted)")

        if config["close_lesson_popup"]:
            close_quietly(lesson_page)

        print("\n🔄 Returning to classroom page...")
        open_roster(page, config, config["return_timeout_ms"])
        processed_count += 1

        print("\n⏳ Waiting for the roster before checking next lesson...")
        wait_for_roster(page, config["return_settle_ms"])


def prompt_credentials(username=None):
    username = username or os.environ.get("KELI_ID") or input("id: ")
    password = os.environ.get("KELI_PASSWORD") or getpass.getpass("pw: ")
    return username.strip(), password


def open_browser(p, config):
    if config["cdp_url"]:
        print(f"📡 Attempting to connect to existing Chrome on {config['cdp_url']}...")
        browser = p.chromium.connect_over_cdp(config["cdp_url"])
        context = browser.contexts[0] if browser.contexts else browser.new_context(no_viewport=True)
    else:
        browser = p.chromium.launch(headless=config["headless"])
        context = browser.new_context(no_viewport=True)
    return browser, context


def run(config, username, password, test_mode=False):
    with sync_playwright() as p:
        browser = None
        try:
            browser, context = open_browser(p, config)
            page = context.new_page()
            login(page, username, password, config)

            print(f"Navigating to classroom page: {config['classroom_id']}")
            open_roster(page, config, config["navigation_timeout_ms"])
            print(f"🍪 {SESSION_COOKIE}: {get_session_cookie(context)}")

            status, processed_count = run_session(page, config, test_mode=test_mode)
        except Exception as e:
            print(f"❌ Error occurred: {e}")
            notify(f"Stopped with an error: {e}")
            if browser is not None:
                close_quietly(browser)
            raise

        print("\n🎉 All processing complete!")
        print(f"Processed {processed_count} lesson(s)")
        notify(f"{status}: processed {processed_count} lesson(s)")
        close_quietly(browser)
        return status, processed_count


def main(argv=None):
    parser = argparse.ArgumentParser(description="KELI classroom lesson autopilot")
    parser.add_argument("--test", action="store_true", help="Process a single lesson, even if all are complete")
    parser.add_argument("--config", default=CONFIG_FILE, help="Path to config.yaml")
    parser.add_argument("--classroom", help="Classroom id (crsAplcntId)")
    parser.add_argument("--username", help="Login id (defaults to $KELI_ID or a prompt)")
    parser.add_argument("--cdp", help="Attach to a running Chrome, e.g. http://localhost:9222")
    parser.add_argument("--headless", action="store_true", help="Run the launched Chromium headless")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    if args.classroom:
        config["classroom_id"] = args.classroom
    if args.cdp:
        config["cdp_url"] = args.cdp
    if args.headless:
        config["headless"] = True

    username, password = prompt_credentials(args.username)
    if not username or not password or not config["classroom_id"]:
        print("fill in all information.")
        return 1

    try:
        status, _ = run(config, username, password, test_mode=args.test)
    except (PlaywrightError, LoginFailed):
        return 1
    return 0 if status == "DONE" else 2


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\n🛑 Script stopped by user. Exiting...")
        sys.exit(0)
