import argparse
import os
import re
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from urllib.parse import unquote, urlparse

import requests
from lxml import etree
from rich.console import Console
from rich.markup import escape

# ----------------------------
# CONFIGURATION
# ----------------------------
DEFAULT_EXPORT_FILE = "wordpress_export.xml"
WP_NAMESPACE = "http://wordpress.org/export/1.2/"
ALLOWED_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".svg",
    ".webp", ".mp4", ".mp3", ".pdf", ".zip",
)
OUTPUT_DIR_SUFFIX = "_media"
SUCCESS_LOG_TEMPLATE = "download_log_{timestamp}.txt"
ERROR_LOG_TEMPLATE = "download_errors_{timestamp}.txt"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
CHUNK_SIZE = 8192

console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 2
    backoff_seconds: float = 2.0


DEFAULT_RETRY_POLICY = RetryPolicy()


@dataclass(frozen=True)
class RunContext:
    """Paths and settings fixed once at startup and shared by every stage."""
    export_path: str
    output_dir: str
    success_log: str
    error_log: str
    timestamp: str
    allowed_extensions: tuple = ALLOWED_EXTENSIONS


class DownloadStatus(Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class DownloadOutcome:
    url: str
    filename: str
    status: DownloadStatus
    attempts: int = 0


# ----------------------------
# ERRORS
# ----------------------------
class ExportError(Exception):
    """Fatal setup error; aborts the run before any download."""


class ExportFileNotFound(ExportError):
    pass


class ExportParseError(ExportError):
    pass


class NoAttachmentsFound(ExportError):
    pass


class NoSupportedMedia(ExportError):
    pass


# ----------------------------
# HELPER FUNCTIONS
# ----------------------------
def ensure_directory_exists(path):
    """Create target download directory (and parents) if not present."""
    if not os.path.exists(path):
        os.makedirs(path, exist_ok=True)

def clean_filename(filename):
    """Remove invalid characters (including control characters) for local filenames."""
    return re.sub(r'[\\/*?:"<>|\x00-\x1f]', '_', filename)

def derive_base_name(path):
    """'exports/site.xml' -> 'exports/site'"""
    return os.path.splitext(path)[0]

def build_run_context(export_path, now=None):
    timestamp = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
    return RunContext(
        export_path=export_path,
        output_dir=derive_base_name(export_path) + OUTPUT_DIR_SUFFIX,
        success_log=SUCCESS_LOG_TEMPLATE.format(timestamp=timestamp),
        error_log=ERROR_LOG_TEMPLATE.format(timestamp=timestamp),
        timestamp=timestamp,
    )

def tag(label, style):
    return f"[{style}]\\[{label}][/{style}]"


# ----------------------------
# 1) LOCATE THE EXPORT FILE
# ----------------------------
def resolve_export_path(cli_path=None, default=DEFAULT_EXPORT_FILE, prompt=input):
    """
    Pick the export to read: an explicit path wins, then the default file in
    the working directory, then whatever the operator types at the prompt.
    """
    if cli_path:
        path = cli_path
    elif os.path.isfile(default):
        path = default
    else:
        console.print(f"{tag('INFO', 'cyan')} '{escape(default)}' not found in {escape(os.getcwd())}.")
        # Drag-and-drop into a terminal often wraps the path in quotes
        try:
            path = prompt("Path to WordPress export XML: ").strip().strip("'\"")
        except EOFError:
            path = ""

    if not path or not os.path.isfile(path):
        raise ExportFileNotFound(f"Export file not found: {path or '(no path entered)'}")
    return path


# ----------------------------
# 2) PARSE ATTACHMENT URLS
# ----------------------------
def parse_attachment_urls(path):
    """
    Return the text of every <wp:attachment_url> element in document order,
    dropping empty ones.
    """
    try:
        tree = etree.parse(path)
    except etree.XMLSyntaxError as ex:
        raise ExportParseError(f"Could not parse {path} as XML: {ex}") from ex

    nodes = tree.xpath("//wp:attachment_url", namespaces={"wp": WP_NAMESPACE})
    urls = [node.text.strip() for node in nodes if node.text and node.text.strip()]

    if not urls:
        raise NoAttachmentsFound(
            f"No <wp:attachment_url> entries found in {path} "
            f"({len(nodes)} matching element(s), none with a URL)."
        )
    return urls


# ----------------------------
# 3) FILTER BY EXTENSION
# ----------------------------
def extension_of(url):
    """Lower-cased extension of the URL path, ignoring query and fragment."""
    return os.path.splitext(urlparse(url).path)[1].lower()

def filter_urls(urls, allowed=ALLOWED_EXTENSIONS):
    kept = []
    for url in urls:
        # Anything that is not a usable URL string is ignored, not reported
        if not isinstance(url, str) or not url.strip():
            continue
        try:
            ext = extension_of(url)
        except ValueError:
            continue
        if ext in allowed:
            kept.append(url)

    if not kept:
        raise NoSupportedMedia(
            "No attachment URLs with a supported extension. Allowed: " + ", ".join(allowed)
        )
    return kept


# ----------------------------
# 4) DOWNLOAD
# ----------------------------
def filename_from_url(url):
    """'https://example.com/uploads/2021/05/photo-final.jpg' -> 'photo-final.jpg'"""
    return clean_filename(unquote(os.path.basename(urlparse(url).path)))

def download_file(url, filepath, session=None):
    """Stream one URL straight into filepath. Raises on transport or HTTP error."""
    http = session or requests
    with http.get(url, stream=True) as resp:
        resp.raise_for_status()
        with open(filepath, "wb") as f:
            for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                f.write(chunk)

def download_with_retry(url, filepath, session=None, policy=DEFAULT_RETRY_POLICY, sleep=None):
    """
    Try the download up to policy.max_attempts times, sleeping
    policy.backoff_seconds between attempts. Returns (succeeded, attempts).
    """
    sleep = sleep or time.sleep
    for attempt in range(1, policy.max_attempts + 1):
        try:
            download_file(url, filepath, session=session)
            return True, attempt
        except (requests.RequestException, OSError, ValueError) as e:
            if attempt < policy.max_attempts:
                console.print(
                    f"{tag('WARN', 'yellow')} {escape(url)} failed ({escape(str(e))}); "
                    f"retrying in {policy.backoff_seconds:g}s..."
                )
                sleep(policy.backoff_seconds)
            else:
                console.print(f"{tag('ERROR', 'red')} {escape(url)} failed again: {escape(str(e))}")
    return False, policy.max_attempts

def download_all(urls, context, session=None, policy=DEFAULT_RETRY_POLICY, sleep=None):
    """
    Yield one DownloadOutcome per URL, strictly one at a time. A file that
    already exists at the destination is skipped without touching the network.
    """
    total = len(urls)
    for index, url in enumerate(urls, start=1):
        filename = filename_from_url(url)
        filepath = os.path.join(context.output_dir, filename)
        console.print(f"[bold]\\[{index}/{total}] {index / total * 100:.1f}%[/bold] {escape(filename)}")

        if os.path.exists(filepath):
            yield DownloadOutcome(url, filename, DownloadStatus.SKIPPED)
            continue

        ok, attempts = download_with_retry(url, filepath, session=session, policy=policy, sleep=sleep)
        status = DownloadStatus.SUCCESS if ok else DownloadStatus.FAILED
        yield DownloadOutcome(url, filename, status, attempts)


# ----------------------------
# 5) REPORT
# ----------------------------
class Reporter:
    """Append-only success/skip and error logs for one run, plus console status lines."""

    def __init__(self, context):
        self.context = context
        self._success = None
        self._errors = None

    def __enter__(self):
        self._success = open(self.context.success_log, "a", encoding="utf-8")
        self._errors = open(self.context.error_log, "a", encoding="utf-8")
        return self

    def __exit__(self, *exc):
        self._success.close()
        self._errors.close()
        return False

    def _write(self, handle, line):
        handle.write(line + "\n")
        handle.flush()

    def record(self, outcome):
        name = outcome.filename
        if outcome.status is DownloadStatus.SUCCESS:
            self._write(self._success, f"Success: {name}")
            console.print(f"{tag('OK', 'green')} Downloaded: {escape(name)}")
        elif outcome.status is DownloadStatus.SKIPPED:
            self._write(self._success, f"Skipped (already exists): {name}")
            console.print(f"{tag('SKIP', 'blue')} File already exists: {escape(name)}")
        else:
            self._write(self._errors, f"Failed (after retry): {name}")
            console.print(f"{tag('FAIL', 'red')} Failed (after retry): {escape(name)}")

    def summary(self):
        console.print()
        console.print(f"{tag('DONE', 'green')} Media folder: {escape(os.path.abspath(self.context.output_dir))}")
        console.print(f"       Success log: {escape(os.path.abspath(self.context.success_log))}")
        console.print(f"       Error log:   {escape(os.path.abspath(self.context.error_log))}")


# ----------------------------
# MAIN LOGIC
# ----------------------------
def run(context, session=None, policy=DEFAULT_RETRY_POLICY, sleep=None):
    """Parse, filter and download for an already-resolved export. Returns the outcomes."""
    console.print(f"=== Reading attachments from '{escape(context.export_path)}' ===")
    urls = parse_attachment_urls(context.export_path)
    console.print(f"{tag('INFO', 'cyan')} Found {len(urls)} attachment URL(s).")

    media_urls = filter_urls(urls, context.allowed_extensions)
    console.print(f"{tag('INFO', 'cyan')} {len(media_urls)} URL(s) with a supported extension. Downloading...")

    ensure_directory_exists(context.output_dir)
    outcomes = []
    with Reporter(context) as reporter:
        for outcome in download_all(media_urls, context, session=session, policy=policy, sleep=sleep):
            reporter.record(outcome)
            outcomes.append(outcome)
        reporter.summary()
    return outcomes

def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Download media attachments listed in a WordPress export XML file."
    )
    parser.add_argument(
        "export_file", nargs="?",
        help=f"WordPress export (WXR) file; defaults to ./{DEFAULT_EXPORT_FILE}",
    )
    return parser.parse_args(argv)

def wait_for_enter():
    """Keep a double-clicked console window open until the operator has read it."""
    if sys.stdin.isatty():
        try:
            input("Press Enter to exit...")
        except EOFError:
            pass

def main(argv=None, prompt=input):
    started = datetime.now()
    args = parse_args(argv)
    exit_code = 0
    try:
        export_path = resolve_export_path(args.export_file, prompt=prompt)
        run(build_run_context(export_path, now=started))
    except ExportError as ex:
        err_console.print(f"{tag('ERROR', 'red')} {escape(str(ex))}")
        exit_code = 1
    wait_for_enter()
    return exit_code

if __name__ == "__main__":
    sys.exit(main())
