#!/usr/bin/env python3
"""
Screenshooter - Concurrent Screenshot Collection Script
Visits a deduplicated list of URLs with a pool of Playwright workers, saves a
PNG per site and records the primary request/response of every navigation.
"""

import argparse
import asyncio
import base64
import json
import sys
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, TextIO, Tuple
from urllib.parse import urlsplit

from colorama import Fore, Style, init as colorama_init
from PIL import Image

try:
    from playwright.async_api import async_playwright, Browser, Error as PlaywrightError, Request, Response
except ImportError:
    print("ERROR: playwright not installed. Run: pip install playwright && playwright install chromium")
    raise SystemExit(1)


NAV_TIMEOUT_MS = 3800
NAV_WAIT_UNTIL = "load"
RETRY_DELAY_MS = 5000
BLANK_THRESHOLD = 15
THUMBNAIL_SIZE = (9, 9)
DEFAULT_CONCURRENCY = 5

DEFAULT_PORTS = {
    "http": 80,
    "https": 443,
}


def log_info(message: str) -> None:
    print(Fore.CYAN + "[INFO] " + Style.RESET_ALL + message, file=sys.stderr)


def log_ok(tag: str, message: str) -> None:
    print(Fore.GREEN + f"[{tag}] {message}" + Style.RESET_ALL)


def log_fail(tag: str, message: str) -> None:
    print(Fore.YELLOW + f"[{tag}] {message}" + Style.RESET_ALL, file=sys.stderr)


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def now_iso() -> str:
    return datetime.now().isoformat()


def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def write_json(path: Path, data: Any) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def b64(data: Optional[bytes]) -> Optional[str]:
    if data is None:
        return None
    return base64.b64encode(data).decode("ascii")


def first_line(value: Any) -> str:
    # Playwright errors carry a multi-line call log after the message.
    text = str(value).strip()
    return text.splitlines()[0] if text else value.__class__.__name__


def dedupe_urls(urls: Iterable[str]) -> List[str]:
    trimmed = (u.strip() for u in urls if u)
    return list(dict.fromkeys(u for u in trimmed if u))


def read_url_file(path: Path) -> List[str]:
    return read_text(path).splitlines()


class CaptureError(Exception):
    """A single URL could not be captured. Never fatal to the pool."""

    def __init__(self, url: str, stage: str, cause: Any):
        self.url = url
        self.stage = stage
        self.cause = cause
        super().__init__(f"{url}: {stage}: {first_line(cause)}")


@dataclass(frozen=True)
class CaptureTarget:
    url: str
    scheme: str
    host: str
    port: int

    @classmethod
    def parse(cls, url: str) -> "CaptureTarget":
        try:
            parts = urlsplit(url)
            explicit_port = parts.port
        except ValueError as exc:
            raise CaptureError(url, "parse", exc) from exc
        scheme = parts.scheme.lower()
        if scheme not in DEFAULT_PORTS:
            raise CaptureError(url, "parse", f"unsupported scheme {scheme or '(none)'!r}")
        if not parts.hostname:
            raise CaptureError(url, "parse", "missing host")
        port = explicit_port if explicit_port is not None else DEFAULT_PORTS[scheme]
        return cls(url=url, scheme=scheme, host=parts.hostname, port=port)

    @property
    def filename(self) -> str:
        return f"{self.host}_{self.scheme}_{self.port}.png"


@dataclass
class CaptureSettings:
    nav_timeout_ms: int = NAV_TIMEOUT_MS
    retry_delay_ms: int = RETRY_DELAY_MS
    blank_threshold: int = BLANK_THRESHOLD
    num_concurrent: int = DEFAULT_CONCURRENCY
    ignore_https_errors: bool = True


@dataclass
class RequestMeta:
    headers: Dict[str, str]
    method: str
    post_data: Optional[str]
    url: str


@dataclass
class ResponseMeta:
    ip: Optional[str]
    port: Optional[int]
    url: str
    headers: Dict[str, str]
    status: int
    status_text: str
    response_data: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass
class CaptureResult:
    url: str
    timestamp: str
    request: RequestMeta
    response: ResponseMeta
    screenshot: bytes
    retried: bool = False
    image_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "timestamp": self.timestamp,
            "retried": self.retried,
            "image": self.image_path,
            "request": {
                "headers": self.request.headers,
                "method": self.request.method,
                "post_data": self.request.post_data,
                "url": self.request.url,
            },
            "response": {
                "ip": self.response.ip,
                "port": self.response.port,
                "url": self.response.url,
                "headers": self.response.headers,
                "status": self.response.status,
                "status_text": self.response.status_text,
                "response_data": b64(self.response.response_data),
            },
            "screenshot_data": b64(self.screenshot),
        }


def count_distinct_values(image_data: bytes, size: Tuple[int, int] = THUMBNAIL_SIZE) -> int:
    """Shrink the image, drop colour and count the distinct byte values left."""
    with Image.open(BytesIO(image_data)) as img:
        thumb = img.resize(size).convert("L")
    return len(set(thumb.tobytes()))


def is_probably_blank(image_data: bytes, threshold: int = BLANK_THRESHOLD) -> bool:
    return count_distinct_values(image_data) < threshold


async def read_request_meta(request: Request) -> RequestMeta:
    return RequestMeta(
        headers=await request.all_headers(),
        method=request.method,
        post_data=request.post_data,
        url=request.url,
    )


async def read_response_meta(response: Response) -> ResponseMeta:
    server = await response.server_addr() or {}
    return ResponseMeta(
        ip=server.get("ipAddress"),
        port=server.get("port"),
        url=response.url,
        headers=await response.all_headers(),
        status=response.status,
        status_text=response.status_text,
        response_data=await response.body(),
    )


async def capture_url(browser: Browser, target: CaptureTarget, settings: CaptureSettings) -> CaptureResult:
    """
    Capture one URL in its own browser context.

    A 2xx page whose screenshot looks blank gets a single delayed re-shot,
    kept whatever it looks like. Every failure is raised as CaptureError
    tagged with the stage it happened in. The context is always closed; a
    failure to close is only reported when the capture itself succeeded.
    """
    started = now_iso()
    failed = True
    stage = "context"
    try:
        context = await browser.new_context(ignore_https_errors=settings.ignore_https_errors)
    except Exception as exc:
        raise CaptureError(target.url, stage, exc) from exc

    try:
        await context.clear_cookies()
        page = await context.new_page()

        stage = "goto"
        response = await page.goto(target.url, timeout=settings.nav_timeout_ms, wait_until=NAV_WAIT_UNTIL)
        if response is None:
            raise RuntimeError("navigation returned no response")

        stage = "screenshot"
        screenshot = await page.screenshot()

        stage = "metadata"
        request_meta = await read_request_meta(response.request)
        response_meta = await read_response_meta(response)

        retried = False
        if response_meta.ok:
            stage = "blank_check"
            if is_probably_blank(screenshot, settings.blank_threshold):
                stage = "retry"
                await page.wait_for_timeout(settings.retry_delay_ms)
                screenshot = await page.screenshot()
                retried = True

        result = CaptureResult(
            url=target.url,
            timestamp=started,
            request=request_meta,
            response=response_meta,
            screenshot=screenshot,
            retried=retried,
        )
        failed = False
    except Exception as exc:
        raise CaptureError(target.url, stage, exc) from exc
    finally:
        try:
            await context.close()
        except PlaywrightError as exc:
            # An error already in flight carries the real cause.
            if not failed:
                raise CaptureError(target.url, "close", exc) from exc
    return result


class UrlBacklog:
    """Pending URLs, each handed out exactly once. Order is not preserved."""

    def __init__(self, urls: Iterable[str]):
        self._items: List[str] = dedupe_urls(urls)
        self.total = len(self._items)

    @classmethod
    def from_sources(cls, urls: Iterable[str], url_files: Iterable[str]) -> "UrlBacklog":
        candidates: List[str] = []
        for url_file in url_files:
            candidates.extend(read_url_file(Path(url_file)))
        candidates.extend(urls)
        return cls(candidates)

    def pop(self) -> Optional[str]:
        # No await between the check and the pop, so workers never share an item.
        if not self._items:
            return None
        return self._items.pop()

    def __len__(self) -> int:
        return len(self._items)


class ProgressCounter:
    def __init__(self, total: int):
        self.total = total
        self.count = 0

    def next(self) -> str:
        self.count += 1
        return f"{self.count:03d}/{self.total:03d}"


class ResultSink:
    def __init__(self, output_dir: Path):
        self.output_dir = output_dir
        ensure_dir(output_dir)
        self.results: List[CaptureResult] = []
        self.failures: List[Tuple[str, str]] = []

    def accept(self, target: CaptureTarget, result: CaptureResult) -> Path:
        image_path = self.output_dir / target.filename
        image_path.write_bytes(result.screenshot)
        result.image_path = str(image_path)
        self.results.append(result)
        return image_path

    def reject(self, url: str, message: str) -> None:
        self.failures.append((url, message))

    def to_json(self) -> List[Dict[str, Any]]:
        return [r.to_dict() for r in self.results]

    def dump(self, stream: TextIO) -> None:
        stream.write(json.dumps(self.to_json(), ensure_ascii=False) + "\n")

    def write_results(self, path: Path) -> None:
        ensure_dir(path.parent)
        write_json(path, self.to_json())


class ScreenshotPool:
    """Fixed number of workers draining one backlog against one shared browser."""

    def __init__(
        self,
        browser: Browser,
        backlog: UrlBacklog,
        sink: ResultSink,
        settings: Optional[CaptureSettings] = None,
    ):
        self.browser = browser
        self.backlog = backlog
        self.sink = sink
        self.settings = settings or CaptureSettings()
        self.progress = ProgressCounter(backlog.total)

    async def run(self) -> List[CaptureResult]:
        workers = [
            asyncio.ensure_future(self.work(i + 1))
            for i in range(self.settings.num_concurrent)
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            # Fatal error in one worker: stop and drain the rest before the browser goes away.
            for w in workers:
                w.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        return self.sink.results

    async def work(self, worker_id: int) -> None:
        while True:
            url = self.backlog.pop()
            if url is None:
                return
            tag = f"W{worker_id} {self.progress.next()}"
            try:
                target = CaptureTarget.parse(url)
                result = await capture_url(self.browser, target, self.settings)
            except CaptureError as exc:
                self.sink.reject(url, str(exc))
                log_fail(tag, str(exc))
                continue

            self.sink.accept(target, result)
            suffix = " (retried)" if result.retried else ""
            log_ok(tag, f"{url}{suffix}")


async def main_async(args: argparse.Namespace) -> None:
    backlog = UrlBacklog.from_sources(args.urls, args.url_files)
    sink = ResultSink(Path(args.output_dir))
    settings = CaptureSettings(
        nav_timeout_ms=args.timeout_ms,
        retry_delay_ms=args.retry_delay_ms,
        blank_threshold=args.blank_threshold,
        num_concurrent=args.num_concurrent,
    )
    log_info(f"{backlog.total} URL(s), {settings.num_concurrent} worker(s), output {sink.output_dir}")

    if backlog.total:
        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=not args.headful)
            try:
                await ScreenshotPool(browser, backlog, sink, settings).run()
            finally:
                await browser.close()

    log_info(f"Done: {len(sink.results)} captured, {len(sink.failures)} failed")
    if args.results_file:
        sink.write_results(Path(args.results_file))
    if not args.no_json:
        sink.dump(sys.stdout)


def positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {raw!r}")
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Take screenshots of a list of websites")
    parser.add_argument(
        "--output-dir", "-o",
        required=True,
        dest="output_dir",
        help="The output directory where the screenshots are saved",
    )
    parser.add_argument(
        "--urls", "-u",
        nargs="+",
        metavar="URL",
        default=[],
        help="URLs to visit and screenshot",
    )
    parser.add_argument(
        "--urls-file", "-U",
        nargs="+",
        metavar="URL_FILE",
        dest="url_files",
        default=[],
        help="Files with one URL per line",
    )
    parser.add_argument(
        "--num-concurrent", "-n",
        type=positive_int,
        metavar="N",
        default=DEFAULT_CONCURRENCY,
        help="Number of concurrent workers taking screenshots",
    )
    parser.add_argument("--timeout-ms", type=positive_int, default=NAV_TIMEOUT_MS, help="Navigation timeout")
    parser.add_argument(
        "--retry-delay-ms",
        type=int,
        default=RETRY_DELAY_MS,
        help="Wait before re-shooting a page that looked blank",
    )
    parser.add_argument(
        "--blank-threshold",
        type=int,
        default=BLANK_THRESHOLD,
        help="Screenshots with fewer distinct grey levels than this are re-shot once",
    )
    parser.add_argument("--results-file", help="Also write the JSON results to this file")
    parser.add_argument("--no-json", action="store_true", help="Do not print the JSON results")
    parser.add_argument("--headful", action="store_true", help="Show the browser window")
    return parser


def main() -> None:
    args = build_parser().parse_args()
    colorama_init(autoreset=True)
    asyncio.run(main_async(args))


if __name__ == "__main__":
    main()
