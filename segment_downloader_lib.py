import os
import re
import subprocess
from dataclasses import dataclass
from typing import Optional, Tuple, Union
from urllib.parse import urljoin, urlparse, urlunparse, parse_qs, urlencode

import m3u8
import requests

# --- Configuration ---
FILE_LIST = "files.txt"  # ffmpeg concat list
DOWNLOAD_DIR = "ts_parts"  # Directory to save the downloaded .ts files
SEGMENT_EXTENSION = ".ts"
OUTPUT_EXTENSION = ".mp4"
MIN_SEGMENT_SIZE = 1024  # Anything this small is most likely an error page
REQUEST_TIMEOUT = 20
CHUNK_SIZE = 8192

# The segment number MUST be inside a capture group ()
# For URL like ..._1080_00001.ts    -> r'_1080_([0-9]+)\.ts$'
# For URL like ..._00001.ts         -> r'_([0-9]+)\.ts$'
# For URL like .../seg_00001.ts     -> r'seg_([0-9]+)\.ts$'
SEGMENT_REGEX = r'_([0-9]+)\.ts$'

DEFAULT_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36',
}

# --- Custom Exception ---
class DownloaderError(Exception):
    """Custom exception for downloader errors."""
    pass

# --- Data Model ---

@dataclass(frozen=True)
class RequestTemplate:
    """Captured request: URL plus the headers and cookie replayed on every segment request."""
    url: str
    headers: Tuple[Tuple[str, str], ...] = ()
    cookie: Optional[str] = None

    def request_headers(self):
        headers = dict(self.headers)
        if self.cookie and not any(name.lower() == 'cookie' for name in headers):
            headers['Cookie'] = self.cookie
        return headers


@dataclass(frozen=True)
class SegmentPattern:
    base_url: str
    start_index: int
    width: int
    suffix: str = ""

    def format_number(self, index):
        # Width comes from the observed token and never changes
        return f"{index:0{self.width}d}"

    def segment_url(self, index):
        return f"{self.base_url}{self.format_number(index)}{self.suffix}"


@dataclass(frozen=True)
class Matched:
    pattern: SegmentPattern


@dataclass(frozen=True)
class Unmatched:
    url: str


PatternInferenceResult = Union[Matched, Unmatched]


@dataclass(frozen=True)
class SegmentDescriptor:
    index: int
    formatted: str
    url: str
    local_path: str


@dataclass
class SequentialFetchResult:
    downloaded_files: list
    error: Optional[str] = None

# --- Curl Command Parsing ---

_QUOTED = r"""(['"])(.*?)\1"""
_MAIN_URL_RE = re.compile(r"\bcurl\s+" + _QUOTED, re.DOTALL)
_HEADER_RE = re.compile(r"(?:^|\s)(?:-H|--header)\s+" + _QUOTED, re.DOTALL)
_COOKIE_RE = re.compile(r"(?:^|\s)(?:-b|--cookie)\s+" + _QUOTED, re.DOTALL)


def parse_curl_command(curl_command):
    """
    Extracts the URL, headers and cookie string from a pasted curl command.

    Only a missing URL is fatal; missing headers or cookies produce a warning.

    Raises:
        DownloaderError: If no quoted URL follows 'curl'.
    """
    print("Parsing curl command...")
    url_match = _MAIN_URL_RE.search(curl_command)
    if not url_match:
        raise DownloaderError("Could not extract main URL from curl command.")
    main_url = url_match.group(2).strip()

    headers = []
    for match in _HEADER_RE.finditer(curl_command):
        raw_header = match.group(2)
        name, sep, value = raw_header.partition(':')
        if not sep or not name.strip():
            print(f"Warning: Skipping malformed header '{raw_header}'.")
            continue
        headers.append((name.strip(), value.strip()))
    if not headers:
        print("Warning: No headers extracted from curl command.")

    cookie_match = _COOKIE_RE.search(curl_command)
    cookie = cookie_match.group(2) if cookie_match else None
    if not cookie:
        print("Warning: No cookies extracted from curl command.")
        cookie = None

    print(f"Extracted URL: {main_url}")
    print(f"Extracted Headers Count: {len(headers)}")
    print(f"Extracted Cookies: {(cookie or '')[:50]}...")
    return RequestTemplate(url=main_url, headers=tuple(headers), cookie=cookie)


def create_session(template=None):
    """Builds a requests session carrying the template's headers and cookie."""
    session = requests.Session()
    session.headers.update(DEFAULT_HEADERS)
    if template is not None:
        session.headers.update(template.request_headers())
    return session

# --- Segment Pattern Inference ---

def infer_segment_pattern(url, segment_regex=SEGMENT_REGEX):
    """Applies the segment regex to a sample URL; returns Matched or Unmatched."""
    try:
        compiled = re.compile(segment_regex)
    except re.error as e:
        raise DownloaderError(f"Invalid segment regex '{segment_regex}': {e}") from e
    if compiled.groups < 1:
        raise DownloaderError(f"Segment regex '{segment_regex}' needs a capture group around the number.")

    match = compiled.search(url)
    if not match or not match.group(1) or not match.group(1).isdigit():
        return Unmatched(url)

    number = match.group(1)
    pattern = SegmentPattern(
        base_url=url[:match.start(1)],
        start_index=int(number, 10),
        width=len(number),
        suffix=url[match.end(1):],
    )
    return Matched(pattern)


def manual_segment_pattern(base_url, start, suffix=""):
    """Builds a pattern from user-supplied pieces, validating the starting number."""
    start = start.strip()
    if not re.fullmatch(r'[0-9]+', start):
        raise DownloaderError("Starting number must be numeric")
    return SegmentPattern(base_url=base_url.strip(), start_index=int(start, 10),
                          width=len(start), suffix=suffix.strip())


def resolve_segment_pattern(url, segment_regex=SEGMENT_REGEX, prompt=input):
    """Infers the pattern from the URL, falling back to asking the user for it."""
    result = infer_segment_pattern(url, segment_regex)
    if isinstance(result, Matched):
        return result.pattern

    print("Could not automatically detect segment number pattern.")
    print("Please enter:")
    print("1. The base URL (everything before the changing number)")
    print("2. The starting number")
    print("3. The suffix (everything after the number)")
    try:
        base_url = prompt("Base URL: ")
        start = prompt("Starting number: ")
        suffix = prompt("Suffix (e.g. -v1-a1.ts): ")
    except EOFError as e:
        raise DownloaderError(f"Could not read manual segment pattern: {e}") from e
    return manual_segment_pattern(base_url, start, suffix)


def default_output_name(base_url):
    """Output name from the last path segment of the base URL."""
    path = urlparse(base_url).path or base_url
    name = path.rstrip('/_').rsplit('/', 1)[-1].rstrip('_')
    return f"{name or 'output'}{OUTPUT_EXTENSION}"


def playlist_output_name(playlist_url):
    """Output name from the playlist file name without its .m3u8 extension."""
    name = os.path.basename(urlparse(playlist_url).path.rstrip('/'))
    if name.endswith('.m3u8'):
        name = name[:-len('.m3u8')]
    return f"{name or 'output'}{OUTPUT_EXTENSION}"

# --- Downloading ---

def _download_segment(session, segment_url, filepath):
    """
    Streams one segment to disk.

    HTTP error statuses propagate as requests.HTTPError so callers can tell
    "segment absent" apart from a failed transfer. A partially written file
    is removed before any other exception propagates.
    """
    response = session.get(segment_url, stream=True, timeout=REQUEST_TIMEOUT)
    try:
        response.raise_for_status()
        with open(filepath, 'wb') as f:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if chunk:
                    f.write(chunk)
    except requests.exceptions.HTTPError:
        raise
    except Exception:
        if os.path.exists(filepath):
            os.remove(filepath)
        raise
    finally:
        response.close()
    return filepath


def fetch_sequential_segments(session, pattern, download_dir=DOWNLOAD_DIR, progress=None):
    """
    Downloads numbered segments starting at pattern.start_index until the server
    stops serving them.

    Args:
        session: requests.Session (or compatible) carrying the captured headers.
        pattern (SegmentPattern): How to build each segment URL.
        download_dir (str): Where the <number>.ts files are written.
        progress (callable, optional): Called with each downloaded file path.

    Returns:
        SequentialFetchResult: Downloaded paths in order, plus the error that
        stopped the loop if it was a failed download rather than the end of
        the sequence.
    """
    os.makedirs(download_dir, exist_ok=True)
    downloaded_files = []
    index = pattern.start_index
    print(f"Detected Base URL: {pattern.base_url}")
    print(f"Starting from segment number: {pattern.format_number(index)} ({pattern.width} digits)")
    print("Attempting to download .ts files sequentially...")

    while True:
        formatted = pattern.format_number(index)
        segment = SegmentDescriptor(
            index=index,
            formatted=formatted,
            url=pattern.segment_url(index),
            local_path=os.path.join(download_dir, f"{formatted}{SEGMENT_EXTENSION}"),
        )
        print(f"Checking: {segment.url}")
        try:
            _download_segment(session, segment.url, segment.local_path)
        except requests.exceptions.HTTPError as e:
            # End of the sequence, not an error
            print(f"File not found or error accessing {segment.url} ({e}). Stopping sequence check.")
            return SequentialFetchResult(downloaded_files)
        except (requests.exceptions.RequestException, OSError) as e:
            message = f"Error downloading {segment.url}: {e}"
            print(f"{message}. Stopping sequence check.")
            return SequentialFetchResult(downloaded_files, error=message)

        downloaded_files.append(segment.local_path)
        if progress:
            progress(segment.local_path)
        index += 1

# --- M3U8 Playlist Handling ---

def _merge_query(master_url, variant_url):
    """Carries the master playlist's query params (usually auth tokens) over to the variant URL."""
    master_params = parse_qs(urlparse(master_url).query)
    variant_parts = list(urlparse(variant_url))
    merged = {**master_params, **parse_qs(variant_parts[4])}
    variant_parts[4] = urlencode(merged, doseq=True)
    return urlunparse(variant_parts)


def fetch_playlist(session, playlist_url):
    """
    Downloads an M3U8 playlist, following the first variant of a master playlist.

    Returns:
        tuple: (playlist text, URL of the media playlist it came from)

    Raises:
        DownloaderError: If the playlist cannot be downloaded, parsed, or is empty.
    """
    print(f"Fetching M3U8 playlist from: {playlist_url}")
    try:
        response = session.get(playlist_url, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
        playlist_text = response.text
        if not playlist_text.strip():
            raise DownloaderError("Failed to download M3U8 playlist: empty response")

        playlist = m3u8.loads(playlist_text, uri=playlist_url)
        if playlist.is_variant:
            if not playlist.playlists:
                raise DownloaderError("Could not find any media playlist in the master playlist.")
            media_url = _merge_query(playlist_url, playlist.playlists[0].absolute_uri)
            print(f"Master playlist detected. Fetching first stream: {media_url}")
            response = session.get(media_url, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            playlist_text = response.text
            playlist_url = media_url
    except requests.exceptions.RequestException as e:
        raise DownloaderError(f"Failed to download M3U8 playlist: {e}") from e
    except m3u8.ParseError as e:
        raise DownloaderError(f"Error parsing M3U8 playlist: {e}") from e
    return playlist_text, playlist_url


def extract_segment_urls(playlist_text, playlist_url, extension=SEGMENT_EXTENSION):
    """Returns segment URLs in playlist order, resolved against the playlist's directory."""
    try:
        playlist = m3u8.loads(playlist_text, uri=playlist_url)
    except m3u8.ParseError as e:
        raise DownloaderError(f"Error parsing M3U8 playlist: {e}") from e
    # urljoin leaves scheme-prefixed references untouched
    return [urljoin(playlist.base_uri, segment.uri) for segment in playlist.segments
            if segment.uri and urlparse(segment.uri).path.endswith(extension)]


def download_playlist_segments(session, segment_urls, download_dir=DOWNLOAD_DIR, progress=None):
    """Downloads every segment in order; failures are reported and skipped."""
    os.makedirs(download_dir, exist_ok=True)
    downloaded_files = []
    total_segments = len(segment_urls)
    for i, url in enumerate(segment_urls):
        filepath = os.path.join(download_dir, f"{i:05d}{SEGMENT_EXTENSION}")
        print(f"Downloading segment {i + 1}/{total_segments}: {url}")
        try:
            downloaded_files.append(_download_segment(session, url, filepath))
        except (requests.exceptions.RequestException, OSError) as e:
            print(f"Error downloading segment {i + 1}: {e}")
            continue
        finally:
            if progress:
                progress(filepath)

    if len(downloaded_files) != total_segments:
        print(f"Warning: Only {len(downloaded_files)} out of {total_segments} segments were downloaded successfully.")
    return downloaded_files

# --- Concatenation ---

def write_concat_list(downloaded_files, list_path=FILE_LIST):
    """Writes the ffmpeg concat demuxer list, one file per line, in order."""
    with open(list_path, 'w', encoding='utf-8') as f:
        for segment_file in downloaded_files:
            absolute_path = os.path.abspath(segment_file).replace('\\', '/')
            escaped = absolute_path.replace("'", "'\\''")
            f.write(f"file '{escaped}'\n")
    return list_path


def has_real_content(downloaded_files, min_size=MIN_SEGMENT_SIZE):
    """True if at least one file is larger than min_size bytes."""
    return any(os.path.isfile(f) and os.path.getsize(f) > min_size for f in downloaded_files)


def concatenate_segments(downloaded_files, list_path, output_path, ffmpeg_bin="ffmpeg"):
    """
    Merges the downloaded segments into output_path with ffmpeg's concat demuxer.

    Failures here are reported but never raised.

    Returns:
        bool: True if ffmpeg produced the output file.
    """
    if not downloaded_files:
        print("No files were downloaded. Skipping concatenation.")
        return False

    print("Creating file list for ffmpeg...")
    write_concat_list(downloaded_files, list_path)

    if not has_real_content(downloaded_files):
        print(f"Downloaded files are {MIN_SEGMENT_SIZE} bytes or smaller. Download likely failed to get actual content.")
        return False

    output_dir = os.path.dirname(output_path)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)

    ffmpeg_command = [ffmpeg_bin, '-y', '-f', 'concat', '-safe', '0', '-i', list_path, '-c', 'copy', output_path]
    print(f"Concatenating {len(downloaded_files)} .ts files into {output_path} using ffmpeg...")
    try:
        process = subprocess.run(ffmpeg_command, check=False, capture_output=True, text=True,
                                 encoding='utf-8', errors='ignore')
    except FileNotFoundError:
        print("Error: ffmpeg command not found. Make sure ffmpeg is installed and in your system's PATH.")
        return False

    if process.returncode != 0:
        print("FFmpeg concatenation failed.")
        print("FFmpeg Errors:\n", process.stderr)
        return False
    print(f"Video successfully combined into {output_path}")
    return True


def cleanup_temp_files(download_dir, downloaded_files, list_path):
    """Cleans up downloaded segment files and the concat list."""
    print(f"Cleaning up downloaded .ts files and file list in {download_dir}...")
    try:
        for segment_file in downloaded_files:
            if segment_file and os.path.exists(segment_file):
                os.remove(segment_file)
        if os.path.exists(list_path):
            os.remove(list_path)
        # Only remove download_dir if it is empty
        if os.path.isdir(download_dir) and not os.listdir(download_dir):
            os.rmdir(download_dir)
        elif os.path.exists(download_dir):
            print(f"Warning: Download directory '{download_dir}' not empty after cleanup attempt.")
        print("Cleanup complete.")
    except OSError as e:
        print(f"Error during cleanup: {e}. Manual cleanup of '{download_dir}' might be required.")
