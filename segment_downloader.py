import argparse
import sys

from tqdm import tqdm

from segment_downloader_lib import (
    DOWNLOAD_DIR,
    FILE_LIST,
    SEGMENT_REGEX,
    DownloaderError,
    RequestTemplate,
    cleanup_temp_files,
    concatenate_segments,
    create_session,
    default_output_name,
    download_playlist_segments,
    extract_segment_urls,
    fetch_playlist,
    fetch_sequential_segments,
    parse_curl_command,
    playlist_output_name,
    resolve_segment_pattern,
)


def read_curl_command(curl_file=None, stream=None):
    """Reads the curl command from a file, or from stdin until EOF."""
    if curl_file:
        with open(curl_file, 'r', encoding='utf-8') as f:
            return f.read()
    stream = stream or sys.stdin
    print("Please paste the complete curl command (including '\\' for line continuation) and press Enter when done.")
    print("Press Ctrl+D on a new line to finish input.")
    return stream.read().strip('\n')


def open_terminal():
    return open('/dev/tty', 'r', encoding='utf-8')


def terminal_prompt(question):
    """input() when stdin is a terminal, otherwise the answer is read from /dev/tty."""
    if sys.stdin.isatty():
        return input(question)
    # stdin already held the piped curl command
    try:
        with open_terminal() as tty:
            print(question, end='', flush=True)
            answer = tty.readline()
    except OSError as e:
        raise EOFError(f"no terminal to read from ({e})") from e
    if not answer:
        raise EOFError("EOF when reading a line")
    return answer.rstrip('\n')


def run_sequential(args, prompt=terminal_prompt):
    """Sequential mode: infer the numbering from the captured URL and walk it."""
    template = parse_curl_command(read_curl_command(args.curl_file))
    pattern = resolve_segment_pattern(template.url, args.regex, prompt=prompt)
    output_path = args.output or default_output_name(pattern.base_url)
    print(f"Output will be saved as: {output_path}")

    session = create_session(template)
    with tqdm(desc="Downloading Segments", unit="seg") as bar:
        result = fetch_sequential_segments(session, pattern, args.download_dir,
                                           progress=lambda _: bar.update(1))
    if result.error:
        print(f"Error: {result.error}. Continuing with the {len(result.downloaded_files)} segments downloaded so far.")
    return result.downloaded_files, output_path


def run_playlist(args):
    """Playlist mode: download every segment the M3U8 playlist lists."""
    if args.curl_file or args.paste:
        template = parse_curl_command(read_curl_command(args.curl_file))
    else:
        template = RequestTemplate(url=args.m3u8_url)
    session = create_session(template)

    playlist_text, media_url = fetch_playlist(session, args.m3u8_url)
    segment_urls = extract_segment_urls(playlist_text, media_url)
    output_path = args.output or playlist_output_name(args.m3u8_url)
    print(f"Found {len(segment_urls)} segments in playlist")
    print(f"Output will be saved as: {output_path}")

    with tqdm(total=len(segment_urls), desc="Downloading Segments", unit="seg") as bar:
        downloaded_files = download_playlist_segments(session, segment_urls, args.download_dir,
                                                      progress=lambda _: bar.update(1))
    return downloaded_files, output_path


def build_parser():
    parser = argparse.ArgumentParser(
        description="Download numbered or M3U8-listed .ts segments and combine them with ffmpeg.")
    parser.add_argument('-m', dest='m3u8_url', help="M3U8 playlist URL (playlist mode)")
    parser.add_argument('-o', '--output', help="Output file (default: derived from the URL)")
    parser.add_argument('--regex', default=SEGMENT_REGEX,
                        help=f"Regex with a capture group around the segment number (default: {SEGMENT_REGEX})")
    parser.add_argument('--download-dir', default=DOWNLOAD_DIR, help="Directory for the downloaded segments")
    parser.add_argument('--file-list', default=FILE_LIST, help="Path of the ffmpeg concat list")
    parser.add_argument('--curl-file', help="Read the curl command from this file instead of stdin")
    parser.add_argument('--paste', action='store_true',
                        help="Playlist mode: also read a pasted curl command from stdin and replay its headers/cookies")
    parser.add_argument('--ffmpeg', default='ffmpeg', help="ffmpeg executable")
    parser.add_argument('--cleanup', action='store_true',
                        help="Remove the downloaded segments and file list afterwards")
    return parser


def main(argv=None, prompt=terminal_prompt):
    args = build_parser().parse_args(argv)
    try:
        if args.m3u8_url:
            print("M3U8 URL provided. Attempting to parse playlist...")
            downloaded_files, output_path = run_playlist(args)
        else:
            downloaded_files, output_path = run_sequential(args, prompt=prompt)

        if not downloaded_files:
            raise DownloaderError("No files were successfully downloaded.")

        concatenate_segments(downloaded_files, args.file_list, output_path, ffmpeg_bin=args.ffmpeg)
        if args.cleanup:
            cleanup_temp_files(args.download_dir, downloaded_files, args.file_list)
    except DownloaderError as e:
        print(f"Error: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nDownload interrupted by user.")
        return 130

    print("Process complete (check for FFmpeg errors above).")
    return 0


if __name__ == "__main__":
    sys.exit(main())
