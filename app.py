import itertools
import os
import re
import threading
import time
from flask import Flask, request, render_template, send_from_directory, flash, redirect, url_for
from segment_downloader_lib import (
    SEGMENT_REGEX,
    DownloaderError,
    Matched,
    RequestTemplate,
    cleanup_temp_files,
    concatenate_segments,
    create_session,
    default_output_name,
    download_playlist_segments,
    extract_segment_urls,
    fetch_playlist,
    fetch_sequential_segments,
    infer_segment_pattern,
    manual_segment_pattern,
    parse_curl_command,
    playlist_output_name,
)

# --- Configuration ---
DOWNLOAD_FOLDER = 'downloads'

app = Flask(__name__)
app.secret_key = os.environ.get('SEGMENT_DOWNLOADER_SECRET', 'super secret key')  # Change this in a real app!
app.config['DOWNLOAD_FOLDER'] = os.path.abspath(DOWNLOAD_FOLDER)

# Ensure download folder exists
os.makedirs(app.config['DOWNLOAD_FOLDER'], exist_ok=True)

# --- Routes ---

@app.route('/', methods=['GET'])
def index():
    """Renders the main page with the input form."""
    return render_template('index.html', segment_regex=SEGMENT_REGEX)


_job_counter = itertools.count()


def _job_work_dir(output_path):
    """Per-job segment directory; jobs with the same output name never share one."""
    work_name = os.path.basename(output_path).replace('.', '_')
    timestamp = time.strftime("%Y%m%d-%H%M%S")
    return os.path.join(os.path.dirname(output_path), f"parts_{work_name}_{timestamp}_{next(_job_counter)}")


def run_download_job(template, output_path, pattern=None, playlist_url=None):
    """Runs one download (sequential or playlist) in a worker thread and logs errors."""
    download_dir = _job_work_dir(output_path)
    list_path = os.path.join(download_dir, "files.txt")
    downloaded_files = []
    try:
        print(f"[Job Start] {template.url} -> {output_path}")
        session = create_session(template)
        if playlist_url:
            playlist_text, media_url = fetch_playlist(session, playlist_url)
            segment_urls = extract_segment_urls(playlist_text, media_url)
            downloaded_files = download_playlist_segments(session, segment_urls, download_dir)
        else:
            result = fetch_sequential_segments(session, pattern, download_dir)
            downloaded_files = result.downloaded_files
            if result.error:
                print(f"[Job Error] {result.error}")

        if not downloaded_files:
            print(f"[Job Failure] No files were successfully downloaded for {template.url}")
        elif concatenate_segments(downloaded_files, list_path, output_path):
            print(f"[Job Success] Finished {output_path}")
        else:
            print(f"[Job Failure] Could not combine segments into {output_path}")
    except Exception as e:
        # Log exceptions occurring within the thread
        print(f"[Job Error] Failed to download {template.url}: {e}")
    finally:
        cleanup_temp_files(download_dir, downloaded_files, list_path)

# --- Filename Sanitization ---
def _sanitize_filename(name):
    """Removes invalid characters for filenames and limits length."""
    name = re.sub(r'[\\/*?:"<>|]', "", name)
    name = re.sub(r'\s+', '_', name)
    max_len = 150
    if len(name) > max_len:
        name = name[:max_len]
    # Ensure it's not empty or just dots after sanitization
    if not name or set(name) == {'.'}:
        return None
    return name


def _output_path(requested_name, fallback_name):
    output_filename = _sanitize_filename(requested_name) if requested_name else None
    if output_filename and not output_filename.lower().endswith('.mp4'):
        output_filename += '.mp4'
    if not output_filename:
        output_filename = _sanitize_filename(fallback_name)
    if not output_filename:
        output_filename = f"video_{time.strftime('%Y%m%d-%H%M%S')}.mp4"
    return os.path.join(app.config['DOWNLOAD_FOLDER'], output_filename)


@app.route('/download', methods=['POST'])
def handle_download():
    """Validates the submitted capture and starts the download in the background."""
    curl_command = request.form.get('curl_command', '').strip()
    m3u8_url = request.form.get('m3u8_url', '').strip()
    output_name = request.form.get('output_name', '').strip()

    if not curl_command and not m3u8_url:
        flash('Paste a curl command or enter an M3U8 URL.', 'error')
        return redirect(url_for('index'))
    if m3u8_url and not m3u8_url.startswith(('http://', 'https://')):
        flash(f'Invalid M3U8 URL: {m3u8_url}', 'error')
        return redirect(url_for('index'))

    try:
        template = parse_curl_command(curl_command) if curl_command else RequestTemplate(url=m3u8_url)
        pattern = None
        if m3u8_url:
            output_path = _output_path(output_name, playlist_output_name(m3u8_url))
        else:
            segment_regex = request.form.get('segment_regex', '').strip() or SEGMENT_REGEX
            result = infer_segment_pattern(template.url, segment_regex)
            if isinstance(result, Matched):
                pattern = result.pattern
            else:
                base_url = request.form.get('base_url', '').strip()
                if not base_url:
                    flash('Could not automatically detect segment number pattern. '
                          'Fill in base URL, starting number and suffix.', 'error')
                    return redirect(url_for('index'))
                pattern = manual_segment_pattern(base_url, request.form.get('start_number', ''),
                                                 request.form.get('suffix', ''))
            output_path = _output_path(output_name, default_output_name(pattern.base_url))
    except DownloaderError as e:
        flash(str(e), 'error')
        return redirect(url_for('index'))

    print(f"Starting background download: Output='{output_path}'")
    thread = threading.Thread(target=run_download_job, args=(template, output_path),
                              kwargs={'pattern': pattern, 'playlist_url': m3u8_url or None}, daemon=True)
    thread.start()
    flash(f'Started download of "{os.path.basename(output_path)}" in the background. '
          f'Check the "{DOWNLOAD_FOLDER}" directory for progress/completion.', 'info')
    return redirect(url_for('index'))


@app.route('/downloads/<filename>')
def serve_file(filename):
    """Serves the downloaded file."""
    print(f"Serving file: {filename} from {app.config['DOWNLOAD_FOLDER']}")
    return send_from_directory(app.config['DOWNLOAD_FOLDER'], filename, as_attachment=True)

if __name__ == '__main__':
    app.run(debug=True, host='127.0.0.1', port=5000)
