import io
import sys

import pytest

import segment_downloader
from conftest import FakeSession

CAPTURE = "curl 'https://cdn.example.com/hls/lesson_0001.ts' -H 'Referer: https://player.example.com/' -b 'sid=1'\n"


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    curl_file = tmp_path / 'capture.txt'
    curl_file.write_text(CAPTURE, encoding='utf-8')
    return tmp_path


@pytest.fixture
def merges(monkeypatch):
    calls = []

    def fake_concatenate(files, list_path, output_path, ffmpeg_bin='ffmpeg'):
        calls.append((list(files), list_path, output_path))
        return True

    monkeypatch.setattr(segment_downloader, 'concatenate_segments', fake_concatenate)
    return calls


def _use_session(monkeypatch, session):
    templates = []

    def fake_create_session(template=None):
        templates.append(template)
        return session

    monkeypatch.setattr(segment_downloader, 'create_session', fake_create_session)
    return templates


def test_sequential_mode(workspace, monkeypatch, merges):
    session = FakeSession({f'https://cdn.example.com/hls/lesson_{i:04d}.ts': b'x' * 2000 for i in (1, 2, 3)})
    templates = _use_session(monkeypatch, session)

    status = segment_downloader.main(['--curl-file', 'capture.txt'])

    assert status == 0
    assert templates[0].cookie == 'sid=1'
    files, list_path, output = merges[0]
    assert [f.replace('\\', '/') for f in files] == ['ts_parts/0001.ts', 'ts_parts/0002.ts', 'ts_parts/0003.ts']
    assert list_path == 'files.txt'
    assert output == 'lesson.mp4'


def test_sequential_mode_manual_fallback(workspace, monkeypatch, merges):
    (workspace / 'capture.txt').write_text("curl 'https://cdn.example.com/hls/frag7-v1.ts?sig=x'", encoding='utf-8')
    session = FakeSession({'https://cdn.example.com/hls/frag7-v1.ts?sig=x': b'x' * 2000})
    _use_session(monkeypatch, session)
    answers = iter(['https://cdn.example.com/hls/frag', '7', '-v1.ts?sig=x'])

    status = segment_downloader.main(['--curl-file', 'capture.txt', '-o', 'clip.mp4'],
                                     prompt=lambda _: next(answers))

    assert status == 0
    assert merges[0][2] == 'clip.mp4'
    assert len(merges[0][0]) == 1


def test_non_numeric_manual_start_exits_non_zero(workspace, monkeypatch, merges, capsys):
    (workspace / 'capture.txt').write_text("curl 'https://cdn.example.com/hls/frag.ts'", encoding='utf-8')
    _use_session(monkeypatch, FakeSession())
    answers = iter(['https://cdn.example.com/hls/frag', 'one', '.ts'])

    status = segment_downloader.main(['--curl-file', 'capture.txt'], prompt=lambda _: next(answers))

    assert status == 1
    assert merges == []
    assert "Starting number must be numeric" in capsys.readouterr().out


def test_missing_url_exits_non_zero(workspace, merges):
    (workspace / 'capture.txt').write_text("-H 'Accept: */*'", encoding='utf-8')

    assert segment_downloader.main(['--curl-file', 'capture.txt']) == 1


def test_zero_downloads_exits_non_zero(workspace, monkeypatch, merges, capsys):
    _use_session(monkeypatch, FakeSession())

    status = segment_downloader.main(['--curl-file', 'capture.txt'])

    assert status == 1
    assert merges == []
    assert "No files were successfully downloaded." in capsys.readouterr().out


def test_playlist_mode(workspace, monkeypatch, merges):
    playlist_url = 'https://cdn.example.com/vod/episode.m3u8'
    session = FakeSession({
        playlist_url: "#EXTM3U\n#EXTINF:4.0,\na.ts\n#EXTINF:4.0,\nb.ts\n",
        'https://cdn.example.com/vod/a.ts': b'a' * 2000,
        'https://cdn.example.com/vod/b.ts': 404,
    })
    templates = _use_session(monkeypatch, session)

    status = segment_downloader.main(['-m', playlist_url, '--download-dir', 'parts'])

    assert status == 0
    assert templates[0].url == playlist_url
    assert templates[0].headers == ()
    files, _, output = merges[0]
    assert [f.replace('\\', '/') for f in files] == ['parts/00000.ts']
    assert output == 'episode.mp4'


def test_playlist_mode_uses_captured_headers(workspace, monkeypatch, merges):
    playlist_url = 'https://cdn.example.com/vod/episode.m3u8'
    session = FakeSession({playlist_url: "#EXTM3U\n#EXTINF:4.0,\na.ts\n",
                           'https://cdn.example.com/vod/a.ts': b'a' * 2000})
    templates = _use_session(monkeypatch, session)

    assert segment_downloader.main(['-m', playlist_url, '--curl-file', 'capture.txt']) == 0
    assert templates[0].headers == (('Referer', 'https://player.example.com/'),)


def test_failed_playlist_download_exits_non_zero(workspace, monkeypatch, merges):
    _use_session(monkeypatch, FakeSession())

    assert segment_downloader.main(['-m', 'https://cdn.example.com/vod/missing.m3u8']) == 1
    assert merges == []


def test_cleanup_flag(workspace, monkeypatch, merges):
    session = FakeSession({'https://cdn.example.com/hls/lesson_0001.ts': b'x' * 2000})
    _use_session(monkeypatch, session)

    assert segment_downloader.main(['--curl-file', 'capture.txt', '--cleanup']) == 0
    assert not (workspace / 'ts_parts').exists()


def test_reads_curl_command_from_stream():
    stream = io.StringIO("\ncurl 'https://example.com/a_1.ts' \\\n  -H 'Accept: */*'\n")

    text = segment_downloader.read_curl_command(stream=stream)

    assert text.startswith("curl 'https://example.com/a_1.ts'")


def test_piped_capture_prompts_on_terminal(workspace, monkeypatch, merges):
    monkeypatch.setattr(sys, 'stdin', io.StringIO("curl 'https://cdn.example.com/hls/frag7-v1.ts'\n"))
    _use_session(monkeypatch, FakeSession({'https://cdn.example.com/hls/frag7-v1.ts': b'x' * 2000}))
    # One terminal read per question
    answers = iter(["https://cdn.example.com/hls/frag\n", "7\n", "-v1.ts\n"])
    monkeypatch.setattr(segment_downloader, 'open_terminal', lambda: io.StringIO(next(answers)))

    assert segment_downloader.main([]) == 0
    assert len(merges[0][0]) == 1
    assert merges[0][2] == 'frag.mp4'


def test_piped_capture_without_terminal_exits_non_zero(workspace, monkeypatch, merges, capsys):
    monkeypatch.setattr(sys, 'stdin', io.StringIO("curl 'https://cdn.example.com/hls/frag7-v1.ts'\n"))

    def no_terminal():
        raise OSError("No such device or address: '/dev/tty'")

    monkeypatch.setattr(segment_downloader, 'open_terminal', no_terminal)

    assert segment_downloader.main([]) == 1
    assert merges == []
    assert "Could not read manual segment pattern" in capsys.readouterr().out


def test_playlist_mode_reads_pasted_capture(workspace, monkeypatch, merges):
    playlist_url = 'https://cdn.example.com/vod/episode.m3u8'
    monkeypatch.setattr(sys, 'stdin', io.StringIO(CAPTURE))
    session = FakeSession({playlist_url: "#EXTM3U\n#EXTINF:4.0,\na.ts\n",
                           'https://cdn.example.com/vod/a.ts': b'a' * 2000})
    templates = _use_session(monkeypatch, session)

    assert segment_downloader.main(['-m', playlist_url, '--paste']) == 0
    assert templates[0].cookie == 'sid=1'
    assert templates[0].headers == (('Referer', 'https://player.example.com/'),)
