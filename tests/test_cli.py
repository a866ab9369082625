import socket
import threading

import pytest
import ujson

from mcmotd_scanner import config as config_module
from mcmotd_scanner import main
from mcmotd_scanner.config import load_config
from mcmotd_scanner.protocol import build_handshake, build_status_request, pack_varint

STATUS = {
    "description": {"text": "§aHello"},
    "players": {"max": 50, "online": 3},
    "version": {"name": "1.19.2", "protocol": 760},
    "favicon": "data:image/png;base64,iVBORw0KGgo=",
}


def start_status_server(status: dict) -> tuple[int, threading.Thread]:
    """Minimal TCP server answering one status request, then closing."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(1)
    port = sock.getsockname()[1]
    request_size = len(build_handshake("127.0.0.1", port, 760) + build_status_request())

    raw = ujson.dumps(status).encode()
    body = pack_varint(0) + pack_varint(len(raw)) + raw
    frame = pack_varint(len(body)) + body

    def _run():
        conn, _ = sock.accept()
        try:
            conn.settimeout(5)
            received = b""
            while len(received) < request_size:
                chunk = conn.recv(request_size - len(received))
                if not chunk:
                    break
                received += chunk
            conn.sendall(frame)
        finally:
            conn.close()
            sock.close()

    thread = threading.Thread(target=_run, daemon=True)
    thread.start()
    return port, thread


def test_main_scans_targets(tmp_path):
    port, thread = start_status_server(STATUS)
    targets = tmp_path / "servers.txt"
    targets.write_text(f"127.0.0.1:{port}\n", encoding="utf-8")
    output = tmp_path / "out"

    assert main([str(targets), "-o", str(output), "-c", "4"]) == 0
    thread.join(5)

    saved = ujson.loads((output / f"127.0.0.1_{port}.json").read_text("utf-8"))
    assert saved["description"]["text"] == "§aHello"
    assert saved["players"]["online"] == 3
    assert (output / f"127.0.0.1_{port}.png").read_bytes() == b"\x89PNG\r\n\x1a\n"


def test_main_missing_targets(tmp_path):
    assert main([str(tmp_path / "missing.txt"), "-o", str(tmp_path)]) == 1


def test_main_invalid_config(tmp_path):
    config = tmp_path / "mcscan.json"
    config.write_text('{"mcscan": {"concurrency": 0}}', encoding="utf-8")
    targets = tmp_path / "servers.txt"
    targets.write_text("127.0.0.1\n", encoding="utf-8")
    assert main([str(targets), "--config", str(config)]) == 1


def deny_open(*args, **kwargs):
    raise PermissionError(13, "Permission denied")


def test_load_config_unreadable(tmp_path, monkeypatch):
    file = tmp_path / "mcscan.json"
    file.write_text("{}", encoding="utf-8")
    monkeypatch.setattr(config_module, "open", deny_open, raising=False)
    with pytest.raises(ValueError, match="Unable to read config file"):
        load_config(str(file))


def test_load_config_directory(tmp_path):
    with pytest.raises(ValueError):
        load_config(str(tmp_path))


def test_main_unreadable_config(tmp_path, monkeypatch):
    config = tmp_path / "mcscan.json"
    config.write_text("{}", encoding="utf-8")
    targets = tmp_path / "servers.txt"
    targets.write_text("127.0.0.1\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "open", deny_open, raising=False)
    assert main([str(targets), "--config", str(config)]) == 1


def test_main_requires_targets():
    assert main([]) == 2


def test_load_config(tmp_path):
    assert load_config().protocol_version == 760

    file = tmp_path / "mcscan.json"
    file.write_text(
        '{"mcscan": {"idle_timeout": 1.5, "player_cap": 20, "output_dir": "out"}}',
        encoding="utf-8",
    )
    config = load_config(str(file))
    assert config.idle_timeout == 1.5
    assert config.player_cap == 20
    assert config.output_dir == "out"
    assert config.chunk_size == 255
    assert config.buffer_limit == 0x100000
