import os

import pytest
import ujson

from mcmotd_scanner.exceptions import PayloadDecodeError, PersistError
from mcmotd_scanner.models import Endpoint
from mcmotd_scanner.storage import (
    artifact_stem,
    check_acceptance,
    decode_favicon,
    parse_status,
    save_artifacts,
)

STATUS = {
    "description": {"text": "A"},
    "players": {"max": 50, "online": 1},
    "version": {"name": "1.20", "protocol": 760},
    "favicon": "data:image/png;base64,AAAA",
}


def status(**changes):
    data = ujson.loads(ujson.dumps(STATUS))
    for path, value in changes.items():
        *parents, key = path.split("__")
        node = data
        for parent in parents:
            node = node[parent]
        if value is None:
            node.pop(key, None)
        else:
            node[key] = value
    return parse_status(ujson.dumps(data).encode())


def test_parse_status():
    payload = parse_status(ujson.dumps(STATUS).encode())
    assert payload.description.text == "A"
    assert payload.players.max == 50
    assert payload.players.online == 1
    assert payload.players.sample is None
    assert payload.version.name == "1.20"
    assert payload.version.protocol == 760
    assert payload.favicon == "data:image/png;base64,AAAA"


def test_parse_status_sample_and_extra_keys():
    data = dict(STATUS)
    data["players"] = {
        "max": 50,
        "online": 1,
        "sample": [{"name": "Steve", "id": "069a79f4-44e9-4726-a5be-fca90e38aaf5"}],
    }
    data["enforcesSecureChat"] = True
    payload = parse_status(ujson.dumps(data).encode())
    assert payload.players.sample[0].name == "Steve"


@pytest.mark.parametrize(
    "raw",
    [
        b"",
        b"{",
        b"not json",
        b"\xff\xfe",
        b"[]",
        b'{"description": "plain string", "players": {"max": 1, "online": 0},'
        b' "version": {"name": "x", "protocol": 1}}',
        b'{"description": {"text": "A"}, "version": {"name": "x", "protocol": 1}}',
        b'{"description": {"text": "A"}, "players": {"max": -1, "online": 0},'
        b' "version": {"name": "x", "protocol": 1}}',
        b'{"description": {"text": "A"}, "players": {"max": "50", "online": 0},'
        b' "version": {"name": "x", "protocol": 1}}',
        b'{"description": {"text": "A"}, "players": {"max": 50, "online": 0},'
        b' "version": {"name": "x", "protocol": "760"}}',
        b'{"description": {"text": 1}, "players": {"max": 50, "online": true},'
        b' "version": {"name": "x", "protocol": 760}}',
        b'{"description": {"text": "\\ud800"}, "players": {"max": 50, "online": 0},'
        b' "version": {"name": "x", "protocol": 760}}',
    ],
)
def test_parse_status_invalid(raw):
    with pytest.raises(PayloadDecodeError):
        parse_status(raw)


def test_check_acceptance_accepts():
    assert check_acceptance(status(), 760, 50) is None


@pytest.mark.parametrize(
    "changes, reason",
    [
        ({"players__max": 20}, "max_players"),
        ({"favicon": None}, "favicon"),
        ({"favicon": ""}, "favicon"),
        ({"version__protocol": 759}, "protocol"),
        ({"players__max": 20, "version__protocol": 759}, "max_players"),
    ],
)
def test_check_acceptance_rejects(changes, reason):
    assert check_acceptance(status(**changes), 760, 50) == reason


def test_check_acceptance_uses_configured_values():
    payload = status(players__max=20, version__protocol=763)
    assert check_acceptance(payload, 763, 20) is None


def test_artifact_stem():
    assert artifact_stem(Endpoint("1.2.3.4", 25565)) == "1.2.3.4_25565"
    assert artifact_stem(Endpoint("::1", 25565)) == "__1_25565"
    assert artifact_stem(Endpoint("mc.example.com", 1)) == "mc.example.com_1"


def test_decode_favicon():
    assert decode_favicon("data:image/png;base64,AAAA") == b"\x00\x00\x00"


def test_save_artifacts(tmp_path):
    payload = status()
    written = save_artifacts(payload, Endpoint("1.2.3.4", 25565), str(tmp_path))

    json_file = tmp_path / "1.2.3.4_25565.json"
    png_file = tmp_path / "1.2.3.4_25565.png"
    assert written == [str(json_file), str(png_file)]

    text = json_file.read_text(encoding="utf-8")
    assert "\n  " in text
    saved = ujson.loads(text)
    assert saved["description"] == {"text": "A"}
    assert saved["players"] == {"max": 50, "online": 1, "sample": None}
    assert saved["version"] == {"name": "1.20", "protocol": 760}
    assert saved["favicon"] == "data:image/png;base64,AAAA"
    assert png_file.read_bytes() == b"\x00\x00\x00"


def test_save_artifacts_invalid_favicon_keeps_json(tmp_path):
    payload = status(favicon="data:image/png;base64,@@@")
    with pytest.raises(PersistError):
        save_artifacts(payload, Endpoint("1.2.3.4", 25565), str(tmp_path))
    assert os.listdir(tmp_path) == ["1.2.3.4_25565.json"]


def test_save_artifacts_missing_directory(tmp_path):
    with pytest.raises(PersistError):
        save_artifacts(status(), Endpoint("1.2.3.4", 25565), str(tmp_path / "missing"))


def test_save_artifacts_unencodable_status_writes_nothing(tmp_path):
    payload = status()
    payload.description.text = "\ud800"
    with pytest.raises(PersistError):
        save_artifacts(payload, Endpoint("1.2.3.4", 25565), str(tmp_path))
    assert os.listdir(tmp_path) == []
