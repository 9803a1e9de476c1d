import base64
import os

import pytest

from timetrack.client.credential_store import FileCredentialStore, MemoryCredentialStore

FAST = 1_000


def _store(path, passphrase="correct horse"):
    return FileCredentialStore(path, passphrase, iterations=FAST)


def test_file_store_round_trip_is_encrypted_at_rest(tmp_path):
    path = tmp_path / "nested" / "token"
    store = _store(path)

    store.set_token("eyJhbGciOi.payload.sig")

    raw = path.read_text()
    assert raw.startswith("ENC:v2:")
    assert "payload" not in raw
    assert store.get_token() == "eyJhbGciOi.payload.sig"
    assert oct(os.stat(path).st_mode & 0o777) == oct(0o600)


def test_each_write_uses_a_fresh_salt(tmp_path):
    path = tmp_path / "token"
    store = _store(path)

    store.set_token("same-token")
    first = base64.b64decode(path.read_text()[len("ENC:v2:"):])
    store.set_token("same-token")
    second = base64.b64decode(path.read_text()[len("ENC:v2:"):])

    assert first[:16] != second[:16]
    assert store.get_token() == "same-token"


def test_default_iterations_stretch_the_passphrase(tmp_path):
    assert FileCredentialStore(tmp_path / "token", "pw").iterations >= 600_000


def test_wrong_passphrase_reads_as_signed_out(tmp_path):
    path = tmp_path / "token"
    _store(path).set_token("secret-token")

    assert _store(path, "battery staple").get_token() is None


@pytest.mark.parametrize(
    "content",
    ["plain-token", "ENC:v2:!!not base64!!", "ENC:v2:AAAA", "ENC:v1:" + base64.b64encode(b"x" * 40).decode()],
)
def test_unreadable_file_reads_as_signed_out(tmp_path, content):
    path = tmp_path / "token"
    path.write_text(content)
    assert _store(path).get_token() is None


def test_clear_removes_file_and_is_repeatable(tmp_path):
    path = tmp_path / "token"
    store = _store(path)
    store.set_token("secret-token")

    store.clear()
    store.clear()

    assert not path.exists()
    assert store.get_token() is None


def test_empty_passphrase_rejected(tmp_path):
    with pytest.raises(ValueError):
        FileCredentialStore(tmp_path / "token", "")


def test_memory_store():
    store = MemoryCredentialStore()
    assert store.get_token() is None
    store.set_token("abc")
    assert store.get_token() == "abc"
    store.clear()
    assert store.get_token() is None
