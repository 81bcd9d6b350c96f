from pathlib import Path

import pytest

from kiln import util
from kiln.error import KilnToolNotFoundError

pytestmark = [
    pytest.mark.unit,
]


def test_find_bin_by_environ(mocker):
    """Test finding a binary by environment variable"""
    mocker.patch.dict("kiln.util.os.environ", {"COSIGN_PATH": "/opt/bin/cosign"})
    assert util.find_bin("/tmp", "cosign", "COSIGN_PATH") == "/opt/bin/cosign"


def test_find_bin_by_which(mocker):
    """Test finding a binary on the PATH"""
    mocker.patch.dict("kiln.util.os.environ", {}, clear=True)
    mocker.patch("kiln.util.which", return_value="/usr/bin/cosign")
    assert util.find_bin("/tmp", "cosign", "COSIGN_PATH") == "cosign"


def test_find_bin_by_context(tmp_path, mocker):
    """Test finding a binary by context tools directory"""
    mocker.patch("kiln.util.which", return_value=None)
    mocker.patch.dict("kiln.util.os.environ", {}, clear=True)
    tools = tmp_path / "tools"
    tools.mkdir(parents=True, exist_ok=True)
    b = tools / "op"
    b.touch(exist_ok=True)
    assert util.find_bin(tmp_path, "op", "OP_PATH") == str(b)


def test_find_bin_not_found(tmp_path, mocker):
    """Test trying to find a binary that does not exist raises an error"""
    mocker.patch("kiln.util.which", return_value=None)
    mocker.patch.dict("kiln.util.os.environ", {}, clear=True)
    with pytest.raises(KilnToolNotFoundError):
        util.find_bin(tmp_path, "op", "OP_PATH")


def test_sha256_digest():
    assert util.sha256_digest(b"") == "sha256:e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def test_auto_path(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert util.auto_path() == Path(tmp_path)
