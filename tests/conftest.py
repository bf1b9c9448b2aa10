"""
Shared fixtures for apply_fuji_profile tests.
"""

import logging
import subprocess
from pathlib import Path

import pytest

import apply_fuji_profile
from photo_library import ImageRecord, LibraryError, Tag


class FakeLibrary:
    """In-memory photo library recording what was imported and tagged."""

    def __init__(self, reject=(), tag_error=False, size=(None, None)):
        self.reject = set(reject)
        self.tag_error = tag_error
        self.size = size
        self.imported = []
        self.tags = []

    def import_image(self, path):
        if path.name in self.reject:
            return None
        width, height = self.size
        record = ImageRecord(path=path, mime_type="image/jpeg", width=width, height=height)
        self.imported.append(record)
        return record

    def create_tag(self, name):
        return Tag(name)

    def attach_tag(self, tag, record):
        if self.tag_error:
            raise LibraryError(f"Failed to tag {record.path.name}")
        self.tags.append((tag.name, record.path))


class FakeRawji:
    """Stands in for subprocess.run; writes the output file unless told to fail."""

    def __init__(self, fail=(), returncode=1):
        self.fail = set(fail)
        self.returncode = returncode
        self.calls = []

    def __call__(self, argv, **kwargs):
        self.calls.append(list(argv))
        source, output = Path(argv[-2]), Path(argv[-1])
        if source.name in self.fail:
            return subprocess.CompletedProcess(argv, self.returncode, "", "decode error")
        output.write_bytes(b"\xff\xd8\xff\xe0 fake jpeg")
        return subprocess.CompletedProcess(argv, 0, "", "")


@pytest.fixture
def library():
    return FakeLibrary()


@pytest.fixture
def fake_rawji(monkeypatch):
    fake = FakeRawji()
    monkeypatch.setattr(apply_fuji_profile.subprocess, "run", fake)
    return fake


@pytest.fixture
def rawji_executable(tmp_path):
    """An executable file for find_executable to accept."""
    exe = tmp_path / "bin" / "rawji"
    exe.parent.mkdir()
    exe.write_text("#!/bin/sh\nexit 0\n")
    exe.chmod(0o755)
    return exe


@pytest.fixture
def roll(tmp_path):
    """A collection directory with three RAF files."""
    directory = tmp_path / "roll"
    directory.mkdir()
    images = []
    for name in ("IMG001.RAF", "IMG002.RAF", "IMG003.RAF"):
        (directory / name).write_bytes(b"FUJIFILMCCD-RAW ")
        images.append(apply_fuji_profile.SourceImage(path=directory, filename=name))
    return images


@pytest.fixture
def config(tmp_path, rawji_executable):
    tmp_dir = tmp_path / "tmp"
    tmp_dir.mkdir()
    return apply_fuji_profile.BatchConfig(tmp_dir=tmp_dir, executable=rawji_executable)


@pytest.fixture(autouse=True)
def _reset_logger():
    """main() detaches the logger from the root; restore it for caplog."""
    logger = logging.getLogger("apply_fuji_profile")
    yield
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
