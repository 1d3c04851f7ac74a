"""Tests for archive sources."""

import base64
import gzip
import io
import tarfile
from unittest.mock import patch

import httpx
import pytest

from archive_importer.module_resolution.errors import EmbeddedDataError
from archive_importer.module_resolution.errors import FetchError
from archive_importer.module_resolution.errors import SourceError
from archive_importer.module_resolution.sources import EmbeddedSource
from archive_importer.module_resolution.sources import GlobSource
from archive_importer.module_resolution.sources import UrlSource
from archive_importer.module_resolution.sources import expand_url
from archive_importer.module_resolution.sources import parse_source
from archive_importer.module_resolution.sources import resolve_glob_pattern
from archive_importer.module_resolution.sources import strip_tar_gz
from archive_importer.settings import ArchiveImporterSettings


def _names(stream) -> list[str]:
    with tarfile.open(fileobj=stream, mode="r|*") as tar:
        return [member.name for member in tar]


class TestResolveGlobPattern:
    def test_relative_to_caller_directory(self):
        assert resolve_glob_pattern("../ext/*.tgz", "/a/b/caller.ext") == "/a/ext/*.tgz"

    def test_not_relative_to_working_directory(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert resolve_glob_pattern("arclib/*.tgz", "/srv/app/main.py") == "/srv/app/arclib/*.tgz"

    def test_absolute_pattern_kept(self):
        assert resolve_glob_pattern("/opt/archives/*.tar", "/a/b/caller.py") == "/opt/archives/*.tar"

    def test_backslashes_normalized(self):
        assert resolve_glob_pattern("..\\ext\\*.tgz", "/a/b/caller.py") == "/a/ext/*.tgz"


def test_strip_tar_gz_only_strips_tar_gz():
    assert strip_tar_gz("JSON-PP-2.97001.tar.gz") == "JSON-PP-2.97001"
    assert strip_tar_gz("VMod.tgz") == "VMod.tgz"
    assert strip_tar_gz("extra.tar") == "extra.tar"


class TestGlobSource:
    def test_matches_sorted(self, tmp_path, make_archive):
        make_archive("arc/b.tgz", {"b.py": "B = 1\n"})
        make_archive("arc/a.tar.gz", {"a.py": "A = 1\n"})
        caller = tmp_path / "main.py"

        refs = GlobSource("arc/*", caller).resolve()
        try:
            assert [ref.source_path for ref in refs] == [
                str(tmp_path / "arc" / "a.tar.gz"),
                str(tmp_path / "arc" / "b.tgz"),
            ]
            assert [ref.name_prefix for ref in refs] == ["a", "b.tgz"]
            assert _names(refs[0].stream) == ["a.py"]
        finally:
            for ref in refs:
                ref.close()

    def test_no_match_is_error(self, tmp_path):
        with pytest.raises(SourceError, match="No archives match"):
            GlobSource("missing/*.tgz", tmp_path / "main.py").resolve()


class TestExpandUrl:
    def test_cpan_shorthand(self):
        name, url = expand_url("CPAN://JSON-PP-2.97001.tar.gz")
        assert name == "JSON-PP-2.97001"
        assert url == "https://www.cpan.org/modules/by-module/JSON/JSON-PP-2.97001.tar.gz"

    def test_cpan_shorthand_with_mirror(self):
        _, url = expand_url("CPAN://YAML-PP-0.007.tar.gz", "http://mirror.example.org/cpan/")
        assert url == "http://mirror.example.org/cpan/modules/by-module/YAML/YAML-PP-0.007.tar.gz"

    def test_full_url_unchanged(self):
        full = "https://www.cpan.org/modules/by-module/JSON/JSON-PP-2.97001.tar.gz"
        assert expand_url(full) == ("JSON-PP-2.97001", full)

    def test_url_without_archive_name(self):
        with pytest.raises(SourceError, match="archive name"):
            expand_url("https://example.org/download/latest")


class TestUrlSource:
    URL = "https://www.cpan.org/modules/by-module/JSON/JSON-PP-2.97001.tar.gz"

    def test_download_success(self, archive_bytes):
        body = archive_bytes({"JSON-PP-2.97001/lib/JSON/PP.pm": "package JSON::PP;\n1;\n"})
        response = httpx.Response(200, content=body, request=httpx.Request("GET", self.URL))

        with patch("archive_importer.module_resolution.sources.httpx.get", return_value=response) as mock_get:
            refs = UrlSource("CPAN://JSON-PP-2.97001.tar.gz").resolve()

        mock_get.assert_called_once()
        assert mock_get.call_args.args[0] == self.URL
        assert len(refs) == 1
        assert refs[0].name_prefix == "JSON-PP-2.97001"
        assert refs[0].source_path == "CPAN://JSON-PP-2.97001.tar.gz"
        assert refs[0].display_name == "CPAN://JSON-PP-2.97001.tar.gz"
        assert _names(refs[0].stream) == ["JSON-PP-2.97001/lib/JSON/PP.pm"]

    def test_non_success_status_is_fatal(self):
        response = httpx.Response(404, request=httpx.Request("GET", self.URL))

        with patch("archive_importer.module_resolution.sources.httpx.get", return_value=response):
            with pytest.raises(FetchError) as exc_info:
                UrlSource("CPAN://JSON-PP-2.97001.tar.gz").resolve()

        assert exc_info.value.status == 404
        assert exc_info.value.url == self.URL
        assert self.URL in str(exc_info.value)
        assert "404" in str(exc_info.value)

    def test_transport_error_is_fatal(self):
        error = httpx.ConnectError("connection refused")

        with patch("archive_importer.module_resolution.sources.httpx.get", side_effect=error):
            with pytest.raises(FetchError, match="connection refused"):
                UrlSource(self.URL).resolve()


def _caller_with_data(tmp_path, blocks: list[bytes]) -> str:
    encoded = "\n\n".join(base64.encodebytes(block).decode("ascii").strip() for block in blocks)
    caller = tmp_path / "script.py"
    caller.write_text(
        'import archive_importer\narchive_importer.install("__DATA__")\n\n'
        f"'''\n__DATA__\n{encoded}\n'''\n",
        encoding="utf-8",
    )
    return str(caller)


class TestEmbeddedSource:
    def test_compressed_and_uncompressed_blocks(self, tmp_path, archive_bytes):
        caller = _caller_with_data(
            tmp_path,
            [
                archive_bytes({"first.py": "X = 1\n"}, compress=True),
                archive_bytes({"second.py": "Y = 2\n"}, compress=False),
            ],
        )

        refs = EmbeddedSource(caller).resolve()

        assert len(refs) == 2
        assert isinstance(refs[0].stream, gzip.GzipFile)
        assert isinstance(refs[1].stream, io.BytesIO)
        assert [ref.name_prefix for ref in refs] == ["", ""]
        assert [ref.display_name for ref in refs] == ["", ""]
        assert refs[0].source_path == f"{caller}:__DATA__[1]"
        assert _names(refs[0].stream) == ["first.py"]
        assert _names(refs[1].stream) == ["second.py"]

    def test_data_after_last_marker_line(self, tmp_path, archive_bytes):
        block = base64.b64encode(archive_bytes({"late.py": ""})).decode("ascii")
        caller = tmp_path / "script.py"
        caller.write_text(f"# mentions __DATA__ inline\n'''\n__DATA__\n{block}\n'''\n", encoding="utf-8")

        refs = EmbeddedSource(caller).resolve()

        assert len(refs) == 1
        assert _names(refs[0].stream) == ["late.py"]

    def test_missing_marker(self, tmp_path):
        caller = tmp_path / "script.py"
        caller.write_text("print('no data')\n", encoding="utf-8")

        with pytest.raises(EmbeddedDataError, match="No __DATA__"):
            EmbeddedSource(caller).resolve()

    def test_invalid_base64(self, tmp_path):
        caller = tmp_path / "script.py"
        caller.write_text("x = 1\n'''\n__DATA__\nabc\n'''\n", encoding="utf-8")

        with pytest.raises(EmbeddedDataError, match="not valid base64"):
            EmbeddedSource(caller).resolve()

    def test_unreadable_caller(self, tmp_path):
        with pytest.raises(SourceError, match="Couldn't open"):
            EmbeddedSource(tmp_path / "missing.py").resolve()


class TestParseSource:
    def test_dispatch(self, tmp_path):
        settings = ArchiveImporterSettings(mirror="https://mirror.example.org")
        caller = tmp_path / "main.py"

        assert isinstance(parse_source("CPAN://Foo-1.0.tar.gz", caller, settings), UrlSource)
        assert isinstance(parse_source("http://example.org/Foo-1.0.tar.gz", caller, settings), UrlSource)
        assert isinstance(parse_source("__DATA__", caller, settings), EmbeddedSource)
        assert isinstance(parse_source("lib/*.tar", caller, settings), GlobSource)

    def test_url_source_uses_mirror_setting(self, tmp_path):
        settings = ArchiveImporterSettings(mirror="https://mirror.example.org")
        source = parse_source("CPAN://Foo-Bar-1.0.tar.gz", tmp_path / "main.py", settings)
        assert source.expanded_url == "https://mirror.example.org/modules/by-module/Foo/Foo-Bar-1.0.tar.gz"
