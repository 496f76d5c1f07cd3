"""Tests for aps_backup utilities, config, models and HTTP client."""

import os
import threading
from unittest.mock import MagicMock

import pytest
import requests

from aps_backup import cli
from aps_backup.client import DataManagementClient, build_session
from aps_backup.config import Config, _load_env_file
from aps_backup.exceptions import FetchTimeout, ScopeNotFound, UpstreamError
from aps_backup.models import BackupScope, BackupStats, ContainerNode, NodeType, Version
from aps_backup.utils import (
    call_with_timeout,
    human_size,
    human_time,
    join_archive_path,
    sanitize_name,
    select_latest_version,
)


class TestSanitizeName:
    """Tests for archive path segment sanitization."""

    def test_plain_name_unchanged(self):
        assert sanitize_name("Floor Plan v2.dwg") == "Floor Plan v2.dwg"

    def test_illegal_characters_replaced(self):
        assert sanitize_name('a<b>c:d"e/f\\g|h?i*j') == "a_b_c_d_e_f_g_h_i_j"

    def test_control_characters_replaced(self):
        assert sanitize_name("tab\there\nnew\x00nul\x1f") == "tab_here_new_nul_"

    def test_truncated_to_255(self):
        assert len(sanitize_name("x" * 1000)) == 255
        assert len(sanitize_name("?" * 300)) == 255

    def test_empty_and_missing_names(self):
        assert sanitize_name("") == "_"
        assert sanitize_name(None) == "_"

    def test_relative_segments(self):
        assert sanitize_name(".") == "_"
        assert sanitize_name("..") == "__"
        assert sanitize_name("...") == "..."

    def test_idempotent(self):
        samples = [
            "normal.txt",
            'bad<>:"/\\|?*name',
            "\x01\x02ctrl",
            "",
            "..",
            "é unicode ✓",
            "y" * 400,
        ]
        for sample in samples:
            once = sanitize_name(sample)
            assert sanitize_name(once) == once

    def test_join_archive_path(self):
        assert join_archive_path("hub", "project", "file.txt") == "hub/project/file.txt"
        assert join_archive_path("", "project") == "project"


class TestUtils:
    """Tests for helper functions."""

    def test_human_size(self):
        assert human_size(0) == "0.00 B"
        assert human_size(1024) == "1.00 KB"
        assert human_size(1024 ** 3) == "1.00 GB"

    def test_human_time(self):
        assert human_time(None) == "calculating..."
        assert human_time(-1) == "unknown"
        assert human_time(90) == "1m 30s"
        assert human_time(3660) == "1h 1m"

    def test_call_with_timeout_returns_result(self):
        assert call_with_timeout(lambda a, b: a + b, 1.0, 2, 3) == 5

    def test_call_with_timeout_propagates_errors(self):
        def boom():
            raise UpstreamError("nope")

        with pytest.raises(UpstreamError):
            call_with_timeout(boom, 1.0)

    def test_call_with_timeout_raises_fetch_timeout(self):
        release = threading.Event()
        try:
            with pytest.raises(FetchTimeout) as exc_info:
                call_with_timeout(release.wait, 0.05, 2.0, description="slow listing")
            assert "slow listing" in str(exc_info.value)
            assert isinstance(exc_info.value, UpstreamError)
        finally:
            release.set()

    def test_select_latest_version_prefers_highest_number(self):
        versions = [
            Version("v1", "a", version_number=1, storage_url="u1"),
            Version("v3", "a", version_number=3, storage_url="u3"),
            Version("v2", "a", version_number=2, storage_url="u2"),
        ]
        assert select_latest_version(versions).id == "v3"

    def test_select_latest_version_falls_back_to_first(self):
        versions = [Version("first", "a"), Version("second", "a", version_number=9)]
        assert select_latest_version(versions).id == "first"

    def test_select_latest_version_uses_last_modified_without_numbers(self):
        versions = [
            Version("older", "a", last_modified="2024-03-01T10:00:00.0000000Z"),
            Version("newer", "a", last_modified="2024-05-20T08:30:00.0000000Z"),
        ]
        assert select_latest_version(versions).id == "newer"

    def test_select_latest_version_empty(self):
        assert select_latest_version([]) is None


class TestConfig:
    """Tests for configuration."""

    def test_default_config(self):
        config = Config()
        assert config.list_timeout == 15.0
        assert config.version_timeout == 15.0
        assert config.compression_level == 9
        assert config.max_concurrent_fetches == 1

    def test_validation_missing_auth(self):
        errors = Config().validate()
        assert any("authentication" in e.lower() for e in errors)

    def test_validation_placeholder_token(self):
        errors = Config(access_token="PASTE_TOKEN_HERE").validate()
        assert any("placeholder" in e.lower() for e in errors)

    def test_validation_refresh_auth_is_enough(self):
        config = Config(client_id="id", client_secret="secret", refresh_token="r")
        assert config.has_refresh_token_auth() is True
        assert config.validate() == []

    def test_validation_ranges(self):
        config = Config(
            access_token="t",
            compression_level=11,
            list_timeout=0,
            max_concurrent_fetches=0,
        )
        errors = config.validate()
        assert "compression_level must be between 0 and 9" in errors
        assert "list_timeout must be positive" in errors
        assert "max_concurrent_fetches must be at least 1" in errors

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setattr(os, "environ", {"APS_LIST_TIMEOUT": "5"})
        env_file = tmp_path / ".env"
        env_file.write_text(
            '# comment\nAPS_ACCESS_TOKEN="abc"\nAPS_LIST_TIMEOUT=30\n'
            "APS_BASE_URL=https://example.test/\nnot a pair\n",
            encoding="utf-8",
        )

        config = Config.from_env(env_file)

        assert config.access_token == "abc"
        assert config.list_timeout == 5.0  # environment wins over .env
        assert config.base_url == "https://example.test"

    def test_load_env_file_missing(self, monkeypatch, tmp_path):
        monkeypatch.setattr(os, "environ", {})
        _load_env_file(tmp_path / "absent.env")
        assert os.environ == {}


class TestModels:
    """Tests for data models."""

    def test_node_from_json_uses_display_name(self):
        node = ContainerNode.from_json({
            "id": "urn:folder",
            "type": "folders",
            "attributes": {"name": "raw", "displayName": "Plans"},
        })
        assert node.name == "Plans"
        assert node.type is NodeType.FOLDER
        assert node.is_folder and not node.is_item

    def test_hub_from_json_uses_name(self):
        node = ContainerNode.from_json({"id": "b.1", "type": "hubs", "attributes": {"name": "Acme"}})
        assert node.name == "Acme"
        assert node.type is NodeType.HUB

    def test_version_from_json(self):
        version = Version.from_json({
            "id": "urn:v:1",
            "type": "versions",
            "attributes": {"displayName": "model.rvt", "versionNumber": 4},
            "relationships": {
                "storage": {"meta": {"link": {"href": "https://oss/bucket/model.rvt"}}}
            },
        })
        assert version.name == "model.rvt"
        assert version.version_number == 4
        assert version.storage_url == "https://oss/bucket/model.rvt"

    def test_version_without_storage(self):
        version = Version.from_json({"id": "v", "type": "versions", "attributes": {}})
        assert version.storage_url is None
        assert version.name == "v"

    def test_scope(self):
        assert BackupScope.full().is_full
        scoped = BackupScope.scoped("h", "p")
        assert not scoped.is_full
        with pytest.raises(ScopeNotFound):
            BackupScope.scoped("h", "")

    def test_stats_increment(self):
        stats = BackupStats()
        stats.increment("items_archived")
        stats.increment("bytes_archived", 2048)
        stats.increment("items_failed")
        assert stats.items_processed == 2
        assert stats.to_dict()["bytes_archived"] == 2048


def _response(body=None, status=200, url="https://api.test/x"):
    resp = MagicMock()
    resp.ok = 200 <= status < 300
    resp.status_code = status
    resp.text = "error body"
    resp.reason = "Not Found"
    resp.url = url
    resp.json.return_value = body
    return resp


class TestDataManagementClient:
    """Tests for the HTTP client against a mocked session."""

    def _client(self, *responses):
        session = MagicMock()
        session.request.side_effect = list(responses)
        config = Config(access_token="t", base_url="https://api.test")
        return DataManagementClient(config, session=session), session

    def test_build_session_mounts_retry_adapter(self):
        session = build_session(Config(max_retries=2))
        adapter = session.get_adapter("https://developer.api.autodesk.com")
        assert adapter.max_retries.total == 2
        assert 429 in adapter.max_retries.status_forcelist

    def test_list_hubs_sends_bearer_token(self):
        client, session = self._client(_response({
            "data": [{"id": "h1", "type": "hubs", "attributes": {"name": "Acme"}}],
        }))

        hubs = client.list_hubs("secret")

        assert [h.name for h in hubs] == ["Acme"]
        method, url = session.request.call_args.args
        assert method == "GET"
        assert url == "https://api.test/project/v1/hubs"
        assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer secret"

    def test_pagination_follows_next_links(self):
        client, session = self._client(
            _response({
                "data": [{"id": "f1", "type": "folders", "attributes": {"displayName": "A"}}],
                "links": {"next": {"href": "https://api.test/page2"}},
            }),
            _response({
                "data": [{"id": "i1", "type": "items", "attributes": {"displayName": "B"}}],
                "links": {},
            }),
        )

        nodes = client.list_folder_contents("p1", "f0", "t")

        assert [n.id for n in nodes] == ["f1", "i1"]
        assert session.request.call_args_list[1].args[1] == "https://api.test/page2"

    def test_list_children_dispatch(self):
        client, session = self._client(_response({"data": []}), _response({"data": []}))

        client.list_children("h1", "p1", None, "t")
        client.list_children("h1", "p1", "f1", "t")

        urls = [c.args[1] for c in session.request.call_args_list]
        assert urls == [
            "https://api.test/project/v1/hubs/h1/projects/p1/topFolders",
            "https://api.test/data/v1/projects/p1/folders/f1/contents",
        ]

    def test_unknown_resource_types_ignored(self):
        client, _ = self._client(_response({
            "data": [
                {"id": "x", "type": "commands", "attributes": {}},
                {"id": "i1", "type": "items", "attributes": {"displayName": "B"}},
            ],
        }))
        assert [n.id for n in client.list_folder_contents("p", "f", "t")] == ["i1"]

    def test_list_item_versions(self):
        client, _ = self._client(_response({
            "data": [{
                "id": "v2",
                "type": "versions",
                "attributes": {"displayName": "a.pdf", "versionNumber": 2},
                "relationships": {"storage": {"meta": {"link": {"href": "https://oss/a"}}}},
            }],
        }))
        versions = client.list_item_versions("p1", "i1", "t")
        assert versions[0].storage_url == "https://oss/a"

    def test_http_error_becomes_upstream_error(self):
        client, _ = self._client(_response(status=404))
        with pytest.raises(UpstreamError) as exc_info:
            client.list_projects("h1", "t")
        assert exc_info.value.status_code == 404

    def test_network_error_becomes_upstream_error(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("reset")
        client = DataManagementClient(Config(access_token="t"), session=session)
        with pytest.raises(UpstreamError):
            client.list_hubs("t")

    def test_get_item(self):
        client, session = self._client(_response({
            "data": {"id": "i1", "type": "items", "attributes": {"displayName": "model.rvt"}},
        }))

        item = client.get_item("p1", "i1", "t")

        assert item.name == "model.rvt"
        assert item.is_item
        assert session.request.call_args.args[1] == "https://api.test/data/v1/projects/p1/items/i1"

    def test_open_version_content_streams(self):
        resp = _response()
        client, session = self._client(resp)

        assert client.open_version_content("https://oss/a", "t") is resp
        assert session.request.call_args.kwargs["stream"] is True
        assert session.request.call_args.args[1] == "https://oss/a"

    def test_authorization_url(self):
        config = Config(client_id="cid", callback_url="http://localhost/cb")
        client = DataManagementClient(config, session=MagicMock())
        url = client.authorization_url(["data:read"])
        assert url.startswith("https://developer.api.autodesk.com/authentication/v2/authorize?")
        assert "client_id=cid" in url
        assert "scope=data%3Aread" in url

    def test_exchange_code_uses_basic_auth(self):
        client, session = self._client(_response({"access_token": "a", "refresh_token": "r"}))
        client.config.client_id = "cid"
        client.config.client_secret = "sec"

        tokens = client.exchange_code("code123")

        assert tokens["access_token"] == "a"
        kwargs = session.request.call_args.kwargs
        assert kwargs["auth"] == ("cid", "sec")
        assert kwargs["data"]["grant_type"] == "authorization_code"
        assert kwargs["data"]["code"] == "code123"


class TestListCommand:
    """Tests for the ``ls`` command."""

    def _run(self, monkeypatch, argv):
        client = MagicMock()
        client.get_item.return_value = ContainerNode("i1", "model.rvt", NodeType.ITEM)
        client.list_item_versions.return_value = [
            Version("urn:v:1", "model.rvt", version_number=1),
            Version("urn:v:2", "model.rvt", version_number=2),
        ]
        monkeypatch.setattr(cli, "connect", lambda config: (client, "t"))
        args = cli.build_parser().parse_args(argv)
        return cli.run_list(args, Config(access_token="t")), client

    def test_item_versions(self, monkeypatch, capsys):
        code, client = self._run(monkeypatch, ["ls", "--project", "p1", "--item", "i1"])

        assert code == 0
        client.get_item.assert_called_once_with("p1", "i1", "t")
        out = capsys.readouterr().out
        assert "Versions of model.rvt" in out
        assert "urn:v:2" in out

    def test_item_needs_project(self, monkeypatch):
        code, client = self._run(monkeypatch, ["ls", "--item", "i1"])

        assert code == 2
        client.get_item.assert_not_called()
