"""
Tests for deploysync.config module.
"""

import json
from pathlib import Path
from typing import Any, Dict
from unittest.mock import patch

import pytest

from deploysync.config import (
    auto_detect_profile,
    build_target,
    expand_env_vars,
    get_profile_config,
    load_config,
    load_config_with_sources,
    profile_excludes,
    resolve_targets,
)
from deploysync.errors import ConfigError
from deploysync.excludes import DEFAULT_IGNORE_PATTERNS
from deploysync.models import Protocol, SyncMode


class TestLoadConfig:
    """Tests for load_config function."""

    def test_load_config_returns_dict(
        self, isolated_home: Path, config_file: Path
    ) -> None:
        """Test that load_config returns a dictionary."""
        config = load_config(cwd=config_file.parent)

        assert isinstance(config, dict)
        assert "website" in config["profiles"]
        assert config["global_excludes"] == ["*.pyc", "__pycache__/"]

    def test_missing_config_raises(self, isolated_home: Path, temp_dir: Path) -> None:
        empty = temp_dir / "empty"
        empty.mkdir()
        with pytest.raises(ConfigError, match="not found"):
            load_config(cwd=empty)

    def test_deeper_config_overrides_and_excludes_add_up(
        self, isolated_home: Path, temp_dir: Path
    ) -> None:
        """Test hierarchical merging from the global file down to cwd."""
        global_dir = isolated_home / ".deploysync"
        global_dir.mkdir()
        (global_dir / "deploysync.json").write_text(
            json.dumps({"global_excludes": ["*.bak"]})
        )

        project = temp_dir / "project"
        nested = project / "site"
        nested.mkdir(parents=True)
        (project / ".deploysync.json").write_text(
            json.dumps(
                {
                    "global_excludes": ["*.log"],
                    "profiles": {
                        "web": {
                            "defaults": {"user": "deploy", "timeout": 10},
                            "targets": [{"host": "a", "dest": "/a"}],
                        }
                    },
                }
            )
        )
        (nested / ".deploysync.json").write_text(
            json.dumps({"profiles": {"web": {"defaults": {"timeout": 60}}}})
        )

        config, sources = load_config_with_sources(cwd=nested)

        assert config["global_excludes"] == ["*.bak", "*.log"]
        web = config["profiles"]["web"]
        assert web["defaults"] == {"user": "deploy", "timeout": 60}
        assert web["targets"] == [{"host": "a", "dest": "/a"}]
        assert web["local_basepath"] == str(project.resolve())
        assert len(sources["config_files"]) == 3
        assert len(sources["profiles"]["web"]["defined_in"]) == 2

    def test_relative_basepath_resolves_against_config_file(
        self, isolated_home: Path, temp_dir: Path
    ) -> None:
        (temp_dir / "public").mkdir()
        (temp_dir / ".deploysync.json").write_text(
            json.dumps({"profiles": {"web": {"local_basepath": "public", "targets": []}}})
        )

        config = load_config(cwd=temp_dir)

        assert config["profiles"]["web"]["local_basepath"] == str((temp_dir / "public").resolve())

    def test_invalid_json_is_skipped(self, isolated_home: Path, temp_dir: Path) -> None:
        (temp_dir / ".deploysync.json").write_text("{not json")
        with pytest.raises(ConfigError):
            load_config(cwd=temp_dir)


class TestGetProfileConfig:
    """Tests for get_profile_config function."""

    def test_get_existing_profile(self, sample_config: Dict[str, Any]) -> None:
        profile = get_profile_config(sample_config, "legacy-ftp")
        assert profile["targets"][0]["protocol"] == "ftp"

    def test_get_nonexistent_profile_raises(self, sample_config: Dict[str, Any]) -> None:
        with pytest.raises(ConfigError, match="legacy-ftp, website"):
            get_profile_config(sample_config, "nonexistent")


class TestResolveTargets:
    """Tests for resolve_targets function."""

    def test_defaults_are_merged_under_targets(self, sample_config: Dict[str, Any]) -> None:
        targets = resolve_targets(sample_config, "website")

        assert [t.host for t in targets] == ["web1.example.com", "web2.example.com"]
        assert targets[0].protocol == Protocol.SFTP
        assert targets[0].user == "deploy"
        assert targets[1].protocol == Protocol.RSYNC
        assert targets[1].sync_mode == SyncMode.MIRROR
        assert targets[0].resolved_port == 22

    def test_ignore_includes_profile_excludes(self, sample_config: Dict[str, Any]) -> None:
        sample_config["profiles"]["website"]["targets"][0]["ignore"] = ["uploads/"]

        target = resolve_targets(sample_config, "website")[0]

        assert target.ignore[: len(DEFAULT_IGNORE_PATTERNS)] == tuple(DEFAULT_IGNORE_PATTERNS)
        assert "*.pyc" in target.ignore
        assert "*.tmp" in target.ignore
        assert target.ignore[-1] == "uploads/"

    def test_env_vars_are_expanded(
        self, sample_config: Dict[str, Any], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FTP_PASSWORD", "from-env")
        sample_config["profiles"]["legacy-ftp"]["targets"][0]["password"] = "${FTP_PASSWORD}"

        target = resolve_targets(sample_config, "legacy-ftp")[0]

        assert target.password == "from-env"
        assert target.resolved_port == 21

    def test_unset_env_var_raises(
        self, sample_config: Dict[str, Any], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("DEPLOYSYNC_UNSET_VAR", raising=False)
        sample_config["profiles"]["legacy-ftp"]["targets"][0]["password"] = "${DEPLOYSYNC_UNSET_VAR}"

        with pytest.raises(ConfigError, match="DEPLOYSYNC_UNSET_VAR"):
            resolve_targets(sample_config, "legacy-ftp")

    def test_empty_targets_raises(self, sample_config: Dict[str, Any]) -> None:
        sample_config["profiles"]["website"]["targets"] = []
        with pytest.raises(ConfigError, match="non-empty"):
            resolve_targets(sample_config, "website")

    def test_duplicate_targets_raise(self, sample_config: Dict[str, Any]) -> None:
        targets = sample_config["profiles"]["website"]["targets"]
        targets.append(dict(targets[0]))

        with pytest.raises(ConfigError, match=r"targets\[2\] duplicates .*targets\[0\]"):
            resolve_targets(sample_config, "website")

    def test_same_host_and_dest_on_other_port_is_distinct(
        self, sample_config: Dict[str, Any]
    ) -> None:
        sample_config["profiles"]["website"]["targets"] = [
            {"host": "localhost", "dest": "/srv", "port": 2201},
            {"host": "localhost", "dest": "/srv", "port": 2202},
        ]

        targets = resolve_targets(sample_config, "website")

        assert [t.target_id for t in targets] == [
            "deploy@localhost:2201:/srv",
            "deploy@localhost:2202:/srv",
        ]


class TestBuildTarget:
    """Tests for build_target validation."""

    def test_minimal_sftp(self) -> None:
        target = build_target({"host": "h", "user": "u", "dest": "/d"}, "t")
        assert target.protocol == Protocol.SFTP
        assert target.sync_mode == SyncMode.UPDATE
        assert target.timeout == 30
        assert target.retry == 3
        assert target.passive is True

    def test_local_defaults_host(self) -> None:
        target = build_target({"protocol": "local", "dest": "/srv/out"}, "t")
        assert target.host == "localhost"
        assert target.target_id == "localhost:/srv/out"

    def test_remote_target_id_includes_login_and_port(self) -> None:
        target = build_target({"host": "h", "user": "u", "dest": "/d", "port": 2222}, "t")
        assert target.target_id == "u@h:2222:/d"

    def test_ftp_target_id_defaults_port(self) -> None:
        target = build_target({"host": "h", "protocol": "ftp", "dest": "/d"}, "t")
        assert target.target_id == "h:21:/d"

    @pytest.mark.parametrize(
        "data, message",
        [
            ({"host": "h", "user": "u"}, "dest is required"),
            ({"user": "u", "dest": "/d"}, "host is required"),
            ({"host": "h", "dest": "/d", "protocol": "scp"}, "user is required"),
            ({"host": "h", "user": "u", "dest": "/d", "protocol": "gopher"}, "invalid value"),
            ({"host": "h", "user": "u", "dest": "/d", "sync_mode": "copy"}, "invalid value"),
            ({"host": "h", "user": "u", "dest": "/d", "port": "abc"}, "must be an integer"),
            ({"host": "h", "user": "u", "dest": "/d", "retry": 0}, ">= 1"),
            ({"host": "h", "user": "u", "dest": "/d", "ignore": "*.log"}, "list of strings"),
            ({"host": "h", "user": "u", "dest": "/d", "hostname": "x"}, "unknown key"),
        ],
    )
    def test_invalid(self, data: Dict[str, Any], message: str) -> None:
        with pytest.raises(ConfigError, match=message):
            build_target(data, "t")

    def test_ftp_does_not_need_user(self) -> None:
        target = build_target({"protocol": "ftp", "host": "h", "dest": "/d"}, "t")
        assert target.user == ""

    def test_key_file_is_expanded(self) -> None:
        target = build_target(
            {"host": "h", "user": "u", "dest": "/d", "key_file": "~/.ssh/id_ed25519"}, "t"
        )
        assert target.key_file is not None
        assert not target.key_file.startswith("~")


class TestExpandEnvVars:
    """Tests for expand_env_vars function."""

    def test_nested_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEPLOY_HOST", "web.example.com")
        value = {"host": "${DEPLOY_HOST}", "ignore": ["${DEPLOY_HOST}.log"], "port": 22}

        assert expand_env_vars(value) == {
            "host": "web.example.com",
            "ignore": ["web.example.com.log"],
            "port": 22,
        }

    def test_plain_dollar_is_untouched(self) -> None:
        assert expand_env_vars("pa$$word $HOME") == "pa$$word $HOME"


class TestProfileExcludes:
    """Tests for profile_excludes function."""

    def test_order(self, sample_config: Dict[str, Any]) -> None:
        excludes = profile_excludes(sample_config, sample_config["profiles"]["website"])
        assert excludes == list(DEFAULT_IGNORE_PATTERNS) + ["*.pyc", "__pycache__/", "*.tmp"]


class TestAutoDetectProfile:
    """Tests for auto_detect_profile function."""

    def test_returns_matching_profile(self, temp_dir: Path, sample_config: Dict[str, Any]) -> None:
        sample_config["profiles"]["website"]["local_basepath"] = str(temp_dir)
        assert auto_detect_profile(sample_config, cwd=temp_dir) == "website"

    def test_prefers_deepest_path(self, temp_dir: Path, sample_config: Dict[str, Any]) -> None:
        nested = temp_dir / "nested"
        nested.mkdir()
        sample_config["profiles"]["website"]["local_basepath"] = str(temp_dir)
        sample_config["profiles"]["legacy-ftp"]["local_basepath"] = str(nested)

        assert auto_detect_profile(sample_config, cwd=nested) == "legacy-ftp"

    def test_prompts_when_ambiguous(self, temp_dir: Path, sample_config: Dict[str, Any]) -> None:
        sample_config["profiles"]["website"]["local_basepath"] = str(temp_dir)
        sample_config["profiles"]["legacy-ftp"]["local_basepath"] = str(temp_dir)

        with patch("deploysync.config.click.prompt", return_value=2):
            assert auto_detect_profile(sample_config, cwd=temp_dir) == "legacy-ftp"

    def test_returns_none_when_no_match(self, sample_config: Dict[str, Any]) -> None:
        assert auto_detect_profile(sample_config, cwd=Path("/nonexistent/path")) is None

    def test_empty_profiles(self) -> None:
        assert auto_detect_profile({"profiles": {}}) is None
