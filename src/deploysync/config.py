"""
Configuration loading and merging for deploysync.

Handles hierarchical configuration from global and project-level files
and resolves a profile's targets into TargetConfig objects.
"""

import json
import logging
import os
import re
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click

from deploysync.errors import ConfigError
from deploysync.excludes import DEFAULT_IGNORE_PATTERNS
from deploysync.models import SSH_PROTOCOLS, Protocol, SyncMode, TargetConfig

logger = logging.getLogger(__name__)

PROJECT_CONFIG_NAME = ".deploysync.json"

ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

TARGET_KEYS = {
    "host",
    "protocol",
    "dest",
    "port",
    "user",
    "key_file",
    "password",
    "sync_mode",
    "timeout",
    "retry",
    "legacy_mode",
    "ignore",
    "preserve_permissions",
    "preserve_timestamps",
    "rsync_path",
    "rsync_options",
    "passive",
    "comments",
}


def global_config_locations() -> List[Path]:
    return [
        Path.home() / ".deploysync" / "deploysync.json",
        Path.home() / ".config" / "deploysync" / "deploysync.json",
    ]


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse '%s': %s", path, e)
        return None
    if not isinstance(data, dict):
        logger.warning("Ignoring '%s': top level must be an object", path)
        return None
    return data


def _resolve_basepath(profile: Dict[str, Any], config_path: Path) -> Dict[str, Any]:
    """Make a profile's local_basepath absolute relative to its config file."""
    profile = dict(profile)
    basepath = Path(str(profile["local_basepath"])).expanduser()
    if not basepath.is_absolute():
        basepath = config_path.parent / basepath
    profile["local_basepath"] = str(basepath.resolve())
    return profile


def load_config_with_sources(
    cwd: Optional[Path] = None,
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Load and merge configuration files with source tracking.

    Args:
        cwd: Directory to start the project-config walk from (default: cwd).

    Returns:
        Tuple of (merged_config, source_map) where source_map tracks which file
        contributed each piece of configuration.

    Raises:
        ConfigError: If no configuration file is found.
    """
    configs_to_merge: List[Tuple[Path, Dict[str, Any]]] = []
    source_map: Dict[str, Any] = {
        "global_excludes": {},
        "profiles": {},
        "config_files": [],
    }

    # The first global config found is the base
    for loc in global_config_locations():
        if loc.exists():
            data = _read_json(loc)
            if data is not None:
                configs_to_merge.append((loc, data))
                source_map["config_files"].append(str(loc))
                break

    # Collect all project configs from cwd up to the filesystem root
    project_configs: List[Path] = []
    current_dir = (cwd or Path.cwd()).resolve()
    while True:
        candidate = current_dir / PROJECT_CONFIG_NAME
        if candidate.exists():
            project_configs.append(candidate)
        parent = current_dir.parent
        if parent == current_dir:
            break
        current_dir = parent

    # Shallowest first so deeper files override
    project_configs.reverse()

    for config_path in project_configs:
        data = _read_json(config_path)
        if data is not None:
            configs_to_merge.append((config_path, data))
            source_map["config_files"].append(str(config_path))

    if not configs_to_merge:
        searched = global_config_locations() + [
            (cwd or Path.cwd()) / PROJECT_CONFIG_NAME
        ]
        raise ConfigError(
            "Configuration file not found. Checked: "
            + ", ".join(str(p) for p in searched)
        )

    merged_config: Dict[str, Any] = {}
    all_global_excludes: List[str] = []

    for config_path, config in configs_to_merge:
        config_path_str = str(config_path)

        for pattern in config.get("global_excludes", []):
            source_map["global_excludes"].setdefault(pattern, []).append(config_path_str)
            all_global_excludes.append(pattern)

        profiles = config.get("profiles", {})
        if profiles:
            merged_profiles = merged_config.setdefault("profiles", {})

            for name, profile in profiles.items():
                info = source_map["profiles"].setdefault(
                    name, {"defined_in": [], "properties": {}}
                )
                info["defined_in"].append(config_path_str)

                if "local_basepath" in profile:
                    profile = _resolve_basepath(profile, config_path)
                elif name not in merged_profiles:
                    profile = dict(profile)
                    profile["local_basepath"] = str(config_path.parent.resolve())

                for prop_key in profile:
                    info["properties"].setdefault(prop_key, []).append(config_path_str)

                if name in merged_profiles:
                    merged = merged_profiles[name]
                    for key, value in profile.items():
                        if key == "defaults" and isinstance(value, dict):
                            merged["defaults"] = {**merged.get("defaults", {}), **value}
                        else:
                            merged[key] = value
                else:
                    merged_profiles[name] = dict(profile)

        # Other top-level keys: simple override
        for key in config:
            if key not in ("global_excludes", "profiles"):
                merged_config[key] = config[key]

    if all_global_excludes:
        merged_config["global_excludes"] = all_global_excludes

    return merged_config, source_map


def load_config(cwd: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load and merge configuration files with inheritance.

    Search order and merging:
    1. Load global config from ~/.deploysync/deploysync.json or ~/.config/deploysync/deploysync.json (base)
    2. Walk up from cwd collecting all .deploysync.json files
    3. Merge configs from root to current directory (deeper configs override)

    Merging rules:
    - global_excludes: Additive (all patterns from all configs are combined)
    - profiles: Deeper configs can override or add new profiles (deep merge per profile)
    - Other top-level keys: Deeper configs override

    Returns:
        Dictionary containing the merged configuration.
    """
    merged_config, _ = load_config_with_sources(cwd)
    return merged_config


def get_profile_config(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    """
    Get a profile by name.

    Raises:
        ConfigError: If the profile is not defined.
    """
    profiles = config.get("profiles", {})
    if name not in profiles:
        available = ", ".join(sorted(profiles)) or "none"
        raise ConfigError(f"Profile '{name}' not found (available: {available})")
    return profiles[name]


def expand_env_vars(value: Any, where: str = "") -> Any:
    """
    Expand ``${VAR}`` in every string of a JSON-like value.

    Raises:
        ConfigError: If a referenced variable is not set.
    """
    if isinstance(value, str):

        def replace(match: "re.Match[str]") -> str:
            name = match.group(1)
            if name not in os.environ:
                raise ConfigError(f"Environment variable '{name}' is not set ({where})")
            return os.environ[name]

        return ENV_PATTERN.sub(replace, value)
    if isinstance(value, list):
        return [expand_env_vars(v, where) for v in value]
    if isinstance(value, dict):
        return {k: expand_env_vars(v, f"{where}.{k}" if where else k) for k, v in value.items()}
    return value


def profile_excludes(config: Dict[str, Any], profile: Dict[str, Any]) -> List[str]:
    """Default, global and profile exclude patterns, in that order."""
    return (
        list(DEFAULT_IGNORE_PATTERNS)
        + list(config.get("global_excludes", []))
        + list(profile.get("excludes", []))
    )


def _as_int(data: Dict[str, Any], key: str, where: str, minimum: int) -> Optional[int]:
    if key not in data or data[key] is None:
        return None
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ConfigError(f"{where}.{key} must be an integer")
    try:
        number = int(value)
    except ValueError as e:
        raise ConfigError(f"{where}.{key} must be an integer") from e
    if number < minimum:
        raise ConfigError(f"{where}.{key} must be >= {minimum}")
    return number


def _as_str_list(data: Dict[str, Any], key: str, where: str) -> Tuple[str, ...]:
    value = data.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{where}.{key} must be a list of strings")
    return tuple(value)


def build_target(
    data: Dict[str, Any], where: str, base_ignore: Optional[List[str]] = None
) -> TargetConfig:
    """
    Validate one merged target mapping and build its TargetConfig.

    Raises:
        ConfigError: On a missing key or an invalid value.
    """
    unknown = set(data) - TARGET_KEYS
    if unknown:
        raise ConfigError(f"{where}: unknown key(s): {', '.join(sorted(unknown))}")

    try:
        protocol = Protocol(str(data.get("protocol", "sftp")).lower())
    except ValueError as e:
        valid = ", ".join(p.value for p in Protocol)
        raise ConfigError(
            f"{where}.protocol: invalid value '{data.get('protocol')}' ({valid})"
        ) from e

    try:
        sync_mode = SyncMode(str(data.get("sync_mode", "update")).lower())
    except ValueError as e:
        raise ConfigError(
            f"{where}.sync_mode: invalid value '{data.get('sync_mode')}' (update, mirror)"
        ) from e

    dest = data.get("dest")
    if not dest or not isinstance(dest, str):
        raise ConfigError(f"{where}.dest is required")

    host = data.get("host") or ("localhost" if protocol == Protocol.LOCAL else None)
    if not host or not isinstance(host, str):
        raise ConfigError(f"{where}.host is required")

    user = data.get("user") or ""
    if protocol in SSH_PROTOCOLS and not user:
        raise ConfigError(f"{where}.user is required for {protocol.value}")

    key_file = data.get("key_file")
    if key_file:
        key_file = str(Path(key_file).expanduser())

    if protocol == Protocol.LOCAL:
        dest = str(Path(dest).expanduser())

    timeout = _as_int(data, "timeout", where, 1)
    retry = _as_int(data, "retry", where, 1)

    return TargetConfig(
        host=host,
        protocol=protocol,
        dest=dest,
        port=_as_int(data, "port", where, 1),
        user=user,
        key_file=key_file,
        password=data.get("password") or None,
        sync_mode=sync_mode,
        timeout=timeout if timeout is not None else 30,
        retry=retry if retry is not None else 3,
        legacy_mode=bool(data.get("legacy_mode", False)),
        ignore=tuple(base_ignore or ()) + _as_str_list(data, "ignore", where),
        preserve_permissions=bool(data.get("preserve_permissions", False)),
        preserve_timestamps=bool(data.get("preserve_timestamps", False)),
        rsync_path=data.get("rsync_path") or None,
        rsync_options=_as_str_list(data, "rsync_options", where),
        passive=bool(data.get("passive", True)),
    )


def resolve_targets(config: Dict[str, Any], profile_name: str) -> List[TargetConfig]:
    """
    Resolve every target of a profile.

    Profile ``defaults`` are merged under each target, environment variables
    are expanded and the ignore list is the profile's excludes plus the
    target's own ``ignore`` patterns.

    Args:
        config: Merged configuration.
        profile_name: Profile to resolve.

    Returns:
        TargetConfigs in declaration order.

    Raises:
        ConfigError: If the profile or any target is invalid.
    """
    profile = get_profile_config(config, profile_name)
    targets = profile.get("targets")
    if not isinstance(targets, list) or not targets:
        raise ConfigError(f"profiles.{profile_name}.targets must be a non-empty list")

    defaults = profile.get("defaults", {})
    if not isinstance(defaults, dict):
        raise ConfigError(f"profiles.{profile_name}.defaults must be an object")

    base_ignore = profile_excludes(config, profile)
    resolved: List[TargetConfig] = []
    seen: Dict[str, str] = {}
    for i, target in enumerate(targets):
        where = f"profiles.{profile_name}.targets[{i}]"
        if not isinstance(target, dict):
            raise ConfigError(f"{where} must be an object")
        merged = expand_env_vars({**defaults, **target}, where)
        built = build_target(merged, where, base_ignore)
        if built.target_id in seen:
            raise ConfigError(
                f"{where} duplicates {seen[built.target_id]} ({built.target_id})"
            )
        seen[built.target_id] = where
        resolved.append(built)
    return resolved


def show_config(merged_config: Dict[str, Any], source_map: Dict[str, Any]) -> None:
    """
    Display merged configuration with source annotations.

    Passwords are masked in the printed JSON.

    Args:
        merged_config: The final merged configuration.
        source_map: Dictionary tracking sources for each config item.
    """
    click.echo(
        click.style("\n📋 Configuration Files (merge order):", fg="cyan", bold=True)
    )
    for i, config_file in enumerate(source_map["config_files"], 1):
        click.echo(f"  {i}. {config_file}")

    click.echo(click.style("\n🔀 Merged Configuration:", fg="cyan", bold=True))
    formatted_json = json.dumps(_mask_secrets(merged_config), indent=2)
    click.echo(click.style(formatted_json, fg="green"))

    click.echo(click.style("\n📍 Source Annotations:", fg="cyan", bold=True))

    if source_map.get("global_excludes"):
        click.echo(click.style("\n  global_excludes:", fg="yellow", bold=True))
        for pattern, sources in source_map["global_excludes"].items():
            sources_str = ", ".join(str(s) for s in sources)
            click.echo(f"    • {click.style(pattern, fg='white')}")
            click.echo(f"      ↳ from: {click.style(sources_str, fg='blue')}")

    if source_map.get("profiles"):
        click.echo(click.style("\n  profiles:", fg="yellow", bold=True))
        for name, info in source_map["profiles"].items():
            click.echo(f"    • {click.style(name, fg='white', bold=True)}")
            defined_in_str = ", ".join(str(s) for s in info["defined_in"])
            click.echo(
                f"      ↳ defined in: {click.style(defined_in_str, fg='blue', dim=True)}"
            )
            for prop, sources in info.get("properties", {}).items():
                sources_str = ", ".join(str(s) for s in sources)
                click.echo(
                    f"        - {click.style(prop, fg='magenta')}: from {click.style(sources_str, fg='blue', dim=True)}"
                )


def _mask_secrets(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: ("********" if k == "password" and v else _mask_secrets(v))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_mask_secrets(v) for v in value]
    return value


def auto_detect_profile(
    config: Dict[str, Any], cwd: Optional[Path] = None
) -> Optional[str]:
    """
    Auto-detect the profile whose local_basepath contains the current directory.

    Prioritizes the most specific match (deepest path). If several profiles
    share that path, prompts the user to choose.

    Args:
        config: Merged configuration dictionary.
        cwd: Directory to match (default: cwd).

    Returns:
        Profile name or None if not detected.
    """
    profiles = config.get("profiles", {})
    if not profiles:
        return None

    here = (cwd or Path.cwd()).resolve()

    matches: List[Tuple[str, Path, Dict[str, Any]]] = []
    for name, profile in profiles.items():
        basepath_str = profile.get("local_basepath", "")
        if not basepath_str:
            continue
        basepath = Path(basepath_str).expanduser().resolve()
        try:
            here.relative_to(basepath)
        except ValueError:
            continue
        matches.append((name, basepath, profile))

    if not matches:
        return None

    matches.sort(key=lambda x: len(x[1].parts), reverse=True)

    best_path = matches[0][1]
    same_path = [(name, cfg) for name, path, cfg in matches if path == best_path]

    if len(same_path) > 1:
        click.echo(
            click.style(
                f"\n⚠️  WARNING: Multiple profiles detected for path: {best_path}",
                fg="yellow",
                bold=True,
            )
        )
        click.echo(
            click.style("Please select the profile to use:\n", fg="yellow")
        )
        for idx, (name, cfg) in enumerate(same_path, start=1):
            count = len(cfg.get("targets", []))
            click.echo(
                f"  {click.style(str(idx), fg='cyan', bold=True)}. {click.style(name, fg='green', bold=True)} - {count} target(s)"
            )
            if cfg.get("comments"):
                click.echo(f"     {click.style(cfg['comments'], fg='cyan', dim=True)}")
        click.echo(f"  {click.style('0', fg='red', bold=True)}. Cancel and exit")

        while True:
            try:
                choice = click.prompt(
                    "\nSelect profile", type=int, default=1, show_default=True
                )
            except click.Abort:
                click.echo("\nOperation cancelled.")
                sys.exit(0)

            if choice == 0:
                click.echo("Operation cancelled.")
                sys.exit(0)
            if 1 <= choice <= len(same_path):
                selected = same_path[choice - 1][0]
                click.echo(click.style(f"✓ Selected profile: {selected}", fg="green"))
                return selected
            click.echo(
                click.style(f"Invalid choice. Please enter 0-{len(same_path)}", fg="red"),
                err=True,
            )

    return matches[0][0]
