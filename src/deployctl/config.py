"""Configuration loader for deployctl.

Values are read from multiple sources, later ones winning:

1. Built-in defaults.
2. ``/etc/deployctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``DEPLOYCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export DEPLOYCTL_VERIFICATION__ATTEMPTS=3
    export DEPLOYCTL_TLS__ENABLED=false

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load deployctl configuration. Install with "
        "`pip install deployctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "DEPLOYCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
PASSWORD_ENV_VAR = f"{ENV_PREFIX}DATABASE_PASSWORD"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR, PASSWORD_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class PathsConfig:
    """Host locations the provisioning actions write to."""

    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    systemd_dir: Path = Path("/etc/systemd/system")
    tmpfiles_dir: Path = Path("/etc/tmpfiles.d")
    socket_dir: Path = Path("/run/gunicorn")
    app_log_dir: Path = Path("/var/log/gunicorn")
    nginx_log_dir: Path = Path("/var/log/nginx")
    web_root: Path = Path("/var/www")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "sites_available": str(self.sites_available),
            "sites_enabled": str(self.sites_enabled),
            "systemd_dir": str(self.systemd_dir),
            "tmpfiles_dir": str(self.tmpfiles_dir),
            "socket_dir": str(self.socket_dir),
            "app_log_dir": str(self.app_log_dir),
            "nginx_log_dir": str(self.nginx_log_dir),
            "web_root": str(self.web_root),
        }


@dataclass(frozen=True)
class PackagesConfig:
    """Apt package groups installed by the dependency stages."""

    toolchain: tuple[str, ...] = (
        "python3",
        "python3-pip",
        "python3-venv",
        "python3-dev",
        "build-essential",
        "libssl-dev",
        "libffi-dev",
        "libpq-dev",
        "libjpeg-dev",
        "zlib1g-dev",
    )
    server: tuple[str, ...] = ("postgresql", "postgresql-contrib", "nginx", "git", "curl")
    tls: tuple[str, ...] = ("certbot", "python3-certbot-nginx")
    frontend: tuple[str, ...] = ("nginx", "curl")
    apt_bin: str = "apt-get"
    dpkg_query_bin: str = "dpkg-query"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "toolchain": list(self.toolchain),
            "server": list(self.server),
            "tls": list(self.tls),
            "frontend": list(self.frontend),
            "apt_bin": self.apt_bin,
            "dpkg_query_bin": self.dpkg_query_bin,
        }


@dataclass(frozen=True)
class PostgresConfig:
    """How the database stage reaches the local PostgreSQL server."""

    psql_command: tuple[str, ...] = ("sudo", "-u", "postgres", "psql")
    admin_user: str = "postgres"
    host: str = "localhost"
    port: int = 5432

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "psql_command": list(self.psql_command),
            "admin_user": self.admin_user,
            "host": self.host,
            "port": self.port,
        }


@dataclass(frozen=True)
class GunicornConfig:
    """Application server tuning rendered into ``gunicorn.conf.py``."""

    workers: int = 3
    timeout: int = 120
    keepalive: int = 5
    max_requests: int = 1000
    log_level: str = "info"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "workers": self.workers,
            "timeout": self.timeout,
            "keepalive": self.keepalive,
            "max_requests": self.max_requests,
            "log_level": self.log_level,
        }


@dataclass(frozen=True)
class ApplicationConfig:
    """Build commands run inside the project's virtualenv."""

    venv_name: str = "venv"
    requirements_file: str = "requirements.txt"
    extra_requirements: tuple[str, ...] = ("gunicorn", "psycopg2-binary")
    hooks: tuple[str, ...] = ("manage.py migrate", "manage.py collectstatic --noinput")
    python_bin: str = "python3"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "venv_name": self.venv_name,
            "requirements_file": self.requirements_file,
            "extra_requirements": list(self.extra_requirements),
            "hooks": list(self.hooks),
            "python_bin": self.python_bin,
        }


@dataclass(frozen=True)
class TLSConfig:
    """Certificate issuance settings."""

    enabled: bool = True
    required: bool = True
    email: str | None = None
    redirect: bool = True
    certbot_bin: str = "certbot"
    live_dir: Path = Path("/etc/letsencrypt/live")
    renew_before_days: int = 30

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "enabled": self.enabled,
            "required": self.required,
            "email": self.email,
            "redirect": self.redirect,
            "certbot_bin": self.certbot_bin,
            "live_dir": str(self.live_dir),
            "renew_before_days": self.renew_before_days,
        }


@dataclass(frozen=True)
class VerificationConfig:
    """Bounded retry policy for the post-deploy health probe."""

    attempts: int = 5
    delay: float = 2.0
    timeout: float = 10.0
    initial_delay: float = 0.0
    backoff: float = 1.0
    success_statuses: tuple[int, ...] = (200, 301, 302)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "attempts": self.attempts,
            "delay": self.delay,
            "timeout": self.timeout,
            "initial_delay": self.initial_delay,
            "backoff": self.backoff,
            "success_statuses": list(self.success_statuses),
        }


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    systemctl_bin: str = "systemctl"
    journalctl_bin: str = "journalctl"
    tmpfiles_bin: str = "systemd-tmpfiles"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "systemctl_bin": self.systemctl_bin,
            "journalctl_bin": self.journalctl_bin,
            "tmpfiles_bin": self.tmpfiles_bin,
        }


@dataclass(frozen=True)
class NginxConfig:
    """Nginx binary and default-site handling."""

    nginx_bin: str = "nginx"
    disable_default_site: bool = True
    default_site: str = "default"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "nginx_bin": self.nginx_bin,
            "disable_default_site": self.disable_default_site,
            "default_site": self.default_site,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for deployctl."""

    config_file: Path
    state_dir: Path
    registry_dir: Path
    logs_dir: Path
    runtime_dir: Path
    templates_dir: Path
    lock_timeout: float
    service_user: str
    service_group: str
    web_group: str
    paths: PathsConfig
    packages: PackagesConfig
    postgres: PostgresConfig
    gunicorn: GunicornConfig
    application: ApplicationConfig
    tls: TLSConfig
    verification: VerificationConfig
    systemd: SystemdConfig
    nginx: NginxConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "state_dir": str(self.state_dir),
            "registry_dir": str(self.registry_dir),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "templates_dir": str(self.templates_dir),
            "lock_timeout": self.lock_timeout,
            "service_user": self.service_user,
            "service_group": self.service_group,
            "web_group": self.web_group,
            "paths": self.paths.to_dict(),
            "packages": self.packages.to_dict(),
            "postgres": self.postgres.to_dict(),
            "gunicorn": self.gunicorn.to_dict(),
            "application": self.application.to_dict(),
            "tls": self.tls.to_dict(),
            "verification": self.verification.to_dict(),
            "systemd": self.systemd.to_dict(),
            "nginx": self.nginx.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/deployctl/config.yml",
    "state_dir": "/var/lib/deployctl",
    "registry_dir": None,  # derived from state_dir when absent
    "logs_dir": "/var/log/deployctl",
    "runtime_dir": "/run/deployctl",
    "templates_dir": "/etc/deployctl/templates",
    "lock_timeout": 30.0,
    "service_user": "ubuntu",
    "service_group": "ubuntu",
    "web_group": "www-data",
    "paths": PathsConfig().to_dict(),
    "packages": PackagesConfig().to_dict(),
    "postgres": PostgresConfig().to_dict(),
    "gunicorn": GunicornConfig().to_dict(),
    "application": ApplicationConfig().to_dict(),
    "tls": TLSConfig().to_dict(),
    "verification": VerificationConfig().to_dict(),
    "systemd": SystemdConfig().to_dict(),
    "nginx": NginxConfig().to_dict(),
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_SECTION_KEYS: dict[str, set[str]] = {
    section: set(_value.keys())
    for section, _value in DEFAULTS.items()
    if isinstance(_value, Mapping)
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _SECTION_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        mapping = _as_dict(value, section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    lock_timeout = raw.get("lock_timeout")
    if lock_timeout is not None:
        _expect_positive_float(lock_timeout, "lock_timeout", default=30.0)


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    state_dir = _to_path(raw.get("state_dir"))
    registry_dir_value = raw.get("registry_dir")
    registry_dir = _to_path(registry_dir_value) if registry_dir_value else state_dir / "registry"

    paths_mapping = _as_dict(raw.get("paths"), "paths")
    defaults_paths = PathsConfig()
    paths = PathsConfig(
        **{
            key: _to_path(paths_mapping.get(key, getattr(defaults_paths, key)))
            for key in _SECTION_KEYS["paths"]
        }
    )

    packages_mapping = _as_dict(raw.get("packages"), "packages")
    packages = PackagesConfig(
        toolchain=_expect_str_tuple(packages_mapping.get("toolchain"), "packages.toolchain"),
        server=_expect_str_tuple(packages_mapping.get("server"), "packages.server"),
        tls=_expect_str_tuple(packages_mapping.get("tls"), "packages.tls"),
        frontend=_expect_str_tuple(packages_mapping.get("frontend"), "packages.frontend"),
        apt_bin=str(packages_mapping.get("apt_bin", "apt-get")),
        dpkg_query_bin=str(packages_mapping.get("dpkg_query_bin", "dpkg-query")),
    )

    postgres_mapping = _as_dict(raw.get("postgres"), "postgres")
    psql_command = _expect_str_tuple(postgres_mapping.get("psql_command"), "postgres.psql_command")
    if not psql_command:
        raise ConfigError("postgres.psql_command must not be empty.")
    postgres = PostgresConfig(
        psql_command=psql_command,
        admin_user=str(postgres_mapping.get("admin_user", "postgres")),
        host=str(postgres_mapping.get("host", "localhost")),
        port=_expect_positive_int(postgres_mapping.get("port"), "postgres.port", default=5432),
    )

    gunicorn_mapping = _as_dict(raw.get("gunicorn"), "gunicorn")
    gunicorn = GunicornConfig(
        workers=_expect_positive_int(gunicorn_mapping.get("workers"), "gunicorn.workers", default=3),
        timeout=_expect_positive_int(
            gunicorn_mapping.get("timeout"), "gunicorn.timeout", default=120
        ),
        keepalive=_expect_positive_int(
            gunicorn_mapping.get("keepalive"), "gunicorn.keepalive", default=5
        ),
        max_requests=_expect_positive_int(
            gunicorn_mapping.get("max_requests"), "gunicorn.max_requests", default=1000
        ),
        log_level=str(gunicorn_mapping.get("log_level", "info")),
    )

    application_mapping = _as_dict(raw.get("application"), "application")
    application = ApplicationConfig(
        venv_name=str(application_mapping.get("venv_name", "venv")),
        requirements_file=str(application_mapping.get("requirements_file", "requirements.txt")),
        extra_requirements=_expect_str_tuple(
            application_mapping.get("extra_requirements"), "application.extra_requirements"
        ),
        hooks=_expect_str_tuple(application_mapping.get("hooks"), "application.hooks"),
        python_bin=str(application_mapping.get("python_bin", "python3")),
    )

    tls_mapping = _as_dict(raw.get("tls"), "tls")
    email_value = tls_mapping.get("email")
    email = str(email_value).strip() if email_value not in (None, "") else None
    tls = TLSConfig(
        enabled=_expect_bool(tls_mapping.get("enabled"), "tls.enabled", default=True),
        required=_expect_bool(tls_mapping.get("required"), "tls.required", default=True),
        email=email or None,
        redirect=_expect_bool(tls_mapping.get("redirect"), "tls.redirect", default=True),
        certbot_bin=str(tls_mapping.get("certbot_bin", "certbot")),
        live_dir=_to_path(tls_mapping.get("live_dir", "/etc/letsencrypt/live")),
        renew_before_days=_expect_int(
            tls_mapping.get("renew_before_days"), "tls.renew_before_days", default=30
        ),
    )
    if tls.renew_before_days < 0:
        raise ConfigError("tls.renew_before_days must be non-negative.")

    verification_mapping = _as_dict(raw.get("verification"), "verification")
    statuses_raw = verification_mapping.get("success_statuses")
    statuses = tuple(
        _expect_int(item, "verification.success_statuses[]", default=200)
        for item in _as_sequence(statuses_raw if statuses_raw is not None else [], "statuses")
    )
    if not statuses:
        raise ConfigError("verification.success_statuses must list at least one status code.")
    verification = VerificationConfig(
        attempts=_expect_positive_int(
            verification_mapping.get("attempts"), "verification.attempts", default=5
        ),
        delay=_expect_non_negative_float(
            verification_mapping.get("delay"), "verification.delay", default=2.0
        ),
        timeout=_expect_positive_float(
            verification_mapping.get("timeout"), "verification.timeout", default=10.0
        ),
        initial_delay=_expect_non_negative_float(
            verification_mapping.get("initial_delay"), "verification.initial_delay", default=0.0
        ),
        backoff=_expect_positive_float(
            verification_mapping.get("backoff"), "verification.backoff", default=1.0
        ),
        success_statuses=statuses,
    )
    if verification.backoff < 1:
        raise ConfigError(f"verification.backoff must be at least 1. Got {verification.backoff}.")

    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        systemctl_bin=str(systemd_mapping.get("systemctl_bin", "systemctl")),
        journalctl_bin=str(systemd_mapping.get("journalctl_bin", "journalctl")),
        tmpfiles_bin=str(systemd_mapping.get("tmpfiles_bin", "systemd-tmpfiles")),
    )

    nginx_mapping = _as_dict(raw.get("nginx"), "nginx")
    nginx = NginxConfig(
        nginx_bin=str(nginx_mapping.get("nginx_bin", "nginx")),
        disable_default_site=_expect_bool(
            nginx_mapping.get("disable_default_site"), "nginx.disable_default_site", default=True
        ),
        default_site=str(nginx_mapping.get("default_site", "default")),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        state_dir=state_dir,
        registry_dir=registry_dir,
        logs_dir=_to_path(raw.get("logs_dir")),
        runtime_dir=_to_path(raw.get("runtime_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        lock_timeout=_expect_positive_float(raw.get("lock_timeout"), "lock_timeout", default=30.0),
        service_user=str(raw.get("service_user", "ubuntu")),
        service_group=str(raw.get("service_group", "ubuntu")),
        web_group=str(raw.get("web_group", "www-data")),
        paths=paths,
        packages=packages,
        postgres=postgres,
        gunicorn=gunicorn,
        application=application,
        tls=tls,
        verification=verification,
        systemd=systemd,
        nginx=nginx,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _expect_str_tuple(value: object | None, label: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        # Environment overrides arrive as whitespace/comma separated strings.
        return tuple(part for part in value.replace(",", " ").split() if part)
    items = _as_sequence(value, label)
    result: list[str] = []
    for item in items:
        if not isinstance(item, str) or not item.strip():
            raise ConfigError(f"{label} entries must be non-empty strings.")
        result.append(item.strip())
    return tuple(result)


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "yes", "1", "on"}:
        return True
    if isinstance(value, str) and value.strip().lower() in {"false", "no", "0", "off"}:
        return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_positive_int(value: object | None, label: str, *, default: int) -> int:
    number = _expect_int(value, label, default=default)
    if number <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {number}.")
    return number


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_float(value: object, label: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    numeric = _expect_float(value, label)
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _expect_non_negative_float(value: object | None, label: str, *, default: float) -> float:
    if value is None:
        return float(default)
    numeric = _expect_float(value, label)
    if numeric < 0:
        raise ConfigError(f"{label} must be non-negative. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ApplicationConfig",
    "ConfigError",
    "GunicornConfig",
    "NginxConfig",
    "PASSWORD_ENV_VAR",
    "PackagesConfig",
    "PathsConfig",
    "PostgresConfig",
    "SystemdConfig",
    "TLSConfig",
    "VerificationConfig",
    "load_config",
]
