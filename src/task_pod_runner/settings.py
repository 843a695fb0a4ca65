from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

BACKENDS = ("cluster", "local")
ENV_CONFIG = "TPR_CONFIG"


def _default_settings_path() -> Path:
    """Return bundled default settings TOML path.

    Example:
        ```python
        path = _default_settings_path()
        ```
    """
    return Path(__file__).with_name("default_settings.toml")


def _read_settings_toml(path: Path) -> dict[str, Any]:
    """Read settings TOML and return the runner table.

    Example:
        ```python
        raw = _read_settings_toml(Path("/etc/tpr/settings.toml"))
        ```
    """
    if not path.exists():
        return {
            "backend": "cluster",
            "namespace": "default",
            "poll_interval_seconds": 2,
            "max_wait_seconds": 60,
            "request_timeout_seconds": 10,
            "image": "busybox:latest",
            "name_prefix": "task-execution",
            "container_name": "task-container",
            "cpu_request": "50m",
            "cpu_limit": "100m",
            "memory_request": "64Mi",
            "memory_limit": "128Mi",
            "in_cluster": False,
            "labels": {"app": "task-execution", "created-by": "task-pod-runner"},
        }
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    runner_obj = raw.get("runner", raw)
    if not isinstance(runner_obj, dict):
        raise ValueError("Runner settings must be a TOML table")
    return runner_obj


def _labels(value: Any) -> dict[str, str]:
    """Validate and normalize the managed label table.

    Example:
        ```python
        labels = _labels({"app": "task-execution"})
        ```
    """
    if not isinstance(value, dict) or not value:
        raise ValueError("'labels' must be a non-empty table of strings")
    out: dict[str, str] = {}
    for key, item in value.items():
        if not isinstance(item, str):
            raise ValueError("'labels' must contain only strings")
        out[str(key)] = item
    return out


_DEFAULT_RAW = _read_settings_toml(_default_settings_path())
DEFAULT_LABELS = _labels(_DEFAULT_RAW.get("labels", {"app": "task-execution"}))


@dataclass(frozen=True, slots=True)
class RunnerSettings:
    """Deployment settings shared by every invocation of an engine.

    Example:
        ```python
        settings = RunnerSettings(namespace="tasks", max_wait_seconds=30)
        ```
    """

    backend: str = str(_DEFAULT_RAW.get("backend", "cluster"))
    namespace: str = str(_DEFAULT_RAW.get("namespace", "default"))
    poll_interval_seconds: float = float(_DEFAULT_RAW.get("poll_interval_seconds", 2))
    max_wait_seconds: float = float(_DEFAULT_RAW.get("max_wait_seconds", 60))
    request_timeout_seconds: float = float(_DEFAULT_RAW.get("request_timeout_seconds", 10))
    image: str = str(_DEFAULT_RAW.get("image", "busybox:latest"))
    name_prefix: str = str(_DEFAULT_RAW.get("name_prefix", "task-execution"))
    container_name: str = str(_DEFAULT_RAW.get("container_name", "task-container"))
    labels: dict[str, str] = field(default_factory=lambda: DEFAULT_LABELS.copy())
    cpu_request: str = str(_DEFAULT_RAW.get("cpu_request", "50m"))
    cpu_limit: str = str(_DEFAULT_RAW.get("cpu_limit", "100m"))
    memory_request: str = str(_DEFAULT_RAW.get("memory_request", "64Mi"))
    memory_limit: str = str(_DEFAULT_RAW.get("memory_limit", "128Mi"))
    kubeconfig: str | None = _DEFAULT_RAW.get("kubeconfig")
    in_cluster: bool = bool(_DEFAULT_RAW.get("in_cluster", False))

    def __post_init__(self) -> None:
        """Validate backend, timing and labels after initialization.

        Example:
            ```python
            RunnerSettings(backend="local")
            ```
        """
        if self.backend not in BACKENDS:
            raise ValueError("backend must be 'cluster' or 'local'")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        if self.max_wait_seconds <= 0:
            raise ValueError("max_wait_seconds must be positive")
        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be positive")
        if not self.namespace.strip():
            raise ValueError("namespace must be non-empty")
        _labels(self.labels)

    @property
    def label_selector(self) -> str:
        """Return the selector matching every unit labeled by these settings.

        Example:
            ```python
            RunnerSettings().label_selector  # "app=task-execution,created-by=task-pod-runner"
            ```
        """
        return ",".join(f"{key}={value}" for key, value in self.labels.items())

    @classmethod
    def from_file(cls, config_path: str) -> "RunnerSettings":
        """Create settings from a TOML file, filling gaps with defaults.

        Example:
            ```python
            settings = RunnerSettings.from_file("/etc/tpr/settings.toml")
            ```
        """
        path = Path(config_path)
        if not path.exists():
            raise ValueError(f"Settings file not found: {config_path}")
        raw = _read_settings_toml(path)
        defaults = cls()
        kubeconfig = raw.get("kubeconfig", defaults.kubeconfig)
        return cls(
            backend=str(raw.get("backend", defaults.backend)),
            namespace=str(raw.get("namespace", defaults.namespace)),
            poll_interval_seconds=float(
                raw.get("poll_interval_seconds", defaults.poll_interval_seconds)
            ),
            max_wait_seconds=float(raw.get("max_wait_seconds", defaults.max_wait_seconds)),
            request_timeout_seconds=float(
                raw.get("request_timeout_seconds", defaults.request_timeout_seconds)
            ),
            image=str(raw.get("image", defaults.image)),
            name_prefix=str(raw.get("name_prefix", defaults.name_prefix)),
            container_name=str(raw.get("container_name", defaults.container_name)),
            labels=_labels(raw.get("labels", defaults.labels)),
            cpu_request=str(raw.get("cpu_request", defaults.cpu_request)),
            cpu_limit=str(raw.get("cpu_limit", defaults.cpu_limit)),
            memory_request=str(raw.get("memory_request", defaults.memory_request)),
            memory_limit=str(raw.get("memory_limit", defaults.memory_limit)),
            kubeconfig=str(kubeconfig) if kubeconfig else None,
            in_cluster=bool(raw.get("in_cluster", defaults.in_cluster)),
        )

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        config_path: str | None = None,
    ) -> "RunnerSettings":
        """Create settings from TPR_* environment variables.

        `config_path` (or else `TPR_CONFIG`) names a settings file;
        `TPR_BACKEND`, `TPR_NAMESPACE`, `TPR_POLL_INTERVAL_SECONDS`,
        `TPR_MAX_WAIT_SECONDS` and `TPR_REQUEST_TIMEOUT_SECONDS` override it.

        Example:
            ```python
            settings = RunnerSettings.from_env({"TPR_NAMESPACE": "tasks"})
            ```
        """
        env = os.environ if environ is None else environ
        config_path = config_path or env.get(ENV_CONFIG)
        settings = cls.from_file(config_path) if config_path else cls()
        overrides: dict[str, Any] = {}
        if env.get("TPR_BACKEND"):
            overrides["backend"] = env["TPR_BACKEND"]
        if env.get("TPR_NAMESPACE"):
            overrides["namespace"] = env["TPR_NAMESPACE"]
        if env.get("TPR_POLL_INTERVAL_SECONDS"):
            overrides["poll_interval_seconds"] = float(env["TPR_POLL_INTERVAL_SECONDS"])
        if env.get("TPR_MAX_WAIT_SECONDS"):
            overrides["max_wait_seconds"] = float(env["TPR_MAX_WAIT_SECONDS"])
        if env.get("TPR_REQUEST_TIMEOUT_SECONDS"):
            overrides["request_timeout_seconds"] = float(env["TPR_REQUEST_TIMEOUT_SECONDS"])
        return replace(settings, **overrides) if overrides else settings
