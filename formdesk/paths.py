from __future__ import annotations

import os
from pathlib import Path

APP_ENV_HOME = "FORMDESK_HOME"


def project_root() -> Path:
    """
    Repository/project root directory.
    Contains formdesk/, api/, cli/, tests/.
    """
    return Path(__file__).parent.parent.resolve()


def app_home() -> Path:
    """
    User-writable home for FormDesk.
    Override with FORMDESK_HOME.
    """
    if os.environ.get(APP_ENV_HOME):
        return Path(os.environ[APP_ENV_HOME]).expanduser().resolve()
    return (Path.home() / ".formdesk").resolve()


def config_dir() -> Path:
    d = app_home() / "config"
    d.mkdir(parents=True, exist_ok=True)
    return d


def forms_dir() -> Path:
    """Directory holding one YAML definition per form (forms/<form_key>.yaml)."""
    d = config_dir() / "forms"
    d.mkdir(parents=True, exist_ok=True)
    return d


def data_dir() -> Path:
    d = app_home() / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


def properties_path() -> Path:
    """JSON file backing the persisted store properties (cache version, counters)."""
    return data_dir() / "properties.json"


def templates_dir() -> Path:
    """Directory holding stored document templates (templates/<template_id>.yaml)."""
    d = config_dir() / "templates"
    d.mkdir(parents=True, exist_ok=True)
    return d
