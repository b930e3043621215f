"""Plugin loader — discovers and loads plugins from the plugins directory."""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path
from typing import Any

import structlog
import yaml

from workchat.extensions.base import WorkchatPlugin

logger = structlog.get_logger()


def load_plugins(plugins_dir: str | Path) -> list[WorkchatPlugin]:
    """Discover and instantiate all plugins in ``plugins_dir``.

    Each plugin is a directory with:
    - plugin.yaml (metadata: name, description, version, entry_point)
    - __init__.py or <entry_point>.py with a WorkchatPlugin subclass

    A plugin that fails to import is logged and skipped.
    """
    plugins_path = Path(plugins_dir)
    loaded: list[WorkchatPlugin] = []

    if not plugins_path.is_dir():
        logger.info("plugins.dir_not_found", path=str(plugins_path))
        return loaded

    for plugin_dir in sorted(plugins_path.iterdir()):
        if not plugin_dir.is_dir():
            continue
        if plugin_dir.name.startswith((".", "_")):
            continue

        try:
            plugin = _load_single_plugin(plugin_dir)
        except Exception as e:
            logger.error("plugins.load_failed", dir=plugin_dir.name, error=str(e))
            continue
        if plugin:
            loaded.append(plugin)
            logger.info("plugins.loaded", name=plugin.name, version=plugin.version)

    return loaded


def _load_single_plugin(plugin_dir: Path) -> WorkchatPlugin | None:
    meta_path = plugin_dir / "plugin.yaml"
    meta: dict[str, Any] = {}
    if meta_path.exists():
        with open(meta_path) as f:
            meta = yaml.safe_load(f) or {}

    entry_point = meta.get("entry_point", "__init__")
    module_file = plugin_dir / f"{entry_point}.py"

    if not module_file.exists():
        logger.warning("plugins.no_entry", dir=plugin_dir.name, expected=str(module_file))
        return None

    module_name = f"workchat_plugin_{plugin_dir.name}"
    spec = importlib.util.spec_from_file_location(module_name, module_file)
    if not spec or not spec.loader:
        return None

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)

    plugin_class = next(
        (
            attr
            for attr in vars(module).values()
            if isinstance(attr, type)
            and issubclass(attr, WorkchatPlugin)
            and attr is not WorkchatPlugin
        ),
        None,
    )
    if plugin_class is None:
        logger.warning("plugins.no_class", dir=plugin_dir.name)
        return None

    return plugin_class()
