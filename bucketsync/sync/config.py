"""Loading of sync runs from JSON configuration files.

A configuration file holds the global options and the ordered list of
sync entries::

    {
        "options": {"bucket": "my-bucket", "differential": true},
        "files": [
            {"src": ["**/*"], "cwd": "build", "dest": "site/"},
            {"action": "delete", "dest": "site/", "cwd": "build"}
        ]
    }
"""

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional, Union

from ..config import SyncOptions
from ..exceptions import ConfigurationError
from .spec import SyncSpec

logger = logging.getLogger(__name__)


def parse_sync_config(
    data: Any,
    environ: Optional[Mapping[str, str]] = None,
    base_dir: Optional[Path] = None,
) -> tuple[SyncOptions, list[SyncSpec]]:
    """Parse a decoded configuration document.

    Args:
        data: Decoded JSON document
        environ: Environment used for option defaults
        base_dir: Directory relative ``cwd`` values are resolved against

    Returns:
        Tuple of (options, specs)

    Raises:
        ConfigurationError: If the document is malformed
    """
    if not isinstance(data, Mapping):
        raise ConfigurationError("Configuration must be a JSON object")

    options = SyncOptions.from_dict(data.get("options") or {}, environ)

    entries = data.get("files")
    if not isinstance(entries, list):
        raise ConfigurationError('Configuration needs a "files" list')

    specs = []
    for index, entry in enumerate(entries):
        try:
            spec = SyncSpec.from_dict(entry)
        except ConfigurationError as e:
            raise ConfigurationError(f"files[{index}]: {e}") from e
        if base_dir is not None and spec.cwd and not Path(spec.cwd).is_absolute():
            spec = SyncSpec.from_dict({**spec.to_dict(), "cwd": str(base_dir / spec.cwd)})
        specs.append(spec)

    return options, specs


def load_sync_config(
    path: Union[str, Path],
    environ: Optional[Mapping[str, str]] = None,
) -> tuple[SyncOptions, list[SyncSpec]]:
    """Load options and sync entries from a JSON file.

    Relative ``cwd`` values are resolved against the file's directory.

    Raises:
        ConfigurationError: If the file cannot be read or is malformed
    """
    config_path = Path(path)
    try:
        with open(config_path, encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read {config_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {config_path}: {e}") from e

    options, specs = parse_sync_config(data, environ, config_path.parent)
    logger.debug("Loaded %d sync entries from %s", len(specs), config_path)
    return options, specs
