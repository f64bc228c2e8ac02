"""Flag sources. ``fetch_flags`` dispatches on the configured fetcher type."""

from pathlib import Path
from typing import List, Optional

from ..exceptions import ConfigError
from ..models.task import FlagTask, load_flag_list
from . import posthog


def fetch_flags(fetcher_config, input_path: Optional[Path] = None) -> List[FlagTask]:
    """Load candidates from ``input_path`` if given, else from the configured fetcher.

    Raises:
        ConfigError: For the manual fetcher without an input file, or an unknown type
    """
    if input_path is not None:
        return load_flag_list(input_path)

    if fetcher_config.type == "posthog":
        return posthog.fetch_flags(fetcher_config)
    if fetcher_config.type == "manual":
        raise ConfigError("Manual fetcher requires --input flag")
    raise ConfigError(f"Unknown fetcher type: {fetcher_config.type}")


__all__ = ["fetch_flags"]
