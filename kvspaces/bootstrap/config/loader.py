import os
from functools import lru_cache
from pathlib import Path


@lru_cache
def get_configfile() -> Path:
    # Priority: ENV > default file in current working directory
    raw = os.getenv("KVSPACES_CONFIG")

    if raw is None:
        file = Path.cwd() / "kvspaces.yaml"
    else:
        file = Path(raw)

    if not file.is_file():
        raise SystemExit(
            f"[config] Configuration file not found: '{file}'.\n"
            "  - Set the KVSPACES_CONFIG environment variable\n"
            "  - Or place a 'kvspaces.yaml' file in the current working directory."
        )

    return file
