from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource, YamlConfigSettingsSource

from kvspaces.bootstrap.config.loader import get_configfile
from kvspaces.core.models.keyspace import DEFAULT_KEYSPACE


class StorageSettings(BaseModel):
    path: Annotated[
        Path,
        Field(
            description=(
                "Directory holding the database files.\n"
                "It must be writable and persistent across restarts unless\n"
                "the store is opened read-only."
            )
        )
    ]

    variant: Annotated[
        Literal["plain", "ttl", "transactional", "optimistic"],
        Field(
            description=(
                "Flavour of database to open:\n"
                "  plain         → no expiry, no transactions\n"
                "  ttl           → per-keyspace expiry (see keyspaces[].ttl)\n"
                "  transactional → pessimistic transactions\n"
                "  optimistic    → optimistic transactions"
            ),
            default="plain"
        )
    ]

    read_only: Annotated[
        bool,
        Field(
            description="Open the database read-only (plain and ttl variants only).",
            default=False
        )
    ]

    map_size: Annotated[
        int,
        Field(
            description="Maximum size of the database in bytes.",
            default=1 << 30,
            gt=0
        )
    ]

    max_dbs: Annotated[
        int,
        Field(
            description="Maximum number of keyspaces the environment can hold.",
            default=16,
            gt=0
        )
    ]

    max_readers: Annotated[
        int,
        Field(
            description="Maximum number of concurrent readers (open cursors included).",
            default=126,
            gt=0
        )
    ]

    sync: Annotated[
        bool,
        Field(
            description="Flush to disk on every commit.",
            default=True
        )
    ]

    readahead: Annotated[
        bool,
        Field(
            description="Let the OS read ahead in the data file.",
            default=True
        )
    ]

    writemap: Annotated[
        bool,
        Field(
            description="Write through a writeable memory map.",
            default=False
        )
    ]

    lock: Annotated[
        bool,
        Field(
            description="Use the lock file. Only disable for single-process usage.",
            default=True
        )
    ]

    lock_timeout: Annotated[
        float | None,
        Field(
            description=(
                "Seconds to wait for the write lock in the transactional variant.\n"
                "Unset waits forever."
            ),
            default=None
        )
    ]


class KeyspaceSettings(BaseModel):
    name: Annotated[
        str,
        Field(
            description="Keyspace name, unique within the database.",
            min_length=1
        )
    ]

    ttl: Annotated[
        int,
        Field(
            description=(
                "Expiry of the keyspace entries in seconds (ttl variant only).\n"
                "0 or less disables expiry."
            ),
            default=0
        )
    ]


class KVSpacesConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="KVSPACES_",
        extra="allow"
    )

    storage: Annotated[
        StorageSettings,
        Field(description="Database location and engine settings.")
    ]

    keyspaces: Annotated[
        list[KeyspaceSettings],
        Field(
            description=(
                f"Keyspaces to open, in order. The first one must be '{DEFAULT_KEYSPACE}'."
            ),
            default_factory=lambda: [KeyspaceSettings(name=DEFAULT_KEYSPACE)]
        )
    ]

    log_level: Annotated[
        Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        Field(description="Logging level of the bootstrap entry point.", default="INFO")
    ]

    @field_validator("keyspaces")
    @classmethod
    def validate_keyspaces(cls, v: list[KeyspaceSettings]) -> list[KeyspaceSettings]:
        if not v:
            raise ValueError("at least one keyspace is required")
        if v[0].name != DEFAULT_KEYSPACE:
            raise ValueError(f"the first keyspace must be '{DEFAULT_KEYSPACE}'")

        names = [ks.name for ks in v]
        if len(set(names)) != len(names):
            raise ValueError("keyspace names must be unique")

        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (YamlConfigSettingsSource(settings_cls, yaml_file=get_configfile()),)
