"""Manage configuration settings for the Class Diary application."""

import argparse
import dataclasses
import enum
import pathlib
import shutil
import tomllib
from typing import Any, Optional


DB_FILE_NAME = "classdiary.db"
CONFIG_FILE_NAME = "classdiary.toml"


class ConfigError(Exception):
    """Errors when setting or accessing settings."""

    class ErrorType(enum.Enum):
        NOT_A_FILE = 1
        PATH_DOES_NOT_EXIST = 2
        INVALID_TOML = 3
        INVALID_VALUE = 4

    error_type: ErrorType

    def __init__(self, message: str, error_type: ErrorType) -> None:
        """Set error type."""
        super().__init__(message)
        self.error_type = error_type


@dataclasses.dataclass
class Settings:
    """Configuration data for the classdiary application.

    materialize_records_on_create decides whether adding an assignment also
    creates a pending record for every student in the class. Pick one value
    and keep it; switching between the two policies makes "no record" mean
    different things for different assignments.
    """

    db_path: Optional[pathlib.Path] = None
    config_path: Optional[pathlib.Path] = None
    materialize_records_on_create: bool = False
    attendance_warning_threshold: int = 75
    min_column_width: int = 10
    max_column_width: int = 40
    log_level: str = "WARNING"

    def update_from_args(self, args: argparse.Namespace) -> None:
        """Read settings from the config file, then command-line arguments.

        Command-line arguments take precedence over the config file.
        """
        self.config_path = self._get_full_path(
            getattr(args, "config_path", None), CONFIG_FILE_NAME
        )
        if self.config_path is not None:
            self._read_config_file()
        if getattr(args, "db_path", None) is not None:
            self.db_path = self._convert_path_to_absolute(args.db_path)
        elif self.db_path is None:
            self.db_path = pathlib.Path.cwd() / DB_FILE_NAME
        if getattr(args, "verbose", False):
            self.log_level = "DEBUG"

    @staticmethod
    def _convert_path_to_absolute(path: pathlib.Path | str) -> pathlib.Path:
        """Convert relative paths to absolute paths."""
        if isinstance(path, str):
            path = pathlib.Path(path)
        return path if path.is_absolute() else pathlib.Path.cwd() / path

    @staticmethod
    def _get_full_path(
        path: Optional[pathlib.Path], default_file_name: str
    ) -> Optional[pathlib.Path]:
        """Convert path arg to full filesystem path.

        If path is None, looks for file in current working directory. Otherwise
        converts relative paths to absolute paths. Returns None if no path was
        given and the default file does not exist.

        Raises:
            ConfigError: If a path was given but does not point to a file.
        """
        cwd = pathlib.Path.cwd()
        if path is None:
            full_path = cwd / default_file_name
            return full_path if full_path.is_file() else None
        full_path = path if path.is_absolute() else cwd / path
        if not full_path.exists():
            raise ConfigError(
                f"Config file {full_path} does not exist.",
                ConfigError.ErrorType.PATH_DOES_NOT_EXIST,
            )
        if not full_path.is_file():
            raise ConfigError(
                f"{full_path} is not a file.", ConfigError.ErrorType.NOT_A_FILE
            )
        return full_path

    def _read_config_file(self) -> None:
        """Read TOML configuration file."""
        if self.config_path is None:
            return
        app_settings = dataclasses.asdict(self)
        try:
            with open(self.config_path, "rb") as toml_file:
                file_settings = tomllib.load(toml_file)
        except tomllib.TOMLDecodeError as err:
            raise ConfigError(
                f"Unable to read {self.config_path}: {err}",
                ConfigError.ErrorType.INVALID_TOML,
            ) from err
        for setting_name, value in file_settings.items():
            if setting_name not in app_settings or setting_name == "config_path":
                continue
            if isinstance(value, str) and value.lower() in ["", "none", "null"]:
                value = None
            if setting_name == "db_path" and value is not None:
                value = self._convert_path_to_absolute(value)
            elif value is None:
                value = getattr(Settings, setting_name, None)
            self._check_type(setting_name, value)
            setattr(self, setting_name, value)

    @staticmethod
    def _check_type(setting_name: str, value: Any) -> None:
        """Make sure settings from the file have the type of their defaults."""
        default = getattr(Settings, setting_name, None)
        if default is None or value is None:
            return
        if isinstance(default, bool) != isinstance(value, bool) or not isinstance(
            value, type(default)
        ):
            raise ConfigError(
                f"Setting {setting_name} must be a {type(default).__name__}, "
                f"got {value!r}.",
                ConfigError.ErrorType.INVALID_VALUE,
            )

    def create_new_config_file(self, config_path: pathlib.Path) -> None:
        """Create a new configuration file with default settings."""
        if not config_path.exists():
            shutil.copy(
                pathlib.Path(__file__).parent / "example-config.toml", config_path
            )


# Store settings in a module-level variable, which will be available from any
# other module that imports classdiary.config. There is only a single instance
# of the Settings class.
settings = Settings()
