"""Central configuration helper for the conversation index."""

import logging
import os


class HelperConfig:
    """Central configuration helper. Reads all settings from environment variables.

    An empty variable counts as unset. Every getter raises ValueError when the
    variable is unset and no default is given, so missing required settings
    surface when a client or service is constructed, not mid-run.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _read(self, key: str) -> str | None:
        """Return the stripped raw value of an environment variable, or None if unset/empty."""
        raw = os.getenv(key.upper()) or None
        return raw.strip() if raw is not None else None

    def get_string_val(self, key: str, default: str | None = None) -> str:
        """Read a string environment variable.

        Args:
            key (str): Environment variable name (case-insensitive).
            default (str | None): Fallback value if the variable is not set.

        Returns:
            str: The resolved value.

        Raises:
            ValueError: If the variable is not set and no default is provided.
        """
        val = self._read(key)
        if val is None and default is None:
            raise ValueError(f"Environment variable '{key.upper()}' is not set.")
        return val if val is not None else default

    def get_number_val(self, key: str, default: float | int | None = None) -> float | int:
        """Read a numeric environment variable.

        Args:
            key (str): Environment variable name (case-insensitive).
            default (float | int | None): Fallback value if the variable is not set.

        Returns:
            float | int: int when the value has no decimal point, float otherwise.

        Raises:
            ValueError: If the variable is not set and no default is provided.
            ValueError: If the value cannot be parsed as a number.
        """
        raw = self._read(key)
        if raw is None:
            if default is None:
                raise ValueError(f"Environment variable '{key.upper()}' is not set.")
            return default
        try:
            return int(raw) if "." not in raw else float(raw)
        except ValueError:
            raise ValueError(f"Environment variable '{key.upper()}' is not a valid number: '{raw}'.")

    def get_int_val(self, key: str, default: int | None = None) -> int:
        """Read a numeric environment variable and truncate it to int."""
        return int(self.get_number_val(key, default=default))

    def get_float_val(self, key: str, default: float | None = None) -> float:
        """Read a numeric environment variable as float."""
        return float(self.get_number_val(key, default=default))

    def get_bool_val(self, key: str, default: bool | None = None) -> bool:
        """Read a boolean environment variable ("true", "1" and "yes" are truthy).

        Raises:
            ValueError: If the variable is not set and no default is provided.
        """
        raw = self._read(key)
        if raw is None:
            if default is None:
                raise ValueError(f"Environment variable '{key.upper()}' is not set.")
            return default
        return raw.lower() in ("true", "1", "yes")

    def get_list_val(self, key: str, default: list[str] | None = None, separator: str = ",", element_type: type = str) -> list:
        """Read a list environment variable in the form "[elem1,elem2,...]".

        Args:
            key (str): Environment variable name (case-insensitive).
            default (list[str] | None): Fallback value if the variable is not set.
            separator (str): The delimiter between elements.
            element_type (type): The type to which each element should be cast.

        Returns:
            list: The resolved list of elements (empty elements dropped).

        Raises:
            ValueError: If the variable is not set and no default is provided,
                if the brackets are missing, or if an element cannot be cast.
        """
        raw_val = self._read(key)
        if raw_val is None:
            if default is None:
                raise ValueError(f"Environment variable '{key.upper()}' is not set.")
            return default
        if not raw_val.startswith("[") or not raw_val.endswith("]"):
            raise ValueError(f"Environment variable '{key.upper()}' must be in the format '[elem1{separator}elem2{separator}...]'. Got: '{raw_val}'")
        elements = [v.strip() for v in raw_val[1:-1].split(separator) if v.strip()]
        try:
            return [element_type(elem) for elem in elements]
        except ValueError as e:
            raise ValueError(f"Environment variable '{key.upper()}' contains invalid elements: {e}. Type set to {element_type.__name__}. Got: '{raw_val}'")

    def get_logger(self) -> logging.Logger:
        """Return the application logger.

        Returns:
            logging.Logger: The configured logger instance.
        """
        return self._logger
