from pydantic import BaseModel


class EnvConfig(BaseModel):
    """
    Represents a single configuration parameter a client requires.

    Attributes:
        env_key (str): The raw key of the environment variable, without the "<TYPE>_<ENGINE>_" prefix (e.g. "BASE_URL").
        val_type (str): The expected type of the value. Supported types are "string", "number", "bool" and "list".
        default (str | int | float | bool | list | None): Value used when the variable is not set. None makes the variable required.
    """

    env_key: str
    val_type: str
    default: str | int | float | bool | list | None = None
