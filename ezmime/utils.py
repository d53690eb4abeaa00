from os.path import isfile, splitext


TEMPLATE_EXTENSIONS = (".html", ".htm", ".txt", ".j2", ".jinja", ".jinja2")


def validate_path(path: str) -> None:
    """Ensures `path` names an existing regular file.

    Raises:
        ValueError: If `path` is not a non-empty string.
        FileNotFoundError: If the file does not exist.
    """
    if not isinstance(path, str) or not path:
        raise ValueError("Path must be a non-empty string.")
    if not isfile(path):
        raise FileNotFoundError(f"File not found: {path}")


def validate_template(path: str) -> None:
    """Ensures `path` is an existing template file with a known extension."""
    validate_path(path)
    if splitext(path)[1].lower() not in TEMPLATE_EXTENSIONS:
        raise ValueError(f"Not a valid template file: {path}")


def validate_protocol_config(config: dict) -> None:
    """Validates a server config dict with `server` and `port` keys."""
    if not isinstance(config, dict):
        raise ValueError("Server configuration must be a dict.")
    if not isinstance(config.get("server"), str) or not config["server"]:
        raise ValueError("Server configuration requires a 'server' hostname.")
    port = config.get("port")
    if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
        raise ValueError("Server configuration requires a valid integer 'port'.")


def validate_sender(sender: dict) -> None:
    """Validates sender credentials with `email` and `password` keys."""
    if not isinstance(sender, dict):
        raise ValueError("Sender must be a dict.")
    for key in ("email", "password"):
        if not isinstance(sender.get(key), str) or not sender[key]:
            raise ValueError(f"Sender requires a non-empty '{key}'.")
