"""Input validation for CLI arguments."""
import re
import sys
from pathlib import Path

SECRET_NAME_PATTERN = r'^[a-zA-Z0-9_.-]+$'


def validate_secret_name(name: str) -> None:
    """
    Validate a secret name given on the command line.

    Secret names are config keys: letters, numbers, dots, underscores, hyphens.

    Raises:
        SystemExit with code 2 if validation fails
    """
    if not name:
        print("Error: Secret name cannot be empty", file=sys.stderr)
        sys.exit(2)

    if not re.match(SECRET_NAME_PATTERN, name):
        print(f"Error: Invalid secret name '{name}'", file=sys.stderr)
        print("\nAllowed characters: letters, numbers, dots (.), underscores (_), hyphens (-)", file=sys.stderr)
        sys.exit(2)


def validate_config_file(path: str) -> Path:
    """
    Validate that ``path`` points to an existing regular file.

    Returns:
        Resolved absolute path

    Raises:
        SystemExit with code 1 if the file doesn't exist or isn't a file
    """
    config_path = Path(path).expanduser().resolve()
    if not config_path.exists():
        print(f"Error: Config file does not exist: {config_path}", file=sys.stderr)
        sys.exit(1)
    if not config_path.is_file():
        print(f"Error: Path is not a file: {config_path}", file=sys.stderr)
        sys.exit(1)
    return config_path
