"""Parse probe shared by the repair stages."""
import json


def parses_as_json(text: str) -> bool:
    """True if text decodes with json.loads."""
    try:
        json.loads(text)
    except (ValueError, TypeError, RecursionError):
        return False
    return True
