import re

# Storage identifiers for uploaded files.
DEFAULT_TABLE_NAME = "dataset"
TABLE_PREFIX = "t_"
MAX_IDENTIFIER_LENGTH = 63

RESERVED_WORDS = frozenset(
    {
        "select", "from", "where", "insert", "update", "delete", "drop", "create",
        "alter", "table", "index", "view", "trigger", "database", "schema",
        "union", "join", "inner", "left", "right", "outer", "on", "as", "and",
        "or", "not", "in", "like", "between", "is", "null", "order", "by",
        "group", "having", "limit", "offset", "distinct", "case", "when", "then",
        "else", "end", "if", "exists", "all", "any", "some", "with", "primary",
        "key", "foreign", "references", "constraint", "unique", "check", "default",
    }
)

EXTENSION_RE = re.compile(r"\.[^/.]+$")
INVALID_CHARS_RE = re.compile(r"[^a-z0-9_]")
VALID_NAME_RE = re.compile(r"^[A-Za-z0-9_]+$")


# Drop the trailing ".csv" (or any extension) from an uploaded filename.
def display_name_from_filename(filename: str) -> str:
    """Return the user-facing dataset name for a filename."""
    return EXTENSION_RE.sub("", filename)


def sanitize_table_name(display_name: str) -> str:
    """Map an arbitrary filename to a safe SQLite identifier.

    The result is lowercase, uses only ``[a-z0-9_]``, never starts with a
    digit, never equals a reserved word and is at most 63 characters long.
    The function never fails and is idempotent.
    """
    name = display_name_from_filename(display_name or "").lower()
    name = INVALID_CHARS_RE.sub("_", name)
    name = re.sub(r"_+", "_", name).strip("_")

    if not name:
        name = DEFAULT_TABLE_NAME
    # Identifiers can't start with a digit.
    if name[0].isdigit():
        name = TABLE_PREFIX + name
    if name in RESERVED_WORDS:
        name = TABLE_PREFIX + name

    if len(name) > MAX_IDENTIFIER_LENGTH:
        name = name[:MAX_IDENTIFIER_LENGTH].rstrip("_")
    return name


def is_valid_table_name(name: str) -> bool:
    """Return True for non-empty word-character names not starting with a digit."""
    if not name:
        return False
    if not VALID_NAME_RE.fullmatch(name):
        return False
    return not name[0].isdigit()


# Storage names get a random suffix so uploads with the same filename never collide.
def build_storage_table_name(filename: str, dataset_id: str) -> str:
    """Return the physical table name for a newly uploaded dataset."""
    suffix = re.sub(r"[^A-Za-z0-9]", "", dataset_id)[:8].lower()
    return f"dataset_{sanitize_table_name(filename)}_{suffix}"
