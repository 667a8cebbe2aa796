from typing import Any, Dict, List, Mapping, Sequence, Tuple, Union

from sqlmate.errors import ValidationError
from sqlmate.pii_detect import PIIReport

ACTION_DROP = "drop"
ACTION_MASK = "mask"
ACTION_HASH = "hash"
ACTION_NONE = "none"
ACTIONS = (ACTION_DROP, ACTION_MASK, ACTION_HASH, ACTION_NONE)

MASK_CHAR = "*"
HASH_PREFIX = "hash_"

ActionSpec = Union[str, Mapping[str, str]]


def mask_value(value: Any) -> str:
    """Keep a few edge characters and star out the rest."""
    text_value = "" if value is None else str(value)
    length = len(text_value)
    if length == 0:
        return text_value
    if length <= 2:
        return MASK_CHAR * 2
    if length <= 4:
        return text_value[0] + MASK_CHAR * (length - 1)
    return text_value[:2] + MASK_CHAR * (length - 4) + text_value[-2:]


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def hash_value(value: Any) -> str:
    """Return a stable token for a value (not a cryptographic hash)."""
    text_value = "" if value is None else str(value)
    if not text_value:
        return text_value
    hashed = 0
    # Rolling h * 31 + c over UTF-16 code units, wrapped to signed 32 bits.
    encoded = text_value.encode("utf-16-le")
    for index in range(0, len(encoded), 2):
        code_unit = encoded[index] | (encoded[index + 1] << 8)
        hashed = _to_int32((hashed << 5) - hashed + code_unit)
    return f"{HASH_PREFIX}{abs(hashed):x}"


# Expand a single action into a per-column map covering every reported column.
def resolve_action_map(report: PIIReport, actions: ActionSpec) -> Dict[str, str]:
    """Normalize the action argument into a column -> action dict."""
    if isinstance(actions, str):
        action_map = {name: actions for name in report.column_names}
    else:
        action_map = dict(actions)
    for column, action in action_map.items():
        if action not in ACTIONS:
            raise ValidationError(f'Unknown redaction action "{action}" for column "{column}".')
    return action_map


def process_pii(
    rows: Sequence[Mapping[str, Any]],
    report: PIIReport,
    actions: ActionSpec = ACTION_DROP,
) -> List[Dict[str, Any]]:
    """Apply redaction actions to every row, returning new row dicts.

    ``actions`` is either one action for every column in ``report`` or a
    mapping of column -> drop/mask/hash/none. Columns absent from the
    mapping are left untouched and row order is preserved.
    """
    action_map = resolve_action_map(report, actions)
    processed_rows = []
    for row in rows:
        processed = dict(row)
        for column, action in action_map.items():
            if action == ACTION_NONE:
                continue
            if action == ACTION_DROP:
                processed.pop(column, None)
            elif processed.get(column) is None or str(processed[column]) == "":
                # Absent, None and empty values are left as they are.
                continue
            elif action == ACTION_MASK:
                processed[column] = mask_value(processed[column])
            elif action == ACTION_HASH:
                processed[column] = hash_value(processed[column])
        processed_rows.append(processed)
    return processed_rows


def summarize_pii_actions(action_map: Mapping[str, str]) -> Tuple[str, List[str]]:
    """Return (summary action, acted columns) for dataset metadata."""
    pii_columns = [column for column, action in action_map.items() if action != ACTION_NONE]
    if not pii_columns:
        return ACTION_NONE, []
    if len(pii_columns) > 1:
        return "mixed", pii_columns
    return action_map[pii_columns[0]], pii_columns
