from typing import Any, List, Optional, Tuple, Union

from influx_shell.response import Scalar, Series

_WHITESPACE = (" ", "\t", "\n")


def _is_letter(ch: str) -> bool:
    return ("a" <= ch <= "z") or ("A" <= ch <= "Z")


def _is_digit(ch: str) -> bool:
    return "0" <= ch <= "9"


def _is_ident_first_char(ch: str) -> bool:
    return _is_letter(ch) or ch == "_"


def _is_ident_char(ch: str) -> bool:
    return _is_letter(ch) or _is_digit(ch) or ch == "_"


def _parse_unquoted_identifier(stmt: str, start: int) -> Tuple[str, str]:
    end = start
    while end < len(stmt) and _is_ident_char(stmt[end]):
        end += 1
    return stmt[start:end], stmt[end:]


def _parse_double_quoted_identifier(stmt: str, start: int) -> Optional[Tuple[str, str]]:
    chars = []
    pos = start + 1  # skip opening quote
    while pos < len(stmt):
        ch = stmt[pos]
        if ch == "\\" and pos + 1 < len(stmt):
            chars.append(stmt[pos + 1])
            pos += 2
            continue
        if ch == '"':
            return "".join(chars), stmt[pos + 1 :]
        chars.append(ch)
        pos += 1
    # unterminated
    return None


def parse_next_identifier(stmt: str) -> Tuple[str, str]:
    """
    Splits the leading identifier off a statement fragment.

    Leading spaces, tabs and newlines are skipped. An unquoted identifier is a
    run of ASCII letters, digits and underscores starting with a letter or
    underscore. A double-quoted identifier runs to the next unescaped quote;
    a backslash escapes the character after it and is dropped.

    Args:
        stmt: The text to parse.

    Returns:
        A (identifier, remainder) tuple. When no identifier can be parsed the
        identifier is the empty string and the remainder is `stmt` without
        its leading whitespace.
    """
    pos = 0
    while pos < len(stmt) and stmt[pos] in _WHITESPACE:
        pos += 1
    if pos < len(stmt):
        ch = stmt[pos]
        if _is_ident_first_char(ch):
            return _parse_unquoted_identifier(stmt, pos)
        if ch == '"':
            parsed = _parse_double_quoted_identifier(stmt, pos)
            if parsed is not None:
                return parsed
    return "", stmt[pos:]


def parse_into(stmt: str) -> Tuple[Optional[str], Optional[str], str]:
    """
    Parses the `<database>.<retention-policy> <point>` target that follows
    INSERT INTO.

    A leading identifier followed by '.' names the database, and the
    identifier after the dot is the retention policy. An identifier followed
    directly by a space is the retention policy alone.

    Returns:
        (database, retention_policy, remainder). Parts that were not present
        are None so the caller keeps its current setting.
    """
    database = None
    retention_policy = None
    ident, rest = parse_next_identifier(stmt)
    if rest.startswith("."):
        database = ident
        ident, rest = parse_next_identifier(rest[1:])
    if rest.startswith(" "):
        retention_policy = ident
        return database, retention_policy, rest[1:]
    return database, retention_policy, rest


def parse_insert(stmt: str) -> Tuple[Optional[str], Optional[str], str]:
    """
    Parses an `INSERT [INTO <db>.<rp>] <point>` shell command.

    Returns:
        (database, retention_policy, point). database and retention_policy are
        None unless an INTO clause named them.

    Raises:
        ValueError: If the statement does not start with INSERT.
    """
    keyword, point = parse_next_identifier(stmt)
    if keyword.lower() != "insert":
        raise ValueError(f"found {keyword}, expected INSERT")
    ident, rest = parse_next_identifier(point)
    if ident.lower() == "into":
        return parse_into(rest)
    return None, None, point


def value_to_string(value: Scalar) -> str:
    """Renders one row value for csv and column output."""
    if value is None:
        return ""
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return "%d" % value
    if isinstance(value, float):
        return repr(value)
    return str(value)


def _series_extract_field(series: Series, field: Union[str, int]) -> List[Any]:
    """
    Extracts the values of one column from a series.

    If 'field' is a string and no exact column name matches, a
    case-insensitive match is attempted.

    Args:
        series: The series to read.
        field: Column name (str) or 0-based index (int).

    Returns:
        The values of that column, one per row.

    Raises:
        TypeError: If 'field' is neither a string nor an integer.
        ValueError: If the column name is not found or the index is out of range.
    """
    columns = series.columns
    if isinstance(field, bool) or not isinstance(field, (str, int)):
        raise TypeError(
            f"Input 'field' must be a string (column name) or an integer (index), but got {type(field).__name__}."
        )

    if isinstance(field, str):
        if field in columns:
            column_index = columns.index(field)
        else:
            lowered = [c.lower() for c in columns]
            if field.lower() not in lowered:
                raise ValueError(
                    f"Column name '{field}' not found (case-insensitive search also failed). Available columns: {columns}"
                )
            column_index = lowered.index(field.lower())
    else:
        if not 0 <= field < len(columns):
            if not columns:
                raise ValueError(
                    f"Cannot access index {field}: There are no columns defined."
                )
            raise ValueError(
                f"Column index {field} is out of range (must be between 0 and {len(columns) - 1})."
            )
        column_index = field

    return [row[column_index] for row in series.values]
