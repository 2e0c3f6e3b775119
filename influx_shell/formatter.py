"""
Renders query responses as json, csv or aligned columns.

csv and column output share one row-building pass (`format_results`) that
produces tab-separated lines; the writers then turn those lines into real
CSV records or aligned text.
"""
import csv
import json
import logging
from typing import IO, List

from influx_shell import InfluxDBFormatError
from influx_shell.response import Response, Result
from influx_shell.utils import value_to_string

logger = logging.getLogger(__name__)

FORMATS = ("json", "csv", "column")


def _check_format(fmt: str) -> None:
    if fmt not in FORMATS:
        raise ValueError(f"Unknown output format '{fmt}'.")


def format_json(response: Response, pretty: bool = False) -> str:
    """
    Serializes a response as a JSON document.

    Raises:
        InfluxDBFormatError: If the response holds values JSON cannot express
                             (NaN, infinities, non-JSON types).
    """
    try:
        if pretty:
            return json.dumps(response.to_dict(), indent=4, allow_nan=False)
        return json.dumps(response.to_dict(), separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as e:
        raise InfluxDBFormatError(str(e)) from e


def format_results(result: Result, fmt: str, separator: str = "\t") -> List[str]:
    """Builds the csv or column lines for every series of one result."""
    rows: List[str] = []
    for i, series in enumerate(result.series):
        tags = sorted(f"{k}={v}" for k, v in series.tags.items())

        column_names: List[str] = []
        # name and tags only become columns in csv
        if fmt == "csv":
            if series.name:
                column_names.append("name")
            if tags:
                column_names.append("tags")
        column_names.extend(series.columns)

        if i > 0 and fmt == "column":
            rows.append("")

        if fmt == "column":
            if series.name:
                name_line = f"name: {series.name}"
                rows.append(name_line)
                if not tags:
                    rows.append("-" * len(name_line))
            if tags:
                rows.append(f"tags: {', '.join(tags)}")

        rows.append(separator.join(column_names))

        # the header underline only appears when there are tags; a name
        # without tags was already underlined above
        if fmt == "column" and tags:
            rows.append(separator.join("-" * len(c) for c in column_names))

        for row in series.values:
            values: List[str] = []
            if fmt == "csv":
                if series.name:
                    values.append(series.name)
                if tags:
                    values.append(",".join(tags))
            values.extend(value_to_string(v) for v in row)
            rows.append(separator.join(values))

        if fmt == "column":
            rows.append("")
    return rows


def format_response(response: Response, fmt: str, pretty: bool = False) -> List[str]:
    """
    Formats a whole response.

    Args:
        response: The query response.
        fmt: One of 'json', 'csv' or 'column'.
        pretty: Indent JSON output (json only).

    Returns:
        For csv and column, the tab-separated lines of every result in order.
        For json, a single-element list holding the document.

    Raises:
        ValueError: If fmt is not a known format.
        InfluxDBFormatError: If JSON serialization fails.
    """
    _check_format(fmt)
    if fmt == "json":
        return [format_json(response, pretty)]
    lines: List[str] = []
    for result in response.results:
        lines.extend(format_results(result, fmt))
    return lines


def _write_csv(response: Response, out: IO[str]) -> None:
    writer = csv.writer(out, lineterminator="\n")
    for result in response.results:
        for line in format_results(result, "csv"):
            writer.writerow(line.split("\t"))


def _align_block(block: List[str]) -> List[str]:
    """
    Pads tab-separated lines into left-aligned columns two spaces apart.

    Cells are written as-is, surrounding whitespace included; only the
    padding after the last cell of a line is left off.
    """
    table = [line.split("\t") for line in block]
    ncols = max(len(row) for row in table)
    widths = [max(len(row[i]) for row in table if i < len(row)) for i in range(ncols)]
    aligned = []
    for row in table:
        cells = [cell.ljust(width) for cell, width in zip(row[:-1], widths)]
        cells.append(row[-1])
        aligned.append("  ".join(cells))
    return aligned


def _write_columns(response: Response, out: IO[str]) -> None:
    for result in response.results:
        lines = format_results(result, "column")
        block: List[str] = []
        for line in lines:
            if "\t" in line:
                block.append(line)
                continue
            if block:
                for aligned in _align_block(block):
                    out.write(aligned + "\n")
                block = []
            out.write(line + "\n")
        if block:
            for aligned in _align_block(block):
                out.write(aligned + "\n")


def write_response(response: Response, fmt: str, pretty: bool, out: IO[str]) -> None:
    """
    Writes a formatted response to an output stream.

    csv lines go through the csv module so fields are quoted as needed;
    column lines are padded into aligned columns. A JSON serialization failure is
    reported on `out` and nothing else is written for the response.
    """
    if fmt == "json":
        try:
            document = format_json(response, pretty)
        except InfluxDBFormatError as e:
            logger.debug(f"JSON serialization failed: {e}")
            out.write(f"Unable to parse json: {e}\n")
            return
        out.write(document + "\n")
    elif fmt == "csv":
        _write_csv(response, out)
    elif fmt == "column":
        _write_columns(response, out)
    else:
        out.write(f"Unknown output format '{fmt}'.\n")
