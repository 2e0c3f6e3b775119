from typing import Any, Dict, List, Optional, Union

# A single cell of a result row.
Scalar = Union[None, bool, int, float, str]


class Series:
    """One named, tagged table of rows sharing a column schema."""

    def __init__(
        self,
        name: str = "",
        tags: Optional[Dict[str, str]] = None,
        columns: Optional[List[str]] = None,
        values: Optional[List[List[Scalar]]] = None,
    ):
        self.name = name or ""
        self.tags = dict(tags or {})
        self.columns = list(columns or [])
        self.values = [list(row) for row in (values or [])]
        for i, row in enumerate(self.values):
            if len(row) != len(self.columns):
                raise ValueError(
                    f"Row {i} of series '{self.name}' has {len(row)} values, expected {len(self.columns)}."
                )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Series":
        return cls(
            name=data.get("name", ""),
            tags=data.get("tags"),
            columns=data.get("columns"),
            values=data.get("values"),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {}
        if self.name:
            d["name"] = self.name
        if self.tags:
            d["tags"] = dict(self.tags)
        d["columns"] = list(self.columns)
        if self.values:
            d["values"] = [list(row) for row in self.values]
        return d

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Series):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"Series(name={self.name!r}, tags={self.tags!r}, columns={self.columns!r}, rows={len(self.values)})"


class Result:
    """The outcome of one statement: its series, or an error."""

    def __init__(self, series: Optional[List[Series]] = None, err: Optional[str] = None):
        self.series = list(series or [])
        self.err = err or None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Result":
        return cls(
            series=[Series.from_dict(s) for s in data.get("series") or []],
            err=data.get("error"),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {}
        if self.series:
            d["series"] = [s.to_dict() for s in self.series]
        if self.err:
            d["error"] = self.err
        return d

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Result):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"Result(series={self.series!r}, err={self.err!r})"


class Response:
    """
    A full query response: one Result per statement plus an overall error.

    Mirrors the JSON body returned by the /query endpoint:

        {"results": [{"series": [...], "error": "..."}], "error": "..."}
    """

    def __init__(self, results: Optional[List[Result]] = None, err: Optional[str] = None):
        self.results = list(results or [])
        self.err = err or None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Response":
        if not isinstance(data, dict):
            raise TypeError(f"Response body must be a JSON object, got {type(data).__name__}.")
        return cls(
            results=[Result.from_dict(r) for r in data.get("results") or []],
            err=data.get("error"),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"results": [r.to_dict() for r in self.results]}
        if self.err:
            d["error"] = self.err
        return d

    def error(self) -> Optional[str]:
        """Returns the overall error, else the first per-result error, else None."""
        if self.err:
            return self.err
        for result in self.results:
            if result.err:
                return result.err
        return None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Response):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"Response(results={self.results!r}, err={self.err!r})"
