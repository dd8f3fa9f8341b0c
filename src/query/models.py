"""Pydantic models for datasource query requests and results.

Field names are snake_case in Python; the wire form (``to_payload``) uses the
camelCase keys the datasource query API expects.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

DatasourceType = Literal["prometheus", "influxdb"]

DEFAULT_MAX_DATA_POINTS = 300
DEFAULT_FORMAT = "time_series"
DEFAULT_INTERVAL_MS = 15000


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class DatasourceRef(_WireModel):
    uid: str


class TimeRange(_WireModel):
    """Absolute bounds as epoch-millisecond strings."""

    from_: str = Field(alias="from")
    to: str


class PrometheusQuery(_WireModel):
    ref_id: str = Field(alias="refId")
    datasource: DatasourceRef
    expr: str
    max_data_points: int = Field(default=DEFAULT_MAX_DATA_POINTS, alias="maxDataPoints")
    format: str = DEFAULT_FORMAT
    interval_ms: int = Field(default=DEFAULT_INTERVAL_MS, alias="intervalMs")
    instant: bool = False
    range: bool = True
    legend_format: str = Field(default="", alias="legendFormat")
    interval: str | None = None

    @property
    def text(self) -> str:
        return self.expr


class InfluxQuery(_WireModel):
    ref_id: str = Field(alias="refId")
    datasource: DatasourceRef
    query: str
    raw_query: bool = Field(default=True, alias="rawQuery")
    max_data_points: int = Field(default=DEFAULT_MAX_DATA_POINTS, alias="maxDataPoints")
    format: str = DEFAULT_FORMAT
    interval_ms: int = Field(default=DEFAULT_INTERVAL_MS, alias="intervalMs")
    database: str | None = None
    alias: str | None = None

    @property
    def text(self) -> str:
        return self.query


DatasourceQuery = PrometheusQuery | InfluxQuery


class QueryRequest(_WireModel):
    """A complete request: time bounds plus one or more datasource queries."""

    from_: str = Field(alias="from")
    to: str
    queries: list[DatasourceQuery] = Field(default_factory=list)
    database: str | None = None

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(from_=self.from_, to=self.to)


class QueryOptions(BaseModel):
    """Caller-supplied knobs for building a request. Unset values take the defaults above."""

    datasource_type: DatasourceType | None = None
    database: str | None = None
    time_range: TimeRange | None = None
    max_data_points: int = DEFAULT_MAX_DATA_POINTS
    format: str = DEFAULT_FORMAT
    interval: str | None = None
    instant: bool = False
    legend_format: str = ""
    alias: str | None = None


class BatchEntry(BaseModel):
    """One query in a batch; entries missing either field are skipped."""

    datasource_id: str | None = None
    query: str | None = None
    datasource_type: DatasourceType | None = None
    legend_format: str = ""
    alias: str | None = None
    interval: str | None = None


class VariableRequest(BaseModel):
    """Descriptor for resolving a dashboard variable query.

    ``url``/``params`` are set for label-value lookups; otherwise ``request``
    holds an instant query to run.
    """

    url: str | None = None
    params: dict[str, str] = Field(default_factory=dict)
    extract_label: str | None = None
    request: QueryRequest | None = None


class QueryResult(BaseModel):
    """Tabular executor output; the first column is the timestamp."""

    columns: list[str] = Field(default_factory=list)
    values: list[list[Any]] = Field(default_factory=list)
