"""
Imports legacy export files.

The file is plain text, optionally gzip-compressed:

    # DDL
    CREATE DATABASE db0
    CREATE RETENTION POLICY rp0 ON db0 DURATION 1h REPLICATION 1
    # DML
    # CONTEXT-DATABASE: db0
    # CONTEXT-RETENTION-POLICY: rp0
    cpu,host=a value=1 1440000000000000000

Lines of the DDL section are run as queries; lines of the DML section are
line-protocol points written in batches to the context database and
retention policy. Other '#' lines are comments.
"""
import gzip
import logging
import time
from typing import IO, List, Optional

from influx_shell import InfluxDBClient, InfluxDBError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5000

_DDL_HEADER = "# DDL"
_DML_HEADER = "# DML"
_DB_CONTEXT = "# CONTEXT-DATABASE:"
_RP_CONTEXT = "# CONTEXT-RETENTION-POLICY:"


class Importer:
    """Replays an export file against a server."""

    def __init__(
        self,
        client: InfluxDBClient,
        path: str,
        compressed: bool = False,
        precision: str = "ns",
        write_consistency: str = "any",
        pps: int = 0,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        """
        Args:
            client: Connected client.
            path: Export file to read.
            compressed: The file is gzip-compressed.
            precision: Timestamp precision of the points.
            write_consistency: Write consistency level for every batch.
            pps: Maximum points per second, 0 for no limit.
            batch_size: Points per write request.
        """
        if pps < 0:
            raise ValueError("pps must be a non-negative integer.")
        if batch_size <= 0:
            raise ValueError("batch_size must be a positive integer.")
        self.client = client
        self.path = path
        self.compressed = compressed
        self.precision = precision
        self.write_consistency = write_consistency
        self.pps = pps
        # a batch larger than the rate limit would always overshoot it
        self.batch_size = min(batch_size, pps) if pps else batch_size

        self.database = ""
        self.retention_policy = ""
        self.batch: List[str] = []
        self.total_commands = 0
        self.total_inserts = 0
        self.failed_inserts = 0
        self._throttle_start: Optional[float] = None
        self._throttle_points = 0

    def _open(self) -> IO[str]:
        if self.compressed:
            return gzip.open(self.path, "rt", encoding="utf-8")
        return open(self.path, "r", encoding="utf-8")

    def run(self) -> None:
        """
        Imports the whole file.

        Raises:
            OSError: If the file cannot be read.
            InfluxDBError: If any insert failed.
        """
        start = time.monotonic()
        section = None
        with self._open() as f:
            for raw in f:
                line = raw.strip()
                if not line:
                    continue
                if line == _DDL_HEADER:
                    section = "ddl"
                    logger.info("Processing DDL")
                    continue
                if line == _DML_HEADER:
                    section = "dml"
                    logger.info("Processing DML")
                    continue
                if line.startswith(_DB_CONTEXT):
                    self._flush()
                    self.database = line[len(_DB_CONTEXT) :].strip()
                    logger.info(f"Using database '{self.database}'")
                    continue
                if line.startswith(_RP_CONTEXT):
                    self._flush()
                    self.retention_policy = line[len(_RP_CONTEXT) :].strip()
                    logger.info(f"Using retention policy '{self.retention_policy}'")
                    continue
                if line.startswith("#"):
                    continue
                if section == "ddl":
                    self._query(line)
                elif section == "dml":
                    self._add_point(line)
                else:
                    logger.warning(f"Skipping line outside of a DDL or DML section: {line[:80]}")
        self._flush()

        elapsed = time.monotonic() - start
        logger.info(f"Processed {self.total_commands} commands")
        logger.info(f"Processed {self.total_inserts} inserts")
        logger.info(f"Failed {self.failed_inserts} inserts")
        logger.info(f"Import finished in {elapsed:.3f}s")
        if self.failed_inserts:
            raise InfluxDBError(
                f"{self.failed_inserts} of {self.total_inserts} inserts failed. "
                "Check the log for details."
            )

    def _query(self, command: str) -> None:
        response = self.client.query(command, database=self.database)
        err = response.error()
        if err:
            logger.error(f"Error running DDL '{command}': {err}")
        self.total_commands += 1

    def _add_point(self, line: str) -> None:
        self.batch.append(line)
        if len(self.batch) >= self.batch_size:
            self._flush()

    def _flush(self) -> None:
        if not self.batch:
            return
        points, self.batch = self.batch, []
        self._throttle(len(points))
        try:
            self.client.write(
                points,
                database=self.database,
                retention_policy=self.retention_policy,
                precision=self.precision,
                consistency=self.write_consistency,
            )
        except InfluxDBError as e:
            logger.error(f"Error writing batch of {len(points)} point(s): {e}")
            self.failed_inserts += len(points)
        self.total_inserts += len(points)
        if self.total_inserts % 100000 < len(points):
            logger.info(f"Processed {self.total_inserts} lines")

    def _throttle(self, n: int) -> None:
        """Sleeps until writing n more points keeps the rate at or under pps."""
        if not self.pps:
            return
        now = time.monotonic()
        if self._throttle_start is None:
            self._throttle_start = now
        self._throttle_points += n
        earliest = self._throttle_start + (self._throttle_points - n) / self.pps
        if earliest > now:
            time.sleep(earliest - now)
