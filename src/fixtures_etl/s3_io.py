from __future__ import annotations

import gzip
import io
import json
import time
import uuid
from typing import Any, Dict, Iterable, List, Optional

import boto3

from .utils import stable_hash, utcnow


class S3IO:
    def __init__(self, bucket: str, region: str) -> None:
        self.bucket = bucket
        self.region = region
        self._client = boto3.client("s3", region_name=region)

    def _put_with_retry(self, key: str, body: bytes, max_attempts: int = 3) -> None:
        delay = 0.5
        for attempt in range(1, max_attempts + 1):
            try:
                self._client.put_object(Bucket=self.bucket, Key=key, Body=body)
                return
            except Exception:
                if attempt >= max_attempts:
                    raise
                time.sleep(delay)
                delay = min(4.0, delay * 2)

    def put_json_gz(self, key: str, records: Iterable[Any]) -> None:
        buf = io.BytesIO()
        with gzip.GzipFile(fileobj=buf, mode="wb") as gz:
            for rec in records:
                gz.write(json.dumps(rec, default=str).encode("utf-8") + b"\n")
        self._put_with_retry(key, buf.getvalue())

    def put_json(self, key: str, payload: Dict[str, Any]) -> None:
        self._put_with_retry(key, json.dumps(payload, default=str).encode("utf-8"))

    def list_keys(self, prefix: str) -> List[str]:
        keys = []
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                keys.append(obj["Key"])
        return keys

    def get_object_bytes(self, key: str) -> bytes:
        obj = self._client.get_object(Bucket=self.bucket, Key=key)
        return obj["Body"].read()


def make_part_key(prefix: str, *parts: str) -> str:
    return "/".join([prefix.strip("/")] + [p.strip("/") for p in parts])


def new_run_id() -> str:
    return uuid.uuid4().hex


class RawArchive:
    """Audit trail of what the upstream returned and what could not be written.

    Layout under the bucket:
      raw/fixtures/league=<id>/date=<yyyy-mm-dd>/run=<run_id>.json.gz   one envelope per line
      deadletter/matches/ingested_at=<date>/part-<hash>.json
      meta/run_id=<run_id>.json
    """

    def __init__(
        self,
        s3: S3IO,
        raw_prefix: str = "raw",
        deadletter_prefix: str = "deadletter",
        meta_prefix: str = "meta",
    ) -> None:
        self.s3 = s3
        self.raw_prefix = raw_prefix
        self.deadletter_prefix = deadletter_prefix
        self.meta_prefix = meta_prefix

    @classmethod
    def from_config(cls, raw: Optional[Dict[str, Any]]) -> Optional["RawArchive"]:
        if not raw or not raw.get("bucket"):
            return None
        s3 = S3IO(raw["bucket"], raw.get("region", "us-east-1"))
        return cls(
            s3,
            raw_prefix=raw.get("raw_prefix", "raw"),
            deadletter_prefix=raw.get("deadletter_prefix", "deadletter"),
            meta_prefix=raw.get("meta_prefix", "meta"),
        )

    def put_pages(self, run_id: str, league_id: int, window_start: str, pages: List[Dict[str, Any]]) -> str:
        key = make_part_key(
            self.raw_prefix, "fixtures", f"league={league_id}", f"date={window_start}", f"run={run_id}.json.gz"
        )
        self.s3.put_json_gz(key, pages)
        return key

    def put_deadletter(self, run_id: str, reason: str, row: Dict[str, Any]) -> str:
        key = make_part_key(
            self.deadletter_prefix,
            "matches",
            f"ingested_at={utcnow().date().isoformat()}",
            f"part-{stable_hash({'run_id': run_id, 'external_id': row.get('external_id')})[:8]}.json",
        )
        self.s3.put_json(key, {"run_id": run_id, "reason": reason, "row": row})
        return key

    def put_summary(self, run_id: str, summary: Dict[str, Any]) -> str:
        key = make_part_key(self.meta_prefix, f"run_id={run_id}.json")
        self.s3.put_json(key, summary)
        return key
