"""DynamoDB-backed metadata store.

The table has a single hash key (``training_job_name`` by default) and no
secondary indices. Conditional expressions provide create-if-absent, version
checked updates and lease rows.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError

from ..backends.aws import error_code, translate_client_error
from ..core.exceptions import RecordConflict
from .models import JobRecord
from .store import MetadataStore

LOGGER = logging.getLogger(__name__)

_CONDITION_FAILED = "ConditionalCheckFailedException"


class DynamoMetadataStore(MetadataStore):
    def __init__(self, table: Any, *, key_attribute: str = "training_job_name") -> None:
        self.table = table
        self.key_attribute = key_attribute

    def _to_item(self, record: JobRecord) -> Dict[str, Any]:
        item = record.to_item()
        item[self.key_attribute] = item.pop("job_name")
        return item

    def _from_item(self, item: Dict[str, Any]) -> JobRecord:
        payload = dict(item)
        payload["job_name"] = payload.pop(self.key_attribute)
        return JobRecord.from_item(payload)

    def get(self, job_name: str) -> Optional[JobRecord]:
        try:
            response = self.table.get_item(Key={self.key_attribute: job_name}, ConsistentRead=True)
        except (ClientError, BotoCoreError) as exc:
            raise translate_client_error(exc, operation="dynamodb_get_item", job_name=job_name) from exc
        item = response.get("Item")
        return self._from_item(item) if item else None

    def _insert(self, record: JobRecord) -> None:
        try:
            self.table.put_item(
                Item=self._to_item(record),
                ConditionExpression=Attr(self.key_attribute).not_exists(),
            )
        except ClientError as exc:
            if error_code(exc) == _CONDITION_FAILED:
                raise RecordConflict(
                    f"Job record '{record.job_name}' already exists",
                    metadata={"job_name": record.job_name},
                ) from exc
            raise translate_client_error(exc, operation="dynamodb_put_item", job_name=record.job_name) from exc
        except BotoCoreError as exc:
            raise translate_client_error(exc, operation="dynamodb_put_item", job_name=record.job_name) from exc

    def _replace(self, record: JobRecord, expected_version: int) -> None:
        try:
            self.table.put_item(
                Item=self._to_item(record),
                ConditionExpression=Attr("version").eq(expected_version),
            )
        except ClientError as exc:
            if error_code(exc) == _CONDITION_FAILED:
                raise RecordConflict(
                    f"Job record '{record.job_name}' changed concurrently",
                    metadata={"job_name": record.job_name, "expected_version": expected_version},
                ) from exc
            raise translate_client_error(exc, operation="dynamodb_put_item", job_name=record.job_name) from exc
        except BotoCoreError as exc:
            raise translate_client_error(exc, operation="dynamodb_put_item", job_name=record.job_name) from exc

    def acquire_lease(self, key: str, owner: str, ttl_seconds: int) -> bool:
        now = int(time.time())
        condition = Attr(self.key_attribute).not_exists() | Attr("owner").eq(owner) | Attr("expires_at").lt(now)
        try:
            self.table.put_item(
                Item={
                    self.key_attribute: key,
                    "record_type": "lease",
                    "owner": owner,
                    "expires_at": now + ttl_seconds,
                },
                ConditionExpression=condition,
            )
        except ClientError as exc:
            if error_code(exc) == _CONDITION_FAILED:
                return False
            raise translate_client_error(exc, operation="dynamodb_acquire_lease", lease=key) from exc
        except BotoCoreError as exc:
            raise translate_client_error(exc, operation="dynamodb_acquire_lease", lease=key) from exc
        return True

    def release_lease(self, key: str, owner: str) -> None:
        try:
            self.table.delete_item(Key={self.key_attribute: key}, ConditionExpression=Attr("owner").eq(owner))
        except ClientError as exc:
            if error_code(exc) == _CONDITION_FAILED:
                LOGGER.warning("lease_lost", extra={"extra_context": {"lease": key, "owner": owner}})
                return
            raise translate_client_error(exc, operation="dynamodb_release_lease", lease=key) from exc
        except BotoCoreError as exc:
            raise translate_client_error(exc, operation="dynamodb_release_lease", lease=key) from exc


__all__ = ["DynamoMetadataStore"]
