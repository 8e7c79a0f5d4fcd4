"""
Generic repository over a partition-key / sort-key document store.

Concrete repositories declare their table, key names and secondary
index key names; everything else (conditional create, expression-built
updates, paged queries, chunked batches, scans) lives here.
"""
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError

from apps.core.dynamodb import (
    decode_cursor,
    encode_cursor,
    from_dynamo,
    table_name,
    to_dynamo,
    utc_now_iso,
)
from apps.core.exceptions import (
    ConflictError,
    IndexResolutionError,
    NotFoundError,
    PartialBatchError,
    StoreError,
    ValidationError,
    error_code,
    translate_client_error,
)
from apps.core.observability.events import log_batch_partial_failure
from apps.core.observability.logging import get_sanitized_logger
from apps.core.observability.metrics import metrics

logger = get_sanitized_logger(__name__)

CONDITIONAL_CHECK_FAILED = 'ConditionalCheckFailedException'

SORT_KEY_CONDITIONS = {
    '=': 'eq',
    '<': 'lt',
    '<=': 'lte',
    '>': 'gt',
    '>=': 'gte',
    'begins_with': 'begins_with',
    'between': 'between',
}


@dataclass
class QueryPage:
    """One page of results plus an opaque cursor for the next page (None at the end)."""
    items: List[Dict[str, Any]]
    cursor: Optional[str] = None


@dataclass
class BatchWriteResult:
    written: int
    chunks: int
    unprocessed: List[Dict[str, Any]] = field(default_factory=list)


def chunked(items: List[Any], size: int) -> Iterable[List[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class BaseRepository:
    """
    CRUD/query contract over one table.

    Subclasses set table_base_name, partition_key, sort_key (or None) and
    index_keys, a mapping of index name -> (partition key, sort key).
    """

    BATCH_WRITE_LIMIT = 25
    BATCH_GET_LIMIT = 100
    BATCH_GET_ROUNDS = 3

    table_base_name: str = None
    partition_key: str = None
    sort_key: Optional[str] = None
    index_keys: Dict[str, Tuple[str, Optional[str]]] = {}

    def __init__(self, resource, environment=None):
        self.resource = resource
        self.table_name = table_name(self.table_base_name, environment)
        self.table = resource.Table(self.table_name)

    # ------------------------------------------------------------------
    # Key resolution
    # ------------------------------------------------------------------

    def get_index_partition_key_name(self, index_name: str) -> str:
        try:
            return self.index_keys[index_name][0]
        except KeyError:
            raise IndexResolutionError(
                f'{self.__class__.__name__} has no index named {index_name}'
            )

    def get_index_sort_key_name(self, index_name: str) -> Optional[str]:
        try:
            return self.index_keys[index_name][1]
        except KeyError:
            raise IndexResolutionError(
                f'{self.__class__.__name__} has no index named {index_name}'
            )

    def build_key(self, partition_value, sort_value=None) -> Dict[str, Any]:
        key = {self.partition_key: partition_value}
        if self.sort_key:
            if sort_value is None:
                raise ValidationError(f'{self.sort_key} is required', field=self.sort_key)
            key[self.sort_key] = sort_value
        return key

    def key_of(self, item: Dict[str, Any]) -> Dict[str, Any]:
        return self.build_key(item.get(self.partition_key), item.get(self.sort_key) if self.sort_key else None)

    # ------------------------------------------------------------------
    # Store call wrapper
    # ------------------------------------------------------------------

    def _call(self, operation: str, func, **params):
        """Run one store call; time it, count it, translate its errors."""
        start = time.time()
        try:
            response = func(**params)
        except ClientError as e:
            code = error_code(e)
            result = 'conflict' if code == CONDITIONAL_CHECK_FAILED else 'error'
            metrics.dynamodb_requests_total.labels(
                operation=operation, table=self.table_name, result=result
            ).inc()
            if result == 'error':
                logger.warning(
                    'DynamoDB call failed',
                    extra={
                        'event': 'dynamodb_call_failed',
                        'operation': operation,
                        'table': self.table_name,
                        'error_code': code,
                    }
                )
            raise translate_client_error(e, operation, self.table_name) from e
        except BotoCoreError as e:
            metrics.dynamodb_requests_total.labels(
                operation=operation, table=self.table_name, result='error'
            ).inc()
            # Connection-level failures (timeouts, unreachable endpoint) are transient
            raise StoreError(
                f'{operation} on {self.table_name} failed: {e}',
                code=e.__class__.__name__,
                operation=operation,
                retryable=True,
            ) from e
        finally:
            metrics.dynamodb_request_duration_seconds.labels(operation=operation).observe(
                time.time() - start
            )

        metrics.dynamodb_requests_total.labels(
            operation=operation, table=self.table_name, result='success'
        ).inc()
        return response

    # ------------------------------------------------------------------
    # Single item operations
    # ------------------------------------------------------------------

    def create(self, item: Dict[str, Any]) -> Dict[str, Any]:
        """
        Write item only if no item with the same key exists.

        Raises ConflictError if one does.
        """
        try:
            self._call(
                'PutItem',
                self.table.put_item,
                Item=to_dynamo(item),
                ConditionExpression='attribute_not_exists(#pk)',
                ExpressionAttributeNames={'#pk': self.partition_key},
            )
        except StoreError as e:
            if e.code == CONDITIONAL_CHECK_FAILED:
                raise ConflictError(
                    f'{self.table_base_name} record already exists: {self.key_of(item)}'
                ) from e
            raise
        return item

    def save(self, item: Dict[str, Any]) -> Dict[str, Any]:
        """Unconditional upsert. Last writer wins, nothing is merged."""
        self._call('PutItem', self.table.put_item, Item=to_dynamo(item))
        return item

    def find_by_id(self, partition_value, sort_value=None) -> Optional[Dict[str, Any]]:
        """Point lookup. Returns None on a miss."""
        response = self._call(
            'GetItem',
            self.table.get_item,
            Key=self.build_key(partition_value, sort_value),
        )
        item = response.get('Item')
        return from_dynamo(item) if item else None

    def update(
        self,
        partition_value,
        fields: Dict[str, Any],
        sort_value=None,
        expected: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        SET each field by expression and stamp updatedAt.

        Returns the full record after the update. Raises NotFoundError if
        the key does not exist; never creates. With expected, each
        attribute must currently equal the given value or ConflictError
        is raised.
        """
        key = self.build_key(partition_value, sort_value)
        names = {'#pk': self.partition_key, '#updatedAt': 'updatedAt'}
        values = {':updatedAt': utc_now_iso()}
        assignments = []

        for i, (name, value) in enumerate(fields.items()):
            if name in key:
                raise ValidationError(f'Key attribute {name} cannot be updated', field=name)
            if name == 'updatedAt':
                continue
            names[f'#field{i}'] = name
            values[f':value{i}'] = to_dynamo(value)
            assignments.append(f'#field{i} = :value{i}')
        assignments.append('#updatedAt = :updatedAt')

        condition = 'attribute_exists(#pk)'
        for j, (name, value) in enumerate((expected or {}).items()):
            names[f'#expected{j}'] = name
            values[f':expected{j}'] = to_dynamo(value)
            condition += f' AND #expected{j} = :expected{j}'

        try:
            response = self._call(
                'UpdateItem',
                self.table.update_item,
                Key=key,
                UpdateExpression='SET ' + ', '.join(assignments),
                ConditionExpression=condition,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues='ALL_NEW',
            )
        except StoreError as e:
            if e.code != CONDITIONAL_CHECK_FAILED:
                raise
            if expected and self.find_by_id(partition_value, sort_value) is not None:
                raise ConflictError(
                    f'{self.table_base_name} record {key} changed since it was read'
                ) from e
            raise NotFoundError(f'{self.table_base_name} record not found: {key}') from e

        return from_dynamo(response.get('Attributes', {}))

    def delete(self, partition_value, sort_value=None) -> None:
        """Idempotent delete; absent keys are not an error."""
        self._call(
            'DeleteItem',
            self.table.delete_item,
            Key=self.build_key(partition_value, sort_value),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _sort_condition(self, name, operator, value):
        method = SORT_KEY_CONDITIONS.get(operator)
        if method is None:
            raise ValidationError(f'Unsupported sort key condition: {operator}', field='sortKeyCondition')
        if method == 'between':
            low, high = value
            return Key(name).between(low, high)
        return getattr(Key(name), method)(value)

    def query_by_partition_key(
        self,
        value,
        sort_key_condition: Optional[str] = None,
        sort_key_value=None,
        index_name: Optional[str] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        descending: bool = False,
    ) -> QueryPage:
        """
        Query one partition of the table or of a secondary index.

        Index key names are resolved through index_keys; an unknown index
        raises IndexResolutionError.
        """
        if index_name:
            partition_name = self.get_index_partition_key_name(index_name)
            sort_name = self.get_index_sort_key_name(index_name)
        else:
            partition_name, sort_name = self.partition_key, self.sort_key

        condition = Key(partition_name).eq(value)
        if sort_key_condition:
            if not sort_name:
                raise IndexResolutionError(
                    f'{index_name or self.table_base_name} has no sort key to filter on'
                )
            condition = condition & self._sort_condition(sort_name, sort_key_condition, sort_key_value)

        params = {
            'KeyConditionExpression': condition,
            'ScanIndexForward': not descending,
        }
        if index_name:
            params['IndexName'] = index_name
        if limit:
            params['Limit'] = limit
        start_key = decode_cursor(cursor)
        if start_key:
            params['ExclusiveStartKey'] = start_key

        response = self._call('Query', self.table.query, **params)
        return QueryPage(
            items=[from_dynamo(item) for item in response.get('Items', [])],
            cursor=encode_cursor(response.get('LastEvaluatedKey')),
        )

    def query_all(self, value, **options) -> List[Dict[str, Any]]:
        """Follow cursors until the partition is exhausted."""
        items = []
        cursor = None
        while True:
            page = self.query_by_partition_key(value, cursor=cursor, **options)
            items.extend(page.items)
            cursor = page.cursor
            if not cursor:
                return items

    def scan_all(self, limit: Optional[int] = None, cursor: Optional[str] = None, filter_expression=None) -> QueryPage:
        """
        Full table scan, one page at a time.

        Cost grows with table size, not result size. Maintenance paths only;
        never call this while serving a request.
        """
        params = {}
        if limit:
            params['Limit'] = limit
        start_key = decode_cursor(cursor)
        if start_key:
            params['ExclusiveStartKey'] = start_key
        if filter_expression is not None:
            params['FilterExpression'] = filter_expression

        response = self._call('Scan', self.table.scan, **params)
        return QueryPage(
            items=[from_dynamo(item) for item in response.get('Items', [])],
            cursor=encode_cursor(response.get('LastEvaluatedKey')),
        )

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def batch_write(
        self,
        puts: Optional[List[Dict[str, Any]]] = None,
        deletes: Optional[List[Dict[str, Any]]] = None,
    ) -> BatchWriteResult:
        """
        Write puts and deletes in chunks of BATCH_WRITE_LIMIT, one call per chunk.

        Not atomic across chunks: if chunk N fails, chunks before N stay
        committed and PartialBatchError reports how many items got in.
        Items the store hands back as UnprocessedItems are reported in the
        result, not retried.
        """
        requests = [{'PutRequest': {'Item': to_dynamo(item)}} for item in puts or []]
        requests += [{'DeleteRequest': {'Key': to_dynamo(key)}} for key in deletes or []]

        written = 0
        chunk_count = 0
        unprocessed = []
        chunks = list(chunked(requests, self.BATCH_WRITE_LIMIT))

        for index, chunk in enumerate(chunks):
            try:
                response = self._call(
                    'BatchWriteItem',
                    self.resource.batch_write_item,
                    RequestItems={self.table_name: chunk},
                )
            except StoreError as e:
                metrics.dynamodb_batch_chunks_total.labels(operation='BatchWriteItem', result='error').inc()
                log_batch_partial_failure(
                    self.table_name, 'BatchWriteItem', written, chunk_count, index, code=e.code
                )
                raise PartialBatchError(
                    f'Batch write to {self.table_name} failed at chunk {index + 1}/{len(chunks)} '
                    f'after {written} items were written',
                    committed_items=written,
                    committed_chunks=chunk_count,
                    failed_chunk=index,
                    unprocessed=[from_dynamo(r) for r in unprocessed],
                    cause=e,
                ) from e

            metrics.dynamodb_batch_chunks_total.labels(operation='BatchWriteItem', result='success').inc()
            leftover = response.get('UnprocessedItems', {}).get(self.table_name, [])
            unprocessed.extend(leftover)
            written += len(chunk) - len(leftover)
            chunk_count += 1

        return BatchWriteResult(
            written=written,
            chunks=chunk_count,
            unprocessed=[from_dynamo(r) for r in unprocessed],
        )

    def batch_get(self, keys: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Fetch keys in chunks of BATCH_GET_LIMIT.

        Keys that do not exist are simply absent from the result.
        """
        unique_keys = []
        seen = set()
        for key in keys:
            marker = tuple(sorted(key.items()))
            if marker not in seen:
                seen.add(marker)
                unique_keys.append(to_dynamo(key))

        found = []
        for index, chunk in enumerate(chunked(unique_keys, self.BATCH_GET_LIMIT)):
            pending = {self.table_name: {'Keys': chunk}}
            for _ in range(self.BATCH_GET_ROUNDS):
                response = self._call('BatchGetItem', self.resource.batch_get_item, RequestItems=pending)
                metrics.dynamodb_batch_chunks_total.labels(operation='BatchGetItem', result='success').inc()
                found.extend(from_dynamo(item) for item in response.get('Responses', {}).get(self.table_name, []))
                pending = response.get('UnprocessedKeys') or {}
                if not pending:
                    break
            if pending:
                leftover = pending.get(self.table_name, {}).get('Keys', [])
                log_batch_partial_failure(self.table_name, 'BatchGetItem', len(found), index, index)
                raise PartialBatchError(
                    f'Batch get from {self.table_name} left {len(leftover)} keys unprocessed',
                    committed_items=len(found),
                    committed_chunks=index,
                    failed_chunk=index,
                    unprocessed=[from_dynamo(k) for k in leftover],
                    cause=StoreError(
                        'Unprocessed keys after retries',
                        code='UnprocessedKeys',
                        operation='BatchGetItem',
                        retryable=True,
                    ),
                )
        return found
