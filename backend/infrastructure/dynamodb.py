"""DynamoDB-backed reference data and project store."""
from __future__ import annotations

import asyncio
import json
from decimal import Decimal
from typing import Any, Callable, Mapping

import boto3
import structlog
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError

from backend.core.errors import NotFoundError
from backend.core.schema import Project, utcnow
from backend.domain import WorkItem

from .aws import boto_error_code, run_boto, translate_boto_error
from .reference_data import work_item_from_row

logger = structlog.get_logger(__name__)


def dynamodb_resource(region: str, endpoint_url: str | None = None) -> Any:
    kwargs: dict[str, Any] = {"region_name": region}
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url
    return boto3.resource("dynamodb", **kwargs)


def to_item(value: Any) -> Any:
    """JSON-normalise ``value`` with floats as :class:`Decimal` for DynamoDB."""

    return json.loads(json.dumps(value, default=str), parse_float=Decimal)


def _scan_pages(table: Any, **params: Any) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    while True:
        page = table.scan(**params)
        items.extend(page.get("Items") or [])
        last_key = page.get("LastEvaluatedKey")
        if not last_key:
            return items
        params["ExclusiveStartKey"] = last_key


class DynamoReferenceData:
    """Scans the estimates table; every scan follows ``LastEvaluatedKey`` to the end."""

    PROJECTION = "#id, #st, #c, #cat"
    NAMES = {"#id": "id", "#st": "state", "#c": "city", "#cat": "category"}

    def __init__(self, table_name: str, *, resource: Any) -> None:
        self._table = resource.Table(table_name)

    async def _scan(self, operation: str, filter_expression: Any | None = None) -> list[WorkItem]:
        params: dict[str, Any] = {
            "ProjectionExpression": self.PROJECTION,
            "ExpressionAttributeNames": dict(self.NAMES),
        }
        if filter_expression is not None:
            params["FilterExpression"] = filter_expression
        rows = await run_boto(_scan_pages, self._table, operation=operation, **params)
        return [work_item_from_row(row) for row in rows]

    async def scan_all(self) -> list[WorkItem]:
        return await self._scan("estimates.scan_all")

    async def scan_by_state(self, state: str) -> list[WorkItem]:
        return await self._scan("estimates.scan_by_state", Attr("state").eq(state))

    async def scan_by_state_city(self, state: str, city: str) -> list[WorkItem]:
        return await self._scan(
            "estimates.scan_by_state_city",
            Attr("state").eq(state) & Attr("city").eq(city),
        )


class DynamoProjectRepository:
    """Projects table keyed by ``id``; partial updates use a single SET expression."""

    def __init__(self, table_name: str, *, resource: Any) -> None:
        self._table = resource.Table(table_name)

    @staticmethod
    def _serialise_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
        names = set(fields)
        partial = Project.model_construct(**fields)
        dumped = partial.model_dump(mode="json", include=names, warnings=False)
        return to_item(dumped)

    async def _call(self, operation: str, fn: Callable[..., Any], **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, **kwargs)
        except ClientError as exc:
            if boto_error_code(exc) == "ConditionalCheckFailedException":
                raise NotFoundError(f"{operation}: project not found") from exc
            raise translate_boto_error(exc, operation) from exc
        except BotoCoreError as exc:
            raise translate_boto_error(exc, operation) from exc

    async def create(self, project: Project) -> Project:
        item = to_item(project.model_dump(mode="json"))
        await self._call("projects.create", self._table.put_item, Item=item)
        logger.info("project_persisted", project_id=project.id)
        return project

    async def get_all(self) -> list[Project]:
        rows = await run_boto(_scan_pages, self._table, operation="projects.get_all")
        projects = [Project.model_validate(row) for row in rows]
        projects.sort(key=lambda item: item.created_at)
        return projects

    async def get_by_id(self, project_id: str) -> Project | None:
        response = await self._call("projects.get_by_id", self._table.get_item, Key={"id": project_id})
        item = response.get("Item")
        return Project.model_validate(item) if item else None

    async def update(self, project_id: str, fields: Mapping[str, Any]) -> Project:
        values = {key: value for key, value in fields.items() if key != "id"}
        if "updated_at" not in values:
            values["updated_at"] = utcnow()
        serialised = self._serialise_fields(values)

        names: dict[str, str] = {"#pk": "id"}
        attribute_values: dict[str, Any] = {}
        assignments: list[str] = []
        for index, (key, value) in enumerate(serialised.items()):
            names[f"#f{index}"] = key
            attribute_values[f":v{index}"] = value
            assignments.append(f"#f{index} = :v{index}")

        response = await self._call(
            "projects.update",
            self._table.update_item,
            Key={"id": project_id},
            UpdateExpression="SET " + ", ".join(assignments),
            ConditionExpression="attribute_exists(#pk)",
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=attribute_values,
            ReturnValues="ALL_NEW",
        )
        return Project.model_validate(response["Attributes"])

    async def delete(self, project_id: str) -> bool:
        try:
            await self._call(
                "projects.delete",
                self._table.delete_item,
                Key={"id": project_id},
                ConditionExpression="attribute_exists(#pk)",
                ExpressionAttributeNames={"#pk": "id"},
            )
        except NotFoundError:
            return False
        return True
