"""AWS adapters for the orchestration, metrics and log platforms.

boto3 clients are synchronous, so every call is pushed to a worker thread
with :func:`asyncio.to_thread` and botocore failures are translated into the
dashboard error taxonomy.
"""
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Sequence

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from backend.core.errors import DashboardError, NotFoundError, PlatformError, TransientInfraError
from backend.core.lifecycle import USER_STOP_REASON
from backend.domain import Container, MetricPoint, MetricSeries, RemoteLifecycle, RemoteTask, TaskUtilization

logger = structlog.get_logger(__name__)

TRANSIENT_ERROR_CODES = frozenset(
    {
        "InternalFailure",
        "InternalServerError",
        "ProvisionedThroughputExceededException",
        "RequestLimitExceeded",
        "RequestThrottled",
        "ServerException",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "Throttling",
        "ThrottlingException",
        "TooManyRequestsException",
    }
)
NETWORK_ERRORS = (ConnectionClosedError, ConnectTimeoutError, EndpointConnectionError, ReadTimeoutError)

QUERY_DATA_ENV = "QUERY_DATA"
DESCRIBE_BATCH = 100
METRIC_QUERIES_PER_CALL = 500


def boto_error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code") or "")


def translate_boto_error(exc: Exception, operation: str) -> DashboardError:
    """Classify a botocore failure as transient or permanent."""

    if isinstance(exc, NETWORK_ERRORS):
        return TransientInfraError(f"{operation}: {exc}", operation=operation)
    if isinstance(exc, ClientError):
        code = boto_error_code(exc)
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
        if code in TRANSIENT_ERROR_CODES or int(status) >= 500:
            return TransientInfraError(f"{operation}: {code or status}", operation=operation)
        message = exc.response.get("Error", {}).get("Message") or code
        return PlatformError(f"{operation}: {message}")
    return PlatformError(f"{operation}: {exc}")


async def run_boto(fn: Callable[..., Any], *args: Any, operation: str, **kwargs: Any) -> Any:
    try:
        return await asyncio.to_thread(fn, *args, **kwargs)
    except (ClientError, BotoCoreError) as exc:
        raise translate_boto_error(exc, operation) from exc


def _client(service: str, region: str, client: Any | None) -> Any:
    if client is not None:
        return client
    return boto3.client(service, region_name=region, config=Config(retries={"mode": "standard", "max_attempts": 1}))


def _chunks(items: Sequence[str], size: int) -> list[Sequence[str]]:
    return [items[index : index + size] for index in range(0, len(items), size)]


def task_from_ecs(raw: dict[str, Any]) -> RemoteTask:
    status = raw.get("lastStatus")
    # ECS reports start failures as STOPPED; surface them as FAILED
    if status == RemoteLifecycle.STOPPED.value and raw.get("stopCode") == "TaskFailedToStart":
        status = RemoteLifecycle.FAILED.value
    return RemoteTask(
        task_handle=raw["taskArn"],
        template_handle=raw.get("taskDefinitionArn"),
        lifecycle_status=status,
        desired_status=raw.get("desiredStatus"),
        created_at=raw.get("createdAt"),
        started_at=raw.get("startedAt"),
        stopped_at=raw.get("stoppedAt"),
        stopped_reason=raw.get("stoppedReason"),
        launch_type=raw.get("launchType"),
        group=raw.get("group"),
        containers=[
            Container(
                name=container.get("name", ""),
                last_status=container.get("lastStatus"),
                image=container.get("image"),
                cpu=int(container["cpu"]) if container.get("cpu") else None,
                memory=int(container["memory"]) if container.get("memory") else None,
            )
            for container in raw.get("containers") or []
        ],
    )


class EcsOrchestrationPlatform:
    """Runs scraping workers as Fargate tasks on one ECS cluster."""

    def __init__(
        self,
        *,
        cluster: str,
        task_family: str,
        container_name: str,
        container_image: str,
        subnets: Sequence[str],
        region: str,
        execution_role_arn: str | None = None,
        task_role_arn: str | None = None,
        log_group: str = "/ecs/scraping-module",
        log_stream_prefix: str = "ecs",
        cpu: int = 1024,
        memory: int = 3072,
        client: Any | None = None,
    ) -> None:
        self._client = _client("ecs", region, client)
        self._cluster = cluster
        self._family = task_family
        self._container = container_name
        self._image = container_image
        self._subnets = list(subnets)
        self._region = region
        self._execution_role = execution_role_arn
        self._task_role = task_role_arn
        self._log_group = log_group
        self._log_stream_prefix = log_stream_prefix
        self._cpu = cpu
        self._memory = memory
        self._template: str | None = None
        self._template_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _network_configuration(self) -> dict[str, Any]:
        return {
            "awsvpcConfiguration": {
                "subnets": self._subnets,
                "assignPublicIp": "ENABLED",
            }
        }

    def _task_definition(self) -> dict[str, Any]:
        definition: dict[str, Any] = {
            "family": self._family,
            "networkMode": "awsvpc",
            "requiresCompatibilities": ["FARGATE"],
            "cpu": str(self._cpu),
            "memory": str(self._memory),
            "containerDefinitions": [
                {
                    "name": self._container,
                    "image": self._image,
                    "cpu": self._cpu,
                    "memory": self._memory,
                    "essential": True,
                    "logConfiguration": {
                        "logDriver": "awslogs",
                        "options": {
                            "awslogs-group": self._log_group,
                            "awslogs-region": self._region,
                            "awslogs-stream-prefix": self._log_stream_prefix,
                        },
                    },
                }
            ],
        }
        if self._execution_role:
            definition["executionRoleArn"] = self._execution_role
        if self._task_role:
            definition["taskRoleArn"] = self._task_role
        return definition

    async def _run(self, template_handle: str, overrides: dict[str, Any]) -> RemoteTask:
        response = await run_boto(
            self._client.run_task,
            operation="ecs.run_task",
            cluster=self._cluster,
            taskDefinition=template_handle,
            launchType="FARGATE",
            count=1,
            networkConfiguration=self._network_configuration(),
            overrides=overrides,
        )
        tasks = response.get("tasks") or []
        if not tasks:
            failures = response.get("failures") or []
            reason = "; ".join(str(item.get("reason") or item) for item in failures) or "no task started"
            raise PlatformError(f"ecs.run_task: {reason}")
        return task_from_ecs(tasks[0])

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    async def ensure_template(self) -> str:
        if self._template:
            return self._template
        async with self._template_lock:
            if self._template:
                return self._template
            response = await run_boto(
                self._client.list_task_definitions,
                operation="ecs.list_task_definitions",
                familyPrefix=self._family,
                sort="DESC",
                maxResults=1,
            )
            arns = response.get("taskDefinitionArns") or []
            if arns:
                self._template = arns[0]
            else:
                registered = await run_boto(
                    self._client.register_task_definition,
                    operation="ecs.register_task_definition",
                    **self._task_definition(),
                )
                self._template = registered["taskDefinition"]["taskDefinitionArn"]
                logger.info("task_definition_registered", template=self._template)
            return self._template

    async def launch(self, template_handle: str, payload: Sequence[int]) -> RemoteTask:
        overrides = {
            "containerOverrides": [
                {
                    "name": self._container,
                    "environment": [{"name": QUERY_DATA_ENV, "value": json.dumps(list(payload))}],
                }
            ]
        }
        return await self._run(template_handle, overrides)

    async def stop(self, task_handle: str, reason: str = USER_STOP_REASON) -> None:
        await run_boto(
            self._client.stop_task,
            operation="ecs.stop_task",
            cluster=self._cluster,
            task=task_handle,
            reason=reason,
        )
        logger.info("task_stopped", task=task_handle)

    async def describe(self, task_handles: Sequence[str]) -> list[RemoteTask]:
        described: list[RemoteTask] = []
        for chunk in _chunks(list(task_handles), DESCRIBE_BATCH):
            response = await run_boto(
                self._client.describe_tasks,
                operation="ecs.describe_tasks",
                cluster=self._cluster,
                tasks=list(chunk),
            )
            described.extend(task_from_ecs(raw) for raw in response.get("tasks") or [])
        return described

    async def list_handles(self, desired_status: str) -> list[str]:
        def _collect() -> list[str]:
            paginator = self._client.get_paginator("list_tasks")
            arns: list[str] = []
            for page in paginator.paginate(cluster=self._cluster, desiredStatus=desired_status):
                arns.extend(page.get("taskArns") or [])
            return arns

        return await run_boto(_collect, operation="ecs.list_tasks")

    async def relaunch(self, task_handle: str) -> RemoteTask:
        """Start a new task with the same definition and overrides as ``task_handle``."""

        response = await run_boto(
            self._client.describe_tasks,
            operation="ecs.describe_tasks",
            cluster=self._cluster,
            tasks=[task_handle],
        )
        tasks = response.get("tasks") or []
        if not tasks:
            raise NotFoundError(f"task {task_handle} not found")
        original = tasks[0]
        return await self._run(original["taskDefinitionArn"], original.get("overrides") or {})


class CloudWatchMetricsPlatform:
    """CPU and memory utilization per task from the AWS/ECS namespace."""

    def __init__(self, *, cluster: str, service: str, region: str, client: Any | None = None) -> None:
        self._client = _client("cloudwatch", region, client)
        self._cluster = cluster
        self._service = service

    def _query(self, query_id: str, metric: str, task_id: str) -> dict[str, Any]:
        return {
            "Id": query_id,
            "MetricStat": {
                "Metric": {
                    "Namespace": "AWS/ECS",
                    "MetricName": metric,
                    "Dimensions": [
                        {"Name": "ClusterName", "Value": self._cluster},
                        {"Name": "ServiceName", "Value": self._service},
                        {"Name": "TaskId", "Value": task_id},
                    ],
                },
                "Period": 60,
                "Stat": "Average",
            },
            "ReturnData": True,
        }

    @staticmethod
    def _series(result: dict[str, Any] | None) -> MetricSeries:
        if not result:
            return MetricSeries()
        values = [float(value) for value in result.get("Values") or []]
        stamps = result.get("Timestamps") or []
        history = [MetricPoint(value=value, timestamp=stamp) for value, stamp in zip(values, stamps)]
        return MetricSeries(current=values[0] if values else 0.0, history=history)

    async def query_utilization(
        self,
        task_handles: Sequence[str],
        start_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> dict[str, TaskUtilization]:
        end_time = end_time or datetime.now(timezone.utc)
        start_time = start_time or end_time - timedelta(hours=1)
        handles = list(dict.fromkeys(task_handles))

        queries: list[dict[str, Any]] = []
        index_to_handle: dict[int, str] = {}
        for index, handle in enumerate(handles):
            task_id = handle.rsplit("/", 1)[-1]
            index_to_handle[index] = handle
            queries.append(self._query(f"cpu_{index}", "CPUUtilization", task_id))
            queries.append(self._query(f"memory_{index}", "MemoryUtilization", task_id))

        results: dict[str, dict[str, Any]] = {}
        for start in range(0, len(queries), METRIC_QUERIES_PER_CALL):
            batch = queries[start : start + METRIC_QUERIES_PER_CALL]

            def _collect(batch: list[dict[str, Any]] = batch) -> list[dict[str, Any]]:
                collected: list[dict[str, Any]] = []
                kwargs: dict[str, Any] = {
                    "MetricDataQueries": batch,
                    "StartTime": start_time,
                    "EndTime": end_time,
                    "ScanBy": "TimestampDescending",
                }
                while True:
                    page = self._client.get_metric_data(**kwargs)
                    collected.extend(page.get("MetricDataResults") or [])
                    token = page.get("NextToken")
                    if not token:
                        return collected
                    kwargs["NextToken"] = token

            for result in await run_boto(_collect, operation="cloudwatch.get_metric_data"):
                query_id = result.get("Id")
                if not query_id:
                    continue
                merged = results.setdefault(query_id, {"Values": [], "Timestamps": []})
                merged["Values"].extend(result.get("Values") or [])
                merged["Timestamps"].extend(result.get("Timestamps") or [])

        return {
            handle: TaskUtilization(
                cpu=self._series(results.get(f"cpu_{index}")),
                memory=self._series(results.get(f"memory_{index}")),
            )
            for index, handle in index_to_handle.items()
        }


class CloudWatchLogPlatform:
    """Reads worker output from the awslogs stream of each task."""

    def __init__(
        self,
        *,
        log_group: str,
        stream_prefix: str,
        container_name: str,
        region: str,
        client: Any | None = None,
    ) -> None:
        self._client = _client("logs", region, client)
        self._group = log_group
        self._prefix = stream_prefix
        self._container = container_name

    def stream_name(self, task_handle: str) -> str:
        return f"{self._prefix}/{self._container}/{task_handle.rsplit('/', 1)[-1]}"

    async def fetch_logs(
        self,
        task_handle: str,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> list[str]:
        kwargs: dict[str, Any] = {
            "logGroupName": self._group,
            "logStreamName": self.stream_name(task_handle),
            "startFromHead": True,
        }
        if start_time is not None:
            kwargs["startTime"] = int(start_time.timestamp() * 1000)
        if end_time is not None:
            kwargs["endTime"] = int(end_time.timestamp() * 1000)

        def _collect() -> list[str]:
            lines: list[str] = []
            previous: str | None = None
            while True:
                page = self._client.get_log_events(**kwargs)
                lines.extend(str(event.get("message", "")) for event in page.get("events") or [])
                token = page.get("nextForwardToken")
                if not token or token == previous:
                    return lines
                previous = token
                kwargs["nextToken"] = token

        try:
            return await asyncio.to_thread(_collect)
        except ClientError as exc:
            if boto_error_code(exc) == "ResourceNotFoundException":
                return []
            raise translate_boto_error(exc, "logs.get_log_events") from exc
        except BotoCoreError as exc:
            raise translate_boto_error(exc, "logs.get_log_events") from exc


__all__ = [
    "CloudWatchLogPlatform",
    "CloudWatchMetricsPlatform",
    "EcsOrchestrationPlatform",
    "run_boto",
    "task_from_ecs",
    "translate_boto_error",
]
