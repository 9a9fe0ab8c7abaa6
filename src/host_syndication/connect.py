"""Streaming connector management via the Kafka Connect REST API."""

from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from .config import DatabaseConfig, SyndicationSettings
from .exceptions import ConnectorError, ConnectorUnavailableError
from .models import Pipeline, PipelineId
from .naming import connector_name, connector_prefix, connector_target

logger = logging.getLogger(__name__)


@dataclass
class Connector:
    """A CDC connector feeding one replica table."""
    name: str
    target_table: str
    state: Optional[str] = None


class ConnectorManager(ABC):
    """Connector management contract used by the lifecycle controller."""

    @abstractmethod
    def create_connector(self, pipeline: Pipeline, target_table: str) -> bool:
        """Create the connector feeding ``target_table``.

        Returns:
            True if created, False if it already existed
        """
        pass

    @abstractmethod
    def delete_connector(self, pipeline_id: PipelineId, target_table: Optional[str] = None) -> int:
        """Delete the pipeline's connector for ``target_table``, or all of them.

        Returns:
            Number of connectors deleted; missing connectors are not an error
        """
        pass

    @abstractmethod
    def list_connectors(self, namespace: str, app_name: str) -> List[Connector]:
        pass


def build_sink_connector_config(
    pipeline: Pipeline,
    target_table: str,
    settings: SyndicationSettings,
    app_db: Optional[DatabaseConfig] = None,
) -> Dict[str, str]:
    """Builds the JDBC sink connector configuration for a replica table."""
    app_db = app_db or settings.app_db
    config = {
        "connector.class": "io.confluent.connect.jdbc.JdbcSinkConnector",
        "tasks.max": str(settings.connect_tasks_max),
        "topics": settings.connect_topic,
        "key.converter": "org.apache.kafka.connect.storage.StringConverter",
        "value.converter": "org.apache.kafka.connect.json.JsonConverter",
        "value.converter.schemas.enable": "false",
        "connection.url": app_db.jdbc_url(),
        "connection.user": app_db.user,
        "connection.password": app_db.password or "",
        "dialect.name": "PostgreSqlDatabaseDialect",
        "table.name.format": f"{settings.db_schema}.{target_table}",
        "auto.create": "false",
        "auto.evolve": "false",
        "insert.mode": "upsert",
        "delete.enabled": "true",
        "pk.mode": "record_key",
        "pk.fields": "id",
        "batch.size": str(settings.connect_batch_size),
        "errors.tolerance": "all",
        "errors.log.enable": "true",
        "transforms": "deleteToTombstone,extractHost",
        "transforms.deleteToTombstone.type": "com.redhat.insights.kafka.connect.transforms.DropIf",
        "transforms.deleteToTombstone.if": "'delete'.equals(record.headers().lastWithName('event_type').value())",
        "transforms.extractHost.type": "org.apache.kafka.connect.transforms.ExtractField$Value",
        "transforms.extractHost.field": "host",
    }

    if pipeline.spec.insights_only:
        config["transforms"] += ",insightsFilter"
        config["transforms.insightsFilter.type"] = "com.redhat.insights.kafka.connect.transforms.Filter"
        config["transforms.insightsFilter.if"] = "!!record.value().canonical_facts.insights_id"

    return config


class KafkaConnectManager(ConnectorManager):
    """Manages sink connectors through the Kafka Connect REST API.

    Every request is bounded by ``settings.connect_timeout``. Timeouts,
    connection failures and 5xx responses raise ``ConnectorUnavailableError``.
    """

    def __init__(self, settings: SyndicationSettings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.base_url = settings.connect_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        logger.debug(f"method: {method}, url: {url}")
        try:
            response = self.session.request(
                method, url, timeout=self.settings.connect_timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise ConnectorUnavailableError(
                f"Request timeout after {self.settings.connect_timeout} seconds: {method} {url}") from e
        except requests.exceptions.RequestException as e:
            raise ConnectorUnavailableError(f"Connection error: {e}") from e

        if response.status_code >= 500:
            raise ConnectorUnavailableError(
                f"HTTP {response.status_code}: {self._error_message(response)}")
        return response

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text
        if isinstance(data, dict):
            return data.get("message", response.text)
        return response.text

    def create_connector(self, pipeline: Pipeline, target_table: str) -> bool:
        name = connector_name(pipeline.id, target_table)
        payload = {
            "name": name,
            "config": build_sink_connector_config(pipeline, target_table, self.settings),
        }
        response = self._request("POST", "/connectors", json=payload)

        if response.status_code == 409:
            logger.debug(f"Connector {name} already exists")
            return False
        if response.status_code not in (200, 201):
            raise ConnectorError(
                f"Failed to create connector {name}: HTTP {response.status_code}: {self._error_message(response)}")

        logger.info(f"Created connector {name} targeting {target_table}")
        return True

    def delete_connector(self, pipeline_id: PipelineId, target_table: Optional[str] = None) -> int:
        if target_table:
            names = [connector_name(pipeline_id, target_table)]
        else:
            names = [c.name for c in self.list_connectors(pipeline_id.namespace, pipeline_id.name)]

        deleted = 0
        for name in names:
            response = self._request("DELETE", f"/connectors/{quote(name, safe='')}")
            if response.status_code == 404:
                logger.debug(f"Connector {name} already gone")
                continue
            if response.status_code not in (200, 202, 204):
                raise ConnectorError(
                    f"Failed to delete connector {name}: HTTP {response.status_code}: {self._error_message(response)}")
            logger.info(f"Deleted connector {name}")
            deleted += 1
        return deleted

    def list_connectors(self, namespace: str, app_name: str) -> List[Connector]:
        response = self._request("GET", "/connectors", params={"expand": "status"})
        if response.status_code != 200:
            raise ConnectorError(
                f"Failed to list connectors: HTTP {response.status_code}: {self._error_message(response)}")

        data = response.json()
        # Older Kafka Connect versions ignore ?expand and return a list of names
        if isinstance(data, list):
            data = {name: {} for name in data}

        pipeline_id = PipelineId(namespace, app_name)
        prefix = connector_prefix(namespace, app_name)
        connectors = []
        for name, details in sorted(data.items()):
            if not name.startswith(prefix):
                continue
            target = connector_target(pipeline_id, name)
            if target is None:
                continue
            state = (details.get("status") or {}).get("connector", {}).get("state")
            connectors.append(Connector(name=name, target_table=target, state=state))
        return connectors
