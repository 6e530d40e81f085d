"""HTTP API of the log parser: submit archives and query parsed topology."""

from __future__ import annotations

import json
import logging
import os
import re
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol

from flask import Flask, Response, g, request
from werkzeug.exceptions import HTTPException

from .archive import InputNotFoundError, InputNotZipError

API_TITLE = "Log Parser API"
API_VERSION = "1.0"

_log = logging.getLogger(__name__)

_INT = re.compile(r"[+-]?[0-9]+")
_INT64_MIN, _INT64_MAX = -(2**63), 2**63 - 1
_UUID_CANONICAL = re.compile(
    r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
)
_UUID_HEX = re.compile(r"[0-9a-fA-F]{32}")
_ZERO_UUID = str(uuid.UUID(int=0))
_ZERO_TIME = "0001-01-01T00:00:00Z"


class PathOutsideDataDirError(ValueError):
    """The requested path resolves outside of the data directory."""

    def __init__(self, message: str = "path is outside of data directory") -> None:
        super().__init__(message)


class HealthChecker(Protocol):
    def ping(self) -> None: ...


class ParseSubmitter(Protocol):
    def submit(self, path: str) -> uuid.UUID: ...


class Queries(Protocol):
    def get_log_meta(self, log_id: uuid.UUID) -> Any: ...

    def get_topology(self, log_id: uuid.UUID) -> Any: ...

    def get_node_details(self, node_id: int) -> Any: ...

    def list_ports_for_node(self, node_id: int) -> List[Any]: ...


@dataclass
class Dependencies:
    """Everything the HTTP layer needs."""

    parse_service: ParseSubmitter
    query_service: Queries
    pool: HealthChecker
    logger: Optional[logging.Logger] = None
    data_dir: str = "./data"


def resolve_data_path(data_dir: str, requested: str) -> str:
    """Return the absolute path of requested, which must lie inside data_dir."""
    cleaned_dir = os.path.abspath(data_dir)
    candidate = requested if os.path.isabs(requested) else os.path.join(cleaned_dir, requested)
    cleaned = os.path.abspath(candidate)
    try:
        rel = os.path.relpath(cleaned, cleaned_dir)
    except ValueError as err:
        raise PathOutsideDataDirError() from err
    if rel.startswith(".."):
        raise PathOutsideDataDirError()
    return cleaned


def _json_response(status: int, body: Any) -> Response:
    return Response(
        json.dumps(body, ensure_ascii=False) + "\n",
        status=status,
        mimetype="application/json",
    )


def _error(status: int, message: str) -> Response:
    return _json_response(status, {"error": message})


def _omit_empty(body: Dict[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
    for key in keys:
        if body.get(key) in (None, "", {}):
            body.pop(key, None)
    return body


def _format_time(moment: Optional[datetime]) -> str:
    if moment is None:
        return _ZERO_TIME
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    text = moment.strftime("%Y-%m-%dT%H:%M:%S")
    if moment.microsecond:
        text += f".{moment.microsecond:06d}".rstrip("0")
    offset = moment.utcoffset()
    if not offset:
        return text + "Z"
    seconds = int(offset.total_seconds())
    sign = "+" if seconds >= 0 else "-"
    hours, minutes = divmod(abs(seconds) // 60, 60)
    return f"{text}{sign}{hours:02d}:{minutes:02d}"


def _uuid_text(value: Optional[uuid.UUID]) -> str:
    return _ZERO_UUID if value is None else str(value)


def _parse_uuid(text: str) -> uuid.UUID:
    body = text
    if len(body) == 45 and body[:9].lower() == "urn:uuid:":
        body = body[9:]
    elif len(body) == 38 and body[0] == "{" and body[-1] == "}":
        body = body[1:-1]
    if _UUID_CANONICAL.fullmatch(body) or _UUID_HEX.fullmatch(body):
        return uuid.UUID(body)
    raise ValueError(f"invalid UUID {text!r}")


def _parse_int64(text: str) -> int:
    if not _INT.fullmatch(text):
        raise ValueError(f"invalid integer {text!r}")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"integer out of range {text!r}")
    return value


def _decode_parse_request(data: bytes) -> str:
    text = data.decode("utf-8").lstrip(" \t\r\n")
    document, _ = json.JSONDecoder().raw_decode(text)
    if document is None:
        return ""
    if not isinstance(document, dict):
        raise ValueError("request body must be an object")
    if "path" in document:
        path = document["path"]
    else:
        path = next((v for k, v in document.items() if k.lower() == "path"), None)
    if path is None:
        return ""
    if not isinstance(path, str):
        raise ValueError("path must be a string")
    return path


def _port_body(port: Any) -> Dict[str, Any]:
    body = {
        "id": port.id,
        "node_id": port.node_id,
        "port_num": port.num,
        "guid": port.guid,
        "state": port.state,
        "phy_state": port.phy_state,
        "link_speed_actv": port.link_speed_actv,
        "link_width_actv": port.link_width_actv,
        "lid": port.lid,
        "raw": port.raw,
    }
    return _omit_empty(body, ("guid", "raw"))


def _topology_body(topology: Any) -> Dict[str, Any]:
    nodes = [
        _omit_empty(
            {
                "id": node.id,
                "log_id": _uuid_text(node.log_id),
                "guid": node.guid,
                "type": str(node.type),
                "desc": node.desc,
            },
            ("desc",),
        )
        for node in topology.nodes or ()
    ]
    return {"nodes": nodes, "ports": [_port_body(p) for p in topology.ports or ()]}


def create_app(deps: Dependencies) -> Flask:
    """Build the WSGI application serving the API routes."""
    log = deps.logger or _log
    app = Flask(__name__)

    @app.before_request
    def _start_timer() -> None:
        g.request_start = time.monotonic()

    @app.after_request
    def _log_request(response: Response) -> Response:
        started = g.get("request_start", time.monotonic())
        log.info(
            "http request",
            extra={
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return response

    @app.errorhandler(Exception)
    def _recover(err: Exception) -> Any:
        if isinstance(err, HTTPException):
            return err
        log.error("panic recovered", extra={"err": str(err), "path": request.path})
        return _error(500, "internal server error")

    def health() -> Response:
        try:
            deps.pool.ping()
        except Exception as err:
            log.warning("health db ping failed", extra={"err": str(err)})
            return _json_response(503, {"status": "unhealthy"})
        return _json_response(200, {"status": "ok"})

    def parse() -> Response:
        try:
            path = _decode_parse_request(request.get_data())
        except ValueError:
            return _error(400, "invalid request body")
        if not path.strip():
            return _error(400, "path is required")
        try:
            resolved = resolve_data_path(deps.data_dir, path)
        except (ValueError, OSError) as err:
            return _error(400, str(err))
        try:
            log_id = deps.parse_service.submit(resolved)
        except InputNotFoundError:
            return _error(400, "input file not found")
        except InputNotZipError:
            return _error(400, "input is not a valid zip archive")
        except Exception as err:
            log.error("submit parse", extra={"err": str(err)})
            return _error(500, "internal server error")
        return _json_response(202, {"log_id": str(log_id)})

    def topology(log_id: str) -> Response:
        try:
            parsed = _parse_uuid(log_id)
        except ValueError:
            return _error(400, "invalid log_id")
        try:
            topo = deps.query_service.get_topology(parsed)
        except LookupError:
            return _error(404, "log not found")
        except Exception as err:
            log.error("get topology", extra={"err": str(err), "log_id": str(parsed)})
            return _error(500, "internal server error")
        return _json_response(200, _topology_body(topo))

    def node(node_id: str) -> Response:
        try:
            parsed = _parse_int64(node_id)
        except ValueError:
            return _error(400, "invalid node_id")
        try:
            details = deps.query_service.get_node_details(parsed)
        except LookupError:
            return _error(404, "node not found")
        except Exception as err:
            log.error("get node details", extra={"err": str(err), "node_id": parsed})
            return _error(500, "internal server error")
        body = {
            "id": details.id,
            "log_id": _uuid_text(details.log_id),
            "guid": details.guid,
            "type": str(details.type),
            "desc": details.desc,
            "system_image_guid": details.system_image_guid,
            "port_guid": details.port_guid,
            "switch_info": details.switch_info,
            "system_info": details.system_info,
            "sharp_info": details.sharp_info,
        }
        _omit_empty(
            body,
            ("desc", "system_image_guid", "port_guid", "switch_info", "system_info", "sharp_info"),
        )
        return _json_response(200, body)

    def node_ports(node_id: str) -> Response:
        try:
            parsed = _parse_int64(node_id)
        except ValueError:
            return _error(400, "invalid node_id")
        try:
            ports = deps.query_service.list_ports_for_node(parsed)
        except LookupError:
            return _error(404, "node not found")
        except Exception as err:
            log.error("list ports", extra={"err": str(err), "node_id": parsed})
            return _error(500, "internal server error")
        return _json_response(200, {"ports": [_port_body(p) for p in ports or ()]})

    def log_meta(log_id: str) -> Response:
        try:
            parsed = _parse_uuid(log_id)
        except ValueError:
            return _error(400, "invalid log_id")
        try:
            meta = deps.query_service.get_log_meta(parsed)
        except LookupError:
            return _error(404, "log not found")
        except Exception as err:
            log.error("get log meta", extra={"err": str(err), "log_id": str(parsed)})
            return _error(500, "internal server error")
        body = {
            "id": _uuid_text(meta.id),
            "status": meta.status,
            "uploaded_at": _format_time(meta.uploaded_at),
            "nodes_count": meta.nodes_count,
            "ports_count": meta.ports_count,
            "error": meta.error_message,
        }
        return _json_response(200, _omit_empty(body, ("error",)))

    app.add_url_rule("/health", "health", health, methods=["GET"])
    app.add_url_rule("/api/v1/parse", "parse", parse, methods=["POST"])
    app.add_url_rule("/api/v1/topology/<log_id>", "topology", topology, methods=["GET"])
    app.add_url_rule("/api/v1/node/<node_id>", "node", node, methods=["GET"])
    app.add_url_rule("/api/v1/port/<node_id>", "ports", node_ports, methods=["GET"])
    app.add_url_rule("/api/v1/log/<log_id>", "log_meta", log_meta, methods=["GET"])

    return app