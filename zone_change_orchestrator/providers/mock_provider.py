"""
Mock control plane for testing and demonstration.

This module provides an in-memory stand-in for the Edge DNS control plane.
It keeps live recordsets and changelists in memory, enforces one changelist
per zone, applies submissions atomically and replays scripted activation
status sequences.
"""

import copy
import logging
import re
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import dns.resolver

from ..errors import APIError, ConflictError, NotFound, ValidationError
from ..utils.validators import is_in_zone, sanitize_fqdn
from .base_provider import ControlPlaneTransport

logger = logging.getLogger(__name__)

_ROUTES = [
    ("GET", re.compile(r"^/config-dns/v2/changelists/(?P<zone>[^/]+)$"), "_get_changelist"),
    ("POST", re.compile(r"^/config-dns/v2/changelists$"), "_create_changelist"),
    ("DELETE", re.compile(r"^/config-dns/v2/changelists/(?P<zone>[^/]+)$"), "_discard_changelist"),
    ("POST", re.compile(r"^/config-dns/v2/changelists/(?P<zone>[^/]+)/recordsets/add-change$"), "_add_change"),
    ("GET", re.compile(r"^/config-dns/v2/changelists/(?P<zone>[^/]+)/recordsets$"), "_list_staged"),
    ("POST", re.compile(r"^/config-dns/v2/changelists/(?P<zone>[^/]+)/submit$"), "_submit"),
    ("GET", re.compile(r"^/config-dns/v2/zones/(?P<zone>[^/]+)/status$"), "_zone_status"),
    ("GET", re.compile(r"^/config-dns/v2/zones/(?P<zone>[^/]+)/recordsets$"), "_list_recordsets"),
    (
        "GET",
        re.compile(r"^/config-dns/v2/zones/(?P<zone>[^/]+)/names/(?P<name>[^/]+)/types/(?P<record_type>[^/]+)$"),
        "_get_recordset",
    ),
]

ACTIVE_STATUS = {"activationState": "ACTIVE", "propagationStatus": {"percentage": 100}}


class MockControlPlane(ControlPlaneTransport):
    """In-memory control plane for tests and demonstrations."""

    def __init__(self, config: Dict = None):
        config = config or {}
        self._lock = threading.RLock()
        self.zones: Dict[str, Dict[Tuple[str, str], Dict]] = {}
        self.changelists: Dict[str, Dict] = {}
        self.activation_scripts: Dict[str, List[Dict]] = {}
        self.zone_status: Dict[str, Dict] = {}
        self.submissions: List[Dict] = []
        self.requests: List[Tuple[str, str]] = []
        self.faults: List[Dict] = []
        self.total_servers = config.get("total_servers", 10)

        for zone, recordsets in (config.get("zones") or {}).items():
            self.add_zone(zone, recordsets or [])

        logger.info("Mock control plane initialized")

    # Test helpers

    def add_zone(self, zone: str, recordsets: Optional[List[Dict]] = None) -> None:
        with self._lock:
            zone = sanitize_fqdn(zone)
            self.zones[zone] = {}
            self.zone_status[zone] = dict(ACTIVE_STATUS)
            for recordset in recordsets or []:
                self._put_recordset(zone, recordset)

    def live_recordsets(self, zone: str) -> List[Dict]:
        with self._lock:
            return [copy.deepcopy(rs) for rs in self.zones[sanitize_fqdn(zone)].values()]

    def live_recordset(self, zone: str, name: str, record_type: str) -> Optional[Dict]:
        with self._lock:
            key = (sanitize_fqdn(name), record_type.upper())
            recordset = self.zones[sanitize_fqdn(zone)].get(key)
            return copy.deepcopy(recordset) if recordset else None

    def script_activation(self, zone: str, statuses: List[Dict]) -> None:
        """Status responses returned, in order, after the next submission.

        The last entry repeats once the script is exhausted.
        """
        with self._lock:
            self.activation_scripts[sanitize_fqdn(zone)] = [copy.deepcopy(s) for s in statuses]

    def inject_fault(
        self,
        method: str,
        path_fragment: str,
        error: APIError,
        times: int = 1,
        after_apply: bool = False,
    ) -> None:
        """Make matching requests raise ``error`` for the next ``times`` calls.

        With ``after_apply`` the request is processed before the error is
        raised, simulating a response lost after the server acted on it.
        """
        with self._lock:
            self.faults.append(
                {
                    "method": method.upper(),
                    "fragment": path_fragment,
                    "error": error,
                    "times": times,
                    "after_apply": after_apply,
                }
            )

    def count_requests(self, method: str, path_fragment: str) -> int:
        return sum(1 for m, p in self.requests if m == method.upper() and path_fragment in p)

    def resolver(self) -> "MockResolver":
        return MockResolver(self)

    # Transport

    def request(
        self,
        path: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        query_params: Optional[Dict[str, Any]] = None,
        body: Optional[Any] = None,
    ) -> Dict:
        method = method.upper()
        with self._lock:
            self.requests.append((method, path))
            fault = self._take_fault(method, path)
            if fault is not None and not fault["after_apply"]:
                raise fault["error"]

            for route_method, pattern, handler in _ROUTES:
                match = pattern.match(path)
                if route_method == method and match:
                    result = getattr(self, handler)(
                        body=body, query_params=query_params or {}, **match.groupdict()
                    )
                    break
            else:
                raise NotFound(f"No route for {method} {path}", status=404)

            if fault is not None:
                raise fault["error"]
            return result

    def _take_fault(self, method: str, path: str) -> Optional[Dict]:
        for fault in self.faults:
            if fault["method"] == method and fault["fragment"] in path and fault["times"] > 0:
                fault["times"] -= 1
                return fault
        return None

    # Handlers

    def _require_zone(self, zone: str) -> str:
        zone = sanitize_fqdn(zone)
        if zone not in self.zones:
            raise NotFound(f"Zone {zone} not found", status=404)
        return zone

    def _require_changelist(self, zone: str) -> Dict:
        changelist = self.changelists.get(sanitize_fqdn(zone))
        if changelist is None:
            raise NotFound(f"No changelist for zone {zone}", status=404)
        return changelist

    def _get_changelist(self, zone: str, **_) -> Dict:
        changelist = self._require_changelist(zone)
        return {k: v for k, v in changelist.items() if k != "changes"}

    def _create_changelist(self, query_params: Dict, **_) -> Dict:
        zone = self._require_zone(query_params.get("zone", ""))
        if zone in self.changelists:
            raise ConflictError(f"A changelist already exists for zone {zone}", status=409)
        now = datetime.now(timezone.utc).isoformat()
        self.changelists[zone] = {
            "zone": zone,
            "changeTag": uuid.uuid4().hex,
            "zoneVersionId": uuid.uuid4().hex,
            "stale": False,
            "lastModifiedDate": now,
            "changes": [],
        }
        logger.info(f"Mock: Created changelist for {zone}")
        return self._get_changelist(zone)

    def _discard_changelist(self, zone: str, **_) -> Dict:
        self._require_changelist(zone)
        del self.changelists[sanitize_fqdn(zone)]
        logger.info(f"Mock: Discarded changelist for {zone}")
        return {}

    def _add_change(self, zone: str, body: Dict, **_) -> Dict:
        changelist = self._require_changelist(zone)
        if not body or body.get("op") not in ("ADD", "EDIT", "DELETE"):
            raise ValidationError("Invalid change operation", status=400, body=body)
        if not is_in_zone(body.get("name", ""), zone):
            raise ValidationError(f"{body.get('name')} is not in zone {zone}", status=400)
        changelist["changes"].append(copy.deepcopy(body))
        changelist["changeTag"] = uuid.uuid4().hex
        return {}

    def _list_staged(self, zone: str, **_) -> Dict:
        changelist = self._require_changelist(zone)
        staged = {(sanitize_fqdn(rs["name"]), rs["type"]): rs for rs in self.live_recordsets(zone)}
        for change in changelist["changes"]:
            key = (sanitize_fqdn(change["name"]), change["type"])
            if change["op"] == "DELETE":
                staged.pop(key, None)
            else:
                staged[key] = {k: change[k] for k in ("name", "type", "ttl", "rdata")}
        return {"recordsets": list(staged.values())}

    def _submit(self, zone: str, body: Dict, **_) -> Dict:
        zone = sanitize_fqdn(zone)
        changelist = self._require_changelist(zone)
        body = body or {}

        errors = self._check_changes(zone, changelist["changes"])
        if body.get("validateOnly"):
            return {
                "requestId": uuid.uuid4().hex,
                "expiryDate": self._expiry(),
                "validationResult": {"errors": errors, "warnings": []},
            }
        if errors:
            raise ValidationError(
                f"Changelist for {zone} rejected: {errors[0]['message']}",
                status=400,
                body={"errors": errors},
            )

        for change in changelist["changes"]:
            key = (sanitize_fqdn(change["name"]), change["type"])
            if change["op"] == "DELETE":
                del self.zones[zone][key]
            else:
                self._put_recordset(zone, change)

        del self.changelists[zone]
        request_id = uuid.uuid4().hex
        self.submissions.append(
            {
                "zone": zone,
                "requestId": request_id,
                "comment": body.get("comment"),
                "changes": copy.deepcopy(changelist["changes"]),
            }
        )
        script = self.activation_scripts.pop(zone, None)
        self.zone_status[zone] = {"script": script or [dict(ACTIVE_STATUS)]}
        logger.info(f"Mock: Submitted changelist for {zone} ({request_id})")
        return {
            "requestId": request_id,
            "expiryDate": self._expiry(),
            "changeTag": changelist["changeTag"],
        }

    def _check_changes(self, zone: str, changes: List[Dict]) -> List[Dict]:
        existing = set(self.zones[zone])
        errors = []
        for change in changes:
            key = (sanitize_fqdn(change["name"]), change["type"])
            if change["op"] == "ADD" and key in existing:
                errors.append({"field": change["name"], "message": f"{key[1]} record already exists"})
            elif change["op"] in ("EDIT", "DELETE") and key not in existing:
                errors.append({"field": change["name"], "message": f"{key[1]} record does not exist"})
            elif change["op"] == "DELETE":
                existing.discard(key)
            else:
                existing.add(key)
        return errors

    def _zone_status(self, zone: str, **_) -> Dict:
        zone = self._require_zone(zone)
        state = self.zone_status[zone]
        if "script" in state:
            script = state["script"]
            status = script.pop(0) if len(script) > 1 else script[0]
        else:
            status = state
        response = {"zone": zone}
        response.update(copy.deepcopy(status))
        propagation = response.get("propagationStatus")
        if propagation is not None and "percentage" in propagation:
            propagation.setdefault("totalServers", self.total_servers)
            propagation.setdefault(
                "serversUpdated",
                int(self.total_servers * propagation["percentage"] / 100),
            )
        return response

    def _list_recordsets(self, zone: str, **_) -> Dict:
        zone = self._require_zone(zone)
        return {"recordsets": self.live_recordsets(zone)}

    def _get_recordset(self, zone: str, name: str, record_type: str, **_) -> Dict:
        zone = self._require_zone(zone)
        recordset = self.live_recordset(zone, name, record_type)
        if recordset is None:
            raise NotFound(f"No {record_type} record for {name}", status=404)
        return recordset

    def _put_recordset(self, zone: str, recordset: Dict) -> None:
        key = (sanitize_fqdn(recordset["name"]), recordset["type"].upper())
        self.zones[zone][key] = {
            "name": key[0],
            "type": key[1],
            "ttl": recordset.get("ttl", 300),
            "rdata": list(recordset.get("rdata", [])),
        }

    @staticmethod
    def _expiry() -> str:
        return (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()


class MockResolver:
    """Answers queries from a MockControlPlane's live recordsets."""

    def __init__(self, control_plane: MockControlPlane):
        self.control_plane = control_plane

    def resolve(self, qname, rdtype="A", *args, **kwargs) -> List[str]:
        name = sanitize_fqdn(str(qname))
        rdtype = str(rdtype).upper()
        with self.control_plane._lock:
            for zone, recordsets in self.control_plane.zones.items():
                if not is_in_zone(name, zone):
                    continue
                recordset = recordsets.get((name, rdtype))
                if recordset:
                    return list(recordset["rdata"])
                if any(key[0] == name for key in recordsets):
                    raise dns.resolver.NoAnswer()
        raise dns.resolver.NXDOMAIN()
