"""
Declarative resources handled by the upgrade scenarios.

Each resource keeps the manifest it was built from (`body`) and renders it through `to_dict()`, overriding only the
fields the scenario owns: identity, requested size, data source, labels and claim binding.
"""

import copy
import logging
from dataclasses import dataclass, field, replace
from typing import ClassVar

from csi_utilities.constants import (
    DEFAULT_PVC_SIZE,
    POD_KIND,
    PVC_KIND,
    SNAPSHOT_API_GROUP,
    VOLUME_SNAPSHOT_KIND,
)
from csi_utilities.templates import load_template

LOGGER = logging.getLogger(__name__)

DEFAULT_WORKLOAD_IMAGE = "docker.io/library/nginx:latest"
DEFAULT_MOUNT_PATH = "/var/lib/www/html"
DEFAULT_VOLUME_NAME = "mypvc"


def snapshot_data_source(snapshot_name: str) -> dict:
    return {"name": snapshot_name, "kind": VOLUME_SNAPSHOT_KIND, "apiGroup": SNAPSHOT_API_GROUP}


def claim_data_source(claim_name: str) -> dict:
    return {"name": claim_name, "kind": PVC_KIND}


def default_workload_body(name: str, claim_name: str) -> dict:
    return {
        "apiVersion": "v1",
        "kind": POD_KIND,
        "metadata": {"name": name},
        "spec": {
            "containers": [
                {
                    "name": "web-server",
                    "image": DEFAULT_WORKLOAD_IMAGE,
                    "volumeMounts": [{"name": DEFAULT_VOLUME_NAME, "mountPath": DEFAULT_MOUNT_PATH}],
                }
            ],
            "volumes": [
                {
                    "name": DEFAULT_VOLUME_NAME,
                    "persistentVolumeClaim": {"claimName": claim_name, "readOnly": False},
                }
            ],
        },
    }


@dataclass(frozen=True)
class ScenarioContext:
    namespace: str
    label_selectors: tuple[str, ...]
    timeout: int


@dataclass(frozen=True)
class ChecksumRecord:
    workload: str
    file_path: str
    digest: str


@dataclass
class VolumeClaim:
    name: str
    namespace: str
    size: str = DEFAULT_PVC_SIZE
    data_source: dict | None = None
    body: dict = field(default_factory=dict)

    kind: ClassVar[str] = PVC_KIND

    @classmethod
    def from_template(
        cls, path: str, namespace: str, size: str | None = None, name: str | None = None
    ) -> "VolumeClaim":
        template = load_template(path=path, kind=PVC_KIND)
        spec = template.get("spec", {})
        return cls(
            name=name or template["metadata"]["name"],
            namespace=namespace,
            size=size or spec.get("resources", {}).get("requests", {}).get("storage", DEFAULT_PVC_SIZE),
            data_source=spec.get("dataSource"),
            body=template,
        )

    @classmethod
    def from_source(cls, source: "VolumeClaim", name: str, size: str, data_source: dict) -> "VolumeClaim":
        """New claim with the same storage class and access modes as `source`, populated from `data_source`."""
        return cls(name=name, namespace=source.namespace, size=size, data_source=data_source, body=source.body)

    def with_data_source(self, data_source: dict, name: str | None = None, size: str | None = None) -> "VolumeClaim":
        return replace(self, name=name or self.name, size=size or self.size, data_source=data_source)

    def to_dict(self) -> dict:
        body = copy.deepcopy(self.body)
        body.setdefault("apiVersion", "v1")
        body["kind"] = PVC_KIND
        body["metadata"] = {**body.get("metadata", {}), "name": self.name, "namespace": self.namespace}
        spec = body.setdefault("spec", {})
        spec.setdefault("accessModes", ["ReadWriteOnce"])
        spec.setdefault("resources", {}).setdefault("requests", {})["storage"] = self.size
        if self.data_source:
            spec["dataSource"] = copy.deepcopy(self.data_source)
        else:
            spec.pop("dataSource", None)
        return body

    def __str__(self):
        return f"{PVC_KIND} {self.namespace}/{self.name}"


@dataclass
class ConsumerWorkload:
    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)
    body: dict = field(default_factory=dict)

    kind: ClassVar[str] = POD_KIND

    @classmethod
    def from_template(
        cls, path: str, namespace: str, name: str | None = None, labels: dict[str, str] | None = None
    ) -> "ConsumerWorkload":
        template = load_template(path=path, kind=POD_KIND)
        return cls(
            name=name or template["metadata"]["name"],
            namespace=namespace,
            labels=labels if labels is not None else dict(template["metadata"].get("labels", {})),
            body=template,
        )

    @classmethod
    def for_claim(cls, name: str, namespace: str, claim_name: str, labels: dict[str, str]) -> "ConsumerWorkload":
        return cls(name=name, namespace=namespace, labels=labels, body=default_workload_body(name, claim_name))

    @property
    def claim_name(self) -> str | None:
        for volume in self.body.get("spec", {}).get("volumes", []):
            claim = volume.get("persistentVolumeClaim")
            if claim:
                return claim["claimName"]
        return None

    @property
    def mount_path(self) -> str:
        """Mount path of the claim volume in the first container that mounts it."""
        claim_volumes = {
            volume["name"]
            for volume in self.body.get("spec", {}).get("volumes", [])
            if volume.get("persistentVolumeClaim")
        }
        for container in self.body.get("spec", {}).get("containers", []):
            for volume_mount in container.get("volumeMounts", []):
                if volume_mount["name"] in claim_volumes:
                    return volume_mount["mountPath"]
        raise ValueError(f"{self} does not mount a volume claim")

    @property
    def label_selector(self) -> str:
        return ",".join(f"{key}={value}" for key, value in sorted(self.labels.items()))

    def bind_to(self, claim_name: str) -> "ConsumerWorkload":
        body = copy.deepcopy(self.body)
        volumes = body.setdefault("spec", {}).setdefault("volumes", [])
        claim_volumes = [volume for volume in volumes if volume.get("persistentVolumeClaim")]
        if not claim_volumes:
            raise ValueError(f"{self} has no volume claim to bind")
        claim_volumes[0]["persistentVolumeClaim"]["claimName"] = claim_name
        return replace(self, body=body)

    def derive(self, name: str, labels: dict[str, str], claim_name: str) -> "ConsumerWorkload":
        return replace(self, name=name, labels=labels).bind_to(claim_name=claim_name)

    def to_dict(self) -> dict:
        body = copy.deepcopy(self.body)
        body.setdefault("apiVersion", "v1")
        body["kind"] = POD_KIND
        body["metadata"] = {
            **body.get("metadata", {}),
            "name": self.name,
            "namespace": self.namespace,
            "labels": dict(self.labels),
        }
        return body

    def __str__(self):
        return f"{POD_KIND} {self.namespace}/{self.name}"


@dataclass
class Snapshot:
    name: str
    namespace: str
    source_claim: str
    snapshot_class: str | None = None
    body: dict = field(default_factory=dict)

    kind: ClassVar[str] = VOLUME_SNAPSHOT_KIND

    @classmethod
    def from_template(cls, path: str, namespace: str, name: str, source_claim: str) -> "Snapshot":
        template = load_template(path=path, kind=VOLUME_SNAPSHOT_KIND)
        return cls(
            name=name,
            namespace=namespace,
            source_claim=source_claim,
            snapshot_class=template.get("spec", {}).get("volumeSnapshotClassName"),
            body=template,
        )

    def to_dict(self) -> dict:
        body = copy.deepcopy(self.body)
        body.setdefault("apiVersion", f"{SNAPSHOT_API_GROUP}/v1")
        body["kind"] = VOLUME_SNAPSHOT_KIND
        body["metadata"] = {**body.get("metadata", {}), "name": self.name, "namespace": self.namespace}
        spec = body.setdefault("spec", {})
        spec["source"] = {"persistentVolumeClaimName": self.source_claim}
        if self.snapshot_class:
            spec["volumeSnapshotClassName"] = self.snapshot_class
        return body

    def __str__(self):
        return f"{VOLUME_SNAPSHOT_KIND} {self.namespace}/{self.name}"
