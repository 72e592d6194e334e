"""Weighted choice of comet nodes for connecting clients."""

from __future__ import annotations

import logging
import math
import re
import threading
from dataclasses import dataclass, field
from typing import Iterable

from .model import META_ADDRS, META_CONN_COUNT, META_WEIGHT, Instance

logger = logging.getLogger(__name__)

MIN_WEIGHT = 1
MAX_WEIGHT = 1 << 20
MAX_NODES = 5

_INT = re.compile(r"[+-]?[0-9]+")


def _parse_int32(text: str) -> int:
    """Parse a base-10 integer that must fit in 32 bits."""
    if not _INT.fullmatch(text):
        raise ValueError(f"invalid integer {text!r}")
    number = int(text)
    if not -(1 << 31) <= number < (1 << 31):
        raise ValueError(f"integer {text!r} out of range")
    return number


@dataclass
class WeightedNode:
    """A comet node with its configured weight and its current load."""

    region: str = ""
    hostname: str = ""
    addrs: list[str] = field(default_factory=list)
    fixed_weight: int = 0
    current_weight: int = 0
    current_conns: int = 0
    updated: int = 0

    def __str__(self) -> str:
        return (
            f"region:{self.region} fixedWeight:{self.fixed_weight}, "
            f"currentWeight:{self.current_weight}, currentConns:{self.current_conns}"
        )

    def chosen(self) -> None:
        """Count one more connection sent to this node."""
        self.current_conns += 1

    def reset(self) -> None:
        self.current_weight = 0

    def calculate_weight(self, total_weight: int, total_conns: int, gain_weight: float) -> None:
        """Set the current weight from the node's share of weight versus its share of connections."""
        fixed_weight = float(self.fixed_weight) * gain_weight
        total_weight += int(fixed_weight) - self.fixed_weight
        if total_conns <= 0:
            self.reset()
            return
        weight_ratio = fixed_weight / float(total_weight) if total_weight != 0 else 0.0
        conn_ratio = float(self.current_conns) / float(total_conns) * 0.5
        diff = weight_ratio - conn_ratio
        multiple = diff * float(total_conns)
        floor = math.floor(multiple)
        if floor - multiple >= -0.5:
            self.current_weight = int(fixed_weight + floor)
        else:
            self.current_weight = int(fixed_weight + math.ceil(multiple))
        if diff < 0:
            self.current_weight = max(self.current_weight, MIN_WEIGHT)
        else:
            self.current_weight = min(self.current_weight, MAX_WEIGHT)


class LoadBalancer:
    """Ranks comet nodes so new clients go where load is lowest relative to weight."""

    def __init__(self) -> None:
        self.nodes: dict[str, WeightedNode] = {}
        self.total_conns = 0
        self.total_weight = 0
        self._lock = threading.Lock()

    def size(self) -> int:
        return len(self.nodes)

    def _weighted_nodes(self, region: str, region_weight: float) -> list[WeightedNode]:
        nodes = []
        for node in self.nodes.values():
            gain = region_weight if node.region == region else 1.0
            node.calculate_weight(self.total_weight, self.total_conns, gain)
            nodes.append(node)
        nodes.sort(key=lambda n: n.current_weight, reverse=True)
        if nodes:
            nodes[0].chosen()
            self.total_conns += 1
        return nodes

    def node_addrs(self, region: str, domain: str, region_weight: float) -> tuple[list[str], list[str]]:
        """Return (domains, addresses) of the best nodes, best first, at most five nodes."""
        with self._lock:
            nodes = self._weighted_nodes(region, region_weight)
        domains: list[str] = []
        addrs: list[str] = []
        for node in nodes[:MAX_NODES]:
            domains.append(node.hostname + domain)
            addrs.extend(node.addrs)
        return domains, addrs

    def update(self, instances: Iterable[Instance]) -> None:
        """Replace the node set; ignored if it would drop to less than half the current size."""
        instances = list(instances)
        if not instances or (self.nodes and len(instances) / len(self.nodes) < 0.5):
            logger.error(
                "load balancer update src:%d target:%d less than half", len(self.nodes), len(instances)
            )
            return
        nodes: dict[str, WeightedNode] = {}
        total_conns = 0
        total_weight = 0
        with self._lock:
            for ins in instances:
                old = self.nodes.get(ins.hostname)
                if old is not None and old.updated == ins.last_ts:
                    nodes[ins.hostname] = old
                    total_conns += old.current_conns
                    total_weight += old.fixed_weight
                    continue
                meta = ins.metadata
                try:
                    weight = _parse_int32(meta.get(META_WEIGHT, ""))
                except ValueError as exc:
                    logger.error("instance(%s) weight error(%s)", ins, exc)
                    continue
                try:
                    conns = _parse_int32(meta.get(META_CONN_COUNT, ""))
                except ValueError as exc:
                    logger.error("instance(%s) conns error(%s)", ins, exc)
                    continue
                nodes[ins.hostname] = WeightedNode(
                    region=ins.region,
                    hostname=ins.hostname,
                    addrs=meta.get(META_ADDRS, "").split(","),
                    fixed_weight=weight,
                    current_conns=conns,
                    updated=ins.last_ts,
                )
                total_conns += conns
                total_weight += weight
            self.nodes = nodes
            self.total_conns = total_conns
            self.total_weight = total_weight