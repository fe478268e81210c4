"""
ctp/configuration.py
--------------------
In-memory model of one CTP configuration.

Responsibilities
----------------
- Hold the entities declared by a configuration text: BC masks, generators,
  inputs, descriptors, LTG detector records, clusters and trigger classes.
- Append-only mutation with name uniqueness where the format requires it.
- Small query helpers (mask aggregation, lookups, class enumeration).
- Human-readable dump and a JSON-ready dict for the object store.

Collections are tiny (tens of entries) so every lookup is a linear scan.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .detectors import INVALID_DET_ID
from .errors import DuplicateNameError, RunNumberError

NBCS = 3564  # bunch crossings per LHC orbit
NCLASSES = 64
ALL_ONES = 0xFFFF_FFFF_FFFF_FFFF  # returned for an unknown descriptor

GENERATORS = frozenset({"bcd1m", "bcd2m", "bcd10", "bcd20", "rnd1m", "rnd2m", "rnd10", "rnd20"})


# ----------------------------- Entities -----------------------------
@dataclass
class BCMask:
    name: str
    bits: int = 0

    def set_bc(self, bc: int) -> None:
        if not 0 <= bc < NBCS:
            raise ValueError(f"BC {bc} outside [0, {NBCS})")
        self.bits |= 1 << bc

    def is_set(self, bc: int) -> bool:
        return bool((self.bits >> bc) & 1)

    def selected(self) -> List[int]:
        return [bc for bc in range(NBCS) if (self.bits >> bc) & 1]


@dataclass
class Generator:
    name: str
    frequency: str = ""


@dataclass
class Input:
    name: str
    det_id: int
    level: str
    mask: int


@dataclass
class Descriptor:
    name: str
    inputs: List[Input] = field(default_factory=list)

    @property
    def inputs_mask(self) -> int:
        mask = 0
        for inp in self.inputs:
            mask |= inp.mask
        return mask


@dataclass
class DetectorParticipation:
    det_id: int = INVALID_DET_ID
    name: str = ""
    hb_accepted: bool = False
    mode: str = ""
    ferst: bool = False


@dataclass
class Cluster:
    name: str
    det_mask: int = 0
    hw_mask: int = 0
    det_names: List[str] = field(default_factory=list)


@dataclass
class TrigClass:
    name: str
    class_mask: int
    descriptor: Optional[Descriptor] = None
    cluster: Optional[Cluster] = None
    # names survive even when the reference is an unresolved placeholder
    descriptor_name: Optional[str] = None
    cluster_name: Optional[str] = None

    @property
    def index(self) -> int:
        return self.class_mask.bit_length() - 1


@dataclass
class PendingClass:
    """Class line seen by the inferred-dialect parser, awaiting the linking pass."""
    index: int
    tokens: List[str]
    cluster: Optional[Cluster]
    line_no: int = 0


# ----------------------------- Configuration -----------------------------
class Configuration:
    def __init__(self, name: str = "", version: str = ""):
        self.name = name
        self.version = version
        self.run_number: Optional[int] = None

        self.bc_masks: List[BCMask] = []
        self.generators: List[Generator] = []
        self.inputs: List[Input] = []
        self.descriptors: List[Descriptor] = []
        self.detectors: List[DetectorParticipation] = []
        self.clusters: List[Cluster] = []
        self.classes: List[TrigClass] = []
        self.pending_classes: List[PendingClass] = []

    # ---------- run number ----------
    def set_run_number(self, run_number: int) -> None:
        run_number = int(run_number)
        if self.run_number is not None and self.run_number != run_number:
            raise RunNumberError(
                f"configuration already belongs to run {self.run_number}, cannot stamp {run_number}"
            )
        self.run_number = run_number

    # ---------- appenders ----------
    def add_bc_mask(self, mask: BCMask) -> None:
        if self.is_bc_mask_in_config(mask.name):
            raise DuplicateNameError("BC mask", mask.name)
        self.bc_masks.append(mask)

    def add_generator(self, gen: Generator) -> None:
        if gen.name not in GENERATORS:
            raise ValueError(f"unknown generator {gen.name!r}, expected one of {sorted(GENERATORS)}")
        self.generators.append(gen)

    def add_input(self, inp: Input) -> None:
        if self.find_input(inp.name) is not None:
            raise DuplicateNameError("input", inp.name)
        self.inputs.append(inp)

    def add_descriptor(self, desc: Descriptor) -> None:
        if self.find_descriptor(desc.name) is not None:
            raise DuplicateNameError("descriptor", desc.name)
        self.descriptors.append(desc)

    def add_detector(self, det: DetectorParticipation) -> None:
        self.detectors.append(det)

    def add_cluster(self, cluster: Cluster) -> None:
        if self.find_cluster(cluster.name) is not None:
            raise DuplicateNameError("cluster", cluster.name)
        self.clusters.append(cluster)

    def add_class(self, cls: TrigClass) -> None:
        if not 0 <= cls.index < NCLASSES or cls.class_mask != (1 << cls.index):
            raise ValueError(f"class {cls.name!r}: mask {cls.class_mask:#x} is not a single bit below {NCLASSES}")
        for other in self.classes:
            if other.name == cls.name:
                raise DuplicateNameError("class", cls.name)
            if other.class_mask == cls.class_mask:
                raise DuplicateNameError("class index", str(cls.index))
        self.classes.append(cls)

    # ---------- lookups ----------
    def find_input(self, name: str) -> Optional[Input]:
        for inp in self.inputs:
            if inp.name == name:
                return inp
        return None

    def find_descriptor(self, name: str) -> Optional[Descriptor]:
        for desc in self.descriptors:
            if desc.name == name:
                return desc
        return None

    def find_cluster(self, name: str) -> Optional[Cluster]:
        for cluster in self.clusters:
            if cluster.name == name:
                return cluster
        return None

    def get_input_mask(self, name: str) -> int:
        inp = self.find_input(name)
        return inp.mask if inp is not None else 0

    def is_mask_in_inputs(self, mask: int) -> bool:
        return any(inp.mask == mask for inp in self.inputs)

    def is_bc_mask_in_config(self, name: str) -> bool:
        return any(bcm.name == name for bcm in self.bc_masks)

    def get_descriptor_inputs_mask(self, name: str) -> int:
        desc = self.find_descriptor(name)
        return desc.inputs_mask if desc is not None else ALL_ONES

    def get_det_to_inputs(self) -> Dict[int, List[Input]]:
        det2inp: Dict[int, List[Input]] = {}
        for inp in self.inputs:
            det2inp.setdefault(inp.det_id, []).append(inp)
        return det2inp

    def get_trigger_class_mask(self) -> int:
        clsmask = 0
        for cls in self.classes:
            clsmask |= cls.class_mask
        return clsmask

    def get_trigger_class_list(self) -> List[int]:
        clsmask = self.get_trigger_class_mask()
        return [i for i in range(NCLASSES) if (clsmask >> i) & 1]

    # ---------- output ----------
    def dump(self) -> str:
        out: List[str] = [f"Configuration:{self.name}", f" Version:{self.version}"]
        if self.run_number is not None:
            out.append(f" Run:{self.run_number}")
        out.append("CTP BC masks:")
        out += [f"CTP BC mask:{m.name} bcs:{len(m.selected())}" for m in self.bc_masks]
        out.append("CTP generators:")
        out += [f"CTP generator:{g.name} frequency:{g.frequency}" for g in self.generators]
        out.append("CTP inputs:")
        out += [
            f"CTP Input:{i.name} Detector:{i.det_id} Level:{i.level} Hardware mask:{i.mask:#x}"
            for i in self.inputs
        ]
        out.append("CTP descriptors:")
        out += [
            f"CTP Descriptor:{d.name} Definition:{' '.join(i.name for i in d.inputs)}"
            for d in self.descriptors
        ]
        out.append(f"CTP detectors:{len(self.detectors)}")
        out += [
            f"CTP Detector:{d.name or d.det_id} HBaccepted:{int(d.hb_accepted)} Mode:{d.mode} FErst:{int(d.ferst)}"
            for d in self.detectors
        ]
        out.append("CTP clusters:")
        out += [f"CTP Cluster:{c.name} {' '.join(c.det_names)} mask:{c.det_mask:#b}" for c in self.clusters]
        out.append("CTP classes:")
        out += [
            f"CTP Class:{c.name} index:{c.index} Descriptor:{c.descriptor_name} Cluster:{c.cluster_name}"
            for c in self.classes
        ]
        return "\n".join(out) + "\n"

    def __str__(self) -> str:
        return self.dump()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "run_number": self.run_number,
            "bc_masks": [{"name": m.name, "bcs": m.selected()} for m in self.bc_masks],
            "generators": [{"name": g.name, "frequency": g.frequency} for g in self.generators],
            "inputs": [
                {"name": i.name, "det_id": i.det_id, "level": i.level, "mask": i.mask}
                for i in self.inputs
            ],
            "descriptors": [
                {"name": d.name, "inputs": [i.name for i in d.inputs], "inputs_mask": d.inputs_mask}
                for d in self.descriptors
            ],
            "detectors": [
                {"det_id": d.det_id, "name": d.name, "hb_accepted": d.hb_accepted,
                 "mode": d.mode, "ferst": d.ferst}
                for d in self.detectors
            ],
            "clusters": [
                {"name": c.name, "det_mask": c.det_mask, "hw_mask": c.hw_mask, "detectors": list(c.det_names)}
                for c in self.clusters
            ],
            "classes": [
                {"name": c.name, "index": c.index, "descriptor": c.descriptor_name, "cluster": c.cluster_name}
                for c in self.classes
            ],
        }
