"""
ctp/inferred_parser.py
----------------------
Parser for the operator-authored configuration format, where the section of a
line is inferred from keywords instead of being declared:

    run 523897
    bcm bcm1 100 101 102
    bcd1m 1.2e6
    LTG its
    its_mode
    0x3 cl cluster_a its tpc
    0 cl_ph 1

Design notes
------------
- `step(level, line)` is pure: it infers the new level and describes the one
  effect the line has. It never touches a Configuration or the registry.
- `parse_inferred()` walks the text, applies effects (resolving detector
  names through the injected registry) and then runs `link_classes()`.
- Nothing in this dialect is fatal. Garbled numeric tokens are skipped,
  garbled CLUSTER/CLASS lines are dropped with the level left as it was
  before the line, unknown lines are logged.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

from .configuration import (
    GENERATORS, NBCS, NCLASSES,
    BCMask, Cluster, Configuration, DetectorParticipation, Generator, PendingClass, TrigClass,
)
from .detectors import INVALID_DET_ID, DetectorRegistry
from .errors import DuplicateNameError, LineIssue, ParseResult, RunNumberError
from .tokenizer import tokenize, to_uint, trim

log = logging.getLogger("ctp.parser.inferred")

_COMPACT_BC = re.compile(r"[LH]")


class Level(Enum):
    RUN = "run"
    MASKS = "masks"
    GENS = "gens"
    LTG = "ltg"
    LTGITEMS = "ltgitems"
    CLUSTER = "cluster"
    CLASS = "class"
    UNKNOWN = "unknown"


INITIAL_LEVEL = Level.MASKS


# ----------------------------- Effects -----------------------------
@dataclass
class Skip:
    reason: str = ""


@dataclass
class LineError:
    reason: str


@dataclass
class SetRunNumber:
    run_number: int


@dataclass
class AddBCMask:
    name: str
    bcs: List[int] = field(default_factory=list)
    compact: bool = False


@dataclass
class AddGenerator:
    name: str
    frequency: str


@dataclass
class AddDetector:
    det_name: str


@dataclass
class SetDetectorMode:
    mode: str


@dataclass
class AddCluster:
    hw_mask: int
    name: str
    det_names: List[str]


@dataclass
class AddPendingClass:
    index: int
    tokens: List[str]


Effect = Union[Skip, LineError, SetRunNumber, AddBCMask, AddGenerator, AddDetector,
               SetDetectorMode, AddCluster, AddPendingClass]


@dataclass
class Transition:
    level: Level
    effect: Effect


# ----------------------------- State machine -----------------------------
def infer_level(level: Level, line: str, tokens: List[str]) -> Level:
    """Keyword heuristics, checked in precedence order."""
    if "run" in line:
        return Level.RUN
    if tokens and tokens[0] in GENERATORS:
        return Level.GENS
    if "bcm" in line:
        return Level.MASKS
    if "LTG" in line:
        return Level.LTG
    if "cluster" in line:
        return Level.CLUSTER
    if level in (Level.LTGITEMS, Level.CLASS):
        # continuation line
        return level
    return Level.UNKNOWN


def step(level: Level, line: str) -> Transition:
    """Process one line given the level carried over from the previous one."""
    line = trim(line)
    if not line or line.startswith("#"):
        return Transition(level, Skip())
    tokens = tokenize(line)
    new_level = infer_level(level, line, tokens)

    if new_level is Level.RUN:
        if len(tokens) < 2:
            return Transition(new_level, LineError("run line without run number"))
        try:
            return Transition(new_level, SetRunNumber(to_uint(tokens[1], bits=32)))
        except ValueError:
            return Transition(new_level, LineError(f"bad run number {tokens[1]!r}"))

    if new_level is Level.MASKS:
        return Transition(new_level, _mask_effect(tokens))

    if new_level is Level.GENS:
        frequency = tokens[1] if len(tokens) > 1 else ""
        return Transition(new_level, AddGenerator(tokens[0], frequency))

    if new_level is Level.LTG:
        if len(tokens) < 2:
            return Transition(level, LineError("LTG line without detector name"))
        return Transition(Level.LTGITEMS, AddDetector(tokens[1].upper()))

    if new_level is Level.LTGITEMS:
        if len(tokens) == 1:
            return Transition(new_level, SetDetectorMode(tokens[0]))
        return Transition(new_level, Skip(f"LTG item ignored: {line}"))

    if new_level is Level.CLUSTER:
        try:
            hw_mask = to_uint(tokens[0])
        except ValueError:
            return Transition(level, LineError(f"cluster syntax error, bad hardware mask {tokens[0]!r}"))
        if len(tokens) < 3:
            return Transition(level, LineError("cluster syntax error, missing cluster name"))
        return Transition(Level.CLASS, AddCluster(hw_mask, tokens[2], [t.upper() for t in tokens[3:]]))

    if new_level is Level.CLASS:
        try:
            index = to_uint(tokens[0])
        except ValueError:
            return Transition(level, LineError(f"class syntax error, bad class index {tokens[0]!r}"))
        return Transition(new_level, AddPendingClass(index, tokens[1:]))

    return Transition(new_level, LineError(f"unknown line at level {level.value}"))


def _mask_effect(tokens: List[str]) -> Effect:
    if len(tokens) < 3:
        return LineError("BC mask line needs a name and at least one BC")
    effect = AddBCMask(name=tokens[1])
    if _COMPACT_BC.search(tokens[2]):
        # compact L/H notation is not decoded; the mask is kept empty
        effect.compact = True
        return effect
    for tok in tokens[2:]:
        try:
            bc = to_uint(tok, bits=32)
        except ValueError:
            log.info("mask syntax: %s", tok)
            continue
        if bc >= NBCS:
            log.info("BC %d out of range in mask %s", bc, effect.name)
            continue
        effect.bcs.append(bc)
    return effect


# ----------------------------- Loader -----------------------------
class InferredSectionParser:
    def __init__(self, registry: DetectorRegistry):
        self.registry = registry
        self.config = Configuration()
        self.level = INITIAL_LEVEL
        self.issues: List[LineIssue] = []

    def feed(self, line_no: int, line: str) -> None:
        before = self.level
        tr = step(self.level, line)
        self.level = tr.level
        log.debug("line %d level %s -> %s: %s", line_no, before.value, tr.level.value, line)
        try:
            self._apply(line_no, line, tr.effect)
        except (DuplicateNameError, RunNumberError) as e:
            self._issue(line_no, line, str(e))

    def _issue(self, line_no: int, line: str, reason: str) -> None:
        self.issues.append(LineIssue(line_no, trim(line), reason))
        log.warning("config_line_skipped", extra={"line_no": line_no, "line": trim(line), "reason": reason})

    def _apply(self, line_no: int, line: str, effect: Effect) -> None:
        cfg = self.config
        if isinstance(effect, Skip):
            if effect.reason:
                log.info("%s", effect.reason)
        elif isinstance(effect, LineError):
            if self.level is Level.UNKNOWN:
                log.error("unknown line: %s", trim(line))
            self._issue(line_no, line, effect.reason)
        elif isinstance(effect, SetRunNumber):
            cfg.set_run_number(effect.run_number)
        elif isinstance(effect, AddBCMask):
            bcmask = BCMask(effect.name)
            for bc in effect.bcs:
                bcmask.set_bc(bc)
            if effect.compact:
                log.warning("compact BC notation not decoded, mask %s left empty", effect.name)
            cfg.add_bc_mask(bcmask)
            log.info("BC mask added: %s", bcmask.name)
        elif isinstance(effect, AddGenerator):
            cfg.add_generator(Generator(effect.name, effect.frequency))
            log.info("Gen added: %s", trim(line))
        elif isinstance(effect, AddDetector):
            det = DetectorParticipation(name=effect.det_name)
            resolved = self.registry.resolve(effect.det_name)
            if resolved is None:
                log.warning("Unknown detector: %s", trim(line))
                det.det_id = INVALID_DET_ID
            else:
                det.det_id = resolved[0]
            cfg.add_detector(det)
        elif isinstance(effect, SetDetectorMode):
            if not cfg.detectors:
                self._issue(line_no, line, "LTG item without LTG line")
                return
            cfg.detectors[-1].mode = effect.mode
        elif isinstance(effect, AddCluster):
            cluster = Cluster(name=effect.name, hw_mask=effect.hw_mask)
            for det_name in effect.det_names:
                resolved = self.registry.resolve(det_name)
                if resolved is None:
                    log.warning("Unknown detector %s in cluster %s", det_name, effect.name)
                    continue
                cluster.det_mask |= resolved[1]
                cluster.det_names.append(det_name)
            cfg.add_cluster(cluster)
            log.info("Cluster done: %s", cluster.name)
        elif isinstance(effect, AddPendingClass):
            last_cluster = cfg.clusters[-1] if cfg.clusters else None
            cfg.pending_classes.append(PendingClass(effect.index, list(effect.tokens), last_cluster, line_no))


def link_classes(config: Configuration) -> List[TrigClass]:
    """
    Second pass: turn pending class lines into TrigClass objects.
    Unresolved descriptors/clusters become named placeholders.
    """
    linked: List[TrigClass] = []
    for pending in config.pending_classes:
        if pending.index >= NCLASSES:
            log.error("class index %d out of range (line %d)", pending.index, pending.line_no)
            continue
        name = pending.tokens[0] if pending.tokens else f"class{pending.index}"
        desc_name: Optional[str] = pending.tokens[1] if len(pending.tokens) > 1 else None
        descriptor = config.find_descriptor(desc_name) if desc_name else None
        if desc_name and descriptor is None:
            log.info("class %s: descriptor %s not defined, kept as placeholder", name, desc_name)
        cluster = pending.cluster
        if cluster is None:
            log.warning("class %s declared before any cluster", name)
        cls = TrigClass(
            name=name, class_mask=1 << pending.index,
            descriptor=descriptor, cluster=cluster,
            descriptor_name=desc_name, cluster_name=cluster.name if cluster else None,
        )
        try:
            config.add_class(cls)
        except DuplicateNameError as e:
            log.error("class dropped (line %d): %s", pending.line_no, e)
            continue
        linked.append(cls)
    config.pending_classes.clear()
    return linked


def parse_inferred(text: str, registry: DetectorRegistry) -> ParseResult:
    """Parse operator-authored text. Always succeeds; problems go to `issues`."""
    log.info("Loading CTP configuration (inferred sections).")
    parser = InferredSectionParser(registry)
    for line_no, line in enumerate(text.splitlines(), start=1):
        parser.feed(line_no, line)
    link_classes(parser.config)
    return ParseResult(ok=True, config=parser.config, issues=parser.issues)
