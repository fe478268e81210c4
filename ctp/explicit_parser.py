"""
ctp/explicit_parser.py
----------------------
Parser for the explicit-section configuration format (machine generated):

    PARTITION: PHYSICS_1
    VERSION: 1
    INPUTS:
    MTVX FT0 M 0x1
    DESCRIPTORS:
    DMTVX MTVX
    CLUSTERS:
    CALL FT0 ITS
    CLASSES:
    CMTVX-B 1 DMTVX CALL

The format is expected to be well formed, so any structural violation aborts
the whole parse. Unknown detectors inside CLUSTERS are the one tolerated
problem (logged, bit left out of the mask).
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import List

from .configuration import NCLASSES, Cluster, Configuration, Descriptor, Input, TrigClass
from .detectors import DetectorRegistry
from .errors import ConfigSyntaxError, DuplicateNameError, ParseResult
from .tokenizer import tokenize, to_uint, trim

log = logging.getLogger("ctp.parser.explicit")


class Section(Enum):
    NONE = 0
    INPUTS = 1
    DESCRIPTORS = 3
    CLUSTERS = 4
    CLASSES = 7


SECTION_HEADERS = (
    ("INPUTS:", Section.INPUTS),
    ("DESCRIPTORS:", Section.DESCRIPTORS),
    ("CLUSTERS:", Section.CLUSTERS),
    ("CLASSES:", Section.CLASSES),
)


class ExplicitSectionParser:
    """Line-sequential parser; feed lines in order, then take `config`."""

    def __init__(self, registry: DetectorRegistry):
        self.registry = registry
        self.config = Configuration()
        self.section = Section.NONE

    def feed(self, line_no: int, raw_line: str) -> None:
        line = trim(raw_line)
        if not line or line.startswith("#"):
            return

        if self._consume_header(line):
            return

        tokens = tokenize(line)
        try:
            if self.section is Section.INPUTS:
                self._input_line(line_no, line, tokens)
            elif self.section is Section.DESCRIPTORS:
                self._descriptor_line(line_no, line, tokens)
            elif self.section is Section.CLUSTERS:
                self._cluster_line(line_no, line, tokens)
            elif self.section is Section.CLASSES:
                self._class_line(line_no, line, tokens)
            else:
                raise ConfigSyntaxError(line_no, line, "line outside any section")
        except DuplicateNameError as e:
            raise ConfigSyntaxError(line_no, line, str(e)) from e

    def _consume_header(self, line: str) -> bool:
        pos = line.find("PARTITION:")
        if pos != -1:
            self.config.name = trim(line[:pos] + line[pos + len("PARTITION:"):])
            return True
        pos = line.find("VERSION:")
        if pos != -1:
            self.config.version = trim(line[:pos] + line[pos + len("VERSION:"):])
            return True
        for header, section in SECTION_HEADERS:
            if header in line:
                self.section = section
                log.debug("section %s", section.name)
                return True
        return False

    # INPUTS: name det level mask
    def _input_line(self, line_no: int, line: str, tokens: List[str]) -> None:
        if len(tokens) != 4:
            raise ConfigSyntaxError(line_no, line, f"INPUTS: expected 4 items, got {len(tokens)}")
        name, det_name, level, mask_tok = tokens
        resolved = self.registry.resolve(det_name)
        if resolved is None:
            raise ConfigSyntaxError(line_no, line, f"INPUTS: unknown detector {det_name!r}")
        try:
            mask = to_uint(mask_tok)
        except ValueError as e:
            raise ConfigSyntaxError(line_no, line, f"INPUTS: bad mask {mask_tok!r}") from e
        self.config.add_input(Input(name=name, det_id=resolved[0], level=level, mask=mask))

    # DESCRIPTORS: name input1 input2 ...
    def _descriptor_line(self, line_no: int, line: str, tokens: List[str]) -> None:
        desc = Descriptor(name=tokens[0])
        for item in tokens[1:]:
            inp = self.config.find_input(item)
            if inp is None:
                raise ConfigSyntaxError(line_no, line, f"DESCRIPTORS: input not in INPUTS: {item!r}")
            desc.inputs.append(inp)
        self.config.add_descriptor(desc)

    # CLUSTERS: name det1 det2 ...
    def _cluster_line(self, line_no: int, line: str, tokens: List[str]) -> None:
        cluster = Cluster(name=tokens[0])
        for det_name in tokens[1:]:
            resolved = self.registry.resolve(det_name)
            if resolved is None:
                log.warning("cluster_unknown_detector",
                            extra={"line_no": line_no, "cluster": cluster.name, "detector": det_name})
                continue
            cluster.det_mask |= resolved[1]
            cluster.det_names.append(det_name)
        self.config.add_cluster(cluster)

    # CLASSES: name mask descriptor cluster
    def _class_line(self, line_no: int, line: str, tokens: List[str]) -> None:
        if len(tokens) != 4:
            raise ConfigSyntaxError(line_no, line, f"CLASSES: expected 4 items, got {len(tokens)}")
        name, mask_tok, desc_name, cluster_name = tokens
        try:
            mask = to_uint(mask_tok)
        except ValueError as e:
            raise ConfigSyntaxError(line_no, line, f"CLASSES: bad mask {mask_tok!r}") from e
        if mask == 0 or mask & (mask - 1) or mask >> NCLASSES:
            raise ConfigSyntaxError(line_no, line, f"CLASSES: mask {mask_tok!r} is not a single class bit")

        descriptor = self.config.find_descriptor(desc_name)
        if descriptor is None:
            raise ConfigSyntaxError(line_no, line, f"CLASSES: descriptor not found: {desc_name!r}")
        cluster = self.config.find_cluster(cluster_name)
        if cluster is None:
            raise ConfigSyntaxError(line_no, line, f"CLASSES: cluster not found: {cluster_name!r}")

        self.config.add_class(TrigClass(
            name=name, class_mask=mask,
            descriptor=descriptor, cluster=cluster,
            descriptor_name=desc_name, cluster_name=cluster_name,
        ))


def parse_explicit(text: str, registry: DetectorRegistry) -> ParseResult:
    """Parse explicit-section text. Fails on the first structural violation."""
    log.info("Loading CTP configuration (explicit sections).")
    parser = ExplicitSectionParser(registry)
    try:
        for line_no, line in enumerate(text.splitlines(), start=1):
            parser.feed(line_no, line)
    except ConfigSyntaxError as err:
        log.error("config_syntax_error",
                  extra={"line_no": err.line_no, "line": err.line, "reason": err.reason})
        return ParseResult(ok=False, error=err)
    return ParseResult(ok=True, config=parser.config)
