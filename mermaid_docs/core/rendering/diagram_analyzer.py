"""
Diagram Analyzer
================

Turn Mermaid source into a page-size-aware rendering plan.

The analysis is pure and deterministic: it classifies the diagram, scores its
complexity, derives pixel dimensions clamped to the target page, a browser
viewport, and the Mermaid configuration to render with. No I/O happens here.
"""

import math
import re
from typing import Any, Dict, List, Optional, Tuple

from mermaid_docs.models.schemas import (
    ComplexityLevel,
    DiagramAnalysis,
    DiagramType,
    Dimensions,
    PageSize,
    Viewport,
)

# First match wins, so "graph" must not shadow a longer keyword.
TYPE_KEYWORDS: List[Tuple[str, DiagramType]] = [
    ("flowchart", DiagramType.FLOWCHART),
    ("graph", DiagramType.FLOWCHART),
    ("sequenceDiagram", DiagramType.SEQUENCE),
    ("classDiagram", DiagramType.CLASS),
    ("stateDiagram", DiagramType.STATE),
    ("erDiagram", DiagramType.ENTITY_RELATIONSHIP),
    ("gantt", DiagramType.GANTT),
    ("pie", DiagramType.PIE),
    ("journey", DiagramType.JOURNEY),
    ("gitGraph", DiagramType.GIT_GRAPH),
    ("mindmap", DiagramType.MINDMAP),
    ("timeline", DiagramType.TIMELINE),
]

BASE_SIZES: Dict[DiagramType, Tuple[int, int]] = {
    DiagramType.FLOWCHART: (400, 300),
    DiagramType.SEQUENCE: (600, 400),
    DiagramType.CLASS: (500, 600),
    DiagramType.STATE: (450, 350),
    DiagramType.ENTITY_RELATIONSHIP: (550, 450),
    DiagramType.GANTT: (700, 300),
    DiagramType.PIE: (300, 300),
    DiagramType.JOURNEY: (600, 200),
    DiagramType.GIT_GRAPH: (500, 200),
    DiagramType.MINDMAP: (400, 400),
    DiagramType.TIMELINE: (700, 200),
    DiagramType.UNKNOWN: (400, 300),
}

COMPLEXITY_MULTIPLIERS: Dict[ComplexityLevel, float] = {
    ComplexityLevel.SIMPLE: 1.0,
    ComplexityLevel.MEDIUM: 1.3,
    ComplexityLevel.COMPLEX: 1.6,
    ComplexityLevel.VERY_COMPLEX: 2.0,
}

DEVICE_SCALE_FACTORS: Dict[ComplexityLevel, float] = {
    ComplexityLevel.SIMPLE: 1.2,
    ComplexityLevel.MEDIUM: 1.5,
    ComplexityLevel.COMPLEX: 1.8,
    ComplexityLevel.VERY_COMPLEX: 2.0,
}

# Printable area per page, margins already subtracted.
PAGE_CONSTRAINTS: Dict[PageSize, Tuple[int, int]] = {
    PageSize.A4: (580, 750),
    PageSize.LETTER: (580, 720),
    PageSize.LEGAL: (580, 950),
}

# Upper bounds of the simple, medium and complex bands; anything above is very complex.
COMPLEXITY_THRESHOLDS: Tuple[float, float, float] = (5, 15, 30)

VIEWPORT_PADDING = 40
LONG_LINE_THRESHOLD = 50
FONT_FAMILY = '-apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Arial, sans-serif'

FLOWCHART_NODE_PATTERN = re.compile(r"\b[A-Za-z0-9_]+\s*[\[\(\{][^\]\)\}]*[\]\)\}]")
PARTICIPANT_PATTERN = re.compile(r"participant\s+\w+")
CLASS_PATTERN = re.compile(r"class\s+\w+")
ER_ENTITY_PATTERN = re.compile(r"\b[A-Z][A-Z0-9_]*\s*\{")
ER_RELATIONSHIP_PATTERN = re.compile(r"\|\|--|\|o--|\|\|\.\.|\|o\.\.")

FLOWCHART_CONNECTIONS = ("-->", "---", "-.->")
SEQUENCE_CONNECTIONS = ("->", "-->>", "-x", "--x")
CLASS_CONNECTIONS = ("--", "..", "--|>", "..|>")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def page_constraints(page_size: Optional[str]) -> Tuple[int, int]:
    """Max (width, height) for a page size name; unknown names use A4."""
    return PAGE_CONSTRAINTS[PageSize.parse(page_size)]


class DiagramAnalyzer:
    """Size and layout planner for Mermaid diagrams."""

    def analyze(self, source: str, page_size: Optional[str] = "A4") -> DiagramAnalysis:
        """
        Analyze diagram source for rendering.

        Args:
            source: Mermaid diagram source
            page_size: Target page size name (A4, Letter, Legal)

        Returns:
            DiagramAnalysis with clamped dimensions, viewport and Mermaid config
        """
        diagram_type = self.detect_type(source)
        complexity = self.calculate_complexity(source, diagram_type)

        width, height = self._base_dimensions(diagram_type, complexity)
        width, height = self._adjust_for_content(source, diagram_type, width, height)
        width, height = self._apply_page_constraints(width, height, page_constraints(page_size))

        return DiagramAnalysis(
            type=diagram_type,
            complexity=complexity,
            estimated_dimensions=Dimensions(width=width, height=height),
            recommended_viewport=self._viewport(width, height, complexity),
            render_library_config=self.render_config(diagram_type, width, complexity),
        )

    def detect_type(self, source: str) -> DiagramType:
        """Classify by leading keyword, then by structural hints."""
        trimmed = source.strip()
        for keyword, diagram_type in TYPE_KEYWORDS:
            if trimmed.startswith(keyword):
                return diagram_type

        if "-->" in source or "---" in source:
            return DiagramType.FLOWCHART
        if "participant" in source or "->" in source:
            return DiagramType.SEQUENCE
        if "class " in source and "{" in source:
            return DiagramType.CLASS

        return DiagramType.UNKNOWN

    def complexity_score(self, source: str, diagram_type: DiagramType) -> float:
        lines = [
            line for line in source.split("\n") if line.strip() and not line.strip().startswith("%")
        ]
        line_count = len(lines)

        if diagram_type is DiagramType.FLOWCHART:
            elements = len(FLOWCHART_NODE_PATTERN.findall(source))
            connections = _count_tokens(source, FLOWCHART_CONNECTIONS)
        elif diagram_type is DiagramType.SEQUENCE:
            elements = len(PARTICIPANT_PATTERN.findall(source))
            connections = _count_tokens(source, SEQUENCE_CONNECTIONS)
        elif diagram_type is DiagramType.CLASS:
            elements = len(CLASS_PATTERN.findall(source))
            connections = _count_tokens(source, CLASS_CONNECTIONS)
        elif diagram_type is DiagramType.ENTITY_RELATIONSHIP:
            elements = len(ER_ENTITY_PATTERN.findall(source))
            connections = len(ER_RELATIONSHIP_PATTERN.findall(source))
        else:
            elements = line_count
            connections = 0

        return elements + connections * 0.5 + line_count * 0.1

    def calculate_complexity(self, source: str, diagram_type: DiagramType) -> ComplexityLevel:
        score = self.complexity_score(source, diagram_type)
        simple, medium, complex_ = COMPLEXITY_THRESHOLDS

        if score < simple:
            return ComplexityLevel.SIMPLE
        if score < medium:
            return ComplexityLevel.MEDIUM
        if score < complex_:
            return ComplexityLevel.COMPLEX
        return ComplexityLevel.VERY_COMPLEX

    def _base_dimensions(
        self, diagram_type: DiagramType, complexity: ComplexityLevel
    ) -> Tuple[int, int]:
        base_width, base_height = BASE_SIZES[diagram_type]
        multiplier = COMPLEXITY_MULTIPLIERS[complexity]
        return _round_half_up(base_width * multiplier), _round_half_up(base_height * multiplier)

    def _adjust_for_content(
        self, source: str, diagram_type: DiagramType, width: float, height: float
    ) -> Tuple[int, int]:
        lines = source.split("\n")
        average_line_length = sum(len(line) for line in lines) / len(lines)
        if average_line_length > LONG_LINE_THRESHOLD:
            width *= 1.2

        if diagram_type is DiagramType.SEQUENCE:
            participants = len(PARTICIPANT_PATTERN.findall(source))
            if participants > 4:
                width = max(width, participants * 120)
        elif diagram_type is DiagramType.FLOWCHART:
            if "TD" in source or "TB" in source:
                height *= 1.2
            if "LR" in source or "RL" in source:
                width *= 1.3
        elif diagram_type is DiagramType.GANTT:
            estimated_tasks = source.count("section") * 3
            width = max(width, estimated_tasks * 80)

        return _round_half_up(width), _round_half_up(height)

    def _apply_page_constraints(
        self, width: int, height: int, constraints: Tuple[int, int]
    ) -> Tuple[int, int]:
        max_width, max_height = constraints
        if width <= max_width and height <= max_height:
            return width, height

        scale = min(max_width / width, max_height / height)
        return (
            min(_round_half_up(width * scale), max_width),
            min(_round_half_up(height * scale), max_height),
        )

    def _viewport(self, width: int, height: int, complexity: ComplexityLevel) -> Viewport:
        return Viewport(
            width=width + VIEWPORT_PADDING,
            height=height + VIEWPORT_PADDING,
            device_scale_factor=DEVICE_SCALE_FACTORS[complexity],
        )

    def render_config(
        self, diagram_type: DiagramType, max_width: int, complexity: ComplexityLevel
    ) -> Dict[str, Any]:
        """Mermaid ``initialize`` options: shared base merged with per-type options."""
        if complexity is ComplexityLevel.VERY_COMPLEX:
            font_size = "10px"
        elif complexity is ComplexityLevel.COMPLEX:
            font_size = "11px"
        else:
            font_size = "12px"
        simple = complexity is ComplexityLevel.SIMPLE

        config: Dict[str, Any] = {
            "startOnLoad": False,
            "theme": "default",
            "maxWidth": max_width,
            "themeVariables": {"fontFamily": FONT_FAMILY, "fontSize": font_size},
            "logLevel": "error",
            "securityLevel": "loose",
        }
        config.update(self._type_config(diagram_type, font_size, simple))
        return config

    def _type_config(
        self, diagram_type: DiagramType, font_size: str, simple: bool
    ) -> Dict[str, Any]:
        if diagram_type is DiagramType.FLOWCHART:
            return {
                "flowchart": {
                    "htmlLabels": True,
                    "useMaxWidth": True,
                    "nodeSpacing": 25 if simple else 20,
                    "rankSpacing": 30 if simple else 25,
                    "padding": 15,
                    "curve": "basis",
                }
            }
        elif diagram_type is DiagramType.SEQUENCE:
            return {
                "sequence": {
                    "diagramMarginX": 20,
                    "diagramMarginY": 15,
                    "boxTextMargin": 5,
                    "noteMargin": 10,
                    "messageMargin": 25 if simple else 20,
                    "useMaxWidth": True,
                }
            }
        elif diagram_type is DiagramType.CLASS:
            return {"class": {"useMaxWidth": True}}
        elif diagram_type is DiagramType.ENTITY_RELATIONSHIP:
            return {
                "er": {
                    "useMaxWidth": True,
                    "entityPadding": 15,
                    "stroke": "#333",
                    "fontSize": font_size,
                }
            }
        elif diagram_type is DiagramType.GANTT:
            return {"gantt": {"useMaxWidth": True, "leftPadding": 75, "rightPadding": 20}}
        elif diagram_type in (
            DiagramType.STATE,
            DiagramType.PIE,
            DiagramType.JOURNEY,
            DiagramType.GIT_GRAPH,
            DiagramType.MINDMAP,
            DiagramType.TIMELINE,
            DiagramType.UNKNOWN,
        ):
            return {}
        raise ValueError(f"Unhandled diagram type: {diagram_type}")


def _count_tokens(source: str, tokens: Tuple[str, ...]) -> int:
    return sum(source.count(token) for token in tokens)


def analyze_diagram(source: str, page_size: Optional[str] = "A4") -> DiagramAnalysis:
    """Convenience wrapper around DiagramAnalyzer.analyze."""
    return DiagramAnalyzer().analyze(source, page_size)
