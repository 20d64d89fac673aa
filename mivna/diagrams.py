"""Diagram type catalogue and helpers for a repository's diagram variants."""

from dataclasses import dataclass
from typing import List, Optional, Union

from mivna.models import DiagramType, Repository, RepositoryDiagram

DEFAULT_DIAGRAM_TYPE = DiagramType.FLOWCHART

# One diagram per type
MAX_DIAGRAMS_PER_REPO = len(DiagramType)


@dataclass(frozen=True)
class DiagramTypeOption:
    value: DiagramType
    label: str
    description: str


DIAGRAM_TYPES: List[DiagramTypeOption] = [
    DiagramTypeOption(DiagramType.FLOWCHART, "Flowchart", "Code flow and logic paths"),
    DiagramTypeOption(DiagramType.ERD, "ERD", "Database schema and relationships"),
    DiagramTypeOption(DiagramType.SEQUENCE, "Sequence", "API flows and interactions"),
    DiagramTypeOption(DiagramType.COMPONENT, "Component", "Architecture and components"),
]


def get_diagram_type_option(diagram_type: Union[DiagramType, str]) -> DiagramTypeOption:
    """Look up a catalogue entry.

    Raises:
        ValueError: If ``diagram_type`` is not a known type
    """
    value = DiagramType(diagram_type)
    for option in DIAGRAM_TYPES:
        if option.value == value:
            return option
    raise ValueError(f"Unknown diagram type: {diagram_type}")


def diagram_for(repo: Repository, diagram_type: Union[DiagramType, str]) -> Optional[RepositoryDiagram]:
    """Return the repository's diagram of the given type, if generated."""
    value = DiagramType(diagram_type)
    for diagram in repo.repository_diagrams:
        if diagram.diagram_type == value:
            return diagram
    return None


def missing_diagram_types(repo: Repository) -> List[DiagramType]:
    """Diagram types not yet generated for the repository, in catalogue order."""
    existing = {diagram.diagram_type for diagram in repo.repository_diagrams}
    return [option.value for option in DIAGRAM_TYPES if option.value not in existing]


def diagram_count_label(repo: Repository) -> str:
    """Dashboard label such as ``"2/4 Diagrams"`` ("" when there are none)."""
    count = len(repo.repository_diagrams)
    if count == 0:
        return ""
    return f"{count}/{MAX_DIAGRAMS_PER_REPO} Diagrams"


def primary_diagram_code(repo: Repository) -> Optional[str]:
    """Code to show by default: the flowchart, any variant, then the legacy column."""
    flowchart = diagram_for(repo, DEFAULT_DIAGRAM_TYPE)
    if flowchart and flowchart.diagram_code:
        return flowchart.diagram_code
    for diagram in repo.repository_diagrams:
        if diagram.diagram_code:
            return diagram.diagram_code
    return repo.diagram_code
