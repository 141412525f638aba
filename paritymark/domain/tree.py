from __future__ import annotations

from typing import TypedDict


class ItemNode(TypedDict):
    id: int
    code: str
    max_mark: int


class QigNode(TypedDict):
    id: int
    code: str
    name: str
    items: list[ItemNode]


class PaperNode(TypedDict):
    id: int
    code: str
    name: str
    qigs: list[QigNode]


class SeriesNode(TypedDict):
    id: int
    code: str
    name: str
    papers: list[PaperNode]


AssessmentTree = list[SeriesNode]
