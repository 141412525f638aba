from __future__ import annotations

import copy
from typing import Iterable, Protocol

from paritymark.domain.tree import AssessmentTree, PaperNode, SeriesNode


AE_ROLE_PREFIX = "AE_"


class ScopedRole(Protocol):
    key: str
    scopes: tuple[tuple[str, str], ...]


def qig_code_from_role_key(role_key: str, deployment_code: str) -> str | None:
    # AE_<deploymentCode>_<qigCode>: exact deployment prefix, non-empty QIG suffix.
    prefix = f"{AE_ROLE_PREFIX}{deployment_code}_"
    if not role_key.startswith(prefix):
        return None
    qig_code = role_key[len(prefix):]
    return qig_code or None


def restricted_qig_codes(caller_roles: Iterable[ScopedRole], deployment_code: str) -> frozenset[str]:
    codes: set[str] = set()
    for role in caller_roles:
        qig_code = qig_code_from_role_key(role.key, deployment_code)
        if qig_code is not None:
            codes.add(qig_code)
        for scope_deployment, scope_qig in getattr(role, "scopes", ()) or ():
            if scope_deployment == deployment_code and scope_qig:
                codes.add(scope_qig)
    return frozenset(codes)


def filter_tree(
    tree: AssessmentTree,
    caller_roles: Iterable[ScopedRole],
    deployment_code: str,
) -> AssessmentTree:
    """Prune the assessment tree to the QIGs an AE-scoped caller may see.

    Callers without any scope for ``deployment_code`` get an unchanged copy.
    Papers left without QIGs and series left without papers are dropped;
    items are never filtered individually. Never mutates ``tree``.
    """
    allowed = restricted_qig_codes(caller_roles, deployment_code)
    if not allowed:
        return copy.deepcopy(tree)

    filtered: AssessmentTree = []
    for series in tree:
        papers: list[PaperNode] = []
        for paper in series["papers"]:
            qigs = [copy.deepcopy(qig) for qig in paper["qigs"] if qig["code"] in allowed]
            if qigs:
                papers.append({**paper, "qigs": qigs})
        if papers:
            kept: SeriesNode = {**series, "papers": papers}
            filtered.append(kept)
    return filtered
