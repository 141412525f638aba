from __future__ import annotations

from uuid import uuid4

from paritymark.domain.tree import AssessmentTree
from paritymark.persistence.db import SessionLocal
from paritymark.services import assessment, config_versions, ingestion
from paritymark.services.audit import internal_meta


def unique_code(prefix: str = "D") -> str:
    return f"{prefix}{uuid4().hex[:10].upper()}"


async def seed_deployment(code: str | None = None) -> str:
    code = code or unique_code()
    async with SessionLocal() as session:
        await config_versions.create_deployment(session, code=code, name=f"Deployment {code}")
    return code


async def seed_structure(deployment_code: str, qig_codes: tuple[str, ...] = ("Q1", "Q2")) -> AssessmentTree:
    # One series with one paper holding the given QIGs, two items each.
    structure = [
        {
            "code": "S1",
            "name": "Summer series",
            "papers": [
                {
                    "code": "P1",
                    "name": "Paper 1",
                    "qigs": [
                        {
                            "code": qig_code,
                            "name": f"Group {qig_code}",
                            "items": [
                                {"code": f"{qig_code}a", "max_mark": 4},
                                {"code": f"{qig_code}b", "max_mark": 6},
                            ],
                        }
                        for qig_code in qig_codes
                    ],
                }
            ],
        }
    ]
    async with SessionLocal() as session:
        return await assessment.ensure_structure(
            session,
            deployment_code=deployment_code,
            structure=structure,
            meta=internal_meta("/tests/seed"),
        )


async def seed_response(deployment_code: str | None = None, qig_code: str = "Q1") -> tuple[str, int]:
    # Returns (deployment_code, response_id) for a fresh candidate response.
    deployment_code = deployment_code or await seed_deployment()
    tree = await seed_structure(deployment_code)
    qig_id = next(
        qig["id"]
        for series in tree
        for paper in series["papers"]
        for qig in paper["qigs"]
        if qig["code"] == qig_code
    )
    async with SessionLocal() as session:
        response = await ingestion.upsert_response(
            session,
            qig_id=qig_id,
            candidate_id=f"cand-{uuid4().hex[:8]}",
            script_url="https://scripts.example/123.pdf",
        )
        response_id = response.id
    return deployment_code, response_id
