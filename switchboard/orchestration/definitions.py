"""
Team and pipeline definitions loaded from YAML.

``teams.yaml`` maps a team name to a list of persona names.
``agent-chain.yaml`` maps a pipeline name to a description and a list of
steps. Both files are optional; a file that does not parse yields nothing,
and a single malformed entry is skipped without affecting its neighbours.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Optional

import structlog
import yaml
from pydantic import ValidationError

from switchboard.orchestration.models import PipelineDefinition

logger = structlog.get_logger(__name__)

DEFAULT_TEAM = "all"


def _load_yaml_mapping(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("definitions.unreadable", path=str(path), error=str(e))
        return {}
    except yaml.YAMLError as e:
        logger.warning("definitions.invalid_yaml", path=str(path), error=str(e))
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("definitions.invalid_yaml", path=str(path), error="top level is not a mapping")
        return {}
    return data


def parse_teams(data: dict[str, Any]) -> dict[str, list[str]]:
    teams: dict[str, list[str]] = {}
    for name, members in data.items():
        if isinstance(members, str):
            members = [members]
        if not isinstance(members, list):
            logger.warning("definitions.invalid_team", team=str(name))
            continue
        cleaned = [str(m).strip() for m in members if m is not None and str(m).strip()]
        teams[str(name)] = cleaned
    return teams


def parse_pipelines(data: dict[str, Any]) -> dict[str, PipelineDefinition]:
    pipelines: dict[str, PipelineDefinition] = {}
    for name, body in data.items():
        if not isinstance(body, dict):
            logger.warning("definitions.invalid_pipeline", pipeline=str(name), error="not a mapping")
            continue
        try:
            pipelines[str(name)] = PipelineDefinition.model_validate(
                {
                    "name": str(name),
                    "description": body.get("description") or "",
                    "steps": body.get("steps") or [],
                }
            )
        except ValidationError as e:
            logger.warning(
                "definitions.invalid_pipeline",
                pipeline=str(name),
                errors=e.error_count(),
                error=str(e).splitlines()[0],
            )
    return pipelines


def load_teams(
    path: Path,
    personas: Optional[Iterable[str]] = None,
) -> dict[str, list[str]]:
    """Load teams from ``path``.

    When the file defines no team and ``personas`` is given, a single
    ``all`` team containing every persona is returned instead.
    """
    teams = parse_teams(_load_yaml_mapping(path))
    if not teams and personas is not None:
        members = list(personas)
        if members:
            teams = {DEFAULT_TEAM: members}
    logger.debug("definitions.teams_loaded", path=str(path), teams=sorted(teams))
    return teams


def load_pipelines(path: Path) -> dict[str, PipelineDefinition]:
    pipelines = parse_pipelines(_load_yaml_mapping(path))
    logger.debug("definitions.pipelines_loaded", path=str(path), pipelines=sorted(pipelines))
    return pipelines
