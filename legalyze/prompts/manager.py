from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

VERSION_RE = re.compile(r"^v(\d{3})$")
PLACEHOLDER_RE = re.compile(r"\{\{([A-Z][A-Z0-9_]*)\}\}")

LEGAL_ANALYSIS_PROMPT = "legal_analysis"
PARTY_EXTRACTION_PROMPT = "party_extraction"
LEGAL_CHECK_PROMPT = "legal_check"
DOCUMENT_CHAT_PROMPT = "document_chat"


@dataclass(frozen=True, slots=True)
class PromptSet:
    prompt_name: str
    version: str
    template_text: str
    schema: dict[str, Any] | None
    meta: dict[str, Any]
    prompt_dir: Path

    @property
    def prompt_version(self) -> str:
        return str(self.meta.get("prompt_version") or self.version)

    @property
    def placeholders(self) -> set[str]:
        return set(PLACEHOLDER_RE.findall(self.template_text))

    def render(self, values: Mapping[str, str]) -> str:
        return render_prompt(self.template_text, values)


class PromptManager:
    def __init__(self, prompts_root: Path | str) -> None:
        self.prompts_root = Path(prompts_root)
        self._loaded: dict[tuple[str, str], PromptSet] = {}

    def list_prompt_names(self) -> list[str]:
        if not self.prompts_root.exists():
            return []

        names: list[str] = []
        for child in self.prompts_root.iterdir():
            if not child.is_dir():
                continue
            if child.name.startswith("__"):
                continue
            if self.list_versions(child.name):
                names.append(child.name)
        return sorted(names)

    def list_versions(self, prompt_name: str) -> list[str]:
        prompt_dir = self.prompts_root / prompt_name
        if not prompt_dir.exists() or not prompt_dir.is_dir():
            return []

        versions: list[str] = []
        for child in prompt_dir.iterdir():
            if not child.is_dir():
                continue
            if VERSION_RE.match(child.name):
                versions.append(child.name)

        return sorted(versions, key=_version_to_int)

    def load_prompt_set(self, *, prompt_name: str, version: str) -> PromptSet:
        cached = self._loaded.get((prompt_name, version))
        if cached is not None:
            return cached

        prompt_dir = self._prompt_dir(prompt_name=prompt_name, version=version)
        template_path = prompt_dir / "template.txt"
        schema_path = prompt_dir / "schema.json"
        meta_path = prompt_dir / "meta.yaml"

        if not template_path.exists():
            raise FileNotFoundError(f"prompt template not found: {template_path}")

        template_text = template_path.read_text(encoding="utf-8")
        schema = None
        if schema_path.exists():
            schema = _parse_schema_text(schema_path.read_text(encoding="utf-8"))

        meta: dict[str, Any] = {}
        if meta_path.exists():
            parsed_meta = yaml.safe_load(meta_path.read_text(encoding="utf-8")) or {}
            if isinstance(parsed_meta, dict):
                meta = parsed_meta

        prompt_set = PromptSet(
            prompt_name=prompt_name,
            version=version,
            template_text=template_text,
            schema=schema,
            meta=meta,
            prompt_dir=prompt_dir,
        )
        self._loaded[(prompt_name, version)] = prompt_set
        return prompt_set

    def _prompt_dir(self, *, prompt_name: str, version: str) -> Path:
        if not VERSION_RE.match(version):
            raise ValueError(f"Invalid prompt version format: {version}")
        return self.prompts_root / prompt_name / version


def render_prompt(template: str, values: Mapping[str, str]) -> str:
    """Replace every ``{{NAME}}`` placeholder with ``values[NAME]``.

    Placeholders without a value are left in place; values are inserted
    verbatim and never re-scanned.
    """

    def _substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in values:
            return match.group(0)
        return str(values[name])

    return PLACEHOLDER_RE.sub(_substitute, template)


def _parse_schema_text(schema_text: str) -> dict[str, Any]:
    try:
        parsed = json.loads(schema_text)
    except json.JSONDecodeError as error:
        raise ValueError(f"Invalid schema JSON: {error}") from error

    if not isinstance(parsed, dict):
        raise ValueError("Schema JSON root must be an object")

    return parsed


def _version_to_int(version: str) -> int:
    match = VERSION_RE.match(version)
    if match is None:
        raise ValueError(f"Invalid version format: {version}")
    return int(match.group(1))
