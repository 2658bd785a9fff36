"""
Suggestion Writer — durable materialization of approved suggestions.

Kept separate from repository status so that "approved" and "written" can
happen at different times.
"""

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Optional, Protocol, Union

from spec_evolution.models.suggestion import SpecSuggestion

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class SuggestionWriter(Protocol):
    """Protocol for suggestion writers. Returns a location identifier."""

    async def write(self, suggestion: SpecSuggestion) -> str: ...


def suggestion_filename(suggestion: SpecSuggestion) -> str:
    """<name>.v<version>.suggestion.json, else <intent id>, else next."""
    if suggestion.target:
        stem = f"{suggestion.target.name}.v{suggestion.target.version}"
    elif suggestion.intent and suggestion.intent.id:
        stem = suggestion.intent.id
    else:
        stem = "next"
    stem = _UNSAFE_CHARS.sub("-", stem).strip("-.") or "next"
    return f"{stem}.suggestion.json"


class FileSystemSuggestionWriter:
    """
    Writes one JSON document per suggestion:

        {"meta": {...}, "meta_source": "spec" | "target" | null,
         "suggestion": {...}}

    The spec's identifying `meta` section is lifted out of proposal.spec into
    the top-level `meta`; timestamps are ISO-8601 strings.
    """

    def __init__(self, output_dir: Union[str, Path]):
        self.output_dir = Path(output_dir)

    async def write(self, suggestion: SpecSuggestion) -> str:
        path = self.output_dir / suggestion_filename(suggestion)
        content = json.dumps(self.serialize(suggestion), indent=2, sort_keys=True)
        # Blocking file I/O runs in a worker thread, off the event loop
        await asyncio.to_thread(self._write_file, path, content)
        logger.info("Wrote suggestion %s to %s", suggestion.id, path)
        return str(path)

    def _write_file(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_text(content, encoding="utf-8")
        tmp_path.replace(path)

    def read(self, path: Union[str, Path]) -> SpecSuggestion:
        """Load a suggestion written by this writer."""
        document = json.loads(Path(path).read_text(encoding="utf-8"))
        data = document["suggestion"]
        spec = data.get("proposal", {}).get("spec")
        if document.get("meta_source") == "spec" and isinstance(spec, dict):
            data["proposal"]["spec"] = {"meta": document.get("meta", {}), **spec}
        return SpecSuggestion.model_validate(data)

    def serialize(self, suggestion: SpecSuggestion) -> dict:
        data = suggestion.model_dump(mode="json")
        meta: Optional[dict] = None
        meta_source: Optional[str] = None

        spec = data["proposal"].get("spec")
        if isinstance(spec, dict) and isinstance(spec.get("meta"), dict):
            meta = spec.pop("meta")
            meta_source = "spec"
        elif suggestion.target:
            meta = {
                "key": suggestion.target.name,
                "version": suggestion.target.version,
                "tenant_id": suggestion.target.tenant_id,
            }
            meta_source = "target"

        return {
            "meta": meta or {},
            "meta_source": meta_source,
            "suggestion": data,
        }
