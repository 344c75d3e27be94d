"""
Confirmed mappings file.

Keeps the user's interactive decisions between runs so a pair answered once
is never asked again. The file is JSON with camelCase keys.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from models import ConfirmedMappingsError, Decision, DecisionRecord

FILE_VERSION = "1.0"


class ConfirmedMapping(BaseModel):
    """One decision about a source person."""

    model_config = ConfigDict(populate_by_name=True)

    source_id: str = Field(alias="sourceId")
    destination_id: str | None = Field(default=None, alias="destinationId")
    type: Decision = Field(default=Decision.CONFIRMED)
    confirmed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), alias="confirmedAt")
    original_score: int | None = Field(default=None, alias="originalScore")
    comment: str | None = Field(default=None)


class ConfirmedMappingsFile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version: str = Field(default=FILE_VERSION)
    source_file: str | None = Field(default=None, alias="sourceFile")
    destination_file: str | None = Field(default=None, alias="destinationFile")
    mappings: list[ConfirmedMapping] = Field(default_factory=list)

    def add_or_update(self, mapping: ConfirmedMapping) -> None:
        """Replace any earlier decision for the same source person."""
        self.mappings = [m for m in self.mappings if m.source_id != mapping.source_id]
        self.mappings.append(mapping)


class ConfirmedMappingsStore:
    """Read and write the confirmed mappings file."""

    @staticmethod
    def read(path: str | Path) -> ConfirmedMappingsFile:
        """Load the file, raising ConfirmedMappingsError when it is unreadable or malformed."""
        try:
            text = Path(path).read_text(encoding="utf-8")
            return ConfirmedMappingsFile.model_validate(json.loads(text))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise ConfirmedMappingsError(f"Cannot read confirmed mappings {path}: {e}") from e

    @classmethod
    def load(cls, path: str | Path | None) -> ConfirmedMappingsFile | None:
        """Load the file for a run. Missing or broken files give None."""
        if path is None or not Path(path).exists():
            return None
        try:
            data = cls.read(path)
        except ConfirmedMappingsError as e:
            logger.error(str(e))
            return None
        logger.info(f"Loaded {len(data.mappings)} confirmed mappings from {path}")
        return data

    @staticmethod
    def save(path: str | Path, data: ConfirmedMappingsFile) -> None:
        Path(path).write_text(
            data.model_dump_json(by_alias=True, indent=2, exclude_none=False),
            encoding="utf-8",
        )
        logger.debug(f"Saved {len(data.mappings)} confirmed mappings to {path}")

    @classmethod
    def add_or_update(cls, path: str | Path, mapping: ConfirmedMapping) -> ConfirmedMappingsFile:
        data = cls.load(path) or ConfirmedMappingsFile()
        data.add_or_update(mapping)
        cls.save(path, data)
        return data

    @classmethod
    def record_decisions(
        cls,
        path: str | Path,
        decisions: Iterable[DecisionRecord],
        source_file: str | None = None,
        destination_file: str | None = None,
    ) -> ConfirmedMappingsFile:
        """Merge the decisions of a run into the file, later decisions winning."""
        data = cls.load(path) or ConfirmedMappingsFile()
        data.source_file = data.source_file or source_file
        data.destination_file = data.destination_file or destination_file
        count = 0
        for d in decisions:
            data.add_or_update(
                ConfirmedMapping(
                    source_id=d.source_id,
                    destination_id=d.destination_id,
                    type=d.decision,
                    confirmed_at=d.decided_at,
                    original_score=d.original_score,
                )
            )
            count += 1
        cls.save(path, data)
        logger.info(f"Recorded {count} decisions in {path}")
        return data

    @staticmethod
    def decisions(data: ConfirmedMappingsFile | None) -> dict[str, ConfirmedMapping]:
        if data is None:
            return {}
        return {m.source_id: m for m in data.mappings}

    @staticmethod
    def confirmed_anchors(data: ConfirmedMappingsFile | None) -> list[tuple[str, str]]:
        if data is None:
            return []
        return [
            (m.source_id, m.destination_id)
            for m in data.mappings
            if m.type == Decision.CONFIRMED and m.destination_id
        ]

    @staticmethod
    def rejected_pairs(data: ConfirmedMappingsFile | None) -> set[tuple[str, str | None]]:
        if data is None:
            return set()
        return {(m.source_id, m.destination_id) for m in data.mappings if m.type == Decision.REJECTED}
