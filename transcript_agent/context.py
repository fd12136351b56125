"""
Context store: the durable memory of people, projects, terms and companies.

WHAT THIS FILE DOES:
-------------------
1. ContextStore: the narrow interface the tools and the wizard depend on
2. YamlContextStore: a directory-of-YAML-files implementation

DIRECTORY LAYOUT:
----------------
    <context_dir>/
    ├── people/jon-smith.yaml
    ├── projects/phoenix.yaml
    ├── companies/acme.yaml
    ├── terms/kubernetes.yaml
    └── ignored/um-yeah.yaml

SAVE + RELOAD:
-------------
Lookups read an in-memory snapshot. A save writes the file but does not
touch the snapshot, so a caller that saves and then searches would not see
its own entity. `commit_entity()` does both in one call; the wizard only
ever uses that.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from .schemas import (
    BaseEntity,
    Company,
    IgnoredTerm,
    Person,
    Project,
    Term,
    dump_entity,
    parse_entity,
)

logger = logging.getLogger(__name__)


# Entity type -> subdirectory name
ENTITY_DIRS = {
    "person": "people",
    "project": "projects",
    "company": "companies",
    "term": "terms",
    "ignored": "ignored",
}


# =============================================================================
# STORE INTERFACE
# =============================================================================

class ContextStore(ABC):
    """
    Interface consumed by the tools and the clarification wizard.

    Lookups are synchronous and case-insensitive. Writes are async.
    """

    @abstractmethod
    def search(self, query: str) -> list[BaseEntity]:
        """Entities whose name, id or sounds-like variants match `query`."""

    @abstractmethod
    def find_by_sounds_like(self, phonetic: str, types: Optional[tuple[str, ...]] = None) -> Optional[BaseEntity]:
        """First entity with a sounds-like variant equal to `phonetic`, limited to `types` if given."""

    @abstractmethod
    def get_all_projects(self) -> list[Project]:
        pass

    @abstractmethod
    def get_all_terms(self) -> list[Term]:
        pass

    @abstractmethod
    def is_ignored(self, term: str) -> bool:
        pass

    @abstractmethod
    async def save_entity(self, entity: BaseEntity) -> None:
        """Persist an entity, replacing any previous version with the same id."""

    @abstractmethod
    async def reload(self) -> None:
        """Re-read the backing storage so lookups see recent saves."""

    async def commit_entity(self, entity: BaseEntity) -> None:
        """Save an entity and reload, so the next lookup in this run sees it."""
        await self.save_entity(entity)
        await self.reload()


# =============================================================================
# YAML IMPLEMENTATION
# =============================================================================

class YamlContextStore(ContextStore):
    """
    Context store backed by one YAML file per entity.

    Example usage:
        store = YamlContextStore("~/.transcript-agent/context")
        store.search("phoenix")          # [Project(id="phoenix", ...)]
        await store.commit_entity(Person(id="jon-smith", name="Jon Smith"))
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory).expanduser()
        self._entities: dict[str, dict[str, BaseEntity]] = {}
        self.load()

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load(self) -> None:
        """Read every entity file into memory."""
        entities: dict[str, dict[str, BaseEntity]] = {t: {} for t in ENTITY_DIRS}

        for entity_type, subdir in ENTITY_DIRS.items():
            type_dir = self.directory / subdir
            if not type_dir.is_dir():
                continue
            for path in sorted(type_dir.glob("*.y*ml")):
                entity = self._load_file(path, entity_type)
                if entity is not None:
                    entities[entity_type][entity.id] = entity

        self._entities = entities
        logger.debug(
            f"Loaded context from {self.directory}: "
            + ", ".join(f"{len(v)} {k}" for k, v in entities.items())
        )

    def _load_file(self, path: Path, entity_type: str) -> Optional[BaseEntity]:
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.warning(f"Skipping unreadable YAML file {path}: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"Skipping {path}: not a mapping")
            return None

        data.setdefault("type", entity_type)
        data.setdefault("id", path.stem)
        try:
            return parse_entity(data)
        except ValidationError as e:
            logger.warning(f"Skipping invalid entity file {path}: {e}")
            return None

    def has_context(self) -> bool:
        return any(self._entities.values())

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def _all(self) -> list[BaseEntity]:
        return [
            entity
            for entity_type, entities in self._entities.items()
            if entity_type != "ignored"
            for entity in entities.values()
        ]

    def search(self, query: str) -> list[BaseEntity]:
        needle = query.strip().lower()
        if not needle:
            return []

        matches = []
        for entity in self._all():
            variants = [v.lower() for v in getattr(entity, "sounds_like", [])]
            if (
                needle in entity.name.lower()
                or needle == entity.id.lower()
                or needle in variants
            ):
                matches.append(entity)
        return matches

    def find_by_sounds_like(self, phonetic: str, types: Optional[tuple[str, ...]] = None) -> Optional[BaseEntity]:
        needle = phonetic.strip().lower()
        if not needle:
            return None

        candidates = [e for e in self._all() if types is None or e.type in types]
        for entity in candidates:
            variants = [v.lower() for v in getattr(entity, "sounds_like", [])]
            if needle in variants:
                return entity
        for entity in candidates:
            if entity.name.lower() == needle:
                return entity
        return None

    def get_all_people(self) -> list[Person]:
        return list(self._entities["person"].values())

    def get_all_projects(self) -> list[Project]:
        return list(self._entities["project"].values())

    def get_all_companies(self) -> list[Company]:
        return list(self._entities["company"].values())

    def get_all_terms(self) -> list[Term]:
        return list(self._entities["term"].values())

    def get_all_ignored(self) -> list[IgnoredTerm]:
        return list(self._entities["ignored"].values())

    def is_ignored(self, term: str) -> bool:
        needle = term.strip().lower()
        return any(
            ignored.name.lower() == needle or ignored.id == needle
            for ignored in self.get_all_ignored()
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def entity_path(self, entity: BaseEntity) -> Path:
        return self.directory / ENTITY_DIRS[entity.type] / f"{entity.id}.yaml"

    async def save_entity(self, entity: BaseEntity) -> None:
        path = self.entity_path(entity)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.safe_dump(dump_entity(entity), f, default_flow_style=False, sort_keys=False)

        logger.debug(f"Saved {entity.type} '{entity.name}' to {path}")

    async def reload(self) -> None:
        self.load()
