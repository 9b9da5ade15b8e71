import asyncio
import json
import logging
import os
import tempfile
import uuid
from datetime import datetime
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from cardpoints.domain.errors import ConfigurationError, LookupFailure
from cardpoints.domain.models import RewardRule
from cardpoints.repository.catalog import CardCatalog, CardType
from cardpoints.repository.mapper import rule_from_record, rule_to_record

logger = logging.getLogger(__name__)


class RuleRepository(Protocol):
    async def get_rules_for_card_type(self, card_type_id: str) -> list[RewardRule]: ...

    async def get_rule(self, rule_id: str) -> RewardRule | None: ...

    async def create_rule(self, rule: RewardRule) -> RewardRule: ...

    async def update_rule(self, rule: RewardRule) -> RewardRule: ...

    async def delete_rule(self, rule_id: str) -> None: ...


def new_rule_id() -> str:
    return uuid.uuid4().hex


class JsonRuleRepository:
    """Rule catalog stored as one JSON document.

    The file holds ``{"card_types": [...], "rules": [...]}``. It is read once
    and kept in memory; rule changes are written back atomically. File
    access runs in a worker thread so the event loop is not blocked. Malformed
    rule records are logged and left out.
    """

    def __init__(self, catalog_file: str | Path):
        self.catalog_file = Path(catalog_file)
        self._rules: list[RewardRule] | None = None
        self._catalog: CardCatalog | None = None
        self._write_lock = asyncio.Lock()

    def _load(self) -> None:
        if not self.catalog_file.exists():
            raise LookupFailure(f"Rule catalog not found: {self.catalog_file}")

        try:
            with self.catalog_file.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise LookupFailure(f"Rule catalog unreadable: {self.catalog_file}") from exc

        if not isinstance(data, dict):
            raise LookupFailure(f"Rule catalog must be a JSON object: {self.catalog_file}")

        card_types: list[CardType] = []
        for item in self._section(data, "card_types"):
            try:
                card_types.append(CardType.model_validate(item))
            except ValidationError:
                logger.exception("Skipping malformed card type record")

        rules: list[RewardRule] = []
        for record in self._section(data, "rules"):
            try:
                rules.append(rule_from_record(record))
            except ConfigurationError:
                logger.exception("Skipping malformed reward rule record")

        self._catalog = CardCatalog(card_types)
        self._rules = rules
        logger.info("Loaded %d reward rules, %d card types", len(rules), len(card_types))

    def _section(self, data: dict, name: str) -> list:
        items = data.get(name, [])
        if not isinstance(items, list):
            raise LookupFailure(f"Rule catalog '{name}' must be a list: {self.catalog_file}")
        return items

    def _ensure_loaded(self) -> list[RewardRule]:
        if self._rules is None:
            self._load()
        return self._rules

    async def _loaded(self) -> list[RewardRule]:
        if self._rules is None:
            await asyncio.to_thread(self._load)
        return self._rules

    def _payload(self) -> dict:
        return {
            "card_types": [card.model_dump(mode="json") for card in self.catalog.all()],
            "rules": [rule_to_record(rule) for rule in self._rules or []],
        }

    def _write(self, payload: dict) -> None:
        self.catalog_file.parent.mkdir(parents=True, exist_ok=True)

        with tempfile.NamedTemporaryFile(
            mode="w",
            suffix=".json",
            prefix=".catalog_",
            dir=self.catalog_file.parent,
            delete=False,
            encoding="utf-8",
        ) as fp:
            json.dump(payload, fp, ensure_ascii=False, indent=2)
            temp_path = fp.name
        os.replace(temp_path, self.catalog_file)

    async def _save(self) -> None:
        # Snapshot on the event loop, then write one file at a time off it.
        payload = self._payload()
        async with self._write_lock:
            await asyncio.to_thread(self._write, payload)

    def reload(self) -> None:
        self._rules = None
        self._catalog = None
        self._load()

    @property
    def catalog(self) -> CardCatalog:
        self._ensure_loaded()
        return self._catalog

    async def get_rules_for_card_type(self, card_type_id: str) -> list[RewardRule]:
        return [rule for rule in await self._loaded() if rule.card_type_id == card_type_id]

    async def get_rule(self, rule_id: str) -> RewardRule | None:
        return next((rule for rule in await self._loaded() if rule.id == rule_id), None)

    async def create_rule(self, rule: RewardRule) -> RewardRule:
        rules = await self._loaded()
        now = datetime.now()
        created = rule.model_copy(update={"id": new_rule_id(), "created_at": now, "updated_at": now})
        rules.append(created)
        await self._save()
        logger.info("Created reward rule %s (%s)", created.id, created.name)
        return created

    async def update_rule(self, rule: RewardRule) -> RewardRule:
        rules = await self._loaded()
        for index, existing in enumerate(rules):
            if existing.id == rule.id:
                updated = rule.model_copy(
                    update={"created_at": existing.created_at, "updated_at": datetime.now()}
                )
                rules[index] = updated
                await self._save()
                logger.info("Updated reward rule %s", rule.id)
                return updated
        raise KeyError(rule.id)

    async def delete_rule(self, rule_id: str) -> None:
        rules = await self._loaded()
        remaining = [rule for rule in rules if rule.id != rule_id]
        if len(remaining) == len(rules):
            raise KeyError(rule_id)
        self._rules = remaining
        await self._save()
        logger.info("Deleted reward rule %s", rule_id)
