import hashlib
import json
import os
import random
import sqlite3
import time
from abc import ABC, abstractmethod
from datetime import date
from typing import Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from nihongo.config import DEFAULT_HISTORY_LIMIT
from nihongo.errors import ImportParseError
from nihongo.logger import logger
from nihongo.schema import HistoryItem, HistoryItems, TranslationResult, dump_items

HISTORY_KEY = 'translationHistory'
SAVED_KEY = 'savedTranslations'
THEME_KEY = 'theme'

COLLECTION_KEYS = {
    'history': HISTORY_KEY,
    'saved': SAVED_KEY,
}

THEMES = ('light', 'dark')
DEFAULT_THEME = 'light'


class KeyValueStore(ABC):
    """Persistent string slots. Values are opaque to the store."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    def close(self):
        pass


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class SqliteKeyValueStore(KeyValueStore):
    schema = """
    CREATE TABLE IF NOT EXISTS kv (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at REAL NOT NULL
    );
    """
    _UPSERT_SQL = """
        INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
    """

    def __init__(self, path: str):
        self.path = path
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self.conn = sqlite3.connect(path)
        self.conn.execute(self.schema)
        self.conn.commit()

    def get(self, key: str) -> Optional[str]:
        row = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        self.conn.execute(self._UPSERT_SQL, (key, value, time.time()))
        self.conn.commit()

    def delete(self, key: str) -> None:
        self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        self.conn.commit()

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None


def normalize_text(text: str) -> str:
    """Comparison key for recent history: trimmed and case-folded."""
    return text.strip().casefold()


def now_ms() -> int:
    return int(time.time() * 1000)


def new_item_id(taken: Optional[set] = None) -> str:
    taken = taken or set()
    while True:
        raw = f"{time.time_ns()}|{random.random()}"
        item_id = hashlib.sha256(raw.encode()).hexdigest()[:20]
        if item_id not in taken:
            return item_id


def export_filename(collection: str = 'saved', day: Optional[date] = None) -> str:
    day = day or date.today()
    return f"nihongo-{collection}-{day.isoformat()}.json"


class HistoryStore:
    """Recent history, saved items and the theme preference.

    Every read goes back to the key-value store and every mutation writes the
    whole collection through, so the store itself holds no state.
    """

    def __init__(self, kv: KeyValueStore, history_limit: int = DEFAULT_HISTORY_LIMIT,
                 clock: Callable[[], int] = now_ms):
        if history_limit < 1:
            raise ValueError("history_limit must be at least 1")
        self.kv = kv
        self.history_limit = history_limit
        self.clock = clock

    # ── persistence ──────────────────────────────────────────────────────────
    def _load(self, key: str) -> List[HistoryItem]:
        raw = self.kv.get(key)
        if raw is None:
            return []
        try:
            return HistoryItems.validate_json(raw)
        except ValidationError:
            return self._salvage(key, raw)

    def _salvage(self, key: str, raw: str) -> List[HistoryItem]:
        """Keep the readable records of a damaged slot.

        The raw value is copied to ``<key>.unreadable`` before anything can
        overwrite it, so dropped records can still be recovered by hand.
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            data = None
            logger.warning(f"⚠️ '{key}' slot is not valid JSON: {e}")
        items = []
        if isinstance(data, list):
            for index, record in enumerate(data):
                try:
                    items.append(HistoryItem.model_validate(record))
                except ValidationError as e:
                    logger.warning(f"⚠️ Dropping unreadable record {index} from '{key}': "
                                   f"{e.error_count()} error(s)")
        elif data is not None:
            logger.warning(f"⚠️ '{key}' slot is not a JSON array")
        backup_key = f"{key}.unreadable"
        if self.kv.get(backup_key) != raw:
            self.kv.set(backup_key, raw)
            logger.warning(f"⚠️ Original '{key}' value kept in '{backup_key}'")
        return items

    def _save(self, key: str, items: List[HistoryItem]) -> None:
        self.kv.set(key, json.dumps(dump_items(items), ensure_ascii=False))

    def _new_item(self, original_text: str, result: TranslationResult,
                  existing: List[HistoryItem]) -> HistoryItem:
        return HistoryItem(
            id=new_item_id({item.id for item in existing}),
            originalText=original_text,
            result=result,
            timestamp=self.clock(),
        )

    @property
    def history(self) -> List[HistoryItem]:
        return self._load(HISTORY_KEY)

    @property
    def saved(self) -> List[HistoryItem]:
        return self._load(SAVED_KEY)

    def collection(self, name: str) -> List[HistoryItem]:
        return self._load(self._key_for(name))

    @staticmethod
    def _key_for(name: str) -> str:
        if name not in COLLECTION_KEYS:
            raise ValueError(f"Unknown collection: {name}")
        return COLLECTION_KEYS[name]

    # ── recent history ───────────────────────────────────────────────────────
    def record_history(self, original_text: str, result: TranslationResult) -> HistoryItem:
        key = normalize_text(original_text)
        items = [item for item in self.history if normalize_text(item.originalText) != key]
        item = self._new_item(original_text, result, items)
        items = [item] + items
        dropped = len(items) - self.history_limit
        if dropped > 0:
            logger.info(f"History full, dropping {dropped} oldest item(s)")
        self._save(HISTORY_KEY, items[:self.history_limit])
        return item

    def delete_history(self, item_id: str) -> bool:
        return self._delete(HISTORY_KEY, item_id)

    def clear_history(self) -> None:
        self._save(HISTORY_KEY, [])

    # ── saved items ──────────────────────────────────────────────────────────
    def is_saved(self, result: TranslationResult) -> bool:
        return any(item.result.japanese == result.japanese for item in self.saved)

    def toggle_saved(self, original_text: str, result: TranslationResult) -> bool:
        """Save or unsave *result*. Returns True when it is saved afterwards."""
        items = self.saved
        remaining = [item for item in items if item.result.japanese != result.japanese]
        if len(remaining) != len(items):
            self._save(SAVED_KEY, remaining)
            logger.info(f"Unsaved {result.japanese}")
            return False
        self._save(SAVED_KEY, [self._new_item(original_text, result, items)] + items)
        logger.info(f"Saved {result.japanese}")
        return True

    def delete_saved(self, item_id: str) -> bool:
        return self._delete(SAVED_KEY, item_id)

    def clear_saved(self) -> None:
        self._save(SAVED_KEY, [])

    def _delete(self, key: str, item_id: str) -> bool:
        items = self._load(key)
        remaining = [item for item in items if item.id != item_id]
        if len(remaining) == len(items):
            return False
        self._save(key, remaining)
        return True

    # ── export / import ──────────────────────────────────────────────────────
    def export(self, collection: str = 'saved') -> str:
        items = self._load(self._key_for(collection))
        return json.dumps(dump_items(items), ensure_ascii=False, indent=2)

    def import_saved(self, document: Union[str, bytes]) -> int:
        """Merge a JSON array of history records into saved items.

        Records whose ``result.japanese`` already exists replace the existing
        item in place; new ones are appended in document order. A record whose
        id is already used by another item gets a fresh id. Nothing is
        written unless every record validates. Returns the number of records
        merged.
        """
        imported = parse_import_document(document)
        items = self.saved
        position = {item.result.japanese: i for i, item in enumerate(items)}
        for record in imported:
            japanese = record.result.japanese
            slot = position.get(japanese)
            others = {item.id for i, item in enumerate(items) if i != slot}
            if record.id in others:
                fresh_id = new_item_id(others)
                logger.info(f"Imported id {record.id} already taken, renamed to {fresh_id}")
                record = record.model_copy(update={"id": fresh_id})
            if slot is not None:
                items[slot] = record
            else:
                position[japanese] = len(items)
                items.append(record)
        self._save(SAVED_KEY, items)
        logger.info(f"Imported {len(imported)} record(s); saved collection now holds {len(items)}")
        return len(imported)

    # ── theme ────────────────────────────────────────────────────────────────
    @property
    def theme(self) -> str:
        value = self.kv.get(THEME_KEY)
        return value if value in THEMES else DEFAULT_THEME

    def set_theme(self, theme: str) -> None:
        if theme not in THEMES:
            raise ValueError(f"Unknown theme: {theme}")
        self.kv.set(THEME_KEY, theme)

    def toggle_theme(self) -> str:
        theme = 'light' if self.theme == 'dark' else 'dark'
        self.set_theme(theme)
        return theme


def parse_import_document(document: Union[str, bytes]) -> List[HistoryItem]:
    try:
        if isinstance(document, bytes):
            document = document.decode("utf-8")
        data = json.loads(document)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ImportParseError(f"not valid UTF-8 JSON ({e})") from e
    if not isinstance(data, list):
        raise ImportParseError(f"expected a JSON array, got {type(data).__name__}")
    records = []
    for index, raw in enumerate(data):
        try:
            records.append(HistoryItem.model_validate(raw))
        except ValidationError as e:
            raise ImportParseError(f"{e.error_count()} invalid field(s)", index=index) from e
    return records
