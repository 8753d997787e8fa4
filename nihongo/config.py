import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from nihongo import DATA_DIR, STATE_DB_NAME

load_dotenv()

DEFAULT_MODEL = "gemini-3-flash-preview"
DEFAULT_TTS_MODEL = "gemini-2.5-flash-preview-tts"
DEFAULT_VOICE = "Kore"
DEFAULT_HISTORY_LIMIT = 10


@dataclass
class Settings:
    """Runtime configuration, read from the environment (and ``.env``)."""
    api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    tts_model: str = DEFAULT_TTS_MODEL
    voice: str = DEFAULT_VOICE
    data_dir: str = DATA_DIR
    history_limit: int = DEFAULT_HISTORY_LIMIT

    @property
    def state_db_path(self) -> str:
        return os.path.join(self.data_dir, STATE_DB_NAME)

    @classmethod
    def from_env(cls) -> "Settings":
        limit = os.getenv("NIHONGO_HISTORY_LIMIT")
        return cls(
            api_key=os.getenv("GEMINI_KEY") or os.getenv("GEMINI_API_KEY"),
            model=os.getenv("NIHONGO_MODEL", DEFAULT_MODEL),
            tts_model=os.getenv("NIHONGO_TTS_MODEL", DEFAULT_TTS_MODEL),
            voice=os.getenv("NIHONGO_VOICE", DEFAULT_VOICE),
            data_dir=os.path.abspath(os.getenv("NIHONGO_DATA_DIR", DATA_DIR)),
            history_limit=int(limit) if limit else DEFAULT_HISTORY_LIMIT,
        )
