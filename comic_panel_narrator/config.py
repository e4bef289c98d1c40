from dataclasses import dataclass, field
import os
from typing import Tuple
import toml
from dotenv import load_dotenv

load_dotenv()

CURRENT_PATH = os.path.abspath(os.path.join(os.path.dirname(__file__)))
CONFIG_FILE = os.path.join(CURRENT_PATH, "config.toml")


@dataclass
class Config:
    """Configuration settings for the panel narration pipeline."""

    # Paths
    current_path: str = CURRENT_PATH
    config_path: str = CONFIG_FILE
    output_folder: str = "temp_dir"

    # Panel detection
    whiteness_threshold: int = 250
    min_gutter_rows: int = 10
    min_panel_ratio: float = 0.05
    detection_confidence: float = 0.8
    fallback_confidence: float = 0.3

    # Editor
    min_draw_size: float = 0.01
    history_depth: int = 50

    # Narrative model
    narrative_models: Tuple[str, ...] = ("gemini-2.5-flash",)
    narrative_retries_per_model: int = 2
    narrative_temperature: float = 0.5

    # Speech model
    speech_models: Tuple[str, ...] = ("gemini-2.5-pro-preview-tts",)
    speech_retries_per_model: int = 3
    voice: str = "Kore"
    speaking_rate: float = 1.0
    pitch: float = 0.0
    volume_gain_db: float = 0.0
    sample_rate: int = 24000

    # Retry policy
    retry_base_delay: float = 1.5
    model_cooldown_seconds: float = 60.0

    # Languages
    primary_language: str = "en-US"
    target_languages: Tuple[str, ...] = ("en-US",)

    # Credentials, read from the environment when empty
    api_key: str = field(default="", repr=False)

    # Constants
    SUPPORTED_EXTENSIONS: tuple = ('jpg', 'jpeg', 'png', 'webp', 'JPG', 'JPEG', 'PNG', 'WEBP')

    def __post_init__(self):
        if not self.api_key:
            self.api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or ""

        self.narrative_models = tuple(self.narrative_models)
        self.speech_models = tuple(self.speech_models)
        self.target_languages = tuple(self.target_languages)

        # The reference language always gets a text.
        if self.primary_language not in self.target_languages:
            self.target_languages = (self.primary_language,) + self.target_languages


def load_config(file_path=CONFIG_FILE) -> Config:
    """Load the latest config from TOML file and return a Config instance."""
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Config file not found: {file_path}")

    data = toml.load(file_path)
    defaults = Config()

    return Config(
        config_path=file_path,
        output_folder=data.get("output_folder", defaults.output_folder),
        whiteness_threshold=int(data.get("whiteness_threshold", defaults.whiteness_threshold)),
        min_gutter_rows=int(data.get("min_gutter_rows", defaults.min_gutter_rows)),
        min_panel_ratio=float(data.get("min_panel_ratio", defaults.min_panel_ratio)),
        detection_confidence=float(data.get("detection_confidence", defaults.detection_confidence)),
        fallback_confidence=float(data.get("fallback_confidence", defaults.fallback_confidence)),
        min_draw_size=float(data.get("min_draw_size", defaults.min_draw_size)),
        history_depth=int(data.get("history_depth", defaults.history_depth)),
        narrative_models=tuple(data.get("narrative_models", defaults.narrative_models)),
        narrative_retries_per_model=int(data.get("narrative_retries_per_model", defaults.narrative_retries_per_model)),
        narrative_temperature=float(data.get("narrative_temperature", defaults.narrative_temperature)),
        speech_models=tuple(data.get("speech_models", defaults.speech_models)),
        speech_retries_per_model=int(data.get("speech_retries_per_model", defaults.speech_retries_per_model)),
        voice=data.get("voice", defaults.voice),
        speaking_rate=float(data.get("speaking_rate", defaults.speaking_rate)),
        pitch=float(data.get("pitch", defaults.pitch)),
        volume_gain_db=float(data.get("volume_gain_db", defaults.volume_gain_db)),
        sample_rate=int(data.get("sample_rate", defaults.sample_rate)),
        retry_base_delay=float(data.get("retry_base_delay", defaults.retry_base_delay)),
        model_cooldown_seconds=float(data.get("model_cooldown_seconds", defaults.model_cooldown_seconds)),
        primary_language=data.get("primary_language", defaults.primary_language),
        target_languages=tuple(data.get("target_languages", defaults.target_languages)),
    )


def update_toml_key(key: str, value, file_path=CONFIG_FILE) -> Config:
    """Update a key in the TOML file and reload config."""
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Config file not found: {file_path}")

    data = toml.load(file_path)
    data[key] = value
    with open(file_path, "w") as f:
        toml.dump(data, f)

    # Reload and return new Config
    return load_config(file_path)
