from .config import Config, load_config
from .geometry import Rect
from .models import (
    AudioArtifact,
    AudioStatus,
    BatchStatus,
    Chapter,
    ChapterSource,
    Page,
    PageSource,
    Panel,
    PanelStatus,
    ProjectState,
)
from .panel_detector import PanelDetector, DetectedPanel
from .cropper import crop_panel, CropScheduler
from .state_store import StateStore
from .editor import EditorSurface, EditorMode, Keybinding
from .narrative_client import NarrativeClient, GeminiNarrativeModel, StoryResult
from .audio_client import NarrationAudioClient, GeminiSpeechModel, SpeechParams
from .pipeline import NarrationPipeline, BatchReport
from .export import export_chapter_archive, pcm_to_wav

__version__ = "0.1.0"
__all__ = [
    "Config",
    "load_config",
    "Rect",
    "AudioArtifact",
    "AudioStatus",
    "BatchStatus",
    "Chapter",
    "ChapterSource",
    "Page",
    "PageSource",
    "Panel",
    "PanelStatus",
    "ProjectState",
    "PanelDetector",
    "DetectedPanel",
    "crop_panel",
    "CropScheduler",
    "StateStore",
    "EditorSurface",
    "EditorMode",
    "Keybinding",
    "NarrativeClient",
    "GeminiNarrativeModel",
    "StoryResult",
    "NarrationAudioClient",
    "GeminiSpeechModel",
    "SpeechParams",
    "NarrationPipeline",
    "BatchReport",
    "export_chapter_archive",
    "pcm_to_wav",
]
