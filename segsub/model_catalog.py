"""Catalog of the ggml model tiers whisper-cli can load."""

import os
from dataclasses import dataclass
from typing import List, Optional

HUGGINGFACE_BASE_URL = "https://huggingface.co/ggerganov/whisper.cpp/resolve/main"


@dataclass(frozen=True)
class WhisperModel:
    name: str
    filename: str
    size_mb: int

    @property
    def url(self) -> str:
        return f"{HUGGINGFACE_BASE_URL}/{self.filename}"


# Smallest/fastest first
AVAILABLE_MODELS: List[WhisperModel] = [
    WhisperModel(name="tiny", filename="ggml-tiny.bin", size_mb=75),
    WhisperModel(name="base", filename="ggml-base.bin", size_mb=142),
    WhisperModel(name="small", filename="ggml-small.bin", size_mb=466),
    WhisperModel(name="medium", filename="ggml-medium.bin", size_mb=1460),
    WhisperModel(name="large", filename="ggml-large-v3.bin", size_mb=2890),
]


def find_model(name_or_filename: str) -> Optional[WhisperModel]:
    """Looks a tier up by name ("small") or by file name ("ggml-small.bin")."""
    key = name_or_filename.strip().lower()
    for model in AVAILABLE_MODELS:
        if key in (model.name, model.filename.lower()):
            return model
    return None


def model_filename(name_or_filename: str) -> str:
    """Maps a tier name to its file name; anything unknown is taken as a file name already."""
    model = find_model(name_or_filename)
    return model.filename if model else os.path.basename(name_or_filename)


def installed_models(models_dir: str) -> List[WhisperModel]:
    """Returns the catalog tiers whose files are present in models_dir."""
    return [m for m in AVAILABLE_MODELS if os.path.isfile(os.path.join(models_dir, m.filename))]
