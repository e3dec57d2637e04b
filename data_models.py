# /data_models.py

import datetime
import math
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

# --- Enumerations ---

class Page(str, Enum):
    DASHBOARD = "dashboard"
    ANALYZE = "analyze"
    BATCH = "batch"
    HISTORY = "history"
    ANALYTICS = "analytics"
    CHAT = "chat"

class SpectrogramTheme(str, Enum):
    DARK_VIRIDIS = "dark_viridis"
    BRIGHT_PLASMA = "bright_plasma"
    CLASSIC_GRAYSCALE = "classic_grayscale"
    INFERNO = "inferno"
    MAGMA = "magma"
    JET = "jet"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()

class InputType(str, Enum):
    AUDIO = "audio"
    SPECTROGRAM = "spectrogram"

# --- Result Data Classes ---

class SpeciesDetection(BaseModel):
    species: str
    # Always a percentage in [0, 100] once it has gone through the normalizer
    confidence: float

class CallParameters(BaseModel):
    model_config = ConfigDict(extra="allow")

    start_frequency: Optional[float] = None
    end_frequency: Optional[float] = None
    peak_frequency: Optional[float] = None
    bandwidth: Optional[float] = None
    pulse_duration: Optional[float] = None
    intensity: Optional[float] = None
    shape: Optional[str] = None

class AnalysisResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    file_id: str
    original_filename: str = "unknown"
    timestamp: float
    duration: float = 0.0
    sample_rate: int = 0
    spectrogram_url: Optional[str] = None
    audio_url: Optional[str] = None
    species_image_url: Optional[str] = None
    species_detected: List[SpeciesDetection]
    call_parameters: CallParameters = Field(default_factory=CallParameters)

    @property
    def top_match(self) -> Optional[SpeciesDetection]:
        return self.species_detected[0] if self.species_detected else None

    @property
    def analyzed_at(self) -> datetime.datetime:
        return datetime.datetime.fromtimestamp(self.timestamp)

class BatchSummary(BaseModel):
    batch_id: Optional[str] = None
    total_files: int
    completed: int
    failed: int
    results: List[AnalysisResult]

# --- Service Payloads ---

class SpeciesCount(BaseModel):
    species: str
    count: int

class ServerStats(BaseModel):
    model_config = ConfigDict(extra="allow")

    total_analyses: int = 0
    total_duration_hours: float = 0.0
    unique_species_detected: int = 0
    storage_type: str = "unknown"
    top_species: List[SpeciesCount] = Field(default_factory=list)

class HealthStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: str = "unknown"
    services: Dict[str, Any] = Field(default_factory=dict)

class ChatMessage(BaseModel):
    role: str
    content: str

# --- Derived Analytics ---

class GlobalStats(BaseModel):
    total_count: int
    distinct_species: int
    top_species: List[SpeciesCount]
    total_duration: float
    average_confidence: float
    recent_count: int

class TimePoint(BaseModel):
    date: datetime.date
    count: int = 1
    confidence: float

class FrequencyPoint(BaseModel):
    name: str
    peak: Optional[float] = None
    start: Optional[float] = None
    end: Optional[float] = None

class DurationPoint(BaseModel):
    name: str
    duration: Optional[float] = None

class SpeciesAnalytics(BaseModel):
    species: str
    time_data: List[TimePoint]
    freq_data: List[FrequencyPoint]
    duration_data: List[DurationPoint]
    count: int
    avg_peak_frequency: float = math.nan
    avg_pulse_duration: float = math.nan

    @property
    def has_data(self) -> bool:
        return self.count > 0
