"""Domain models for MixPlan."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class TrackSection:
    """A structural section of a track."""

    type: str  # intro, verse, build, drop, breakdown, chorus, outro
    start_time: float  # seconds
    end_time: float  # seconds
    confidence: float = 1.0

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass
class CuePoint:
    """A cue marker inside a track."""

    index: int
    label: str
    type: str  # intro, drop, build, breakdown, outro, custom
    time_seconds: float
    beat_index: Optional[int] = None


@dataclass
class QAFlag:
    """Quality-assurance flag raised during analysis."""

    type: str  # needs_review, mixed_content, speech_detected, low_confidence
    reason: str
    dismissed: bool = False


@dataclass
class TrackAnalysis:
    """Analysis results for one analysis run of a track."""

    track_id: int
    bpm: float
    key_value: str  # Camelot notation, e.g. "8A"
    energy_global: int  # 0-10
    duration_seconds: float = 0.0
    id: int = 0
    version: int = 1
    status: str = "complete"  # pending, analyzing, complete, failed
    bpm_confidence: float = 1.0
    key_format: str = "camelot"
    key_confidence: float = 1.0
    integrated_lufs: float = 0.0
    true_peak_db: float = 0.0
    loudness_range: float = 0.0
    waveform_preview: List[float] = field(default_factory=list)
    sections: List[TrackSection] = field(default_factory=list)
    cue_points: List[CuePoint] = field(default_factory=list)
    sound_context: Optional[str] = None
    sound_context_confidence: Optional[float] = None
    qa_flags: List[QAFlag] = field(default_factory=list)
    has_embedding: bool = False


@dataclass
class Track:
    """An audio file in the library, with its latest analysis if any."""

    id: int
    path: str
    title: str = ""
    artist: str = ""
    album: Optional[str] = None
    content_hash: str = ""
    file_size: int = 0
    file_modified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    analysis: Optional[TrackAnalysis] = None

    @property
    def display_name(self) -> str:
        """Get display name for the track."""
        if self.artist and self.title:
            return f"{self.artist} - {self.title}"
        return self.title or self.path


@dataclass
class MusicLocation:
    """A folder registered as a source of tracks."""

    id: int
    url: str
    created_at: Optional[datetime] = None


@dataclass
class Embedding:
    """Fixed-length audio embedding for one analysis version of a track."""

    track_id: int
    analysis_version: int
    vector: List[float]  # 512-dim
    created_at: Optional[datetime] = None


@dataclass
class SimilarityResult:
    """Explainable similarity between two tracks."""

    track_a_id: int
    track_b_id: int
    embedding_similarity: float
    tempo_similarity: float
    key_similarity: float
    energy_similarity: float
    combined_score: float
    key_relation: str
    explanation: str


# --- Energy curves ---


@dataclass
class EnergyCurveShape:
    """Shape descriptor of a normalized energy curve."""

    curve: List[float]
    peak_position: float  # 0-1
    peak_value: float  # 0-1
    avg_energy: float
    variance: float
    trend: str  # rising, falling, flat, peaked, valley
    pattern: str  # steady, building, dropping, dynamic, double_climb


@dataclass
class EnergyCurveMatch:
    """How well a candidate's energy curve fits a source curve."""

    track_id: int
    overall_score: float
    correlation_score: float
    complement_score: float
    shape_score: float
    match_type: str  # parallel, complementary, continuation, contrast
    best_transition_point: int  # 0-100 position in the source curve
    explanation: str


@dataclass
class CurveTransitionResult:
    """Energy fit of two curves at a given transition point."""

    transition_point: float
    outgoing_energy: float
    incoming_energy: float
    energy_difference: float
    smoothness_score: float
    overlap_correlation: float
    overall_score: float
    recommendation: str


# --- Section embeddings ---


@dataclass
class SectionEmbedding:
    """Embedding and low-level features for one section or window."""

    section_type: str
    start_time: float
    end_time: float
    vector: List[float]
    energy: float  # RMS
    spectral_centroid: float  # Hz
    zero_crossing_rate: float

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass
class TrackSectionProfile:
    """Per-section embeddings aggregated into a track-level profile."""

    track_id: int
    sections: List[SectionEmbedding]
    global_embedding: List[float]
    energy_curve: List[float]  # 100 samples, 0-1


@dataclass
class SectionMatch:
    """Best-matching candidate section for a source section."""

    source_index: int
    target_index: int
    score: float


@dataclass
class SectionSimilarityResult:
    """Comparison of two section profiles."""

    global_similarity: float
    energy_correlation: float
    section_matches: List[SectionMatch]
    overall_score: float


# --- Transition windows ---


@dataclass
class TransitionPoint:
    """A candidate mix-in or mix-out location."""

    time_seconds: float
    beat_index: int
    type: str  # mix_in, mix_out
    score: float  # 0-1
    reason: str
    energy_level: float
    is_on_phrase: bool


@dataclass
class WindowCharacteristics:
    """Energy character of a transition window."""

    avg_energy: float
    energy_variance: float
    phrase_alignment: bool


@dataclass
class TransitionWindow:
    """A time range suitable for mixing."""

    start_time: float
    end_time: float
    start_beat: int
    end_beat: int
    type: str  # intro, outro, breakdown, build_up, sustain
    score: float
    characteristics: WindowCharacteristics

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass
class TransitionAnalysis:
    """Transition opportunities detected in one track."""

    track_id: int
    mix_in_points: List[TransitionPoint]
    mix_out_points: List[TransitionPoint]
    transition_windows: List[TransitionWindow]
    energy_curve: List[float]  # one sample per beat
    phrase_boundaries: List[int]  # beat indices
    recommended_mix_in_beat: int
    recommended_mix_out_beat: int
    analysis_version: int = 1


# --- Set planning ---


@dataclass
class Transition:
    """Planned transition between two consecutive tracks of a set."""

    from_track: Track
    to_track: Track
    score: float
    explanation: str
    bpm_delta: float
    key_relation: str
    energy_delta: int


@dataclass
class SetPlan:
    """Ordered set with per-pair transition explanations."""

    tracks: List[Track]
    transitions: List[Transition]
    total_score: float
    average_score: float
    energy_flow: List[int]
    mode: str
