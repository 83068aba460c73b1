"""Configuration for MixPlan scoring and analysis parameters."""

import json
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Union


@dataclass(frozen=True)
class SimilarityWeights:
    """Weights for the combined similarity score."""

    embedding: float = 0.50  # vibe match from embeddings
    tempo: float = 0.20
    key: float = 0.20
    energy: float = 0.10


@dataclass(frozen=True)
class AnalysisConfig:
    """Tunable parameters for scoring, matching and set planning."""

    weights: SimilarityWeights = field(default_factory=SimilarityWeights)

    # Tempo similarity (BPM)
    tempo_full_match: float = 1.0
    tempo_zero_match: float = 10.0
    tempo_match_display: float = 0.5
    beat_grid_threshold: float = 0.9

    # Energy curves
    curve_resolution: int = 100
    curve_min_range: float = 0.01
    peak_threshold: float = 0.6
    match_limit: int = 20

    # Transition point scan (percent of the outgoing curve)
    transition_scan_start: int = 50
    transition_scan_end: int = 90
    transition_scan_step: int = 5

    # Section profiling
    embedding_dim: int = 512
    section_window_seconds: float = 8.0
    section_window_overlap: float = 2.0
    section_match_threshold: float = 0.5
    spectral_fft_size: int = 2048

    # Transition windows
    phrase_length: int = 16  # beats
    phrase_energy_threshold: float = 0.15
    phrase_alignment_beats: int = 2
    min_transition_window: float = 8.0  # seconds
    low_energy_threshold: float = 0.4
    energy_window_score: float = 0.7
    phrase_mix_score: float = 0.9

    # Set planning
    energy_flow_weight: float = 0.2
    warm_up_max_step: int = 2


# Default configuration instance
DEFAULT_CONFIG = AnalysisConfig()


def load_config(path: Union[str, Path]) -> AnalysisConfig:
    """Load configuration overrides from a JSON file.

    Args:
        path: JSON file holding an object of field overrides. A nested
            ``weights`` object overrides similarity weights.

    Returns:
        AnalysisConfig with the overrides applied to the defaults.

    Raises:
        ValueError: If the file holds unknown keys or is not a JSON object.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError("Config file must contain a JSON object")

    known = {f.name for f in fields(AnalysisConfig)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    overrides = dict(data)
    if "weights" in overrides:
        weight_data = overrides["weights"]
        weight_keys = {f.name for f in fields(SimilarityWeights)}
        if not isinstance(weight_data, dict) or set(weight_data) - weight_keys:
            raise ValueError("Config 'weights' must map embedding/tempo/key/energy to numbers")
        overrides["weights"] = SimilarityWeights(**weight_data)

    return replace(DEFAULT_CONFIG, **overrides)
