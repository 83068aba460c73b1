"""Command-line interface for MixPlan set planning."""

import json
import sys
from dataclasses import asdict
from pathlib import Path

import click
import librosa

from .cache import SimilarityCache
from .config import DEFAULT_CONFIG, load_config
from .exceptions import AudioLoadError, InvalidRangeError, LibraryError
from .logging_config import get_logger, setup_logging
from .matcher import MATCH_TYPES, EnergyCurveMatcher
from .planner import SET_MODES, SetPlanner
from .repository import load_library
from .scoring import SimilarityScorer
from .sections import MelSpectrumEmbedder, SectionProfiler
from .transitions import TransitionAnalyzer
from .visualizer import render_energy_curve, render_set_plan

logger = get_logger(__name__)


def format_time(seconds):
    """Formats seconds into M:SS.S format.

    Example:
        >>> format_time(125.3)
        '2:05.3'
    """
    if seconds is None:
        return "N/A"
    minutes = int(seconds // 60)
    secs = seconds % 60
    return f"{minutes}:{secs:04.1f}"


def _fail(message):
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _open_library(path, cache_dir=None):
    cache = SimilarityCache(Path(cache_dir)) if cache_dir else None
    try:
        return load_library(path, cache=cache)
    except LibraryError as e:
        _fail(str(e))


def _require_track(library, track_id):
    track = library.fetch_track(track_id)
    if track is None:
        _fail(f"Track {track_id} not found in library")
    return track


def _load_audio(path):
    """Decode an audio file to mono samples at its native rate."""
    logger.debug("Loading audio file: %s", path)
    try:
        y, sr = librosa.load(path, sr=None, mono=True)
    except Exception as e:
        logger.error("Failed to load audio file: %s", e)
        raise AudioLoadError("Unable to load audio file") from e
    return y, sr


def _track_dict(track):
    analysis = track.analysis
    return {
        "id": track.id,
        "title": track.display_name,
        "bpm": analysis.bpm if analysis else None,
        "key": analysis.key_value if analysis else None,
        "energy": analysis.energy_global if analysis else None,
    }


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file of analysis parameter overrides",
)
@click.pass_context
def cli(ctx, verbose, config_path):
    """MixPlan - Track similarity and DJ set planning."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    config = DEFAULT_CONFIG
    if config_path:
        try:
            config = load_config(config_path)
        except (ValueError, TypeError) as e:
            _fail(f"Invalid config - {e}")
    ctx.obj["config"] = config


@cli.command()
@click.argument("library_path", type=click.Path())
@click.argument("track_id", type=int)
@click.option("--limit", default=10, type=int, help="Maximum results (default: 10)")
@click.option("--format", "output_format", default="text", type=click.Choice(["text", "json"]))
@click.pass_context
def similar(ctx, library_path, track_id, limit, output_format):
    """Rank library tracks by similarity to one track.

    Example:
        mixplan similar library.json 3 --limit 5
    """
    library = _open_library(library_path)
    track = _require_track(library, track_id)
    scorer = SimilarityScorer(ctx.obj["config"], library)
    results = scorer.find_similar_tracks(track, library.tracks, limit=limit)

    if output_format == "json":
        click.echo(json.dumps([asdict(r) for r in results], indent=2))
        return

    click.echo(f"Similar to {track.display_name}:")
    if not results:
        click.echo("No candidate tracks")
    for i, r in enumerate(results, 1):
        other = library.fetch_track(r.track_b_id)
        click.echo(f"{i}. {other.display_name} ({r.combined_score:.2f})")
        click.echo(f"   {r.explanation}")


@cli.command()
@click.argument("library_path", type=click.Path())
@click.option(
    "--cache-dir",
    type=click.Path(file_okay=False),
    default=".mixplan/cache",
    show_default=True,
    help="Similarity cache directory",
)
@click.pass_context
def pairs(ctx, library_path, cache_dir):
    """Score every track pair and store the results in the cache."""
    library = _open_library(library_path, cache_dir)
    scorer = SimilarityScorer(ctx.obj["config"], library)
    results = scorer.compute_all_similarities(library.tracks)
    click.echo(f"Computed {len(results)} similarities into {cache_dir}")


@cli.command()
@click.argument("library_path", type=click.Path())
@click.option("--mode", required=True, type=click.Choice(SET_MODES), help="Set planning mode")
@click.option("--start", "start_id", type=int, help="Track id to open the set with")
@click.option("--end", "end_id", type=int, help="Track id to close the set with")
@click.option("--format", "output_format", default="text", type=click.Choice(["text", "json"]))
@click.option("--visualize", is_flag=True, help="Render the plan as a panel")
@click.pass_context
def plan(ctx, library_path, mode, start_id, end_id, output_format, visualize):
    """Order all library tracks into a set.

    Example:
        mixplan plan library.json --mode warm_up --end 12 --visualize
    """
    library = _open_library(library_path)
    start_track = _require_track(library, start_id) if start_id is not None else None
    end_track = _require_track(library, end_id) if end_id is not None else None

    planner = SetPlanner(library=library, config=ctx.obj["config"])
    try:
        set_plan = planner.optimize_set(library.tracks, mode, start_track, end_track)
    except ValueError as e:
        _fail(str(e))

    if output_format == "json":
        output = {
            "mode": set_plan.mode,
            "tracks": [_track_dict(t) for t in set_plan.tracks],
            "transitions": [
                {
                    "from": t.from_track.id,
                    "to": t.to_track.id,
                    "score": t.score,
                    "bpm_delta": t.bpm_delta,
                    "energy_delta": t.energy_delta,
                    "key_relation": t.key_relation,
                    "explanation": t.explanation,
                }
                for t in set_plan.transitions
            ],
            "total_score": set_plan.total_score,
            "average_score": set_plan.average_score,
            "energy_flow": set_plan.energy_flow,
        }
        click.echo(json.dumps(output, indent=2))
        return

    if visualize:
        render_set_plan(set_plan)
        return

    for i, track in enumerate(set_plan.tracks, 1):
        click.echo(f"{i}. {track.display_name}")
        if i <= len(set_plan.transitions):
            t = set_plan.transitions[i - 1]
            click.echo(f"   → {t.score:.2f}: {t.explanation}")
    click.echo(f"Average transition score: {set_plan.average_score:.2f}")


@cli.command()
@click.argument("library_path", type=click.Path())
@click.argument("track_id", type=int)
@click.option("--prefer", type=click.Choice(MATCH_TYPES), help="Preferred match type")
@click.option("--limit", default=None, type=int, help="Maximum results")
@click.option("--format", "output_format", default="text", type=click.Choice(["text", "json"]))
@click.pass_context
def curves(ctx, library_path, track_id, prefer, limit, output_format):
    """Find tracks whose energy curve fits a track's curve."""
    library = _open_library(library_path)
    track = _require_track(library, track_id)
    if track.analysis is None or not track.analysis.waveform_preview:
        _fail(f"Track {track_id} has no energy curve")

    candidates = [
        (t.id, t.analysis.waveform_preview)
        for t in library.tracks
        if t.id != track.id and t.analysis is not None and t.analysis.waveform_preview
    ]
    matcher = EnergyCurveMatcher(ctx.obj["config"])
    matches = matcher.find_matches(
        track.analysis.waveform_preview, candidates, limit=limit, preferred_match_type=prefer
    )

    if output_format == "json":
        click.echo(json.dumps([asdict(m) for m in matches], indent=2))
        return

    if not matches:
        click.echo("No energy curve matches found")
    for m in matches:
        other = library.fetch_track(m.track_id)
        click.echo(
            f"{other.display_name}: {m.match_type} {m.overall_score:.2f} "
            f"(mix at {m.best_transition_point}%)"
        )
        click.echo(f"   {m.explanation}")


@cli.command()
@click.argument("audio_file", type=click.Path())
@click.option("--bpm", required=True, type=float, help="Track tempo")
@click.option("--format", "output_format", default="text", type=click.Choice(["text", "json"]))
@click.option("--visualize", is_flag=True, help="Render the beat energy curve")
@click.pass_context
def transitions(ctx, audio_file, bpm, output_format, visualize):
    """Detect mix-in and mix-out points in an audio file.

    Example:
        mixplan transitions track.wav --bpm 126
    """
    try:
        y, sr = _load_audio(audio_file)
    except AudioLoadError:
        _fail("Unable to load audio file")

    analysis = TransitionAnalyzer(ctx.obj["config"]).analyze(y, sr, bpm)

    if output_format == "json":
        click.echo(json.dumps(asdict(analysis), indent=2))
        return

    if visualize:
        render_energy_curve(analysis.energy_curve, title=Path(audio_file).name)

    click.echo("Mix-in points:")
    for p in analysis.mix_in_points:
        click.echo(f"  {format_time(p.time_seconds)} beat {p.beat_index} ({p.score:.2f}) {p.reason}")
    click.echo("Mix-out points:")
    for p in analysis.mix_out_points:
        click.echo(f"  {format_time(p.time_seconds)} beat {p.beat_index} ({p.score:.2f}) {p.reason}")
    click.echo(
        f"Recommended: mix in at beat {analysis.recommended_mix_in_beat}, "
        f"mix out at beat {analysis.recommended_mix_out_beat}"
    )


@cli.command()
@click.argument("audio_a", type=click.Path())
@click.argument("audio_b", type=click.Path())
@click.option("--format", "output_format", default="text", type=click.Choice(["text", "json"]))
@click.pass_context
def sections(ctx, audio_a, audio_b, output_format):
    """Profile two audio files section by section and compare them."""
    profiler = SectionProfiler(MelSpectrumEmbedder(), ctx.obj["config"])
    profiles = []
    for track_id, path in enumerate((audio_a, audio_b), 1):
        try:
            y, sr = _load_audio(path)
            profiles.append(profiler.profile_track(y, sr, track_id=track_id))
        except AudioLoadError:
            _fail("Unable to load audio file")
        except InvalidRangeError as e:
            _fail(str(e))

    result = profiler.compare_profiles(profiles[0], profiles[1])

    if output_format == "json":
        click.echo(json.dumps(asdict(result), indent=2))
        return

    click.echo(f"Global similarity: {result.global_similarity:.2f}")
    click.echo(f"Energy correlation: {result.energy_correlation:.2f}")
    click.echo(f"Matched sections: {len(result.section_matches)}")
    click.echo(f"Overall: {result.overall_score:.2f}")


@cli.command()
@click.argument("library_path", type=click.Path())
def locations(library_path):
    """List the music folders registered in a library."""
    library = _open_library(library_path)
    found = library.fetch_music_locations()
    if not found:
        click.echo("No music locations")
    for location in found:
        click.echo(f"{location.id}. {location.url}")


if __name__ == "__main__":
    cli()
