"""Rich terminal rendering of energy curves and set plans."""

from typing import Optional, Sequence

import numpy as np
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from mixplan.models import SetPlan

BLOCKS = " ▁▂▃▄▅▆▇█"
COLORS = ["blue", "cyan", "green", "yellow", "red"]


def _level_color(level: float) -> str:
    """Map normalized level (0-1) to a color name."""
    idx = min(int(level * len(COLORS)), len(COLORS) - 1)
    return COLORS[max(idx, 0)]


def _resample(curve: Sequence[float], width: int) -> np.ndarray:
    values = np.nan_to_num(np.asarray(curve, dtype=float))
    if len(values) == 0:
        return np.zeros(width)
    if len(values) != width:
        indices = np.linspace(0, len(values) - 1, width, dtype=int)
        values = values[indices]
    return np.clip(values, 0.0, 1.0)


def build_sparkline(curve: Sequence[float], width: int = 60) -> Text:
    """Build a Rich Text line of colored Unicode blocks for a 0-1 curve."""
    text = Text()
    for level in _resample(curve, width):
        idx = min(int(level * (len(BLOCKS) - 1)), len(BLOCKS) - 1)
        text.append(BLOCKS[idx], style=_level_color(level))
    return text


def render_energy_curve(
    curve: Sequence[float], title: str = "Energy", width: int = 60, console: Optional[Console] = None
) -> None:
    """Render an energy curve sparkline inside a panel."""
    console = console or Console()
    console.print(Panel(build_sparkline(curve, width), title=title, expand=False))


def _delta_style(delta: float) -> str:
    if delta > 0:
        return "green"
    if delta < 0:
        return "red"
    return "dim"


def render_set_plan(plan: SetPlan, console: Optional[Console] = None) -> None:
    """Render a set plan: ordered tracks, transition deltas and an energy flow line.

    Args:
        plan: SetPlan to render.
        console: Console to print to. A new stdout console if not provided.
    """
    console = console or Console()
    content = Text()

    for i, track in enumerate(plan.tracks):
        analysis = track.analysis
        content.append(f"{i + 1:>2}. ", style="bold")
        content.append(track.display_name)
        if analysis is not None:
            content.append(
                f"  {analysis.bpm:.1f} BPM  {analysis.key_value}  E{analysis.energy_global}",
                style="dim",
            )
        content.append("\n")

        if i < len(plan.transitions):
            t = plan.transitions[i]
            content.append("    ↓ ")
            content.append(f"{t.score:.2f}", style=_level_color(t.score))
            content.append(f"  Δ{t.bpm_delta:+.1f} BPM", style=_delta_style(t.bpm_delta))
            content.append(f"  energy {t.energy_delta:+d}", style=_delta_style(t.energy_delta))
            content.append(f"  {t.key_relation}\n", style="magenta")
            content.append(f"      {t.explanation}\n", style="dim")

    if plan.energy_flow:
        content.append("\nEnergy flow: ")
        flow = [e / 10.0 for e in plan.energy_flow]
        content.append_text(build_sparkline(flow, len(flow)))
        content.append("\n")

    content.append(
        f"\nTotal {plan.total_score:.2f}  Average {plan.average_score:.2f}", style="bold"
    )

    title = f"Set plan ({plan.mode}, {len(plan.tracks)} tracks)"
    console.print(Panel(content, title=title, expand=False))
