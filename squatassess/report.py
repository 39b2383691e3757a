"""
Persist an assessment: report.json, report.html, recorded frames and a per-view plot.
"""
from __future__ import annotations

import html
import json
import logging
import os
from typing import Any, Optional, Sequence

from .config import CONFIDENCE_GATE
from .keypoints import Frame, frame_from_dict, frame_to_dict
from .metrics import RISK_LIBRARY, MetricsReport
from .reps import hip_height, knee_angle

logger = logging.getLogger(__name__)


def save_frames(path: str, front: Sequence[Frame], side: Sequence[Frame]) -> None:
    with open(path, "w") as f:
        json.dump(
            {
                "front": [frame_to_dict(fr) for fr in front],
                "side": [frame_to_dict(fr) for fr in side],
            },
            f,
            indent=2,
        )


def load_frames(path: str) -> tuple[list[Frame], list[Frame]]:
    with open(path) as f:
        data = json.load(f)
    front = [frame_from_dict(d) for d in data.get("front", [])]
    side = [frame_from_dict(d) for d in data.get("side", [])]
    return front, side


def render_html(report: MetricsReport, source: str, rep_counts: Optional[dict[str, int]] = None) -> str:
    data = report.to_dict()
    lines = [
        "<!DOCTYPE html>",
        "<html><head><meta charset='utf-8'><title>Overhead Squat Assessment</title></head><body>",
        "<h1>Overhead Squat Assessment</h1>",
        f"<p><b>Source:</b> {html.escape(source)}</p>",
    ]
    if rep_counts:
        counted = ", ".join(f"{view} {n}" for view, n in rep_counts.items())
        lines.append(f"<p><b>Squats counted:</b> {html.escape(counted)}</p>")
    if report.incomplete:
        lines.append(
            "<p><b>Incomplete:</b> not enough frames were recorded in one of the views. "
            "Retake the assessment with your whole body in frame.</p>"
        )
        lines.append("</body></html>")
        return "\n".join(lines)

    lines.append(f"<p><b>Tier:</b> {data['tier']} (injury risk flags: {data['injuryRisk']})</p>")
    lines.append("<table border='1'><tr><th>Score</th><th>Value</th></tr>")
    for label, key in (("Mobility", "mobility"), ("Compensation", "compensation"), ("Symmetry", "symmetry")):
        lines.append(f"<tr><td>{label}</td><td>{data[key]}</td></tr>")
    lines.append("</table>")

    if report.flags:
        lines.append("<h2>Movement flags</h2><ul>")
        for flag in report.flags:
            entry = RISK_LIBRARY[flag]
            count = report.flag_count(flag)
            lines.append(
                f"<li><b>{html.escape(flag)}</b> ({count} frames): "
                f"{html.escape(entry['explanation'])} "
                f"<i>{html.escape(entry['recommendation'])}</i></li>"
            )
        lines.append("</ul>")
    else:
        lines.append("<p>No compensations detected. Great squat!</p>")
    lines.append("</body></html>")
    return "\n".join(lines)


def _plot_signals(output_dir: str, front: Sequence[Frame], side: Sequence[Frame]) -> None:
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    fig, axes = plt.subplots(2, 1, figsize=(7, 6), sharex=False)
    for ax, (view, frames) in zip(axes, (("front", front), ("side", side))):
        t = [(fr.timestamp_ms - frames[0].timestamp_ms) / 1000.0 for fr in frames] if frames else []
        knee = [knee_angle(fr, CONFIDENCE_GATE) for fr in frames]
        hip = [hip_height(fr, CONFIDENCE_GATE) for fr in frames]
        ax.plot(t, [v if v is not None else float("nan") for v in knee], "o-", ms=2, label="knee angle (deg)")
        ax2 = ax.twinx()
        ax2.plot(t, [v if v is not None else float("nan") for v in hip], "r-", lw=1, label="hip y")
        ax2.invert_yaxis()
        ax.set_title(f"{view} view")
        ax.set_xlabel("time (s)")
        ax.set_ylabel("knee angle (deg)")
        ax2.set_ylabel("hip y")
    fig.tight_layout()
    fig.savefig(os.path.join(output_dir, "signals.png"), dpi=100)
    plt.close(fig)


def write_report(
    report: MetricsReport,
    output_dir: str,
    front: Sequence[Frame],
    side: Sequence[Frame],
    source: str = "live",
    rep_counts: Optional[dict[str, int]] = None,
) -> dict[str, Any]:
    """Write report.json, report.html, frames.json and signals.png. Returns the report dict."""
    os.makedirs(output_dir, exist_ok=True)
    data = report.to_dict()
    logger.info(
        "report input: source=%s front=%s side=%s tier=%s flags=%s",
        source, len(front), len(side), data["tier"], data["flags"],
    )
    with open(os.path.join(output_dir, "report.json"), "w") as f:
        json.dump({"source": source, "rep_counts": rep_counts or {}, **data}, f, indent=2)
    with open(os.path.join(output_dir, "report.html"), "w") as f:
        f.write(render_html(report, source, rep_counts))
    save_frames(os.path.join(output_dir, "frames.json"), front, side)
    try:
        _plot_signals(output_dir, front, side)
    except Exception as e:
        logger.warning("could not write signals.png: %s", e)
    return data
