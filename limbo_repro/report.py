"""
Markdown report comparing scenario runs across backends
"""

from datetime import datetime
from pathlib import Path
from typing import List, Optional

from limbo_repro.harness import ScenarioReport
from limbo_repro.outcomes import describe

STEPS = [
    ("racing_conditioned_copy", "Racing copy"),
    ("conditioned_overwrite_with_buffering", "Buffered overwrite"),
    ("force_overwrite", "Force overwrite"),
]


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


def generate_comparison_report(
    reports: List[ScenarioReport],
    output_file: Optional[Path] = None,
) -> str:
    """Render the comparison; also written to output_file when given"""

    lines = []

    lines.append("# Conditional Upload Limbo Report")
    lines.append("")
    lines.append(f"**Generated:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    lines.append("")

    lines.append("## Summary")
    lines.append("")
    lines.append(
        "| Backend | "
        + " | ".join(label for _, label in STEPS)
        + " | Limbo reproduced | Workaround escaped | Verified |"
    )
    lines.append("|---------|" + "|".join(["-------"] * (len(STEPS) + 3)) + "|")

    for report in reports:
        row = [f"**{report.backend}**"]
        for step, _ in STEPS:
            record = report.record(step)
            row.append(describe(record.outcome) if record and record.outcome else "N/A")
        row.append(_yes_no(report.limbo_reproduced))
        row.append(_yes_no(report.workaround_escaped_limbo))
        row.append(_yes_no(report.verified))
        lines.append("| " + " | ".join(row) + " |")
    lines.append("")

    lines.append("## Step Narration")
    lines.append("")
    for report in reports:
        lines.append(f"### {report.backend}")
        lines.append("")
        lines.append("```")
        for record in report.records:
            lines.append(f"{record.step:40} [{record.state.value}] {record.message}")
        lines.append("```")
        lines.append("")

    reproduced = [r.backend for r in reports if r.limbo_reproduced]
    lines.append("## Conclusion")
    lines.append("")
    if reproduced:
        lines.append(f"Limbo state reproduced on: {', '.join(reproduced)}.")
    else:
        lines.append("Limbo state was not reproduced on any backend.")
    unverified = [r.backend for r in reports if not r.verified]
    if unverified:
        lines.append("")
        lines.append(
            f"Destination did not end as a plain copy of the source on: {', '.join(unverified)}."
        )
    lines.append("")

    report_text = "\n".join(lines)

    if output_file is not None:
        with open(output_file, "w") as f:
            f.write(report_text)

    return report_text
