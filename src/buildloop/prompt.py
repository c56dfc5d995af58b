"""Iteration prompt for the agent."""

from __future__ import annotations

from pathlib import Path

# Printed by the agent once every unit in the plan is done
COMPLETE_SIGNAL = "<promise>COMPLETE</promise>"


def build_iteration_prompt(
    plan_file: Path,
    progress_file: Path,
    typecheck_cmd: str,
    test_cmd: str,
) -> str:
    """Build the single-line prompt sent on every iteration."""
    plan_path = Path(plan_file).resolve()
    progress_path = Path(progress_file).resolve()

    parts = [
        f"@{plan_path} @{progress_path}",
        "1. Find the highest-priority feature to work on and work only on that feature.",
        "This should be the one YOU decide has the highest priority - "
        "not necessarily the first in the list.",
        f"2. Check that the types check via {typecheck_cmd} and that the tests pass via {test_cmd}.",
        "3. Update the PRD with the work that was done.",
        "4. Append your progress to the progress.txt file.",
        "Use this to leave a note for the next person working in the codebase.",
        "5. Make a git commit of that feature.",
        "ONLY WORK ON A SINGLE FEATURE.",
        f"If, while implementing the feature, you notice the PRD is complete, output {COMPLETE_SIGNAL}.",
    ]
    return " ".join(parts) + " "


def with_guidance(prompt: str, guidance: str) -> str:
    """Prepend recovery guidance to a prompt."""
    if not guidance:
        return prompt
    return f"{guidance}\n\n{prompt}"
