"""Prompt assembly for the removal agent."""

import re
from importlib import resources
from pathlib import Path
from typing import Optional

from ..models.task import KeepBranch

_NO_CONTEXT = "No additional context provided. Read the README and explore the codebase."


def to_camel_case(flag_key: str) -> str:
    return re.sub(r"-([a-z])", lambda m: m.group(1).upper(), flag_key)


def to_screaming_snake(flag_key: str) -> str:
    return flag_key.replace("-", "_").upper()


def read_context_files(directory: Path) -> str:
    """Concatenate the visible ``*.md`` files in ``directory`` (not recursive)."""
    directory = Path(directory)
    if not directory.is_dir():
        return ""
    sections = []
    for path in sorted(directory.iterdir()):
        if path.is_file() and path.suffix == ".md" and not path.name.startswith("."):
            sections.append(f"## {path.name}\n\n{path.read_text(encoding='utf-8')}")
    return "\n\n---\n\n".join(sections)


def load_template() -> str:
    return resources.files("bye_bye_flag").joinpath("prompts/remove_flag.md").read_text(encoding="utf-8")


def generate_prompt(
    flag_key: str,
    keep_branch: KeepBranch,
    global_context: Optional[str] = None,
    repo_context: Optional[str] = None,
    template: Optional[str] = None,
) -> str:
    """Fill the removal prompt template for one flag."""
    remove_branch = "disabled" if keep_branch == "enabled" else "enabled"

    context = ""
    if global_context:
        context += f"### Global Context (how repositories relate)\n\n{global_context}\n\n"
    if repo_context:
        context += f"### Repository-Specific Context\n\n{repo_context}"
    if not context:
        context = _NO_CONTEXT

    replacements = {
        "{{flagKey}}": flag_key,
        "{{keepBranch}}": keep_branch,
        "{{removeBranch}}": remove_branch,
        "{{flagKeyCamel}}": to_camel_case(flag_key),
        "{{flagKeyScreaming}}": to_screaming_snake(flag_key),
        "{{repoContext}}": context,
    }
    prompt = template if template is not None else load_template()
    for placeholder, value in replacements.items():
        prompt = prompt.replace(placeholder, value)
    return prompt
