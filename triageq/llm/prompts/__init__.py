"""
Prompt templates.

Templates live beside this module as .txt files and are filled with
str.format, so literal JSON braces in them are doubled.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

PROMPTS_DIR = Path(__file__).parent


class PromptLoader:
    """Load and cache prompt templates from files"""

    def __init__(self) -> None:
        self._cache: dict[str, str] = {}

    def load_prompt(self, prompt_name: str) -> str:
        if prompt_name not in self._cache:
            prompt_path = PROMPTS_DIR / f"{prompt_name}.txt"
            if not prompt_path.exists():
                raise FileNotFoundError(f"Prompt file not found: {prompt_path}")
            self._cache[prompt_name] = prompt_path.read_text(encoding="utf-8")
        return self._cache[prompt_name]

    def render(self, prompt_name: str, **kwargs: Any) -> str:
        return self.load_prompt(prompt_name).format(**kwargs)


_loader = PromptLoader()


def render_prompt(prompt_name: str, **kwargs: Any) -> str:
    return _loader.render(prompt_name, **kwargs)


def load_prompt(prompt_name: str) -> str:
    return _loader.load_prompt(prompt_name)
