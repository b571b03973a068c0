"""Behavioral personas used to bias what the vision model treats as friction."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Union


class Persona(Enum):
    PERFECTIONIST = "The Perfectionist"
    FIRST_TIMER = "The First-Timer"
    POWER_USER = "The Power User"
    DEFAULT = "Default"

    @classmethod
    def parse(cls, value: Union["Persona", str, None]) -> "Persona":
        """Resolve a persona name (case/space-insensitive); unknown names map to DEFAULT."""
        if isinstance(value, Persona):
            return value
        key = " ".join((value or "").split()).lower()
        for persona in cls:
            if persona.value.lower() == key or persona.name.lower() == key.replace(" ", "_"):
                return persona
        return cls.DEFAULT

    @property
    def label(self) -> str:
        return self.value


# what the persona notices when auditing a screen
AUDIT_LENSES: Dict[Persona, str] = {
    Persona.PERFECTIONIST: (
        "You are OBSESSED with visual polish, alignment, and consistency. Look for tiny spacing "
        "errors, inconsistent font weights, or micro-interactions that feel \"cheap\"."
    ),
    Persona.FIRST_TIMER: (
        "You are confused and easily overwhelmed. Look for jargon, unclear navigation, \"blank\" "
        "states, or any place where a user might ask \"What do I do now?\"."
    ),
    Persona.POWER_USER: (
        "You want speed and efficiency. Look for slow animations, redundant confirmation dialogs, "
        "or lack of keyboard shortcuts that hinder a professional workflow."
    ),
    Persona.DEFAULT: "You are a balanced user looking for general friction points.",
}

# how the persona picks the next thing to click
NAVIGATION_BEHAVIORS: Dict[Persona, str] = {
    Persona.PERFECTIONIST: (
        "You prioritize elements that are perfectly aligned and clearly labeled. "
        "You avoid anything that looks like \"clutter\"."
    ),
    Persona.FIRST_TIMER: (
        "You are looking for the most obvious, high-contrast button that promises guidance or "
        "progress. You are wary of advanced or technical options."
    ),
    Persona.POWER_USER: (
        "You seek the fastest route to the goal. You look for \"Quick\" actions, keyboard-friendly "
        "paths, or bypassing redundant steps."
    ),
    Persona.DEFAULT: "You are a standard user looking for the logical next step.",
}


def audit_lens(persona: Union[Persona, str, None]) -> str:
    return AUDIT_LENSES[Persona.parse(persona)]


def navigation_behavior(persona: Union[Persona, str, None]) -> str:
    return NAVIGATION_BEHAVIORS[Persona.parse(persona)]
