"""Persona description and the preamble formatter.

The persona is loaded and validated once at startup. ``format_persona``
flattens it into the instruction block that seeds every conversation handle.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from personachat.errors import ConfigurationError

logger = logging.getLogger(__name__)

STANDING_DIRECTIVES = (
    "Always stay in character",
    "Be empathetic and understanding",
    "Use natural, conversational language",
    "Maintain appropriate boundaries",
    "Be helpful while staying true to your personality",
    "Never break character or refer to yourself as an AI",
)

TraitValue = Union[str, int, float, list[str], dict[str, Union[str, int, float, list[str]]]]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class Member(_Frozen):
    name: str
    roles: list[str]


class Organization(_Frozen):
    name: str
    founded: str
    founder: str
    description: str
    members: dict[str, list[Member]] = Field(default_factory=dict)


class Emotions(_Frozen):
    default: list[str]
    when_helping: str
    when_explaining: str
    when_joking: str


class Passion(_Frozen):
    topic: str
    description: str


class Passions(_Frozen):
    primary: list[Passion]
    driving_forces: list[str]
    life_goals: list[str]


class LanguageStyle(_Frozen):
    formality: str
    tone: str
    vocabulary: str
    quirks: list[str]


class Greetings(_Frozen):
    default: str
    returning: str
    morning: str
    evening: str


class PersonaDescription(_Frozen):
    name: str = Field(min_length=1)
    role: str = Field(min_length=1)
    age: int
    pronouns: str
    required: list[str] = Field(min_length=1)
    background: str
    organization: Organization
    traits: list[str] = Field(min_length=1)
    physical_traits: dict[str, TraitValue]
    emotions: Emotions
    interests: dict[str, dict[str, Union[str, list[str]]]]
    passions: Passions
    language_style: LanguageStyle
    greetings: Greetings
    user_name: str = "User"
    directives: list[str] = Field(default_factory=list)


def parse_persona(data: Mapping[str, Any]) -> PersonaDescription:
    """Validate a raw mapping, raising ConfigurationError on any schema problem."""
    try:
        return PersonaDescription.model_validate(dict(data))
    except pydantic.ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise ConfigurationError(f"Invalid persona, check fields: {', '.join(fields)}") from exc


DEFAULT_PERSONA_PATH = Path(__file__).resolve().parent / "data" / "persona.json"


def load_persona(path: str | Path | None = None) -> PersonaDescription:
    """Read a persona JSON document, the packaged default when no path is given."""
    path = Path(path) if path is not None else DEFAULT_PERSONA_PATH
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"Cannot read persona file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Persona file {path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Persona file {path} must contain a JSON object")
    persona = parse_persona(data)
    logger.info("Loaded persona %r from %s", persona.name, path)
    return persona


def _join(value: Any) -> str:
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value)


def _flatten(mapping: Mapping[str, Any], indent: str = "") -> list[str]:
    lines: list[str] = []
    for key, value in mapping.items():
        if isinstance(value, Mapping):
            lines.append(f"{indent}{key}:")
            lines.extend(_flatten(value, indent + "  "))
        else:
            lines.append(f"{indent}{key}: {_join(value)}")
    return lines


def format_persona(persona: PersonaDescription | Mapping[str, Any]) -> str:
    """Render the persona as a line-oriented instruction block."""
    if not isinstance(persona, PersonaDescription):
        persona = parse_persona(persona)

    org = persona.organization
    lines = [
        f"You are {persona.name}, a {persona.age}-year-old {persona.role}. "
        f"Your pronouns are {persona.pronouns}.",
        "",
        "Required Behaviors:",
        *persona.required,
        "",
        "Background:",
        persona.background,
        "",
        f"{org.name}:",
        f"Founded: {org.founded}",
        f"Founder: {org.founder}",
        f"Description: {org.description}",
    ]
    if org.members:
        lines += ["", "Members:"]
    for group, members in org.members.items():
        lines.append(f"{group.replace('_', ' ').title()}:")
        lines.extend(f"{m.name} - {', '.join(m.roles)}" for m in members)

    lines += ["", "Personality Traits:", *persona.traits]
    lines += ["", "Physical Characteristics:", *_flatten(persona.physical_traits)]

    emotions = persona.emotions
    lines += [
        "",
        "Emotional Characteristics:",
        f"Default emotions: {_join(emotions.default)}",
        f"When helping: {emotions.when_helping}",
        f"When explaining: {emotions.when_explaining}",
        f"When joking: {emotions.when_joking}",
    ]

    lines += ["", "Interests:"]
    for category, details in persona.interests.items():
        lines.append(f"{category}:")
        lines.extend(_flatten(details, "  "))

    passions = persona.passions
    lines += ["", "Passions:", "Primary:"]
    lines.extend(f"- {p.topic}: {p.description}" for p in passions.primary)
    lines += ["", "Driving Forces:", *(f"- {f}" for f in passions.driving_forces)]
    lines += ["", "Life Goals:", *(f"- {g}" for g in passions.life_goals)]

    style = persona.language_style
    lines += [
        "",
        "Language Style:",
        f"Formality: {style.formality}",
        f"Tone: {style.tone}",
        f"Vocabulary: {style.vocabulary}",
        "Quirks:",
        *(f"- {q}" for q in style.quirks),
    ]

    greetings = persona.greetings
    lines += [
        "",
        "Greetings:",
        f"Default: {greetings.default}",
        f"Returning: {greetings.returning}",
        f"Morning: {greetings.morning}",
        f"Evening: {greetings.evening}",
    ]

    directives = [*STANDING_DIRECTIVES, *persona.directives]
    lines += ["", "Additional Instructions:"]
    lines.extend(f"{i}. {d}" for i, d in enumerate(directives, start=1))

    return "\n".join(lines).strip()
