from __future__ import annotations

from typing import Callable, Dict, List, Literal

from .params import AgeParams

PromptPolicy = Literal["standard", "emphasized"]

BASE_INSTRUCTION = "Edit the provided portrait photo."
CLOSING_INSTRUCTION = "Do not add extra people, text, logos, or stylization. Keep it photorealistic."


def _number(value: float) -> str:
    """Render 50.0 as ``50`` and 12.5 as ``12.5``."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _age_clause(params: AgeParams) -> str:
    direction = "older" if params.age_delta >= 0 else "younger"
    years = abs(params.age_delta)
    return f"Make the subject appear {years} years {direction} with intensity {params.intensity:.2f}."


def _attribute_clauses(params: AgeParams) -> List[str]:
    return [
        f"Hair color: {params.hair_color}.",
        f"Glasses: {params.glasses}.",
        f"Baldness level: {_number(params.baldness)}/100.",
        f"Blemish correction level: {_number(params.blemish_fix)}/100.",
        f"Skin texture shift: {_number(params.skin_texture)} on a scale from -100 to 100.",
    ]


def _standard(params: AgeParams) -> List[str]:
    identity = (
        "Preserve the subject's identity and expression."
        if params.preserve_identity
        else "Allow moderate identity changes while keeping a photorealistic result."
    )
    return [BASE_INSTRUCTION, _age_clause(params), *_attribute_clauses(params), identity, CLOSING_INSTRUCTION]


def _emphasized(params: AgeParams) -> List[str]:
    identity = (
        "Preserve identity and expression, but do not under-apply the requested age change."
        if params.preserve_identity
        else "Allow moderate identity changes while keeping a photorealistic result."
    )
    return [
        BASE_INSTRUCTION,
        _age_clause(params),
        "The age transformation must be clearly visible and noticeable at first glance.",
        "Apply realistic age cues (skin detail, facial contours, hair aging/de-aging cues) "
        "consistent with the requested direction.",
        *_attribute_clauses(params),
        f"Requested output quality profile: {params.quality}.",
        identity,
        CLOSING_INSTRUCTION,
    ]


_POLICIES: Dict[str, Callable[[AgeParams], List[str]]] = {
    "standard": _standard,
    "emphasized": _emphasized,
}


def build_prompt(params: AgeParams, policy: PromptPolicy = "emphasized") -> str:
    """
    Render validated parameters into the editing instruction sent upstream.

    The output depends only on ``params`` and ``policy``; identical inputs give
    byte-identical prompts.
    """
    try:
        render = _POLICIES[policy]
    except KeyError as exc:
        raise ValueError(f"Unknown prompt policy '{policy}'") from exc
    return " ".join(render(params))
