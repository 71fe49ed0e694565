"""Prompt Refiner — asks a model to rewrite a prompt whose output missed its target format.

The refinement goes through the normal ``send_request`` path, so it gets
the same provider selection, retry and fallback as any other request.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from llm_conductor.gateway.types import GenerationParams, GenerationRequest, GenerationResult

logger = logging.getLogger(__name__)

REFINER_SYSTEM_PROMPT = "You are a JSON-free prompt refiner."
REFINER_TEMPERATURE = 0.2

_INSTRUCTION_TEMPLATE = """\
You are an expert prompt engineer. Your job is to improve a user prompt so that the AI model \
will produce exactly the desired output format.

Original Prompt:
{original_prompt}

Failed LLM Response:
{failed_response}

Desired Output Specification:
{desired_specification}

Please output only the improved prompt, with no additional commentary or reasoning, so that \
when the model receives it, it will follow the specification precisely.
"""


def build_refinement_request(
    original_prompt: str,
    failed_response: str,
    desired_specification: str,
    label: str = "refine-prompt",
) -> GenerationRequest:
    prompt = _INSTRUCTION_TEMPLATE.format(
        original_prompt=original_prompt,
        failed_response=failed_response,
        desired_specification=desired_specification,
    )
    return GenerationRequest(
        prompt=prompt,
        system_prompt=REFINER_SYSTEM_PROMPT,
        params=GenerationParams(temperature=REFINER_TEMPERATURE),
        label=label,
    )


async def refine_prompt(
    send_request: Callable[[GenerationRequest], Awaitable[GenerationResult]],
    original_prompt: str,
    failed_response: str,
    desired_specification: str,
) -> str:
    """Return an improved prompt. Single shot: the caller decides whether to retry."""
    request = build_refinement_request(original_prompt, failed_response, desired_specification)
    try:
        result = await send_request(request)
    except Exception as e:
        logger.error("Prompt refinement failed: %s", e)
        raise
    logger.info("Generated improved prompt (%d chars)", len(result.text))
    return result.text.strip()
