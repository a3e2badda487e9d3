"""
Gemini text completion for smart fill.
Configured by LLM_API_KEY / LLM_MODEL; the SDK is synchronous, so calls run in the default executor.
"""
import asyncio
import logging
import os
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"
LLM_MODEL = os.environ.get("LLM_MODEL", DEFAULT_MODEL)
LLM_TIMEOUT_SECONDS = float(os.environ.get("LLM_TIMEOUT_SECONDS", "30"))


def _api_key() -> Optional[str]:
    return (os.environ.get("LLM_API_KEY") or "").strip() or None


def is_configured() -> bool:
    return _api_key() is not None


def _generation_config(json_output: bool) -> Dict[str, Any]:
    # Extraction wants deterministic output
    config: Dict[str, Any] = {"temperature": 0.1}
    if json_output:
        config["response_mime_type"] = "application/json"
    return config


def _sync_complete(system_prompt: str, user_text: str, model: str, json_output: bool) -> str:
    import google.generativeai as genai

    api_key = _api_key()
    if not api_key:
        raise ValueError("LLM_API_KEY not found in environment")
    genai.configure(api_key=api_key)
    if not model or "gemini" not in model:
        logger.warning(f"LLM_MODEL {model!r} is not a Gemini model; using {DEFAULT_MODEL}")
        model = DEFAULT_MODEL
    gemini = genai.GenerativeModel(model, system_instruction=system_prompt)
    response = gemini.generate_content(
        user_text,
        generation_config=_generation_config(json_output),
        request_options={"timeout": LLM_TIMEOUT_SECONDS},
    )
    if not response or not response.text:
        raise ValueError("Empty response from LLM")
    return response.text


async def chat(
    system_prompt: str,
    user_text: str,
    model: Optional[str] = None,
    json_output: bool = False,
) -> str:
    """Single-turn completion; raises on SDK errors or an empty reply."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        None,
        lambda: _sync_complete(system_prompt, user_text, model or LLM_MODEL, json_output),
    )
