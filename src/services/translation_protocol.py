"""Prompts and response parsing shared by the translation providers."""

import json
from dataclasses import dataclass, field
from typing import List

from models.data_models import TextBlock, TranslatedTextItem
from utils.error_handler import MalformedResponseError
from utils.text_utils import clean_pdf_artifacts, extract_json_array


@dataclass
class BatchResponse:
    """What a provider returned for one batch of blocks."""
    items: List[TranslatedTextItem] = field(default_factory=list)
    truncated: bool = False


def build_block_prompt(blocks: List[TextBlock], target_language: str, with_page_context: bool) -> str:
    """
    Build the instruction for translating a batch of blocks.

    Args:
        blocks: Blocks to translate
        target_language: Language to translate into
        with_page_context: Whether the rendered page is attached

    Returns:
        Prompt text ending with the blocks as a JSON array
    """
    payload = [
        {"block_id": b.block_id, "original_text": clean_pdf_artifacts(b.original_text)}
        for b in blocks
    ]

    context_rule = (
        "Use the attached PDF page to resolve broken words and encoding artifacts visually. "
        if with_page_context else ""
    )

    return (
        "You are a professional document translator. "
        f"Translate all block texts into {target_language}. "
        f"{context_rule}"
        "Return ONLY a valid JSON array with objects in this exact shape: "
        '[{"block_id": "...", "original_text": "...", "translated_text": "..."}]. '
        "Keep every block_id unchanged. Do not add markdown fences, comments, or extra keys.\n\n"
        "Blocks to translate (JSON):\n"
        + json.dumps(payload, ensure_ascii=False)
    )


def build_text_prompt(text: str, target_language: str) -> str:
    """Instruction for translating a chunk of flat document text."""
    return (
        f"Translate the following text into {target_language}.\n\n"
        "IMPORTANT RULES:\n"
        "1. Preserve paragraph breaks, numbers and punctuation\n"
        "2. Output ONLY the translation, without comments or explanations\n"
        "3. Do not wrap the output in markdown fences\n\n"
        f"Text to translate:\n{text}"
    )


def parse_translation_items(model_text: str) -> List[TranslatedTextItem]:
    """
    Parse a provider's JSON answer into translated items.

    Rows without a block id or without a translation are dropped.

    Raises:
        MalformedResponseError: If the output is not a usable JSON array
    """
    try:
        rows = json.loads(extract_json_array(model_text))
    except ValueError as e:
        raise MalformedResponseError(f"Unparseable translation output: {str(e)}") from e

    if not isinstance(rows, list) or not rows:
        raise MalformedResponseError("Provider returned an empty translation array")

    items: List[TranslatedTextItem] = []
    for row in rows:
        if not isinstance(row, dict):
            continue

        block_id = str(row.get("block_id") or "").strip()
        translated = clean_pdf_artifacts(str(row.get("translated_text") or ""))
        if not block_id or not translated:
            continue

        items.append(TranslatedTextItem(
            block_id=block_id,
            original_text=str(row.get("original_text") or "").strip(),
            translated_text=translated,
        ))

    return items
