"""Text cleanup and hashing helpers shared across the pipeline."""

import hashlib
import re
import unicodedata


_ZERO_WIDTH = dict.fromkeys([0x200B, 0x200C, 0x200D, 0x2060, 0xFEFF, 0x00AD], None)
_LIGATURES = {
    0xFB00: "ff",
    0xFB01: "fi",
    0xFB02: "fl",
    0xFB03: "ffi",
    0xFB04: "ffl",
}
_SPACES = re.compile("[ \t%s%s-%s]+" % (
    "".join(map(chr, (0x00A0, 0x202F, 0x205F, 0x3000))), chr(0x2000), chr(0x200A),
))
_LINE_BREAK_HYPHENS = "".join(map(chr, (0x2010, 0x2011, 0x2013))) + "-"


def clean_pdf_artifacts(text: str) -> str:
    """
    Normalize text pulled out of a PDF content stream.

    Drops control and zero-width characters, expands ligatures,
    collapses runs of spaces and trims the result.

    Args:
        text: Raw extracted text

    Returns:
        Cleaned text, empty string for None
    """
    if not text:
        return ""

    text = text.translate(_ZERO_WIDTH).translate(_LIGATURES)

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = "".join(
        ch for ch in text
        if ch in "\n\t" or unicodedata.category(ch) not in ("Cc", "Cs", "Co", "Cn")
    )
    text = _SPACES.sub(" ", text)
    text = re.sub(r" *\n *", "\n", text)
    return text.strip()


def build_cache_key(value: str) -> str:
    """Short, stable content hash used for run ids and page fingerprints."""
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()
    return f"pdftr-{digest[:32]}"


def preprocess_pdf_text(text: str) -> str:
    """
    Prepare plain page text for chunked translation.

    Joins hyphenated line breaks and soft line wraps while keeping
    paragraph breaks, then fixes glued numbers and sentence ends.
    """
    if not text or not text.strip():
        return text

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = "".join(ch for ch in text if ch in "\n\t" or not unicodedata.category(ch).startswith("C"))

    text = re.sub(r"(\w)[%s]\n(\w)" % _LINE_BREAK_HYPHENS, r"\1\2", text)
    text = re.sub(r"(?<!\n)\n(?!\n)", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]{2,}", " ", text)

    # "12Chapter" -> "12 Chapter"
    text = re.sub(r"(?<=\D)(\d{1,3})(?=[^\W\d_])", r"\1 ", text)
    text = re.sub(r"^(\d{1,3})(?=[^\W\d_])", r"\1 ", text, flags=re.MULTILINE)
    text = re.sub(r"([.!?])(?=[A-ZÀ-Þ])", r"\1 ", text)

    return text.strip()


def sanitize_model_output(text: str) -> str:
    """Strip markdown fences and surrounding whitespace from model output."""
    if not text or not text.strip():
        return text

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"^\s*```[a-zA-Z]*\s*\n", "", text)
    text = re.sub(r"\n\s*```\s*$", "", text)
    return text.strip()


def extract_json_array(text: str) -> str:
    """
    Cut the outermost JSON array out of a model response.

    Raises:
        ValueError: If the response does not contain an array
    """
    trimmed = (text or "").strip()
    trimmed = re.sub(r"^```(?:json)?", "", trimmed, flags=re.IGNORECASE).strip()
    trimmed = re.sub(r"```$", "", trimmed).strip()

    start = trimmed.find("[")
    end = trimmed.rfind("]")
    if start < 0 or end < start:
        raise ValueError("Model output does not contain a JSON array")

    return trimmed[start:end + 1]
