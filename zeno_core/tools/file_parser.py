"""上传文件文本抽取。

支持 PDF / TXT / CSV / Markdown，失败时抛出带 code 的 UploadError：
UNSUPPORTED_TYPE / FILE_TOO_LARGE / EMPTY_FILE / PARSE_FAILED。
"""

import csv
import io
from dataclasses import dataclass
from typing import List, Optional, Tuple

from pypdf import PdfReader

from zeno_core.domain.exceptions import UploadError


MAX_FILE_SIZE = 10 * 1024 * 1024
CSV_PREVIEW_ROWS = 50
SUPPORTED_TYPES_LABEL = ["PDF (.pdf)", "Text (.txt)", "CSV (.csv)", "Markdown (.md)"]

_CSV_MIME_TYPES = {"text/csv", "application/csv", "application/vnd.ms-excel"}


@dataclass
class ParsedFile:
    text: str
    page_count: int
    word_count: int
    mime_type: str
    original_name: str


def _extension(filename: str) -> str:
    if "." not in (filename or ""):
        return ""
    return filename.rsplit(".", 1)[-1].lower()


def normalized_type(mime_type: str, filename: str) -> Optional[str]:
    """先看 MIME，再按扩展名兜底；返回 pdf / csv / markdown / text 或 None。"""

    ext = _extension(filename)
    mime = (mime_type or "").lower()

    if mime == "application/pdf":
        return "pdf"
    if mime in _CSV_MIME_TYPES:
        return "csv"
    if mime == "text/markdown":
        return "markdown"
    if mime == "text/plain":
        if ext == "csv":
            return "csv"
        if ext in ("md", "markdown"):
            return "markdown"
        return "text"

    if ext == "pdf":
        return "pdf"
    if ext == "csv":
        return "csv"
    if ext in ("md", "markdown"):
        return "markdown"
    if ext == "txt":
        return "text"
    return None


def is_supported_file_type(mime_type: str, filename: str) -> bool:
    return normalized_type(mime_type, filename) is not None


def _parse_pdf(data: bytes) -> Tuple[str, int]:
    reader = PdfReader(io.BytesIO(data))
    texts: List[str] = []
    for page in reader.pages:
        t = page.extract_text() or ""
        if t:
            texts.append(t)
    return "\n\n".join(texts), max(len(reader.pages), 1)


def format_csv(text: str) -> str:
    """把 CSV 转成便于模型阅读的列表，只展示前 50 行。

    按 RFC 4180 解析，带引号的字段可以包含逗号与换行。
    """

    records = [r for r in csv.reader(io.StringIO(text)) if any(c.strip() for c in r)]
    if not records:
        return text

    headers = [h.strip() for h in records[0]]
    rows = records[1:]

    out = [
        f"**CSV Data** ({len(rows)} rows, {len(headers)} columns)\n\n",
        f"**Columns:** {', '.join(headers)}\n\n",
    ]
    for row in rows[:CSV_PREVIEW_ROWS]:
        values = [v.strip() for v in row]
        cells = [f"{h}: {values[i] if i < len(values) and values[i] else 'N/A'}" for i, h in enumerate(headers)]
        out.append(f"- {' | '.join(cells)}\n")
    if len(rows) > CSV_PREVIEW_ROWS:
        out.append(f"\n... and {len(rows) - CSV_PREVIEW_ROWS} more rows.\n")
    return "".join(out)


def parse_file(data: bytes, mime_type: str, filename: str, max_bytes: int = MAX_FILE_SIZE) -> ParsedFile:
    if len(data) > max_bytes:
        size_mb = len(data) / (1024 * 1024)
        limit_mb = max_bytes / (1024 * 1024)
        raise UploadError(
            code="FILE_TOO_LARGE",
            message=f"File too large ({size_mb:.1f}MB). Maximum allowed: {limit_mb:g}MB.",
        )
    if not data:
        raise UploadError(code="EMPTY_FILE", message="File is empty.")

    kind = normalized_type(mime_type, filename)
    if kind is None:
        ext = _extension(filename) or "unknown"
        raise UploadError(
            code="UNSUPPORTED_TYPE",
            message=f"Unsupported file type: .{ext} ({mime_type}). Supported: PDF, TXT, CSV, MD.",
        )

    page_count = 1
    try:
        if kind == "pdf":
            text, page_count = _parse_pdf(data)
        elif kind == "csv":
            text = format_csv(data.decode("utf-8", errors="replace"))
        else:
            text = data.decode("utf-8", errors="replace")
    except Exception as e:
        raise UploadError(
            code="PARSE_FAILED",
            message=f"Failed to parse {filename}: {e}",
        ) from e

    if not text or not text.strip():
        raise UploadError(
            code="EMPTY_FILE",
            message=(
                f'No readable text could be extracted from "{filename}". '
                "The file may be scanned/image-based or empty."
            ),
        )

    return ParsedFile(
        text=text.strip(),
        page_count=page_count,
        word_count=len(text.split()),
        mime_type=mime_type,
        original_name=filename,
    )
