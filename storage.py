# storage.py
"""
Local store for homework materials and submitted PDFs.

Layout under the appdata root:

    <subchapter>/materials/<file>.pdf      uploaded homework templates
    <subchapter>/materials/<title>.url     remote templates (one URL per file)
    <subchapter>/submissions/<stamp>_<name>.pdf
    <subchapter>/submissions/summary.csv
"""

from __future__ import annotations

import csv
import logging
import os
import re
import tempfile
import threading
import time
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import requests
from werkzeug.utils import secure_filename

log = logging.getLogger(__name__)

MATERIALS_DIR = "materials"
SUBMISSIONS_DIR = "submissions"
SUMMARY_FILE = "summary.csv"
MATERIAL_EXTS = {".pdf", ".url"}
STATUS_PENDING = "PENDING"


class StorageError(Exception):
    pass


@dataclass
class SubmissionRecord:
    id: str
    student: str
    file_name: str
    stored_as: str
    file_size: int
    status: str
    submitted_at: str

    def to_json(self) -> dict:
        return {
            "id": self.id,
            "studentId": self.student,
            "fileName": self.file_name,
            "storedAs": self.stored_as,
            "fileSize": self.file_size,
            "status": self.status,
            "submittedAt": self.submitted_at,
        }


SUMMARY_HEADER = [f.name for f in fields(SubmissionRecord)]


def _safe_segment(value: str, what: str) -> str:
    safe = secure_filename(value or "")
    if not safe:
        raise StorageError(f"Invalid {what}: {value!r}")
    return safe


def _unique_pdf_name(file_name: str) -> str:
    stem = re.sub(r"\.pdf$", "", file_name, flags=re.IGNORECASE)
    stem = re.sub(r"[^a-zA-Z0-9]", "_", stem) or "submission"
    return f"{int(time.time() * 1000)}_{stem}.pdf"


def _atomic_write(path: Path, data: bytes) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=path.suffix)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class SubmissionStore:
    def __init__(self, root: Path, fetch_timeout: float = 30.0):
        self.root = Path(root)
        self.fetch_timeout = fetch_timeout
        # guards id allocation and the summary.csv append
        self._lock = threading.Lock()

    def _folder(self, subchapter: str, category: str, create: bool = False) -> Path:
        path = self.root / _safe_segment(subchapter, "subchapter id") / category
        if create:
            path.mkdir(parents=True, exist_ok=True)
        return path

    # --------------------------- Materials ---------------------------

    def save_material(self, subchapter: str, filename: str, data: bytes) -> str:
        name = _safe_segment(filename, "file name")
        if Path(name).suffix.lower() != ".pdf":
            raise StorageError(f"Only PDF materials are supported: {filename}")
        target = self._folder(subchapter, MATERIALS_DIR, create=True) / name
        _atomic_write(target, data)
        return name

    def save_material_link(self, subchapter: str, title: str, url: str) -> str:
        if not url.startswith(("http://", "https://")):
            raise StorageError(f"Material URL must be http(s): {url}")
        name = _safe_segment(title, "material title") + ".url"
        target = self._folder(subchapter, MATERIALS_DIR, create=True) / name
        _atomic_write(target, url.strip().encode("utf-8"))
        return name

    def list_materials(self, subchapter: str) -> List[str]:
        folder = self._folder(subchapter, MATERIALS_DIR)
        if not folder.is_dir():
            return []
        return [
            item.name
            for item in sorted(folder.iterdir(), key=lambda p: p.name.lower())
            if item.is_file() and item.suffix.lower() in MATERIAL_EXTS
        ]

    def find_homework_template(self, subchapter: str, keyword: str) -> Optional[str]:
        needle = keyword.strip().lower()
        for name in self.list_materials(subchapter):
            # secure_filename turns spaces into underscores
            if needle in Path(name).stem.lower().replace("_", " "):
                return name
        return None

    def read_material(self, subchapter: str, name: str) -> bytes:
        path = self._folder(subchapter, MATERIALS_DIR) / _safe_segment(name, "material name")
        if not path.is_file():
            raise StorageError(f"Material not found: {name}")
        if path.suffix.lower() != ".url":
            return path.read_bytes()

        url = path.read_text(encoding="utf-8").strip()
        log.info("Downloading material %s from %s", name, url)
        try:
            resp = requests.get(url, timeout=self.fetch_timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise StorageError(f"Failed to download {name}: {e}") from e
        return resp.content

    def delete_material(self, subchapter: str, name: str) -> bool:
        path = self._folder(subchapter, MATERIALS_DIR) / _safe_segment(name, "material name")
        if not path.is_file():
            return False
        path.unlink()
        return True

    # --------------------------- Submissions ---------------------------

    def submission_path(self, subchapter: str, stored_as: str) -> Path:
        return self._folder(subchapter, SUBMISSIONS_DIR) / _safe_segment(stored_as, "file name")

    def list_submissions(self, subchapter: str, student: Optional[str] = None) -> List[SubmissionRecord]:
        summary = self._folder(subchapter, SUBMISSIONS_DIR) / SUMMARY_FILE
        if not summary.is_file():
            return []
        with summary.open(newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        records = [
            SubmissionRecord(**{**row, "file_size": int(row["file_size"])})
            for row in rows
        ]
        if student is not None:
            wanted = secure_filename(student)
            records = [r for r in records if r.student == wanted]
        return records

    def save_submission(self, subchapter: str, student: str, file_name: str, data: bytes) -> SubmissionRecord:
        student_id = _safe_segment(student, "student id")
        folder = self._folder(subchapter, SUBMISSIONS_DIR, create=True)

        with self._lock:
            stored_as = _unique_pdf_name(file_name)
            while (folder / stored_as).exists():
                time.sleep(0.001)
                stored_as = _unique_pdf_name(file_name)

            _atomic_write(folder / stored_as, data)

            record = SubmissionRecord(
                id=f"{len(self.list_submissions(subchapter)) + 1:03d}",
                student=student_id,
                file_name=file_name,
                stored_as=stored_as,
                file_size=len(data),
                status=STATUS_PENDING,
                submitted_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            )

            summary = folder / SUMMARY_FILE
            write_header = not summary.exists()
            with summary.open("a", newline="", encoding="utf-8") as csvfile:
                writer = csv.DictWriter(csvfile, fieldnames=SUMMARY_HEADER)
                if write_header:
                    writer.writeheader()
                writer.writerow(asdict(record))

        log.info("Stored submission %s for %s/%s (%d bytes)", record.id, subchapter, record.student, record.file_size)
        return record
