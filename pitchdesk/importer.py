from __future__ import annotations

import csv
import io
import logging
import re
from collections.abc import Iterable, Mapping
from pathlib import Path

import openpyxl
from sqlalchemy.orm import Session

from pitchdesk.schemas import ImportResult
from pitchdesk.services import create_investor
from pitchdesk.utils import to_text

log = logging.getLogger(__name__)

# Header spellings seen in investor exports -> Investor field
_ALIASES = {
    "name": "investor_name",
    "investor": "investor_name",
    "firm": "investor_name",
    "firm_name": "investor_name",
    "company": "investor_name",
    "company_name": "investor_name",
    "companyname": "investor_name",
    "contact": "contact_person",
    "contact_name": "contact_person",
    "investorname": "investor_name",
    "contactname": "contact_person",
    "title": "designation",
    "email_address": "email",
    "phone_number": "phone",
    "url": "website",
    "website_url": "website",
    "linkedin_url": "linkedin",
    "company_linkedin_url": "company_linkedin",
    "twitter_url": "twitter",
    "founded": "founded_year",
    "year_founded": "founded_year",
    "type": "investor_type",
    "companydescription": "description",
    "company_description": "description",
    "score": "investment_score",
    "investmentscore": "investment_score",
    "contactperson": "contact_person",
    "investortype": "investor_type",
    "foundedyear": "founded_year",
    "practiceareas": "practice_areas",
    "businessmodels": "business_models",
    "companylinkedin": "company_linkedin",
}

_HEADER_RE = re.compile(r"[\s\-/.]+")


def normalize_header(header: object) -> str:
    """``"Investor Name"`` -> ``"investor_name"``; known aliases resolved."""
    key = _HEADER_RE.sub("_", to_text(header).lower()).strip("_")
    return _ALIASES.get(key, key)


def import_rows(rows: Iterable[Mapping[str, object]], session: Session) -> ImportResult:
    """Create investors from header-keyed rows; rows without a name are skipped.

    Commits on success.
    """
    total = imported = skipped = 0
    for raw in rows:
        total += 1
        row: dict[str, object] = {}
        for k, v in raw.items():
            if k is None:
                continue
            # first non-empty column wins when two headers map to one field
            key = normalize_header(k)
            if not to_text(row.get(key)):
                row[key] = v
        if not to_text(row.get("investor_name")):
            skipped += 1
            continue
        create_investor(session, row)
        imported += 1
    session.commit()
    log.info("Imported %d investors (%d rows skipped)", imported, skipped)
    return ImportResult(total_rows=total, imported=imported, skipped=skipped)


def import_csv_text(text: str, session: Session) -> ImportResult:
    """Import CSV content (header row first), e.g. an uploaded file body."""
    return import_rows(csv.DictReader(io.StringIO(text)), session)


def import_csv(path: Path, session: Session) -> ImportResult:
    """Import a CSV file from disk."""
    with open(path, newline="", encoding="utf-8-sig") as f:
        return import_rows(csv.DictReader(f), session)


def import_xlsx(path: str | Path, session: Session) -> ImportResult:
    """Import the first worksheet of an XLSX file (header row first)."""
    wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        rows = ws.iter_rows(values_only=True)
        headers = next(rows, None)
        if not headers:
            return ImportResult(total_rows=0, imported=0, skipped=0)
        records = (
            {h: v for h, v in zip(headers, row) if h is not None}
            for row in rows if row and any(c is not None for c in row)
        )
        return import_rows(records, session)
    finally:
        wb.close()
