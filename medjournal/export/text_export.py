from datetime import datetime
from typing import Iterable

from medjournal.models.journal_entry import JournalEntry

SEPARATOR = "=" * 50
DATE_FORMAT = "%b %d, %Y %H:%M"


def format_entry(entry: JournalEntry, number: int) -> str:
    """Render one entry; every value is taken from the entry as stored."""
    lines = [
        f"HEALTH JOURNAL ENTRY #{number}",
        f"Date: {entry.created_at.strftime(DATE_FORMAT)}",
        f"Transaction: {entry.external_reference}",
    ]
    if entry.block_reference is not None:
        lines.append(f"Block: #{entry.block_reference}")
    lines.extend([
        "",
        "ENTRY:",
        entry.text,
        "",
        "ANALYSIS:",
        f"Symptoms: {', '.join(entry.symptoms)}",
        f"Mood: {entry.mood}",
        f"Severity: {entry.severity.value}",
        f"Summary: {entry.summary}",
        "",
        SEPARATOR,
    ])
    return "\n".join(lines)


def export_entries_text(entries: Iterable[JournalEntry]) -> str:
    return "\n\n".join(
        format_entry(entry, number) for number, entry in enumerate(entries, start=1)
    ) + "\n"


def export_filename(moment: datetime) -> str:
    return f"health-journal-{moment.strftime('%Y-%m-%d')}.txt"
