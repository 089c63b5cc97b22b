"""
Audit export service.

Flattens reconciled activity views into a CSV table for offline analysis:
fixed base columns, action-specific columns, one Field/Old/New triplet per
recorded change and a summary column. Output is UTF-8 with a byte-order mark
so spreadsheet tools detect the encoding.
"""

import csv
import io
import json
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from audittrail.schemas.history import (
    ActivityView,
    RoleChangeDisplay,
    BlockStatusDisplay,
    FieldEditDisplay,
    AccountDeletionDisplay,
)
from audittrail.services.history_reconciler import normalize_action, normalize_days_window

BOM = "\ufeff"
EXPORT_BASENAME = "user-management-audit-trail"
NOT_AVAILABLE = "N/A"

BASE_COLUMNS = [
    "Date",
    "Time",
    "Full Timestamp",
    "Action Type",
    "Action Description",
    "Status",
    "Target User ID",
    "Target User Name",
    "Target User Email",
    "Target User Role",
    "Performed By ID",
    "Performed By Name",
    "Performed By Role",
    "Reason",
    "Days Ago",
    "IP Address",
    "User Agent",
    "Session ID",
]

ROLE_COLUMNS = ["From Role", "To Role", "Role Change Summary"]
BLOCK_COLUMNS = ["Previous Status", "New Status", "Block/Unblock Details"]
EDIT_COLUMNS = ["Fields Changed Count", "Fields Changed", "Changes Summary"]
DELETION_COLUMNS = ["Deleted User Name", "Deleted User Email", "Deleted User Role", "Deletion Details"]
ACTION_COLUMN_GROUPS = [ROLE_COLUMNS, BLOCK_COLUMNS, EDIT_COLUMNS, DELETION_COLUMNS]

SUMMARY_COLUMN = "All Changes Summary"


def stringify(value: Any) -> str:
    """Render a change value as text; containers become compact JSON."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str, ensure_ascii=False)
    return str(value)


def change_columns(index: int) -> List[str]:
    return [
        f"Change {index} - Field",
        f"Change {index} - Old Value",
        f"Change {index} - New Value",
    ]


class AuditExporter:
    """Builds CSV exports of activity views."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._now = clock or datetime.utcnow

    def to_table(self, entries: List[ActivityView]) -> Optional[bytes]:
        """
        Serialize activity views to CSV bytes.

        Returns None for an empty input so no empty file is produced.
        """
        if not entries:
            return None

        rows = [self._row(entry) for entry in entries]
        header = self._header(rows, max(len(entry.changes) for entry in entries))

        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(header)
        for row in rows:
            writer.writerow([row.get(column, "") for column in header])

        return (BOM + output.getvalue()).encode("utf-8")

    @staticmethod
    def filename(export_date: date, action: Optional[str] = None, days_window: Optional[str] = None) -> str:
        """
        Deterministic export filename.

        ``<base>-<YYYY-MM-DD>[-<action>][-<days>days].csv``: the action suffix
        is added only for an active action filter and the window suffix only
        for a non-default window.
        """
        action_filter = normalize_action(action)
        action_suffix = f"-{action_filter}" if action_filter else ""

        window_suffix = ""
        if days_window:
            label, _ = normalize_days_window(days_window)
            default_label, _ = normalize_days_window(None)
            if label != default_label:
                window_suffix = f"-{label}days"

        return f"{EXPORT_BASENAME}-{export_date.isoformat()}{action_suffix}{window_suffix}.csv"

    def _header(self, rows: List[Dict[str, str]], max_changes: int) -> List[str]:
        present = set()
        for row in rows:
            present.update(row.keys())

        header = list(BASE_COLUMNS)
        for group in ACTION_COLUMN_GROUPS:
            if group[0] in present:
                header.extend(group)
        for index in range(1, max_changes + 1):
            header.extend(change_columns(index))
        header.append(SUMMARY_COLUMN)
        return header

    def _row(self, entry: ActivityView) -> Dict[str, str]:
        ts = entry.timestamp
        details = entry.details
        row = {
            "Date": f"{ts:%b} {ts.day}, {ts.year}",
            "Time": f"{ts:%I:%M %p}",
            "Full Timestamp": ts.isoformat(),
            "Action Type": entry.action.replace("_", " ").upper(),
            "Action Description": entry.description or entry.reason or NOT_AVAILABLE,
            "Status": entry.status or "completed",
            "Target User ID": entry.target.id or NOT_AVAILABLE,
            "Target User Name": entry.target.name or "Unknown",
            "Target User Email": entry.target.email or "unknown@email.com",
            "Target User Role": entry.target.role or "user",
            "Performed By ID": entry.performed_by.id or NOT_AVAILABLE,
            "Performed By Name": entry.performed_by.name or "Unknown",
            "Performed By Role": entry.performed_by.role or "unknown",
            "Reason": entry.reason or NOT_AVAILABLE,
            "Days Ago": str(max((self._now() - ts).days, 0)),
            "IP Address": entry.metadata.ip_address or NOT_AVAILABLE,
            "User Agent": entry.metadata.user_agent or NOT_AVAILABLE,
            "Session ID": entry.metadata.session_id or NOT_AVAILABLE,
        }

        if isinstance(details, RoleChangeDisplay):
            row["From Role"] = stringify(details.from_role)
            row["To Role"] = stringify(details.to_role)
            row["Role Change Summary"] = details.description
        elif isinstance(details, BlockStatusDisplay):
            row["Previous Status"] = details.previous_status
            row["New Status"] = details.new_status
            row["Block/Unblock Details"] = details.description
        elif isinstance(details, FieldEditDisplay):
            row["Fields Changed Count"] = str(details.changes_count)
            row["Fields Changed"] = ", ".join(details.fields_changed) or NOT_AVAILABLE
            row["Changes Summary"] = details.description
        elif isinstance(details, AccountDeletionDisplay):
            row["Deleted User Name"] = details.deleted_user.name or NOT_AVAILABLE
            row["Deleted User Email"] = details.deleted_user.email or NOT_AVAILABLE
            row["Deleted User Role"] = details.deleted_user.role or NOT_AVAILABLE
            row["Deletion Details"] = details.description

        for index, change in enumerate(entry.changes, start=1):
            field_col, old_col, new_col = change_columns(index)
            row[field_col] = change.field or NOT_AVAILABLE
            row[old_col] = stringify(change.old_value)
            row[new_col] = stringify(change.new_value)

        if entry.changes:
            row[SUMMARY_COLUMN] = " | ".join(
                f'{c.field}: "{stringify(c.old_value)}" → "{stringify(c.new_value)}"' for c in entry.changes
            )
        else:
            row[SUMMARY_COLUMN] = "No field changes recorded"

        return row
