from __future__ import annotations

import logging
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill

from roster_api.models.schedule import SLOT_ABSENT, SLOT_EXCEPTION, SLOT_OFF, SLOT_WORK
from roster_api.services.allocation_planner import daterange
from roster_api.services.period_lifecycle import get_period, list_allocations, list_slots

log = logging.getLogger(__name__)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# one-letter grid codes
CELL_CODES = {SLOT_WORK: "W", SLOT_OFF: "O", SLOT_ABSENT: "A", SLOT_EXCEPTION: "X"}

_FILLS = {
    "W": PatternFill("solid", fgColor="C6EFCE"),
    "O": PatternFill("solid", fgColor="EDEDED"),
    "A": PatternFill("solid", fgColor="FFC7CE"),
    "X": PatternFill("solid", fgColor="FFEB9C"),
}


def export_filename(period) -> str:
    return f"roster_crew{period.crew_id}_{period.period_start:%Y%m%d}_{period.period_end:%Y%m%d}_v{period.version}.xlsx"


def build_roster_workbook(period_id: int):
    """
    Render a period as a workbook.

    Sheets:
      ROSTER     one row per electrician, one column per date, W/O/A/X cells
      HEADCOUNT  date, WORK count, required headcount, difference
    Returns (BytesIO positioned at 0, filename).
    """
    period = get_period(period_id)
    days = list(daterange(period.period_start, period.period_end))
    slots = list_slots(period_id)

    by_key = {(s.electrician_id, s.day): s for s in slots}
    electricians = sorted(
        {a.electrician_id for a in list_allocations(period_id)} | {s.electrician_id for s in slots}
    )

    wb = Workbook()
    ws = wb.active
    ws.title = "ROSTER"
    ws.append(["ELECTRICIAN"] + [d.strftime("%d/%m") for d in days] + ["WORK DAYS"])
    for cell in ws[1]:
        cell.font = Font(bold=True)

    for eid in electricians:
        row = [eid]
        worked = 0
        for d in days:
            slot = by_key.get((eid, d))
            code = CELL_CODES.get(slot.state, "") if slot else ""
            if code == "W":
                worked += 1
            row.append(code)
        row.append(worked)
        ws.append(row)
        for cell in ws[ws.max_row][1:len(days) + 1]:
            fill = _FILLS.get(cell.value)
            if fill:
                cell.fill = fill
    ws.freeze_panes = "B2"

    required = period.pattern.required_headcount
    ws_hc = wb.create_sheet("HEADCOUNT")
    ws_hc.append(["DATE", "WORK", "REQUIRED", "DIFF"])
    for cell in ws_hc[1]:
        cell.font = Font(bold=True)
    for d in days:
        work = sum(1 for s in slots if s.day == d and s.state == SLOT_WORK)
        ws_hc.append([d, work, required, work - required])

    bio = BytesIO()
    wb.save(bio)
    bio.seek(0)
    log.info("[roster_export] period=%s electricians=%d days=%d", period_id, len(electricians), len(days))
    return bio, export_filename(period)
