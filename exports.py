"""
Export helpers: convert a BillRecord into CSV or Excel (bytes).
"""

import csv
import io
from typing import List

from models import BillRecord, ProcessedLineItem


LINE_HEADERS = ["#", "Type", "Name", "Qty", "Unit Price", "Base", "GST %", "GST", "Total"]


def _line_rows(bill: BillRecord) -> List[list]:
    rows = []
    lines: List[ProcessedLineItem] = bill.services + bill.parts + bill.custom_items
    for i, line in enumerate(lines, start=1):
        kind = "Original service" if line.is_original else line.category.label
        rows.append([
            i,
            kind,
            line.name,
            line.quantity,
            float(line.unit_base_price),
            float(line.base),
            float(line.gst_percentage),
            float(line.gst_amount),
            float(line.total),
        ])
    return rows


def _summary_sections(bill: BillRecord) -> List[tuple]:
    config = bill.payout_config
    return [
        ("BILL", [
            ("Booking ID",        bill.booking_id),
            ("Vendor ID",         bill.vendor_id),
            ("Status",            bill.status.value),
            ("Generated At",      bill.generated_at.isoformat()),
            ("Paid At",           bill.paid_at.isoformat() if bill.paid_at else ""),
        ]),
        ("BASE AMOUNTS", [
            ("Original Service",  float(bill.original_service_base)),
            ("Vendor Services",   float(bill.vendor_service_base)),
            ("Total Services",    float(bill.total_service_base)),
            ("Parts & Custom",    float(bill.total_parts_base)),
            ("Visiting Charges",  float(bill.visiting_charges)),
        ]),
        ("GST", [
            ("Original Service",  float(bill.original_gst)),
            ("Vendor Services",   float(bill.vendor_service_gst)),
            ("Parts & Custom",    float(bill.parts_gst)),
            ("Total GST",         float(bill.total_gst)),
        ]),
        ("TOTALS", [
            ("GRAND TOTAL",       float(bill.grand_total)),
        ]),
        ("PAYOUT", [
            ("Service Split (%)", float(config.service_split_percentage)),
            ("Parts Split (%)",   float(config.parts_split_percentage)),
            ("Vendor Services",   float(bill.vendor_service_earning)),
            ("Vendor Parts",      float(bill.vendor_parts_earning)),
            ("Vendor Total",      float(bill.vendor_total_earning)),
            ("Company Revenue",   float(bill.company_revenue)),
        ]),
    ]


# ── CSV ────────────────────────────────────────────────────────────────────────

def to_csv(bill: BillRecord) -> bytes:
    """
    Returns a UTF-8 CSV as bytes.

    Layout:
      Section 1: Bill summary (label, value rows)
      Section 2: Line items table
    """
    buf = io.StringIO()
    writer = csv.writer(buf)

    writer.writerow(["VENDOR BILL EXPORT"])
    writer.writerow([])

    for title, rows in _summary_sections(bill):
        writer.writerow([f"=== {title} ==="])
        for label, value in rows:
            writer.writerow([label, value])
        writer.writerow([])

    writer.writerow(["=== LINE ITEMS ==="])
    writer.writerow(LINE_HEADERS)
    for row in _line_rows(bill):
        writer.writerow(row)

    return buf.getvalue().encode("utf-8-sig")   # utf-8-sig = BOM for Excel compatibility


# ── Excel ──────────────────────────────────────────────────────────────────────

def to_excel(bill: BillRecord) -> bytes:
    """
    Returns an .xlsx file as bytes with two sheets:
      Sheet 1: Bill Summary
      Sheet 2: Line Items
    """
    from openpyxl import Workbook
    from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
    from openpyxl.utils import get_column_letter

    wb = Workbook()

    ws1 = wb.active
    ws1.title = "Bill Summary"

    BLUE   = "2563EB"
    LBLUE  = "DBEAFE"
    DGRAY  = "1E293B"
    LGRAY  = "F8FAFC"

    thin = Side(style="thin", color="CBD5E1")
    border = Border(left=thin, right=thin, top=thin, bottom=thin)

    def add_section(ws, title: str, rows: list, start_row: int) -> int:
        """Add a titled section. Returns next available row."""
        header = ws.cell(row=start_row, column=1, value=title)
        header.font = Font(bold=True, color="FFFFFF", size=11)
        header.fill = PatternFill("solid", fgColor=BLUE)
        header.border = border
        ws.merge_cells(start_row=start_row, start_column=1, end_row=start_row, end_column=2)

        for label, value in rows:
            start_row += 1
            lc = ws.cell(row=start_row, column=1, value=label)
            vc = ws.cell(row=start_row, column=2, value=value)
            lc.font = Font(bold=True, color=DGRAY, size=10)
            lc.fill = PatternFill("solid", fgColor=LBLUE)
            vc.font = Font(color=DGRAY, size=10)
            vc.fill = PatternFill("solid", fgColor=LGRAY)
            if isinstance(value, float):
                vc.number_format = "#,##0.00"
            lc.border = border
            vc.border = border

        return start_row + 2

    title_cell = ws1.cell(row=1, column=1, value="VENDOR BILL")
    title_cell.font = Font(bold=True, size=14, color=BLUE)
    ws1.cell(row=1, column=2, value=f"Booking: {bill.booking_id}").font = Font(size=10, color="64748B")
    ws1.row_dimensions[1].height = 24

    row = 3
    for title, rows in _summary_sections(bill):
        row = add_section(ws1, title, rows, row)

    ws1.column_dimensions["A"].width = 22
    ws1.column_dimensions["B"].width = 36

    # ── Sheet 2: Line Items ────────────────────────────────────────────────────
    ws2 = wb.create_sheet("Line Items")

    col_widths = [5, 18, 40, 8, 12, 12, 8, 12, 12]
    for col_idx, (h, w) in enumerate(zip(LINE_HEADERS, col_widths), start=1):
        cell = ws2.cell(row=1, column=col_idx, value=h)
        cell.font = Font(bold=True, color="FFFFFF", size=10)
        cell.fill = PatternFill("solid", fgColor=BLUE)
        cell.alignment = Alignment(horizontal="center", vertical="center")
        cell.border = border
        ws2.column_dimensions[get_column_letter(col_idx)].width = w

    line_rows = _line_rows(bill)
    for row_idx, values in enumerate(line_rows, start=2):
        fill = PatternFill("solid", fgColor="F1F5F9" if row_idx % 2 == 0 else "FFFFFF")
        for col_idx, val in enumerate(values, start=1):
            cell = ws2.cell(row=row_idx, column=col_idx, value=val)
            cell.font = Font(size=10)
            cell.fill = fill
            cell.border = border
            if col_idx >= 5:
                cell.alignment = Alignment(horizontal="right")
                cell.number_format = "#,##0.00"

    total_row = len(line_rows) + 2
    ws2.cell(row=total_row, column=3, value="VISITING CHARGES").font = Font(bold=True)
    ws2.cell(row=total_row, column=9, value=float(bill.visiting_charges)).number_format = "#,##0.00"
    ws2.cell(row=total_row + 1, column=3, value="GRAND TOTAL").font = Font(bold=True)
    grand = ws2.cell(row=total_row + 1, column=9, value=float(bill.grand_total))
    grand.font = Font(bold=True)
    grand.number_format = "#,##0.00"

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf.read()
