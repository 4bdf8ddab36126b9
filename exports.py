import csv
import io
from datetime import datetime

from models import TransferEvent
from utils import format_timestamp, wei_to_ether


_HEADERS = [
    "Hash", "Time (UTC)", "From", "To", "Value (ETH)", "Gas Used", "Gas Price (wei)",
    "Token",
]


def _row(tx: TransferEvent) -> list:
    return [
        tx.id,
        format_timestamp(tx.timestamp),
        tx.from_address,
        tx.to_address or "",
        f"{wei_to_ether(tx.value or 0):f}",
        tx.gas_used or "",
        tx.gas_price or "",
        tx.token.symbol if tx.token else "ETH",
    ]


def to_csv(address: str, transfers: list[TransferEvent]) -> bytes:
    """Export recent transfers of a wallet to CSV."""
    out = io.StringIO()
    w = csv.writer(out)

    w.writerow(["WALLET TRANSACTIONS"])
    w.writerow(["Address", address])
    w.writerow(["Generated", datetime.now().strftime("%Y-%m-%d %H:%M:%S")])
    w.writerow([])

    w.writerow(_HEADERS)
    for tx in transfers:
        w.writerow(_row(tx))

    return out.getvalue().encode("utf-8")


def to_excel(address: str, transfers: list[TransferEvent]) -> bytes:
    """Export recent transfers to a formatted Excel workbook."""
    import openpyxl
    from openpyxl.styles import Alignment, Font, PatternFill

    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Transactions"

    accent = PatternFill(start_color="6c5ce7", end_color="6c5ce7", fill_type="solid")
    dark = PatternFill(start_color="1a1a2e", end_color="1a1a2e", fill_type="solid")
    white_bold = Font(bold=True, color="FFFFFF")

    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=len(_HEADERS))
    ws["A1"] = f"Transactions for {address}"
    ws["A1"].font = Font(bold=True, size=14, color="FFFFFF")
    ws["A1"].fill = accent
    ws["A1"].alignment = Alignment(horizontal="center")

    for col, h in enumerate(_HEADERS, 1):
        cell = ws.cell(row=3, column=col, value=h)
        cell.font = white_bold
        cell.fill = dark

    for i, tx in enumerate(transfers, 4):
        for col, value in enumerate(_row(tx), 1):
            ws.cell(row=i, column=col, value=value)

    # Auto-fit column widths (row 1 is merged, skip it)
    for col in ws.iter_cols(min_row=3):
        max_len = max(len(str(cell.value or "")) for cell in col)
        ws.column_dimensions[col[0].column_letter].width = min(max_len + 3, 70)

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
