"""
Reports and exports for the Warranty Tracker.

Provides:
  - Product inventory export as CSV and as a PDF report (fpdf2)
  - Service history export as CSV
  - Dashboard aggregates (totals, per-category counts, warranty status
    counts, expiring list)
  - Upcoming / overdue service lists

Every report works over the caller's full, unpaginated record set read in
one pass and classified against a single reference time, so the counts in
one response always agree with each other.
"""

import csv
import io
import logging
from datetime import datetime
from typing import Any, Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from fpdf import FPDF

from core.status import (
    DEFAULT_THRESHOLD_DAYS,
    WARRANTY_STATUSES,
    as_datetime,
    parse_date,
    utcnow,
)
from tools.tracker.categories import CategoryStore
from tools.tracker.products import Product, ProductStore
from tools.tracker.services import ServiceStore
from tools.tracker.users import User

logger = logging.getLogger("tracker.export")


# ── Export configuration ────────────────────────────────────────────

PRODUCT_CSV_FIELDS = [
    "Name", "Category", "Purchase Date", "Warranty Expiry",
    "Purchase Price", "Seller", "Serial Number",
]

SERVICE_CSV_FIELDS = [
    "Product", "Service Date", "Service Center", "Cost",
    "Description", "Next Service Due", "Due Status",
]

DEFAULT_DATE_FORMAT = "%m/%d/%Y"
REPORT_TITLE = "Warranty Tracker Inventory Report"
EMPTY_REPORT_MESSAGE = "No products found in inventory."
UNKNOWN_CATEGORY = "Unknown"
MISSING = "N/A"


def _format_amount(value: float | int | None) -> str:
    """1299.99 -> '1299.99', 1200.0 -> '1200'."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}"


def _pdf_text(text: str) -> str:
    """Core PDF fonts are latin-1 only; replace anything outside it."""
    return text.encode("latin-1", "replace").decode("latin-1")


class ReportExporter:
    """Builds CSV/PDF exports and dashboard aggregates for one owner at a time.

    Args:
        products:       Product store.
        services:       Service store.
        categories:     Category store, resolves category names.
        date_format:    strftime format for dates in CSV and PDF output.
        threshold_days: Expiring / upcoming window.
    """

    def __init__(
        self,
        products: ProductStore,
        services: ServiceStore,
        categories: CategoryStore,
        date_format: str = DEFAULT_DATE_FORMAT,
        threshold_days: int = DEFAULT_THRESHOLD_DAYS,
    ):
        self._products = products
        self._services = services
        self._categories = categories
        self.date_format = date_format
        self.threshold_days = threshold_days

    # ── Helpers ─────────────────────────────────────────────────────

    def _format_date(self, value: str) -> str:
        parsed = parse_date(value) if value else None
        return parsed.strftime(self.date_format) if parsed else MISSING

    def _snapshot(self, owner_id: str) -> tuple[list[Product], dict[str, str]]:
        """All of one owner's products plus a category id → name map."""
        products = self._products.list_for_owner(owner_id)
        names = self._categories.names_by_id([p.category_id for p in products])
        return products, names

    @staticmethod
    def _to_csv_bytes(fieldnames: list[str], rows: list[dict]) -> bytes:
        """Convert rows to CSV bytes. No rows still yields the header line."""
        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=fieldnames, extrasaction="ignore")
        writer.writeheader()
        for r in rows:
            writer.writerow(r)
        return output.getvalue().encode("utf-8")

    # ── CSV ─────────────────────────────────────────────────────────

    def product_rows(self, owner_id: str) -> list[dict[str, str]]:
        products, names = self._snapshot(owner_id)
        return [
            {
                "Name": p.name,
                "Category": names.get(p.category_id, UNKNOWN_CATEGORY),
                "Purchase Date": self._format_date(p.purchase_date),
                "Warranty Expiry": self._format_date(p.warranty_expiry_date),
                "Purchase Price": _format_amount(p.purchase_price) if p.purchase_price else MISSING,
                "Seller": p.seller or MISSING,
                "Serial Number": p.serial_number or MISSING,
            }
            for p in products
        ]

    def products_csv(self, owner_id: str) -> bytes:
        rows = self.product_rows(owner_id)
        logger.info("Product CSV export for %s (%d rows)", owner_id[:8], len(rows))
        return self._to_csv_bytes(PRODUCT_CSV_FIELDS, rows)

    def service_rows(self, owner_id: str, now: datetime | None = None) -> list[dict[str, str]]:
        now = as_datetime(now or utcnow())
        records = self._services.list_for_owner(owner_id)
        products = self._products.get_products([r.product_id for r in records])
        rows = []
        for r in records:
            product = products.get(r.product_id)
            data = r.to_dict(reference_now=now, threshold_days=self.threshold_days)
            rows.append({
                "Product": product.name if product else "Unknown",
                "Service Date": self._format_date(r.service_date),
                "Service Center": r.service_center or MISSING,
                "Cost": _format_amount(r.cost or 0),
                "Description": r.description or MISSING,
                "Next Service Due": self._format_date(r.next_service_due_date),
                "Due Status": data["service_due_status"] or MISSING,
            })
        return rows

    def services_csv(self, owner_id: str, now: datetime | None = None) -> bytes:
        rows = self.service_rows(owner_id, now)
        logger.info("Service CSV export for %s (%d rows)", owner_id[:8], len(rows))
        return self._to_csv_bytes(SERVICE_CSV_FIELDS, rows)

    # ── PDF ─────────────────────────────────────────────────────────

    def product_report_blocks(self, owner_id: str) -> list[dict[str, Any]]:
        """One block per product: a heading and its detail lines."""
        products, names = self._snapshot(owner_id)
        blocks = []
        for p in products:
            lines = [
                f"Category: {names.get(p.category_id, UNKNOWN_CATEGORY)}",
                f"Purchase Date: {self._format_date(p.purchase_date)}",
                f"Warranty Expiry: {self._format_date(p.warranty_expiry_date)}",
            ]
            if p.purchase_price:
                lines.append(f"Price: ${_format_amount(p.purchase_price)}")
            if p.serial_number:
                lines.append(f"Serial Number: {p.serial_number}")
            blocks.append({"heading": p.name, "lines": lines})
        return blocks

    def products_pdf(self, owner_id: str, now: datetime | None = None) -> bytes:
        """Render the inventory report and return the PDF bytes."""
        now = as_datetime(now or utcnow())
        blocks = self.product_report_blocks(owner_id)

        pdf = FPDF()
        pdf.add_page()
        pdf.set_auto_page_break(auto=True, margin=15)
        pdf.set_title(REPORT_TITLE)

        # --- Header ---
        pdf.set_font("Helvetica", "B", 20)
        pdf.cell(0, 10, REPORT_TITLE, new_x="LMARGIN", new_y="NEXT", align="C")
        pdf.ln(4)
        pdf.set_font("Helvetica", "", 12)
        pdf.cell(
            0, 6, f"Generated on: {now.strftime(self.date_format)}",
            new_x="LMARGIN", new_y="NEXT", align="C",
        )
        pdf.ln(10)

        if not blocks:
            pdf.set_font("Helvetica", "", 14)
            pdf.cell(0, 8, EMPTY_REPORT_MESSAGE, new_x="LMARGIN", new_y="NEXT", align="C")
        else:
            pdf.set_fill_color(238, 238, 252)
            for block in blocks:
                pdf.set_font("Helvetica", "B", 14)
                pdf.set_text_color(79, 70, 229)
                pdf.cell(
                    0, 8, _pdf_text(f"  {block['heading']}"),
                    new_x="LMARGIN", new_y="NEXT", fill=True,
                )
                pdf.set_text_color(0, 0, 0)
                pdf.set_font("Helvetica", "", 10)
                for line in block["lines"]:
                    pdf.multi_cell(0, 5, _pdf_text(f"  {line}"), new_x="LMARGIN", new_y="NEXT")
                pdf.ln(4)

        logger.info("Product PDF export for %s (%d products)", owner_id[:8], len(blocks))
        return bytes(pdf.output())

    # ── Aggregates ──────────────────────────────────────────────────

    def dashboard_stats(self, owner_id: str, now: datetime | None = None) -> dict[str, Any]:
        """Dashboard aggregates from one snapshot and one reference time."""
        now = as_datetime(now or utcnow())
        products, names = self._snapshot(owner_id)

        status_counts = {status: 0 for status in WARRANTY_STATUSES}
        by_category: dict[str, int] = {}
        expiring = []
        for p in products:
            status = p.status(now, self.threshold_days)
            status_counts[status] += 1
            by_category[p.category_id] = by_category.get(p.category_id, 0) + 1
            if status == "expiring":
                expiring.append(p)

        category_rows = sorted(
            (
                {
                    "category": names.get(cid, UNKNOWN_CATEGORY),
                    "category_id": cid,
                    "count": count,
                }
                for cid, count in by_category.items()
            ),
            key=lambda row: (-row["count"], row["category"].casefold()),
        )
        expiring.sort(key=lambda p: (p.warranty_expiry_date, p.name))

        return {
            "total_products": len(products),
            "products_by_category": category_rows,
            "expiring_warranties": [
                p.to_dict(names.get(p.category_id), now, self.threshold_days) for p in expiring
            ],
            "warranty_status_counts": status_counts,
        }

    def upcoming_services(self, owner_id: str, now: datetime | None = None) -> dict[str, list]:
        """Services due within the window, and services already overdue."""
        now = as_datetime(now or utcnow())
        upcoming = self._services.upcoming(owner_id, now)
        overdue = self._services.overdue(owner_id, now)
        products = self._products.get_products(
            [s.product_id for s in upcoming + overdue],
        )

        def _serialize(records):
            return [
                r.to_dict(
                    products[r.product_id].name if r.product_id in products else None,
                    now, self.threshold_days,
                )
                for r in records
            ]

        return {"upcoming": _serialize(upcoming), "overdue": _serialize(overdue)}


# ── Routes ──────────────────────────────────────────────────────────

def _download(data: bytes, media_type: str, fname: str) -> Response:
    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{fname}"'},
    )


def register_routes(router: APIRouter, current_user: Callable[..., User]) -> None:
    """Register report endpoints on the /api router.

    Handlers reach the ReportExporter through ``request.app.state.exporter``.
    """

    @router.get("/products/export/csv")
    async def export_products_csv(request: Request, user: User = Depends(current_user)):
        """Download all of the caller's products as CSV."""
        data = request.app.state.exporter.products_csv(user.user_id)
        return _download(data, "text/csv", "products_export.csv")

    @router.get("/products/export/pdf")
    async def export_products_pdf(request: Request, user: User = Depends(current_user)):
        """Download the caller's inventory report as PDF."""
        data = request.app.state.exporter.products_pdf(user.user_id)
        stamp = utcnow().strftime("%Y%m%d%H%M%S")
        return _download(data, "application/pdf", f"products_export_{stamp}.pdf")

    @router.get("/products/stats/dashboard")
    async def dashboard_stats(request: Request, user: User = Depends(current_user)):
        return request.app.state.exporter.dashboard_stats(user.user_id)

    @router.get("/services/export/csv")
    async def export_services_csv(request: Request, user: User = Depends(current_user)):
        """Download the caller's service history as CSV."""
        data = request.app.state.exporter.services_csv(user.user_id)
        return _download(data, "text/csv", "services_export.csv")

    @router.get("/services/upcoming/due")
    async def upcoming_services(request: Request, user: User = Depends(current_user)):
        return request.app.state.exporter.upcoming_services(user.user_id)

    logger.info(
        "Report routes registered: /api/products/export/{csv,pdf}, "
        "/api/products/stats/dashboard, /api/services/export/csv, "
        "/api/services/upcoming/due",
    )
